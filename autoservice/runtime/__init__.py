"""Run a worker as a service: context detection, hosting and auto-install."""

from autoservice.runtime.context import ExecutionContext, detect_execution_context
from autoservice.runtime.host import HostContext, ServiceHost
from autoservice.runtime.runner import AutoServiceRunner, Decision, decide

__all__ = [
    "AutoServiceRunner",
    "Decision",
    "ExecutionContext",
    "HostContext",
    "ServiceHost",
    "decide",
    "detect_execution_context",
]
