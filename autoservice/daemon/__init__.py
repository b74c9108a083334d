"""OS service management: one contract over SCM, systemd and launchd."""

from autoservice.daemon.base import ServiceBackend, ServiceInfo, ServiceInstallSpec, ServiceStatus
from autoservice.daemon.manager import ServiceManager, create_backend

__all__ = [
    "ServiceBackend",
    "ServiceInfo",
    "ServiceInstallSpec",
    "ServiceManager",
    "ServiceStatus",
    "create_backend",
]
