"""Auto-install orchestrator: one startup decision per process launch.

- not installed + elevated      -> install, start, exit
- not installed + not elevated  -> run in the foreground (test mode)
- installed + interactive       -> say so and exit
- supervisor context            -> run the worker loop
"""

from __future__ import annotations

import platform
from collections.abc import Awaitable, Callable, Mapping, Sequence
from enum import Enum

from loguru import logger
from rich.console import Console
from rich.markup import escape

from autoservice.daemon.base import ServiceStatus
from autoservice.daemon.manager import ServiceManager
from autoservice.errors import ServiceError
from autoservice.runtime.context import ExecutionContext, detect_execution_context
from autoservice.runtime.host import DEFAULT_SHUTDOWN_TIMEOUT, ServiceHost, Worker
from autoservice.utils.privilege import is_elevated

EXIT_OK = 0
EXIT_FAILURE = 2


class Decision(Enum):
    RUN_SUPERVISED = "run-supervised"
    INSTALL = "install"
    RUN_FOREGROUND = "run-foreground"
    INFORM_AND_EXIT = "inform-and-exit"


def decide(
    context: ExecutionContext,
    status: ServiceStatus,
    elevated: bool,
    system: str | None = None,
) -> Decision:
    """Pure decision table. Rules are evaluated top to bottom."""
    if context.treated_as_supervised(system):
        return Decision.RUN_SUPERVISED
    if status is ServiceStatus.NOT_FOUND:
        return Decision.INSTALL if elevated else Decision.RUN_FOREGROUND
    if context is ExecutionContext.INTERACTIVE:
        return Decision.INFORM_AND_EXIT
    # Not positively supervised, but clearly not a user at a console either.
    return Decision.RUN_SUPERVISED


HostRunner = Callable[[ServiceHost], Awaitable[int]]


class AutoServiceRunner:
    """Detects the execution context and either installs, informs or runs *worker*."""

    def __init__(
        self,
        service_name: str,
        worker: Worker,
        description: str | None = None,
        args: Sequence[str] = (),
        environment: Mapping[str, str] | None = None,
        *,
        service_arguments: Sequence[str] | None = None,
        manager: ServiceManager | None = None,
        env_passthrough: Sequence[str] = (),
        elevated: Callable[[], bool] = is_elevated,
        force_supervised: bool = False,
        shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT,
        system: str | None = None,
        console: Console | None = None,
        host_runner: HostRunner | None = None,
    ):
        self.service_name = service_name
        self.worker = worker
        self.description = description
        self.args = list(args)
        self.environment = dict(environment or {})
        # What the installed descriptor passes back to this program.
        self.service_arguments = list(self.args if service_arguments is None else service_arguments)
        self._manager = manager
        self._env_passthrough = list(env_passthrough)
        self._elevated = elevated
        self.force_supervised = force_supervised
        self.shutdown_timeout = shutdown_timeout
        self.system = system or platform.system()
        self.console = console or Console()
        self._host_runner = host_runner
        self.context: ExecutionContext | None = None
        self.decision: Decision | None = None

    @property
    def manager(self) -> ServiceManager:
        if self._manager is None:
            self._manager = ServiceManager(env_passthrough=self._env_passthrough)
        return self._manager

    async def run(self) -> int:
        """Make the startup decision, act on it, and return the exit code."""
        self.context = detect_execution_context(self.force_supervised, system=self.system)
        logger.debug(f"Execution context: {self.context.value}")

        # Supervisors expect the worker to come up promptly, so no status query here.
        if self.context.treated_as_supervised(self.system):
            return await self._run_host(Decision.RUN_SUPERVISED)

        status = await self._safe_status()
        elevated = status is ServiceStatus.NOT_FOUND and self._elevated()
        decision = decide(self.context, status, elevated, self.system)
        logger.debug(f"Status {status.value}, elevated={elevated} -> {decision.value}")

        if decision is Decision.INSTALL:
            return await self._install()
        if decision is Decision.INFORM_AND_EXIT:
            self.decision = decision
            self.console.print(
                f"Service '{self.service_name}' is already installed ({status.value}). "
                "Use the start/stop/status commands to control it."
            )
            return EXIT_OK
        if decision is Decision.RUN_FOREGROUND:
            self.console.print(
                f"[yellow]Service '{self.service_name}' is not installed and elevation is missing.[/yellow]"
            )
            self.console.print("Re-run as admin/root to install it. Running in the foreground for now.")
        return await self._run_host(decision)

    async def _install(self) -> int:
        self.console.print(f"Service '{self.service_name}' not found. Installing...")
        try:
            await self.manager.install_current_application(
                self.service_name,
                description=self.description,
                arguments=self.service_arguments,
                environment=self.environment,
                auto_start=True,
            )
        except ServiceError as e:
            self.console.print(f"[red]Service installation failed:[/red] {escape(str(e))}")
            if self.context is not ExecutionContext.INTERACTIVE:
                self.decision = Decision.INSTALL
                return EXIT_FAILURE
            self.console.print("Falling back to foreground mode...")
            return await self._run_host(Decision.RUN_FOREGROUND)

        self.decision = Decision.INSTALL
        self.console.print("[green]✓[/green] Installed and started. The service now runs in the background.")
        return EXIT_OK

    async def _safe_status(self) -> ServiceStatus:
        try:
            return await self.manager.status(self.service_name)
        except Exception as e:
            logger.warning(f"Status query for {self.service_name} failed: {e}")
            return ServiceStatus.UNKNOWN

    async def _run_host(self, decision: Decision) -> int:
        self.decision = decision
        host = ServiceHost(
            self.worker,
            self.service_name,
            args=self.args,
            supervised=decision is Decision.RUN_SUPERVISED,
            shutdown_timeout=self.shutdown_timeout,
        )
        if self._host_runner is not None:
            return await self._host_runner(host)
        if host.supervised and self.system == "Windows" and self.context is ExecutionContext.SUPERVISED:
            from autoservice.daemon.windows_host import run_as_windows_service

            # Blocks until the SCM stops the service; the worker loop runs on
            # the dispatcher's thread.
            return run_as_windows_service(host, self.description)
        return await host.run()
