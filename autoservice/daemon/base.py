"""Abstract base for OS service backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType

from loguru import logger

from autoservice.errors import InvalidArgumentError, NotSupportedError, ServiceError
from autoservice.utils.privilege import ensure_elevated, is_elevated
from autoservice.utils.process import CommandResult, CommandRunner, run_command


class ServiceStatus(Enum):
    """Status vocabulary shared by every backend."""

    UNKNOWN = "unknown"
    NOT_FOUND = "not-found"
    INSTALLING = "installing"
    STOPPED = "stopped"
    RUNNING = "running"
    PAUSED = "paused"
    ERROR = "error"


@dataclass(frozen=True)
class ServiceInstallSpec:
    """Everything a backend needs to register a service."""

    service_name: str
    executable_path: str
    description: str | None = None
    environment: Mapping[str, str] = field(default_factory=dict)
    arguments: Sequence[str] = ()
    auto_start: bool = True

    def __post_init__(self):
        object.__setattr__(self, "environment", MappingProxyType(dict(self.environment)))
        object.__setattr__(self, "arguments", tuple(self.arguments))

    def validate(self) -> None:
        if not self.service_name or not self.service_name.strip():
            raise InvalidArgumentError("Service name cannot be empty.")
        if not self.executable_path or not self.executable_path.strip():
            raise InvalidArgumentError("Executable path cannot be empty.")


@dataclass
class ServiceInfo:
    """Status snapshot of one service."""

    name: str
    status: ServiceStatus = ServiceStatus.UNKNOWN
    service_file: Path | None = None
    pid: int | None = None

    @property
    def installed(self) -> bool:
        return self.status is not ServiceStatus.NOT_FOUND

    @property
    def running(self) -> bool:
        return self.status is ServiceStatus.RUNNING


class ServiceBackend(ABC):
    """ABC that each OS-specific backend implements.

    Native tools run through *runner* and privilege checks go through
    *elevated*; both are injectable so backends can be driven without
    touching the real supervisor.
    """

    name: str = "base"

    def __init__(
        self,
        runner: CommandRunner | None = None,
        elevated=is_elevated,
    ):
        self._run: CommandRunner = runner or run_command
        self._is_elevated = elevated

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @abstractmethod
    async def install(self, spec: ServiceInstallSpec) -> None:
        """Write the descriptor and register it; start it if ``auto_start``."""

    @abstractmethod
    async def remove(self, service_name: str) -> None:
        """Stop (best effort), unregister and delete the descriptor. No-op if absent."""

    @abstractmethod
    async def start(self, service_name: str) -> None:
        """Start the service via the OS service manager."""

    @abstractmethod
    async def stop(self, service_name: str) -> None:
        """Stop the service via the OS service manager."""

    async def pause(self, service_name: str) -> None:
        raise NotSupportedError(f"Pause is not supported by {self.name}.")

    async def resume(self, service_name: str) -> None:
        raise NotSupportedError(f"Resume is not supported by {self.name}.")

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @abstractmethod
    async def status(self, service_name: str) -> ServiceStatus:
        """Return the normalized status. Never raises for a missing service."""

    @abstractmethod
    async def get_info(self, service_name: str) -> ServiceInfo:
        """Return a status snapshot including descriptor path and pid."""

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_elevated(self, operation: str) -> None:
        ensure_elevated(operation, self._is_elevated)

    async def _tool(self, program: str, *args: str, **kwargs) -> CommandResult:
        return await self._run(program, list(args), **kwargs)

    async def _best_effort(self, program: str, *args: str) -> CommandResult | None:
        """Run a step whose failure must not abort the caller; log it instead."""
        try:
            result = await self._tool(program, *args)
        except ServiceError as e:
            logger.debug(f"{program} {' '.join(args)} ignored: {e}")
            return None
        if not result.success:
            logger.debug(f"{program} {' '.join(args)} exited {result.exit_code} (ignored)")
        return result
