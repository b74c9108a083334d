"""Platform-aware service manager facade."""

from __future__ import annotations

import os
import platform
import shutil
import sys
from collections.abc import Mapping, Sequence
from pathlib import Path

from autoservice.daemon.base import ServiceBackend, ServiceInfo, ServiceInstallSpec, ServiceStatus
from autoservice.errors import NotSupportedError, ServiceError

# Always forward these base env vars
_BASE_ENV_KEYS: list[str] = ["PATH", "LANG"]


def create_backend(system: str | None = None, **kwargs) -> ServiceBackend:
    """Return the backend for *system* (defaults to ``platform.system()``)."""
    system = system or platform.system()
    if system == "Windows":
        from autoservice.daemon.windows import ScBackend

        return ScBackend(**kwargs)
    if system == "Linux":
        from autoservice.daemon.systemd import SystemdBackend

        return SystemdBackend(**kwargs)
    if system == "Darwin":
        from autoservice.daemon.launchd import LaunchdBackend

        return LaunchdBackend(**kwargs)
    raise NotSupportedError(f"Service management is not supported on {system}.")


class ServiceManager:
    """Facade: picks the backend for this OS and knows how to install *this* program."""

    def __init__(
        self,
        backend: ServiceBackend | None = None,
        env_passthrough: Sequence[str] = (),
        program: str = "autoservice",
    ):
        self.backend = backend or create_backend()
        self._env_passthrough = list(env_passthrough)
        self._program = program

    # ------------------------------------------------------------------
    # Contract passthrough
    # ------------------------------------------------------------------

    async def install(self, spec: ServiceInstallSpec) -> None:
        await self.backend.install(spec)

    async def remove(self, service_name: str) -> None:
        await self.backend.remove(service_name)

    async def start(self, service_name: str) -> None:
        await self.backend.start(service_name)

    async def stop(self, service_name: str) -> None:
        await self.backend.stop(service_name)

    async def pause(self, service_name: str) -> None:
        await self.backend.pause(service_name)

    async def resume(self, service_name: str) -> None:
        await self.backend.resume(service_name)

    async def status(self, service_name: str) -> ServiceStatus:
        return await self.backend.status(service_name)

    async def get_info(self, service_name: str) -> ServiceInfo:
        return await self.backend.get_info(service_name)

    # ------------------------------------------------------------------
    # Install self
    # ------------------------------------------------------------------

    async def install_current_application(
        self,
        service_name: str,
        description: str | None = None,
        arguments: Sequence[str] = (),
        environment: Mapping[str, str] | None = None,
        auto_start: bool = True,
    ) -> ServiceInstallSpec:
        """Register the running program as *service_name*. Returns the spec used."""
        command = self.resolve_command()
        env = self.collect_env()
        env.update(environment or {})
        spec = ServiceInstallSpec(
            service_name=service_name,
            executable_path=command[0],
            description=description,
            environment=env,
            arguments=[*command[1:], *arguments],
            auto_start=auto_start,
        )
        await self.backend.install(spec)
        return spec

    def resolve_command(self) -> list[str]:
        """Find the best way to re-invoke this program from a service descriptor."""
        # Strategy 1: frozen single-file executable
        if getattr(sys, "frozen", False):
            return [os.path.abspath(sys.executable)]

        # Strategy 2: console script next to the current Python
        bin_dir = Path(sys.executable).parent
        for name in (self._program, f"{self._program}.exe"):
            candidate = bin_dir / name
            if candidate.is_file():
                return [str(candidate)]

        # Strategy 3: shutil.which
        which = shutil.which(self._program)
        if which:
            return [os.path.abspath(which)]

        # Strategy 4: python -m <package>
        return [os.path.abspath(sys.executable), "-m", self._program]

    def collect_env(self) -> dict[str, str]:
        """Build the environment dict to embed in the service descriptor."""
        env: dict[str, str] = {}
        if not self._env_passthrough:
            return env

        for key in _BASE_ENV_KEYS:
            val = os.environ.get(key)
            if val:
                env[key] = val

        for key, val in os.environ.items():
            if any(self._matches(key, pat) for pat in self._env_passthrough):
                env[key] = val
        return env

    @staticmethod
    def _matches(key: str, pattern: str) -> bool:
        """Simple glob match (only supports trailing ``*``)."""
        if pattern.endswith("*"):
            return key.startswith(pattern[:-1])
        return key == pattern


# ----------------------------------------------------------------------
# One-line shortcuts
# ----------------------------------------------------------------------


async def install_self(
    service_name: str,
    description: str | None = None,
    arguments: Sequence[str] = (),
    environment: Mapping[str, str] | None = None,
    auto_start: bool = True,
) -> ServiceInstallSpec:
    return await ServiceManager().install_current_application(
        service_name, description, arguments, environment, auto_start
    )


async def start_service(service_name: str) -> None:
    await ServiceManager().start(service_name)


async def stop_service(service_name: str) -> None:
    await ServiceManager().stop(service_name)


async def remove_service(service_name: str) -> None:
    await ServiceManager().remove(service_name)


async def service_status(service_name: str) -> ServiceStatus:
    """Status of *service_name*; ``UNKNOWN`` on platforms without a backend."""
    try:
        manager = ServiceManager()
    except ServiceError:
        return ServiceStatus.UNKNOWN
    return await manager.status(service_name)
