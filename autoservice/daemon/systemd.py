"""Linux systemd backend (system units under /etc/systemd/system)."""

from __future__ import annotations

import os
from collections.abc import Mapping, Sequence
from pathlib import Path

from loguru import logger

from autoservice.daemon.base import ServiceBackend, ServiceInfo, ServiceInstallSpec, ServiceStatus
from autoservice.errors import (
    AlreadyExistsError,
    DescriptorIOError,
    InvalidArgumentError,
    OperationFailedError,
    ServiceError,
)
from autoservice.utils.process import CommandResult

UNIT_DIR = Path("/etc/systemd/system")


# ----------------------------------------------------------------------
# Unit file
# ----------------------------------------------------------------------


def _escape(value: str) -> str:
    if "\n" in value or "\r" in value:
        raise InvalidArgumentError(f"Unit file values cannot contain newlines: {value!r}")
    return value.replace('"', '\\"')


def _quote_if_needed(path: str) -> str:
    return f'"{path}"' if " " in path else path


def build_unit_file(
    service_name: str,
    executable_path: str,
    working_directory: str,
    description: str | None = None,
    environment: Mapping[str, str] | None = None,
    arguments: Sequence[str] = (),
) -> str:
    """Render the ``.service`` unit text for one service."""
    exec_start = _quote_if_needed(executable_path)
    for arg in arguments:
        if not arg.strip():
            continue
        exec_start += " " + _escape(arg)

    lines = [
        "[Unit]",
        f"Description={_escape(description or service_name)}",
        "After=network.target",
        "",
        "[Service]",
        "Type=simple",
        f"ExecStart={exec_start}",
        f"WorkingDirectory={_escape(working_directory)}",
        "Restart=on-failure",
        "RestartSec=5",
    ]
    for key, value in (environment or {}).items():
        lines.append(f'Environment="{_escape(key)}={_escape(value)}"')
    lines += [
        "",
        "[Install]",
        "WantedBy=multi-user.target",
    ]
    return "\n".join(lines) + "\n"


# ----------------------------------------------------------------------
# Status
# ----------------------------------------------------------------------


def parse_is_active(result: CommandResult) -> ServiceStatus:
    """Map ``systemctl is-active <unit>`` output onto ServiceStatus."""
    if result.success:
        return ServiceStatus.RUNNING

    text = result.output.lower()
    if not text:
        return ServiceStatus.NOT_FOUND
    # "inactive" contains "active" and "deactivating" contains "activating",
    # so match on whole tokens.
    tokens = set(text.split())
    if "inactive" in tokens or "deactivating" in tokens:
        return ServiceStatus.STOPPED
    if "failed" in tokens:
        return ServiceStatus.ERROR
    if "activating" in tokens:
        return ServiceStatus.INSTALLING
    if "unknown" in tokens or "not-found" in tokens:
        return ServiceStatus.NOT_FOUND
    return ServiceStatus.UNKNOWN


def _discard(unit_path: Path) -> None:
    try:
        unit_path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Could not remove {unit_path}, it was left behind: {e}")


class SystemdBackend(ServiceBackend):
    """Manages systemd system services through unit files and ``systemctl``."""

    name = "systemd"

    def __init__(self, unit_dir: Path = UNIT_DIR, **kwargs):
        super().__init__(**kwargs)
        self.unit_dir = unit_dir

    def unit_path(self, service_name: str) -> Path:
        return self.unit_dir / f"{service_name}.service"

    # ------------------------------------------------------------------
    # Install / Remove
    # ------------------------------------------------------------------

    async def install(self, spec: ServiceInstallSpec) -> None:
        spec.validate()
        self._require_elevated("Linux systemd service installation")

        unit_path = self.unit_path(spec.service_name)
        if unit_path.exists():
            raise AlreadyExistsError(
                f"Systemd unit already exists for '{spec.service_name}': {unit_path}"
            )

        working_dir = os.path.dirname(os.path.abspath(spec.executable_path)) or "/"
        unit = build_unit_file(
            spec.service_name,
            spec.executable_path,
            working_dir,
            description=spec.description,
            environment=spec.environment,
            arguments=spec.arguments,
        )

        created = False
        try:
            self.unit_dir.mkdir(parents=True, exist_ok=True)
            # "x" makes a concurrent second install lose instead of overwrite.
            with open(unit_path, "x", encoding="utf-8") as f:
                created = True
                f.write(unit)
        except FileExistsError as e:
            raise AlreadyExistsError(
                f"Systemd unit already exists for '{spec.service_name}': {unit_path}"
            ) from e
        except OSError as e:
            if created:
                _discard(unit_path)
            raise DescriptorIOError(f"Unit file could not be written: {unit_path} - {e}") from e
        logger.info(f"Wrote unit file {unit_path}")

        try:
            await self._systemctl_checked("daemon-reload")
            if spec.auto_start:
                await self._systemctl_checked("enable", spec.service_name)
                await self._systemctl_checked("start", spec.service_name)
        except ServiceError:
            await self._rollback(spec.service_name, unit_path)
            raise

    async def remove(self, service_name: str) -> None:
        self._require_elevated("Linux systemd service removal")

        unit_path = self.unit_path(service_name)
        if not unit_path.exists():
            return

        await self._best_effort("systemctl", "stop", service_name)
        await self._best_effort("systemctl", "disable", service_name)

        try:
            unit_path.unlink()
        except OSError as e:
            raise DescriptorIOError(f"Unit file could not be deleted: {unit_path} - {e}") from e

        await self._best_effort("systemctl", "daemon-reload")
        logger.info(f"Removed systemd unit {service_name}")

    # ------------------------------------------------------------------
    # Start / Stop
    # ------------------------------------------------------------------

    async def start(self, service_name: str) -> None:
        self._require_elevated("Linux systemd service start")
        await self._systemctl_checked("start", service_name)

    async def stop(self, service_name: str) -> None:
        self._require_elevated("Linux systemd service stop")
        await self._systemctl_checked("stop", service_name)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def status(self, service_name: str) -> ServiceStatus:
        try:
            result = await self._systemctl("is-active", service_name)
        except ServiceError as e:
            logger.warning(f"systemctl is-active {service_name} failed: {e}")
            return ServiceStatus.UNKNOWN
        status = parse_is_active(result)
        # Recent systemd answers "inactive" for units it has never heard of.
        if status is ServiceStatus.STOPPED and not self.unit_path(service_name).exists():
            return ServiceStatus.NOT_FOUND
        return status

    async def get_info(self, service_name: str) -> ServiceInfo:
        unit_path = self.unit_path(service_name)
        return ServiceInfo(
            name=service_name,
            status=await self.status(service_name),
            service_file=unit_path if unit_path.exists() else None,
            pid=await self._get_pid(service_name),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _get_pid(self, service_name: str) -> int | None:
        """Read MainPID from systemctl show."""
        try:
            result = await self._systemctl("show", "--property=MainPID", service_name)
        except ServiceError:
            return None
        if not result.success:
            return None
        # Output: "MainPID=12345"
        for line in result.stdout.splitlines():
            if line.startswith("MainPID="):
                try:
                    pid = int(line.split("=", 1)[1])
                except ValueError:
                    return None
                return pid if pid > 0 else None
        return None

    async def _rollback(self, service_name: str, unit_path: Path) -> None:
        logger.warning(f"Rolling back partial install of {service_name}")
        await self._best_effort("systemctl", "disable", service_name)
        _discard(unit_path)
        await self._best_effort("systemctl", "daemon-reload")

    async def _systemctl(self, *args: str) -> CommandResult:
        return await self._tool("systemctl", *args)

    async def _systemctl_checked(self, *args: str) -> CommandResult:
        result = await self._systemctl(*args)
        if not result.success:
            raise OperationFailedError(f"systemctl {' '.join(args)} failed", result)
        return result
