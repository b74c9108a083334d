"""Windows Service Control Manager backend (driven through ``sc.exe``).

There is no descriptor file on Windows: the SCM database keyed by service
name is the only state.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence

from loguru import logger

from autoservice.daemon.base import ServiceBackend, ServiceInfo, ServiceInstallSpec, ServiceStatus
from autoservice.errors import (
    AlreadyExistsError,
    OperationFailedError,
    ServiceError,
    ServiceNotFoundError,
)
from autoservice.utils.process import EXISTS_TIMEOUT, CommandResult

SC = "sc"
REG = "reg"
SERVICES_KEY = r"HKLM\SYSTEM\CurrentControlSet\Services"

# Win32 error codes reported by sc.exe
ERROR_SERVICE_DOES_NOT_EXIST = 1060
ERROR_SERVICE_EXISTS = 1073

STATE_MAP: dict[str, ServiceStatus] = {
    "STOPPED": ServiceStatus.STOPPED,
    "RUNNING": ServiceStatus.RUNNING,
    "PAUSED": ServiceStatus.PAUSED,
    "START_PENDING": ServiceStatus.INSTALLING,
    "STOP_PENDING": ServiceStatus.STOPPED,
    "PAUSE_PENDING": ServiceStatus.PAUSED,
    "CONTINUE_PENDING": ServiceStatus.RUNNING,
}

_PID_RE = re.compile(r"^\s*PID\s*:\s*(\d+)", re.MULTILINE)


# ----------------------------------------------------------------------
# Command line
# ----------------------------------------------------------------------


def quote_argument(arg: str) -> str:
    """Quote one argument the way ``CommandLineToArgvW`` reads it back.

    Inside quotes, a run of backslashes is doubled when a ``"`` follows it,
    including the closing quote, so ``C:\\Some Dir\\`` stays one argument.
    """
    if not arg:
        return '""'
    if " " not in arg and '"' not in arg:
        return arg

    out = []
    backslashes = 0
    for ch in arg:
        if ch == "\\":
            backslashes += 1
            continue
        if ch == '"':
            out.append("\\" * (backslashes * 2 + 1) + '"')
        else:
            out.append("\\" * backslashes + ch)
        backslashes = 0
    out.append("\\" * (backslashes * 2))
    return '"' + "".join(out) + '"'


def build_bin_path(executable_path: str, arguments: Sequence[str] = ()) -> str:
    """Build the ``binPath=`` value: quoted executable followed by arguments."""
    segment = " ".join(quote_argument(a) for a in arguments)
    if not segment:
        return f'"{executable_path}"'
    return f'"{executable_path}" {segment}'


def build_environment_value(environment: Mapping[str, str]) -> str:
    """REG_MULTI_SZ payload for ``reg add``; ``\\0`` separates entries."""
    return "\\0".join(f"{k}={v}" for k, v in environment.items())


# ----------------------------------------------------------------------
# Status
# ----------------------------------------------------------------------


def normalize_sc_state(token: str) -> ServiceStatus:
    return STATE_MAP.get(token.strip().upper(), ServiceStatus.UNKNOWN)


def _is_missing(result: CommandResult) -> bool:
    return (
        result.exit_code == ERROR_SERVICE_DOES_NOT_EXIST
        or str(ERROR_SERVICE_DOES_NOT_EXIST) in result.output
    )


def parse_sc_query(result: CommandResult) -> ServiceStatus:
    """Map ``sc query <name>`` output onto ServiceStatus.

    The interesting line looks like ``STATE : 4  RUNNING``.
    """
    if not result.success:
        if _is_missing(result):
            return ServiceStatus.NOT_FOUND
        return ServiceStatus.ERROR

    for line in result.stdout.splitlines():
        line = line.strip()
        if line.upper().startswith("STATE"):
            parts = line.split()
            return normalize_sc_state(parts[-1]) if parts else ServiceStatus.UNKNOWN
    return ServiceStatus.UNKNOWN


class ScBackend(ServiceBackend):
    """Manages Windows services with ``sc create/start/stop/...``."""

    name = "windows-scm"

    # ------------------------------------------------------------------
    # Install / Remove
    # ------------------------------------------------------------------

    async def install(self, spec: ServiceInstallSpec) -> None:
        spec.validate()
        self._require_elevated("Windows service installation")

        if await self._exists(spec.service_name):
            raise AlreadyExistsError(f"Service '{spec.service_name}' already exists.")

        bin_path = build_bin_path(spec.executable_path, spec.arguments)
        # sc wants a space after "binPath=" and "start=", so they are separate tokens
        create = await self._sc(
            "create",
            spec.service_name,
            "binPath=",
            bin_path,
            "start=",
            "auto" if spec.auto_start else "demand",
        )
        if not create.success:
            if create.exit_code == ERROR_SERVICE_EXISTS:
                raise AlreadyExistsError(f"Service '{spec.service_name}' already exists.")
            raise OperationFailedError("Service could not be created", create)
        logger.info(f"Registered Windows service {spec.service_name}")

        try:
            if spec.description:
                desc = await self._sc("description", spec.service_name, spec.description)
                if not desc.success:
                    raise OperationFailedError("Service description could not be set", desc)
            if spec.environment:
                await self._set_environment(spec.service_name, spec.environment)
        except ServiceError:
            await self._rollback(spec.service_name)
            raise

        if spec.auto_start:
            start = await self._best_effort(SC, "start", spec.service_name)
            if start is None or not start.success:
                # Registration stands; the operator can start it later.
                logger.warning(f"Service {spec.service_name} installed but did not start")

    async def remove(self, service_name: str) -> None:
        self._require_elevated("Windows service removal")

        if not await self._exists(service_name):
            return

        await self._best_effort(SC, "stop", service_name)

        delete = await self._sc("delete", service_name)
        if not delete.success:
            raise OperationFailedError(f"Service '{service_name}' could not be deleted", delete)
        logger.info(f"Removed Windows service {service_name}")

    # ------------------------------------------------------------------
    # Start / Stop / Pause / Resume
    # ------------------------------------------------------------------

    async def start(self, service_name: str) -> None:
        await self._control("start", service_name, "Windows service start")

    async def stop(self, service_name: str) -> None:
        await self._control("stop", service_name, "Windows service stop")

    async def pause(self, service_name: str) -> None:
        await self._control("pause", service_name, "Windows service pause")

    async def resume(self, service_name: str) -> None:
        await self._control("continue", service_name, "Windows service resume")

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def status(self, service_name: str) -> ServiceStatus:
        try:
            result = await self._sc("query", service_name)
        except ServiceError as e:
            logger.warning(f"sc query {service_name} failed: {e}")
            return ServiceStatus.UNKNOWN
        return parse_sc_query(result)

    async def get_info(self, service_name: str) -> ServiceInfo:
        pid = None
        try:
            result = await self._sc("queryex", service_name)
        except ServiceError as e:
            logger.warning(f"sc queryex {service_name} failed: {e}")
            status = ServiceStatus.UNKNOWN
        else:
            status = parse_sc_query(result)
            match = _PID_RE.search(result.stdout)
            if match and int(match.group(1)) > 0:
                pid = int(match.group(1))
        return ServiceInfo(name=service_name, status=status, pid=pid)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _exists(self, service_name: str) -> bool:
        result = await self._tool(SC, "query", service_name, timeout=EXISTS_TIMEOUT)
        if not result.success and _is_missing(result):
            return False
        return result.success

    async def _set_environment(self, service_name: str, environment: Mapping[str, str]) -> None:
        result = await self._tool(
            REG,
            "add",
            f"{SERVICES_KEY}\\{service_name}",
            "/v",
            "Environment",
            "/t",
            "REG_MULTI_SZ",
            "/d",
            build_environment_value(environment),
            "/f",
        )
        if not result.success:
            raise OperationFailedError("Service environment could not be set", result)

    async def _rollback(self, service_name: str) -> None:
        logger.warning(f"Rolling back partial install of {service_name}")
        result = await self._best_effort(SC, "delete", service_name)
        if result is None or not result.success:
            logger.warning(f"Rollback of {service_name} incomplete: service may still be registered")

    async def _control(self, verb: str, service_name: str, operation: str) -> None:
        self._require_elevated(operation)
        result = await self._sc(verb, service_name)
        if not result.success:
            if _is_missing(result):
                raise ServiceNotFoundError(f"Service '{service_name}' is not installed.")
            raise OperationFailedError(f"sc {verb} {service_name} failed", result)

    async def _sc(self, *args: str) -> CommandResult:
        return await self._tool(SC, *args)
