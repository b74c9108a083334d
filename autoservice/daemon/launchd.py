"""macOS launchd backend (LaunchDaemons / LaunchAgents)."""

from __future__ import annotations

import os
import re
from collections.abc import Mapping, Sequence
from pathlib import Path

from loguru import logger

from autoservice.daemon.base import ServiceBackend, ServiceInfo, ServiceInstallSpec, ServiceStatus
from autoservice.errors import (
    AlreadyExistsError,
    DescriptorIOError,
    OperationFailedError,
    ServiceError,
)
from autoservice.utils.process import CommandResult

SYSTEM_DAEMONS_DIR = Path("/Library/LaunchDaemons")
USER_AGENTS_DIR = Path.home() / "Library" / "LaunchAgents"

_PID_RE = re.compile(r'"PID"\s*=\s*(\d+)\s*;')
_EXIT_RE = re.compile(r'"LastExitStatus"\s*=\s*(-?\d+)\s*;')
_STATE_RUNNING_RE = re.compile(r"\bstate\s*=\s*running\b")


# ----------------------------------------------------------------------
# Plist
# ----------------------------------------------------------------------


def xml_escape(value: str) -> str:
    return (
        value.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&apos;")
    )


def build_plist(
    label: str,
    executable_path: str,
    working_directory: str,
    description: str | None = None,
    environment: Mapping[str, str] | None = None,
    arguments: Sequence[str] = (),
    run_at_load: bool = True,
    stdout_path: str | None = None,
    stderr_path: str | None = None,
) -> str:
    """Render the launchd property list XML for one job."""
    stdout_path = stdout_path or f"/var/log/{label}.out.log"
    stderr_path = stderr_path or f"/var/log/{label}.err.log"

    def string(value: str) -> str:
        return f"<string>{xml_escape(value)}</string>"

    program = "\n".join(f"        {string(a)}" for a in [executable_path, *arguments])

    env_section = ""
    if environment:
        pairs = "\n".join(
            f"        <key>{xml_escape(k)}</key>{string(v)}" for k, v in environment.items()
        )
        env_section = f"    <key>EnvironmentVariables</key>\n    <dict>\n{pairs}\n    </dict>\n"

    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<!DOCTYPE plist PUBLIC "-//Apple//DTD PLIST 1.0//EN" '
        '"http://www.apple.com/DTDs/PropertyList-1.0.dtd">\n'
        '<plist version="1.0">\n'
        "<dict>\n"
        "    <key>Label</key>\n"
        f"    {string(label)}\n"
        "    <key>ProgramArguments</key>\n"
        "    <array>\n"
        f"{program}\n"
        "    </array>\n"
        "    <key>WorkingDirectory</key>\n"
        f"    {string(working_directory)}\n"
        "    <key>RunAtLoad</key>\n"
        f"    <{'true' if run_at_load else 'false'}/>\n"
        "    <key>KeepAlive</key>\n"
        "    <dict>\n"
        "        <key>SuccessfulExit</key>\n"
        "        <false/>\n"
        "    </dict>\n"
        f"{env_section}"
        "    <key>StandardOutPath</key>\n"
        f"    {string(stdout_path)}\n"
        "    <key>StandardErrorPath</key>\n"
        f"    {string(stderr_path)}\n"
        "    <key>ProcessType</key>\n"
        "    <string>Background</string>\n"
        "    <key>Comment</key>\n"
        f"    {string(description or label)}\n"
        "</dict>\n"
        "</plist>\n"
    )


# ----------------------------------------------------------------------
# Status
# ----------------------------------------------------------------------


def parse_launchctl_list(result: CommandResult) -> ServiceStatus:
    """Map ``launchctl list <label>`` output onto ServiceStatus.

    Output looks like::

        {
            "Label" = "demo";
            "LastExitStatus" = 0;
            "PID" = 1234;
        };
    """
    if not result.success:
        text = result.output.lower()
        if "could not find" in text or "no such process" in text:
            return ServiceStatus.NOT_FOUND
        return ServiceStatus.ERROR

    if parse_launchctl_pid(result.stdout) is not None:
        return ServiceStatus.RUNNING
    if _STATE_RUNNING_RE.search(result.stdout):
        return ServiceStatus.RUNNING

    match = _EXIT_RE.search(result.stdout)
    if match:
        return ServiceStatus.STOPPED if int(match.group(1)) == 0 else ServiceStatus.ERROR
    return ServiceStatus.UNKNOWN


def parse_launchctl_pid(text: str) -> int | None:
    match = _PID_RE.search(text)
    if not match:
        return None
    pid = int(match.group(1))
    return pid if pid > 0 else None


class LaunchdBackend(ServiceBackend):
    """Manages launchd jobs through plist files and ``launchctl``.

    Elevated installs go to LaunchDaemons (system level); remove and lookup
    also consider the per-user LaunchAgents directory.
    """

    name = "launchd"

    def __init__(
        self,
        system_dir: Path = SYSTEM_DAEMONS_DIR,
        user_dir: Path = USER_AGENTS_DIR,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.system_dir = system_dir
        self.user_dir = user_dir

    def plist_path(self, service_name: str, system_level: bool = True) -> Path:
        base = self.system_dir if system_level else self.user_dir
        return base / f"{service_name}.plist"

    def find_plist(self, service_name: str) -> Path | None:
        for system_level in (True, False):
            path = self.plist_path(service_name, system_level)
            if path.exists():
                return path
        return None

    # ------------------------------------------------------------------
    # Install / Remove
    # ------------------------------------------------------------------

    async def install(self, spec: ServiceInstallSpec) -> None:
        spec.validate()
        self._require_elevated("macOS launchd service installation")

        existing = self.find_plist(spec.service_name)
        if existing is not None:
            raise AlreadyExistsError(f"Plist already exists for '{spec.service_name}': {existing}")

        plist_path = self.plist_path(spec.service_name, system_level=self._is_elevated())
        working_dir = os.path.dirname(os.path.abspath(spec.executable_path)) or "/"
        content = build_plist(
            label=spec.service_name,
            executable_path=spec.executable_path,
            working_directory=working_dir,
            description=spec.description,
            environment=spec.environment,
            arguments=spec.arguments,
            run_at_load=spec.auto_start,
        )

        created = False
        try:
            plist_path.parent.mkdir(parents=True, exist_ok=True)
            with open(plist_path, "x", encoding="utf-8") as f:
                created = True
                f.write(content)
            # launchd refuses group/world-writable job files
            os.chmod(plist_path, 0o644)
        except FileExistsError as e:
            raise AlreadyExistsError(
                f"Plist already exists for '{spec.service_name}': {plist_path}"
            ) from e
        except OSError as e:
            if created:
                self._discard(plist_path)
            raise DescriptorIOError(f"Plist file could not be written: {plist_path} - {e}") from e
        logger.info(f"Wrote plist {plist_path}")

        try:
            load = await self._launchctl("load", str(plist_path))
        except ServiceError:
            self._discard(plist_path)
            raise
        if not load.success:
            self._discard(plist_path)
            raise OperationFailedError(f"launchctl load {plist_path} failed", load)

        if spec.auto_start:
            # RunAtLoad already starts it; an explicit start is harmless
            await self._best_effort("launchctl", "start", spec.service_name)

    async def remove(self, service_name: str) -> None:
        plist_path = self.find_plist(service_name)
        if plist_path is None:
            return

        await self._best_effort("launchctl", "stop", service_name)
        await self._best_effort("launchctl", "unload", str(plist_path))

        try:
            plist_path.unlink()
        except OSError as e:
            raise DescriptorIOError(f"Plist could not be deleted: {plist_path} - {e}") from e
        logger.info(f"Removed launchd job {service_name}")

    # ------------------------------------------------------------------
    # Start / Stop
    # ------------------------------------------------------------------

    async def start(self, service_name: str) -> None:
        result = await self._launchctl("start", service_name)
        if not result.success:
            raise OperationFailedError(f"Service '{service_name}' could not be started", result)

    async def stop(self, service_name: str) -> None:
        result = await self._launchctl("stop", service_name)
        if not result.success:
            raise OperationFailedError(f"Service '{service_name}' could not be stopped", result)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def status(self, service_name: str) -> ServiceStatus:
        try:
            result = await self._launchctl("list", service_name)
        except ServiceError as e:
            logger.warning(f"launchctl list {service_name} failed: {e}")
            return ServiceStatus.UNKNOWN
        return parse_launchctl_list(result)

    async def get_info(self, service_name: str) -> ServiceInfo:
        pid = None
        try:
            result = await self._launchctl("list", service_name)
        except ServiceError as e:
            logger.warning(f"launchctl list {service_name} failed: {e}")
            status = ServiceStatus.UNKNOWN
        else:
            status = parse_launchctl_list(result)
            if result.success:
                pid = parse_launchctl_pid(result.stdout)
        return ServiceInfo(
            name=service_name,
            status=status,
            service_file=self.find_plist(service_name),
            pid=pid,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _discard(self, plist_path: Path) -> None:
        try:
            plist_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not remove {plist_path}, it was left behind: {e}")

    async def _launchctl(self, *args: str) -> CommandResult:
        """Run ``launchctl <verb> ...``."""
        return await self._tool("launchctl", *args)
