"""Work out whether this process was started by a user or by a supervisor."""

from __future__ import annotations

import ctypes
import os
import platform
import sys
from collections.abc import Iterable, Mapping
from enum import Enum

from loguru import logger

# Set by systemd for every process it spawns for a unit.
SYSTEMD_MARKERS = ("INVOCATION_ID", "JOURNAL_STREAM", "NOTIFY_SOCKET")
LAUNCHD_LABEL_VAR = "LAUNCH_JOB_LABEL"
XPC_SERVICE_VAR = "XPC_SERVICE_NAME"


class ExecutionContext(Enum):
    INTERACTIVE = "interactive"
    SUPERVISED = "supervised"
    HEADLESS_UNKNOWN = "headless-unknown"

    def treated_as_supervised(self, system: str | None = None) -> bool:
        """HEADLESS_UNKNOWN counts as supervised on Unix-like systems.

        A piped or redirected shell has no TTY either, so it lands here too;
        that false positive is accepted rather than blocking a real service.
        """
        if self is ExecutionContext.SUPERVISED:
            return True
        if self is ExecutionContext.HEADLESS_UNKNOWN:
            return (system or platform.system()) in ("Linux", "Darwin")
        return False


def detect_execution_context(
    force_supervised: bool = False,
    system: str | None = None,
    environ: Mapping[str, str] | None = None,
    streams: Iterable[object] | None = None,
) -> ExecutionContext:
    """Classify the current process. Reads fresh state on every call."""
    if force_supervised:
        return ExecutionContext.SUPERVISED

    system = system or platform.system()
    environ = os.environ if environ is None else environ

    if system == "Windows":
        # Services run in session 0; interactive logons never do.
        if windows_session_id() == 0:
            return ExecutionContext.SUPERVISED
    elif system == "Linux":
        if has_systemd_marker(environ):
            return ExecutionContext.SUPERVISED
    elif system == "Darwin":
        if has_launchd_marker(environ):
            return ExecutionContext.SUPERVISED

    tty = has_tty(streams)
    if tty is False:
        return ExecutionContext.HEADLESS_UNKNOWN
    return ExecutionContext.INTERACTIVE


def has_systemd_marker(environ: Mapping[str, str]) -> bool:
    return any(environ.get(key) for key in SYSTEMD_MARKERS)


def has_launchd_marker(environ: Mapping[str, str]) -> bool:
    if environ.get(LAUNCHD_LABEL_VAR):
        return True
    # Terminal sessions carry "0" or an "application.<bundle id>" value.
    xpc = environ.get(XPC_SERVICE_VAR, "")
    return bool(xpc) and xpc != "0" and not xpc.startswith("application.")


def has_tty(streams: Iterable[object] | None = None) -> bool | None:
    """True if any standard stream is a terminal, None if that cannot be told."""
    if streams is None:
        streams = (sys.stdin, sys.stdout, sys.stderr)
    try:
        return any(s is not None and s.isatty() for s in streams)  # type: ignore[attr-defined]
    except (AttributeError, ValueError, OSError) as e:
        logger.debug(f"TTY probe failed: {e}")
        return None


def windows_session_id() -> int | None:
    """Terminal-services session of this process, or None off Windows."""
    try:
        session = ctypes.c_ulong()
        ok = ctypes.windll.kernel32.ProcessIdToSessionId(  # type: ignore[attr-defined]
            os.getpid(), ctypes.byref(session)
        )
    except (AttributeError, OSError) as e:
        logger.debug(f"Session id probe failed: {e}")
        return None
    return session.value if ok else None
