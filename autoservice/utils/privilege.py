"""Admin/root detection."""

from __future__ import annotations

import ctypes
import os
import platform
from collections.abc import Callable

from autoservice.errors import PermissionDeniedError


def is_elevated() -> bool:
    """Return True when the process holds admin (Windows) or root (Unix) rights."""
    if platform.system() == "Windows":
        try:
            return bool(ctypes.windll.shell32.IsUserAnAdmin())  # type: ignore[attr-defined]
        except (AttributeError, OSError):
            return False
    geteuid = getattr(os, "geteuid", None)
    if geteuid is None:
        return False
    return geteuid() == 0


def ensure_elevated(operation: str, check: Callable[[], bool] = is_elevated) -> None:
    if not check():
        raise PermissionDeniedError(f"'{operation}' requires elevated (admin/root) privileges.")
