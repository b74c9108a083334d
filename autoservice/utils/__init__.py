"""Process and privilege helpers."""

from autoservice.utils.privilege import ensure_elevated, is_elevated
from autoservice.utils.process import CommandResult, run_command

__all__ = ["CommandResult", "ensure_elevated", "is_elevated", "run_command"]
