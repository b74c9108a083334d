"""Error types raised by service backends and the command runner."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from autoservice.utils.process import CommandResult


class ServiceError(RuntimeError):
    """Base class for every service management failure."""


class InvalidArgumentError(ServiceError, ValueError):
    """Bad input to a service operation (empty name, unusable value, ...)."""


class AlreadyExistsError(ServiceError):
    """A service or descriptor with the same name is already registered."""


class ServiceNotFoundError(ServiceError):
    """The named service is not registered."""


class PermissionDeniedError(ServiceError):
    """The operation needs admin/root privileges."""


class NotSupportedError(ServiceError):
    """The native supervisor has no primitive for this operation."""


class OperationFailedError(ServiceError):
    """A native tool exited non-zero. ``result`` holds its captured output."""

    def __init__(self, message: str, result: CommandResult | None = None):
        if result is not None:
            message = f"{message}\n{result}"
        super().__init__(message)
        self.result = result


class DescriptorIOError(ServiceError, OSError):
    """A unit file or plist could not be written or deleted."""


class CommandTimeoutError(ServiceError, TimeoutError):
    """A native tool did not finish within its time bound."""
