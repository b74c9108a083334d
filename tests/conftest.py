"""
Shared test fixtures: a scripted command runner and an in-memory backend.
"""

from pathlib import Path

import pytest

from autoservice.daemon.base import ServiceBackend, ServiceInfo, ServiceInstallSpec, ServiceStatus
from autoservice.errors import AlreadyExistsError
from autoservice.utils.process import CommandResult


class FakeRunner:
    """Stands in for ``run_command``; answers by longest matching argv prefix."""

    def __init__(self):
        self.calls: list[list[str]] = []
        self.kwargs: list[dict] = []
        self._rules: list[tuple[tuple[str, ...], object]] = []

    def on(self, *prefix: str, result: CommandResult | None = None, error: Exception | None = None):
        # a later rule for the same prefix replaces the earlier one
        self._rules = [rule for rule in self._rules if rule[0] != prefix]
        self._rules.append((prefix, error if error is not None else result))
        self._rules.sort(key=lambda rule: len(rule[0]), reverse=True)
        return self

    async def __call__(self, program, args=(), **kwargs) -> CommandResult:
        call = [program, *args]
        self.calls.append(call)
        self.kwargs.append(kwargs)
        for prefix, outcome in self._rules:
            if tuple(call[: len(prefix)]) == prefix:
                if isinstance(outcome, Exception):
                    raise outcome
                return outcome
        return CommandResult(0)

    def called(self, *prefix: str) -> bool:
        return any(tuple(c[: len(prefix)]) == prefix for c in self.calls)


class MemoryBackend(ServiceBackend):
    """Backend that keeps services in a dict; records every call."""

    name = "memory"

    def __init__(self, statuses: dict[str, ServiceStatus] | None = None, **kwargs):
        super().__init__(runner=FakeRunner(), elevated=lambda: True, **kwargs)
        self.statuses = dict(statuses or {})
        self.installed: dict[str, ServiceInstallSpec] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail_install: Exception | None = None
        self.fail_status: Exception | None = None

    async def install(self, spec: ServiceInstallSpec) -> None:
        self.calls.append(("install", spec.service_name))
        if self.fail_install is not None:
            raise self.fail_install
        if spec.service_name in self.statuses:
            raise AlreadyExistsError(spec.service_name)
        self.installed[spec.service_name] = spec
        self.statuses[spec.service_name] = (
            ServiceStatus.RUNNING if spec.auto_start else ServiceStatus.STOPPED
        )

    async def remove(self, service_name: str) -> None:
        self.calls.append(("remove", service_name))
        self.statuses.pop(service_name, None)

    async def start(self, service_name: str) -> None:
        self.calls.append(("start", service_name))
        self.statuses[service_name] = ServiceStatus.RUNNING

    async def stop(self, service_name: str) -> None:
        self.calls.append(("stop", service_name))
        self.statuses[service_name] = ServiceStatus.STOPPED

    async def status(self, service_name: str) -> ServiceStatus:
        self.calls.append(("status", service_name))
        if self.fail_status is not None:
            raise self.fail_status
        return self.statuses.get(service_name, ServiceStatus.NOT_FOUND)

    async def get_info(self, service_name: str) -> ServiceInfo:
        self.calls.append(("get_info", service_name))
        status = self.statuses.get(service_name, ServiceStatus.NOT_FOUND)
        pid = 4242 if status is ServiceStatus.RUNNING else None
        return ServiceInfo(name=service_name, status=status, pid=pid)


@pytest.fixture
def runner() -> FakeRunner:
    """Return a fresh scripted command runner."""
    return FakeRunner()


@pytest.fixture
def memory_backend() -> MemoryBackend:
    return MemoryBackend()


@pytest.fixture
def demo_spec() -> ServiceInstallSpec:
    return ServiceInstallSpec(
        service_name="demo",
        executable_path="/usr/local/bin/demo",
        description="Demo service",
        arguments=["--level=3"],
    )


INVALID_SPECS = [("", "/x"), ("demo", ""), ("demo", "  ")]


@pytest.fixture
def unit_dir(tmp_path: Path) -> Path:
    """Return a temporary directory standing in for /etc/systemd/system."""
    path = tmp_path / "systemd"
    path.mkdir()
    return path
