"""
Tests for CLI argv normalization, service control commands and auto mode.
"""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from loguru import logger
from typer.testing import CliRunner

from autoservice.cli import commands
from autoservice.cli.commands import app, normalize_argv
from autoservice.daemon.base import ServiceStatus
from autoservice.daemon.manager import ServiceManager
from autoservice.errors import NotSupportedError, PermissionDeniedError
from tests.conftest import MemoryBackend


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path: Path) -> Path:
    """Point the CLI at a config file that does not exist yet."""
    path = tmp_path / "config.json"
    monkeypatch.setenv("AUTOSERVICE_CONFIG", str(path))
    yield path
    # The CLI re-enables library logging with a sink bound to the runner's stderr.
    logger.remove()
    logger.disable("autoservice")


def _invoke(argv: list[str], backend: MemoryBackend | None = None):
    manager = ServiceManager(backend=backend or MemoryBackend())
    with patch.object(commands, "_get_manager", return_value=manager):
        return CliRunner().invoke(app, normalize_argv(argv))


class TestNormalizeArgv:
    """Tests for free-form argument handling."""

    @pytest.mark.parametrize(
        "argv,expected",
        [
            ([], ["auto"]),
            (["install", "name=demo", "--level=3"], ["install", "--name", "demo", "--", "--level=3"]),
            (["name=demo", "status"], ["status", "--name", "demo"]),
            (["START"], ["start"]),
            (["--verbose", "stop", "extra"], ["--verbose", "stop"]),
            (["name=demo", "--supervised", "-x"], ["auto", "--name", "demo", "--supervised", "--", "-x"]),
            (["install", "start"], ["install", "--", "start"]),
            (["--", "install"], ["auto", "--", "install"]),
            (["install", "--supervised"], ["install", "--", "--supervised"]),
            (["name=", "status"], ["status"]),
        ],
    )
    def test_normalize(self, argv, expected):
        assert normalize_argv(argv) == expected

    def test_main_passes_normalized_args(self):
        with patch.object(commands, "app") as app_mock:
            commands.main(["name=demo", "status"])
        app_mock.assert_called_once_with(args=["status", "--name", "demo"], prog_name="autoservice")


class TestCLIGlobal:
    def test_version(self):
        result = CliRunner().invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "autoservice v0.1.0" in result.output

    def test_invalid_config(self, isolated_config: Path):
        isolated_config.write_text('{"host": {"shutdown_timeout": "soon"}}')
        result = _invoke(["status"])
        assert result.exit_code == 2
        assert "Invalid config" in result.output


class TestServiceControl:
    """Tests for install/remove/start/stop/pause/resume/status."""

    def test_install(self):
        backend = MemoryBackend()
        result = _invoke(["install", "name=demo", "--level=3"], backend)

        assert result.exit_code == 0
        assert "Service 'demo' installed" in result.output
        spec = backend.installed["demo"]
        assert spec.arguments[-2:] == ("name=demo", "--level=3")
        assert spec.auto_start

    def test_install_failure_exits_2(self):
        backend = MemoryBackend()
        backend.fail_install = PermissionDeniedError("'install' requires elevated (admin/root) privileges.")

        result = _invoke(["install", "name=demo"], backend)

        assert result.exit_code == 2
        assert "requires elevated" in result.output

    def test_install_uses_config_defaults(self, isolated_config: Path):
        isolated_config.write_text(
            '{"service": {"name": "cfgsvc", "arguments": ["-q"], "auto_start": false}}'
        )
        backend = MemoryBackend()

        result = _invoke(["install"], backend)

        assert result.exit_code == 0
        spec = backend.installed["cfgsvc"]
        assert spec.arguments[-2:] == ("name=cfgsvc", "-q")
        assert not spec.auto_start
        assert "autoservice start name=cfgsvc" in result.output

    @pytest.mark.parametrize(
        "command,call",
        [("start", "start"), ("stop", "stop"), ("remove", "remove"), ("uninstall", "remove")],
    )
    def test_control(self, command, call):
        backend = MemoryBackend({"demo": ServiceStatus.STOPPED})
        result = _invoke([command, "name=demo"], backend)
        assert result.exit_code == 0
        assert (call, "demo") in backend.calls

    def test_pause_not_supported(self):
        result = _invoke(["pause", "name=demo"])
        assert result.exit_code == 2
        assert "not supported" in result.output

    def test_unsupported_platform(self):
        with patch.object(commands, "_get_manager", side_effect=NotSupportedError("Plan9 is not supported")):
            result = CliRunner().invoke(app, normalize_argv(["start", "name=demo"]))
        assert result.exit_code == 2
        assert "Plan9" in result.output

    def test_status_running(self):
        result = _invoke(["status", "name=demo"], MemoryBackend({"demo": ServiceStatus.RUNNING}))
        assert result.exit_code == 0
        assert "running" in result.output
        assert "4242" in result.output
        assert "memory" in result.output

    def test_status_not_installed(self):
        result = _invoke(["status", "name=demo"])
        assert result.exit_code == 0
        assert "not-found" in result.output


class TestAutoMode:
    """Tests for the default command."""

    def _patched_runner(self, exit_code: int = 0) -> MagicMock:
        runner_cls = MagicMock()
        runner_cls.return_value.run = AsyncMock(return_value=exit_code)
        return runner_cls

    def test_builds_runner(self):
        runner_cls = self._patched_runner()
        with patch.object(commands, "AutoServiceRunner", runner_cls):
            result = CliRunner().invoke(app, normalize_argv(["name=demo", "--supervised", "-x"]))

        assert result.exit_code == 0
        args, kwargs = runner_cls.call_args
        assert args[0] == "demo"
        assert kwargs["args"] == ["-x"]
        assert kwargs["service_arguments"] == ["name=demo", "-x"]
        assert kwargs["force_supervised"] is True
        assert kwargs["shutdown_timeout"] == 15.0

    def test_exit_code_propagates(self):
        runner_cls = self._patched_runner(exit_code=2)
        with patch.object(commands, "AutoServiceRunner", runner_cls):
            result = CliRunner().invoke(app, normalize_argv([]))
        assert result.exit_code == 2
        assert runner_cls.call_args.args[0] == "autoservice"
