"""
Tests for execution context detection.
"""

from unittest.mock import patch

import pytest

from autoservice.runtime import context as context_module
from autoservice.runtime.context import (
    ExecutionContext,
    detect_execution_context,
    has_launchd_marker,
    has_tty,
)


class Stream:
    def __init__(self, tty: bool):
        self._tty = tty

    def isatty(self) -> bool:
        return self._tty


class BrokenStream:
    def isatty(self) -> bool:
        raise ValueError("I/O operation on closed file")


TTY = (Stream(True), Stream(False), Stream(False))
NO_TTY = (Stream(False), Stream(False), Stream(False))


def _detect(system: str, environ=None, streams=TTY, force: bool = False) -> ExecutionContext:
    return detect_execution_context(force, system=system, environ=environ or {}, streams=streams)


class TestLinux:
    def test_invocation_id_means_supervised(self):
        assert _detect("Linux", {"INVOCATION_ID": "abc123"}) is ExecutionContext.SUPERVISED

    def test_notify_socket_means_supervised(self):
        assert _detect("Linux", {"NOTIFY_SOCKET": "/run/systemd/notify"}) is ExecutionContext.SUPERVISED

    def test_journal_stream_means_supervised(self):
        assert _detect("Linux", {"JOURNAL_STREAM": "8:12345"}) is ExecutionContext.SUPERVISED

    def test_terminal_is_interactive(self):
        assert _detect("Linux") is ExecutionContext.INTERACTIVE

    def test_no_tty_is_headless(self):
        assert _detect("Linux", streams=NO_TTY) is ExecutionContext.HEADLESS_UNKNOWN

    def test_empty_marker_ignored(self):
        assert _detect("Linux", {"INVOCATION_ID": ""}) is ExecutionContext.INTERACTIVE


class TestDarwin:
    def test_launch_job_label(self):
        assert _detect("Darwin", {"LAUNCH_JOB_LABEL": "demo"}) is ExecutionContext.SUPERVISED

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("com.example.demo", True),
            ("0", False),
            ("application.com.apple.Terminal.1234", False),
            ("", False),
        ],
    )
    def test_xpc_service_name(self, value, expected):
        assert has_launchd_marker({"XPC_SERVICE_NAME": value}) is expected

    def test_systemd_marker_means_nothing_on_darwin(self):
        assert _detect("Darwin", {"INVOCATION_ID": "abc"}) is ExecutionContext.INTERACTIVE


class TestWindows:
    def test_session_zero_is_supervised(self):
        with patch.object(context_module, "windows_session_id", return_value=0):
            assert _detect("Windows") is ExecutionContext.SUPERVISED

    def test_user_session_is_interactive(self):
        with patch.object(context_module, "windows_session_id", return_value=1):
            assert _detect("Windows") is ExecutionContext.INTERACTIVE

    def test_user_session_without_tty_is_headless(self):
        with patch.object(context_module, "windows_session_id", return_value=2):
            assert _detect("Windows", streams=NO_TTY) is ExecutionContext.HEADLESS_UNKNOWN

    def test_session_probe_unavailable(self):
        with patch.object(context_module, "windows_session_id", return_value=None):
            assert _detect("Windows") is ExecutionContext.INTERACTIVE


class TestGeneral:
    @pytest.mark.parametrize("system", ["Linux", "Darwin", "Windows"])
    def test_force_supervised(self, system):
        assert _detect(system, streams=TTY, force=True) is ExecutionContext.SUPERVISED

    def test_tty_probe_failure_defaults_to_interactive(self):
        assert has_tty([BrokenStream()]) is None
        assert _detect("Linux", streams=[BrokenStream()]) is ExecutionContext.INTERACTIVE

    def test_none_streams_skipped(self):
        assert has_tty([None, Stream(True)]) is True

    @pytest.mark.parametrize(
        "ctx,system,expected",
        [
            (ExecutionContext.SUPERVISED, "Windows", True),
            (ExecutionContext.HEADLESS_UNKNOWN, "Linux", True),
            (ExecutionContext.HEADLESS_UNKNOWN, "Darwin", True),
            (ExecutionContext.HEADLESS_UNKNOWN, "Windows", False),
            (ExecutionContext.INTERACTIVE, "Linux", False),
        ],
    )
    def test_treated_as_supervised(self, ctx, system, expected):
        assert ctx.treated_as_supervised(system) is expected
