"""Run native service tools (sc, systemctl, launchctl) as child processes."""

from __future__ import annotations

import asyncio
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Protocol

import psutil
from loguru import logger

from autoservice.errors import CommandTimeoutError, OperationFailedError

DEFAULT_TIMEOUT = 60.0
EXISTS_TIMEOUT = 15.0


@dataclass(frozen=True)
class CommandResult:
    """Exit code and captured output of one native tool invocation."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        """stdout and stderr joined, for text matching."""
        return f"{self.stdout} {self.stderr}".strip()

    def __str__(self) -> str:
        return f"ExitCode={self.exit_code}\nSTDOUT:\n{self.stdout}\nSTDERR:\n{self.stderr}"


class CommandRunner(Protocol):
    async def __call__(
        self,
        program: str,
        args: Sequence[str] = (),
        *,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> CommandResult: ...


async def run_command(
    program: str,
    args: Sequence[str] = (),
    *,
    timeout: float = DEFAULT_TIMEOUT,
    cwd: str | None = None,
    env: Mapping[str, str] | None = None,
) -> CommandResult:
    """Run ``program args...`` and capture its output.

    Raises ``CommandTimeoutError`` when *timeout* seconds pass first. If the
    calling task is cancelled the child is killed and the cancellation
    propagates. In both cases the whole process tree is terminated.
    """
    child_env = None
    if env:
        child_env = {**os.environ, **env}

    logger.debug(f"exec: {program} {' '.join(args)}")
    try:
        proc = await asyncio.create_subprocess_exec(
            program,
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            stdin=asyncio.subprocess.DEVNULL,
            cwd=cwd,
            env=child_env,
        )
    except OSError as e:
        raise OperationFailedError(f"Could not start {program}: {e}") from e

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        await _kill_tree(proc)
        raise CommandTimeoutError(f"Command timed out after {timeout:g}s: {program}") from None
    except asyncio.CancelledError:
        await _kill_tree(proc)
        raise

    return CommandResult(
        exit_code=proc.returncode if proc.returncode is not None else -1,
        stdout=_decode(stdout).rstrip(),
        stderr=_decode(stderr).rstrip(),
    )


def _decode(data: bytes | None) -> str:
    if not data:
        return ""
    return data.decode("utf-8", errors="replace")


async def _kill_tree(proc: asyncio.subprocess.Process) -> None:
    """Kill *proc* and every descendant, then reap it."""
    if proc.returncode is not None:
        return
    try:
        parent = psutil.Process(proc.pid)
        children = parent.children(recursive=True)
    except psutil.NoSuchProcess:
        children = []

    for child in children:
        try:
            child.kill()
        except psutil.NoSuchProcess:
            pass
    try:
        proc.kill()
    except ProcessLookupError:
        pass

    try:
        await asyncio.wait_for(proc.wait(), timeout=5.0)
    except asyncio.TimeoutError:
        logger.warning(f"Process {proc.pid} did not exit after kill")
