"""Generic worker host shared by foreground and supervised runs."""

from __future__ import annotations

import asyncio
import os
import signal
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field

from loguru import logger

DEFAULT_SHUTDOWN_TIMEOUT = 15.0


@dataclass
class HostContext:
    """What a hosted worker gets to see."""

    service_name: str
    args: list[str] = field(default_factory=list)
    supervised: bool = False
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    paused: bool = False

    @property
    def stopping(self) -> bool:
        return self.stop_event.is_set()

    async def wait_stopped(self, timeout: float | None = None) -> bool:
        """Sleep until stop is requested or *timeout* passes. Returns True if stopping."""
        try:
            await asyncio.wait_for(self.stop_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True


Worker = Callable[[HostContext], Awaitable[None]]


class ServiceHost:
    """Runs one worker until a stop signal, then shuts it down in order.

    Shutdown is: set the stop event, give the worker ``shutdown_timeout``
    seconds to return on its own, then cancel it.
    """

    def __init__(
        self,
        worker: Worker,
        service_name: str,
        args: Sequence[str] = (),
        supervised: bool = False,
        shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT,
    ):
        self.worker = worker
        self.service_name = service_name
        self.args = list(args)
        self.supervised = supervised
        self.shutdown_timeout = shutdown_timeout
        self.context: HostContext | None = None

    async def run(
        self,
        stop_event: asyncio.Event | None = None,
        handle_signals: bool = True,
    ) -> int:
        """Run the worker until stopped. Returns the process exit code."""
        ctx = HostContext(
            service_name=self.service_name,
            args=self.args,
            supervised=self.supervised,
            stop_event=stop_event or asyncio.Event(),
        )
        self.context = ctx
        loop = asyncio.get_running_loop()
        installed, previous = [], {}
        if handle_signals:
            installed, previous = self._install_signal_handlers(loop, ctx)

        mode = "service" if self.supervised else "foreground"
        logger.info(f"'{self.service_name}' run loop starting ({mode}, pid={os.getpid()})")

        worker_task = asyncio.create_task(self.worker(ctx), name=f"{self.service_name}-worker")
        stop_task = asyncio.create_task(ctx.stop_event.wait())
        exit_code = 0
        try:
            await asyncio.wait({worker_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
            if worker_task.done():
                exit_code = self._worker_exit_code(worker_task)
            else:
                logger.info(f"Stop requested, shutting down '{self.service_name}'...")
                exit_code = await self._shutdown(worker_task)
        finally:
            ctx.stop_event.set()
            stop_task.cancel()
            for sig in installed:
                loop.remove_signal_handler(sig)
            for sig, handler in previous.items():
                signal.signal(sig, handler)

        logger.info(f"'{self.service_name}' stopped")
        return exit_code

    def request_stop(self) -> None:
        """Thread-unsafe stop; use ``loop.call_soon_threadsafe`` from other threads."""
        if self.context is not None:
            self.context.stop_event.set()

    async def _shutdown(self, worker_task: asyncio.Task) -> int:
        try:
            await asyncio.wait_for(asyncio.shield(worker_task), timeout=self.shutdown_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Worker did not stop within {self.shutdown_timeout:g}s, cancelling it"
            )
            worker_task.cancel()
            try:
                await worker_task
            except asyncio.CancelledError:
                pass
            return 0
        except Exception as e:
            logger.error(f"Worker failed during shutdown: {e}")
            return 1
        return 0

    @staticmethod
    def _worker_exit_code(worker_task: asyncio.Task) -> int:
        if worker_task.cancelled():
            return 0
        error = worker_task.exception()
        if error is not None:
            logger.opt(exception=error).error(f"Worker crashed: {error}")
            return 1
        return 0

    @staticmethod
    def _install_signal_handlers(
        loop: asyncio.AbstractEventLoop, ctx: HostContext
    ) -> tuple[list[signal.Signals], dict]:
        """Prefer loop handlers; fall back to signal.signal and keep what it replaced."""
        installed = []
        previous = {}
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, ctx.stop_event.set)
                installed.append(sig)
            except (NotImplementedError, RuntimeError):
                # Windows event loops have no add_signal_handler
                previous[sig] = signal.signal(
                    sig, lambda *_: loop.call_soon_threadsafe(ctx.stop_event.set)
                )
        return installed, previous
