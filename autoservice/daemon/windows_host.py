"""Bridge between the Windows SCM and ServiceHost.

Maps SCM controls (stop, shutdown, pause, continue) onto the hosted
worker. pywin32 is imported lazily so the package imports everywhere.
"""

from __future__ import annotations

import asyncio
import threading

from loguru import logger

from autoservice.runtime.host import ServiceHost


def build_service_class(host: ServiceHost, description: str | None = None):
    """Create a ``ServiceFramework`` subclass bound to *host*."""
    import win32service
    import win32serviceutil

    class HostedService(win32serviceutil.ServiceFramework):
        _svc_name_ = host.service_name
        _svc_display_name_ = host.service_name
        _svc_description_ = description or host.service_name

        def __init__(self, args):
            win32serviceutil.ServiceFramework.__init__(self, args)
            self._loop: asyncio.AbstractEventLoop | None = None
            self._stop_event: asyncio.Event | None = None
            self._stop_requested = threading.Event()
            self.exit_code = 0

        # -- SCM controls (called on the dispatcher thread) ----------------

        def SvcDoRun(self):  # noqa: N802
            logger.info(f"SCM started {host.service_name}")
            self.exit_code = asyncio.run(self._run())

        def SvcStop(self):  # noqa: N802
            self.ReportServiceStatus(win32service.SERVICE_STOP_PENDING)
            self._request_stop()

        def SvcShutdown(self):  # noqa: N802
            self._request_stop()

        def SvcPause(self):  # noqa: N802
            self.ReportServiceStatus(win32service.SERVICE_PAUSE_PENDING)
            self._set_paused(True)
            self.ReportServiceStatus(win32service.SERVICE_PAUSED)

        def SvcContinue(self):  # noqa: N802
            self.ReportServiceStatus(win32service.SERVICE_CONTINUE_PENDING)
            self._set_paused(False)
            self.ReportServiceStatus(win32service.SERVICE_RUNNING)

        # -- helpers ------------------------------------------------------

        async def _run(self) -> int:
            self._loop = asyncio.get_running_loop()
            self._stop_event = asyncio.Event()
            if self._stop_requested.is_set():
                self._stop_event.set()
            return await host.run(stop_event=self._stop_event, handle_signals=False)

        def _request_stop(self) -> None:
            self._stop_requested.set()
            if self._loop is not None and self._stop_event is not None:
                self._loop.call_soon_threadsafe(self._stop_event.set)

        def _set_paused(self, paused: bool) -> None:
            logger.info(f"SCM {'paused' if paused else 'resumed'} {host.service_name}")
            if self._loop is not None and host.context is not None:
                self._loop.call_soon_threadsafe(setattr, host.context, "paused", paused)

    return HostedService


def run_as_windows_service(host: ServiceHost, description: str | None = None) -> int:
    """Hand the process to the SCM dispatcher; returns when the service stops."""
    import servicemanager

    service_class = build_service_class(host, description)
    servicemanager.Initialize()
    servicemanager.PrepareToHostSingle(service_class)
    servicemanager.StartServiceCtrlDispatcher()
    return 0
