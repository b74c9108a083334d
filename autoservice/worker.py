"""Demo worker: logs a heartbeat until the host asks it to stop."""

from loguru import logger

from autoservice.runtime.host import HostContext

HEARTBEAT_INTERVAL = 10.0


def heartbeat_worker(interval: float = HEARTBEAT_INTERVAL):
    """Build a worker that logs one line per *interval* seconds."""

    async def worker(ctx: HostContext) -> None:
        mode = "service" if ctx.supervised else "foreground"
        logger.info(f"Worker for '{ctx.service_name}' started ({mode}), args={ctx.args}")
        iteration = 0
        while not ctx.stopping:
            if not ctx.paused:
                iteration += 1
                logger.info(f"Heartbeat {iteration}")
            if await ctx.wait_stopped(interval):
                break
        logger.info(f"Worker for '{ctx.service_name}' finished after {iteration} heartbeats")

    return worker
