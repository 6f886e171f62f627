"""Standalone runner for the weekly notification frequency optimizer.

Loads the engine state from the configured store, then sleeps until each
weekly slot (Sunday 09:00 by default), adjusts the weekly limit from the
engagement profile and reviews the week's DIY savings. Pass ``--once`` to
run immediately and exit.

Usage: python -m homekeeper.workers.optimizer_runner [--once]
"""

from __future__ import annotations

import asyncio
import signal
import sys

import structlog

from homekeeper.config import get_settings
from homekeeper.core.logging import setup_logging
from homekeeper.notifications.engine import build_engine

logger = structlog.get_logger()


async def main(once: bool = False) -> None:
    """Run the weekly optimizer until SIGINT/SIGTERM."""
    settings = get_settings()
    setup_logging(settings)

    engine = build_engine(settings)
    await engine.start()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    logger.info("optimizer_runner_starting", store=settings.store_backend, once=once)

    try:
        if once:
            await engine.optimizer.run_weekly()
        else:
            await engine.optimizer.run_forever(stop_event)
    finally:
        await engine.close()
        logger.info("optimizer_runner_stopped")


if __name__ == "__main__":
    asyncio.run(main(once="--once" in sys.argv[1:]))
