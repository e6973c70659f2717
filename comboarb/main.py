"""Process entry point: logging and a strategy configured from the environment."""

import asyncio
import signal
from typing import Optional

from comboarb.config import ArbitrageConfig, settings
from comboarb.services.optimization import SolverBackend
from comboarb.services.strategies import CombinatorialStrategy
from comboarb.utils.logger import get_logger, setup_logging

# Setup logging
setup_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON, log_file=settings.LOG_FILE)
logger = get_logger("main")


def create_strategy(
    config: Optional[ArbitrageConfig] = None,
    solver: Optional[SolverBackend] = None,
) -> CombinatorialStrategy:
    """Build a strategy; ``config`` defaults to the ARB_* environment settings."""
    return CombinatorialStrategy(config or settings.arbitrage_config(), solver)


async def run(
    strategy: CombinatorialStrategy,
    stop_event: asyncio.Event,
    interval_seconds: Optional[float] = None,
) -> dict:
    """Analyse periodically until ``stop_event`` is set; returns final statistics."""
    await strategy.start(interval_seconds or settings.ANALYSIS_INTERVAL_SECONDS)
    try:
        await stop_event.wait()
    finally:
        await strategy.stop()

    stats = strategy.get_statistics()
    logger.info(
        "Analysis loop finished",
        analyses_run=stats["analyses_run"],
        opportunities_detected=stats["opportunities_detected"],
    )
    return stats


async def serve(
    strategy: Optional[CombinatorialStrategy] = None,
    stop_event: Optional[asyncio.Event] = None,
) -> dict:
    """Run ``strategy`` until SIGINT/SIGTERM (or ``stop_event``) stops it."""
    strategy = strategy or create_strategy()
    stop_event = stop_event or asyncio.Event()

    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
            installed.append(sig)
        except NotImplementedError:
            # Windows event loops have no signal handlers
            pass

    logger.info(
        "Starting combinatorial arbitrage engine",
        groups=len(strategy.group_ids),
        interval_seconds=settings.ANALYSIS_INTERVAL_SECONDS,
    )
    try:
        return await run(strategy, stop_event)
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def main() -> None:
    asyncio.run(serve())


if __name__ == "__main__":
    main()
