"""
Main entry point for the Governance Proposal Watcher.

This script:
1. Sets up logging
2. Starts the watcher (live subscription + reconciliation + scheduled alerts)
3. Runs until SIGINT / SIGTERM, then drains pending alerts
"""

import asyncio
import logging
import signal
import sys

from .logging_config import setup_logging
from .subscription import StartupError
from .watcher import ProposalWatcher

logger = logging.getLogger(__name__)


async def run_watcher() -> int:
    """Run the watcher until a shutdown signal. Returns the process exit code."""
    watcher = ProposalWatcher()
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Signal handlers are unavailable on Windows event loops
            pass

    try:
        await watcher.run(stop_event)
    except StartupError as e:
        logger.error("=" * 80)
        logger.error("FATAL ERROR in Governance Proposal Watcher")
        logger.error("=" * 80)
        logger.error(f"Error: {e}")
        return 1

    logger.info("=" * 80)
    logger.info("Governance Proposal Watcher stopped")
    logger.info("=" * 80)
    return 0


def main() -> int:
    """Console entry point."""
    setup_logging()
    try:
        return asyncio.run(run_watcher())
    except KeyboardInterrupt:
        logger.info("Interrupted by user. Exiting gracefully...")
        return 0


if __name__ == "__main__":
    sys.exit(main())
