"""
Governance Proposal Watcher.

Wires the components together:
1. Live subscription to governor events (reconnects with backoff)
2. Full backfill on the first connection, bounded catch-up on every reconnect,
   timed retries until the backfill completes
3. Deferred triggers for voting start / end
4. Deduplicated alerts delivered through Apprise
"""

import asyncio
import logging
from typing import Optional

from . import config
from .api.client import ChainLogClient
from .api.models import ClockMode
from .event_processor import ProposalProcessor
from .milestones import MilestoneClock
from .notifier import AlertEmitter, AppriseNotifier
from .reconciliation import ReconciliationEngine
from .scheduler import MilestoneScheduler
from .state_manager import DedupStore, ProposalRegistry
from .subscription import LiveSubscriptionManager
from .utils.logging_utils import log_error_with_context

logger = logging.getLogger(__name__)


class ProposalWatcher:
    """
    Owns the component graph for one governor contract.

    Args:
        provider: Chain-log provider (defaults to ChainLogClient from config)
        notifier: Notification sink (defaults to AppriseNotifier from config)
        clock_mode: Force a clock mode; None resolves config.CLOCK_MODE ("auto" asks the governor)
    """

    def __init__(
        self,
        provider=None,
        notifier=None,
        clock_mode: Optional[ClockMode] = None,
        start_block: int = config.START_BLOCK,
        catchup_blocks: int = config.CATCHUP_BLOCKS,
        max_chunk_span: int = config.MAX_CHUNK_SPAN,
        min_chunk_span: int = config.MIN_CHUNK_SPAN,
        backfill_on_start: bool = config.BACKFILL_ON_START,
        backfill_retry_interval: float = config.BACKFILL_RETRY_SECONDS,
        reconnect_base_delay: float = config.RECONNECT_BASE_DELAY,
        reconnect_max_delay: float = config.RECONNECT_MAX_DELAY,
        recheck_interval: float = config.BLOCK_MODE_RECHECK_SECONDS,
        shutdown_timeout: float = config.SHUTDOWN_TIMEOUT,
        channel: Optional[str] = None,
    ):
        self.provider = provider or ChainLogClient()
        self.notifier = notifier or AppriseNotifier()
        self.backfill_on_start = backfill_on_start
        self.backfill_retry_interval = backfill_retry_interval
        self._backfill_lock = asyncio.Lock()
        self._backfill_task: Optional[asyncio.Task] = None
        self.shutdown_timeout = shutdown_timeout
        self._clock_mode_override = clock_mode

        self.dedup = DedupStore()
        self.registry = ProposalRegistry()
        self.clock = MilestoneClock(clock_mode or ClockMode.BLOCKNUMBER)
        self.emitter = AlertEmitter(self.dedup, self.notifier, channel=channel)
        self.scheduler = MilestoneScheduler(recheck_interval=recheck_interval)
        self.processor = ProposalProcessor(
            self.registry,
            self.emitter,
            self.scheduler,
            self.clock,
            tip_source=self.provider.get_tip_height,
        )
        self.reconciler = ReconciliationEngine(
            self.provider,
            self.processor,
            start_block=start_block,
            catchup_blocks=catchup_blocks,
            max_chunk_span=max_chunk_span,
            min_chunk_span=min_chunk_span,
        )
        self.subscription = LiveSubscriptionManager(
            self.provider,
            self.processor,
            on_connected=self._after_connect,
            base_delay=reconnect_base_delay,
            max_delay=reconnect_max_delay,
        )

    async def resolve_clock_mode(self) -> ClockMode:
        """Settle the unit of vote_start / vote_end before any event is evaluated."""
        if self._clock_mode_override is not None:
            mode = self._clock_mode_override
        elif config.CLOCK_MODE in (ClockMode.BLOCKNUMBER.value, ClockMode.TIMESTAMP.value):
            mode = ClockMode(config.CLOCK_MODE)
        else:
            mode = await self.provider.get_clock_mode()

        self.clock.clock_mode = mode
        logger.info(f"Voting windows are measured in {mode.value}")
        return mode

    @property
    def backfill_pending(self) -> bool:
        return self.backfill_on_start and not self.reconciler.backfill_complete

    async def _after_connect(self, first: bool) -> None:
        tip = await self.provider.get_tip_height()
        if self.backfill_on_start and self.reconciler.backfill_cursor is None:
            if not first:
                logger.info("Backfill has not started yet, running it on this connection")
            await self._advance_backfill(tip)
            return

        await self.reconciler.catch_up(tip)
        await self._advance_backfill(tip)

    async def _advance_backfill(self, tip: int) -> None:
        """Start the full backfill, or continue it from its cursor."""
        async with self._backfill_lock:
            if not self.backfill_pending:
                return
            if self.reconciler.backfill_cursor is None:
                await self.reconciler.backfill(tip)
            else:
                await self.reconciler.resume_backfill(tip)

    async def _retry_backfill(self) -> None:
        """Keep finishing an incomplete backfill on a timer while the socket stays up."""
        while self.backfill_pending:
            await asyncio.sleep(self.backfill_retry_interval)
            if not self.backfill_pending:
                break
            try:
                await self._advance_backfill(await self.provider.get_tip_height())
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log_error_with_context(e, "backfill retry", exc_info=False)
        logger.debug("Backfill retry loop finished")

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """
        Run until stop_event is set (or forever), then shut down gracefully.

        Raises:
            StartupError: No connection could ever be established
        """
        stop_event = stop_event or asyncio.Event()
        await self.resolve_clock_mode()

        logger.info("Starting Governance Proposal Watcher...")
        subscription_task = asyncio.create_task(self.subscription.run(), name="live-subscription")
        stop_task = asyncio.create_task(stop_event.wait(), name="stop-signal")
        if self.backfill_on_start:
            self._backfill_task = asyncio.create_task(self._retry_backfill(), name="backfill-retry")

        try:
            done, _ = await asyncio.wait({subscription_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
            if subscription_task in done:
                subscription_task.result()
        finally:
            stop_task.cancel()
            await self.shutdown(subscription_task)

    async def shutdown(self, subscription_task: Optional[asyncio.Task] = None) -> None:
        """Stop reconnects, cancel timers, drain queued alerts within the shutdown timeout."""
        logger.info("Shutting down Governance Proposal Watcher...")
        await self.subscription.stop()

        if self._backfill_task is not None:
            self._backfill_task.cancel()
            try:
                await self._backfill_task
            except asyncio.CancelledError:
                pass
            self._backfill_task = None

        if subscription_task is not None and not subscription_task.done():
            try:
                await asyncio.wait_for(subscription_task, timeout=self.shutdown_timeout)
            except asyncio.TimeoutError:
                logger.warning("Live subscription did not stop in time, cancelling")
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error(f"Live subscription ended with error: {e}")

        self.scheduler.cancel_all()
        await self.emitter.close(self.shutdown_timeout)

        logger.info(
            f"Tracked {len(self.registry)} proposals, {len(self.dedup)} milestones alerted, "
            f"{self.subscription.connect_count} connections"
        )
