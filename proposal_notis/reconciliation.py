"""
Historical reconciliation over chunked block ranges.

Replays ProposalCreated / ProposalExecuted logs through the event processor so
milestones missed by the live subscription are alerted. Replays are idempotent
because every alert goes through the dedup store; a failed chunk is skipped
and left to a later overlapping pass.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from . import config
from .api.models import ProposalCreatedEvent, ProposalExecutedEvent, RangeTooLargeError, TransportError
from .event_processor import ProposalProcessor
from .utils.logging_utils import log_data_processing, log_error_with_context

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    """Outcome of one reconciliation pass over [from_block, to_block]."""
    from_block: int
    to_block: int
    resume_from: int
    chunks_ok: int = 0
    chunks_failed: int = 0
    failed_ranges: List[Tuple[int, int]] = field(default_factory=list)
    events_seen: int = 0
    proposals_seen: int = 0
    new_proposals: int = 0
    executed_seen: int = 0

    @property
    def complete(self) -> bool:
        """True when every chunk of the range was processed."""
        return self.chunks_failed == 0 and self.resume_from > self.to_block


class ReconciliationEngine:
    """
    Runs catch-up and backfill passes against the chain-log provider.

    Chunks are queried sequentially. A RangeTooLargeError halves the span used
    for the following chunks, down to min_chunk_span.
    """

    def __init__(
        self,
        provider,
        processor: ProposalProcessor,
        start_block: int = config.START_BLOCK,
        catchup_blocks: int = config.CATCHUP_BLOCKS,
        max_chunk_span: int = config.MAX_CHUNK_SPAN,
        min_chunk_span: int = config.MIN_CHUNK_SPAN,
    ):
        self.provider = provider
        self.processor = processor
        self.start_block = max(0, start_block)
        self.catchup_blocks = max(0, catchup_blocks)
        self.max_chunk_span = max(1, max_chunk_span)
        self.min_chunk_span = max(1, min(min_chunk_span, self.max_chunk_span))
        self.chunk_span = self.max_chunk_span

        # First block not yet acknowledged by the full backfill, and the tip it targeted
        self.backfill_cursor: Optional[int] = None
        self.backfill_target: Optional[int] = None

    @property
    def backfill_complete(self) -> bool:
        return self.backfill_cursor is not None and self.backfill_cursor > self.backfill_target

    async def reconcile(self, from_block: int, to_block: int, reference: Optional[float] = None) -> ReconcileResult:
        """
        Replay every governor event in the closed range [from_block, to_block].

        Args:
            from_block: First block (inclusive)
            to_block: Last block (inclusive)
            reference: Reference point for milestone evaluation; fetched when omitted.
                In timestamp mode it is refreshed before each chunk is replayed

        Returns:
            ReconcileResult; resume_from never moves past the first failed chunk
        """
        result = ReconcileResult(from_block=from_block, to_block=to_block, resume_from=from_block)
        if from_block > to_block:
            return result

        logger.info(f"Reconciling blocks {from_block}-{to_block} (chunk span {self.chunk_span})")

        if reference is None:
            reference = await self.processor.reference(fallback=to_block)

        seen_ids = set()
        contiguous = True
        current = from_block

        while current <= to_block:
            chunk_end = min(current + self.chunk_span - 1, to_block)

            try:
                events = await self.provider.query_range(current, chunk_end)
            except RangeTooLargeError as e:
                self._record_failure(result, current, chunk_end, e)
                self._narrow()
                contiguous = False
            except TransportError as e:
                self._record_failure(result, current, chunk_end, e)
                contiguous = False
            except Exception as e:
                log_error_with_context(e, "reconciliation chunk", {"from_block": current, "to_block": chunk_end})
                result.chunks_failed += 1
                result.failed_ranges.append((current, chunk_end))
                contiguous = False
            else:
                if not self.processor.clock.uses_block_height:
                    # Wall-clock reference moves on during long passes
                    reference = await self.processor.reference(fallback=reference)
                await self._replay(events, reference, result, seen_ids)
                result.chunks_ok += 1
                if contiguous:
                    result.resume_from = chunk_end + 1

            current = chunk_end + 1

        result.proposals_seen = len(seen_ids)
        log_data_processing(
            f"reconcile {from_block}-{to_block}",
            result.events_seen,
            result.proposals_seen,
            details=f"ok={result.chunks_ok} failed={result.failed_ranges} new={result.new_proposals}"
        )
        if result.chunks_failed:
            logger.warning(
                f"Reconciliation of {from_block}-{to_block} skipped {result.chunks_failed} chunks; "
                f"acknowledged up to block {result.resume_from - 1}"
            )
        return result

    def _record_failure(self, result: ReconcileResult, start: int, end: int, error: Exception) -> None:
        result.chunks_failed += 1
        result.failed_ranges.append((start, end))
        log_error_with_context(error, "reconciliation chunk", {"from_block": start, "to_block": end}, exc_info=False)
        logger.warning(f"Skipping blocks {start}-{end}, a later pass may cover them")

    def _narrow(self) -> None:
        narrowed = max(self.min_chunk_span, self.chunk_span // 2)
        if narrowed != self.chunk_span:
            logger.info(f"Narrowing chunk span {self.chunk_span} -> {narrowed}")
            self.chunk_span = narrowed

    async def _replay(self, events, reference: Optional[float], result: ReconcileResult, seen_ids: set) -> None:
        for event in events:
            result.events_seen += 1
            try:
                if isinstance(event, ProposalCreatedEvent):
                    seen_ids.add(event.proposal_id)
                    if await self.processor.handle_created(event, reference):
                        result.new_proposals += 1
                elif isinstance(event, ProposalExecutedEvent):
                    result.executed_seen += 1
                    self.processor.handle_executed(event)
                else:
                    logger.warning(f"Skipping unexpected event in reconciliation: {event!r}")
            except Exception as e:
                log_error_with_context(e, "reconciliation replay", {"event": repr(event)})

    async def catch_up(self, tip: Optional[int] = None) -> ReconcileResult:
        """Bounded catch-up over [tip - catchup_blocks, tip]."""
        if tip is None:
            tip = await self.provider.get_tip_height()
        from_block = max(self.start_block, tip - self.catchup_blocks)
        logger.info(f"Catch-up: blocks {from_block}-{tip}")
        return await self.reconcile(from_block, tip, reference=await self._reference_at(tip))

    async def backfill(self, tip: Optional[int] = None, start: Optional[int] = None) -> ReconcileResult:
        """
        Full backfill over [start, tip]; start defaults to the configured start block.
        Records a cursor so an incomplete backfill can be resumed.
        """
        if tip is None:
            tip = await self.provider.get_tip_height()
        from_block = self.start_block if start is None else max(0, start)
        logger.info(f"Backfill: blocks {from_block}-{tip}")

        result = await self.reconcile(from_block, tip, reference=await self._reference_at(tip))
        self.backfill_target = tip
        self.backfill_cursor = result.resume_from
        self._log_backfill_progress()
        return result

    async def resume_backfill(self, tip: Optional[int] = None) -> Optional[ReconcileResult]:
        """
        Continue an incomplete backfill from its cursor up to its original target.

        Returns:
            None when no backfill ran yet or it already completed
        """
        if self.backfill_cursor is None or self.backfill_complete:
            return None

        logger.info(f"Resuming backfill: blocks {self.backfill_cursor}-{self.backfill_target}")
        reference = await self._reference_at(tip) if tip is not None else None
        result = await self.reconcile(self.backfill_cursor, self.backfill_target, reference=reference)
        # A pass that fails on its first chunk leaves the cursor where it was
        self.backfill_cursor = max(self.backfill_cursor, result.resume_from)
        self._log_backfill_progress()
        return result

    async def _reference_at(self, tip: int) -> Optional[float]:
        if self.processor.clock.uses_block_height:
            return tip
        return await self.processor.reference()

    def _log_backfill_progress(self) -> None:
        if self.backfill_complete:
            logger.info(f"Backfill complete through block {self.backfill_target}")
        else:
            logger.warning(
                f"Backfill incomplete: acknowledged through block {self.backfill_cursor - 1}, "
                f"target {self.backfill_target}"
            )
