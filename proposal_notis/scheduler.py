"""
Deferred triggers for milestones that are not yet due.

Each pending (proposal, milestone) owns one asyncio task that sleeps until the
estimated due time and then hands control back to a handler, which re-checks
due-ness with a fresh reference point before alerting. Triggers are not
persisted.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from . import config
from .milestones import MilestoneKind

logger = logging.getLogger(__name__)

FireHandler = Callable[[int, MilestoneKind], Awaitable[None]]


@dataclass(frozen=True)
class PendingMilestone:
    """A scheduled milestone check."""
    proposal_id: int
    kind: MilestoneKind
    due_at: float  # unix time of the planned check


class MilestoneScheduler:
    """One-shot timers keyed by (proposal_id, milestone)."""

    def __init__(
        self,
        handler: Optional[FireHandler] = None,
        recheck_interval: float = config.BLOCK_MODE_RECHECK_SECONDS,
    ):
        self._handler = handler
        self.recheck_interval = recheck_interval
        self._tasks: Dict[Tuple[int, MilestoneKind], asyncio.Task] = {}
        self._entries: Dict[Tuple[int, MilestoneKind], PendingMilestone] = {}

    def set_handler(self, handler: FireHandler) -> None:
        self._handler = handler

    def schedule(self, proposal_id: int, kind: MilestoneKind, delay: Optional[float]) -> PendingMilestone:
        """
        Arm a trigger, replacing any earlier one for the same milestone.

        Args:
            proposal_id: Proposal identifier
            kind: Milestone to re-check
            delay: Seconds to wait; None means unknown and uses recheck_interval

        Returns:
            The scheduled entry
        """
        if self._handler is None:
            raise RuntimeError("MilestoneScheduler has no handler")

        if delay is None:
            delay = self.recheck_interval
        delay = max(0.0, float(delay))

        key = (proposal_id, kind)
        self.cancel(proposal_id, kind)

        entry = PendingMilestone(proposal_id, kind, time.time() + delay)
        self._entries[key] = entry
        self._tasks[key] = asyncio.get_running_loop().create_task(
            self._fire_after(key, delay), name=f"milestone-{proposal_id}-{kind.name}"
        )
        logger.debug(f"Scheduled {kind.name} check for proposal {proposal_id} in {delay:.1f}s")
        return entry

    async def _fire_after(self, key: Tuple[int, MilestoneKind], delay: float) -> None:
        await asyncio.sleep(delay)

        # Unregister before running so the handler can re-arm the same milestone
        if self._tasks.get(key) is asyncio.current_task():
            del self._tasks[key]
            self._entries.pop(key, None)

        proposal_id, kind = key
        try:
            await self._handler(proposal_id, kind)
        except Exception as e:
            logger.error(f"Scheduled {kind.name} check for proposal {proposal_id} failed: {e}", exc_info=True)

    def is_scheduled(self, proposal_id: int, kind: MilestoneKind) -> bool:
        return (proposal_id, kind) in self._tasks

    def cancel(self, proposal_id: int, kind: MilestoneKind) -> bool:
        key = (proposal_id, kind)
        task = self._tasks.pop(key, None)
        self._entries.pop(key, None)
        if task is None:
            return False
        if task is not asyncio.current_task():
            task.cancel()
        return True

    def cancel_for(self, proposal_id: int) -> int:
        keys = [key for key in self._tasks if key[0] == proposal_id]
        for pid, kind in keys:
            self.cancel(pid, kind)
        return len(keys)

    def cancel_all(self) -> int:
        keys = list(self._tasks)
        for pid, kind in keys:
            self.cancel(pid, kind)
        if keys:
            logger.info(f"Cancelled {len(keys)} pending milestone triggers")
        return len(keys)

    def pending(self) -> List[PendingMilestone]:
        """Scheduled checks ordered by due time."""
        return sorted(self._entries.values(), key=lambda entry: (entry.due_at, entry.proposal_id, entry.kind))

    def __len__(self) -> int:
        return len(self._tasks)
