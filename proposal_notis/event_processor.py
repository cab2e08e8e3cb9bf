"""
Event Processing for Governance Notifications.
The single path every discovery route goes through: register the proposal,
alert the milestones already due in order, schedule the rest.
"""

import logging
from typing import Awaitable, Callable, Optional

from .api.models import (
    GovernorEvent,
    ProposalCreatedEvent,
    ProposalExecutedEvent,
    TransportError,
)
from .milestones import MilestoneClock, MilestoneKind
from .notifier import AlertEmitter
from .scheduler import MilestoneScheduler
from .state_manager import ProposalRegistry

logger = logging.getLogger(__name__)

TipSource = Callable[[], Awaitable[int]]


class ProposalProcessor:
    """
    Maps governor events to milestone alerts.

    Shared by the live subscription, reconciliation passes and scheduler
    callbacks; the emitter's dedup claim makes any interleaving safe.
    """

    def __init__(
        self,
        registry: ProposalRegistry,
        emitter: AlertEmitter,
        scheduler: MilestoneScheduler,
        clock: MilestoneClock,
        tip_source: Optional[TipSource] = None,
    ):
        self.registry = registry
        self.emitter = emitter
        self.scheduler = scheduler
        self.clock = clock
        self.tip_source = tip_source
        self.scheduler.set_handler(self.revalidate)

    async def reference(self, fallback: Optional[int] = None) -> Optional[float]:
        """
        Current reference point in the clock's unit.

        Args:
            fallback: Block height to use when the tip cannot be fetched

        Returns:
            Unix time, chain tip height, or None if neither is available
        """
        if not self.clock.uses_block_height:
            return self.clock.wall_clock()

        if self.tip_source is None:
            return fallback
        try:
            return await self.tip_source()
        except TransportError as e:
            logger.warning(f"Could not fetch chain tip ({e}), using fallback {fallback}")
            return fallback

    async def handle_event(self, event: GovernorEvent, reference: Optional[float] = None) -> None:
        """Dispatch one decoded event. Unknown payloads are logged and skipped."""
        if isinstance(event, ProposalCreatedEvent):
            await self.handle_created(event, reference)
        elif isinstance(event, ProposalExecutedEvent):
            self.handle_executed(event)
        else:
            logger.warning(f"Skipping unexpected event payload: {event!r}")

    async def handle_created(self, event: ProposalCreatedEvent, reference: Optional[float] = None) -> bool:
        """
        Register a proposal and evaluate its milestones.

        Returns:
            True if the proposal was new
        """
        if event.removed:
            logger.info(f"Ignoring removed (reorged) ProposalCreated for {event.proposal_id}")
            return False

        is_new = self.registry.register(event)
        proposal = self.registry.get(event.proposal_id)
        await self.evaluate(proposal, reference, fallback=event.block_number)
        return is_new

    def handle_executed(self, event: ProposalExecutedEvent) -> bool:
        """
        Alert execution; independent of the voting window.

        Returns:
            True if an alert was queued
        """
        if event.removed:
            logger.info(f"Ignoring removed (reorged) ProposalExecuted for {event.proposal_id}")
            return False

        proposal = self.registry.get(event.proposal_id)
        if proposal is None:
            logger.info(f"Proposal {event.proposal_id} executed but was never tracked")
        return self.emitter.emit(
            event.proposal_id,
            MilestoneKind.EXECUTED,
            proposal,
            {"tx_hash": event.transaction_hash}
        )

    async def evaluate(
        self,
        proposal: ProposalCreatedEvent,
        reference: Optional[float] = None,
        fallback: Optional[int] = None
    ) -> None:
        """Alert every due window milestone in order and schedule the pending ones."""
        if reference is None:
            reference = await self.reference(fallback)

        if reference is None:
            # Only CREATED can be decided without a reference point
            self.emitter.emit(proposal.proposal_id, MilestoneKind.CREATED, proposal)
            for kind in (MilestoneKind.VOTING_STARTED, MilestoneKind.VOTING_ENDED):
                self._schedule(proposal, kind, None)
            return

        for kind in self.clock.due_milestones(proposal, reference):
            self.emitter.emit(proposal.proposal_id, kind, proposal)

        for kind in self.clock.pending_milestones(proposal, reference):
            self._schedule(proposal, kind, self.clock.delay_until(proposal, kind, reference))

    def _schedule(self, proposal: ProposalCreatedEvent, kind: MilestoneKind, delay: Optional[float]) -> None:
        if self.emitter.dedup.has_fired(proposal.proposal_id, kind):
            return
        if self.scheduler.is_scheduled(proposal.proposal_id, kind):
            return
        self.scheduler.schedule(proposal.proposal_id, kind, delay)

    async def revalidate(self, proposal_id: int, kind: MilestoneKind) -> None:
        """Scheduler callback: re-check due-ness now instead of trusting the stored delay."""
        proposal = self.registry.get(proposal_id)
        if proposal is None:
            logger.warning(f"Timer fired for untracked proposal {proposal_id}")
            return
        if self.emitter.dedup.has_fired(proposal_id, kind):
            logger.debug(f"{kind.name} for proposal {proposal_id} already alerted, timer is a no-op")
            return
        await self.evaluate(proposal)
