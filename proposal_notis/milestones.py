"""
Milestone definitions and due-time evaluation.

A proposal's voting window is expressed in the governor's clock unit: block
heights or unix timestamps. The clock compares a window boundary against a
reference point in the same unit ("now" for timestamps, the chain tip for
block heights) and derives how long to wait before a milestone is due.

Known limitation: in block-number mode there is no block-time oracle, so the
wait before a pending milestone is unknown and callers fall back to a fixed
re-check interval.
"""

import time
from enum import Enum, IntEnum
from typing import List, Optional

from .api.models import ClockMode, ProposalCreatedEvent


class MilestoneKind(IntEnum):
    """Lifecycle milestones. Integer order is the per-proposal emission order."""
    CREATED = 0
    VOTING_STARTED = 1
    VOTING_ENDED = 2
    EXECUTED = 3

    @property
    def label(self) -> str:
        return self.name.replace("_", " ").title()


# Milestones derived from the voting window, in emission order
WINDOW_MILESTONES = (MilestoneKind.CREATED, MilestoneKind.VOTING_STARTED, MilestoneKind.VOTING_ENDED)


class MilestoneStatus(Enum):
    DUE = "due"
    PENDING = "pending"
    UNKNOWN = "unknown"


class MilestoneClock:
    """Decides whether window milestones are due for a given reference point."""

    def __init__(self, clock_mode: ClockMode = ClockMode.BLOCKNUMBER):
        self.clock_mode = clock_mode

    @property
    def uses_block_height(self) -> bool:
        """True when the reference point must be the chain tip rather than wall-clock time."""
        return self.clock_mode == ClockMode.BLOCKNUMBER

    @staticmethod
    def wall_clock() -> float:
        return time.time()

    def target(self, proposal: ProposalCreatedEvent, kind: MilestoneKind) -> Optional[int]:
        """Window boundary for a milestone, or None when the milestone is not clock driven."""
        if kind == MilestoneKind.VOTING_STARTED:
            return proposal.vote_start
        if kind == MilestoneKind.VOTING_ENDED:
            return proposal.vote_end
        return None

    def status(self, proposal: ProposalCreatedEvent, kind: MilestoneKind, reference: float) -> MilestoneStatus:
        """
        Evaluate one milestone.

        Args:
            proposal: Tracked proposal
            kind: Milestone to evaluate
            reference: Current tip height or unix time, matching clock_mode

        Returns:
            DUE, PENDING, or UNKNOWN for event-driven milestones (EXECUTED)
        """
        if kind == MilestoneKind.CREATED:
            return MilestoneStatus.DUE
        if kind == MilestoneKind.EXECUTED:
            return MilestoneStatus.UNKNOWN

        return MilestoneStatus.DUE if reference >= self.target(proposal, kind) else MilestoneStatus.PENDING

    def delay_until(self, proposal: ProposalCreatedEvent, kind: MilestoneKind, reference: float) -> Optional[float]:
        """
        Seconds until a milestone is due.

        Returns:
            0.0 when already due, a positive delay in timestamp mode, and None
            when the delay cannot be known (block mode or EXECUTED)
        """
        status = self.status(proposal, kind, reference)
        if status == MilestoneStatus.DUE:
            return 0.0
        if status == MilestoneStatus.UNKNOWN or self.uses_block_height:
            return None
        return max(0.0, float(self.target(proposal, kind)) - reference)

    def due_milestones(self, proposal: ProposalCreatedEvent, reference: float) -> List[MilestoneKind]:
        """Window milestones already due, in emission order."""
        return [
            kind for kind in WINDOW_MILESTONES
            if self.status(proposal, kind, reference) == MilestoneStatus.DUE
        ]

    def pending_milestones(self, proposal: ProposalCreatedEvent, reference: float) -> List[MilestoneKind]:
        """Window milestones not yet due, in emission order."""
        return [
            kind for kind in WINDOW_MILESTONES
            if self.status(proposal, kind, reference) == MilestoneStatus.PENDING
        ]
