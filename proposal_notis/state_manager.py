"""
State Management for Governance Notifications.
In-memory record of tracked proposals and the milestones already alerted.
Nothing is persisted: a restart rebuilds both from a full backfill.
"""

import logging
from threading import Lock
from typing import Dict, List, Optional, Set, Tuple

from .api.models import ProposalCreatedEvent
from .milestones import MilestoneKind

logger = logging.getLogger(__name__)


class DedupStore:
    """
    At-most-once gate for (proposal_id, milestone) alerts.
    Thread-safe; mark_fired is an atomic compare-and-set.
    """

    def __init__(self):
        self._fired: Set[Tuple[int, MilestoneKind]] = set()
        self._lock = Lock()

    def has_fired(self, proposal_id: int, kind: MilestoneKind) -> bool:
        with self._lock:
            return (proposal_id, kind) in self._fired

    def mark_fired(self, proposal_id: int, kind: MilestoneKind) -> bool:
        """
        Claim the right to alert a milestone.

        Returns:
            True if this call set the flag (caller must emit), False if it was
            already set (caller must suppress)
        """
        key = (proposal_id, kind)
        with self._lock:
            if key in self._fired:
                return False
            self._fired.add(key)
        logger.debug(f"Claimed {kind.name} for proposal {proposal_id}")
        return True

    def fired_for(self, proposal_id: int) -> Set[MilestoneKind]:
        """Milestones already alerted for one proposal."""
        with self._lock:
            return {kind for pid, kind in self._fired if pid == proposal_id}

    def __len__(self) -> int:
        with self._lock:
            return len(self._fired)


class ProposalRegistry:
    """
    Proposals seen by either the live or the reconciliation path.
    First registration wins; records are immutable and never evicted.
    """

    def __init__(self):
        self._proposals: Dict[int, ProposalCreatedEvent] = {}
        self._lock = Lock()

    def register(self, proposal: ProposalCreatedEvent) -> bool:
        """
        Track a proposal.

        Returns:
            True if the proposal was not known before
        """
        with self._lock:
            if proposal.proposal_id in self._proposals:
                return False
            self._proposals[proposal.proposal_id] = proposal

        logger.info(
            f"Tracking proposal {proposal.proposal_id} "
            f"(window {proposal.vote_start} -> {proposal.vote_end}, block {proposal.block_number})"
        )
        return True

    def get(self, proposal_id: int) -> Optional[ProposalCreatedEvent]:
        with self._lock:
            return self._proposals.get(proposal_id)

    def all(self) -> List[ProposalCreatedEvent]:
        with self._lock:
            return sorted(self._proposals.values(), key=lambda p: p.proposal_id)

    def __contains__(self, proposal_id: int) -> bool:
        with self._lock:
            return proposal_id in self._proposals

    def __len__(self) -> int:
        with self._lock:
            return len(self._proposals)
