"""Chain API package for the Governance Proposal Watcher."""

from .client import ChainLogClient, LiveSubscription
from .models import (
    ChainAPIError,
    ClockMode,
    GovernorEvent,
    MalformedEventError,
    ProposalCreatedEvent,
    ProposalExecutedEvent,
    RangeTooLargeError,
    TransportError,
    parse_event
)

__all__ = [
    "ChainLogClient",
    "LiveSubscription",
    "ChainAPIError",
    "ClockMode",
    "GovernorEvent",
    "MalformedEventError",
    "ProposalCreatedEvent",
    "ProposalExecutedEvent",
    "RangeTooLargeError",
    "TransportError",
    "parse_event"
]
