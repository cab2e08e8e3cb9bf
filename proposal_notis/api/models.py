"""
Pydantic models for governor events and the chain API error taxonomy.
"""

from enum import Enum
from typing import Any, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator


class ChainAPIError(Exception):
    """Base class for errors raised by the chain-log client."""


class TransportError(ChainAPIError):
    """Subscription drop, socket error or RPC timeout. Always recoverable."""


class RangeTooLargeError(TransportError):
    """The provider refused a log query because the block span or result set is too large."""

    def __init__(self, from_block: int, to_block: int, message: str = ""):
        self.from_block = from_block
        self.to_block = to_block
        super().__init__(message or f"Block range {from_block}-{to_block} exceeds provider limits")


class MalformedEventError(ChainAPIError):
    """An event payload could not be decoded into a known governor event."""


class ClockMode(str, Enum):
    """Unit of a governor's vote_start / vote_end values (ERC-6372)."""
    BLOCKNUMBER = "blocknumber"
    TIMESTAMP = "timestamp"

    @classmethod
    def from_clock_mode_string(cls, value: str) -> "ClockMode":
        """Parse an ERC-6372 CLOCK_MODE() string such as 'mode=timestamp'."""
        for part in value.split("&"):
            key, _, mode = part.partition("=")
            if key.strip() == "mode" and mode.strip() == "timestamp":
                return cls.TIMESTAMP
        return cls.BLOCKNUMBER


class _EventBase(BaseModel):
    """Common provenance fields carried by every decoded log."""
    model_config = ConfigDict(frozen=True)

    proposal_id: int
    block_number: Optional[int] = None
    transaction_hash: Optional[str] = None
    log_index: Optional[int] = None
    removed: bool = False

    @field_validator("proposal_id", "block_number", "log_index", mode="before")
    @classmethod
    def _coerce_int(cls, value: Any) -> Any:
        # Hex strings come straight from raw JSON-RPC payloads
        if isinstance(value, str):
            return int(value, 16) if value.startswith("0x") else int(value)
        return value

    @field_validator("transaction_hash", mode="before")
    @classmethod
    def _coerce_hash(cls, value: Any) -> Any:
        if isinstance(value, (bytes, bytearray)):
            return "0x" + bytes(value).hex()
        return value

    @property
    def sort_key(self) -> tuple:
        return (self.block_number or 0, self.log_index or 0)


class ProposalCreatedEvent(_EventBase):
    """A ProposalCreated log; also the tracked proposal record itself."""
    proposer: str
    target: str
    calldata: str = "0x"
    vote_start: int
    vote_end: int
    description: str = ""

    @field_validator("vote_start", "vote_end", mode="before")
    @classmethod
    def _coerce_window(cls, value: Any) -> Any:
        if isinstance(value, str):
            return int(value, 16) if value.startswith("0x") else int(value)
        return value

    @field_validator("calldata", mode="before")
    @classmethod
    def _coerce_calldata(cls, value: Any) -> Any:
        if isinstance(value, (bytes, bytearray)):
            return "0x" + bytes(value).hex()
        return value

    @field_validator("vote_end")
    @classmethod
    def _window_ordered(cls, value: int, info) -> int:
        start = info.data.get("vote_start")
        if start is not None and value < start:
            raise ValueError(f"vote_end {value} is before vote_start {start}")
        return value


class ProposalExecutedEvent(_EventBase):
    """A ProposalExecuted log."""


GovernorEvent = Union[ProposalCreatedEvent, ProposalExecutedEvent]


def parse_event(event_data: Mapping[str, Any]) -> GovernorEvent:
    """
    Build a model from web3 decoded event data.

    Args:
        event_data: Mapping with 'event', 'args' and log provenance keys
                    (the shape returned by ContractEvent.process_log)

    Returns:
        ProposalCreatedEvent or ProposalExecutedEvent

    Raises:
        MalformedEventError: Unknown event name or invalid arguments
    """
    try:
        name = event_data["event"]
        args = event_data["args"]
    except (KeyError, TypeError) as e:
        raise MalformedEventError(f"Event payload missing field: {e}") from e

    provenance = {
        "block_number": event_data.get("blockNumber"),
        "transaction_hash": event_data.get("transactionHash"),
        "log_index": event_data.get("logIndex"),
        "removed": bool(event_data.get("removed", False)),
    }

    try:
        if name == "ProposalCreated":
            return ProposalCreatedEvent(
                proposal_id=args["proposalId"],
                proposer=args["proposer"],
                target=args["target"],
                calldata=args.get("data", "0x"),
                vote_start=args["start"],
                vote_end=args["end"],
                description=args.get("description", ""),
                **provenance,
            )
        if name == "ProposalExecuted":
            return ProposalExecutedEvent(proposal_id=args["proposalId"], **provenance)
    except (KeyError, ValidationError) as e:
        raise MalformedEventError(f"Invalid {name} payload: {e}") from e

    raise MalformedEventError(f"Unexpected event type: {name}")
