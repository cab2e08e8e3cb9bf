"""
Shared fixtures: in-memory chain provider, scripted live subscriptions and a
recording notification sink.
"""

import asyncio
import time
from typing import Callable, List, Optional, Tuple

import pytest

from proposal_notis.api.models import (
    ClockMode,
    ProposalCreatedEvent,
    ProposalExecutedEvent,
    RangeTooLargeError,
    TransportError,
)
from proposal_notis.event_processor import ProposalProcessor
from proposal_notis.milestones import MilestoneClock
from proposal_notis.notifier import AlertEmitter
from proposal_notis.scheduler import MilestoneScheduler
from proposal_notis.state_manager import DedupStore, ProposalRegistry


def make_proposal(proposal_id: int, vote_start: int, vote_end: int, block_number: int = 100, **kwargs) -> ProposalCreatedEvent:
    fields = dict(
        proposal_id=proposal_id,
        proposer="0x00000000000000000000000000000000000000aa",
        target="0x00000000000000000000000000000000000000bb",
        vote_start=vote_start,
        vote_end=vote_end,
        description=f"Proposal {proposal_id}",
        block_number=block_number,
        transaction_hash=f"0x{proposal_id:064x}",
        log_index=0,
    )
    fields.update(kwargs)
    return ProposalCreatedEvent(**fields)


def make_executed(proposal_id: int, block_number: int = 200) -> ProposalExecutedEvent:
    return ProposalExecutedEvent(
        proposal_id=proposal_id,
        block_number=block_number,
        transaction_hash=f"0x{proposal_id + 1:064x}",
        log_index=1,
    )


class FakeSubscription:
    """Scripted live handle: push events, then drop() to simulate a socket failure."""

    def __init__(self):
        self.queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    async def push(self, event) -> None:
        await self.queue.put(event)

    def drop(self, message: str = "socket closed") -> None:
        self.queue.put_nowait(TransportError(message))

    async def events(self):
        while True:
            item = await self.queue.get()
            if isinstance(item, Exception):
                raise item
            yield item

    async def close(self) -> None:
        self.closed = True
        self.queue.put_nowait(TransportError("closed"))


class FakeChainProvider:
    """In-memory governor log with the ChainLogClient interface."""

    def __init__(self, tip: int = 1000, clock_mode: ClockMode = ClockMode.BLOCKNUMBER):
        self.tip = tip
        self.clock_mode = clock_mode
        self.events: List = []
        self.queries: List[Tuple[int, int]] = []
        self.range_limit: Optional[int] = None
        self.failing: List[Callable[[int, int], Optional[Exception]]] = []
        self.subscribe_failures = 0
        self.tip_failures = 0
        self.subscriptions: List[FakeSubscription] = []

    def add(self, *events) -> None:
        self.events.extend(events)

    def fail_when(self, predicate: Callable[[int, int], Optional[Exception]]) -> None:
        self.failing.append(predicate)

    async def get_tip_height(self) -> int:
        if self.tip_failures > 0:
            self.tip_failures -= 1
            raise TransportError("eth_blockNumber timed out")
        return self.tip

    async def get_clock_mode(self) -> ClockMode:
        return self.clock_mode

    async def query_range(self, from_block: int, to_block: int):
        self.queries.append((from_block, to_block))
        if self.range_limit is not None and to_block - from_block + 1 > self.range_limit:
            raise RangeTooLargeError(from_block, to_block)
        for predicate in self.failing:
            error = predicate(from_block, to_block)
            if error is not None:
                raise error
        found = [e for e in self.events if from_block <= e.block_number <= to_block]
        return sorted(found, key=lambda e: e.sort_key)

    async def subscribe(self) -> FakeSubscription:
        if self.subscribe_failures > 0:
            self.subscribe_failures -= 1
            raise TransportError("connection refused")
        subscription = FakeSubscription()
        self.subscriptions.append(subscription)
        return subscription


class RecordingNotifier:
    """Notification sink that records every attempt."""

    def __init__(self, fail: bool = False, raise_error: Optional[Exception] = None):
        self.sent: List[Tuple[str, Optional[str], float]] = []
        # Unix time of each attempt, comparable with timestamp-mode voting windows
        self.sent_at: List[float] = []
        self.fail = fail
        self.raise_error = raise_error

    async def send(self, message: str, channel: Optional[str] = None) -> bool:
        self.sent.append((message, channel, time.monotonic()))
        self.sent_at.append(time.time())
        if self.raise_error is not None:
            raise self.raise_error
        return not self.fail

    @property
    def headers(self) -> List[str]:
        return [message.splitlines()[0] for message, _, _ in self.sent]

    def for_proposal(self, proposal_id: int) -> List[str]:
        marker = f"*Proposal ID:* {proposal_id}"
        return [message.splitlines()[0] for message, _, _ in self.sent if marker in message.splitlines()]


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0, interval: float = 0.01) -> None:
    """Poll predicate until it holds or fail the test."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(interval)


@pytest.fixture
def provider():
    return FakeChainProvider()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def dedup():
    return DedupStore()


@pytest.fixture
def registry():
    return ProposalRegistry()


@pytest.fixture
async def emitter(dedup, notifier):
    emitter = AlertEmitter(dedup, notifier)
    yield emitter
    await emitter.close(timeout=1)


@pytest.fixture
async def scheduler():
    scheduler = MilestoneScheduler(recheck_interval=0.05)
    yield scheduler
    scheduler.cancel_all()


@pytest.fixture
def block_clock():
    return MilestoneClock(ClockMode.BLOCKNUMBER)


@pytest.fixture
def processor(registry, emitter, scheduler, block_clock, provider):
    return ProposalProcessor(registry, emitter, scheduler, block_clock, tip_source=provider.get_tip_height)
