import pytest

from conftest import make_executed, make_proposal
from proposal_notis.api.models import ClockMode, RangeTooLargeError, TransportError
from proposal_notis.event_processor import ProposalProcessor
from proposal_notis.milestones import MilestoneClock, MilestoneKind
from proposal_notis.reconciliation import ReconciliationEngine

CREATED = "🗳 *New Proposal Created*"
STARTED = "✅ *Voting Started*"
ENDED = "🛑 *Voting Ended*"
EXECUTED = "🎉 *Proposal Executed*"


def make_engine(provider, processor, **kwargs):
    kwargs.setdefault("start_block", 0)
    kwargs.setdefault("catchup_blocks", 300)
    kwargs.setdefault("max_chunk_span", 100)
    kwargs.setdefault("min_chunk_span", 10)
    return ReconciliationEngine(provider, processor, **kwargs)


async def test_range_is_split_into_sequential_chunks(provider, processor):
    engine = make_engine(provider, processor)

    result = await engine.reconcile(0, 250)

    assert provider.queries == [(0, 99), (100, 199), (200, 250)]
    assert result.chunks_ok == 3
    assert result.resume_from == 251
    assert result.complete


async def test_empty_range_is_a_no_op(provider, processor):
    engine = make_engine(provider, processor)

    result = await engine.reconcile(10, 9)

    assert provider.queries == []
    assert result.resume_from == 10


async def test_past_window_alerts_in_milestone_order(provider, processor, emitter, notifier):
    provider.add(make_proposal(1, vote_start=100, vote_end=200, block_number=10))
    engine = make_engine(provider, processor)

    result = await engine.reconcile(0, 1000)
    await emitter.drain(timeout=1)

    assert notifier.headers == [CREATED, STARTED, ENDED]
    assert result.new_proposals == 1
    assert result.proposals_seen == 1


async def test_future_window_is_scheduled(provider, processor, emitter, notifier, scheduler):
    provider.add(make_proposal(1, vote_start=2000, vote_end=3000, block_number=10))
    engine = make_engine(provider, processor)

    await engine.reconcile(0, 1000)
    await emitter.drain(timeout=1)

    assert notifier.headers == [CREATED]
    assert scheduler.is_scheduled(1, MilestoneKind.VOTING_STARTED)
    assert scheduler.is_scheduled(1, MilestoneKind.VOTING_ENDED)


async def test_oversized_chunk_is_skipped_and_span_narrows(provider, processor, emitter, notifier):
    provider.add(make_proposal(42, vote_start=100, vote_end=200, block_number=150_000))
    provider.fail_when(lambda start, end: RangeTooLargeError(start, end) if start == 0 else None)
    engine = make_engine(provider, processor, max_chunk_span=100_000, min_chunk_span=1_000)

    result = await engine.reconcile(0, 299_999)
    await emitter.drain(timeout=1)

    assert provider.queries[0] == (0, 99_999)
    assert provider.queries[1] == (100_000, 149_999)
    assert engine.chunk_span == 50_000
    assert result.failed_ranges == [(0, 99_999)]
    assert result.resume_from == 0
    assert not result.complete
    assert notifier.for_proposal(42) == [CREATED, STARTED, ENDED]


async def test_span_never_narrows_below_floor(provider, processor):
    provider.range_limit = 5
    engine = make_engine(provider, processor, max_chunk_span=40, min_chunk_span=10)

    result = await engine.reconcile(0, 99)

    assert engine.chunk_span == 10
    assert result.chunks_ok == 0
    assert result.chunks_failed == len(provider.queries)


async def test_resume_point_stops_at_first_failed_chunk(provider, processor):
    provider.fail_when(lambda start, end: TransportError("timeout") if start == 100 else None)
    engine = make_engine(provider, processor)

    result = await engine.reconcile(0, 399)

    assert result.chunks_ok == 3
    assert result.failed_ranges == [(100, 199)]
    assert result.resume_from == 100


async def test_unexpected_chunk_error_is_skipped(provider, processor):
    provider.fail_when(lambda start, end: ValueError("bad payload") if start == 0 else None)
    engine = make_engine(provider, processor)

    result = await engine.reconcile(0, 199)

    assert result.chunks_failed == 1
    assert result.chunks_ok == 1


async def test_rerun_sends_nothing_new(provider, processor, emitter, notifier):
    provider.add(
        make_proposal(1, vote_start=100, vote_end=200, block_number=10),
        make_proposal(2, vote_start=5000, vote_end=6000, block_number=20),
        make_executed(1, block_number=500),
    )
    engine = make_engine(provider, processor)

    await engine.reconcile(0, 1000)
    await emitter.drain(timeout=1)
    first = len(notifier.sent)

    result = await engine.reconcile(0, 1000)
    await engine.reconcile(400, 1000)
    await emitter.drain(timeout=1)

    assert first == 5
    assert len(notifier.sent) == first
    assert result.new_proposals == 0
    assert result.executed_seen == 1


async def test_execution_of_untracked_proposal_is_alerted(provider, processor, emitter, notifier):
    provider.add(make_executed(77, block_number=950))
    engine = make_engine(provider, processor)

    await engine.catch_up()
    await emitter.drain(timeout=1)

    assert notifier.for_proposal(77) == [EXECUTED]


async def test_catch_up_is_bounded_by_window_and_start_block(provider, processor):
    engine = make_engine(provider, processor, catchup_blocks=300, max_chunk_span=1_000)

    result = await engine.catch_up(tip=1000)
    assert (result.from_block, result.to_block) == (700, 1000)

    floored = make_engine(provider, processor, start_block=900, catchup_blocks=300, max_chunk_span=1_000)
    result = await floored.catch_up(tip=1000)
    assert (result.from_block, result.to_block) == (900, 1000)


async def test_catch_up_uses_provider_tip(provider, processor):
    provider.tip = 5_000
    engine = make_engine(provider, processor, catchup_blocks=100, max_chunk_span=1_000)

    result = await engine.catch_up()

    assert provider.queries == [(4_900, 5_000)]
    assert result.complete


async def test_backfill_resumes_from_cursor(provider, processor, emitter, notifier):
    provider.add(make_proposal(3, vote_start=100, vote_end=200, block_number=150))
    flaky = {"remaining": 1}

    def fail_once(start, end):
        if start == 100 and flaky["remaining"]:
            flaky["remaining"] -= 1
            return TransportError("timeout")
        return None

    provider.fail_when(fail_once)
    engine = make_engine(provider, processor)

    assert await engine.resume_backfill() is None

    first = await engine.backfill(tip=399)
    await emitter.drain(timeout=1)
    assert first.failed_ranges == [(100, 199)]
    assert engine.backfill_cursor == 100
    assert engine.backfill_target == 399
    assert not engine.backfill_complete
    assert notifier.for_proposal(3) == []

    provider.tip = 2_000
    provider.queries.clear()
    resumed = await engine.resume_backfill(tip=2_000)
    await emitter.drain(timeout=1)

    assert provider.queries == [(100, 199), (200, 299), (300, 399)]
    assert resumed.complete
    assert engine.backfill_complete
    assert notifier.for_proposal(3) == [CREATED, STARTED, ENDED]
    assert await engine.resume_backfill() is None


async def test_resume_that_fails_immediately_keeps_cursor(provider, processor):
    provider.fail_when(lambda start, end: TransportError("down") if start == 100 else None)
    engine = make_engine(provider, processor)

    await engine.backfill(tip=299)
    await engine.resume_backfill(tip=299)

    assert engine.backfill_cursor == 100


async def test_backfill_start_override(provider, processor):
    engine = make_engine(provider, processor, max_chunk_span=1_000)

    result = await engine.backfill(tip=800, start=500)

    assert provider.queries == [(500, 800)]
    assert engine.backfill_complete
    assert result.resume_from == 801


@pytest.mark.parametrize("tip_error", [True, False])
async def test_block_reference_falls_back_when_tip_unavailable(provider, processor, emitter, notifier, tip_error):
    if tip_error:
        async def broken_tip():
            raise TransportError("rpc down")
        processor.tip_source = broken_tip

    provider.add(make_proposal(5, vote_start=100, vote_end=200, block_number=10))
    engine = make_engine(provider, processor)

    await engine.reconcile(0, 399)
    await emitter.drain(timeout=1)

    # Tip 1000 or range end 399, both past the window
    assert notifier.for_proposal(5) == [CREATED, STARTED, ENDED]


async def test_timestamp_reference_is_refreshed_per_chunk(provider, registry, emitter, notifier, scheduler):
    clock = MilestoneClock(ClockMode.TIMESTAMP)
    now = [1_000.0]
    clock.wall_clock = lambda: now[0]
    processor = ProposalProcessor(registry, emitter, scheduler, clock)

    def slow_query(start, end):
        # Each chunk takes 100 seconds of wall-clock time
        now[0] += 100
        return None

    provider.fail_when(slow_query)
    provider.add(make_proposal(6, vote_start=1_150, vote_end=5_000, block_number=150))
    engine = make_engine(provider, processor)

    await engine.reconcile(0, 199)
    await emitter.drain(timeout=1)

    # Reference is 1200 when the second chunk is replayed, past vote_start
    assert notifier.for_proposal(6) == [CREATED, STARTED]
    assert not scheduler.is_scheduled(6, MilestoneKind.VOTING_STARTED)
    assert scheduler.is_scheduled(6, MilestoneKind.VOTING_ENDED)
