"""Tests for block range processing and the backfill/poll state machine."""

import pytest

from escrow_indexer.db.models import CampaignStats, UserStats
from escrow_indexer.db.session import get_session
from escrow_indexer.pipeline import block_processor
from escrow_indexer.pipeline.block_processor import BatchResult, BlockRangeProcessor
from escrow_indexer.pipeline.poll_loop import Indexer, Phase
from escrow_indexer.services.checkpoint import get_checkpoint, set_checkpoint
from escrow_indexer.services.event_store import count_events, list_by_campaign
from escrow_indexer.tests.chain_fakes import (
    CAMPAIGN_ADDRESS,
    CREATOR,
    INVESTOR_A,
    INVESTOR_B,
    TOKEN_ADDRESS,
    campaign_created_log,
    campaign_log,
)

USDC = 10**6


class RecordingProcessor:
    """Processor stub recording the ranges it is asked to process."""

    def __init__(self, failures=0):
        self.ranges = []
        self.failures = failures

    def process(self, from_block, to_block):
        if self.failures:
            self.failures -= 1
            raise ConnectionError("429 Too Many Requests")
        self.ranges.append((from_block, to_block))
        return BatchResult(from_block=from_block, to_block=to_block)


def checkpoint():
    with get_session() as session:
        return get_checkpoint(session)


@pytest.fixture
def usdc_chain(chain):
    chain.add_token(TOKEN_ADDRESS, "USDC", 6)
    chain.add_campaign(
        CAMPAIGN_ADDRESS,
        creator=CREATOR,
        token=TOKEN_ADDRESS,
        floor=1000 * USDC,
        ceil=5000 * USDC,
    )
    chain.add_logs(campaign_created_log(CAMPAIGN_ADDRESS, CREATOR, 1000 * USDC, 5000 * USDC, block_number=10))
    return chain


@pytest.fixture
def processor(test_config, usdc_chain, engine):
    return BlockRangeProcessor(test_config, usdc_chain, engine)


def test_backfill_batches_from_lookback(db, test_config, chain, sleeps):
    test_config.block_batch_size = 10
    test_config.lookback_blocks = 25
    stub = RecordingProcessor()
    indexer = Indexer(test_config, chain, stub, sleep=sleeps)

    assert indexer.backfill() == 100

    assert stub.ranges == [(75, 84), (85, 94), (95, 100)]
    assert checkpoint() == 100
    assert sleeps.calls == [test_config.batch_delay_seconds] * 2


def test_no_batch_delay_after_last_batch(db, test_config, chain, sleeps):
    """The poll interval follows the final batch directly."""
    test_config.block_batch_size = 40
    stub = RecordingProcessor()
    indexer = Indexer(test_config, chain, stub, sleep=sleeps)

    indexer.run(max_steps=2)

    assert stub.ranges == [(0, 39), (40, 79), (80, 100)]
    assert sleeps.calls == [
        test_config.batch_delay_seconds,
        test_config.batch_delay_seconds,
        test_config.poll_interval_seconds,
    ]


def test_backfill_resumes_after_checkpoint(db, test_config, chain, sleeps):
    with get_session() as session:
        set_checkpoint(session, 90)
    stub = RecordingProcessor()

    Indexer(test_config, chain, stub, sleep=sleeps).backfill()

    assert stub.ranges == [(91, 100)]
    assert checkpoint() == 100


def test_backfill_when_up_to_date(db, test_config, chain, sleeps):
    with get_session() as session:
        set_checkpoint(session, 100)
    stub = RecordingProcessor()

    Indexer(test_config, chain, stub, sleep=sleeps).backfill()

    assert stub.ranges == []
    assert sleeps.calls == []


def test_poll_processes_single_range(db, test_config, chain, sleeps):
    test_config.block_batch_size = 2
    stub = RecordingProcessor()
    indexer = Indexer(test_config, chain, stub, sleep=sleeps)
    with get_session() as session:
        set_checkpoint(session, 100)

    assert indexer.poll_once() is None

    chain.height = 110
    result = indexer.poll_once()

    assert (result.from_block, result.to_block) == (101, 110)
    assert stub.ranges == [(101, 110)]
    assert checkpoint() == 110


def test_run_moves_from_backfill_to_polling(db, test_config, chain, sleeps):
    stub = RecordingProcessor()
    indexer = Indexer(test_config, chain, stub, sleep=sleeps)
    assert indexer.phase is Phase.BACKFILLING

    indexer.run(max_steps=1)
    assert indexer.phase is Phase.POLLING

    chain.height = 105
    indexer.run(max_steps=1)

    assert stub.ranges == [(0, 100), (101, 105)]
    assert checkpoint() == 105


def test_backfill_error_is_retried_after_poll_interval(db, test_config, chain, sleeps):
    stub = RecordingProcessor(failures=1)
    indexer = Indexer(test_config, chain, stub, sleep=sleeps)

    indexer.run(max_steps=2)

    assert stub.ranges == [(0, 100)]
    assert indexer.phase is Phase.POLLING
    assert sleeps.calls[0] == test_config.poll_interval_seconds
    assert checkpoint() == 100


def test_poll_error_keeps_checkpoint(db, test_config, chain, sleeps):
    stub = RecordingProcessor()
    indexer = Indexer(test_config, chain, stub, sleep=sleeps)
    indexer.run(max_steps=1)

    chain.height = 120
    stub.failures = 1
    indexer.run(max_steps=1)
    assert checkpoint() == 100

    indexer.run(max_steps=1)
    assert stub.ranges[-1] == (101, 120)
    assert checkpoint() == 120


def test_stop_ends_run(db, test_config, chain, sleeps):
    stub = RecordingProcessor()
    indexer = Indexer(test_config, chain, stub, sleep=sleeps)

    def stop_on_sleep(seconds):
        sleeps(seconds)
        indexer.stop()

    indexer.sleep = stop_on_sleep
    indexer.run()

    assert indexer.stopped
    assert stub.ranges == [(0, 100)]


def test_reindex_range_leaves_checkpoint(db, test_config, chain, sleeps):
    test_config.block_batch_size = 50
    stub = RecordingProcessor()

    Indexer(test_config, chain, stub, sleep=sleeps).reindex_range(0, 120)

    assert stub.ranges == [(0, 49), (50, 99), (100, 120)]
    assert sleeps.calls == [test_config.batch_delay_seconds] * 2
    assert checkpoint() is None


def test_end_to_end_usdc_campaign(db, test_config, usdc_chain, processor, sleeps):
    usdc_chain.add_logs(campaign_log("Deposited", CAMPAIGN_ADDRESS, 12, 1, investor=INVESTOR_A, amount=500 * USDC))
    usdc_chain.set_campaign_state(CAMPAIGN_ADDRESS, total_raised=500 * USDC)

    Indexer(test_config, usdc_chain, processor, sleep=sleeps).backfill()

    with get_session() as session:
        stats = session.get(CampaignStats, CAMPAIGN_ADDRESS)
        assert stats.floor_amount == "1000"
        assert stats.ceil_amount == "5000"
        assert stats.total_raised == "500"
        assert stats.investor_count == 1
        assert stats.status == "active"
        assert stats.token_symbol == "USDC"

        creator = session.get(UserStats, CREATOR)
        assert creator.campaigns_created == 1
        assert creator.creator_total_raised == "500"

        investor = session.get(UserStats, INVESTOR_A)
        assert investor.investor_total_deposited == "500"

        history = list_by_campaign(session, CAMPAIGN_ADDRESS)
        assert [e.event_name.value for e in history] == ["CampaignCreated", "Deposited"]
        assert history[0].args["token"] == TOKEN_ADDRESS

    assert checkpoint() == 100


def test_campaign_logs_fetched_in_one_call(db, usdc_chain, processor):
    processor.process(0, 100)

    campaign_calls = [c for c in usdc_chain.get_logs_calls if isinstance(c["address"], list)]
    assert len(campaign_calls) == 1
    assert campaign_calls[0]["address"] == [CAMPAIGN_ADDRESS]
    assert len(campaign_calls[0]["topics"][0]) == 5


def test_logs_processed_in_chain_order(db, usdc_chain, processor, monkeypatch):
    usdc_chain.add_logs(
        campaign_log("Deposited", CAMPAIGN_ADDRESS, 20, 4, investor=INVESTOR_B, amount=1),
        campaign_log("Deposited", CAMPAIGN_ADDRESS, 20, 1, investor=INVESTOR_A, amount=2),
        campaign_log("Deposited", CAMPAIGN_ADDRESS, 15, 9, investor=INVESTOR_A, amount=3),
    )
    stored = []
    original = block_processor.append_event

    def recording_append(session, event):
        stored.append(event.ordering_key)
        return original(session, event)

    monkeypatch.setattr(block_processor, "append_event", recording_append)
    processor.process(0, 100)

    assert stored == [(10, 0), (15, 9), (20, 1), (20, 4)]


def test_undecodable_log_is_skipped(db, usdc_chain, processor):
    bad = campaign_log("Deposited", CAMPAIGN_ADDRESS, 12, 0, investor=INVESTOR_A, amount=1)
    bad["data"] = b"\x01"
    usdc_chain.add_logs(bad, campaign_log("Deposited", CAMPAIGN_ADDRESS, 13, 0, investor=INVESTOR_B, amount=1))

    result = processor.process(0, 100)

    assert result.skipped == 1
    assert result.inserted == 2
    assert result.investors == [INVESTOR_B]


def test_duplicate_delivery_still_recomputes(db, usdc_chain, processor):
    usdc_chain.add_logs(campaign_log("Deposited", CAMPAIGN_ADDRESS, 12, 0, investor=INVESTOR_A, amount=5 * USDC))
    processor.process(0, 100)

    usdc_chain.set_campaign_state(CAMPAIGN_ADDRESS, total_raised=5 * USDC)
    result = processor.process(0, 100)

    assert result.inserted == 0
    assert result.campaigns == [CAMPAIGN_ADDRESS]
    with get_session() as session:
        assert count_events(session) == 2
        assert session.get(CampaignStats, CAMPAIGN_ADDRESS).total_raised == "5"


def test_failed_batch_keeps_checkpoint_and_converges(db, test_config, usdc_chain, processor, sleeps, monkeypatch):
    """A batch dying after 3 of its events are stored is redone without double counting."""
    for i in range(4):
        usdc_chain.add_logs(
            campaign_log("Deposited", CAMPAIGN_ADDRESS, 20 + i, 0, investor=INVESTOR_A, amount=10 * USDC)
        )
    usdc_chain.set_campaign_state(CAMPAIGN_ADDRESS, total_raised=40 * USDC)
    with get_session() as session:
        set_checkpoint(session, 0)

    original = block_processor.append_event
    calls = {"n": 0}

    def flaky_append(session, event):
        calls["n"] += 1
        if calls["n"] == 4:
            raise RuntimeError("database went away")
        return original(session, event)

    monkeypatch.setattr(block_processor, "append_event", flaky_append)
    indexer = Indexer(test_config, usdc_chain, processor, sleep=sleeps)

    with pytest.raises(RuntimeError):
        indexer.poll_once()

    assert checkpoint() == 0
    with get_session() as session:
        assert count_events(session) == 3

    monkeypatch.setattr(block_processor, "append_event", original)
    result = indexer.poll_once()

    assert result.inserted == 2
    assert checkpoint() == 100
    with get_session() as session:
        assert count_events(session) == 5
        stats = session.get(CampaignStats, CAMPAIGN_ADDRESS)
        assert stats.total_raised == "40"
        assert stats.investor_count == 1
        investor = session.get(UserStats, INVESTOR_A)
        assert investor.investor_total_deposited == "40"
        assert investor.campaigns_invested == 1
