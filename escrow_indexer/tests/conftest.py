"""Shared fixtures: in-memory SQLite database and a fake chain."""

import pytest

from escrow_indexer.config import Config
from escrow_indexer.db.session import create_tables, dispose_db, init_db
from escrow_indexer.services.aggregator import AggregationEngine
from escrow_indexer.tests.chain_fakes import FACTORY_ADDRESS, FakeChainClient


@pytest.fixture
def test_config() -> Config:
    """Test configuration."""
    return Config(
        factory_address=FACTORY_ADDRESS,
        db_url="sqlite://",
        rpc_url="http://localhost:8545",
        block_batch_size=10_000,
        lookback_blocks=50_000,
        poll_interval_seconds=15,
        batch_delay_seconds=1.0,
    )


@pytest.fixture
def db(test_config):
    """Fresh schema for every test."""
    dispose_db()
    init_db(test_config)
    create_tables()
    yield
    dispose_db()


@pytest.fixture
def chain() -> FakeChainClient:
    return FakeChainClient(height=100)


@pytest.fixture
def engine(chain) -> AggregationEngine:
    return AggregationEngine(chain)


@pytest.fixture
def sleeps():
    """Records requested delays instead of sleeping."""
    recorded = []

    def sleep(seconds):
        recorded.append(seconds)

    sleep.calls = recorded
    return sleep
