"""Tests for the web3-backed client: retry wiring, filters and confirmations."""

import pytest
from web3 import Web3

from escrow_indexer.eth.abi_loader import CAMPAIGN, FACTORY
from escrow_indexer.eth.client import EthereumClient
from escrow_indexer.tests.chain_fakes import CAMPAIGN_ADDRESS, FACTORY_ADDRESS, OTHER_CAMPAIGN_ADDRESS


class HTTPError(Exception):
    pass


class StubFunctions:
    def __init__(self, eth, address):
        self._eth = eth
        self._address = address

    def __getattr__(self, name):
        eth, address = self._eth, self._address

        class Call:
            def __init__(self, *args):
                self.args = args

            def call(self):
                eth.maybe_fail()
                eth.calls.append((address, name, self.args))
                return eth.views[name]

        return Call


class StubContract:
    def __init__(self, eth, address):
        self.functions = StubFunctions(eth, address)


class StubEth:
    """Minimal ``web3.eth`` whose requests fail with 429 a set number of times."""

    def __init__(self, block_number=120):
        self._block_number = block_number
        self.failures = 0
        self.filters = []
        self.calls = []
        self.contracts = []
        self.views = {"getCampaigns": [Web3.to_checksum_address(CAMPAIGN_ADDRESS)], "totalRaised": 7}

    def maybe_fail(self):
        if self.failures:
            self.failures -= 1
            raise HTTPError("429 Client Error: Too Many Requests")

    @property
    def block_number(self):
        self.maybe_fail()
        return self._block_number

    def get_logs(self, filter_params):
        self.maybe_fail()
        self.filters.append(filter_params)
        return [{"logIndex": 0}]

    def contract(self, address, abi):
        self.contracts.append(address)
        return StubContract(self, address)


class StubWeb3:
    def __init__(self, eth):
        self.eth = eth


@pytest.fixture
def eth():
    return StubEth()


@pytest.fixture
def client(test_config, eth, sleeps):
    return EthereumClient(test_config, web3=StubWeb3(eth), sleep=sleeps)


def test_get_logs_retries_rate_limits(client, eth, sleeps):
    eth.failures = 2

    logs = client.get_logs(
        address=[CAMPAIGN_ADDRESS, OTHER_CAMPAIGN_ADDRESS],
        from_block=10,
        to_block=20,
        topics=[["0xabc", "0xdef"]],
    )

    assert logs == [{"logIndex": 0}]
    assert sleeps.calls == [1.0, 2.0]
    assert eth.filters == [
        {
            "fromBlock": 10,
            "toBlock": 20,
            "address": [
                Web3.to_checksum_address(CAMPAIGN_ADDRESS),
                Web3.to_checksum_address(OTHER_CAMPAIGN_ADDRESS),
            ],
            "topics": [["0xabc", "0xdef"]],
        }
    ]


def test_get_logs_single_address(client, eth):
    client.get_logs(address=FACTORY_ADDRESS, from_block=0, to_block=5)

    assert eth.filters[0]["address"] == Web3.to_checksum_address(FACTORY_ADDRESS)
    assert "topics" not in eth.filters[0]


def test_height_subtracts_confirmations(test_config, eth, sleeps):
    test_config.confirmations = 5
    client = EthereumClient(test_config, web3=StubWeb3(eth), sleep=sleeps)
    eth.failures = 1

    assert client.get_current_height() == 115
    assert sleeps.calls == [1.0]

    eth._block_number = 3
    assert client.get_current_height() == 0


def test_call_retries_and_caches_contract(client, eth, sleeps):
    eth.failures = 2

    assert client.call(FACTORY_ADDRESS, FACTORY, "getCampaigns") == eth.views["getCampaigns"]
    assert client.call(FACTORY_ADDRESS.upper().replace("0X", "0x"), FACTORY, "getCampaigns")
    assert client.call(CAMPAIGN_ADDRESS, CAMPAIGN, "totalRaised") == 7

    assert sleeps.calls == [1.0, 2.0]
    assert eth.contracts == [
        Web3.to_checksum_address(FACTORY_ADDRESS),
        Web3.to_checksum_address(CAMPAIGN_ADDRESS),
    ]


def test_retry_settings_come_from_config(test_config, eth, sleeps):
    test_config.max_retries = 3
    test_config.retry_base_delay_seconds = 0.5
    client = EthereumClient(test_config, web3=StubWeb3(eth), sleep=sleeps)
    eth.failures = 10

    with pytest.raises(HTTPError):
        client.get_logs(address=FACTORY_ADDRESS, from_block=0, to_block=1)

    assert sleeps.calls == [0.5, 1.0]
    assert eth.failures == 7


def test_non_retryable_error_is_not_retried(client, eth, sleeps):
    def reverted(filter_params):
        raise ValueError("execution reverted")

    eth.get_logs = reverted

    with pytest.raises(ValueError):
        client.get_logs(address=FACTORY_ADDRESS, from_block=0, to_block=1)

    assert sleeps.calls == []
