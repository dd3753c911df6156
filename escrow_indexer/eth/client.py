"""Web3 client for Ethereum RPC interactions."""

import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from web3 import Web3
from web3.types import LogReceipt

from escrow_indexer.config import Config
from escrow_indexer.eth.abi_loader import load_abi
from escrow_indexer.eth.retry import with_retry
from escrow_indexer.log import get_logger

logger = get_logger(__name__)


class EthereumClient:
    """Ethereum RPC client; every request goes through the rate-limit retry."""

    def __init__(
        self,
        config: Config,
        web3: Optional[Web3] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize Web3 client.

        Args:
            config: Configuration object with RPC URL and retry settings
            web3: Pre-built Web3 instance (a new HTTP provider is created if omitted)
            sleep: Sleep primitive used between retries
        """
        self.config = config
        self.sleep = sleep
        self._contracts: Dict[tuple, Any] = {}

        if web3 is None:
            web3 = Web3(Web3.HTTPProvider(config.rpc_url))
            if not web3.is_connected():
                raise ConnectionError(f"Failed to connect to RPC: {config.rpc_url}")
            logger.info(f"Connected to Ethereum RPC: {config.rpc_url}")
        self.web3 = web3

    def _retry(self, fn: Callable[[], Any], label: str) -> Any:
        return with_retry(
            fn,
            label,
            max_retries=self.config.max_retries,
            base_delay=self.config.retry_base_delay_seconds,
            sleep=self.sleep,
        )

    def get_current_height(self) -> int:
        """Get latest block number with confirmations applied.

        Returns:
            Block number (latest - confirmations)
        """
        latest = self._retry(lambda: self.web3.eth.block_number, "block number")
        return max(0, int(latest) - self.config.confirmations)

    def get_logs(
        self,
        address: Union[str, Sequence[str], None],
        from_block: int,
        to_block: int,
        topics: Optional[List[Any]] = None,
    ) -> List[LogReceipt]:
        """Get event logs for one or more contract addresses and a block range.

        Args:
            address: Contract address, list of addresses, or None for all
            from_block: Starting block number
            to_block: Ending block number (inclusive)
            topics: Topic filter; a nested list in position 0 ORs event signatures

        Returns:
            List of log receipts
        """
        filter_params: Dict[str, Any] = {
            "fromBlock": from_block,
            "toBlock": to_block,
        }

        if isinstance(address, str):
            filter_params["address"] = Web3.to_checksum_address(address)
        elif address:
            filter_params["address"] = [Web3.to_checksum_address(a) for a in address]

        if topics:
            filter_params["topics"] = topics

        logs = self._retry(
            lambda: self.web3.eth.get_logs(filter_params),
            f"logs {from_block}-{to_block}",
        )
        return list(logs)

    def _contract(self, address: str, contract_name: str) -> Any:
        key = (address.lower(), contract_name)
        if key not in self._contracts:
            self._contracts[key] = self.web3.eth.contract(
                address=Web3.to_checksum_address(address),
                abi=load_abi(contract_name),
            )
        return self._contracts[key]

    def call(self, address: str, contract_name: str, function_name: str, *args: Any) -> Any:
        """Call a read-only contract function.

        Args:
            address: Contract address
            contract_name: ABI to use ("CampaignFactory", "Campaign" or "ERC20")
            function_name: View function name
            *args: Function arguments

        Returns:
            Decoded return value (addresses come back checksummed)
        """
        function = getattr(self._contract(address, contract_name).functions, function_name)
        return self._retry(
            lambda: function(*args).call(),
            f"{contract_name}.{function_name} on {address}",
        )
