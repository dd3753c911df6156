"""ERC20 symbol/decimals cache."""

from dataclasses import dataclass
from typing import Dict

from escrow_indexer.eth.abi_loader import ERC20
from escrow_indexer.log import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class TokenInfo:
    symbol: str
    decimals: int


class TokenMetadataCache:
    """Memoizes token metadata per lowercase address.

    Entries are fetched on first use and never invalidated; token symbol and
    decimals are immutable on-chain.
    """

    def __init__(self, client):
        """Initialize cache.

        Args:
            client: Chain client exposing ``call(address, contract_name, function_name)``
        """
        self.client = client
        self._entries: Dict[str, TokenInfo] = {}

    def get(self, token_address: str) -> TokenInfo:
        """Return token metadata, fetching it on a cache miss.

        Args:
            token_address: ERC20 contract address

        Returns:
            TokenInfo for the token
        """
        key = token_address.lower()
        info = self._entries.get(key)
        if info is not None:
            return info

        symbol = self.client.call(key, ERC20, "symbol")
        decimals = self.client.call(key, ERC20, "decimals")
        info = TokenInfo(symbol=str(symbol), decimals=int(decimals))
        self._entries[key] = info
        logger.debug(f"Cached token {key}: {info.symbol} ({info.decimals} decimals)")
        return info

    def __contains__(self, token_address: str) -> bool:
        return token_address.lower() in self._entries

    def __len__(self) -> int:
        return len(self._entries)
