"""Event log decoder.

Raw logs from the factory and from campaign contracts are decoded against the
bundled ABIs into immutable ``ChainEvent`` records. The set of event kinds is
closed: each ``EventName`` has exactly one argument extractor, and a log that
cannot be matched or decoded raises ``DecodeError`` for the caller to skip.
"""

from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, field_validator
from web3 import Web3
from web3.types import LogReceipt

from escrow_indexer.eth.abi_loader import CAMPAIGN, FACTORY, load_abi
from escrow_indexer.eth.topics import topics_by_name
from escrow_indexer.log import get_logger

logger = get_logger(__name__)


class EventName(str, Enum):
    """Event kinds tracked by the indexer."""

    CAMPAIGN_CREATED = "CampaignCreated"
    DEPOSITED = "Deposited"
    WITHDRAWN = "Withdrawn"
    REFUNDED = "Refunded"
    FUNDS_RETURNED = "FundsReturned"
    CLAIMED = "Claimed"


FACTORY_EVENTS = frozenset({EventName.CAMPAIGN_CREATED})
CAMPAIGN_EVENTS = frozenset(EventName) - FACTORY_EVENTS


class DecodeError(Exception):
    """A log could not be decoded into a ChainEvent."""


class ChainEvent(BaseModel):
    """One decoded on-chain occurrence.

    Identity is (tx_hash, log_index); replay order is (block_number, log_index).
    ``args`` holds lowercase addresses and unsigned integers as decimal strings.
    """

    model_config = ConfigDict(frozen=True)

    tx_hash: str
    log_index: int
    block_number: int
    campaign_address: str
    event_name: EventName
    args: Mapping[str, str]

    @field_validator("tx_hash", "campaign_address")
    @classmethod
    def lowercase_hex(cls, v: str) -> str:
        """Ensure hex strings are lowercase."""
        return v.lower() if v else v

    @field_validator("args")
    @classmethod
    def freeze_args(cls, v: Mapping[str, str]) -> Mapping[str, str]:
        """Read-only view over a private copy of the arguments."""
        return MappingProxyType(dict(v))

    @property
    def identity(self) -> Tuple[str, int]:
        return (self.tx_hash, self.log_index)

    @property
    def ordering_key(self) -> Tuple[int, int]:
        return (self.block_number, self.log_index)

    @property
    def wallet(self) -> Optional[str]:
        """The participant this event belongs to (investor or creator), if any."""
        return self.args.get("investor") or self.args.get("creator")

    def with_args(self, **extra: str) -> "ChainEvent":
        """Copy of the event with additional arguments."""
        return self.model_copy(update={"args": MappingProxyType({**self.args, **extra})})


def _address(value: Any) -> str:
    return str(value).lower()


def _uint(value: Any) -> str:
    return str(int(value))


def _hex(value: Any) -> str:
    if isinstance(value, str):
        return value.lower()
    return Web3.to_hex(value).lower()


ArgExtractor = Callable[[Mapping[str, Any], str], Tuple[str, Dict[str, str]]]


def _campaign_created(args: Mapping[str, Any], emitter: str) -> Tuple[str, Dict[str, str]]:
    # The created campaign is the subject; the token is filled in later from a live read
    return _address(args["campaign"]), {
        "creator": _address(args["creator"]),
        "floor": _uint(args["floor"]),
        "ceil": _uint(args["ceil"]),
    }


def _deposited(args: Mapping[str, Any], emitter: str) -> Tuple[str, Dict[str, str]]:
    return emitter, {"investor": _address(args["investor"]), "amount": _uint(args["amount"])}


def _withdrawn(args: Mapping[str, Any], emitter: str) -> Tuple[str, Dict[str, str]]:
    return emitter, {"amount": _uint(args["amount"]), "timestamp": _uint(args["timestamp"])}


def _refunded(args: Mapping[str, Any], emitter: str) -> Tuple[str, Dict[str, str]]:
    return emitter, {"investor": _address(args["investor"]), "amount": _uint(args["amount"])}


def _funds_returned(args: Mapping[str, Any], emitter: str) -> Tuple[str, Dict[str, str]]:
    return emitter, {"amount": _uint(args["amount"])}


def _claimed(args: Mapping[str, Any], emitter: str) -> Tuple[str, Dict[str, str]]:
    return emitter, {"investor": _address(args["investor"]), "amount": _uint(args["amount"])}


ARG_EXTRACTORS: Dict[EventName, ArgExtractor] = {
    EventName.CAMPAIGN_CREATED: _campaign_created,
    EventName.DEPOSITED: _deposited,
    EventName.WITHDRAWN: _withdrawn,
    EventName.REFUNDED: _refunded,
    EventName.FUNDS_RETURNED: _funds_returned,
    EventName.CLAIMED: _claimed,
}

_missing = set(EventName) - set(ARG_EXTRACTORS)
if _missing:
    raise RuntimeError(f"No argument extractor for events: {sorted(e.value for e in _missing)}")


class EventDecoder:
    """Decodes factory and campaign logs using the bundled ABIs."""

    def __init__(self):
        self._contracts = {
            FACTORY: Web3().eth.contract(abi=load_abi(FACTORY)),
            CAMPAIGN: Web3().eth.contract(abi=load_abi(CAMPAIGN)),
        }
        self._event_by_topic = {
            name: {topic: EventName(event) for event, topic in topics_by_name(name).items()}
            for name in (FACTORY, CAMPAIGN)
        }

    def decode(self, log: LogReceipt, contract_name: str) -> ChainEvent:
        """Decode a raw log.

        Args:
            log: Raw log receipt from get_logs
            contract_name: ABI family, "CampaignFactory" or "Campaign"

        Returns:
            Decoded ChainEvent

        Raises:
            DecodeError: If the log does not match a known event or is malformed
        """
        topics = log.get("topics") or []
        if not topics:
            raise DecodeError("Log has no topics")

        topic0 = _hex(topics[0])
        event_name = self._event_by_topic[contract_name].get(topic0)
        if event_name is None:
            raise DecodeError(f"Unknown {contract_name} event topic {topic0}")

        contract = self._contracts[contract_name]
        try:
            decoded = getattr(contract.events, event_name.value)().process_log(log)
            campaign_address, args = ARG_EXTRACTORS[event_name](
                decoded["args"], _address(log["address"])
            )
            return ChainEvent(
                tx_hash=_hex(log["transactionHash"]),
                log_index=int(log["logIndex"]),
                block_number=int(log["blockNumber"]),
                campaign_address=campaign_address,
                event_name=event_name,
                args=args,
            )
        except Exception as e:
            raise DecodeError(f"Failed to decode {event_name.value}: {e}") from e

    def decode_factory_event(self, log: LogReceipt) -> ChainEvent:
        """Decode a CampaignFactory log."""
        return self.decode(log, FACTORY)

    def decode_campaign_event(self, log: LogReceipt) -> ChainEvent:
        """Decode a Campaign log."""
        return self.decode(log, CAMPAIGN)


def event_to_dict(event: ChainEvent) -> Dict[str, Any]:
    """JSON-ready representation of an event."""
    return {
        "tx_hash": event.tx_hash,
        "log_index": event.log_index,
        "block_number": event.block_number,
        "campaign": event.campaign_address,
        "event_name": event.event_name.value,
        "args": dict(event.args),
    }
