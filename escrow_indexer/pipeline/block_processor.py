"""Block range processor - fetch, decode, store, then aggregate one range."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from web3.types import LogReceipt

from escrow_indexer.config import Config
from escrow_indexer.db.session import get_session
from escrow_indexer.eth.abi_loader import CAMPAIGN, FACTORY
from escrow_indexer.eth.decoder import ChainEvent, DecodeError, EventDecoder, EventName
from escrow_indexer.eth.topics import get_all_campaign_topics, get_campaign_created_topic
from escrow_indexer.log import get_logger
from escrow_indexer.services.aggregator import AggregationEngine
from escrow_indexer.services.event_store import append_event

logger = get_logger(__name__)

INVESTOR_EVENTS = frozenset({EventName.DEPOSITED, EventName.REFUNDED, EventName.CLAIMED})


@dataclass
class BatchResult:
    """Outcome of processing one block range."""

    from_block: int
    to_block: int
    decoded: int = 0
    inserted: int = 0
    skipped: int = 0
    campaigns: List[str] = field(default_factory=list)
    creators: List[str] = field(default_factory=list)
    investors: List[str] = field(default_factory=list)


class BlockRangeProcessor:
    """Processes factory and campaign events for a block range.

    All events of the range are appended to the event store first (each append
    commits on its own), then the affected campaigns, their creators and the
    affected investors are recomputed. Events already stored by an earlier,
    interrupted attempt still trigger recomputation, so retrying a range heals
    stats that were never rebuilt.
    """

    def __init__(
        self,
        config: Config,
        client,
        engine: AggregationEngine,
        decoder: Optional[EventDecoder] = None,
    ):
        """Initialize processor.

        Args:
            config: Configuration object
            client: Chain client (get_logs / call)
            engine: Aggregation engine used for recomputation
            decoder: Event decoder (created if omitted)
        """
        self.config = config
        self.client = client
        self.engine = engine
        self.decoder = decoder or EventDecoder()
        self.factory_address = config.factory_address.lower()

    def discover_campaigns(self) -> List[str]:
        """Campaign addresses currently registered in the factory."""
        addresses = self.client.call(self.factory_address, FACTORY, "getCampaigns")
        return [str(address).lower() for address in addresses]

    def process(self, from_block: int, to_block: int) -> BatchResult:
        """Index one block range.

        Args:
            from_block: Starting block number
            to_block: Ending block number (inclusive)

        Returns:
            BatchResult with counts and the recomputed addresses

        Raises:
            Exception: RPC failures after retries and storage errors propagate
                so the caller leaves the checkpoint where it was
        """
        result = BatchResult(from_block=from_block, to_block=to_block)

        events = self._factory_events(from_block, to_block, result)
        created = [event.campaign_address for event in events]
        events.extend(self._campaign_events(from_block, to_block, created, result))

        for event in events:
            with get_session() as session:
                if append_event(session, event):
                    result.inserted += 1

        self._aggregate(events, result)

        logger.info(
            f"Blocks {from_block}-{to_block}: {result.decoded} events "
            f"({result.inserted} new, {result.skipped} undecodable), "
            f"{len(result.campaigns)} campaigns, {len(result.investors)} investors recomputed"
        )
        return result

    def _factory_events(self, from_block: int, to_block: int, result: BatchResult) -> List[ChainEvent]:
        logs = self.client.get_logs(
            address=self.factory_address,
            from_block=from_block,
            to_block=to_block,
            topics=[get_campaign_created_topic()],
        )

        events = []
        for log in _sorted_logs(logs):
            event = self._decode(log, FACTORY, result)
            if event is None:
                continue
            token = self.client.call(event.campaign_address, CAMPAIGN, "token")
            event = event.with_args(token=str(token).lower())
            logger.info(f"  [{event.block_number}] CampaignCreated: {event.campaign_address}")
            events.append(event)
        return events

    def _campaign_events(
        self,
        from_block: int,
        to_block: int,
        created: List[str],
        result: BatchResult,
    ) -> List[ChainEvent]:
        addresses = list(dict.fromkeys(self.discover_campaigns() + created))
        if not addresses:
            logger.debug("No known campaigns to index")
            return []

        logs = self.client.get_logs(
            address=addresses,
            from_block=from_block,
            to_block=to_block,
            topics=[get_all_campaign_topics()],
        )

        events = []
        for log in _sorted_logs(logs):
            event = self._decode(log, CAMPAIGN, result)
            if event is None:
                continue
            logger.info(
                f"  [{event.block_number}] {event.event_name.value} on {event.campaign_address[:10]}..."
            )
            events.append(event)
        return events

    def _decode(self, log: LogReceipt, contract_name: str, result: BatchResult) -> Optional[ChainEvent]:
        try:
            event = self.decoder.decode(log, contract_name)
        except DecodeError as e:
            result.skipped += 1
            logger.warning(
                f"Skipping undecodable {contract_name} log at block {log.get('blockNumber')} "
                f"index {log.get('logIndex')}: {e}"
            )
            return None
        result.decoded += 1
        return event

    def _aggregate(self, events: List[ChainEvent], result: BatchResult) -> None:
        campaigns: Dict[str, None] = {}
        creators: Dict[str, None] = {}
        investors: Dict[str, None] = {}

        for event in events:
            if event.event_name == EventName.CLAIMED:
                # Claims only move investor totals, unless the campaign has no stats row yet
                if self.engine.creator_of(event.campaign_address) is None:
                    campaigns.setdefault(event.campaign_address)
            else:
                campaigns.setdefault(event.campaign_address)
            if event.event_name == EventName.CAMPAIGN_CREATED:
                creators.setdefault(event.args["creator"])
            if event.event_name in INVESTOR_EVENTS:
                investors.setdefault(event.args["investor"])

        for campaign in campaigns:
            stats = self.engine.recompute_campaign_stats(campaign)
            creators.setdefault(stats["creator"])

        for creator in creators:
            self.engine.recompute_creator_stats(creator)

        for investor in investors:
            self.engine.recompute_investor_stats(investor)

        result.campaigns = list(campaigns)
        result.creators = list(creators)
        result.investors = list(investors)


def _sorted_logs(logs: List[LogReceipt]) -> List[LogReceipt]:
    return sorted(logs, key=lambda log: (int(log["blockNumber"]), int(log["logIndex"])))
