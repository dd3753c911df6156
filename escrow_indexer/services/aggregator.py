"""Aggregation engine - rebuilds campaign and wallet statistics.

Every recomputation is a pure read of the stored event history plus live
contract state followed by a single upsert. Nothing is ever incremented in
place, so running a recomputation again after a retried or redelivered batch
converges to the same row.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from escrow_indexer.db.models import CampaignStats, UserStats
from escrow_indexer.db.session import dialect_insert, get_session
from escrow_indexer.eth.abi_loader import CAMPAIGN
from escrow_indexer.eth.decoder import EventName
from escrow_indexer.eth.tokens import TokenMetadataCache
from escrow_indexer.log import get_logger
from escrow_indexer.services.event_store import list_by_campaign, list_by_wallet, list_wallet_events
from escrow_indexer.utils.formatting import (
    decimal_to_str,
    format_units,
    subtract,
    sum_decimal_strings,
    to_decimal,
)

logger = get_logger(__name__)

STATUS_ACTIVE = "active"
STATUS_WITHDRAWN = "withdrawn"
STATUS_RETURNED = "returned"


@dataclass(frozen=True)
class CampaignState:
    """Live view-function values of one campaign contract."""

    creator: str
    token: str
    floor: int
    ceil: int
    total_raised: int
    returned_amount: int
    withdrawn_at: int


def campaign_status(withdrawn_at: int, returned_amount: int) -> str:
    """Lifecycle status derived from the withdrawal timestamp and returned funds."""
    if withdrawn_at == 0:
        return STATUS_ACTIVE
    return STATUS_RETURNED if returned_amount > 0 else STATUS_WITHDRAWN


def _upsert(session: Session, model: Any, key: str, values: Dict[str, Any]) -> None:
    """Insert a row or overwrite only the given columns of the existing one.

    An existing row whose given columns already hold the new values is left
    untouched, updated_at included, so repeating a recomputation is a no-op.
    """
    now = datetime.utcnow()
    stmt = dialect_insert(session, model).values(**values, updated_at=now)
    columns = [column for column in values if column != key]
    update_columns = {column: getattr(stmt.excluded, column) for column in columns}
    update_columns["updated_at"] = now
    changed = or_(
        *(model.__table__.c[column].is_distinct_from(getattr(stmt.excluded, column)) for column in columns)
    )
    stmt = stmt.on_conflict_do_update(index_elements=[key], set_=update_columns, where=changed)
    session.execute(stmt)


class AggregationEngine:
    """Recomputes CampaignStats and UserStats rows."""

    def __init__(self, client, token_cache: Optional[TokenMetadataCache] = None):
        """Initialize engine.

        Args:
            client: Chain client exposing ``call(address, contract_name, function_name)``
            token_cache: Token metadata cache (a new one is created if omitted)
        """
        self.client = client
        self.token_cache = token_cache or TokenMetadataCache(client)

    def read_campaign_state(self, campaign_address: str) -> CampaignState:
        """Read the campaign's current totals straight from the contract.

        Args:
            campaign_address: Campaign contract address

        Returns:
            CampaignState with lowercase addresses and integer amounts
        """

        def read(function_name: str) -> Any:
            return self.client.call(campaign_address, CAMPAIGN, function_name)

        return CampaignState(
            creator=str(read("creator")).lower(),
            token=str(read("token")).lower(),
            floor=int(read("floor")),
            ceil=int(read("ceil")),
            total_raised=int(read("totalRaised")),
            returned_amount=int(read("returnedAmount")),
            withdrawn_at=int(read("withdrawnAt")),
        )

    def recompute_campaign_stats(self, campaign_address: str) -> Dict[str, Any]:
        """Rebuild the campaign_stats row of one campaign.

        Totals come from the contract; the investor count is the number of
        distinct depositors in the event history, refunds included.

        Args:
            campaign_address: Campaign contract address

        Returns:
            The stats values written
        """
        address = campaign_address.lower()
        state = self.read_campaign_state(address)
        token = self.token_cache.get(state.token)

        with get_session() as session:
            events = list_by_campaign(session, address)
        investors = {
            event.args["investor"]
            for event in events
            if event.event_name == EventName.DEPOSITED and event.args.get("investor")
        }

        total_raised = format_units(state.total_raised, token.decimals)
        total_returned = format_units(state.returned_amount, token.decimals)

        stats = {
            "campaign": address,
            "creator": state.creator,
            "token": state.token,
            "token_symbol": token.symbol,
            "token_decimals": token.decimals,
            "floor_amount": format_units(state.floor, token.decimals),
            "ceil_amount": format_units(state.ceil, token.decimals),
            "total_raised": total_raised,
            "total_returned": total_returned,
            "investor_count": len(investors),
            "withdrawn_at": state.withdrawn_at,
            "pnl": subtract(to_decimal(total_returned), to_decimal(total_raised)),
            "status": campaign_status(state.withdrawn_at, state.returned_amount),
        }

        with get_session() as session:
            _upsert(session, CampaignStats, "campaign", stats)

        logger.debug(
            f"Campaign {address}: raised={total_raised} returned={total_returned} "
            f"investors={len(investors)} status={stats['status']}"
        )
        return stats

    def recompute_creator_stats(self, wallet: str) -> Dict[str, Any]:
        """Rebuild the creator role of a wallet from its campaign_stats rows.

        Investor-role columns of an existing row are left untouched.

        Args:
            wallet: Creator address

        Returns:
            The creator-role values written
        """
        wallet = wallet.lower()

        with get_session() as session:
            campaigns = session.scalars(
                select(CampaignStats).where(CampaignStats.creator == wallet)
            ).all()

            raised = sum_decimal_strings(c.total_raised for c in campaigns)
            returned = sum_decimal_strings(c.total_returned for c in campaigns)
            creator = {
                "campaigns_created": len(campaigns),
                "creator_total_raised": decimal_to_str(raised),
                "creator_total_returned": decimal_to_str(returned),
                "creator_pnl": subtract(returned, raised),
            }
            _upsert(session, UserStats, "wallet", {"wallet": wallet, **creator})

        logger.debug(f"Creator {wallet}: {creator}")
        return creator

    def recompute_investor_stats(self, wallet: str) -> Dict[str, Any]:
        """Rebuild the investor role of a wallet from its event history.

        Amounts are summed per campaign in raw units, converted with that
        campaign's token decimals, then summed across campaigns. Campaigns
        without a stats row yet are left out until their row exists.

        Args:
            wallet: Investor address

        Returns:
            The investor-role values written
        """
        wallet = wallet.lower()

        with get_session() as session:
            events = list_wallet_events(
                session, wallet, EventName.DEPOSITED, EventName.CLAIMED, EventName.REFUNDED
            )
            campaigns = {event.campaign_address for event in events}
            decimals: Dict[str, int] = {}
            if campaigns:
                decimals = dict(
                    session.execute(
                        select(CampaignStats.campaign, CampaignStats.token_decimals).where(
                            CampaignStats.campaign.in_(sorted(campaigns))
                        )
                    ).all()
                )

            raw: Dict[EventName, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
            for event in events:
                if event.campaign_address in decimals:
                    raw[event.event_name][event.campaign_address] += int(event.args["amount"])

            def total(kind: EventName) -> str:
                return decimal_to_str(
                    sum_decimal_strings(
                        format_units(amount, decimals[campaign])
                        for campaign, amount in raw[kind].items()
                    )
                )

            deposited = total(EventName.DEPOSITED)
            claimed = total(EventName.CLAIMED)
            refunded = total(EventName.REFUNDED)
            investor = {
                "campaigns_invested": sum(1 for amount in raw[EventName.DEPOSITED].values() if amount > 0),
                "investor_total_deposited": deposited,
                "investor_total_claimed": claimed,
                "investor_total_refunded": refunded,
                "investor_pnl": subtract(sum_decimal_strings([claimed, refunded]), to_decimal(deposited)),
            }
            _upsert(session, UserStats, "wallet", {"wallet": wallet, **investor})

        logger.debug(f"Investor {wallet}: {investor}")
        return investor

    def claimable_share(self, campaign_address: str, investor: str) -> str:
        """Investor's unclaimed pro-rata share of funds returned to a campaign.

        share = returnedAmount * (deposited - refunded) // totalRaised - claimed

        Args:
            campaign_address: Campaign contract address
            investor: Investor address

        Returns:
            Claimable amount formatted at the token's precision ("0" if none)
        """
        address = campaign_address.lower()
        state = self.read_campaign_state(address)
        token = self.token_cache.get(state.token)

        with get_session() as session:
            events = [e for e in list_by_wallet(session, investor) if e.campaign_address == address]

        sums = _sum_amounts(events)
        investment = sums[EventName.DEPOSITED] - sums[EventName.REFUNDED]
        if investment <= 0 or state.returned_amount == 0 or state.total_raised == 0:
            return "0"

        claimable = state.returned_amount * investment // state.total_raised - sums[EventName.CLAIMED]
        return format_units(max(claimable, 0), token.decimals)

    def creator_of(self, campaign_address: str) -> Optional[str]:
        """Creator recorded in the campaign's stats row, if any."""
        with get_session() as session:
            stats = session.get(CampaignStats, campaign_address.lower())
            return stats.creator if stats else None


def _sum_amounts(events: Iterable) -> Dict[EventName, int]:
    sums: Dict[EventName, int] = defaultdict(int)
    for event in events:
        if "amount" in event.args:
            sums[event.event_name] += int(event.args["amount"])
    return sums
