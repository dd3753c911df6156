"""Read accessors over the indexed state, for API consumers."""

from typing import Any, Dict, List, Optional

from sqlalchemy import select

from escrow_indexer.db.models import CampaignStats, UserStats
from escrow_indexer.db.session import get_session
from escrow_indexer.eth.decoder import event_to_dict
from escrow_indexer.services.event_store import list_by_campaign
from escrow_indexer.utils.formatting import to_decimal

# Columns the leaderboard can be ranked by
LEADERBOARD_COLUMNS = {
    "creator_pnl": True,
    "investor_pnl": True,
    "creator_total_raised": True,
    "investor_total_deposited": True,
    "campaigns_created": False,
    "campaigns_invested": False,
}
DEFAULT_LEADERBOARD_LIMIT = 50
MAX_LEADERBOARD_LIMIT = 100


def get_campaign_stats(campaign_address: str) -> Optional[Dict[str, Any]]:
    """Stats of one campaign, or None if it has not been indexed."""
    with get_session() as session:
        stats = session.get(CampaignStats, campaign_address.lower())
        return stats.to_dict() if stats else None


def get_all_campaign_stats() -> List[Dict[str, Any]]:
    """Stats of every indexed campaign, most recently updated first."""
    with get_session() as session:
        rows = session.scalars(
            select(CampaignStats).order_by(CampaignStats.updated_at.desc(), CampaignStats.campaign)
        ).all()
        return [row.to_dict() for row in rows]


def get_user_stats(wallet: str) -> Optional[Dict[str, Any]]:
    """Creator and investor stats of one wallet, or None."""
    with get_session() as session:
        stats = session.get(UserStats, wallet.lower())
        return stats.to_dict() if stats else None


def get_leaderboard(sort_by: str = "creator_pnl", limit: int = DEFAULT_LEADERBOARD_LIMIT) -> List[Dict[str, Any]]:
    """Wallets ranked by one stats column, highest first.

    Amount columns hold decimal strings, so ranking is done on parsed
    Decimals rather than in SQL.

    Args:
        sort_by: Column name from LEADERBOARD_COLUMNS
        limit: Maximum rows (zero or less means DEFAULT_LEADERBOARD_LIMIT,
            capped at MAX_LEADERBOARD_LIMIT)

    Returns:
        Ranked list of user stats dictionaries

    Raises:
        ValueError: If sort_by is not a rankable column
    """
    if sort_by not in LEADERBOARD_COLUMNS:
        raise ValueError(
            f"Invalid sort column '{sort_by}'. Choose from: {sorted(LEADERBOARD_COLUMNS)}"
        )
    limit = int(limit)
    if limit <= 0:
        limit = DEFAULT_LEADERBOARD_LIMIT
    limit = min(limit, MAX_LEADERBOARD_LIMIT)

    with get_session() as session:
        rows = [row.to_dict() for row in session.scalars(select(UserStats)).all()]

    if LEADERBOARD_COLUMNS[sort_by]:
        def key(row):
            return to_decimal(row[sort_by])
    else:
        def key(row):
            return row[sort_by]

    rows.sort(key=lambda row: row["wallet"])
    rows.sort(key=key, reverse=True)
    return rows[:limit]


def get_campaign_events(campaign_address: str) -> List[Dict[str, Any]]:
    """Event history of one campaign in chain order."""
    with get_session() as session:
        return [event_to_dict(event) for event in list_by_campaign(session, campaign_address)]
