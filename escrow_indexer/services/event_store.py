"""Event store - append-only, deduplicated ledger of decoded events."""

import json
from typing import List

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from escrow_indexer.db.models import Event
from escrow_indexer.db.session import dialect_insert
from escrow_indexer.eth.decoder import ChainEvent, EventName
from escrow_indexer.log import get_logger

logger = get_logger(__name__)


def append_event(session: Session, event: ChainEvent) -> bool:
    """Insert event into database (idempotent).

    Uses INSERT ... ON CONFLICT DO NOTHING on (tx_hash, log_index), so
    redelivery of the same log is a no-op.

    Args:
        session: Database session
        event: Decoded event

    Returns:
        True if event was inserted, False if it already existed
    """
    stmt = (
        dialect_insert(session, Event)
        .values(
            tx_hash=event.tx_hash,
            log_index=event.log_index,
            block_number=event.block_number,
            campaign=event.campaign_address,
            event_name=event.event_name.value,
            wallet=event.wallet,
            args=json.dumps(dict(event.args), sort_keys=True),
        )
        .on_conflict_do_nothing(index_elements=["tx_hash", "log_index"])
    )
    result = session.execute(stmt)
    inserted = result.rowcount == 1
    if not inserted:
        logger.debug(f"Event already exists: {event.tx_hash}:{event.log_index}")
    return inserted


def list_by_campaign(session: Session, campaign_address: str) -> List[ChainEvent]:
    """Events of one campaign in (block_number, log_index) order.

    Args:
        session: Database session
        campaign_address: Campaign address (any case)

    Returns:
        Ordered list of ChainEvent
    """
    rows = session.scalars(
        select(Event)
        .where(Event.campaign == campaign_address.lower())
        .order_by(Event.block_number, Event.log_index)
    ).all()
    return [row.to_chain_event() for row in rows]


def list_by_wallet(session: Session, wallet: str) -> List[ChainEvent]:
    """Events whose investor or creator argument is ``wallet``.

    Args:
        session: Database session
        wallet: Wallet address (any case)

    Returns:
        Ordered list of ChainEvent
    """
    rows = session.scalars(
        select(Event)
        .where(Event.wallet == wallet.lower())
        .order_by(Event.block_number, Event.log_index)
    ).all()
    return [row.to_chain_event() for row in rows]


def list_wallet_events(session: Session, wallet: str, *event_names: EventName) -> List[ChainEvent]:
    """Events of one wallet restricted to the given kinds."""
    rows = session.scalars(
        select(Event)
        .where(
            Event.wallet == wallet.lower(),
            or_(*(Event.event_name == name.value for name in event_names)),
        )
        .order_by(Event.block_number, Event.log_index)
    ).all()
    return [row.to_chain_event() for row in rows]


def count_events(session: Session) -> int:
    """Total number of stored events."""
    return session.query(Event).count()
