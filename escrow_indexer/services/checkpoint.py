"""Sync checkpoint - last fully processed block, stored in indexer_state."""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from escrow_indexer.db.models import IndexerState
from escrow_indexer.db.session import dialect_insert

CHECKPOINT_KEY = "last_block_number"


def get_checkpoint(session: Session) -> Optional[int]:
    """Last processed block, or None before the first batch completes."""
    state = session.get(IndexerState, CHECKPOINT_KEY)
    if state is None or state.value == "":
        return None
    return int(state.value)


def set_checkpoint(session: Session, block_number: int) -> None:
    """Persist the last processed block.

    Args:
        session: Database session
        block_number: Highest block whose events are stored and aggregated
    """
    stmt = dialect_insert(session, IndexerState).values(key=CHECKPOINT_KEY, value=str(block_number))
    stmt = stmt.on_conflict_do_update(
        index_elements=["key"],
        set_={"value": stmt.excluded.value, "updated_at": datetime.utcnow()},
    )
    session.execute(stmt)
