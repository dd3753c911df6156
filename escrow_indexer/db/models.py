"""SQLAlchemy ORM models.

Token amounts are stored as decimal strings formatted at the token's
precision; raw event amounts keep the token's smallest unit inside ``args``.
"""

import json
from datetime import datetime
from typing import Any, Dict

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

from escrow_indexer.eth.decoder import ChainEvent

Base = declarative_base()


class Event(Base):
    """Append-only ledger of decoded chain events."""

    __tablename__ = "events"
    __table_args__ = (
        UniqueConstraint("tx_hash", "log_index", name="uq_events_tx_log"),
        Index("ix_events_campaign_order", "campaign", "block_number", "log_index"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    tx_hash = Column(String(66), nullable=False)  # 0x + 64 hex chars
    log_index = Column(Integer, nullable=False)
    block_number = Column(BigInteger, nullable=False)
    campaign = Column(String(42), nullable=False)  # Subject campaign address
    event_name = Column(String(32), nullable=False)
    wallet = Column(String(42), nullable=True, index=True)  # investor or creator arg
    args = Column(Text, nullable=False)  # JSON object of decoded arguments
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def to_chain_event(self) -> ChainEvent:
        return ChainEvent(
            tx_hash=self.tx_hash,
            log_index=self.log_index,
            block_number=self.block_number,
            campaign_address=self.campaign,
            event_name=self.event_name,
            args=json.loads(self.args),
        )


class CampaignStats(Base):
    """Per-campaign aggregate, rebuilt on every relevant event."""

    __tablename__ = "campaign_stats"

    campaign = Column(String(42), primary_key=True)
    creator = Column(String(42), nullable=False, index=True)
    token = Column(String(42), nullable=False)
    token_symbol = Column(String(32), nullable=False)
    token_decimals = Column(Integer, nullable=False)
    floor_amount = Column(String(100), nullable=False, default="0")
    ceil_amount = Column(String(100), nullable=False, default="0")
    total_raised = Column(String(100), nullable=False, default="0")
    total_returned = Column(String(100), nullable=False, default="0")
    investor_count = Column(Integer, nullable=False, default=0)
    withdrawn_at = Column(BigInteger, nullable=False, default=0)  # Unix timestamp, 0 = not withdrawn
    pnl = Column(String(100), nullable=False, default="0")
    status = Column(String(16), nullable=False, default="active")  # active, withdrawn, returned
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "campaign": self.campaign,
            "creator": self.creator,
            "token": self.token,
            "token_symbol": self.token_symbol,
            "token_decimals": self.token_decimals,
            "floor_amount": self.floor_amount,
            "ceil_amount": self.ceil_amount,
            "total_raised": self.total_raised,
            "total_returned": self.total_returned,
            "investor_count": self.investor_count,
            "withdrawn_at": self.withdrawn_at,
            "pnl": self.pnl,
            "status": self.status,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class UserStats(Base):
    """Per-wallet aggregate with independent creator and investor roles."""

    __tablename__ = "user_stats"

    wallet = Column(String(42), primary_key=True)

    # Creator role
    campaigns_created = Column(Integer, nullable=False, default=0)
    creator_total_raised = Column(String(100), nullable=False, default="0")
    creator_total_returned = Column(String(100), nullable=False, default="0")
    creator_pnl = Column(String(100), nullable=False, default="0")

    # Investor role
    campaigns_invested = Column(Integer, nullable=False, default=0)
    investor_total_deposited = Column(String(100), nullable=False, default="0")
    investor_total_claimed = Column(String(100), nullable=False, default="0")
    investor_total_refunded = Column(String(100), nullable=False, default="0")
    investor_pnl = Column(String(100), nullable=False, default="0")

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "wallet": self.wallet,
            "campaigns_created": self.campaigns_created,
            "creator_total_raised": self.creator_total_raised,
            "creator_total_returned": self.creator_total_returned,
            "creator_pnl": self.creator_pnl,
            "campaigns_invested": self.campaigns_invested,
            "investor_total_deposited": self.investor_total_deposited,
            "investor_total_claimed": self.investor_total_claimed,
            "investor_total_refunded": self.investor_total_refunded,
            "investor_pnl": self.investor_pnl,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class IndexerState(Base):
    """Key/value indexer state; holds the sync checkpoint."""

    __tablename__ = "indexer_state"

    key = Column(String(64), primary_key=True)
    value = Column(String(255), nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
