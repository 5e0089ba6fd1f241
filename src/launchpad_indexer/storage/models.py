"""SQLAlchemy models for persistent storage.

This module defines the projection schema: launched tokens with their
bonding-curve state, accepted trades, and the activity timeline.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Display-unit amounts carry the chain's 8 decimals.
AMOUNT = Numeric(38, 8)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class TokenModel(Base):
    """SQLAlchemy model for a launched token and its bonding-curve state.

    `tokens_sold`, `reserve`, `current_price` and `market_cap` change only when
    a trade is applied; every such change bumps `version`.
    """

    __tablename__ = "tokens"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    symbol: Mapped[str] = mapped_column(String(32), nullable=False)
    contract_address: Mapped[str | None] = mapped_column(String(256), nullable=True)

    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_uri: Mapped[str | None] = mapped_column(Text, nullable=True)
    creator: Mapped[str] = mapped_column(String(128), nullable=False)
    registration_tx_id: Mapped[str | None] = mapped_column(String(66), nullable=True)

    tokens_sold: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal(0))
    reserve: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal(0))
    current_price: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    market_cap: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal(0))

    is_graduated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    graduated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        UniqueConstraint("symbol", name="uq_tokens_symbol"),
        UniqueConstraint("contract_address", name="uq_tokens_contract_address"),
        Index("idx_tokens_created_at", "created_at"),
        Index("idx_tokens_market_cap", "market_cap"),
    )


class TradeModel(Base):
    """SQLAlchemy model for an accepted buy or sell, keyed by transaction id."""

    __tablename__ = "trades"

    tx_id: Mapped[str] = mapped_column(String(66), primary_key=True)
    token_id: Mapped[int] = mapped_column(Integer, nullable=False)
    trader: Mapped[str] = mapped_column(String(128), nullable=False)
    trade_type: Mapped[str] = mapped_column(String(4), nullable=False)

    stx_amount: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    token_amount: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    price_at_trade: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)

    block_height: Mapped[int | None] = mapped_column(Integer, nullable=True)
    observed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        Index("idx_trades_token_observed", "token_id", "observed_at"),
        Index("idx_trades_trader", "trader"),
    )


class ActivityModel(Base):
    """Append-only activity timeline entry."""

    __tablename__ = "activity"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_type: Mapped[str] = mapped_column(String(32), nullable=False)
    tx_id: Mapped[str] = mapped_column(String(66), nullable=False)
    address: Mapped[str] = mapped_column(String(128), nullable=False)
    token_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    details_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        UniqueConstraint("tx_id", "event_type", name="uq_activity_tx_event"),
        Index("idx_activity_created_at", "created_at"),
        Index("idx_activity_type_created", "event_type", "created_at"),
    )
