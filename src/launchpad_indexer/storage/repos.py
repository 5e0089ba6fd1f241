"""Repository pattern implementations for data access.

This module provides data access abstractions for the token projection, the
trade ledger, and the activity timeline. Every write that can race (token
registration, trade insertion, activity entries) is an insert-if-absent, and
curve-state changes are version-guarded compare-and-swap updates.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from launchpad_indexer.storage.models import ActivityModel, TokenModel, TradeModel

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

TOKEN_ORDER_COLUMNS = ("created_at", "market_cap", "current_price", "tokens_sold", "symbol", "name")


def _dialect_insert(session: AsyncSession) -> Any:
    """Pick the dialect-specific `insert` supporting ON CONFLICT clauses."""
    if session.get_bind().dialect.name == "postgresql":
        return pg_insert
    return sqlite_insert


@dataclass
class TokenDTO:
    """Data transfer object for launched tokens."""

    id: int
    symbol: str
    name: str
    creator: str
    contract_address: str | None = None
    description: str | None = None
    image_uri: str | None = None
    registration_tx_id: str | None = None
    tokens_sold: Decimal = Decimal(0)
    reserve: Decimal = Decimal(0)
    current_price: Decimal = Decimal(0)
    market_cap: Decimal = Decimal(0)
    is_graduated: bool = False
    graduated_at: datetime | None = None
    version: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, model: TokenModel) -> TokenDTO:
        return cls(
            id=model.id,
            symbol=model.symbol,
            name=model.name,
            creator=model.creator,
            contract_address=model.contract_address,
            description=model.description,
            image_uri=model.image_uri,
            registration_tx_id=model.registration_tx_id,
            tokens_sold=Decimal(model.tokens_sold),
            reserve=Decimal(model.reserve),
            current_price=Decimal(model.current_price),
            market_cap=Decimal(model.market_cap),
            is_graduated=model.is_graduated,
            graduated_at=model.graduated_at,
            version=model.version,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


@dataclass
class TradeDTO:
    """Data transfer object for accepted trades."""

    tx_id: str
    token_id: int
    trader: str
    trade_type: str
    stx_amount: Decimal
    token_amount: Decimal
    price_at_trade: Decimal
    block_height: int | None = None
    observed_at: datetime | None = None

    @classmethod
    def from_model(cls, model: TradeModel) -> TradeDTO:
        return cls(
            tx_id=model.tx_id,
            token_id=model.token_id,
            trader=model.trader,
            trade_type=model.trade_type,
            stx_amount=Decimal(model.stx_amount),
            token_amount=Decimal(model.token_amount),
            price_at_trade=Decimal(model.price_at_trade),
            block_height=model.block_height,
            observed_at=model.observed_at,
        )


@dataclass
class TraderVolumeDTO:
    """Aggregated trading volume for one address."""

    trader: str
    total_volume_stx: Decimal
    trade_count: int


@dataclass
class ActivityDTO:
    """Data transfer object for activity timeline entries."""

    event_type: str
    tx_id: str
    address: str
    token_id: int | None = None
    details: dict[str, Any] = field(default_factory=dict)
    id: int | None = None
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, model: ActivityModel) -> ActivityDTO:
        try:
            details = json.loads(model.details_json or "{}")
        except ValueError:
            logger.warning("Activity %s has unreadable details", model.id)
            details = {}
        return cls(
            id=model.id,
            event_type=model.event_type,
            tx_id=model.tx_id,
            address=model.address,
            token_id=model.token_id,
            details=details,
            created_at=model.created_at,
        )


class TokenRepository:
    """Repository for the token projection."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, token_id: int) -> TokenDTO | None:
        result = await self.session.execute(select(TokenModel).where(TokenModel.id == token_id))
        model = result.scalar_one_or_none()
        return TokenDTO.from_model(model) if model else None

    async def get_by_symbol(self, symbol: str) -> TokenDTO | None:
        result = await self.session.execute(select(TokenModel).where(TokenModel.symbol == symbol.upper()))
        model = result.scalar_one_or_none()
        return TokenDTO.from_model(model) if model else None

    async def get_by_contract(self, contract_address: str) -> TokenDTO | None:
        result = await self.session.execute(
            select(TokenModel).where(TokenModel.contract_address == contract_address)
        )
        model = result.scalar_one_or_none()
        return TokenDTO.from_model(model) if model else None

    async def insert_if_absent(
        self,
        *,
        symbol: str,
        name: str,
        creator: str,
        initial_price: Decimal,
        contract_address: str | None = None,
        description: str | None = None,
        image_uri: str | None = None,
        registration_tx_id: str | None = None,
        created_at: datetime | None = None,
    ) -> int | None:
        """Insert a token with zeroed curve state unless one already conflicts.

        Returns:
            The new token id, or None when a token with the same symbol (or
            contract address) already exists.
        """
        now = datetime.now(UTC)
        insert = _dialect_insert(self.session)
        stmt = (
            insert(TokenModel)
            .values(
                symbol=symbol.upper(),
                name=name,
                creator=creator,
                contract_address=contract_address,
                description=description,
                image_uri=image_uri,
                registration_tx_id=registration_tx_id,
                tokens_sold=Decimal(0),
                reserve=Decimal(0),
                current_price=initial_price,
                market_cap=Decimal(0),
                is_graduated=False,
                version=0,
                created_at=created_at or now,
                updated_at=now,
            )
            .on_conflict_do_nothing()
            .returning(TokenModel.id)
        )
        result = await self.session.execute(stmt)
        token_id = result.scalar_one_or_none()
        await self.session.flush()
        return token_id

    async def assign_contract_address(self, token_id: int, contract_address: str) -> bool:
        """Set the contract address if it has never been set."""
        result = await self.session.execute(
            update(TokenModel)
            .where((TokenModel.id == token_id) & (TokenModel.contract_address.is_(None)))
            .values(contract_address=contract_address, updated_at=datetime.now(UTC))
        )
        await self.session.flush()
        return result.rowcount == 1

    async def compare_and_set_curve_state(
        self,
        token_id: int,
        *,
        expected_version: int,
        tokens_sold: Decimal,
        reserve: Decimal,
        current_price: Decimal,
        market_cap: Decimal,
    ) -> bool:
        """Update curve state only if the row is still at `expected_version` and not graduated.

        Returns:
            True if the row was updated, False if another writer got there first.
        """
        result = await self.session.execute(
            update(TokenModel)
            .where(
                (TokenModel.id == token_id)
                & (TokenModel.version == expected_version)
                & (TokenModel.is_graduated.is_(False))
            )
            .values(
                tokens_sold=tokens_sold,
                reserve=reserve,
                current_price=current_price,
                market_cap=market_cap,
                version=expected_version + 1,
                updated_at=datetime.now(UTC),
            )
        )
        await self.session.flush()
        return result.rowcount == 1

    async def mark_graduated(self, token_id: int, *, graduated_at: datetime) -> bool:
        """Flip `is_graduated` to true once; later calls are no-ops returning False."""
        result = await self.session.execute(
            update(TokenModel)
            .where((TokenModel.id == token_id) & (TokenModel.is_graduated.is_(False)))
            .values(
                is_graduated=True,
                graduated_at=graduated_at,
                version=TokenModel.version + 1,
                updated_at=datetime.now(UTC),
            )
        )
        await self.session.flush()
        return result.rowcount == 1

    async def list_tokens(
        self,
        *,
        graduated: bool | None = None,
        order_by: str = "created_at",
        descending: bool = True,
        limit: int = 100,
    ) -> list[TokenDTO]:
        if order_by not in TOKEN_ORDER_COLUMNS:
            raise ValueError(f"Cannot order tokens by {order_by!r}")
        column = getattr(TokenModel, order_by)
        stmt = select(TokenModel)
        if graduated is not None:
            stmt = stmt.where(TokenModel.is_graduated.is_(graduated))
        stmt = stmt.order_by(column.desc() if descending else column.asc(), TokenModel.id.asc()).limit(limit)
        result = await self.session.execute(stmt)
        return [TokenDTO.from_model(m) for m in result.scalars().all()]

    async def list_trending(self, *, limit: int = 10) -> list[TokenDTO]:
        """Non-graduated tokens with the highest market cap."""
        return await self.list_tokens(graduated=False, order_by="market_cap", descending=True, limit=limit)


class TradeRepository:
    """Repository for the append-only trade ledger."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_tx_id(self, tx_id: str) -> TradeDTO | None:
        result = await self.session.execute(select(TradeModel).where(TradeModel.tx_id == tx_id))
        model = result.scalar_one_or_none()
        return TradeDTO.from_model(model) if model else None

    async def insert_if_absent(self, dto: TradeDTO) -> bool:
        """Insert a trade keyed by tx_id.

        Returns:
            True if this call inserted the row, False if it already existed.
        """
        insert = _dialect_insert(self.session)
        stmt = (
            insert(TradeModel)
            .values(
                tx_id=dto.tx_id,
                token_id=dto.token_id,
                trader=dto.trader,
                trade_type=dto.trade_type,
                stx_amount=dto.stx_amount,
                token_amount=dto.token_amount,
                price_at_trade=dto.price_at_trade,
                block_height=dto.block_height,
                observed_at=dto.observed_at or datetime.now(UTC),
            )
            .on_conflict_do_nothing(index_elements=["tx_id"])
            .returning(TradeModel.tx_id)
        )
        result = await self.session.execute(stmt)
        inserted = result.scalar_one_or_none() is not None
        await self.session.flush()
        return inserted

    async def list_for_token(self, token_id: int, *, limit: int = 50) -> list[TradeDTO]:
        result = await self.session.execute(
            select(TradeModel)
            .where(TradeModel.token_id == token_id)
            .order_by(TradeModel.observed_at.desc(), TradeModel.tx_id.asc())
            .limit(limit)
        )
        return [TradeDTO.from_model(m) for m in result.scalars().all()]

    async def count_for_token(self, token_id: int) -> int:
        result = await self.session.execute(
            select(sa.func.count()).select_from(TradeModel).where(TradeModel.token_id == token_id)
        )
        return int(result.scalar_one() or 0)

    async def leaderboard(self, *, limit: int = 100) -> list[TraderVolumeDTO]:
        """Traders ranked by total STX volume across buys and sells."""
        volume = sa.func.sum(TradeModel.stx_amount).label("total_volume_stx")
        result = await self.session.execute(
            select(TradeModel.trader, volume, sa.func.count().label("trade_count"))
            .group_by(TradeModel.trader)
            .order_by(volume.desc(), TradeModel.trader.asc())
            .limit(limit)
        )
        return [
            TraderVolumeDTO(
                trader=row.trader,
                total_volume_stx=Decimal(str(row.total_volume_stx or 0)),
                trade_count=int(row.trade_count),
            )
            for row in result.all()
        ]


class ActivityRepository:
    """Repository for the activity timeline."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert_if_absent(
        self,
        *,
        event_type: str,
        tx_id: str,
        address: str,
        token_id: int | None = None,
        details: dict[str, Any] | None = None,
        created_at: datetime | None = None,
    ) -> bool:
        """Append a timeline entry unless (tx_id, event_type) is already recorded."""
        insert = _dialect_insert(self.session)
        stmt = (
            insert(ActivityModel)
            .values(
                event_type=event_type,
                tx_id=tx_id,
                address=address,
                token_id=token_id,
                details_json=json.dumps(details or {}, sort_keys=True, default=str),
                created_at=created_at or datetime.now(UTC),
            )
            .on_conflict_do_nothing(index_elements=["tx_id", "event_type"])
            .returning(ActivityModel.id)
        )
        result = await self.session.execute(stmt)
        inserted = result.scalar_one_or_none() is not None
        await self.session.flush()
        return inserted

    async def list_recent(self, *, event_type: str | None = None, limit: int = 50) -> list[ActivityDTO]:
        stmt = select(ActivityModel)
        if event_type:
            stmt = stmt.where(ActivityModel.event_type == event_type)
        stmt = stmt.order_by(ActivityModel.created_at.desc(), ActivityModel.id.desc()).limit(limit)
        result = await self.session.execute(stmt)
        return [ActivityDTO.from_model(m) for m in result.scalars().all()]
