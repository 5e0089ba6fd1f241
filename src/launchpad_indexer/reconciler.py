"""Applies decoded domain events to the token projection exactly once.

Both ingestion paths feed this module. Each event is applied as one unit:

- Registration is an insert-if-absent on the token symbol.
- A trade runs under the token's lock and inside one database transaction:
  ledger insert-if-absent on `tx_id`, then a version-guarded compare-and-swap
  of the curve state, then the activity entry. If the swap loses a race the
  whole unit is rolled back and retried.
- Graduation is a conditional update that only ever moves false -> true.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy.exc import SQLAlchemyError

from launchpad_indexer.ingestor.events import (
    Bought,
    DomainEvent,
    EventType,
    Graduated,
    Sold,
    TokenRegistered,
    TradeEvent,
)
from launchpad_indexer.pricing import curve
from launchpad_indexer.storage.database import DatabaseManager
from launchpad_indexer.storage.locks import KeyedLock, LockUnavailableError, TokenLock
from launchpad_indexer.storage.repos import (
    ActivityRepository,
    TokenDTO,
    TokenRepository,
    TradeDTO,
    TradeRepository,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_CAS_ATTEMPTS = 5


class ReconcileStatus(str, Enum):
    """Outcome of applying one domain event."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    REJECTED = "rejected"
    DEFERRED = "deferred"


@dataclass(frozen=True)
class ReconcileResult:
    status: ReconcileStatus
    tx_id: str
    event_type: EventType
    token_id: int | None = None
    reason: str | None = None

    @property
    def applied(self) -> bool:
        return self.status == ReconcileStatus.APPLIED


@dataclass
class ApplyCounts:
    """Tally of reconcile outcomes for a batch of transactions.

    `processed` counts transactions that decoded to an event, `skipped` those
    that did not, and `created` counts newly registered tokens.
    """

    processed: int = 0
    created: int = 0
    applied: int = 0
    duplicates: int = 0
    rejected: int = 0
    deferred: int = 0
    skipped: int = 0

    def record(self, result: ReconcileResult) -> None:
        self.processed += 1
        if result.status == ReconcileStatus.APPLIED:
            self.applied += 1
            if result.event_type == EventType.TOKEN_CREATED:
                self.created += 1
        elif result.status == ReconcileStatus.DUPLICATE:
            self.duplicates += 1
        elif result.status == ReconcileStatus.REJECTED:
            self.rejected += 1
        else:
            self.deferred += 1

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class ReconcileError(Exception):
    """Transient failure while applying an event; the caller should retry."""


class _VersionConflict(Exception):
    """Another writer changed the token between read and update."""


@dataclass(frozen=True)
class _TradeEffect:
    tokens_sold: int
    reserve: int
    stx_amount: Decimal
    token_amount: Decimal
    price_at_trade: int


class Reconciler:
    """Idempotent, order-tolerant writer for the token projection.

    Example:
        ```python
        reconciler = Reconciler(db)
        result = await reconciler.apply(event)
        if result.status == ReconcileStatus.DEFERRED:
            ...  # token not registered yet, the next poll will retry
        ```
    """

    def __init__(
        self,
        db: DatabaseManager,
        *,
        locks: TokenLock | None = None,
        max_cas_attempts: int = DEFAULT_MAX_CAS_ATTEMPTS,
    ) -> None:
        """Initialize the reconciler.

        Args:
            db: Database manager providing transactional sessions.
            locks: Per-token lock; defaults to an in-process KeyedLock.
            max_cas_attempts: Attempts before a lost compare-and-swap raises.
        """
        self._db = db
        self._locks = locks or KeyedLock()
        self._max_cas_attempts = max_cas_attempts

    async def apply(self, event: DomainEvent) -> ReconcileResult:
        """Apply one event.

        Raises:
            ReconcileError: On store failures or persistent version conflicts.
        """
        try:
            if isinstance(event, TokenRegistered):
                result = await self._apply_registration(event)
            elif isinstance(event, (Bought, Sold)):
                async with self._locks.hold(event.token):
                    result = await self._apply_trade(event)
            elif isinstance(event, Graduated):
                async with self._locks.hold(event.token):
                    result = await self._apply_graduation(event)
            else:
                raise TypeError(f"Unsupported event type: {type(event).__name__}")
        except SQLAlchemyError as e:
            raise ReconcileError(f"Store failure applying {event.tx_id}: {e}") from e
        except LockUnavailableError as e:
            raise ReconcileError(str(e)) from e

        log = logger.info if result.applied else logger.debug
        log(
            "%s %s: %s%s",
            event.event_type.value,
            event.tx_id,
            result.status.value,
            f" ({result.reason})" if result.reason else "",
        )
        return result

    async def _apply_registration(self, event: TokenRegistered) -> ReconcileResult:
        async with self._db.get_async_session() as session:
            tokens = TokenRepository(session)
            token_id = await tokens.insert_if_absent(
                symbol=event.symbol,
                name=event.name,
                creator=event.sender,
                initial_price=curve.from_units(curve.price(0)),
                contract_address=event.contract_address,
                description=event.description,
                image_uri=event.image_uri,
                registration_tx_id=event.tx_id,
                created_at=event.block_time,
            )

            if token_id is None:
                existing = await tokens.get_by_symbol(event.symbol)
                if existing is None:
                    # Conflict was on the contract address held by another symbol.
                    return ReconcileResult(
                        ReconcileStatus.REJECTED,
                        event.tx_id,
                        event.event_type,
                        reason=f"contract {event.contract_address} already registered",
                    )
                if (
                    existing.contract_address is None
                    and event.contract_address
                    and await tokens.get_by_contract(event.contract_address) is None
                ):
                    await tokens.assign_contract_address(existing.id, event.contract_address)
                return ReconcileResult(ReconcileStatus.DUPLICATE, event.tx_id, event.event_type, existing.id)

            await ActivityRepository(session).insert_if_absent(
                event_type=event.event_type.value,
                tx_id=event.tx_id,
                address=event.sender,
                token_id=token_id,
                details=event.details(),
                created_at=event.block_time,
            )
            return ReconcileResult(ReconcileStatus.APPLIED, event.tx_id, event.event_type, token_id)

    async def _apply_trade(self, event: TradeEvent) -> ReconcileResult:
        for attempt in range(1, self._max_cas_attempts + 1):
            try:
                return await self._apply_trade_once(event)
            except _VersionConflict:
                logger.warning(
                    "Version conflict applying %s (attempt %d/%d)",
                    event.tx_id,
                    attempt,
                    self._max_cas_attempts,
                )
        raise ReconcileError(f"Gave up applying {event.tx_id} after {self._max_cas_attempts} version conflicts")

    async def _apply_trade_once(self, event: TradeEvent) -> ReconcileResult:
        async with self._db.get_async_session() as session:
            tokens = TokenRepository(session)
            trades = TradeRepository(session)
            activity = ActivityRepository(session)

            token = await tokens.get_by_contract(event.token)
            if token is None:
                return ReconcileResult(
                    ReconcileStatus.DEFERRED, event.tx_id, event.event_type, reason="unknown token"
                )

            if await trades.get_by_tx_id(event.tx_id) is not None:
                return ReconcileResult(ReconcileStatus.DUPLICATE, event.tx_id, event.event_type, token.id)

            reject_reason: str | None = None
            effect: _TradeEffect | None = None
            if token.is_graduated:
                reject_reason = "token graduated"
            else:
                effect = self._trade_effect(event, token)
                if effect is None:
                    reject_reason = "sell exceeds tokens sold"

            if effect is None:
                await activity.insert_if_absent(
                    event_type=EventType.TRADE_REJECTED.value,
                    tx_id=event.tx_id,
                    address=event.sender,
                    token_id=token.id,
                    details={**event.details(), "trade_type": event.event_type.value, "reason": reject_reason},
                    created_at=event.block_time,
                )
                logger.warning("Rejected %s %s: %s", event.event_type.value, event.tx_id, reject_reason)
                return ReconcileResult(
                    ReconcileStatus.REJECTED, event.tx_id, event.event_type, token.id, reject_reason
                )

            inserted = await trades.insert_if_absent(
                TradeDTO(
                    tx_id=event.tx_id,
                    token_id=token.id,
                    trader=event.sender,
                    trade_type=event.event_type.value,
                    stx_amount=effect.stx_amount,
                    token_amount=effect.token_amount,
                    price_at_trade=curve.from_units(effect.price_at_trade),
                    block_height=event.block_height,
                    observed_at=event.block_time,
                )
            )
            if not inserted:
                return ReconcileResult(ReconcileStatus.DUPLICATE, event.tx_id, event.event_type, token.id)

            swapped = await tokens.compare_and_set_curve_state(
                token.id,
                expected_version=token.version,
                tokens_sold=curve.from_units(effect.tokens_sold),
                reserve=curve.from_units(effect.reserve),
                current_price=curve.from_units(curve.price(effect.tokens_sold)),
                market_cap=curve.from_units(curve.market_cap(effect.tokens_sold)),
            )
            if not swapped:
                # Rolls back the ledger insert with the rest of the unit.
                raise _VersionConflict(event.tx_id)

            await activity.insert_if_absent(
                event_type=event.event_type.value,
                tx_id=event.tx_id,
                address=event.sender,
                token_id=token.id,
                details={
                    **event.details(),
                    "stx_amount": str(effect.stx_amount),
                    "token_amount": str(effect.token_amount),
                    "price": str(curve.from_units(effect.price_at_trade)),
                },
                created_at=event.block_time,
            )
            return ReconcileResult(ReconcileStatus.APPLIED, event.tx_id, event.event_type, token.id)

    def _trade_effect(self, event: TradeEvent, token: TokenDTO) -> _TradeEffect | None:
        """Compute the post-trade curve state, or None if the trade is impossible."""
        sold = curve.to_units(token.tokens_sold)
        reserve = curve.to_units(token.reserve)
        pre_price = curve.price(sold)

        if isinstance(event, Bought):
            stx_in = curve.to_units(event.stx_amount)
            minted = curve.quote_buy(stx_in, sold)
            if event.token_amount is not None:
                # The chain's mint is authoritative for both the ledger and the curve position.
                reported = curve.to_units(event.token_amount)
                if reported != minted:
                    logger.warning(
                        "Buy %s reports %s tokens, curve gives %s",
                        event.tx_id,
                        event.token_amount,
                        curve.from_units(minted),
                    )
                minted = reported
            token_amount = curve.from_units(minted)
            return _TradeEffect(
                tokens_sold=sold + minted,
                reserve=reserve + stx_in,
                stx_amount=curve.from_units(stx_in),
                token_amount=token_amount,
                price_at_trade=pre_price,
            )

        tokens_in = curve.to_units(event.token_amount)
        if tokens_in > sold:
            return None
        gross = curve.sell_gross(tokens_in, sold)
        stx_amount = event.stx_amount
        if stx_amount is None:
            stx_amount = curve.from_units(curve.quote_sell(tokens_in, sold))
        return _TradeEffect(
            tokens_sold=sold - tokens_in,
            reserve=max(reserve - gross, 0),
            stx_amount=stx_amount,
            token_amount=curve.from_units(tokens_in),
            price_at_trade=pre_price,
        )

    async def _apply_graduation(self, event: Graduated) -> ReconcileResult:
        async with self._db.get_async_session() as session:
            tokens = TokenRepository(session)
            token = await tokens.get_by_contract(event.token)
            if token is None:
                return ReconcileResult(
                    ReconcileStatus.DEFERRED, event.tx_id, event.event_type, reason="unknown token"
                )

            graduated_at = event.block_time or datetime.now(UTC)
            if not await tokens.mark_graduated(token.id, graduated_at=graduated_at):
                return ReconcileResult(ReconcileStatus.DUPLICATE, event.tx_id, event.event_type, token.id)

            await ActivityRepository(session).insert_if_absent(
                event_type=event.event_type.value,
                tx_id=event.tx_id,
                address=event.sender,
                token_id=token.id,
                details={**event.details(), "symbol": token.symbol, "market_cap": str(token.market_cap)},
                created_at=event.block_time,
            )
            return ReconcileResult(ReconcileStatus.APPLIED, event.tx_id, event.event_type, token.id)
