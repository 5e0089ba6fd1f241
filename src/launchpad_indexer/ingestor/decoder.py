"""Decoder from raw chain transactions to launchpad domain events.

Each transaction yields at most one event. Anything unexpected (failed status,
unknown function, missing print event, malformed field) produces `None` and a
log line; the decoder never raises on bad input.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from launchpad_indexer.chain.models import PrintEvent, RawTransaction
from launchpad_indexer.ingestor.events import (
    Bought,
    DomainEvent,
    Graduated,
    Sold,
    TokenRegistered,
)

logger = logging.getLogger(__name__)

# Chain base units -> display units. Applied once, here.
UNIT_DIVISOR = Decimal(10**8)

TOKEN_CREATED_TAG = "token-created"
BUY_TAG = "buy"
SELL_TAG = "sell"
GRADUATION_TAGS = ("token-graduated", "graduation-initiated")


class DecodeError(ValueError):
    """A print event was found but one of its fields is unusable."""


@dataclass
class DecoderStats:
    decoded: int = 0
    ignored: int = 0
    failed: int = 0


def to_display_units(value: Any) -> Decimal:
    """Convert a base-unit integer (int, `"u123"` or `"123"`) to display units."""
    if isinstance(value, bool):
        raise DecodeError(f"Expected integer amount, got {value!r}")
    if isinstance(value, str):
        text = value.strip()
        if text.startswith("u"):
            text = text[1:]
        if not text.isdigit():
            raise DecodeError(f"Expected integer amount, got {value!r}")
        value = int(text)
    if not isinstance(value, int):
        raise DecodeError(f"Expected integer amount, got {type(value).__name__}")
    if value < 0:
        raise DecodeError(f"Amount must be non-negative, got {value}")
    return Decimal(value) / UNIT_DIVISOR


def find_print_event(events: Iterable[PrintEvent], *tags: str) -> dict[str, Any] | None:
    """Return the first print payload whose `event` tag is one of `tags`."""
    for event in events:
        if event.tag in tags and isinstance(event.value, dict):
            return event.value
    return None


def _first(payload: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = payload.get(key)
        if value is not None:
            return value
    return None


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class EventDecoder:
    """Turns `RawTransaction`s into domain events.

    Dispatch is on the contract-call function name:

    - `register-token` -> TokenRegistered
    - `buy` -> Bought
    - `sell` -> Sold
    - `graduate`, `graduate-token`, `graduate*` -> Graduated

    Example:
        ```python
        decoder = EventDecoder(contract_ids={"SP...bonding-curve"})
        event = decoder.decode(tx)
        if event is not None:
            await reconciler.apply(event)
        ```
    """

    def __init__(self, *, contract_ids: Iterable[str] | None = None) -> None:
        """Initialize the decoder.

        Args:
            contract_ids: If given, calls to any other contract are ignored.
        """
        self._contract_ids = frozenset(contract_ids) if contract_ids else None
        self._stats = DecoderStats()
        self._handlers: dict[str, Callable[[RawTransaction], DomainEvent | None]] = {
            "register-token": self._decode_registration,
            "buy": self._decode_buy,
            "sell": self._decode_sell,
        }

    @property
    def stats(self) -> DecoderStats:
        return self._stats

    def _handler_for(self, function_name: str) -> Callable[[RawTransaction], DomainEvent | None] | None:
        handler = self._handlers.get(function_name)
        if handler is None and function_name.startswith("graduate"):
            return self._decode_graduation
        return handler

    def decode(self, tx: RawTransaction) -> DomainEvent | None:
        """Decode one transaction; returns None when it carries no launchpad event."""
        if not tx.is_success or not tx.is_contract_call or not tx.function_name:
            self._stats.ignored += 1
            return None
        if self._contract_ids is not None and tx.contract_id not in self._contract_ids:
            self._stats.ignored += 1
            return None

        handler = self._handler_for(tx.function_name)
        if handler is None:
            logger.debug("Ignoring %s: unknown function %s", tx.tx_id, tx.function_name)
            self._stats.ignored += 1
            return None

        try:
            event = handler(tx)
        except (DecodeError, TypeError, ValueError, ArithmeticError) as e:
            logger.warning("Failed to decode %s (%s): %s", tx.tx_id, tx.function_name, e)
            self._stats.failed += 1
            return None

        if event is None:
            logger.warning("No matching print event in %s (%s)", tx.tx_id, tx.function_name)
            self._stats.failed += 1
            return None

        self._stats.decoded += 1
        return event

    def decode_many(self, txs: Iterable[RawTransaction]) -> list[tuple[RawTransaction, DomainEvent]]:
        """Decode a batch, keeping order and dropping transactions with no event."""
        out: list[tuple[RawTransaction, DomainEvent]] = []
        for tx in txs:
            event = self.decode(tx)
            if event is not None:
                out.append((tx, event))
        return out

    def _decode_registration(self, tx: RawTransaction) -> TokenRegistered | None:
        payload = find_print_event(tx.events, TOKEN_CREATED_TAG)
        if payload is None:
            return None

        symbol = _optional_str(_first(payload, "symbol")) or _optional_str(tx.arg("symbol", 1))
        if not symbol:
            raise DecodeError("token-created event has no symbol")
        name = _optional_str(_first(payload, "name")) or _optional_str(tx.arg("name", 0)) or symbol

        return TokenRegistered(
            tx_id=tx.tx_id,
            sender=_optional_str(_first(payload, "creator")) or tx.sender,
            name=name,
            symbol=symbol.upper(),
            contract_address=_optional_str(_first(payload, "token", "token_contract")),
            description=_optional_str(_first(payload, "description")) or _optional_str(tx.arg("description", 4)),
            image_uri=_optional_str(_first(payload, "image_uri")) or _optional_str(tx.arg("image-uri", 3)),
            block_height=tx.block_height,
            block_time=tx.block_time,
        )

    def _trade_token(self, tx: RawTransaction, payload: dict[str, Any]) -> str:
        token = _optional_str(_first(payload, "token")) or _optional_str(tx.arg("token", 0))
        if not token:
            raise DecodeError(f"{tx.function_name} event has no token")
        return token

    def _decode_buy(self, tx: RawTransaction) -> Bought | None:
        payload = find_print_event(tx.events, BUY_TAG)
        if payload is None:
            return None

        stx_raw = _first(payload, "stx_amount", "stx_in")
        if stx_raw is None:
            raise DecodeError("buy event has no stx-amount")
        tokens_raw = _first(payload, "tokens_received", "tokens_out", "token_amount")

        return Bought(
            tx_id=tx.tx_id,
            sender=_optional_str(_first(payload, "buyer")) or tx.sender,
            token=self._trade_token(tx, payload),
            stx_amount=to_display_units(stx_raw),
            token_amount=to_display_units(tokens_raw) if tokens_raw is not None else None,
            block_height=tx.block_height,
            block_time=tx.block_time,
        )

    def _decode_sell(self, tx: RawTransaction) -> Sold | None:
        payload = find_print_event(tx.events, SELL_TAG)
        if payload is None:
            return None

        tokens_raw = _first(payload, "tokens_sold", "token_amount", "tokens_in")
        if tokens_raw is None:
            raise DecodeError("sell event has no tokens-sold")
        stx_raw = _first(payload, "stx_received", "stx_out", "stx_amount")

        return Sold(
            tx_id=tx.tx_id,
            sender=_optional_str(_first(payload, "seller")) or tx.sender,
            token=self._trade_token(tx, payload),
            token_amount=to_display_units(tokens_raw),
            stx_amount=to_display_units(stx_raw) if stx_raw is not None else None,
            block_height=tx.block_height,
            block_time=tx.block_time,
        )

    def _decode_graduation(self, tx: RawTransaction) -> Graduated | None:
        payload = find_print_event(tx.events, *GRADUATION_TAGS)
        if payload is None:
            return None

        return Graduated(
            tx_id=tx.tx_id,
            sender=tx.sender,
            token=self._trade_token(tx, payload),
            block_height=tx.block_height,
            block_time=tx.block_time,
        )
