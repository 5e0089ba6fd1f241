"""Domain events produced by the decoder.

Amounts are `Decimal` display units (already divided by the base-unit divisor).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any


class EventType(str, Enum):
    """Activity event types, as stored in the activity timeline."""

    TOKEN_CREATED = "token_created"
    BUY = "buy"
    SELL = "sell"
    GRADUATED = "graduated"
    TRADE_REJECTED = "trade_rejected"


@dataclass(frozen=True)
class TokenRegistered:
    tx_id: str
    sender: str
    name: str
    symbol: str
    contract_address: str | None = None
    description: str | None = None
    image_uri: str | None = None
    block_height: int | None = None
    block_time: datetime | None = None

    event_type = EventType.TOKEN_CREATED

    def details(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "symbol": self.symbol,
            "contract_address": self.contract_address,
            "block_height": self.block_height,
        }


@dataclass(frozen=True)
class Bought:
    tx_id: str
    sender: str
    token: str
    stx_amount: Decimal
    token_amount: Decimal | None = None
    block_height: int | None = None
    block_time: datetime | None = None

    event_type = EventType.BUY

    def details(self) -> dict[str, Any]:
        return {
            "token": self.token,
            "stx_amount": str(self.stx_amount),
            "token_amount": str(self.token_amount) if self.token_amount is not None else None,
            "block_height": self.block_height,
        }


@dataclass(frozen=True)
class Sold:
    tx_id: str
    sender: str
    token: str
    token_amount: Decimal
    stx_amount: Decimal | None = None
    block_height: int | None = None
    block_time: datetime | None = None

    event_type = EventType.SELL

    def details(self) -> dict[str, Any]:
        return {
            "token": self.token,
            "token_amount": str(self.token_amount),
            "stx_amount": str(self.stx_amount) if self.stx_amount is not None else None,
            "block_height": self.block_height,
        }


@dataclass(frozen=True)
class Graduated:
    tx_id: str
    sender: str
    token: str
    block_height: int | None = None
    block_time: datetime | None = None

    event_type = EventType.GRADUATED

    def details(self) -> dict[str, Any]:
        return {"token": self.token, "block_height": self.block_height}


DomainEvent = TokenRegistered | Bought | Sold | Graduated
TradeEvent = Bought | Sold
