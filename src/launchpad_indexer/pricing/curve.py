"""Bonding-curve pricing model.

This module mirrors the launchpad's `bonding-curve` contract arithmetic so that
off-chain quotes match what the chain will execute. Every computation happens on
integers in the contract's 8-decimal fixed-point domain; conversion to
human-readable `Decimal` values happens only at the edges (see `BondingCurve`).

Linear curve:
    price(sold) = INITIAL_PRICE + sold * SLOPE / SCALE

where `sold` is in base units (1 token = SCALE units) and prices are expressed
in base units of STX per whole token.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal

# Contract constants (8-decimal fixed point)
DECIMALS = 8
SCALE = 10**DECIMALS
INITIAL_PRICE = 1_000_000  # 0.01 STX
SLOPE = 100  # 0.000001 STX per whole token sold

BPS_DENOMINATOR = 10_000
PLATFORM_FEE_BPS = 100  # 1%
CREATOR_FEE_BPS = 100  # 1%
FEE_BPS = PLATFORM_FEE_BPS + CREATOR_FEE_BPS

GRADUATION_THRESHOLD = 6_900_000_000_000  # 69,000 STX market cap

_QUANTUM = Decimal(1).scaleb(-DECIMALS)


def _require_non_negative(name: str, value: int) -> None:
    if value < 0:
        raise ValueError(f"{name} must be >= 0, got {value}")


def price(tokens_sold: int) -> int:
    """Spot price for the given curve position.

    Args:
        tokens_sold: Tokens sold so far, in base units.

    Returns:
        Price of one whole token in STX base units.
    """
    _require_non_negative("tokens_sold", tokens_sold)
    return INITIAL_PRICE + tokens_sold * SLOPE // SCALE


def quote_buy(stx_in: int, tokens_sold: int) -> int:
    """Tokens received for `stx_in`, floored exactly like the contract.

    Args:
        stx_in: STX paid, in base units.
        tokens_sold: Curve position before the trade, in base units.

    Returns:
        Tokens out, in base units.
    """
    _require_non_negative("stx_in", stx_in)
    return stx_in * SCALE // price(tokens_sold)


def sell_gross(tokens_in: int, tokens_sold: int) -> int:
    """STX value of `tokens_in` at the current price, before fees."""
    _require_non_negative("tokens_in", tokens_in)
    return tokens_in * price(tokens_sold) // SCALE


def fee(gross: int) -> int:
    """Total platform + creator fee taken from a gross amount."""
    _require_non_negative("gross", gross)
    return gross * FEE_BPS // BPS_DENOMINATOR


def quote_sell(tokens_in: int, tokens_sold: int) -> int:
    """STX received for selling `tokens_in`, net of fees.

    The fee is floored in basis points and subtracted from the gross, matching
    the contract payout to the base unit.

    Args:
        tokens_in: Tokens sold back to the curve, in base units.
        tokens_sold: Curve position before the trade, in base units.

    Returns:
        STX out, in base units.
    """
    gross = sell_gross(tokens_in, tokens_sold)
    return gross - fee(gross)


def market_cap(tokens_sold: int) -> int:
    """Market cap of the circulating supply at the spot price (base units)."""
    return price(tokens_sold) * tokens_sold // SCALE


def graduation_progress(market_cap_units: int) -> float:
    """Fraction of the graduation threshold reached, clamped to [0.0, 1.0]."""
    if market_cap_units <= 0:
        return 0.0
    return min(market_cap_units / GRADUATION_THRESHOLD, 1.0)


def to_units(amount: Decimal | int | str) -> int:
    """Convert a display amount to base units, truncating extra precision."""
    value = Decimal(str(amount)) if not isinstance(amount, Decimal) else amount
    return int((value * SCALE).to_integral_value(rounding=ROUND_DOWN))


def from_units(units: int) -> Decimal:
    """Convert base units to an exact display `Decimal` with 8 places."""
    return (Decimal(units) / SCALE).quantize(_QUANTUM)


@dataclass(frozen=True)
class BondingCurve:
    """Display-unit facade over the integer curve.

    Inputs are `Decimal` STX/token amounts; they are truncated to base units,
    evaluated with the integer functions above, and converted back. Server and
    client code share this class so they can never disagree on a quote.

    Example:
        ```python
        curve = BondingCurve()
        curve.quote_buy(Decimal("10"), Decimal("0"))  # Decimal("1000.00000000")
        ```
    """

    def price(self, tokens_sold: Decimal) -> Decimal:
        return from_units(price(to_units(tokens_sold)))

    def quote_buy(self, stx_in: Decimal, tokens_sold: Decimal) -> Decimal:
        return from_units(quote_buy(to_units(stx_in), to_units(tokens_sold)))

    def quote_sell(self, tokens_in: Decimal, tokens_sold: Decimal) -> Decimal:
        return from_units(quote_sell(to_units(tokens_in), to_units(tokens_sold)))

    def sell_gross(self, tokens_in: Decimal, tokens_sold: Decimal) -> Decimal:
        return from_units(sell_gross(to_units(tokens_in), to_units(tokens_sold)))

    def market_cap(self, tokens_sold: Decimal) -> Decimal:
        return from_units(market_cap(to_units(tokens_sold)))

    def progress(self, market_cap_stx: Decimal) -> float:
        return graduation_progress(to_units(market_cap_stx))

    def progress_percent(self, market_cap_stx: Decimal) -> float:
        return self.progress(market_cap_stx) * 100.0
