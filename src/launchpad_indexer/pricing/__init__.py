"""Pricing - integer replica of the on-chain bonding curve."""

from launchpad_indexer.pricing.curve import (
    FEE_BPS,
    GRADUATION_THRESHOLD,
    INITIAL_PRICE,
    SCALE,
    SLOPE,
    BondingCurve,
    from_units,
    graduation_progress,
    market_cap,
    price,
    quote_buy,
    quote_sell,
    sell_gross,
    to_units,
)

__all__ = [
    "BondingCurve",
    "FEE_BPS",
    "GRADUATION_THRESHOLD",
    "INITIAL_PRICE",
    "SCALE",
    "SLOPE",
    "from_units",
    "graduation_progress",
    "market_cap",
    "price",
    "quote_buy",
    "quote_sell",
    "sell_gross",
    "to_units",
]
