"""
health.py - Health factor and valuation arithmetic

Pure functions: every input is explicit, nothing touches engine state.

Key formulas (all integer, truncating division):
    usd_value        = normalized_price * amount // PRECISION
    token_amount     = usd_amount * PRECISION // normalized_price
    adjusted_value   = collateral_value * THRESHOLD // LIQUIDATION_PRECISION
    health_factor    = adjusted_value * PRECISION // total_debt

Truncation always rounds toward the protocol: collateral is never valued
higher than it is, and debt is never considered smaller.
"""

from __future__ import annotations
from typing import Iterable, Tuple

from .core import (
    PriceQuote, EngineParameters,
    MAX_HEALTH_FACTOR,
    InvalidPrice,
)


_DEFAULT_PARAMETERS = EngineParameters()


def _checked_price(quote: PriceQuote) -> int:
    normalized = quote.normalized
    if normalized <= 0:
        raise InvalidPrice(f"price for {quote.asset} must be positive, got {quote.price}")
    return normalized


def usd_value(amount: int, quote: PriceQuote, params: EngineParameters = _DEFAULT_PARAMETERS) -> int:
    """
    USD value (18 decimals) of `amount` units of the quoted asset.

    Raises:
        InvalidPrice: If the quote is zero or negative.
    """
    return _checked_price(quote) * amount // params.precision


def token_amount_from_usd(
    usd_amount: int,
    quote: PriceQuote,
    params: EngineParameters = _DEFAULT_PARAMETERS,
) -> int:
    """
    Units of the quoted asset worth `usd_amount` (18 decimals).

    Raises:
        InvalidPrice: If the quote is zero or negative (would divide by zero).
    """
    return usd_amount * params.precision // _checked_price(quote)


def collateral_value(
    holdings: Iterable[Tuple[int, PriceQuote]],
    params: EngineParameters = _DEFAULT_PARAMETERS,
) -> int:
    """
    Total USD value of (amount, quote) pairs.

    Each term is truncated before summation, matching a per-asset loop.
    """
    total = 0
    for amount, quote in holdings:
        total += usd_value(amount, quote, params)
    return total


def calculate_health_factor(
    total_debt: int,
    collateral_value_usd: int,
    params: EngineParameters = _DEFAULT_PARAMETERS,
) -> int:
    """
    Health factor of an account, scaled by PRECISION.

    An account without debt has MAX_HEALTH_FACTOR (infinite solvency);
    this is a sentinel, not an error.

    Example:
        # $20,000 collateral, $10,000 debt -> exactly 1.0
        calculate_health_factor(10_000 * 10**18, 20_000 * 10**18) == 10**18
    """
    if total_debt == 0:
        return MAX_HEALTH_FACTOR
    adjusted = collateral_value_usd * params.liquidation_threshold // params.liquidation_precision
    return adjusted * params.precision // total_debt


def is_healthy(health_factor: int, params: EngineParameters = _DEFAULT_PARAMETERS) -> bool:
    """True when the account is at or above the solvency floor."""
    return health_factor >= params.min_health_factor


def liquidation_bonus(base: int, params: EngineParameters = _DEFAULT_PARAMETERS) -> int:
    """Bonus collateral paid on top of `base` to a liquidator."""
    return base * params.liquidation_bonus // params.liquidation_precision
