"""
oracle.py - Price oracle adapter with staleness check

Wraps the single price source of each registered asset. Every call reaches
the source again; quotes are never cached, so a liquidation decision cannot
outlive the price that justified it.

If a feed stalls, fresh_price() fails for that asset and every valuation,
mint, redemption and liquidation depending on it fails closed until the feed
resumes. Availability is traded for solvency.
"""

from __future__ import annotations
from datetime import datetime, timedelta
from typing import Callable, Optional

from .core import (
    PriceQuote, ORACLE_TIMEOUT,
    InvalidPrice, OracleUnreachable, StalePrice,
)
from .registry import AssetRegistry


Clock = Callable[[], datetime]


class OracleAdapter:
    """
    Read live quotes for registered assets.

    Args:
        registry: Asset registry holding one price source per asset.
        clock: Callable returning the current time (the engine's logical clock).
        timeout: Default staleness bound applied uniformly to every asset.
    """

    def __init__(self, registry: AssetRegistry, clock: Clock, timeout: timedelta = ORACLE_TIMEOUT):
        self.registry = registry
        self.clock = clock
        self.timeout = timeout

    def latest_price(self, asset: str) -> PriceQuote:
        """
        Fetch the most recent answer for an asset, without a freshness check.

        Raises:
            AssetNotAllowed: If the asset is not registered.
            OracleUnreachable: If the source raises.
            InvalidPrice: If the source answers with a non-integer.
        """
        source = self.registry.get(asset).price_source
        try:
            price, updated_at = source.latest_price()
            decimals = source.decimals
        except Exception as e:
            raise OracleUnreachable(f"price source for {asset} failed: {e}") from e

        if not isinstance(price, int) or isinstance(price, bool):
            raise InvalidPrice(f"price for {asset} must be int, got {type(price).__name__}")
        return PriceQuote(asset=asset, price=price, updated_at=updated_at, decimals=decimals)

    def fresh_price(self, asset: str, max_age: Optional[timedelta] = None) -> PriceQuote:
        """
        Fetch the latest answer and reject it if it is stale.

        A quote is stale when now - updated_at > max_age. A quote exactly
        max_age old is still accepted.

        Raises:
            StalePrice: If the quote is older than max_age (default: timeout).
        """
        bound = self.timeout if max_age is None else max_age
        quote = self.latest_price(asset)
        now = self.clock()
        if now - quote.updated_at > bound:
            raise StalePrice(asset, quote.updated_at, now, bound)
        return quote

    def __repr__(self) -> str:
        return f"OracleAdapter({len(self.registry)} feeds, timeout={self.timeout})"
