"""
price_feeds.py - Reference price sources

In-memory implementations of the PriceSource protocol, one feed per asset.

Classes:
- StaticPriceFeed: a settable answer and timestamp (a mock aggregator)
- TimeSeriesPriceFeed: historical answers, looked up at the clock's time

Answers are integers with `decimals` implied decimal places (8 by default,
like USD aggregator feeds).
"""

from bisect import bisect_right
from datetime import datetime
from typing import Callable, List, Optional, Tuple


DEFAULT_FEED_DECIMALS = 8


class StaticPriceFeed:
    """
    Price feed holding a single answer until it is updated.

    Example:
        feed = StaticPriceFeed(2000 * 10**8, datetime(2025, 1, 1))
        feed.update_price(1500 * 10**8, datetime(2025, 1, 1, 1))
    """

    def __init__(self, price: int, updated_at: datetime, decimals: int = DEFAULT_FEED_DECIMALS):
        self.decimals = decimals
        self.price = price
        self.updated_at = updated_at

    def latest_price(self) -> Tuple[int, datetime]:
        return self.price, self.updated_at

    def update_price(self, price: int, updated_at: datetime) -> None:
        """Publish a new answer."""
        self.price = price
        self.updated_at = updated_at

    def __repr__(self):
        return f"StaticPriceFeed({self.price}, updated_at={self.updated_at}, decimals={self.decimals})"


class TimeSeriesPriceFeed:
    """
    Price feed replaying a history of observations.

    The answer is the most recent observation at or before clock(); its
    timestamp is the observation time, so a gap in the history shows up as
    staleness to the oracle adapter.

    Supports two initialization patterns:
    - Empty initialization for incremental addition via add_price()
    - Batch initialization with a complete price path for simulations
    """

    def __init__(
        self,
        clock: Callable[[], datetime],
        price_path: Optional[List[Tuple[datetime, int]]] = None,
        decimals: int = DEFAULT_FEED_DECIMALS,
    ):
        """
        Args:
            clock: Callable returning the time at which to read the feed.
            price_path: Optional list of (timestamp, price) observations.
            decimals: Implied decimal places of the answers.
        """
        self.clock = clock
        self.decimals = decimals
        self.price_history: List[Tuple[datetime, int]] = sorted(price_path or [], key=lambda x: x[0])

    def add_price(self, timestamp: datetime, price: int) -> None:
        """Add an observation, keeping the history in timestamp order."""
        self.price_history.append((timestamp, price))
        self.price_history.sort(key=lambda x: x[0])

    def latest_price(self) -> Tuple[int, datetime]:
        """
        Return the last observation at or before clock().

        Raises:
            LookupError: If no observation exists yet.
        """
        now = self.clock()
        timestamps = [ts for ts, _ in self.price_history]
        idx = bisect_right(timestamps, now)
        if idx == 0:
            raise LookupError(f"no price observation at or before {now}")
        timestamp, price = self.price_history[idx - 1]
        return price, timestamp

    def __repr__(self):
        return f"TimeSeriesPriceFeed({len(self.price_history)} observations, decimals={self.decimals})"
