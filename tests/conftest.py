"""
conftest.py - Shared pytest fixtures for engine tests

Provides common fixtures used across unit, functional and conformance tests:
- A two-asset market (WETH at $2000, WBTC at $1000) with no positions
- Alice opened at exactly the minimum health factor
- A crashed market where Alice is liquidatable and a liquidator is ready
"""

import pytest
from datetime import timedelta

from tests.market import ETHER, FEED_UNIT, WBTC_PRICE, build_market


@pytest.fixture
def market():
    """Fresh two-asset market with no positions."""
    return build_market()


@pytest.fixture
def engine(market):
    return market.engine


@pytest.fixture
def alice_at_limit(market):
    """Alice holds 10 WETH ($20,000) against 10,000 DSC: health factor exactly 1.0."""
    market.open_position("alice", 10 * ETHER, 10_000 * ETHER)
    return market


@pytest.fixture
def crashed_market(alice_at_limit):
    """
    Alice at the limit plus a well-collateralized liquidator, then WETH
    falls to $1500 (Alice's health factor 0.75, liquidator's 1.5).
    """
    m = alice_at_limit
    m.open_position("liquidator", 20 * ETHER, 10_000 * ETHER)
    m.approve_debt("liquidator", 10_000 * ETHER)
    m.engine.advance_by(timedelta(minutes=5))
    m.set_price("WETH", 1500 * FEED_UNIT)
    m.set_price("WBTC", WBTC_PRICE)
    return m
