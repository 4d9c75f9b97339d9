"""
Idempotency Conformance Tests

INVARIANT: Reads are pure.

    ∀ read R, ledger L:
        R(L) = R(L)           (same answer when repeated)
        L after R = L before R

Only the six mutating operations change state.
"""

from hypothesis import given, settings
from hypothesis import strategies as st

from tests.market import ETHER, FEED_UNIT, build_market, ledger_state


READS = [
    lambda e: e.collateral_value("alice"),
    lambda e: e.health_factor("alice"),
    lambda e: e.account_information("alice"),
    lambda e: e.collateral_balances("alice"),
    lambda e: e.debt_of("alice"),
    lambda e: e.usd_value("WETH", ETHER),
    lambda e: e.token_amount_from_usd("WBTC", 1_000 * ETHER),
    lambda e: e.total_debt(),
    lambda e: e.list_users(),
    lambda e: e.verify_invariants(),
]


class TestReadsArePure:

    @given(
        collateral=st.integers(min_value=1, max_value=100 * ETHER),
        debt=st.integers(min_value=1, max_value=1_000 * ETHER),
        price=st.integers(min_value=1, max_value=5_000),
    )
    @settings(max_examples=30, deadline=None)
    def test_repeated_reads_agree_and_mutate_nothing(self, collateral, debt, price):
        m = build_market()
        m.fund("alice", "WETH", collateral)
        m.engine.deposit_collateral("alice", "WETH", collateral)
        if m.engine.calculate_health_factor(debt, m.engine.collateral_value("alice")) >= 10 ** 18:
            m.engine.mint_debt("alice", debt)
        m.set_price("WETH", price * FEED_UNIT)
        before = ledger_state(m)

        for read in READS:
            assert read(m.engine) == read(m.engine)

        assert ledger_state(m) == before
