"""
Atomicity Conformance Tests

INVARIANT: Mutating operations are all-or-nothing.

    ∀ operation O:
        O succeeds ⟹ every ledger effect and token movement of O is applied
        O fails ⟹ the ledger, the event log and every token balance are
                   exactly as before O

Effects are recorded before external calls run, so a failing external call
must undo both the recorded effects and any external call that completed.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from stablecoin import EngineError, Token, TransferFailed, MintFailed
from stablecoin.engine import _Interaction, _Session
from tests.market import (
    ETHER, FEED_UNIT, RefusingCustody, RefusingGate, build_market, ledger_state,
)


amounts = st.integers(min_value=0, max_value=30 * ETHER)
debts = st.integers(min_value=0, max_value=30_000 * ETHER)


class TestAtomicityProperties:
    """Property-based atomicity tests."""

    @given(deposit=amounts, debt=debts)
    @settings(max_examples=50, deadline=None)
    def test_deposit_and_mint_all_or_nothing(self, deposit, debt):
        """
        PROPERTY: deposit_and_mint applies both legs or neither.
        """
        m = build_market()
        m.fund("alice", "WETH", 10 * ETHER)
        before = ledger_state(m)

        try:
            m.engine.deposit_and_mint("alice", "WETH", deposit, debt)
        except EngineError:
            assert ledger_state(m) == before
        else:
            assert m.engine.collateral_balance("alice", "WETH") == deposit
            assert m.engine.debt_of("alice") == debt
            assert m.dsc.balance_of("alice") == debt
            assert m.weth.balance_of("alice") == 10 * ETHER - deposit

    @given(collateral=amounts, debt=debts)
    @settings(max_examples=50, deadline=None)
    def test_redeem_for_burn_all_or_nothing(self, collateral, debt):
        m = build_market()
        m.open_position("alice", 10 * ETHER, 8_000 * ETHER)
        m.approve_debt("alice", 30_000 * ETHER)
        before = ledger_state(m)

        try:
            m.engine.redeem_for_burn("alice", "WETH", collateral, debt)
        except EngineError:
            assert ledger_state(m) == before
        else:
            assert m.engine.debt_of("alice") == 8_000 * ETHER - debt
            assert m.engine.collateral_balance("alice", "WETH") == 10 * ETHER - collateral
            assert m.dsc.total_supply() == m.engine.total_debt()

    @given(price=st.integers(min_value=500, max_value=2500), cover=debts)
    @settings(max_examples=50, deadline=None)
    def test_liquidation_all_or_nothing(self, price, cover):
        m = build_market()
        m.open_position("alice", 10 * ETHER, 10_000 * ETHER)
        m.open_position("liquidator", 100 * ETHER, 30_000 * ETHER)
        m.approve_debt("liquidator", 30_000 * ETHER)
        m.set_price("WETH", price * FEED_UNIT)
        before = ledger_state(m)

        try:
            m.engine.liquidate("liquidator", "WETH", "alice", cover)
        except EngineError:
            assert ledger_state(m) == before
        else:
            assert m.engine.debt_of("alice") == 10_000 * ETHER - cover
            seized = m.weth.balance_of("liquidator")
            assert m.engine.collateral_balance("alice", "WETH") == 10 * ETHER - seized


class TestAtomicityExamples:
    """Explicit atomicity examples with failing collaborators."""

    def test_refused_deposit_leaves_nothing(self):
        weth = Token("WETH", "Wrapped Ether")
        custody = RefusingCustody(weth)
        m = build_market(weth=weth, weth_custody=custody)
        m.fund("alice", "WETH", ETHER)
        custody.refuse_in = True
        before = ledger_state(m)

        with pytest.raises(TransferFailed):
            m.engine.deposit_collateral("alice", "WETH", ETHER)
        assert ledger_state(m) == before

    def test_refused_mint_undoes_completed_transfer_in(self):
        m = build_market(debt_gate_wrapper=RefusingGate)
        m.engine.debt_gate.refuse_mint = True
        m.fund("alice", "WETH", 10 * ETHER)
        before = ledger_state(m)

        with pytest.raises(MintFailed):
            m.engine.deposit_and_mint("alice", "WETH", 10 * ETHER, ETHER)
        assert ledger_state(m) == before

    def test_refused_payout_undoes_completed_burn(self):
        weth = Token("WETH", "Wrapped Ether")
        custody = RefusingCustody(weth)
        m = build_market(weth=weth, weth_custody=custody)
        m.open_position("alice", 10 * ETHER, 10_000 * ETHER)
        m.open_position("liquidator", 20 * ETHER, 10_000 * ETHER)
        m.approve_debt("liquidator", 10_000 * ETHER)
        m.set_price("WETH", 1500 * FEED_UNIT)
        custody.refuse_out = True
        before = ledger_state(m)

        with pytest.raises(TransferFailed):
            m.engine.liquidate("liquidator", "WETH", "alice", 10_000 * ETHER)

        after = ledger_state(m)
        for key in ("collateral", "debt", "events", "weth", "dsc", "dsc_supply"):
            assert after[key] == before[key], key

    def test_rejected_operation_does_not_consume_sequence(self, alice_at_limit):
        with pytest.raises(EngineError):
            alice_at_limit.engine.mint_debt("alice", 1)
        alice_at_limit.fund("alice", "WETH", ETHER)
        events = alice_at_limit.engine.deposit_collateral("alice", "WETH", ETHER)
        assert events[0].sequence_number == 2


class ExplodingCustody(RefusingCustody):
    """Custody whose transfer out raises instead of returning False."""

    def transfer_out(self, to, amount):
        raise RuntimeError("custody offline")


class TestCompensationFailures:

    def test_raising_compensation_reported_as_transfer_failed(self):
        weth = Token("WETH", "Wrapped Ether")
        m = build_market(weth=weth, weth_custody=ExplodingCustody(weth),
                         debt_gate_wrapper=RefusingGate)
        m.engine.debt_gate.refuse_mint = True
        m.fund("alice", "WETH", 10 * ETHER)
        before = ledger_state(m)

        with pytest.raises(TransferFailed) as exc_info:
            m.engine.deposit_and_mint("alice", "WETH", 10 * ETHER, ETHER)

        assert "transfer_in" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, MintFailed)
        after = ledger_state(m)
        for key in ("collateral", "debt", "events", "dsc_supply"):
            assert after[key] == before[key], key

    def test_remaining_compensations_run_after_one_raises(self, engine):
        undone = []

        def boom():
            raise RuntimeError("compensation failed")

        session = _Session("batch")
        session.completed = [
            _Interaction("first", lambda: None, undo=lambda: undone.append("first") or True),
            _Interaction("second", lambda: None, undo=boom),
            _Interaction("third", lambda: None, undo=lambda: undone.append("third") or True),
        ]

        with pytest.raises(TransferFailed) as exc_info:
            engine._undo(session, MintFailed("cause"))

        assert undone == ["third", "first"]
        assert "second" in str(exc_info.value)
        assert "first" not in str(exc_info.value)
