"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the engine.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. test_atomicity.py - All-or-nothing operation semantics
2. test_conservation.py - Debt supply, solvency and custody invariants
3. test_reentrancy.py - Re-entrant calls refused, sessions serialized
4. test_temporal.py - Oracle staleness and the logical clock
5. test_idempotency.py - Reads never change state

These tests use hypothesis for property-based testing.
"""
