"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the wager system.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Escrow and double-entry accounting invariants
2. atomicity.py - Failed operations change nothing
3. idempotency.py - Duplicate execution handling
4. determinism.py - Reproducible behavior
5. canonicalization.py - Content-addressable identity
6. settlement_rules.py - One-shot resolution, one bet, one claim, order independence

These tests use hypothesis for property-based testing; market_ops.py holds
the shared operation strategies.
"""
