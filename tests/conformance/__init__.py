"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the loan validator.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. collateral.py - Requirements round up, releases round down, nothing is lost
2. repayment.py - Balances only decrease and never go below zero
3. temporal.py - Repayment before expiration, default claims after it
4. conservation.py - Ledger value is conserved through a whole loan
5. atomicity.py - Rejected transactions change nothing
6. idempotency.py - Duplicate execution handling
7. determinism.py - Same inputs, same verdicts and identifiers

These tests use hypothesis for property-based testing.
"""
