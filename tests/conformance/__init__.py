"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the collateral engine.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. health.py - No successful call leaves a debtor below minimum health
2. solvency.py - Held collateral always backs the debt token supply
3. atomicity.py - Failed calls leave no trace
4. reentrancy.py - Calls cannot re-enter the engine mid-operation
5. view_safety.py - Read-only queries never fail on valid input
6. round_trip.py - USD conversions invert up to rounding

These tests use hypothesis for property-based testing.
"""
