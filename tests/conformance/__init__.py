"""
Conformance tests: property-based checks of the ledger invariants the harness
relies on, run against the in-memory ledger.
"""
