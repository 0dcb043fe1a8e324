"""
Ledger Kernel - ledger automation engine

A double-entry ledger core with:
- Hierarchical chart of accounts with running balances
- Journal entry lifecycle (draft -> posted -> reversed)
- Declarative event templates evaluated against payloads
- Auditable dispatch records for every template execution
"""

__version__ = "0.1.0"
