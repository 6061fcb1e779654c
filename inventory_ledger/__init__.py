"""
inventory_ledger package

Profitability ledger engine for the inventory application: prices purchase/sale
lines, rolls up kit costs, aggregates ledger entries for the financial dashboard
and backfills historical stock movements into the ledger.
"""

__version__ = "0.3.0"
