"""
Profitability ledger (Firestore-first).

This package is split into:
- models: immutable entry/movement shapes
- valuation: pure pricing + kit cost roll-up (no Firestore dependency)
- builder: validated drafts/patches -> priced entries
- aggregation, comparison, insights: dashboard read models over entries
- migration: movement -> entry backfill with idempotency
- firestore: document codecs + sink/source/catalog adapters
"""
