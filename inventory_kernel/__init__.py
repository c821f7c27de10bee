"""
Inventory kernel: lot ledger, aggregate projection, stock documents and the
external sync tracker, persisted per tenant store with SQLAlchemy.
"""
