"""
Persistence gateway.

- schema.py: tables, late-column migrations, default settings seed
- gateway.py: Database (datastore selection, per-call transactions, table browser)
"""
