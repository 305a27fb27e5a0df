"""Named scenarios per tenant.

- backends.py: in-memory and JSON-file row storage
- store.py: CRUD, favorites, single-primary handling
- compare.py: stored results against the primary scenario
"""
