"""market/ -- Marketplace entities, persistence, and notifications for Etheryte.

Layer rule: market/ imports stdlib, third-party libraries, core/, and the
schema MetaData from auth/store.py (so foreign keys to users resolve).
It does NOT import from api/.
"""
