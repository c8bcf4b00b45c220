"""
Vitae - Database Layer
======================

Persistence for CV records and PubMed reconciliation state.

Components:
- store.py: RecordStore contract + in-memory implementation
- postgres.py: asyncpg implementation
- connection.py: Connection pool

Usage:
    from vitae.database import DatabaseConnection, PostgresRecordStore

    db = await DatabaseConnection.open(config.database)
    store = PostgresRecordStore(db)
"""

from vitae.database.connection import DatabaseConnection
from vitae.database.store import RecordStore, InMemoryRecordStore
from vitae.database.postgres import PostgresRecordStore
