"""
Vitae - PostgreSQL Record Store
===============================

asyncpg implementation of RecordStore.

Usage:
    db = await DatabaseConnection.open(config.database)
    store = PostgresRecordStore(db)
    await store.create_schema()
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from vitae.database.connection import DatabaseConnection
from vitae.database.store import PROFILE_FIELDS, RecordStore
from vitae.shared.exceptions import PersistenceError, RecordNotFoundError
from vitae.shared.models import (
    Activity,
    Category,
    CVRecord,
    Entry,
    PendingCandidate,
    Subscription,
)

logger = logging.getLogger(__name__)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS cv_records (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL UNIQUE,
    name TEXT,
    email TEXT,
    phone TEXT,
    address TEXT,
    institution TEXT,
    website TEXT
);

CREATE TABLE IF NOT EXISTS cv_categories (
    id TEXT PRIMARY KEY,
    record_id TEXT NOT NULL REFERENCES cv_records(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    display_order INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS cv_entries (
    id TEXT PRIMARY KEY,
    category_id TEXT NOT NULL REFERENCES cv_categories(id) ON DELETE CASCADE,
    title TEXT NOT NULL,
    description TEXT,
    date TEXT,
    location TEXT,
    url TEXT,
    source_type TEXT NOT NULL DEFAULT 'cv-import',
    source_data JSONB NOT NULL DEFAULT '{}'::jsonb,
    display_order INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS pending_entries (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    date TEXT,
    url TEXT,
    external_id TEXT,
    source_type TEXT NOT NULL,
    source_data JSONB NOT NULL DEFAULT '{}'::jsonb,
    suggested_category TEXT,
    confidence REAL,
    reasoning TEXT,
    status TEXT NOT NULL DEFAULT 'pending'
);

CREATE TABLE IF NOT EXISTS pubmed_subscriptions (
    owner_id TEXT PRIMARY KEY,
    author_name TEXT NOT NULL,
    frequency TEXT NOT NULL DEFAULT 'weekly',
    last_checked TIMESTAMPTZ,
    notify BOOLEAN NOT NULL DEFAULT FALSE,
    contact TEXT
);

CREATE TABLE IF NOT EXISTS activities (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    type TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
    created_at TIMESTAMPTZ NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_cv_entries_category ON cv_entries(category_id);
CREATE INDEX IF NOT EXISTS idx_pending_owner ON pending_entries(owner_id);
"""


class PostgresRecordStore(RecordStore):
    """RecordStore over a DatabaseConnection pool."""

    def __init__(self, db: DatabaseConnection):
        self.db = db

    async def create_schema(self) -> None:
        await self.db.execute(SCHEMA_SQL)
        logger.info("Record store schema ensured")

    # =========================================================================
    # Row mapping
    # =========================================================================

    @staticmethod
    def _to_record(row) -> CVRecord:
        return CVRecord(
            id=row["id"],
            owner_id=row["owner_id"],
            **{f: row[f] for f in PROFILE_FIELDS},
        )

    @staticmethod
    def _to_category(row) -> Category:
        return Category(
            id=row["id"],
            record_id=row["record_id"],
            name=row["name"],
            display_order=row["display_order"],
        )

    @staticmethod
    def _to_entry(row) -> Entry:
        return Entry(
            id=row["id"],
            category_id=row["category_id"],
            title=row["title"],
            description=row["description"],
            date=row["date"],
            location=row["location"],
            url=row["url"],
            source_type=row["source_type"],
            source_data=row["source_data"] or {},
            display_order=row["display_order"],
        )

    @staticmethod
    def _to_pending(row) -> PendingCandidate:
        return PendingCandidate(
            id=row["id"],
            owner_id=row["owner_id"],
            title=row["title"],
            description=row["description"],
            date=row["date"],
            url=row["url"],
            external_id=row["external_id"],
            source_type=row["source_type"],
            source_data=row["source_data"] or {},
            suggested_category=row["suggested_category"],
            confidence=row["confidence"],
            reasoning=row["reasoning"],
            status=row["status"],
        )

    # =========================================================================
    # Records
    # =========================================================================

    async def get_record(self, owner_id: str) -> Optional[CVRecord]:
        row = await self.db.fetchrow("SELECT * FROM cv_records WHERE owner_id = $1", owner_id)
        return self._to_record(row) if row else None

    async def get_or_create_record(self, owner_id: str) -> CVRecord:
        candidate = CVRecord(owner_id=owner_id)
        await self.db.execute(
            """
            INSERT INTO cv_records (id, owner_id) VALUES ($1, $2)
            ON CONFLICT (owner_id) DO NOTHING
            """,
            candidate.id, owner_id,
        )
        record = await self.get_record(owner_id)
        if record is None:
            raise PersistenceError(f"Could not create record for owner {owner_id}")
        return record

    async def update_profile(self, record_id: str, fields: Dict[str, Any]) -> None:
        updates = {k: v for k, v in fields.items() if k in PROFILE_FIELDS}
        if not updates:
            return
        set_parts = [f"{key} = ${i}" for i, key in enumerate(updates, start=1)]
        values = list(updates.values()) + [record_id]
        status = await self.db.execute(
            f"UPDATE cv_records SET {', '.join(set_parts)} WHERE id = ${len(values)}",
            *values,
        )
        if status.endswith(" 0"):
            raise RecordNotFoundError(f"Record {record_id} not found")

    # =========================================================================
    # Categories
    # =========================================================================

    async def list_categories(self, record_id: str) -> List[Category]:
        rows = await self.db.fetch(
            "SELECT * FROM cv_categories WHERE record_id = $1 ORDER BY display_order",
            record_id,
        )
        return [self._to_category(r) for r in rows]

    async def max_category_order(self, record_id: str) -> Optional[int]:
        return await self.db.fetchval(
            "SELECT MAX(display_order) FROM cv_categories WHERE record_id = $1",
            record_id,
        )

    async def create_category(self, record_id: str, name: str, display_order: int) -> Category:
        category = Category(record_id=record_id, name=name, display_order=display_order)
        row = await self.db.fetchrow(
            """
            INSERT INTO cv_categories (id, record_id, name, display_order)
            VALUES ($1, $2, $3, $4)
            RETURNING *
            """,
            category.id, record_id, name, display_order,
        )
        return self._to_category(row)

    # =========================================================================
    # Entries
    # =========================================================================

    async def list_entries(self, record_id: str) -> List[Entry]:
        rows = await self.db.fetch(
            """
            SELECT e.* FROM cv_entries e
            JOIN cv_categories c ON c.id = e.category_id
            WHERE c.record_id = $1
            ORDER BY c.display_order, e.display_order
            """,
            record_id,
        )
        return [self._to_entry(r) for r in rows]

    async def get_entry(self, entry_id: str) -> Optional[Entry]:
        row = await self.db.fetchrow("SELECT * FROM cv_entries WHERE id = $1", entry_id)
        return self._to_entry(row) if row else None

    async def max_entry_order(self, category_id: str) -> Optional[int]:
        return await self.db.fetchval(
            "SELECT MAX(display_order) FROM cv_entries WHERE category_id = $1",
            category_id,
        )

    async def create_entry(self, entry: Entry) -> Entry:
        row = await self.db.fetchrow(
            """
            INSERT INTO cv_entries (
                id, category_id, title, description, date, location, url,
                source_type, source_data, display_order
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
            RETURNING *
            """,
            entry.id, entry.category_id, entry.title, entry.description,
            entry.date, entry.location, entry.url, entry.source_type,
            entry.source_data or {}, entry.display_order,
        )
        return self._to_entry(row)

    async def update_entry_source(
        self,
        entry_id: str,
        source_type: str,
        source_data: Dict[str, Any]
    ) -> Entry:
        row = await self.db.fetchrow(
            """
            UPDATE cv_entries
            SET source_type = $2, source_data = source_data || $3
            WHERE id = $1
            RETURNING *
            """,
            entry_id, source_type, source_data,
        )
        if row is None:
            raise RecordNotFoundError(f"Entry {entry_id} not found")
        return self._to_entry(row)

    # =========================================================================
    # Pending candidates
    # =========================================================================

    async def list_pending(self, owner_id: str) -> List[PendingCandidate]:
        rows = await self.db.fetch(
            "SELECT * FROM pending_entries WHERE owner_id = $1 AND status = 'pending'",
            owner_id,
        )
        return [self._to_pending(r) for r in rows]

    async def create_pending(self, candidate: PendingCandidate) -> PendingCandidate:
        row = await self.db.fetchrow(
            """
            INSERT INTO pending_entries (
                id, owner_id, title, description, date, url, external_id,
                source_type, source_data, suggested_category, confidence,
                reasoning, status
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
            RETURNING *
            """,
            candidate.id, candidate.owner_id, candidate.title,
            candidate.description, candidate.date, candidate.url,
            candidate.external_id, candidate.source_type,
            candidate.source_data or {}, candidate.suggested_category,
            candidate.confidence, candidate.reasoning, candidate.status,
        )
        return self._to_pending(row)

    async def delete_pending(self, candidate_id: str) -> bool:
        status = await self.db.execute("DELETE FROM pending_entries WHERE id = $1", candidate_id)
        return not status.endswith(" 0")

    # =========================================================================
    # Subscriptions and activity
    # =========================================================================

    async def list_subscriptions(self) -> List[Subscription]:
        rows = await self.db.fetch("SELECT * FROM pubmed_subscriptions ORDER BY owner_id")
        return [
            Subscription(
                owner_id=r["owner_id"],
                author_name=r["author_name"],
                frequency=r["frequency"],
                last_checked=r["last_checked"],
                notify=r["notify"],
                contact=r["contact"],
            )
            for r in rows
        ]

    async def touch_subscription(self, owner_id: str, checked_at: datetime) -> None:
        await self.db.execute(
            "UPDATE pubmed_subscriptions SET last_checked = $2 WHERE owner_id = $1",
            owner_id, checked_at,
        )

    async def append_activity(self, activity: Activity) -> Activity:
        await self.db.execute(
            """
            INSERT INTO activities (id, owner_id, type, title, description, metadata, created_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7)
            """,
            activity.id, activity.owner_id, activity.type, activity.title,
            activity.description, activity.metadata or {}, activity.created_at,
        )
        return activity

    async def close(self) -> None:
        await self.db.close()
