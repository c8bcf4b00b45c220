"""
Vitae - Record Store
====================

Persistence contract for CV records, categories, entries, pending PubMed
candidates, author subscriptions and the activity log.

Display orders are assigned by callers as `max(existing) + 1`; the
`max_*_order` queries return None when the scope is empty.

Implementations:
- InMemoryRecordStore: development and tests
- PostgresRecordStore (vitae.database.postgres): asyncpg
"""

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from vitae.shared.exceptions import RecordNotFoundError
from vitae.shared.models import (
    Activity,
    Category,
    CVRecord,
    Entry,
    PendingCandidate,
    Subscription,
)

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("name", "email", "phone", "address", "institution", "website")


class RecordStore(ABC):
    """Abstract persistence for one or many owners' CV data."""

    # =========================================================================
    # Records
    # =========================================================================

    @abstractmethod
    async def get_record(self, owner_id: str) -> Optional[CVRecord]:
        pass

    @abstractmethod
    async def get_or_create_record(self, owner_id: str) -> CVRecord:
        pass

    @abstractmethod
    async def update_profile(self, record_id: str, fields: Dict[str, Any]) -> None:
        """Overwrite the given profile fields on a record."""
        pass

    # =========================================================================
    # Categories
    # =========================================================================

    @abstractmethod
    async def list_categories(self, record_id: str) -> List[Category]:
        pass

    @abstractmethod
    async def max_category_order(self, record_id: str) -> Optional[int]:
        pass

    @abstractmethod
    async def create_category(self, record_id: str, name: str, display_order: int) -> Category:
        pass

    # =========================================================================
    # Entries
    # =========================================================================

    @abstractmethod
    async def list_entries(self, record_id: str) -> List[Entry]:
        """All entries across the record's categories."""
        pass

    @abstractmethod
    async def get_entry(self, entry_id: str) -> Optional[Entry]:
        pass

    @abstractmethod
    async def max_entry_order(self, category_id: str) -> Optional[int]:
        pass

    @abstractmethod
    async def create_entry(self, entry: Entry) -> Entry:
        pass

    @abstractmethod
    async def update_entry_source(
        self,
        entry_id: str,
        source_type: str,
        source_data: Dict[str, Any]
    ) -> Entry:
        """Merge source_data into the entry's provenance and set its source type."""
        pass

    # =========================================================================
    # Pending candidates
    # =========================================================================

    @abstractmethod
    async def list_pending(self, owner_id: str) -> List[PendingCandidate]:
        pass

    @abstractmethod
    async def create_pending(self, candidate: PendingCandidate) -> PendingCandidate:
        pass

    @abstractmethod
    async def delete_pending(self, candidate_id: str) -> bool:
        pass

    # =========================================================================
    # Subscriptions and activity
    # =========================================================================

    @abstractmethod
    async def list_subscriptions(self) -> List[Subscription]:
        pass

    @abstractmethod
    async def touch_subscription(self, owner_id: str, checked_at: datetime) -> None:
        pass

    @abstractmethod
    async def append_activity(self, activity: Activity) -> Activity:
        pass

    async def close(self) -> None:
        pass


# =============================================================================
# IN-MEMORY STORE
# =============================================================================

class InMemoryRecordStore(RecordStore):
    """
    Dict-backed store for development and tests.

    Returns copies so callers cannot mutate stored state behind its back.
    """

    def __init__(self):
        self.records: Dict[str, CVRecord] = {}          # owner_id -> record
        self.categories: Dict[str, Category] = {}       # id -> category
        self.entries: Dict[str, Entry] = {}             # id -> entry
        self.pending: Dict[str, PendingCandidate] = {}  # id -> candidate
        self.subscriptions: Dict[str, Subscription] = {}
        self.activities: List[Activity] = []
        self._lock = asyncio.Lock()

    async def get_record(self, owner_id: str) -> Optional[CVRecord]:
        record = self.records.get(owner_id)
        return copy.copy(record) if record else None

    async def get_or_create_record(self, owner_id: str) -> CVRecord:
        async with self._lock:
            if owner_id not in self.records:
                self.records[owner_id] = CVRecord(owner_id=owner_id)
                logger.debug(f"Created record for owner {owner_id}")
            return copy.copy(self.records[owner_id])

    def _record_by_id(self, record_id: str) -> CVRecord:
        for record in self.records.values():
            if record.id == record_id:
                return record
        raise RecordNotFoundError(f"Record {record_id} not found")

    async def update_profile(self, record_id: str, fields: Dict[str, Any]) -> None:
        record = self._record_by_id(record_id)
        for key, value in fields.items():
            if key in PROFILE_FIELDS:
                setattr(record, key, value)

    async def list_categories(self, record_id: str) -> List[Category]:
        found = [copy.copy(c) for c in self.categories.values() if c.record_id == record_id]
        return sorted(found, key=lambda c: c.display_order)

    async def max_category_order(self, record_id: str) -> Optional[int]:
        orders = [c.display_order for c in self.categories.values() if c.record_id == record_id]
        return max(orders) if orders else None

    async def create_category(self, record_id: str, name: str, display_order: int) -> Category:
        self._record_by_id(record_id)
        category = Category(record_id=record_id, name=name, display_order=display_order)
        self.categories[category.id] = category
        return copy.copy(category)

    async def list_entries(self, record_id: str) -> List[Entry]:
        category_ids = {c.id for c in self.categories.values() if c.record_id == record_id}
        found = [copy.deepcopy(e) for e in self.entries.values() if e.category_id in category_ids]
        return sorted(found, key=lambda e: (e.category_id, e.display_order))

    async def get_entry(self, entry_id: str) -> Optional[Entry]:
        entry = self.entries.get(entry_id)
        return copy.deepcopy(entry) if entry else None

    async def max_entry_order(self, category_id: str) -> Optional[int]:
        orders = [e.display_order for e in self.entries.values() if e.category_id == category_id]
        return max(orders) if orders else None

    async def create_entry(self, entry: Entry) -> Entry:
        if entry.category_id not in self.categories:
            raise RecordNotFoundError(f"Category {entry.category_id} not found")
        stored = copy.deepcopy(entry)
        self.entries[stored.id] = stored
        return copy.deepcopy(stored)

    async def update_entry_source(
        self,
        entry_id: str,
        source_type: str,
        source_data: Dict[str, Any]
    ) -> Entry:
        entry = self.entries.get(entry_id)
        if entry is None:
            raise RecordNotFoundError(f"Entry {entry_id} not found")
        entry.source_type = source_type
        entry.source_data = {**(entry.source_data or {}), **source_data}
        return copy.deepcopy(entry)

    async def list_pending(self, owner_id: str) -> List[PendingCandidate]:
        return [copy.deepcopy(p) for p in self.pending.values() if p.owner_id == owner_id]

    async def create_pending(self, candidate: PendingCandidate) -> PendingCandidate:
        stored = copy.deepcopy(candidate)
        self.pending[stored.id] = stored
        return copy.deepcopy(stored)

    async def delete_pending(self, candidate_id: str) -> bool:
        return self.pending.pop(candidate_id, None) is not None

    async def list_subscriptions(self) -> List[Subscription]:
        return [copy.copy(s) for s in self.subscriptions.values()]

    async def add_subscription(self, subscription: Subscription) -> None:
        self.subscriptions[subscription.owner_id] = copy.copy(subscription)

    async def touch_subscription(self, owner_id: str, checked_at: datetime) -> None:
        subscription = self.subscriptions.get(owner_id)
        if subscription is None:
            raise RecordNotFoundError(f"No subscription for owner {owner_id}")
        subscription.last_checked = checked_at

    async def append_activity(self, activity: Activity) -> Activity:
        self.activities.append(copy.deepcopy(activity))
        return activity
