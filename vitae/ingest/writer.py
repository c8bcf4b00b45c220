"""
Vitae - Record Writer
=====================

Persists a merged extraction into an owner's CV record.

Every entry is gated on its dedup key against what the record already holds
(loaded once) and what this run has already written, so re-importing the
same CV creates nothing new. There is no transaction around the whole
write: entries committed before a storage failure stay, and the dedup key
covers them on retry.

Usage:
    writer = RecordWriter(store)
    summary = await writer.persist(owner_id, merged, on_progress=report)
    print(summary.created, summary.skipped)
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

from vitae.database.store import RecordStore
from vitae.ingest.dedup import DedupIndex
from vitae.ingest.merge import category_key
from vitae.shared.exceptions import PersistenceError, VitaeError
from vitae.shared.models import Category, Entry, ExtractionResult, SourceType

logger = logging.getLogger(__name__)

# (step, done, total): steps are "record", "categories", "entries", "category"
ProgressCallback = Callable[[str, int, int], Awaitable[None]]


def next_order(current_max: Optional[int]) -> int:
    return (current_max if current_max is not None else -1) + 1


async def resolve_category(
    store: RecordStore,
    record_id: str,
    name: str,
    category_map: Dict[str, Category]
) -> tuple[Category, bool]:
    """
    Find a category by case-insensitive name or create it at the end.

    Returns:
        (category, created)
    """
    key = category_key(name)
    category = category_map.get(key)
    if category is not None:
        return category, False

    display_order = next_order(await store.max_category_order(record_id))
    category = await store.create_category(record_id, name.strip(), display_order)
    category_map[key] = category
    logger.debug(f"Created category '{category.name}' at order {display_order}")
    return category, True


@dataclass
class PersistSummary:
    created: int = 0
    skipped: int = 0
    categories_created: int = 0
    profile_updated: bool = False

    def to_dict(self) -> Dict[str, int]:
        return {
            "created_count": self.created,
            "skipped_count": self.skipped,
            "categories_created": self.categories_created,
            "profile_updated": self.profile_updated,
        }


class RecordWriter:
    """Writes merged extraction results through a RecordStore."""

    def __init__(self, store: RecordStore, source_type: str = SourceType.CV_IMPORT.value):
        self.store = store
        self.source_type = source_type

    async def persist(
        self,
        owner_id: str,
        merged: ExtractionResult,
        on_progress: Optional[ProgressCallback] = None
    ) -> PersistSummary:
        """
        Persist merged categories and entries for an owner.

        Raises:
            PersistenceError: Storage failed part-way
        """
        async def emit(step: str, done: int = 0, total: int = 0) -> None:
            if on_progress is not None:
                await on_progress(step, done, total)

        summary = PersistSummary()
        try:
            record = await self.store.get_or_create_record(owner_id)

            if merged.profile.has_name:
                await self.store.update_profile(record.id, merged.profile.non_null())
                summary.profile_updated = True
            await emit("record")

            category_map = {
                category_key(c.name): c
                for c in await self.store.list_categories(record.id)
            }
            await emit("categories")

            index = DedupIndex.from_entries(await self.store.list_entries(record.id))
            await emit("entries")
            logger.debug(
                f"Loaded {len(category_map)} categories, {len(index)} existing keys "
                f"for owner {owner_id}"
            )

            total = len(merged.categories)
            for i, extracted in enumerate(merged.categories, start=1):
                category, created = await resolve_category(
                    self.store, record.id, extracted.name, category_map
                )
                if created:
                    summary.categories_created += 1

                display_order = next_order(await self.store.max_entry_order(category.id))
                for item in extracted.entries:
                    if not index.claim(item.title, item.date, item.description):
                        summary.skipped += 1
                        continue

                    await self.store.create_entry(Entry(
                        category_id=category.id,
                        title=item.title,
                        description=item.description,
                        date=item.date,
                        location=item.location,
                        url=item.url,
                        source_type=self.source_type,
                        display_order=display_order,
                    ))
                    display_order += 1
                    summary.created += 1

                await emit("category", i, total)

        except VitaeError:
            raise
        except Exception as e:
            logger.error(
                f"Persistence failed for owner {owner_id} after "
                f"{summary.created} entries: {e}"
            )
            raise PersistenceError(f"Storage unavailable: {e}") from e

        logger.info(
            f"Persisted CV for owner {owner_id}: {summary.created} created, "
            f"{summary.skipped} duplicates skipped, "
            f"{summary.categories_created} new categories"
        )
        return summary
