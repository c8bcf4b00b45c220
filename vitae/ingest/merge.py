"""
Merge per-chunk extraction results into one record.

Categories are unified by trimmed, case-insensitive name; the first spelling
seen is kept and categories stay in order of first appearance. Entries are
appended as-is: repeats from overlapping chunks are left for the dedup key
at persistence time.
"""

import logging
from dataclasses import replace
from typing import Dict, Iterable

from vitae.shared.models import (
    ExtractedCategory,
    ExtractedProfile,
    ExtractionResult,
)

logger = logging.getLogger(__name__)


def category_key(name: str) -> str:
    return name.strip().lower()


def merge_results(results: Iterable[ExtractionResult]) -> ExtractionResult:
    """
    Merge extraction results.

    The profile comes from the first result whose profile has a name; inputs
    are not mutated.
    """
    merged: Dict[str, ExtractedCategory] = {}
    profile = None

    for result in results:
        if profile is None and result.profile.has_name:
            profile = replace(result.profile)

        for category in result.categories:
            key = category_key(category.name)
            if not key:
                continue
            target = merged.get(key)
            if target is None:
                target = ExtractedCategory(name=category.name.strip(), entries=[])
                merged[key] = target
            target.entries.extend(replace(entry) for entry in category.entries)

    categories = list(merged.values())
    logger.debug(
        f"Merged into {len(categories)} categories, "
        f"{sum(len(c.entries) for c in categories)} entries"
    )

    return ExtractionResult(
        profile=profile or ExtractedProfile(),
        categories=categories,
    )
