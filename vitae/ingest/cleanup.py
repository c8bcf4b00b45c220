"""
Duplicate scan over persisted entries.

Finds groups of entries that look like the same item (same aggressively
normalized title, same date, same category) and picks the one to keep:
entries carrying a PMID beat those with only a DOI, which beat bare ones;
ties go to the longer description. Deleting the others is left to the
caller.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from vitae.shared.dates import to_iso_date
from vitae.shared.models import Category, Entry

CLEANUP_TITLE_LENGTH = 150

_LEADING_ARTICLE = re.compile(r"^(the|a|an)\s+")
_NON_WORD = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize_title_for_cleanup(title: Optional[str]) -> str:
    if not title:
        return ""
    text = _WHITESPACE.sub(" ", title.lower()).strip()
    text = _LEADING_ARTICLE.sub("", text)
    text = _NON_WORD.sub("", text)
    return _WHITESPACE.sub(" ", text).strip()[:CLEANUP_TITLE_LENGTH]


def keeper_score(entry: Entry) -> float:
    score = 0.0
    if entry.pmid:
        score += 100
    if entry.doi:
        score += 50
    score += len(entry.description or "") / 100
    return score


@dataclass
class DuplicateGroup:
    key: str
    category_name: str
    keep: Entry
    duplicates: List[Entry]

    @property
    def size(self) -> int:
        return len(self.duplicates) + 1


@dataclass
class DuplicateReport:
    groups: List[DuplicateGroup] = field(default_factory=list)
    total_entries: int = 0

    @property
    def duplicate_count(self) -> int:
        return sum(len(g.duplicates) for g in self.groups)

    @property
    def removable_ids(self) -> List[str]:
        return [e.id for g in self.groups for e in g.duplicates]


def find_duplicate_groups(
    entries: Iterable[Entry],
    categories: Iterable[Category]
) -> DuplicateReport:
    """Group likely duplicates; largest groups first."""
    names = {c.id: c.name for c in categories}
    buckets: Dict[Tuple[str, str, str], List[Entry]] = {}
    total = 0

    for entry in entries:
        total += 1
        title = normalize_title_for_cleanup(entry.title)
        if not title:
            continue
        key = (title, to_iso_date(entry.date) or "", entry.category_id)
        buckets.setdefault(key, []).append(entry)

    groups = []
    for (title, day, category_id), members in buckets.items():
        if len(members) < 2:
            continue
        ranked = sorted(members, key=keeper_score, reverse=True)
        groups.append(DuplicateGroup(
            key=f"{title}|{day}|{category_id}",
            category_name=names.get(category_id, ""),
            keep=ranked[0],
            duplicates=ranked[1:],
        ))

    groups.sort(key=lambda g: g.size, reverse=True)
    return DuplicateReport(groups=groups, total_entries=total)
