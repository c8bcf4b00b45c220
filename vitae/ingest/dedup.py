"""
Vitae - Dedup Keys
==================

Composite key used to keep one copy of each entry in a CV:

    normalized title | ISO date or "nodate" | description snippet

Title alone collapses distinct items that share a short title ("Grand
Rounds"); the full description would let formatting noise defeat the key.
The first 50 characters of the description sit in between.

Reconciliation against PubMed uses a looser title-only normalization
(`normalize_title_loose`) plus PMIDs.
"""

import re
from typing import Iterable, Optional, Set

from vitae.shared.dates import to_iso_date

TITLE_KEY_LENGTH = 100
SNIPPET_LENGTH = 50
NO_DATE = "nodate"
KEY_SEPARATOR = "|"

_WHITESPACE = re.compile(r"\s+")
_NON_WORD = re.compile(r"[^\w\s]")


def _collapse(text: Optional[str]) -> str:
    if not text:
        return ""
    return _WHITESPACE.sub(" ", text.lower()).strip()


def normalize_title(title: Optional[str]) -> str:
    return _collapse(title)[:TITLE_KEY_LENGTH]


def normalize_date(value) -> str:
    return to_iso_date(value) or NO_DATE


def description_snippet(description: Optional[str]) -> str:
    return _collapse(description)[:SNIPPET_LENGTH]


def dedup_key(title: Optional[str], date=None, description: Optional[str] = None) -> str:
    """Build the composite dedup key for an entry."""
    return KEY_SEPARATOR.join((
        normalize_title(title),
        normalize_date(date),
        description_snippet(description),
    ))


def normalize_title_loose(title: Optional[str]) -> str:
    """Case- and punctuation-insensitive title for cross-source matching."""
    if not title:
        return ""
    return _WHITESPACE.sub(" ", _NON_WORD.sub("", title.lower())).strip()


class DedupIndex:
    """
    Keys of the entries already in a record.

    Loaded once per job; `claim` records each new key so duplicates that
    arrive later in the same run (overlapping chunks) are rejected too.
    """

    def __init__(self, keys: Optional[Iterable[str]] = None):
        self._keys: Set[str] = set(keys or ())

    @classmethod
    def from_entries(cls, entries: Iterable) -> "DedupIndex":
        """Build from anything with title/date/description attributes."""
        return cls(dedup_key(e.title, e.date, e.description) for e in entries)

    def __contains__(self, key: str) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def contains(self, title, date=None, description=None) -> bool:
        return dedup_key(title, date, description) in self._keys

    def claim(self, title, date=None, description=None) -> bool:
        """Record the entry's key; False if it was already present."""
        key = dedup_key(title, date, description)
        if key in self._keys:
            return False
        self._keys.add(key)
        return True
