"""
Vitae Models
============

Data models shared by the ingestion and reconciliation engines.

Two groups:
1. Extraction models (Chunk, ExtractedProfile/Category/Entry, ExtractionResult),
   transient, produced per job
2. Persisted models (CVRecord, Category, Entry, PendingCandidate,
   Subscription, Activity), owned by a RecordStore
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any
from uuid import uuid4


# =============================================================================
# ENUMS
# =============================================================================

class JobStatus(str, Enum):
    """Ingestion job lifecycle: queued -> active -> completed | failed."""
    QUEUED = "queued"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class SourceType(str, Enum):
    """Provenance of a persisted entry."""
    CV_IMPORT = "cv-import"
    PUBMED = "pubmed"


class CheckFrequency(str, Enum):
    """How often a PubMed subscription is re-checked."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


def new_id() -> str:
    return str(uuid4())


# =============================================================================
# EXTRACTION MODELS
# =============================================================================

@dataclass
class Chunk:
    """
    Ordered slice of a document.

    `overlap` counts the leading characters repeated from the previous chunk;
    joining `text[overlap:]` across all chunks gives back the document.
    """
    text: str
    index: int
    total_count: int
    overlap: int = 0

    @property
    def is_first(self) -> bool:
        return self.index == 0

    @property
    def is_last(self) -> bool:
        return self.index == self.total_count - 1

    @property
    def fresh_text(self) -> str:
        return self.text[self.overlap:]

    def __len__(self) -> int:
        return len(self.text)


@dataclass
class ExtractedProfile:
    """Contact fields found in a chunk; each one independently nullable."""
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    institution: Optional[str] = None
    website: Optional[str] = None

    FIELDS = ("name", "email", "phone", "address", "institution", "website")

    @property
    def has_name(self) -> bool:
        return bool(self.name)

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {f: getattr(self, f) for f in self.FIELDS}

    def non_null(self) -> Dict[str, str]:
        return {k: v for k, v in self.to_dict().items() if v}


@dataclass
class ExtractedEntry:
    title: str
    description: Optional[str] = None
    date: Optional[str] = None
    location: Optional[str] = None
    url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "date": self.date,
            "location": self.location,
            "url": self.url,
        }


@dataclass
class ExtractedCategory:
    name: str
    entries: List[ExtractedEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "entries": [e.to_dict() for e in self.entries]}


@dataclass
class ExtractionResult:
    """
    Output of one extraction call (or of a merge).

    `error` is set when the chunk degraded to the empty result.
    """
    profile: ExtractedProfile = field(default_factory=ExtractedProfile)
    categories: List[ExtractedCategory] = field(default_factory=list)
    error: Optional[str] = None

    @classmethod
    def empty(cls, error: Optional[str] = None) -> "ExtractionResult":
        return cls(profile=ExtractedProfile(), categories=[], error=error)

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def entry_count(self) -> int:
        return sum(len(c.entries) for c in self.categories)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "profile": self.profile.to_dict(),
            "categories": [c.to_dict() for c in self.categories],
            "error": self.error,
        }


# =============================================================================
# PERSISTED MODELS
# =============================================================================

@dataclass
class CVRecord:
    """One owner's CV: profile fields plus categories of entries."""
    owner_id: str
    id: str = field(default_factory=new_id)
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    institution: Optional[str] = None
    website: Optional[str] = None


@dataclass
class Category:
    record_id: str
    name: str
    display_order: int
    id: str = field(default_factory=new_id)


@dataclass
class Entry:
    category_id: str
    title: str
    description: Optional[str] = None
    date: Optional[str] = None
    location: Optional[str] = None
    url: Optional[str] = None
    source_type: str = SourceType.CV_IMPORT.value
    source_data: Dict[str, Any] = field(default_factory=dict)
    display_order: int = 0
    id: str = field(default_factory=new_id)

    @property
    def pmid(self) -> Optional[str]:
        value = self.source_data.get("pmid") if self.source_data else None
        return str(value) if value else None

    @property
    def doi(self) -> Optional[str]:
        return self.source_data.get("doi") if self.source_data else None


@dataclass
class PendingCandidate:
    """Externally sourced record awaiting approval."""
    owner_id: str
    title: str
    description: Optional[str] = None
    date: Optional[str] = None
    url: Optional[str] = None
    external_id: Optional[str] = None
    source_type: str = SourceType.PUBMED.value
    source_data: Dict[str, Any] = field(default_factory=dict)
    suggested_category: Optional[str] = None
    confidence: Optional[float] = None
    reasoning: Optional[str] = None
    status: str = "pending"
    id: str = field(default_factory=new_id)


@dataclass
class Subscription:
    """Per-owner PubMed author watch."""
    owner_id: str
    author_name: str
    frequency: str = CheckFrequency.WEEKLY.value
    last_checked: Optional[datetime] = None
    notify: bool = False
    contact: Optional[str] = None


@dataclass
class Activity:
    """Append-only activity log record."""
    owner_id: str
    type: str
    title: str
    description: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: str = field(default_factory=new_id)
