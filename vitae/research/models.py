"""
Vitae Research Models
=====================

PubMed articles and the result types reported by the reconciliation loop.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from vitae.shared.models import Entry


@dataclass
class PubMedArticle:
    """One efetch record, reduced to what a CV entry needs."""
    pmid: str
    title: str
    authors: List[str] = field(default_factory=list)
    journal: str = ""
    pub_date: str = ""
    doi: Optional[str] = None
    abstract: Optional[str] = None
    similarity: Optional[float] = None

    def author_summary(self, limit: int = 3) -> str:
        if len(self.authors) > limit:
            return ", ".join(self.authors[:limit]) + ", et al."
        return ", ".join(self.authors)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Candidate:
    """Search result annotated against what the owner already has."""
    article: PubMedArticle
    is_new: bool

    def to_dict(self) -> Dict[str, Any]:
        return {**self.article.to_dict(), "is_new": self.is_new}


@dataclass
class SearchFilterResult:
    candidates: List[Candidate] = field(default_factory=list)

    @property
    def total_found(self) -> int:
        return len(self.candidates)

    @property
    def new_count(self) -> int:
        return sum(1 for c in self.candidates if c.is_new)

    @property
    def new_articles(self) -> List[PubMedArticle]:
        return [c.article for c in self.candidates if c.is_new]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_found": self.total_found,
            "new_count": self.new_count,
            "candidates": [c.to_dict() for c in self.candidates],
        }


@dataclass
class SubscriptionRunResult:
    owner_id: str
    status: str  # "checked" | "skipped" | "error"
    found: int = 0
    new: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class MissingIdentifierReport:
    entries: List[Entry] = field(default_factory=list)
    publication_entries: int = 0

    @property
    def missing_count(self) -> int:
        return len(self.entries)

    @property
    def with_identifier(self) -> int:
        return self.publication_entries - self.missing_count


@dataclass
class EnrichmentReport:
    enriched: int = 0
    not_found: int = 0
    failed: int = 0
    details: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.enriched + self.not_found + self.failed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enriched": self.enriched,
            "not_found": self.not_found,
            "failed": self.failed,
            "details": list(self.details),
        }


@dataclass
class ImportResult:
    staged: int = 0
    skipped: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


@dataclass
class ApprovalResult:
    approved: int = 0
    skipped: int = 0
    categories_created: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)
