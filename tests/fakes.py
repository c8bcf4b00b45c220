"""
Test doubles and payload builders shared by the unit tests.
"""

import json
from typing import Callable, Dict, List, Optional, Union


from vitae.ingest.extractor import ExtractionBackend
from vitae.research.models import PubMedArticle
from vitae.shared.exceptions import PubMedError


# =============================================================================
# Extraction payloads
# =============================================================================

def make_payload(
    categories: Dict[str, List[dict]],
    name: Optional[str] = None,
    **profile
) -> str:
    """Serialize an extraction response the way the model returns it."""
    return json.dumps({
        "profile": {"name": name, **profile},
        "categories": [
            {"name": cat, "entries": entries} for cat, entries in categories.items()
        ],
    })


def entry(title: str, date: Optional[str] = None, description: Optional[str] = None, **extra) -> dict:
    return {"title": title, "date": date, "description": description, **extra}


# =============================================================================
# Fakes
# =============================================================================

Responder = Callable[[str], Union[str, Exception]]


class FakeExtractionBackend(ExtractionBackend):
    """
    Extraction backend driven by a responder function.

    The responder gets the chunk text and returns the raw response, or an
    exception instance to raise.
    """

    def __init__(self, responder: Optional[Responder] = None):
        self.responder = responder or (lambda text: make_payload({}))
        self.calls: List[str] = []
        self.closed = False

    async def complete(self, text: str) -> str:
        self.calls.append(text)
        response = self.responder(text)
        if isinstance(response, Exception):
            raise response
        return response

    async def close(self) -> None:
        self.closed = True


class FakePubMedClient:
    """Stands in for PubMedClient; records every call."""

    def __init__(
        self,
        articles: Optional[List[PubMedArticle]] = None,
        title_matches: Optional[Dict[str, List[PubMedArticle]]] = None,
        failing_titles: Optional[List[str]] = None,
        fail_authors: bool = False
    ):
        self.articles = articles or []
        self.title_matches = title_matches or {}
        self.failing_titles = set(failing_titles or [])
        self.fail_authors = fail_authors
        self.author_calls: List[tuple] = []
        self.title_calls: List[str] = []

    async def search_by_author(self, name: str, max_results: int = 100, sort: Optional[str] = None):
        self.author_calls.append((name, max_results, sort))
        if self.fail_authors:
            raise PubMedError("service unavailable", status_code=503)
        return list(self.articles[:max_results])

    async def search_by_title(self, title: str, max_results: int = 5):
        self.title_calls.append(title)
        if title in self.failing_titles:
            raise PubMedError("service unavailable", status_code=503)
        return list(self.title_matches.get(title, []))[:max_results]

    async def close(self):
        pass


def make_article(pmid: str, title: str, doi: Optional[str] = None, **kwargs) -> PubMedArticle:
    defaults = {
        "authors": ["Smith John", "Doe Jane"],
        "journal": "J Neurosurg",
        "pub_date": "2023-Mar",
    }
    defaults.update(kwargs)
    return PubMedArticle(pmid=pmid, title=title, doi=doi, **defaults)

