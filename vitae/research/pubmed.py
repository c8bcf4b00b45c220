"""
Vitae - PubMed Client
=====================

Async client for NCBI E-utilities: author and title searches, article
details, and conversion of articles into CV entry fields.

Requests are serialized through a minimum interval (NCBI allows 3 requests/s
without an API key, 10 with one). HTTP 429 and 503 are retried with
2s, 4s, 8s backoff.

Usage:
    async with PubMedClient(config.pubmed) as client:
        articles = await client.search_by_author("Smith JA", max_results=50)
        matches = await client.search_by_title("Deep brain stimulation ...")
"""

import asyncio
import json
import logging
import re
import time
import xml.etree.ElementTree as ET
from typing import Any, Dict, List, Optional, Sequence

import aiohttp
from rapidfuzz import fuzz, utils

from vitae.ingest.config import PubMedConfig
from vitae.research.models import PubMedArticle
from vitae.shared.dates import pubmed_date_string, to_iso_date
from vitae.shared.exceptions import ExternalServiceError, PubMedError, RateLimitError
from vitae.shared.models import SourceType

logger = logging.getLogger(__name__)


PUBMED_BASE_URL = "https://eutils.ncbi.nlm.nih.gov/entrez/eutils"
ARTICLE_URL = "https://pubmed.ncbi.nlm.nih.gov/{pmid}/"

RETRYABLE_STATUS = (429, 503)
EFETCH_BATCH_SIZE = 200

# A title strategy is accepted when it narrows the search to this many ids
TITLE_STRATEGY_MAX_IDS = 10

UNKNOWN_TITLE = "Unknown Title"
UNKNOWN_JOURNAL = "Unknown Journal"

STOPWORDS = frozenset({
    "the", "a", "an", "of", "in", "for", "on", "to", "with", "and", "or",
    "at", "by", "from", "as", "is", "are", "was", "were", "using", "based",
})

_WITH_PRESENTER = re.compile(r"\s+with\s+[A-Z][a-z]+\s+[A-Z]\.?\s+[A-Z][a-z]+.*", re.IGNORECASE)
_LONG_SUBTITLE = re.compile(r":\s*.{20,}$")
_QUOTES = re.compile(r"['\"‘’“”]")
_DASHES = re.compile(r"[-–—]")
_ORDINAL = re.compile(r"(\d+)(st|nd|rd|th)\b", re.IGNORECASE)
_LEADING_ARTICLE = re.compile(r"^(The|A|An)\s+", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")
_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_MEDLINE_DATE = re.compile(r"((?:19|20)\d{2})(?:\s+([A-Za-z]{3}))?")


# =============================================================================
# Title helpers
# =============================================================================

def clean_title_for_search(title: str) -> str:
    """
    Reduce a CV title to something PubMed's [Title] field will match.

    Drops "with <Presenter Name>" tails and long subtitles, quotes, dashes,
    ordinal suffixes and a leading article.
    """
    text = _WITH_PRESENTER.sub("", title)
    text = _LONG_SUBTITLE.sub("", text)
    text = _QUOTES.sub("", text)
    text = _DASHES.sub(" ", text)
    text = _ORDINAL.sub(r"\1", text)
    text = _LEADING_ARTICLE.sub("", text.strip())
    return _WHITESPACE.sub(" ", text).strip()


def extract_key_words(title: str, count: int = 6) -> str:
    words = _NON_ALNUM.sub(" ", title.lower()).split()
    keep = [w for w in words if len(w) > 2 and w not in STOPWORDS]
    return " ".join(keep[:count])


def title_similarity(a: str, b: str) -> float:
    """Token-set similarity of two titles in [0, 1]."""
    if not a or not b:
        return 0.0
    return fuzz.token_set_ratio(a, b, processor=utils.default_process) / 100


def title_strategies(title: str) -> List[str]:
    cleaned = clean_title_for_search(title)
    phrase = extract_key_words(title, 5)
    loose = extract_key_words(title, 4)

    strategies = []
    if cleaned:
        strategies += [f"{cleaned}[Title]", f"{cleaned[:50]}[Title]"]
    if phrase:
        strategies.append(f'"{phrase}"')
    if loose:
        strategies.append(loose)
    return strategies


# =============================================================================
# XML parsing
# =============================================================================

def _text(node: Optional[ET.Element]) -> str:
    # ArticleTitle and AbstractText may carry inline markup (<i>, <sup>)
    if node is None:
        return ""
    return _WHITESPACE.sub(" ", "".join(node.itertext())).strip()


def _parse_pub_date(article: ET.Element) -> str:
    pub_date = article.find(".//JournalIssue/PubDate")
    if pub_date is None:
        pub_date = article.find(".//PubDate")
    if pub_date is None:
        return ""

    year = pub_date.findtext("Year")
    if year:
        return pubmed_date_string(year, pub_date.findtext("Month"))

    m = _MEDLINE_DATE.search(pub_date.findtext("MedlineDate") or "")
    if m:
        return pubmed_date_string(m.group(1), m.group(2))
    return ""


def parse_article(node: ET.Element) -> Optional[PubMedArticle]:
    pmid = (node.findtext(".//MedlineCitation/PMID") or "").strip()
    if not pmid:
        return None

    authors = []
    for author in node.findall(".//AuthorList/Author"):
        last = author.findtext("LastName")
        if last:
            fore = author.findtext("ForeName") or ""
            authors.append(f"{last} {fore}".strip())
        elif author.findtext("CollectiveName"):
            authors.append(author.findtext("CollectiveName").strip())

    abstract_parts = [_text(a) for a in node.findall(".//Abstract/AbstractText")]
    abstract = " ".join(p for p in abstract_parts if p) or None

    doi = None
    for article_id in node.findall(".//PubmedData/ArticleIdList/ArticleId"):
        if article_id.get("IdType") == "doi" and article_id.text:
            doi = article_id.text.strip()
            break

    return PubMedArticle(
        pmid=pmid,
        title=_text(node.find(".//Article/ArticleTitle")) or UNKNOWN_TITLE,
        authors=authors,
        journal=(node.findtext(".//Journal/Title") or "").strip() or UNKNOWN_JOURNAL,
        pub_date=_parse_pub_date(node),
        doi=doi,
        abstract=abstract,
    )


def parse_articles(xml_text: str) -> List[PubMedArticle]:
    """Parse an efetch XML document; malformed articles are skipped."""
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise PubMedError(f"Malformed efetch response: {e}")

    articles = []
    for node in root.iter("PubmedArticle"):
        article = parse_article(node)
        if article is not None:
            articles.append(article)
    return articles


def article_to_entry_fields(article: PubMedArticle) -> Dict[str, Any]:
    """Map an article to CV entry fields."""
    description = f"{article.author_summary()}. {article.journal}. {article.pub_date}."
    if article.doi:
        description += f" DOI: {article.doi}"

    return {
        "title": article.title,
        "description": description,
        "date": to_iso_date(article.pub_date),
        "url": ARTICLE_URL.format(pmid=article.pmid),
        "source_type": SourceType.PUBMED.value,
        "source_data": {"pmid": article.pmid, "doi": article.doi},
    }


# =============================================================================
# Client
# =============================================================================

class PubMedClient:
    """E-utilities client with pacing and retry."""

    def __init__(
        self,
        config: Optional[PubMedConfig] = None,
        base_url: str = PUBMED_BASE_URL
    ):
        self.config = config or PubMedConfig()
        self.base_url = base_url.rstrip("/")
        self._session: Optional[aiohttp.ClientSession] = None
        self._pace_lock = asyncio.Lock()
        self._last_request = 0.0
        self._request_count = 0

    async def __aenter__(self) -> "PubMedClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.timeout)
            )
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    @property
    def request_count(self) -> int:
        return self._request_count

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    async def _pace(self) -> None:
        async with self._pace_lock:
            wait = self.config.min_interval - (time.monotonic() - self._last_request)
            if wait > 0:
                await asyncio.sleep(wait)
            self._last_request = time.monotonic()

    def _params(self, params: Dict[str, Any]) -> Dict[str, Any]:
        full = {"db": "pubmed", "tool": self.config.tool, **params}
        if self.config.api_key:
            full["api_key"] = self.config.api_key
        if self.config.email:
            full["email"] = self.config.email
        return full

    async def _get(self, endpoint: str, params: Dict[str, Any]) -> str:
        await self._pace()
        session = await self._get_session()
        self._request_count += 1

        async with session.get(
            f"{self.base_url}/{endpoint}",
            params=self._params(params)
        ) as response:
            if response.status in RETRYABLE_STATUS:
                retry_after = response.headers.get("Retry-After")
                raise RateLimitError(
                    "PubMed",
                    float(retry_after) if retry_after and retry_after.isdigit() else None
                )
            if response.status != 200:
                text = await response.text()
                raise PubMedError(text[:200], status_code=response.status)
            return await response.text()

    async def _request(self, endpoint: str, params: Dict[str, Any]) -> str:
        """GET an E-utilities endpoint, retrying throttling and network errors."""
        max_retries = self.config.max_retries
        last_error: Optional[Exception] = None

        for attempt in range(max_retries):
            try:
                return await self._get(endpoint, params)
            except RateLimitError as e:
                last_error = e
                wait_time = e.retry_after or 2 ** (attempt + 1)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = PubMedError(f"{type(e).__name__}: {e}")
                wait_time = 2 ** (attempt + 1)

            if attempt + 1 < max_retries:
                logger.warning(
                    f"PubMed {endpoint} failed ({last_error}), retrying in {wait_time}s "
                    f"(attempt {attempt + 1}/{max_retries})"
                )
                await asyncio.sleep(wait_time)

        raise last_error or PubMedError("Max retries exceeded")

    # -------------------------------------------------------------------------
    # E-utilities
    # -------------------------------------------------------------------------

    async def search_ids(
        self,
        term: str,
        max_results: int = 100,
        sort: Optional[str] = None
    ) -> List[str]:
        params = {"term": term, "retmax": max_results, "retmode": "json"}
        if sort:
            params["sort"] = sort

        body = await self._request("esearch.fcgi", params)
        try:
            data = json.loads(body)
        except json.JSONDecodeError as e:
            raise PubMedError(f"Malformed esearch response: {e}")
        return list(data.get("esearchresult", {}).get("idlist", []))

    async def fetch_articles(self, pmids: Sequence[str]) -> List[PubMedArticle]:
        articles: List[PubMedArticle] = []
        for start in range(0, len(pmids), EFETCH_BATCH_SIZE):
            batch = pmids[start:start + EFETCH_BATCH_SIZE]
            body = await self._request(
                "efetch.fcgi",
                {"id": ",".join(batch), "retmode": "xml"}
            )
            articles.extend(parse_articles(body))
        return articles

    async def search_by_author(
        self,
        name: str,
        max_results: int = 100,
        sort: Optional[str] = None
    ) -> List[PubMedArticle]:
        """
        Articles listing `name` as an author.

        Args:
            name: Author name as PubMed indexes it ("Smith JA")
            max_results: Cap on ids requested
            sort: esearch sort order, e.g. "pub_date" for newest first
        """
        pmids = await self.search_ids(f"{name.strip()}[Author]", max_results, sort=sort)
        logger.info(f"PubMed author search '{name}': {len(pmids)} ids")
        if not pmids:
            return []
        return await self.fetch_articles(pmids)

    async def search_title_ids(self, title: str, max_results: int = 5) -> List[str]:
        """
        Ids for a title, trying progressively looser strategies.

        The first strategy returning between 1 and 10 ids wins; otherwise the
        cleaned-title search is repeated and its result returned as is.
        """
        for term in title_strategies(title):
            try:
                ids = await self.search_ids(term, TITLE_STRATEGY_MAX_IDS + 1)
            except ExternalServiceError as e:
                logger.warning(f"Title strategy failed '{term[:30]}...': {e}")
                continue
            if 0 < len(ids) <= TITLE_STRATEGY_MAX_IDS:
                logger.debug(f"Title strategy matched {len(ids)} ids: {term[:50]}")
                return ids

        return await self.search_ids(f"{clean_title_for_search(title)}[Title]", max_results)

    async def search_by_title(self, title: str, max_results: int = 5) -> List[PubMedArticle]:
        """Articles matching a CV title, best match first."""
        pmids = await self.search_title_ids(title, max_results)
        if not pmids:
            return []

        articles = await self.fetch_articles(pmids)
        for article in articles:
            article.similarity = title_similarity(title, article.title)

        ranked = sorted(
            (a for a in articles if a.similarity >= self.config.min_title_similarity),
            key=lambda a: a.similarity,
            reverse=True,
        )
        logger.debug(
            f"Title search '{title[:40]}': {len(articles)} articles, "
            f"{len(ranked)} above {self.config.min_title_similarity}"
        )
        return ranked[:max_results]


# =============================================================================
# Factory
# =============================================================================

def create_pubmed_client(config: Optional[PubMedConfig] = None) -> PubMedClient:
    config = config or PubMedConfig()
    if not config.api_key:
        logger.info("NCBI API key not configured, pacing at 3 requests/s")
    return PubMedClient(config)
