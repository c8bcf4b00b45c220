"""
Vitae - Publication Reconciliation
==================================

Matches PubMed results against what an owner already has, stages new
publications for review, and back-fills PMIDs onto existing entries.

An article counts as known when its PMID is already pending or confirmed,
or (interactive search only) when its loosely normalized title equals a
confirmed entry's title. PubMed calls are never issued in parallel.

Usage:
    reconciler = PublicationReconciler(store, PubMedClient(config.pubmed))

    found = await reconciler.search_and_filter(owner_id, "Smith JA")
    results = await reconciler.run_scheduled()
    missing = await reconciler.find_entries_missing_identifier(owner_id)
    report = await reconciler.enrich_identifiers(owner_id, missing.entries)
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Set

from vitae.database.store import RecordStore
from vitae.ingest.cleanup import DuplicateReport, find_duplicate_groups
from vitae.ingest.config import ReconciliationConfig
from vitae.ingest.dedup import DedupIndex, normalize_title_loose
from vitae.ingest.merge import category_key
from vitae.ingest.writer import next_order, resolve_category
from vitae.research.models import (
    ApprovalResult,
    Candidate,
    EnrichmentReport,
    ImportResult,
    MissingIdentifierReport,
    PubMedArticle,
    SearchFilterResult,
    SubscriptionRunResult,
)
from vitae.research.notifications import NotificationSink
from vitae.research.pubmed import PubMedClient, article_to_entry_fields
from vitae.shared.models import (
    Activity,
    CheckFrequency,
    Entry,
    PendingCandidate,
    SourceType,
    Subscription,
)

logger = logging.getLogger(__name__)


CHECK_INTERVALS = {
    CheckFrequency.DAILY.value: timedelta(hours=24),
    CheckFrequency.WEEKLY.value: timedelta(hours=24 * 7),
    CheckFrequency.MONTHLY.value: timedelta(hours=24 * 30),
}

PUBLICATION_CATEGORIES = frozenset({
    "publications",
    "peer-reviewed publications",
    "journal articles",
    "book chapters",
    "articles",
    "original research",
})

DEFAULT_CATEGORY = "Uncategorized"
AUTO_IMPORT_REASONING = "Automatically found via PubMed author search"


def _pmid(source_data: Optional[Dict[str, Any]]) -> Optional[str]:
    value = (source_data or {}).get("pmid")
    return str(value) if value else None


def should_run_check(subscription: Subscription, now: Optional[datetime] = None) -> bool:
    """True if the subscription has never run or its interval has elapsed."""
    if subscription.last_checked is None:
        return True

    now = now or datetime.now(timezone.utc)
    last = subscription.last_checked
    if last.tzinfo is None:
        last = last.replace(tzinfo=timezone.utc)

    interval = CHECK_INTERVALS.get(
        subscription.frequency,
        CHECK_INTERVALS[CheckFrequency.WEEKLY.value]
    )
    return now - last >= interval


class PublicationReconciler:
    """Reconciles an owner's CV with PubMed."""

    def __init__(
        self,
        store: RecordStore,
        client: PubMedClient,
        config: Optional[ReconciliationConfig] = None,
        notifier: Optional[NotificationSink] = None
    ):
        self.store = store
        self.client = client
        self.config = config or ReconciliationConfig()
        self.notifier = notifier

    # =========================================================================
    # Known identifiers
    # =========================================================================

    async def _confirmed_entries(self, owner_id: str) -> List[Entry]:
        record = await self.store.get_record(owner_id)
        if record is None:
            return []
        return await self.store.list_entries(record.id)

    async def _known_pmids(self, owner_id: str, entries: Iterable[Entry]) -> Set[str]:
        pmids = {e.pmid for e in entries if e.pmid}
        for candidate in await self.store.list_pending(owner_id):
            pmid = _pmid(candidate.source_data)
            if pmid:
                pmids.add(pmid)
        return pmids

    # =========================================================================
    # Interactive search
    # =========================================================================

    async def search_and_filter(self, owner_id: str, author_name: str) -> SearchFilterResult:
        """
        Search PubMed by author and flag which results are new to the owner.

        Raises:
            ExternalServiceError: PubMed unavailable
        """
        articles = await self.client.search_by_author(author_name, self.config.search_cap)

        entries = await self._confirmed_entries(owner_id)
        known_pmids = await self._known_pmids(owner_id, entries)
        known_titles = {normalize_title_loose(e.title) for e in entries if e.title}

        result = SearchFilterResult()
        for article in articles:
            known = (
                article.pmid in known_pmids
                or normalize_title_loose(article.title) in known_titles
            )
            result.candidates.append(Candidate(article=article, is_new=not known))

        logger.info(
            f"PubMed search for owner {owner_id} ('{author_name}'): "
            f"{result.total_found} found, {result.new_count} new"
        )
        return result

    async def import_candidates(
        self,
        owner_id: str,
        author_name: str,
        pmids: Optional[Iterable[str]] = None
    ) -> ImportResult:
        """Stage selected (or all) new search results as pending candidates."""
        found = await self.search_and_filter(owner_id, author_name)
        selected = set(pmids) if pmids else None

        pending_titles = {
            normalize_title_loose(p.title)
            for p in await self.store.list_pending(owner_id)
        }

        result = ImportResult()
        for candidate in found.candidates:
            article = candidate.article
            if selected is not None and article.pmid not in selected:
                continue
            title_key = normalize_title_loose(article.title)
            if not candidate.is_new or title_key in pending_titles:
                result.skipped += 1
                continue

            await self.store.create_pending(self._to_pending(owner_id, article))
            pending_titles.add(title_key)
            result.staged += 1

        logger.info(
            f"Staged {result.staged} PubMed candidates for owner {owner_id} "
            f"({result.skipped} already known)"
        )
        return result

    @staticmethod
    def _to_pending(
        owner_id: str,
        article: PubMedArticle,
        source_data: Optional[Dict[str, Any]] = None,
        **overrides
    ) -> PendingCandidate:
        fields = article_to_entry_fields(article)
        return PendingCandidate(
            owner_id=owner_id,
            title=fields["title"],
            description=fields["description"],
            date=fields["date"],
            url=fields["url"],
            external_id=article.pmid,
            source_type=fields["source_type"],
            source_data=source_data or fields["source_data"],
            **overrides,
        )

    # =========================================================================
    # Scheduled checks
    # =========================================================================

    async def check_subscription(
        self,
        subscription: Subscription,
        now: Optional[datetime] = None
    ) -> SubscriptionRunResult:
        """Fetch the latest publications for one subscription and stage new ones."""
        now = now or datetime.now(timezone.utc)
        owner_id = subscription.owner_id
        author_name = subscription.author_name

        articles = await self.client.search_by_author(
            author_name,
            self.config.scheduled_cap,
            sort="pub_date",
        )
        known = await self._known_pmids(owner_id, await self._confirmed_entries(owner_id))
        new_articles = [a for a in articles if a.pmid not in known]

        for article in new_articles:
            await self.store.create_pending(self._to_pending(
                owner_id,
                article,
                source_data={
                    "pmid": article.pmid,
                    "doi": article.doi,
                    "journal": article.journal,
                    "authors": article.authors,
                    "abstract": article.abstract,
                    "auto_import": True,
                },
                suggested_category=self.config.auto_import_category,
                confidence=self.config.auto_import_confidence,
                reasoning=AUTO_IMPORT_REASONING,
            ))

        if new_articles:
            count = len(new_articles)
            noun = "publication" if count == 1 else "publications"
            await self.store.append_activity(Activity(
                owner_id=owner_id,
                type="pubmed_import",
                title=f"{count} new {noun} found",
                description=f'Automated PubMed check for "{author_name}"',
                metadata={
                    "author_name": author_name,
                    "count": count,
                    "pmids": [a.pmid for a in new_articles],
                },
            ))
            await self._notify(subscription, count)

        await self.store.touch_subscription(owner_id, now)

        logger.info(
            f"Scheduled check for owner {owner_id} ('{author_name}'): "
            f"{len(articles)} found, {len(new_articles)} new"
        )
        return SubscriptionRunResult(
            owner_id=owner_id,
            status="checked",
            found=len(articles),
            new=len(new_articles),
        )

    async def _notify(self, subscription: Subscription, count: int) -> None:
        if not (subscription.notify and subscription.contact and self.notifier):
            return
        try:
            await self.notifier.notify(subscription.contact, {
                "owner_id": subscription.owner_id,
                "author_name": subscription.author_name,
                "new_count": count,
            })
        except Exception as e:
            logger.warning(f"Notification to owner {subscription.owner_id} failed: {e}")

    async def run_scheduled(self, now: Optional[datetime] = None) -> List[SubscriptionRunResult]:
        """
        Run every due subscription; one failure does not stop the rest.

        `last_checked` is left untouched for a failed subscription so it is
        retried on the next run.
        """
        now = now or datetime.now(timezone.utc)
        results = []

        for subscription in await self.store.list_subscriptions():
            if not should_run_check(subscription, now):
                results.append(SubscriptionRunResult(
                    owner_id=subscription.owner_id,
                    status="skipped",
                ))
                continue

            try:
                results.append(await self.check_subscription(subscription, now))
            except Exception as e:
                logger.error(
                    f"Scheduled check failed for owner {subscription.owner_id} "
                    f"('{subscription.author_name}'): {e}"
                )
                results.append(SubscriptionRunResult(
                    owner_id=subscription.owner_id,
                    status="error",
                    error=str(e),
                ))

        checked = sum(1 for r in results if r.status == "checked")
        logger.info(f"Scheduled PubMed run: {checked}/{len(results)} subscriptions checked")
        return results

    # =========================================================================
    # Identifier enrichment
    # =========================================================================

    async def find_entries_missing_identifier(self, owner_id: str) -> MissingIdentifierReport:
        """Entries in publication categories that carry no PMID."""
        record = await self.store.get_record(owner_id)
        if record is None:
            return MissingIdentifierReport()

        publication_ids = {
            c.id for c in await self.store.list_categories(record.id)
            if category_key(c.name) in PUBLICATION_CATEGORIES
        }
        publications = [
            e for e in await self.store.list_entries(record.id)
            if e.category_id in publication_ids
        ]
        return MissingIdentifierReport(
            entries=[e for e in publications if not e.pmid],
            publication_entries=len(publications),
        )

    async def enrich_identifiers(
        self,
        owner_id: str,
        entries: Optional[List[Entry]] = None
    ) -> EnrichmentReport:
        """
        Look up each entry's title on PubMed and record the best match's
        PMID and DOI.

        Entries are processed one at a time with a pause after every lookup
        to stay inside NCBI's rate limits.
        """
        if entries is None:
            entries = (await self.find_entries_missing_identifier(owner_id)).entries

        report = EnrichmentReport()
        for entry in entries:
            try:
                matches = await self.client.search_by_title(
                    entry.title, self.config.title_search_cap
                )
                await asyncio.sleep(self.config.search_delay)

                if not matches:
                    report.not_found += 1
                    report.details.append({"entry_id": entry.id, "status": "not_found"})
                    await asyncio.sleep(self.config.miss_delay)
                    continue

                best = matches[0]
                source_data = {"pmid": best.pmid}
                if best.doi:
                    source_data["doi"] = best.doi
                await self.store.update_entry_source(
                    entry.id, SourceType.PUBMED.value, source_data
                )
                report.enriched += 1
                report.details.append({
                    "entry_id": entry.id,
                    "status": "enriched",
                    "pmid": best.pmid,
                    "similarity": best.similarity,
                })
                await asyncio.sleep(self.config.apply_delay)

            except Exception as e:
                logger.warning(f"PMID lookup failed for entry {entry.id}: {e}")
                report.failed += 1
                report.details.append({
                    "entry_id": entry.id,
                    "status": "failed",
                    "error": str(e),
                })
                await asyncio.sleep(self.config.error_delay)

        logger.info(
            f"PMID enrichment for owner {owner_id}: {report.enriched} enriched, "
            f"{report.not_found} not found, {report.failed} failed"
        )
        return report

    # =========================================================================
    # Review queue
    # =========================================================================

    async def approve_pending(self, owner_id: str) -> ApprovalResult:
        """
        Move every pending candidate into the owner's CV.

        Candidates whose dedup key is already present are dropped instead.
        Either way the candidate leaves the pending queue.
        """
        record = await self.store.get_or_create_record(owner_id)
        category_map = {
            category_key(c.name): c
            for c in await self.store.list_categories(record.id)
        }
        index = DedupIndex.from_entries(await self.store.list_entries(record.id))
        next_orders: Dict[str, int] = {}

        result = ApprovalResult()
        for candidate in await self.store.list_pending(owner_id):
            if not index.claim(candidate.title, candidate.date, candidate.description):
                result.skipped += 1
                await self.store.delete_pending(candidate.id)
                continue

            category, created = await resolve_category(
                self.store,
                record.id,
                candidate.suggested_category or DEFAULT_CATEGORY,
                category_map,
            )
            if created:
                result.categories_created += 1

            if category.id not in next_orders:
                next_orders[category.id] = next_order(
                    await self.store.max_entry_order(category.id)
                )

            await self.store.create_entry(Entry(
                category_id=category.id,
                title=candidate.title,
                description=candidate.description,
                date=candidate.date,
                url=candidate.url,
                source_type=candidate.source_type,
                source_data=dict(candidate.source_data or {}),
                display_order=next_orders[category.id],
            ))
            next_orders[category.id] += 1
            await self.store.delete_pending(candidate.id)
            result.approved += 1

        logger.info(
            f"Approved {result.approved} pending entries for owner {owner_id} "
            f"({result.skipped} duplicates dropped)"
        )
        return result

    async def scan_duplicates(self, owner_id: str) -> DuplicateReport:
        """Report likely duplicate entries in an owner's CV."""
        record = await self.store.get_record(owner_id)
        if record is None:
            return DuplicateReport()
        return find_duplicate_groups(
            await self.store.list_entries(record.id),
            await self.store.list_categories(record.id),
        )
