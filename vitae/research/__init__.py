"""
Vitae - Research Layer
======================

PubMed reconciliation for CV records.

Components:
- pubmed.py: E-utilities client, title cleaning and article parsing
- reconciliation.py: Search filtering, scheduled checks, PMID enrichment
- notifications.py: Owner notification sinks
- models.py: Articles and result types

Usage:
    from vitae.research import PubMedClient, PublicationReconciler

    async with PubMedClient(config.pubmed) as client:
        reconciler = PublicationReconciler(store, client, config.reconciliation)
        results = await reconciler.run_scheduled()
"""

from vitae.research.models import (
    PubMedArticle,
    Candidate,
    SearchFilterResult,
    SubscriptionRunResult,
    MissingIdentifierReport,
    EnrichmentReport,
    ImportResult,
    ApprovalResult,
)
from vitae.research.pubmed import (
    PubMedClient,
    create_pubmed_client,
    clean_title_for_search,
    extract_key_words,
    article_to_entry_fields,
)
from vitae.research.notifications import NotificationSink, LoggingNotificationSink
from vitae.research.reconciliation import PublicationReconciler, should_run_check
