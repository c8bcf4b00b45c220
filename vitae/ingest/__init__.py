"""
Vitae - Ingestion Layer
=======================

CV ingestion pipeline.

Components:
- segmenter.py: Section/paragraph-aware chunking
- extractor.py: LLM extraction with retry and degrade-to-empty
- merge.py: Case-insensitive category merge
- dedup.py: Composite dedup keys
- writer.py: Persistence gated on dedup keys
- job_store.py: Job state (Redis or in-memory)
- orchestrator.py: Queue, worker pool and progress reporting
- cleanup.py: Duplicate scan over persisted entries

Quick Start:
    from vitae.ingest import IngestionOrchestrator, VitaeConfig
    from vitae.database import InMemoryRecordStore

    config = VitaeConfig.from_env()
    async with IngestionOrchestrator.from_config(config, InMemoryRecordStore()) as orch:
        job = await orch.submit("user-1", cv_text)
        await orch.join()
"""

from vitae.ingest.config import (
    ChunkMode,
    ChunkingConfig,
    ExtractionConfig,
    OrchestratorConfig,
    JobStoreConfig,
    DatabaseConfig,
    PubMedConfig,
    ReconciliationConfig,
    VitaeConfig,
)
from vitae.ingest.segmenter import segment, segment_with_overlap
from vitae.ingest.extractor import (
    ExtractionBackend,
    AnthropicExtractionBackend,
    ChunkExtractor,
)
from vitae.ingest.merge import merge_results
from vitae.ingest.dedup import (
    dedup_key,
    normalize_title,
    normalize_date,
    description_snippet,
    normalize_title_loose,
    DedupIndex,
)
from vitae.ingest.job_store import JobStore, Job
from vitae.ingest.writer import RecordWriter, PersistSummary
from vitae.ingest.orchestrator import IngestionOrchestrator
from vitae.ingest.cleanup import find_duplicate_groups, DuplicateReport
from vitae.ingest.text_source import TextExtractor, PlainTextExtractor, TextSourceRegistry
