"""
Vitae - Ingestion Orchestrator
==============================

Owns the queue of CV ingestion jobs and drives each one through:

    validate -> segment -> extract (per chunk) -> merge -> persist

Jobs are processed by a small fixed pool of workers (the extraction service
is the scarce resource). Ingestion for one owner is serialized. A failed
chunk is recorded as a warning and skipped; anything that fails outside the
chunk loop (bad input, storage down) fails the job, which is not retried.

Progress phases:
    5        setup
    10-65    extraction, split evenly across chunks
    70-78    persistence setup (record, categories, existing entries)
    78-95    per-category persistence
    100      completion only

Usage:
    orchestrator = IngestionOrchestrator(extractor, store, job_store)
    await orchestrator.start()

    job = await orchestrator.submit(owner_id, cv_text, filename="cv.txt")
    ...
    status = await job_store.get_job(job["job_id"])

    await orchestrator.stop()
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union
from uuid import uuid4

from vitae.core.logging_config import (
    bind_job,
    bind_owner,
    clear_context,
    configure_logging,
    get_logger,
)
from vitae.database.store import RecordStore
from vitae.ingest.config import ChunkingConfig, ChunkMode, OrchestratorConfig, VitaeConfig
from vitae.ingest.extractor import ChunkExtractor, ExtractionBackend
from vitae.ingest.job_store import JobStore
from vitae.ingest.merge import merge_results
from vitae.ingest.segmenter import segment_with_overlap
from vitae.ingest.text_source import PlainTextExtractor, TextExtractor
from vitae.ingest.writer import RecordWriter
from vitae.shared.exceptions import InvalidDocumentError
from vitae.shared.models import Chunk, ExtractionResult

logger = logging.getLogger(__name__)


# =============================================================================
# PROGRESS PHASES
# =============================================================================

PROGRESS_SETUP = 5
PROGRESS_EXTRACTION_START = 10
PROGRESS_EXTRACTION_END = 65
PROGRESS_PERSIST_START = 70
PROGRESS_RECORD_READY = 72
PROGRESS_CATEGORIES_LOADED = 75
PROGRESS_ENTRIES_LOADED = 78
PROGRESS_PERSIST_END = 95

_PERSIST_STEPS = {
    "record": PROGRESS_RECORD_READY,
    "categories": PROGRESS_CATEGORIES_LOADED,
    "entries": PROGRESS_ENTRIES_LOADED,
}


def extraction_progress(done: int, total: int) -> float:
    span = PROGRESS_EXTRACTION_END - PROGRESS_EXTRACTION_START
    return PROGRESS_EXTRACTION_START + span * (done / total if total else 1)


def persistence_progress(done: int, total: int) -> float:
    span = PROGRESS_PERSIST_END - PROGRESS_ENTRIES_LOADED
    return PROGRESS_ENTRIES_LOADED + span * (done / total if total else 1)


@dataclass
class QueuedJob:
    job_id: str
    owner_id: str
    text: str


# =============================================================================
# ORCHESTRATOR
# =============================================================================

class IngestionOrchestrator:
    """Bounded worker pool for CV ingestion jobs."""

    def __init__(
        self,
        extractor: ChunkExtractor,
        store: RecordStore,
        job_store: JobStore,
        chunking: Optional[ChunkingConfig] = None,
        config: Optional[OrchestratorConfig] = None,
        text_source: Optional[TextExtractor] = None
    ):
        self.extractor = extractor
        self.store = store
        self.job_store = job_store
        self.chunking = chunking or ChunkingConfig()
        self.config = config or OrchestratorConfig()
        self.text_source = text_source or PlainTextExtractor()
        self.writer = RecordWriter(store)

        self._queue: "asyncio.Queue[QueuedJob]" = asyncio.Queue()
        self._workers: List[asyncio.Task] = []
        self._owner_locks: Dict[str, asyncio.Lock] = {}

    @classmethod
    def from_config(
        cls,
        config: VitaeConfig,
        store: RecordStore,
        backend: Optional[ExtractionBackend] = None,
        job_store: Optional[JobStore] = None
    ) -> "IngestionOrchestrator":
        """Build the orchestrator and its collaborators; also sets up logging."""
        configure_logging(log_level=config.log_level)
        if job_store is None:
            job_store = JobStore(
                redis_url=config.job_store.redis_url,
                force_memory=config.job_store.force_memory,
                ttl=config.job_store.ttl_seconds,
            )
        return cls(
            ChunkExtractor.from_config(config.extraction, backend=backend),
            store,
            job_store,
            chunking=config.chunking,
            config=config.orchestrator,
        )

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return bool(self._workers)

    async def start(self) -> None:
        """Start the worker pool."""
        if self._workers:
            return
        await self.job_store.initialize()
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"ingest-worker-{i}")
            for i in range(self.config.max_concurrent_jobs)
        ]
        logger.info(f"Ingestion started with {len(self._workers)} workers")

    async def stop(self) -> None:
        """Cancel workers. Jobs still queued stay queued."""
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Ingestion workers stopped")

    async def join(self) -> None:
        """Wait until every queued job has finished."""
        await self._queue.join()

    async def __aenter__(self) -> "IngestionOrchestrator":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()
        return False

    async def _worker(self, number: int) -> None:
        while True:
            item = await self._queue.get()
            try:
                await self.run_job(item.job_id, item.owner_id, item.text)
            except Exception as e:
                # run_job already records failures on the job
                logger.error(f"Worker {number} could not finish job {item.job_id}: {e}")
            finally:
                self._queue.task_done()

    def _owner_lock(self, owner_id: str) -> asyncio.Lock:
        lock = self._owner_locks.get(owner_id)
        if lock is None:
            lock = self._owner_locks[owner_id] = asyncio.Lock()
        return lock

    # =========================================================================
    # SUBMISSION
    # =========================================================================

    def validate_document(self, text: Optional[str]) -> str:
        """
        Raises:
            InvalidDocumentError: Empty, too short or too large
        """
        if text is None or not text.strip():
            raise InvalidDocumentError("Document contains no text")
        length = len(text.strip())
        if length < self.config.min_document_chars:
            raise InvalidDocumentError(
                f"Document is too short ({length} characters) to be a CV"
            )
        if len(text) > self.config.max_document_chars:
            raise InvalidDocumentError(
                f"Document is too large ({len(text)} characters, "
                f"limit {self.config.max_document_chars})"
            )
        return text

    async def submit(
        self,
        owner_id: str,
        text: Optional[str],
        filename: Optional[str] = None,
        job_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Create a job and enqueue it; returns without waiting.

        Invalid input fails the job immediately instead of enqueueing it.
        """
        job_id = job_id or str(uuid4())
        job = await self.job_store.create_job(job_id, owner_id, filename)

        try:
            self.validate_document(text)
        except InvalidDocumentError as e:
            logger.warning(f"Rejected document for job {job_id}: {e}")
            return await self.job_store.fail_job(job_id, str(e))

        await self._queue.put(QueuedJob(job_id=job_id, owner_id=owner_id, text=text))
        logger.info(f"Queued job {job_id} for owner {owner_id} ({len(text)} chars)")
        return job

    async def submit_file(
        self,
        owner_id: str,
        data: Union[bytes, str],
        mime_type: str,
        filename: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Extract text from a file and submit it.

        Raises:
            UnsupportedFormatError: No text extractor for mime_type
        """
        text = self.text_source.extract_text(data, mime_type)
        return await self.submit(owner_id, text, filename=filename)

    # =========================================================================
    # PROCESSING
    # =========================================================================

    def plan_chunks(self, text: str) -> List[Chunk]:
        """One chunk below the single-pass threshold, overlapping chunks above it."""
        if len(text) < self.chunking.single_pass_threshold:
            return [Chunk(text=text, index=0, total_count=1)]
        return segment_with_overlap(
            text,
            self.chunking.chunk_size,
            overlap=self.chunking.overlap_size,
        )

    def resolve_mode(self, chunk_count: int) -> ChunkMode:
        mode = self.config.chunk_mode
        if mode == ChunkMode.AUTO:
            if 1 < chunk_count <= self.config.parallel_max_chunks:
                return ChunkMode.PARALLEL
            return ChunkMode.SEQUENTIAL
        return mode

    async def run_job(self, job_id: str, owner_id: str, text: str) -> Dict[str, Any]:
        """Run one job to completion or failure; returns the final job state."""
        bind_job(job_id)
        bind_owner(owner_id)
        log = get_logger(__name__).bind(job_id=job_id, owner_id=owner_id)
        started = time.perf_counter()

        try:
            async with self._owner_lock(owner_id):
                try:
                    await self.job_store.start_job(job_id)
                    result = await self._process(job_id, owner_id, text, log)
                except Exception as e:
                    message = str(e) or type(e).__name__
                    log.error("Ingestion failed", error=message, error_type=type(e).__name__)
                    return await self.job_store.fail_job(job_id, message)

                result["duration_ms"] = int((time.perf_counter() - started) * 1000)
                log.info("Ingestion complete", **result)
                return await self.job_store.complete_job(job_id, result)
        finally:
            clear_context()

    async def _process(self, job_id: str, owner_id: str, text: str, log) -> Dict[str, Any]:
        await self.job_store.update_progress(
            job_id, PROGRESS_SETUP, stage="setup", current_operation="Preparing document"
        )
        chunks = self.plan_chunks(text)
        log.info("Document segmented", chars=len(text), chunks=len(chunks))

        results = await self._extract_chunks(job_id, chunks, log)
        failed = sum(1 for r in results if r.failed)
        await self.job_store.update_progress(
            job_id, PROGRESS_EXTRACTION_END, stage="extraction",
            current_operation=f"Extracted {len(chunks) - failed}/{len(chunks)} chunks",
        )

        merged = merge_results(results)
        await self.job_store.update_progress(
            job_id, PROGRESS_PERSIST_START, stage="persistence",
            current_operation=f"Saving {merged.entry_count} entries",
        )

        async def report(step: str, done: int, total: int) -> None:
            if step == "category":
                value = persistence_progress(done, total)
                operation = f"Saved category {done}/{total}"
            else:
                value = _PERSIST_STEPS[step]
                operation = f"Loaded existing {step}"
            await self.job_store.update_progress(
                job_id, value, stage="persistence", current_operation=operation
            )

        summary = await self.writer.persist(owner_id, merged, on_progress=report)
        await self.job_store.update_progress(
            job_id, PROGRESS_PERSIST_END, stage="finalizing", current_operation="Finalizing"
        )

        return {
            "created_count": summary.created,
            "skipped_count": summary.skipped,
            "categories": len(merged.categories),
            "categories_created": summary.categories_created,
            "chunks": len(chunks),
            "chunks_failed": failed,
            "profile_updated": summary.profile_updated,
        }

    async def _extract_one(self, job_id: str, chunk: Chunk, log) -> ExtractionResult:
        result = await self.extractor.extract(chunk.text)
        if result.failed:
            log.warning(
                "Chunk extraction failed, continuing",
                chunk=chunk.index + 1, total=chunk.total_count, error=result.error,
            )
            await self.job_store.add_warning(job_id, {
                "type": "chunk_failed",
                "chunk": chunk.index,
                "message": result.error,
            })
        return result

    async def _extract_chunks(
        self,
        job_id: str,
        chunks: List[Chunk],
        log
    ) -> List[ExtractionResult]:
        total = len(chunks)
        mode = self.resolve_mode(total)
        log.debug("Extracting chunks", mode=mode.value, chunks=total)

        if mode == ChunkMode.SEQUENTIAL:
            results = []
            for chunk in chunks:
                await self.job_store.update_progress(
                    job_id, extraction_progress(chunk.index, total), stage="extraction",
                    current_operation=f"Extracting chunk {chunk.index + 1}/{total}",
                )
                results.append(await self._extract_one(job_id, chunk, log))
            return results

        results = []
        batch_size = max(1, self.config.parallel_batch_size)
        for start in range(0, total, batch_size):
            batch = chunks[start:start + batch_size]
            await self.job_store.update_progress(
                job_id, extraction_progress(start, total), stage="extraction",
                current_operation=(
                    f"Extracting chunks {start + 1}-{start + len(batch)}/{total}"
                ),
            )
            results.extend(await asyncio.gather(
                *(self._extract_one(job_id, chunk, log) for chunk in batch)
            ))
        return results
