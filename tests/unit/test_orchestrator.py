"""
Vitae - Ingestion Orchestrator Unit Tests
=========================================

End-to-end job runs over a fake extraction backend, the in-memory record
store and the in-memory job store.
"""

import re
from unittest.mock import AsyncMock, patch

import pytest

from vitae.ingest.config import ChunkingConfig, ChunkMode, OrchestratorConfig, VitaeConfig
from vitae.ingest.extractor import ChunkExtractor
from vitae.ingest.orchestrator import (
    PROGRESS_EXTRACTION_END,
    PROGRESS_EXTRACTION_START,
    IngestionOrchestrator,
    extraction_progress,
    persistence_progress,
)
from vitae.shared.exceptions import ExtractionServiceError, UnsupportedFormatError

from tests.fakes import FakeExtractionBackend, entry, make_payload


HEADERS = ["EDUCATION", "PUBLICATIONS", "AWARDS", "GRANTS"]

# Four ~320 char sections; with a 400 char budget and 50 char overlap each
# section becomes its own chunk
MULTI_SECTION_CV = "".join(
    f"{header}\nMARK{k} " + "lorem ipsum " * 25 + "\n"
    for k, header in enumerate(HEADERS)
)

SMALL_CHUNKS = ChunkingConfig(single_pass_threshold=100, chunk_size=400, overlap_size=50)


def marker_responder(failing=()):
    """One entry per chunk, titled after the chunk's MARK number."""
    def respond(text):
        k = int(re.search(r"MARK(\d)", text).group(1))
        if k in failing:
            return ExtractionServiceError(f"backend down for chunk {k}")
        return make_payload(
            {"Publications": [entry(f"Item {k}", "2020")]},
            name="Jane Doe" if k == 0 else None,
        )
    return respond


def build(record_store, job_store, responder=None, chunking=SMALL_CHUNKS, **config):
    backend = FakeExtractionBackend(responder or marker_responder())
    orchestrator = IngestionOrchestrator(
        ChunkExtractor(backend, retry_delay=0),
        record_store,
        job_store,
        chunking=chunking,
        config=OrchestratorConfig(**config),
    )
    return orchestrator, backend


async def run(orchestrator, owner_id="owner-1", text=MULTI_SECTION_CV):
    job = await orchestrator.submit(owner_id, text)
    return await orchestrator.run_job(job["job_id"], owner_id, text)


def track_progress(job_store):
    seen = []
    job_store.add_listener(lambda job: seen.append(job["progress"]))
    return seen


class TestProgressMath:

    def test_extraction_span(self):
        assert extraction_progress(0, 4) == PROGRESS_EXTRACTION_START
        assert extraction_progress(4, 4) == PROGRESS_EXTRACTION_END
        assert extraction_progress(0, 0) == PROGRESS_EXTRACTION_END

    def test_persistence_span(self):
        assert persistence_progress(0, 2) == 78
        assert persistence_progress(2, 2) == 95


class TestPlanning:

    def test_single_pass_below_threshold(self, record_store, job_store):
        orchestrator, _ = build(record_store, job_store, chunking=ChunkingConfig())
        chunks = orchestrator.plan_chunks(MULTI_SECTION_CV)

        assert len(chunks) == 1
        assert chunks[0].text == MULTI_SECTION_CV

    def test_overlapping_chunks_above_threshold(self, record_store, job_store):
        orchestrator, _ = build(record_store, job_store)
        chunks = orchestrator.plan_chunks(MULTI_SECTION_CV)

        assert len(chunks) == 4
        assert "".join(c.fresh_text for c in chunks) == MULTI_SECTION_CV

    @pytest.mark.parametrize("mode,count,expected", [
        (ChunkMode.AUTO, 1, ChunkMode.SEQUENTIAL),
        (ChunkMode.AUTO, 4, ChunkMode.PARALLEL),
        (ChunkMode.AUTO, 7, ChunkMode.SEQUENTIAL),
        (ChunkMode.PARALLEL, 10, ChunkMode.PARALLEL),
        (ChunkMode.SEQUENTIAL, 3, ChunkMode.SEQUENTIAL),
    ])
    def test_resolve_mode(self, record_store, job_store, mode, count, expected):
        orchestrator, _ = build(record_store, job_store, chunk_mode=mode)
        assert orchestrator.resolve_mode(count) == expected


class TestSubmission:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", [None, "", "   \n\t", "too short"])
    async def test_invalid_document_fails_immediately(self, record_store, job_store, text):
        orchestrator, backend = build(record_store, job_store)
        job = await orchestrator.submit("owner-1", text)

        assert job["status"] == "failed"
        assert job["error"]
        assert orchestrator._queue.empty()
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_oversized_document(self, record_store, job_store):
        orchestrator, _ = build(record_store, job_store, max_document_chars=100)
        job = await orchestrator.submit("owner-1", MULTI_SECTION_CV)

        assert job["status"] == "failed"
        assert "too large" in job["error"]

    @pytest.mark.asyncio
    async def test_valid_document_is_queued(self, record_store, job_store):
        orchestrator, _ = build(record_store, job_store)
        job = await orchestrator.submit("owner-1", MULTI_SECTION_CV, filename="cv.txt")

        assert job["status"] == "queued"
        assert job["filename"] == "cv.txt"
        assert orchestrator._queue.qsize() == 1

    @pytest.mark.asyncio
    async def test_submit_file(self, record_store, job_store):
        orchestrator, _ = build(record_store, job_store)

        job = await orchestrator.submit_file(
            "owner-1", MULTI_SECTION_CV.encode("utf-8"), "text/plain; charset=utf-8"
        )
        assert job["status"] == "queued"

        with pytest.raises(UnsupportedFormatError):
            await orchestrator.submit_file("owner-1", b"%PDF-1.7", "application/pdf")


class TestRunJob:

    @pytest.mark.asyncio
    async def test_completes_with_counts(self, record_store, job_store):
        orchestrator, backend = build(record_store, job_store)
        job = await run(orchestrator)

        assert job["status"] == "completed"
        assert job["progress"] == 100
        result = job["result"]
        assert result["created_count"] == 4
        assert result["skipped_count"] == 0
        assert result["chunks"] == 4
        assert result["chunks_failed"] == 0
        assert result["profile_updated"]
        assert result["duration_ms"] >= 0
        assert len(backend.calls) == 4

        record = await record_store.get_record("owner-1")
        assert record.name == "Jane Doe"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("mode", [ChunkMode.SEQUENTIAL, ChunkMode.PARALLEL])
    async def test_progress_monotonic(self, record_store, job_store, mode):
        orchestrator, _ = build(record_store, job_store, chunk_mode=mode, parallel_batch_size=2)
        seen = track_progress(job_store)

        await run(orchestrator)

        assert seen == sorted(seen)
        assert seen[-1] == 100
        assert all(p < 100 for p in seen[:-1])
        assert any(PROGRESS_EXTRACTION_START < p < PROGRESS_EXTRACTION_END for p in seen)

    @pytest.mark.asyncio
    async def test_failed_chunk_is_skipped(self, record_store, job_store):
        orchestrator, _ = build(record_store, job_store, marker_responder(failing={2}))
        job = await run(orchestrator)

        assert job["status"] == "completed"
        assert job["result"]["created_count"] == 3
        assert job["result"]["chunks_failed"] == 1
        assert len(job["warnings"]) == 1
        assert job["warnings"][0]["type"] == "chunk_failed"
        assert job["warnings"][0]["chunk"] == 2

        record = await record_store.get_record("owner-1")
        titles = sorted(e.title for e in await record_store.list_entries(record.id))
        assert titles == ["Item 0", "Item 1", "Item 3"]

    @pytest.mark.asyncio
    async def test_every_chunk_failing_still_completes(self, record_store, job_store):
        orchestrator, _ = build(record_store, job_store, marker_responder(failing={0, 1, 2, 3}))
        job = await run(orchestrator)

        assert job["status"] == "completed"
        assert job["result"]["created_count"] == 0
        assert job["result"]["chunks_failed"] == 4

    @pytest.mark.asyncio
    async def test_reimport_creates_nothing(self, record_store, job_store):
        orchestrator, _ = build(record_store, job_store)
        await run(orchestrator)
        second = await run(orchestrator)

        assert second["result"]["created_count"] == 0
        assert second["result"]["skipped_count"] == 4
        assert len(record_store.entries) == 4

    @pytest.mark.asyncio
    async def test_storage_failure_fails_job(self, record_store, job_store):
        orchestrator, _ = build(record_store, job_store)
        record_store.get_or_create_record = AsyncMock(side_effect=OSError("connection reset"))

        job = await run(orchestrator)

        assert job["status"] == "failed"
        assert "connection reset" in job["error"]


    @pytest.mark.asyncio
    async def test_job_store_failure_on_start_fails_job(self, record_store, job_store):
        orchestrator, backend = build(record_store, job_store)
        job_store.start_job = AsyncMock(side_effect=OSError("redis unavailable"))

        job = await run(orchestrator)

        assert job["status"] == "failed"
        assert "redis unavailable" in job["error"]
        assert backend.calls == []


class TestWorkedExample:
    """EDUCATION (600 chars) + PUBLICATIONS (9,400 chars), 8,000 char chunks."""

    TEXT = (
        "EDUCATION\n" + "e" * 589 + "\n"
        + "PUBLICATIONS\n"
        + "".join(f"{i:03d}. " + "p" * 93 + "\n\n" for i in range(94))
    )
    CHUNKING = ChunkingConfig(single_pass_threshold=5000, chunk_size=8000, overlap_size=0)

    @staticmethod
    def same_entry(description_by_chunk):
        def respond(text):
            description = description_by_chunk[0 if text.startswith("EDUCATION") else 1]
            return make_payload({"Publications": [
                entry("Outcomes of Deep Brain Stimulation", "2019", description),
            ]})
        return respond

    @pytest.mark.asyncio
    async def test_identical_snippet_persists_once(self, record_store, job_store):
        description = "Smith J, Doe J. J Neurosurg."
        orchestrator, backend = build(
            record_store, job_store,
            self.same_entry([description, description]),
            chunking=self.CHUNKING,
        )
        job = await run(orchestrator, text=self.TEXT)

        assert len(backend.calls) == 2
        assert job["result"]["created_count"] == 1
        assert job["result"]["skipped_count"] == 1

    @pytest.mark.asyncio
    async def test_snippet_change_persists_both(self, record_store, job_store):
        orchestrator, _ = build(
            record_store, job_store,
            self.same_entry(["Smith J, Doe J. J Neurosurg.", "Smith J, Doe J, R. J Neurosurg."]),
            chunking=self.CHUNKING,
        )
        job = await run(orchestrator, text=self.TEXT)

        assert job["result"]["created_count"] == 2
        assert job["result"]["skipped_count"] == 0


class TestWorkerPool:

    @pytest.mark.asyncio
    async def test_jobs_for_one_owner_do_not_double_write(self, record_store, job_store):
        orchestrator, _ = build(record_store, job_store, max_concurrent_jobs=2)

        async with orchestrator:
            first = await orchestrator.submit("owner-1", MULTI_SECTION_CV)
            second = await orchestrator.submit("owner-1", MULTI_SECTION_CV)
            await orchestrator.join()

        jobs = [await job_store.get_job(j["job_id"]) for j in (first, second)]
        assert all(j["status"] == "completed" for j in jobs)
        assert sorted(j["result"]["created_count"] for j in jobs) == [0, 4]
        assert len(record_store.entries) == 4
        assert not orchestrator.is_running

    @pytest.mark.asyncio
    async def test_from_config(self, record_store, job_store):
        config = VitaeConfig()
        with patch("vitae.ingest.orchestrator.configure_logging"):
            orchestrator = IngestionOrchestrator.from_config(
                config, record_store, backend=FakeExtractionBackend(), job_store=job_store
            )

        assert orchestrator.extractor.breaker is not None
        assert orchestrator.config.max_concurrent_jobs == 2

    @pytest.mark.asyncio
    async def test_from_config_sets_up_logging(self, record_store, job_store):
        config = VitaeConfig(log_level="DEBUG")

        with patch("vitae.ingest.orchestrator.configure_logging") as configure:
            IngestionOrchestrator.from_config(
                config, record_store, backend=FakeExtractionBackend(), job_store=job_store
            )

        configure.assert_called_once_with(log_level="DEBUG")
