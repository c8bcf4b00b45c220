"""
Vitae - Ingestion Job Store
===========================

Job persistence layer with:
1. Redis-backed storage (survives restarts)
2. In-memory fallback for development and tests
3. State machine enforcement (queued -> active -> completed | failed)
4. Monotonic progress (never decreases, 100 only on completion)
5. TTL-based job expiry

Usage:
    store = JobStore(redis_url="redis://localhost:6379/0")
    await store.initialize()

    job = await store.create_job("job-123", owner_id="user-1", filename="cv.txt")
    await store.start_job("job-123")
    await store.update_progress("job-123", 40, stage="extraction")
    await store.complete_job("job-123", result={"created_count": 12})

Environment Variables:
    REDIS_URL: Redis connection URL (unset: in-memory backend)
    JOB_STORE_TTL_HOURS: Job expiry time in hours (default: 72)
"""

import asyncio
import copy
import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import redis.asyncio as redis

from vitae.shared.exceptions import JobStateError
from vitae.shared.models import JobStatus

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

DEFAULT_JOB_TTL = int(os.getenv("JOB_STORE_TTL_HOURS", "72")) * 3600
MAX_HISTORY_SIZE = 50
MAX_PROGRESS_BEFORE_COMPLETION = 99


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# =============================================================================
# DATA MODELS
# =============================================================================

@dataclass
class Job:
    """Ingestion job state."""
    job_id: str
    owner_id: str
    filename: Optional[str] = None
    status: str = JobStatus.QUEUED.value
    stage: str = "queued"
    progress: float = 0
    current_operation: str = "Waiting for a worker..."
    created_at: str = ""
    updated_at: str = ""
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    warnings: List[Dict[str, Any]] = field(default_factory=list)  # Non-fatal chunk failures

    def __post_init__(self):
        now = _now()
        if not self.created_at:
            self.created_at = now
        if not self.updated_at:
            self.updated_at = now

    @property
    def is_terminal(self) -> bool:
        return JobStatus(self.status).is_terminal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "owner_id": self.owner_id,
            "filename": self.filename,
            "status": self.status,
            "stage": self.stage,
            "progress": self.progress,
            "current_operation": self.current_operation,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "result": self.result,
            "error": self.error,
            "warnings": self.warnings,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        return cls(
            job_id=data["job_id"],
            owner_id=data["owner_id"],
            filename=data.get("filename"),
            status=data.get("status", JobStatus.QUEUED.value),
            stage=data.get("stage", "queued"),
            progress=data.get("progress", 0),
            current_operation=data.get("current_operation", ""),
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
            result=data.get("result"),
            error=data.get("error"),
            warnings=data.get("warnings", []),
        )


# =============================================================================
# ABSTRACT BACKEND
# =============================================================================

class JobStoreBackend(ABC):
    """Abstract backend for job storage."""

    @abstractmethod
    async def get(self, job_id: str) -> Optional[Job]:
        pass

    @abstractmethod
    async def save(self, job: Job) -> None:
        pass

    @abstractmethod
    async def delete(self, job_id: str) -> bool:
        pass

    @abstractmethod
    async def get_history(self, limit: int = 20) -> List[Job]:
        """Get completed/failed job history, newest first."""
        pass

    @abstractmethod
    async def add_to_history(self, job: Job) -> None:
        pass


# =============================================================================
# IN-MEMORY BACKEND (Development)
# =============================================================================

class InMemoryJobBackend(JobStoreBackend):
    """In-memory backend for development/testing."""

    def __init__(self):
        self._jobs: Dict[str, Dict[str, Any]] = {}
        self._history: List[Dict[str, Any]] = []
        self._lock = asyncio.Lock()

    # Stored as dicts so callers never share a mutable Job with the store
    async def get(self, job_id: str) -> Optional[Job]:
        data = self._jobs.get(job_id)
        return Job.from_dict(copy.deepcopy(data)) if data else None

    async def save(self, job: Job) -> None:
        async with self._lock:
            self._jobs[job.job_id] = copy.deepcopy(job.to_dict())

    async def delete(self, job_id: str) -> bool:
        async with self._lock:
            return self._jobs.pop(job_id, None) is not None

    async def get_history(self, limit: int = 20) -> List[Job]:
        return [Job.from_dict(copy.deepcopy(d)) for d in self._history[:limit]]

    async def add_to_history(self, job: Job) -> None:
        async with self._lock:
            self._history.insert(0, copy.deepcopy(job.to_dict()))
            if len(self._history) > MAX_HISTORY_SIZE:
                self._history = self._history[:MAX_HISTORY_SIZE]


# =============================================================================
# REDIS BACKEND (Production)
# =============================================================================

class RedisJobBackend(JobStoreBackend):
    """Redis backend for production."""

    def __init__(
        self,
        redis_client,
        key_prefix: str = "vitae:job:",
        ttl: int = DEFAULT_JOB_TTL
    ):
        self._redis = redis_client
        self._prefix = key_prefix
        self._ttl = ttl
        self._history_key = f"{key_prefix}history"

    def _key(self, job_id: str) -> str:
        return f"{self._prefix}{job_id}"

    async def get(self, job_id: str) -> Optional[Job]:
        data = await self._redis.get(self._key(job_id))
        if data:
            if isinstance(data, bytes):
                data = data.decode('utf-8')
            return Job.from_dict(json.loads(data))
        return None

    async def save(self, job: Job) -> None:
        await self._redis.setex(self._key(job.job_id), self._ttl, json.dumps(job.to_dict()))

    async def delete(self, job_id: str) -> bool:
        result = await self._redis.delete(self._key(job_id))
        return result > 0

    async def get_history(self, limit: int = 20) -> List[Job]:
        items = await self._redis.lrange(self._history_key, 0, limit - 1)
        jobs = []
        for item in items:
            if isinstance(item, bytes):
                item = item.decode('utf-8')
            try:
                jobs.append(Job.from_dict(json.loads(item)))
            except (json.JSONDecodeError, KeyError) as e:
                logger.warning(f"Failed to parse history item: {e}")
        return jobs

    async def add_to_history(self, job: Job) -> None:
        await self._redis.lpush(self._history_key, json.dumps(job.to_dict()))
        await self._redis.ltrim(self._history_key, 0, MAX_HISTORY_SIZE - 1)
        await self._redis.expire(self._history_key, self._ttl)


# =============================================================================
# UNIFIED JOB STORE
# =============================================================================

JobListener = Callable[[Dict[str, Any]], None]


class JobStore:
    """
    Job store with backend selection and transition rules.

    Usage:
        # Redis if reachable, otherwise in-memory
        store = JobStore(redis_url="redis://localhost:6379")

        # Force in-memory
        store = JobStore(force_memory=True)
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        force_memory: bool = False,
        ttl: int = DEFAULT_JOB_TTL,
        backend: Optional[JobStoreBackend] = None
    ):
        self._backend: Optional[JobStoreBackend] = backend
        self._redis_url = redis_url or os.getenv("REDIS_URL")
        self._force_memory = force_memory
        self._ttl = ttl
        self._initialized = backend is not None
        self._lock = asyncio.Lock()
        self._listeners: List[JobListener] = []

    async def initialize(self) -> None:
        """Initialize the backend (call once at startup)."""
        if self._initialized:
            return

        if self._force_memory or not self._redis_url:
            logger.info("Job store using in-memory backend")
            self._backend = InMemoryJobBackend()
        else:
            try:
                client = redis.from_url(self._redis_url)
                await client.ping()
                self._backend = RedisJobBackend(client, ttl=self._ttl)
                logger.info(f"Job store using Redis: {self._redis_url}")
            except (redis.RedisError, OSError) as e:
                logger.warning(f"Redis unavailable ({e}), falling back to in-memory")
                self._backend = InMemoryJobBackend()

        self._initialized = True

    async def _ensure_initialized(self) -> None:
        if not self._initialized:
            await self.initialize()

    def add_listener(self, listener: JobListener) -> None:
        """Call listener with the job dict after every saved change."""
        self._listeners.append(listener)

    async def _save(self, job: Job) -> Dict[str, Any]:
        job.updated_at = _now()
        await self._backend.save(job)
        snapshot = job.to_dict()
        for listener in self._listeners:
            try:
                listener(snapshot)
            except Exception as e:
                logger.warning(f"Job listener failed: {e}")
        return snapshot

    async def _load(self, job_id: str) -> Job:
        job = await self._backend.get(job_id)
        if job is None:
            raise JobStateError(f"Unknown job {job_id}")
        return job

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def create_job(
        self,
        job_id: str,
        owner_id: str,
        filename: Optional[str] = None
    ) -> Dict[str, Any]:
        """Create a queued job."""
        await self._ensure_initialized()

        async with self._lock:
            if await self._backend.get(job_id) is not None:
                raise JobStateError(f"Job {job_id} already exists")
            job = Job(job_id=job_id, owner_id=owner_id, filename=filename)
            return await self._save(job)

    async def start_job(self, job_id: str) -> Dict[str, Any]:
        """queued -> active."""
        await self._ensure_initialized()

        async with self._lock:
            job = await self._load(job_id)
            if job.status != JobStatus.QUEUED.value:
                raise JobStateError(f"Job {job_id} cannot start from {job.status}")
            job.status = JobStatus.ACTIVE.value
            job.stage = "setup"
            job.current_operation = "Starting..."
            return await self._save(job)

    async def update_progress(
        self,
        job_id: str,
        progress: float,
        stage: Optional[str] = None,
        current_operation: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Report progress on an active job.

        Values below the current progress are ignored; values are capped
        at 99 until the job completes.
        """
        await self._ensure_initialized()

        async with self._lock:
            job = await self._load(job_id)
            if job.status != JobStatus.ACTIVE.value:
                raise JobStateError(f"Job {job_id} is {job.status}, not active")

            capped = min(float(progress), MAX_PROGRESS_BEFORE_COMPLETION)
            job.progress = max(job.progress, round(capped, 1))
            if stage:
                job.stage = stage
            if current_operation:
                job.current_operation = current_operation
            return await self._save(job)

    async def add_warning(self, job_id: str, warning: Dict[str, Any]) -> None:
        """Attach a non-fatal warning (e.g. a failed chunk)."""
        await self._ensure_initialized()

        async with self._lock:
            job = await self._load(job_id)
            if job.is_terminal:
                raise JobStateError(f"Job {job_id} is already {job.status}")
            job.warnings.append(warning)
            await self._save(job)

    async def complete_job(self, job_id: str, result: Dict[str, Any]) -> Dict[str, Any]:
        """active -> completed; progress becomes 100."""
        await self._ensure_initialized()

        async with self._lock:
            job = await self._load(job_id)
            if job.status != JobStatus.ACTIVE.value:
                raise JobStateError(f"Job {job_id} cannot complete from {job.status}")
            job.status = JobStatus.COMPLETED.value
            job.stage = "complete"
            job.progress = 100
            job.current_operation = "Done"
            job.result = result
            snapshot = await self._save(job)
            await self._backend.add_to_history(job)
            return snapshot

    async def fail_job(self, job_id: str, error: str) -> Dict[str, Any]:
        """queued | active -> failed."""
        await self._ensure_initialized()

        async with self._lock:
            job = await self._load(job_id)
            if job.is_terminal:
                raise JobStateError(f"Job {job_id} is already {job.status}")
            job.status = JobStatus.FAILED.value
            job.stage = "failed"
            job.current_operation = "Failed"
            job.error = error
            snapshot = await self._save(job)
            await self._backend.add_to_history(job)
            return snapshot

    async def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        await self._ensure_initialized()

        job = await self._backend.get(job_id)
        return job.to_dict() if job else None

    async def get_history(self, limit: int = 20) -> List[Dict[str, Any]]:
        await self._ensure_initialized()

        jobs = await self._backend.get_history(limit)
        return [job.to_dict() for job in jobs]

    async def delete_job(self, job_id: str) -> bool:
        await self._ensure_initialized()
        return await self._backend.delete(job_id)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def backend_type(self) -> str:
        if isinstance(self._backend, RedisJobBackend):
            return "redis"
        elif isinstance(self._backend, InMemoryJobBackend):
            return "memory"
        return "uninitialized"

    @property
    def is_initialized(self) -> bool:
        return self._initialized
