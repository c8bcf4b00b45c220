"""
Vitae - Configuration
=====================

Dataclass configuration for ingestion, extraction, persistence and PubMed
reconciliation. Every block has sensible defaults; `VitaeConfig.from_env()`
reads overrides from the environment (and a `.env` file if present).
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from dotenv import load_dotenv

from vitae.shared.exceptions import ConfigurationError


class ChunkMode(Enum):
    """How a job walks its chunks through extraction."""
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"   # Small fixed-size batches
    AUTO = "auto"           # Parallel for a handful of chunks, else sequential


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


@dataclass
class ChunkingConfig:
    """Segmentation budget."""
    single_pass_threshold: int = 15000   # Below this, one extraction call
    chunk_size: int = 8000
    overlap_size: int = 500

    def __post_init__(self):
        if self.chunk_size <= 0:
            raise ConfigurationError("chunk_size must be positive")
        if not 0 <= self.overlap_size < self.chunk_size:
            raise ConfigurationError("overlap_size must be in [0, chunk_size)")


@dataclass
class ExtractionConfig:
    """LLM extraction backend."""
    api_key: str = ""
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 8192
    timeout: float = 45.0         # Per chunk, both attempts together
    retry_delay: float = 1.0
    max_retries: int = 1

    # Circuit breaker around the backend
    breaker_failure_threshold: int = 5
    breaker_reset_timeout: float = 60.0


@dataclass
class OrchestratorConfig:
    """Job queue and worker pool."""
    max_concurrent_jobs: int = 2
    chunk_mode: ChunkMode = ChunkMode.AUTO
    parallel_batch_size: int = 3
    parallel_max_chunks: int = 6      # AUTO: parallel only up to this many chunks
    min_document_chars: int = 10
    max_document_chars: int = 500_000


@dataclass
class JobStoreConfig:
    redis_url: Optional[str] = None
    ttl_hours: int = 72
    force_memory: bool = False

    @property
    def ttl_seconds(self) -> int:
        return self.ttl_hours * 3600


@dataclass
class DatabaseConfig:
    """PostgreSQL record store."""
    connection_string: str = ""
    min_connections: int = 2
    max_connections: int = 10

    @property
    def enabled(self) -> bool:
        return bool(self.connection_string)


@dataclass
class PubMedConfig:
    """NCBI E-utilities client."""
    api_key: Optional[str] = None
    email: Optional[str] = None
    tool: str = "vitae"
    timeout: float = 30.0
    max_retries: int = 3
    min_title_similarity: float = 0.5

    @property
    def min_interval(self) -> float:
        # NCBI: 3 requests/s anonymous, 10 requests/s with a key
        return 0.1 if self.api_key else 0.34


@dataclass
class ReconciliationConfig:
    """Author search, scheduled staging and PMID enrichment."""
    search_cap: int = 200
    scheduled_cap: int = 50
    title_search_cap: int = 5
    auto_import_confidence: float = 0.95
    auto_import_category: str = "Publications"

    # Enrichment pacing, seconds
    search_delay: float = 0.6
    apply_delay: float = 0.6
    miss_delay: float = 0.4
    error_delay: float = 1.0


@dataclass
class VitaeConfig:
    """
    Complete configuration.

    Usage:
        config = VitaeConfig.from_env()
        orchestrator = IngestionOrchestrator.from_config(config, store)
    """
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    job_store: JobStoreConfig = field(default_factory=JobStoreConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    pubmed: PubMedConfig = field(default_factory=PubMedConfig)
    reconciliation: ReconciliationConfig = field(default_factory=ReconciliationConfig)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "VitaeConfig":
        """Create config from environment variables."""
        load_dotenv(dotenv_path)

        mode_str = os.getenv("CHUNK_MODE", ChunkMode.AUTO.value).lower()
        try:
            chunk_mode = ChunkMode(mode_str)
        except ValueError:
            raise ConfigurationError(f"Unknown CHUNK_MODE: {mode_str}")

        return cls(
            chunking=ChunkingConfig(
                single_pass_threshold=_env_int("SINGLE_PASS_THRESHOLD", 15000),
                chunk_size=_env_int("CHUNK_SIZE", 8000),
                overlap_size=_env_int("CHUNK_OVERLAP", 500),
            ),
            extraction=ExtractionConfig(
                api_key=os.getenv("ANTHROPIC_API_KEY", ""),
                model=os.getenv("EXTRACTION_MODEL", "claude-sonnet-4-20250514"),
                timeout=_env_float("EXTRACTION_TIMEOUT", 45.0),
            ),
            orchestrator=OrchestratorConfig(
                max_concurrent_jobs=_env_int("MAX_CONCURRENT_JOBS", 2),
                chunk_mode=chunk_mode,
            ),
            job_store=JobStoreConfig(
                redis_url=os.getenv("REDIS_URL") or None,
                ttl_hours=_env_int("JOB_STORE_TTL_HOURS", 72),
            ),
            database=DatabaseConfig(
                connection_string=os.getenv("DATABASE_URL", ""),
                min_connections=_env_int("DB_MIN_CONNECTIONS", 2),
                max_connections=_env_int("DB_MAX_CONNECTIONS", 10),
            ),
            pubmed=PubMedConfig(
                api_key=os.getenv("NCBI_API_KEY") or None,
                email=os.getenv("NCBI_EMAIL") or None,
            ),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )
