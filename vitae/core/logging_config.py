"""
Vitae - Structured Logging Configuration
========================================

Structured logging with:
- JSON output for log aggregation, console output for development
- Job/owner correlation carried in context variables
- Standard library integration (modules log via logging.getLogger)

Usage:
    # At application startup
    from vitae.core.logging_config import configure_logging
    configure_logging(json_output=True)

    # Bind the job being processed; every record in this task carries it
    bind_job(job_id)
    bind_owner(owner_id)

    # Structured logger
    log = get_logger(__name__).bind(job_id=job_id)
    log.info("Extraction finished", chunks=4, failed=1)

Environment Variables:
    LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
    LOG_FORMAT: json, console (default: json in production, console in dev)
    ENVIRONMENT: "production" enables JSON by default
"""

import logging
import logging.config
import os
import re
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional

import structlog
from structlog.types import EventDict, WrappedLogger


# =============================================================================
# CONTEXT VARIABLES
# =============================================================================

# Ingestion job being processed by the current task
job_id_var: ContextVar[Optional[str]] = ContextVar("job_id", default=None)

# Owner of the record being mutated
owner_id_var: ContextVar[Optional[str]] = ContextVar("owner_id", default=None)


def bind_job(job_id: Optional[str]) -> None:
    """Bind job ID to current context."""
    job_id_var.set(job_id)


def bind_owner(owner_id: Optional[str]) -> None:
    """Bind owner ID to current context."""
    owner_id_var.set(owner_id)


def clear_context() -> None:
    job_id_var.set(None)
    owner_id_var.set(None)


# =============================================================================
# CUSTOM PROCESSORS
# =============================================================================

def add_job_context(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict
) -> EventDict:
    """Add job context from context variables."""
    job_id = job_id_var.get()
    if job_id and "job_id" not in event_dict:
        event_dict["job_id"] = job_id

    owner_id = owner_id_var.get()
    if owner_id and "owner_id" not in event_dict:
        event_dict["owner_id"] = owner_id

    return event_dict


def add_service_info(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict
) -> EventDict:
    """Add service metadata."""
    event_dict["service"] = "vitae"
    event_dict["version"] = os.getenv("APP_VERSION", "1.0.0")
    return event_dict


def add_timestamp_iso(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict
) -> EventDict:
    """Add ISO 8601 timestamp with timezone."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def rename_event_key(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict
) -> EventDict:
    """Rename 'event' to 'message' for consistency with common log formats."""
    if "event" in event_dict:
        event_dict["message"] = event_dict.pop("event")
    return event_dict


def drop_color_codes(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict
) -> EventDict:
    """Remove ANSI color codes from message for JSON output."""
    if "message" in event_dict and isinstance(event_dict["message"], str):
        event_dict["message"] = re.sub(r'\x1b\[[0-9;]*m', '', event_dict["message"])
    return event_dict


# =============================================================================
# CONFIGURATION
# =============================================================================

def _resolve_json_output(json_output: Optional[bool]) -> bool:
    if json_output is not None:
        return json_output
    log_format = os.getenv("LOG_FORMAT", "").lower()
    if log_format == "json":
        return True
    if log_format == "console":
        return False
    env = os.getenv("ENVIRONMENT", "development").lower()
    return env in ("production", "prod", "staging")


def configure_logging(
    json_output: Optional[bool] = None,
    log_level: Optional[str] = None,
    include_timestamp: bool = True
) -> None:
    """
    Configure structured logging for the application.

    Args:
        json_output: If True, output JSON. If None, auto-detect from environment.
        log_level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to LOG_LEVEL env var.
        include_timestamp: Include ISO timestamp in logs.
    """
    if log_level is None:
        log_level = os.getenv("LOG_LEVEL", "INFO")
    log_level = log_level.upper()

    json_output = _resolve_json_output(json_output)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        add_job_context,
        add_service_info,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if include_timestamp:
        shared_processors.insert(0, add_timestamp_iso)

    if json_output:
        shared_processors.extend([
            rename_event_key,
            drop_color_codes,
            structlog.processors.format_exc_info,
        ])
        final_processor = structlog.processors.JSONRenderer(sort_keys=True)
    else:
        final_processor = structlog.dev.ConsoleRenderer(
            colors=True,
            exception_formatter=structlog.dev.plain_traceback,
        )

    structlog.configure(
        processors=shared_processors + [final_processor],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level, logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # stdlib loggers (every vitae module, aiohttp, asyncpg) -> same renderer
    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structlog": {
                "()": structlog.stdlib.ProcessorFormatter,
                "processors": [
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    final_processor,
                ],
                "foreign_pre_chain": shared_processors,
            },
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
                "formatter": "structlog",
            },
        },
        "loggers": {
            "": {
                "handlers": ["default"],
                "level": log_level,
                "propagate": True,
            },
            "aiohttp": {"level": "WARNING"},
            "asyncpg": {"level": "WARNING"},
            "asyncio": {"level": "WARNING"},
            "httpx": {"level": "WARNING"},
            "anthropic": {"level": "WARNING"},
        },
    })

    logger = structlog.get_logger("logging_config")
    logger.info(
        "Logging configured",
        format="json" if json_output else "console",
        level=log_level,
    )


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
