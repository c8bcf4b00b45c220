"""
Vitae - Chunk Extractor
=======================

Turns one chunk of CV text into a profile plus categories of entries by
calling a structured-extraction backend (Claude by default).

A chunk never fails a job: malformed JSON, backend errors and timeouts get
one retry after a short fixed delay, then degrade to an empty result that
carries the error message.

Usage:
    extractor = ChunkExtractor(AnthropicExtractionBackend(api_key=key))
    result = await extractor.extract(chunk.text)
    if result.failed:
        ...  # result.error says why, categories is empty
"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from typing import Optional

import anthropic

from vitae.ingest.config import ExtractionConfig
from vitae.shared.exceptions import (
    ConfigurationError,
    ExtractionError,
    ExtractionServiceError,
    ExtractionTimeoutError,
)
from vitae.shared.models import ExtractionResult
from vitae.shared.parsing import parse_extraction_response
from vitae.utils.circuit_breaker import CircuitBreaker, CircuitOpenError

logger = logging.getLogger(__name__)


# =============================================================================
# PROMPTS
# =============================================================================

CV_PARSER_PROMPT = """You are an expert academic CV parser. Extract every item from the CV text you are given.

Return ONLY a JSON object with this shape:
{
  "profile": {
    "name": "Full name or null",
    "email": "Email or null",
    "phone": "Phone or null",
    "address": "Mailing address or null",
    "institution": "Current institution or null",
    "website": "Personal website or null"
  },
  "categories": [
    {
      "name": "Section name as written in the CV (e.g. Publications, Education, Grants)",
      "entries": [
        {
          "title": "Main title of the item (required)",
          "description": "Authors, venue, role or other details, or null",
          "date": "Date as written (e.g. 2021, Mar 2021, 2018 - Present), or null",
          "location": "Place or institution, or null",
          "url": "Link or DOI URL, or null"
        }
      ]
    }
  ]
}

Rules:
- Keep the CV's own section names; do not invent sections.
- One entry per publication, grant, award, position, talk or degree.
- Never summarise several items into one entry.
- If the text contains no contact details, every profile field is null.
- The text may start or end mid-section; extract what is there."""

CV_PARSER_USER_TEMPLATE = "Parse this CV text:\n\n{content}"


# =============================================================================
# BACKENDS
# =============================================================================

class ExtractionBackend(ABC):
    """Structured-extraction capability: chunk text in, raw JSON text out."""

    @abstractmethod
    async def complete(self, text: str) -> str:
        """Return the raw response text for one chunk."""
        pass

    async def close(self) -> None:
        pass


class AnthropicExtractionBackend(ExtractionBackend):
    """Claude Messages API backend."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "claude-sonnet-4-20250514",
        max_tokens: int = 8192,
        client: Optional[anthropic.AsyncAnthropic] = None
    ):
        if client is None:
            key = api_key or os.getenv("ANTHROPIC_API_KEY")
            if not key:
                raise ConfigurationError("ANTHROPIC_API_KEY is not configured")
            client = anthropic.AsyncAnthropic(api_key=key)

        self.client = client
        self.model = model
        self.max_tokens = max_tokens

    async def complete(self, text: str) -> str:
        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=0,
                system=CV_PARSER_PROMPT,
                messages=[{
                    "role": "user",
                    "content": CV_PARSER_USER_TEMPLATE.format(content=text),
                }],
            )
        except anthropic.APIError as e:
            raise ExtractionServiceError(f"Extraction service error: {e}") from e

        return "".join(
            block.text for block in response.content
            if getattr(block, "type", None) == "text"
        )

    async def close(self) -> None:
        await self.client.close()


# =============================================================================
# EXTRACTOR
# =============================================================================

class ChunkExtractor:
    """
    Retry, timeout and degrade policy around an ExtractionBackend.

    Holds no per-call state, so one instance serves concurrent chunks.
    """

    def __init__(
        self,
        backend: ExtractionBackend,
        timeout: float = 45.0,
        max_retries: int = 1,
        retry_delay: float = 1.0,
        breaker: Optional[CircuitBreaker] = None
    ):
        self.backend = backend
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.breaker = breaker

    @classmethod
    def from_config(
        cls,
        config: ExtractionConfig,
        backend: Optional[ExtractionBackend] = None
    ) -> "ChunkExtractor":
        if backend is None:
            backend = AnthropicExtractionBackend(
                api_key=config.api_key,
                model=config.model,
                max_tokens=config.max_tokens,
            )
        breaker = CircuitBreaker(
            name="extraction",
            failure_threshold=config.breaker_failure_threshold,
            reset_timeout=config.breaker_reset_timeout,
        )
        return cls(
            backend,
            timeout=config.timeout,
            max_retries=config.max_retries,
            retry_delay=config.retry_delay,
            breaker=breaker,
        )

    async def _call_backend(self, text: str) -> str:
        try:
            if self.breaker is None:
                return await self.backend.complete(text)
            async with self.breaker:
                return await self.backend.complete(text)
        except (CircuitOpenError, ExtractionError):
            raise
        except Exception as e:
            raise ExtractionServiceError(f"{type(e).__name__}: {e}") from e

    async def _attempt(self, text: str) -> ExtractionResult:
        raw = await self._call_backend(text)
        return parse_extraction_response(raw)

    async def _attempt_with_retry(self, text: str) -> ExtractionResult:
        for attempt in range(self.max_retries + 1):
            try:
                return await self._attempt(text)
            except ExtractionError as e:
                if attempt == self.max_retries:
                    raise
                logger.warning(
                    f"Extraction attempt {attempt + 1} failed: {e}. "
                    f"Retrying in {self.retry_delay:.1f}s"
                )
                await asyncio.sleep(self.retry_delay)

    async def extract_strict(self, text: str) -> ExtractionResult:
        """
        Extract a chunk, raising on failure.

        Raises:
            ExtractionError: Backend, parse or timeout failure after the retry
        """
        if not text or not text.strip():
            return ExtractionResult.empty()

        try:
            return await asyncio.wait_for(
                self._attempt_with_retry(text),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            raise ExtractionTimeoutError(
                f"Extraction exceeded {self.timeout:.0f}s budget"
            )
        except CircuitOpenError as e:
            raise ExtractionServiceError(str(e)) from e

    async def extract(self, text: str) -> ExtractionResult:
        """Extract a chunk; failures become an empty result with `error` set."""
        try:
            return await self.extract_strict(text)
        except ExtractionError as e:
            logger.warning(f"Chunk extraction failed ({len(text)} chars): {e}")
            return ExtractionResult.empty(error=str(e))

    async def close(self) -> None:
        await self.backend.close()
