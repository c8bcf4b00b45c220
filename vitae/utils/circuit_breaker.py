"""
Circuit Breaker
===============

Stops sending chunks to the extraction service once it has failed
`failure_threshold` times in a row. After `reset_timeout` seconds a single
trial call is let through; its outcome closes or reopens the circuit.

Usage:
    breaker = CircuitBreaker(name="extraction", failure_threshold=5)

    async with breaker:
        raw = await backend.complete(chunk_text)
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(Exception):
    """Raised instead of calling a service whose circuit is open."""
    pass


class CircuitBreaker:

    def __init__(self, name: str, failure_threshold: int = 5, reset_timeout: float = 60.0):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout

        self._state = CircuitState.CLOSED
        self._lock = asyncio.Lock()
        self._consecutive_failures = 0
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        if (
            self._state == CircuitState.OPEN
            and time.monotonic() - self._opened_at >= self.reset_timeout
        ):
            self._state = CircuitState.HALF_OPEN
            self._trial_in_flight = False
            logger.info(f"Circuit {self.name}: OPEN -> HALF_OPEN")
        return self._state

    @property
    def is_closed(self) -> bool:
        return self.state == CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    async def __aenter__(self):
        async with self._lock:
            state = self.state
            if state == CircuitState.OPEN or (
                state == CircuitState.HALF_OPEN and self._trial_in_flight
            ):
                raise CircuitOpenError(
                    f"Circuit {self.name} is open; retry in {self.reset_timeout:.0f}s"
                )
            if state == CircuitState.HALF_OPEN:
                self._trial_in_flight = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        async with self._lock:
            if exc_type is None:
                self._on_success()
            elif not issubclass(exc_type, asyncio.CancelledError):
                self._on_failure(exc_val)
        return False

    def _on_success(self) -> None:
        self._consecutive_failures = 0
        if self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.CLOSED
            logger.info(f"Circuit {self.name}: HALF_OPEN -> CLOSED")

    def _on_failure(self, error: BaseException) -> None:
        self._consecutive_failures += 1
        logger.warning(
            f"Circuit {self.name}: failure #{self._consecutive_failures}: {error}"
        )
        if (
            self._state == CircuitState.HALF_OPEN
            or self._consecutive_failures >= self.failure_threshold
        ):
            self._state = CircuitState.OPEN
            self._opened_at = time.monotonic()
            logger.warning(f"Circuit {self.name}: -> OPEN")
