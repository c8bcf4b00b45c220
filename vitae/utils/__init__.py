"""
Vitae - Utility Modules
"""

from .circuit_breaker import (
    CircuitBreaker,
    CircuitState,
    CircuitOpenError,
)
