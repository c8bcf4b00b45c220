"""Custom exceptions for the Vitae ingestion and reconciliation engines."""


class VitaeError(Exception):
    """Base exception for all Vitae errors."""
    pass


# Input errors (fatal to a job, reported immediately)

class InputError(VitaeError):
    """Base exception for rejected documents."""
    pass


class InvalidDocumentError(InputError):
    """Document is empty, too short or too large."""
    pass


class UnsupportedFormatError(InputError):
    """No text extractor handles the document's mime type."""

    def __init__(self, mime_type: str):
        self.mime_type = mime_type
        super().__init__(f"Unsupported document format: {mime_type}")


# Extraction errors (recovered per chunk)

class ExtractionError(VitaeError):
    """Base exception for chunk extraction errors."""
    pass


class ExtractionServiceError(ExtractionError):
    """Extraction backend failed (network, non-success status)."""
    pass


class ExtractionParseError(ExtractionError):
    """Extraction backend returned malformed or invalid JSON."""
    pass


class ExtractionTimeoutError(ExtractionError):
    """Extraction did not finish within the per-chunk budget."""
    pass


# Persistence errors (fatal to a job)

class PersistenceError(VitaeError):
    """Error reading or writing the record store."""
    pass


class RecordNotFoundError(PersistenceError):
    """Referenced record, entry or candidate does not exist."""
    pass


# External service errors (recovered per item in batch operations)

class ExternalServiceError(VitaeError):
    """Base exception for external bibliographic source errors."""
    pass


class PubMedError(ExternalServiceError):
    """PubMed E-utilities request failed."""

    def __init__(self, message: str, status_code: int = None):
        self.status_code = status_code
        if status_code is not None:
            message = f"PubMed error ({status_code}): {message}"
        super().__init__(message)


class RateLimitError(ExternalServiceError):
    """External source throttled the request."""

    def __init__(self, provider: str, retry_after: float = None):
        self.provider = provider
        self.retry_after = retry_after
        super().__init__(
            f"{provider} rate limit exceeded" +
            (f", retry after {retry_after}s" if retry_after else "")
        )


# Job lifecycle and configuration

class JobStateError(VitaeError):
    """Illegal job state transition (e.g. out of a terminal state)."""
    pass


class ConfigurationError(VitaeError):
    """Missing or invalid configuration."""
    pass
