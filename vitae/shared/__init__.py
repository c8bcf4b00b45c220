"""Shared models, exceptions and parsing utilities."""

from .exceptions import (
    VitaeError,
    InputError,
    InvalidDocumentError,
    UnsupportedFormatError,
    ExtractionError,
    ExtractionServiceError,
    ExtractionParseError,
    ExtractionTimeoutError,
    PersistenceError,
    RecordNotFoundError,
    ExternalServiceError,
    PubMedError,
    RateLimitError,
    JobStateError,
    ConfigurationError,
)
from .models import (
    JobStatus,
    SourceType,
    CheckFrequency,
    Chunk,
    ExtractedProfile,
    ExtractedEntry,
    ExtractedCategory,
    ExtractionResult,
    CVRecord,
    Category,
    Entry,
    PendingCandidate,
    Subscription,
    Activity,
)
from .parsing import (
    strip_markdown_fences,
    extract_json_string,
    extract_and_parse_json,
    parse_extraction_response,
)
from .dates import parse_loose_date, to_iso_date
