"""
Vitae - Robust LLM Output Parsing
=================================

Handles markdown-wrapped JSON, preambles, and validation of the extraction
payload returned for a CV chunk:

    {"profile": {"name": ..., "email": ...},
     "categories": [{"name": "Publications",
                     "entries": [{"title": ..., "date": ...}]}]}
"""

import json
import re
import logging
from typing import Any, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from vitae.shared.exceptions import ExtractionParseError
from vitae.shared.models import (
    ExtractedCategory,
    ExtractedEntry,
    ExtractedProfile,
    ExtractionResult,
)

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


def strip_markdown_fences(text: str) -> str:
    """Remove markdown code fences from text."""
    text = re.sub(r'^```(?:json|JSON)?\s*\n?', '', text, flags=re.MULTILINE)
    text = re.sub(r'\n?```\s*$', '', text, flags=re.MULTILINE)
    return text


def find_json_boundaries(text: str) -> tuple[int, int]:
    """
    Find the start and end indices of JSON in text.

    Handles both objects {} and arrays [].
    """
    obj_start = text.find('{')
    obj_end = text.rfind('}')

    arr_start = text.find('[')
    arr_end = text.rfind(']')

    if obj_start == -1 and arr_start == -1:
        return -1, -1

    if obj_start == -1:
        return arr_start, arr_end

    if arr_start == -1:
        return obj_start, obj_end

    if obj_start < arr_start:
        return obj_start, obj_end
    else:
        return arr_start, arr_end


def extract_json_string(text: str) -> str:
    """
    Extract JSON string from LLM output.

    Handles:
    - ```json ... ``` blocks
    - Preambles ("Here is the JSON: {...}")
    - Postscripts ("Let me know if...")
    """
    text = strip_markdown_fences(text)

    start_idx, end_idx = find_json_boundaries(text)

    if start_idx == -1 or end_idx == -1:
        raise ExtractionParseError("No JSON object/array found in text")

    if end_idx < start_idx:
        raise ExtractionParseError("Malformed JSON: end before start")

    return text[start_idx : end_idx + 1]


def extract_and_parse_json(text: str, model_class: Type[T]) -> T:
    """
    Robustly extracts JSON from LLM output and validates against Pydantic model.

    Raises:
        ExtractionParseError: If parsing or validation fails
    """
    if not text or not text.strip():
        raise ExtractionParseError("Empty response")

    try:
        json_str = extract_json_string(text)
        data = json.loads(json_str)
        return model_class.model_validate(data)

    except json.JSONDecodeError as e:
        logger.warning(f"JSON decode error: {e}")
        raise ExtractionParseError(f"Invalid JSON syntax: {str(e)}")
    except ValidationError as e:
        logger.warning(f"Pydantic validation error: {e}")
        raise ExtractionParseError(f"Schema validation failed: {str(e)}")


# =============================================================================
# EXTRACTION PAYLOAD SCHEMA
# =============================================================================

def _clean_text(value: Any) -> Optional[str]:
    # Models sometimes emit years as numbers and blanks as ""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return None


class ProfilePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    institution: Optional[str] = None
    website: Optional[str] = None

    @field_validator("*", mode="before")
    @classmethod
    def _coerce(cls, value):
        return _clean_text(value)


class EntryPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: Optional[str] = None
    description: Optional[str] = None
    date: Optional[str] = None
    location: Optional[str] = None
    url: Optional[str] = None

    @field_validator("*", mode="before")
    @classmethod
    def _coerce(cls, value):
        return _clean_text(value)


class CategoryPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None
    entries: List[EntryPayload] = []

    @field_validator("name", mode="before")
    @classmethod
    def _coerce_name(cls, value):
        return _clean_text(value)

    @field_validator("entries", mode="before")
    @classmethod
    def _only_objects(cls, value):
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, dict)]


class ExtractionPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    profile: ProfilePayload = ProfilePayload()
    categories: List[CategoryPayload] = []

    @field_validator("profile", mode="before")
    @classmethod
    def _profile_object(cls, value):
        return value if isinstance(value, dict) else {}

    @field_validator("categories", mode="before")
    @classmethod
    def _only_objects(cls, value):
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, dict)]

    def to_result(self) -> ExtractionResult:
        """Convert to domain objects, dropping nameless categories and untitled entries."""
        categories = []
        for cat in self.categories:
            if not cat.name:
                continue
            entries = [
                ExtractedEntry(
                    title=e.title,
                    description=e.description,
                    date=e.date,
                    location=e.location,
                    url=e.url,
                )
                for e in cat.entries
                if e.title
            ]
            categories.append(ExtractedCategory(name=cat.name, entries=entries))

        return ExtractionResult(
            profile=ExtractedProfile(**self.profile.model_dump()),
            categories=categories,
        )


def parse_extraction_response(text: str) -> ExtractionResult:
    """
    Parse a raw extraction response into an ExtractionResult.

    Raises:
        ExtractionParseError: Response is not a JSON object of the expected shape
    """
    payload = extract_and_parse_json(text, ExtractionPayload)
    result = payload.to_result()
    logger.debug(
        f"Parsed extraction response: {len(result.categories)} categories, "
        f"{result.entry_count} entries"
    )
    return result
