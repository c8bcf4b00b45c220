"""
Document text sources.

PDF and Word parsing live outside this package; callers plug in a
TextExtractor for those formats. Plain text and markdown are handled here.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, Union

from vitae.shared.exceptions import UnsupportedFormatError

logger = logging.getLogger(__name__)


class TextExtractor(ABC):
    """(file bytes, mime type) -> plain text."""

    @property
    @abstractmethod
    def mime_types(self) -> Iterable[str]:
        pass

    @abstractmethod
    def extract_text(self, data: Union[bytes, str], mime_type: str) -> str:
        pass

    def supports(self, mime_type: str) -> bool:
        return mime_type.split(";")[0].strip().lower() in self.mime_types


class PlainTextExtractor(TextExtractor):

    mime_types = ("text/plain", "text/markdown", "text/x-markdown")

    def extract_text(self, data: Union[bytes, str], mime_type: str) -> str:
        if not self.supports(mime_type):
            raise UnsupportedFormatError(mime_type)
        if isinstance(data, str):
            return data
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError:
            logger.warning("Document is not valid UTF-8, decoding as latin-1")
            return data.decode("latin-1")


class TextSourceRegistry(TextExtractor):
    """Dispatch to the first registered extractor that handles the mime type."""

    def __init__(self, extractors: Iterable[TextExtractor] = ()):
        self._by_type: Dict[str, TextExtractor] = {}
        for extractor in extractors:
            self.register(extractor)

    def register(self, extractor: TextExtractor) -> None:
        for mime_type in extractor.mime_types:
            self._by_type.setdefault(mime_type, extractor)

    @property
    def mime_types(self) -> Iterable[str]:
        return tuple(self._by_type)

    def extract_text(self, data: Union[bytes, str], mime_type: str) -> str:
        extractor = self._by_type.get(mime_type.split(";")[0].strip().lower())
        if extractor is None:
            raise UnsupportedFormatError(mime_type)
        return extractor.extract_text(data, mime_type)
