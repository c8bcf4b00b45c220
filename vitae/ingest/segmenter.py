"""
Vitae - CV Segmenter
====================

Splits raw CV text into ordered chunks that fit the extraction budget,
preferring section headers, then blank-line paragraph breaks, then line
breaks, and only cutting mid-text when a single line is larger than the
budget.

All cuts are positional: chunk texts concatenate back to the input exactly.

Usage:
    chunks = segment(text, max_chunk_size=8000)

    # Large documents: each chunk repeats the previous chunk's last
    # 500 characters so entries straddling a cut survive extraction
    chunks = segment_with_overlap(text, max_chunk_size=8000, overlap=500)
"""

import logging
import re
from typing import Iterator, List

from vitae.shared.models import Chunk

logger = logging.getLogger(__name__)


# =============================================================================
# BOUNDARY PATTERNS
# =============================================================================

SECTION_HEADERS = (
    r"PUBLICATIONS?",
    r"PEER[- ]?REVIEWED",
    r"PRESENTATIONS?",
    r"ABSTRACTS?",
    r"GRANTS?",
    r"FUNDING",
    r"AWARDS?",
    r"HONORS?",
    r"EDUCATION",
    r"EXPERIENCE",
    r"TEACHING",
    r"MENTORING",
    r"SERVICE",
    r"LEADERSHIP",
    r"PROFESSIONAL",
    r"EDITORIAL",
    r"COMMITTEES?",
    r"TRAINING",
    r"RESEARCH",
    r"CLINICAL",
    r"ACADEMIC",
    r"PATENTS?",
    r"BOOKS?",
    r"CHAPTERS?",
    r"INVITED",
    r"CONFERENCES?",
    r"APPOINTMENTS?",
    r"POSITIONS?",
    r"MEMBERSHIPS?",
    r"CERTIFICATIONS?",
    r"LICENSURE",
    r"BOARDS?",
)

# A header word alone on its line, optionally followed by a colon.
# The match is the newline before it; sections are cut just after it.
SECTION_BOUNDARY = re.compile(
    r"\n(?=[ \t]*(?:" + "|".join(SECTION_HEADERS) + r")[ \t]*(?::|\r?\n|$))",
    re.IGNORECASE,
)

PARAGRAPH_BOUNDARY = re.compile(r"\n[ \t]*\n\s*")

LINE_BOUNDARY = re.compile(r"\n")


# =============================================================================
# SPLITTING
# =============================================================================

def _cut(text: str, pattern: re.Pattern) -> List[str]:
    """Cut text after every match of pattern, keeping every character."""
    pieces = []
    start = 0
    for match in pattern.finditer(text):
        end = match.end()
        if end > start:
            pieces.append(text[start:end])
            start = end
    if start < len(text):
        pieces.append(text[start:])
    return pieces


def split_sections(text: str) -> List[str]:
    """Split at recognised section headers; no header means one section."""
    return _cut(text, SECTION_BOUNDARY)


def split_paragraphs(text: str) -> List[str]:
    return _cut(text, PARAGRAPH_BOUNDARY)


def split_lines(text: str) -> List[str]:
    return _cut(text, LINE_BOUNDARY)


def _hard_split(text: str, size: int) -> List[str]:
    return [text[i:i + size] for i in range(0, len(text), size)]


def _units(text: str, max_chunk_size: int) -> Iterator[str]:
    """
    Atomic pieces for the accumulator, each at most max_chunk_size long.

    Oversized sections fall back to paragraphs, oversized paragraphs to
    lines. Only a single line longer than the budget is cut mid-text.
    """
    for section in split_sections(text):
        if len(section) <= max_chunk_size:
            yield section
            continue

        for paragraph in split_paragraphs(section):
            if len(paragraph) <= max_chunk_size:
                yield paragraph
                continue

            for line in split_lines(paragraph):
                if len(line) <= max_chunk_size:
                    yield line
                else:
                    logger.debug(
                        f"Line of {len(line)} chars exceeds budget, hard splitting"
                    )
                    yield from _hard_split(line, max_chunk_size)


def _accumulate(units: Iterator[str], max_chunk_size: int) -> List[str]:
    """Greedy packing: flush when the next unit would overflow the buffer."""
    pieces: List[str] = []
    buffer: List[str] = []
    size = 0

    for unit in units:
        if buffer and size + len(unit) > max_chunk_size:
            pieces.append("".join(buffer))
            buffer, size = [], 0
        buffer.append(unit)
        size += len(unit)

    if buffer:
        pieces.append("".join(buffer))

    return pieces


# =============================================================================
# PUBLIC API
# =============================================================================

def segment(text: str, max_chunk_size: int) -> List[Chunk]:
    """
    Split text into chunks of at most max_chunk_size characters.

    Args:
        text: Raw CV text
        max_chunk_size: Character budget per chunk

    Returns:
        Ordered chunks; empty only for empty input
    """
    if max_chunk_size <= 0:
        raise ValueError(f"max_chunk_size must be positive, got {max_chunk_size}")
    if not text:
        return []

    pieces = _accumulate(_units(text, max_chunk_size), max_chunk_size)
    if not pieces:
        pieces = [text]

    total = len(pieces)
    return [Chunk(text=piece, index=i, total_count=total) for i, piece in enumerate(pieces)]


def segment_with_overlap(
    text: str,
    max_chunk_size: int,
    overlap: int = 500
) -> List[Chunk]:
    """
    Segment text, prefixing each chunk with the tail of the previous one.

    Chunks are cut with a budget of max_chunk_size - overlap so the carried
    tail never pushes a chunk past max_chunk_size. Chunk.overlap records how
    many leading characters are repeated.
    """
    if overlap < 0 or overlap >= max_chunk_size:
        raise ValueError(
            f"overlap must be in [0, {max_chunk_size}), got {overlap}"
        )

    base = segment(text, max_chunk_size - overlap)
    if overlap == 0 or len(base) <= 1:
        return base

    chunks = [base[0]]
    for previous, current in zip(base, base[1:]):
        carry = previous.text[-overlap:]
        chunks.append(Chunk(
            text=carry + current.text,
            index=current.index,
            total_count=current.total_count,
            overlap=len(carry),
        ))

    logger.debug(f"Segmented {len(text)} chars into {len(chunks)} overlapping chunks")
    return chunks
