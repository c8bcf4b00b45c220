"""
Loose date parsing for CV and PubMed dates.

CV dates arrive in whatever shape the extractor copied from the document:
"2019", "Mar 2019", "2018 - Present", "2019-03-15", "03/15/2019",
"Spring 2019". Anything that carries a plausible year (1900-2100) is
resolved to a calendar date; month or year precision resolves to the first
day. Text without a four-digit year resolves to nothing.

Parsing is delegated to dateutil in fuzzy mode; the passes here only cover
what it does not: ranges ("2015 - 2019", "2018 to present") and PubMed
month spans ("2019 Mar-Apr").
"""

import re
from datetime import date, datetime
from typing import Optional, Union

from dateutil import parser as dateparser

MIN_YEAR = 1900
MAX_YEAR = 2100

_DASHES = re.compile(r"[–—]")
_BARE_YEAR_RE = re.compile(r"^(\d{4})$")
_MONTH_SLASH_YEAR_RE = re.compile(r"^(\d{1,2})/(\d{4})$")
_RANGE_RE = re.compile(
    r"^((?:19|20)\d{2})\s*(?:-|to)\s*(?:present|current|now|ongoing|(?:19|20)\d{2})\b",
    re.IGNORECASE,
)
_MONTH_SPAN_RE = re.compile(r"(?<=[A-Za-z])\s*-\s*[A-Za-z]+")
_ABBREVIATION_DOT = re.compile(r"(?<=[A-Za-z])\.")
_YEAR_RE = re.compile(r"\b((?:19|20)\d{2})\b")

DateLike = Union[str, date, datetime, None]


def _build(year: int, month: int = 1, day: int = 1) -> Optional[date]:
    if not MIN_YEAR <= year <= MAX_YEAR:
        return None
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_loose_date(value: DateLike) -> Optional[date]:
    """
    Parse a loosely formatted date.

    Args:
        value: String as found in a CV, or a date/datetime

    Returns:
        Calendar date, or None if no plausible date is present
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = _DASHES.sub("-", str(value)).strip()
    if not text:
        return None

    m = _BARE_YEAR_RE.match(text)
    if m:
        return _build(int(m.group(1)))

    m = _MONTH_SLASH_YEAR_RE.match(text)
    if m:
        return _build(int(m.group(2)), int(m.group(1)))

    # "2018 - Present" / "2015-2019": the start year wins
    m = _RANGE_RE.match(text)
    if m:
        return _build(int(m.group(1)))

    year = _YEAR_RE.search(text)
    if year is None:
        return None

    text = _MONTH_SPAN_RE.sub("", text)
    text = _ABBREVIATION_DOT.sub("", text)
    try:
        # Defaulting to Jan 1 of the found year keeps "today" out of the result
        parsed = dateparser.parse(
            text,
            fuzzy=True,
            default=datetime(int(year.group(1)), 1, 1),
        )
    except (ValueError, OverflowError):
        return None

    return _build(parsed.year, parsed.month, parsed.day)


def to_iso_date(value: DateLike) -> Optional[str]:
    """ISO `YYYY-MM-DD` form of a loose date, or None."""
    parsed = parse_loose_date(value)
    return parsed.isoformat() if parsed else None


def pubmed_date_string(year: Optional[str], month: Optional[str] = None) -> str:
    """Format a PubMed PubDate as "YYYY-Mon" (or just "YYYY")."""
    if not year:
        return ""
    if month:
        return f"{year}-{month}"
    return year
