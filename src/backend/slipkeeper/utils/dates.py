"""
Date normalization for free-form receipt date tokens.

Formats are tried in order and the first valid one wins:
1. ISO           2024-12-25, 2024/12/25, 2024.12.25
2. Numeric       25/12/2024, 12-25-2024, 25.12.24
3. Day month     25 Dec 2024, 25 December 24
4. Month day     Dec 25, 2024, December 25 2024

Numeric ambiguity policy:
- `-` separator: month first (US), retried day first when that is invalid
- other separators: a part above 12 must be the day; otherwise day first
"""

import datetime as dt
import logging
import re
from typing import Callable, List, Optional, Tuple

from dateutil.relativedelta import relativedelta

logger = logging.getLogger(__name__)

MIN_YEAR = 1900
MAX_YEAR = 2100

MONTH_NAMES = {
    'jan': 1, 'january': 1,
    'feb': 2, 'february': 2,
    'mar': 3, 'march': 3,
    'apr': 4, 'april': 4,
    'may': 5,
    'jun': 6, 'june': 6,
    'jul': 7, 'july': 7,
    'aug': 8, 'august': 8,
    'sep': 9, 'sept': 9, 'september': 9,
    'oct': 10, 'october': 10,
    'nov': 11, 'november': 11,
    'dec': 12, 'december': 12,
}

_DAYS_IN_MONTH = (31, 28, 31, 30, 31, 30, 31, 31, 30, 31, 30, 31)

_ORDINAL_RE = re.compile(r'(\d+)(?:st|nd|rd|th)\b', re.IGNORECASE)
_TRAILING_PUNCT_RE = re.compile(r'[.,;]+$')
_ISO_RE = re.compile(r'^(\d{4})[-/.](\d{1,2})[-/.](\d{1,2})$')
_NUMERIC_RE = re.compile(r'^(\d{1,2})([-/.])(\d{1,2})\2(\d{2,4})$')
_DAY_MONTH_YEAR_RE = re.compile(r'^(\d{1,2})\s+([a-z]+)\.?,?\s+(\d{2,4})$', re.IGNORECASE)
_MONTH_DAY_YEAR_RE = re.compile(r'^([a-z]+)\.?\s+(\d{1,2}),?\s+(\d{2,4})$', re.IGNORECASE)


def is_leap_year(year: int) -> bool:
    return year % 4 == 0 and (year % 100 != 0 or year % 400 == 0)


def is_valid_date(year: int, month: int, day: int) -> bool:
    """Calendar check: year in range, month 1-12, day within the month."""
    if year < MIN_YEAR or year > MAX_YEAR:
        return False
    if month < 1 or month > 12:
        return False
    limit = 29 if month == 2 and is_leap_year(year) else _DAYS_IN_MONTH[month - 1]
    return 1 <= day <= limit


def _promote_year(year: int) -> int:
    # Two-digit years are this century
    return year + 2000 if year < 100 else year


def _build(year: int, month: int, day: int) -> Optional[dt.date]:
    if is_valid_date(year, month, day):
        return dt.date(year, month, day)
    return None


def _parse_iso(token: str) -> Optional[dt.date]:
    match = _ISO_RE.match(token)
    if not match:
        return None
    return _build(int(match.group(1)), int(match.group(2)), int(match.group(3)))


def _parse_numeric(token: str) -> Optional[dt.date]:
    match = _NUMERIC_RE.match(token)
    if not match:
        return None

    first, separator, second = int(match.group(1)), match.group(2), int(match.group(3))
    year = _promote_year(int(match.group(4)))

    if separator == '-':
        return _build(year, first, second) or _build(year, second, first)
    if first > 12 and second <= 12:
        return _build(year, second, first)
    if second > 12 and first <= 12:
        return _build(year, first, second)
    # Ambiguous: day first
    return _build(year, second, first)


def _parse_day_month_year(token: str) -> Optional[dt.date]:
    match = _DAY_MONTH_YEAR_RE.match(token)
    if not match:
        return None
    month = MONTH_NAMES.get(match.group(2).lower())
    if month is None:
        return None
    return _build(_promote_year(int(match.group(3))), month, int(match.group(1)))


def _parse_month_day_year(token: str) -> Optional[dt.date]:
    match = _MONTH_DAY_YEAR_RE.match(token)
    if not match:
        return None
    month = MONTH_NAMES.get(match.group(1).lower())
    if month is None:
        return None
    return _build(_promote_year(int(match.group(3))), month, int(match.group(2)))


DATE_PARSERS: List[Tuple[str, Callable[[str], Optional[dt.date]]]] = [
    ('iso', _parse_iso),
    ('numeric', _parse_numeric),
    ('day_month_year', _parse_day_month_year),
    ('month_day_year', _parse_month_day_year),
]


def clean_date_token(raw: str) -> str:
    """Strip ordinal suffixes ("1st" → "1") and trailing punctuation."""
    cleaned = _ORDINAL_RE.sub(r'\1', raw.strip())
    return _TRAILING_PUNCT_RE.sub('', cleaned).strip()


def parse_date(raw: Optional[str]) -> Optional[dt.date]:
    """
    Parse a date token, returning None when no format yields a real calendar date.

    Examples:
        >>> parse_date("25/12/2024")
        datetime.date(2024, 12, 25)
        >>> parse_date("2023-02-29") is None
        True
    """
    if not raw or not raw.strip():
        return None

    token = clean_date_token(raw)
    for name, parser in DATE_PARSERS:
        parsed = parser(token)
        if parsed is not None:
            logger.debug("Parsed date %r as %s (%s)", raw, parsed.isoformat(), name)
            return parsed
    return None


def normalize_date(
    raw: Optional[str],
    warnings: Optional[List[str]] = None,
    today: Optional[dt.date] = None,
) -> dt.date:
    """
    Normalize a date token to a calendar date. Never raises.

    Falls back to `today` (the current date by default) and appends a warning
    to `warnings` when the token cannot be parsed.
    """
    parsed = parse_date(raw)
    if parsed is not None:
        return parsed

    fallback = today or dt.date.today()
    if raw and raw.strip():
        message = f"Could not parse date '{raw.strip()}'; using {fallback.isoformat()}"
    else:
        message = f"No purchase date found; using {fallback.isoformat()}"
    logger.warning(message)
    if warnings is not None:
        warnings.append(message)
    return fallback


def format_iso(value: Optional[dt.date]) -> Optional[str]:
    return value.isoformat() if value else None


def add_months(value: dt.date, months: int) -> dt.date:
    """Calendar-month addition, clamped to the end of the target month."""
    return value + relativedelta(months=months)
