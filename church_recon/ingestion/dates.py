"""
Date parsing and date column detection.
"""

import re
from datetime import date, datetime
from typing import Optional, Sequence

DATE_PATTERNS = [
    re.compile(r"(\d{1,2})[/-](\d{1,2})[/-](\d{2,4})"),  # 15/07/2024, 1-7-24
    re.compile(r"(\d{4})-(\d{1,2})-(\d{1,2})"),           # 2024-07-15
    re.compile(r"\b(\d{1,2})[/-](\d{1,2})\b"),            # 15/07, anchor year applies
]

_LEADING_DATE = re.compile(r"^\s*(\d{4}-\d{1,2}-\d{1,2}|\d{1,2}[/-]\d{1,2}(?:[/-]\d{2,4})?)\b")
_DATE_TOKEN = re.compile(r"(\d{1,4})[/-](\d{1,2})(?:[/-](\d{1,4}))?")
_HEADER_YEAR = re.compile(
    r"(ANO|EXERCICIO|EXERCÍCIO|DATA|EMISSAO|EMISSÃO|PERIODO|PERÍODO|EXTRATO).*?\b(20\d{2})\b",
    re.IGNORECASE,
)
_FULL_DATE_YEAR = re.compile(r"\b\d{1,2}[/-]\d{1,2}[/-](20\d{2})\b")

HEADER_SCAN_CHARS = 8000


def looks_like_date(value: str) -> bool:
    """Cheap shape check used for column detection and fingerprint topology."""
    text = str(value or "").strip()
    if len(text) < 3:
        return False
    return any(p.search(text) for p in DATE_PATTERNS)


def leading_date(line: str) -> Optional[str]:
    """Return the date token at the start of a line, if any."""
    match = _LEADING_DATE.match(line or "")
    return match.group(1) if match else None


def discover_anchor_year(text: str, today: Optional[date] = None) -> int:
    """
    Find the year used to complete partial dates (DD/MM).

    Looks for a year next to a header keyword (PERIODO, EXTRATO, ...), then
    for the latest full date in the document, then falls back to the
    current year.
    """
    head = (text or "")[:HEADER_SCAN_CHARS]

    match = _HEADER_YEAR.search(head)
    if match:
        return int(match.group(2))

    years = [int(y) for y in _FULL_DATE_YEAR.findall(text or "")]
    if years:
        return max(years)

    return (today or date.today()).year


def parse_date(
    raw,
    anchor_year: Optional[int] = None,
    date_format: Optional[str] = None,
) -> Optional[date]:
    """
    Parse a date cell.

    Accepts DD/MM/YYYY, DD-MM-YYYY, DD/MM/YY, YYYY-MM-DD and DD/MM (with
    anchor_year). A known strptime `date_format` is tried first.

    Returns:
        date, or None if the value is not a valid calendar date
    """
    if raw is None:
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw

    text = str(raw).strip()
    if not text:
        return None

    if date_format:
        try:
            return datetime.strptime(text, date_format).date()
        except ValueError:
            pass

    match = _DATE_TOKEN.search(text)
    if not match:
        return None

    part1, part2, part3 = match.group(1), match.group(2), match.group(3)

    if len(part1) == 4:
        year, month, day = int(part1), int(part2), int(part3 or 1)
    else:
        day, month = int(part1), int(part2)
        if part3 is None:
            if anchor_year is None:
                return None
            year = anchor_year
        elif len(part3) == 2:
            year = 2000 + int(part3)
        else:
            year = int(part3)

    if not 1900 <= year <= 2100:
        return None
    try:
        return date(year, month, day)
    except ValueError:
        return None


def identify_date_column(rows: Sequence[Sequence[str]], sample_size: int = 100) -> int:
    """
    Pick the date column: the best-scoring column whose cells look like
    dates in more than 20% of the sample rows.
    """
    sample = list(rows[:sample_size])
    if not sample:
        return -1

    width = max(len(r) for r in sample)
    scores = [0.0] * width
    for row in sample:
        for index, cell in enumerate(row):
            value = str(cell or "").strip()
            if looks_like_date(value):
                scores[index] += 1
                if "/" in value or "-" in value:
                    scores[index] += 0.5

    best = max(scores) if scores else 0
    if best > len(sample) * 0.20:
        return scores.index(best)
    return -1
