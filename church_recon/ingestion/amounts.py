"""
Monetary amount parsing and amount column detection.

Handles Brazilian (1.234,56) and US (1,234.56) thousands notation and bare
decimals. The sign comes from a minus anywhere in the cell, parentheses or
a trailing D (debit).
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Sequence

CENTS = Decimal("0.01")

_TIME_TOKEN = re.compile(r"\d{1,2}:\d{2}")
_AMOUNT_CELL = re.compile(r"^[-+(]*(?:R\$)?[-+(]*[\d.,]*\d[\d.,]*[)-]*[CD]?$")


def parse_amount(raw, decimal_separator: Optional[str] = None) -> Optional[Decimal]:
    """
    Parse a monetary cell into a signed Decimal quantized to cents.

    Args:
        raw: Cell value (str, int, float or Decimal)
        decimal_separator: "," or "." when the layout is known; None to infer

    Returns:
        Signed amount, or None if the cell is not an amount
    """
    if raw is None:
        return None
    if isinstance(raw, Decimal):
        return raw.quantize(CENTS)
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return Decimal(str(raw)).quantize(CENTS)

    text = str(raw).strip().upper().replace(" ", "").replace(" ", "")
    if not text or _TIME_TOKEN.search(text):
        return None
    if not _AMOUNT_CELL.match(text):
        return None

    negative = "-" in text or "(" in text or text.endswith("D")
    digits = re.sub(r"[^0-9.,]", "", text)

    if decimal_separator in (",", "."):
        thousands = "." if decimal_separator == "," else ","
        digits = digits.replace(thousands, "").replace(decimal_separator, ".")
    else:
        digits = _infer_notation(digits)

    try:
        value = Decimal(digits)
    except InvalidOperation:
        return None

    value = abs(value).quantize(CENTS)
    return -value if negative else value


def _infer_notation(digits: str) -> str:
    has_comma = "," in digits
    has_dot = "." in digits

    if has_comma and has_dot:
        # Whichever separator comes last is the decimal one
        if digits.rfind(".") < digits.rfind(","):
            return digits.replace(".", "").replace(",", ".")
        return digits.replace(",", "")

    for sep in (",", "."):
        if sep not in digits:
            continue
        parts = digits.split(sep)
        if len(parts) > 2:
            return digits.replace(sep, "")
        # A single separator followed by exactly three digits groups thousands
        if len(parts[1]) == 3:
            return digits.replace(sep, "")
        return digits.replace(sep, ".")

    return digits


def is_amount(raw) -> bool:
    return parse_amount(raw) is not None


def identify_amount_column(
    rows: Sequence[Sequence[str]],
    excluded: Sequence[int] = (),
    sample_size: int = 100,
) -> int:
    """
    Pick the transaction amount column.

    Candidates must hold a non-zero amount in more than 15% of the sample.
    Among several, the one with the smallest mean magnitude wins: running
    balances are typically much larger than the movements themselves.

    Returns:
        Column index, or -1 if no column qualifies
    """
    sample = list(rows[:sample_size])
    if not sample:
        return -1

    stats: Dict[int, List[Decimal]] = {}
    for row in sample:
        for index, cell in enumerate(row):
            if index in excluded:
                continue
            value = parse_amount(cell)
            if value is not None and value != 0:
                stats.setdefault(index, []).append(abs(value))

    candidates = [
        (sum(values) / len(values), index)
        for index, values in stats.items()
        if len(values) > len(sample) * 0.15
    ]
    if not candidates:
        return -1

    candidates.sort()
    return candidates[0][1]
