"""
Column role detection for tabular content.
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Sequence

from ..utils.text_normalizer import BANK_TYPES, contribution_terms, strip_accents
from .amounts import identify_amount_column
from .dates import identify_date_column

TYPE_HEADER_KEYWORDS = [
    "TIPO", "CLASSIFICACAO", "CATEGORIA", "NATUREZA", "HISTORICO",
    "OPERACAO", "MOVIMENTO", "MOTIVO",
]

_LETTERS = re.compile(r"[^a-zA-ZÀ-ÿ]")
_DIGITS = re.compile(r"[^0-9]")
_DATE_PREFIX = re.compile(r"^\d{2}[/-]\d{2}")
_NUMERIC_ONLY = re.compile(r"^[\d,.]+$")
_MONEY_ONLY = re.compile(r"^[\d.,R$\s]+$")


@dataclass
class DetectedColumns:
    """Column roles found in a grid. -1 / None when a role is missing."""
    date_column: int
    amount_column: int
    description_column: int
    type_column: Optional[int] = None

    @property
    def is_usable(self) -> bool:
        return self.amount_column >= 0 and self.description_column >= 0


def identify_name_column(
    rows: Sequence[Sequence[str]],
    excluded: Sequence[int],
    sample_size: int = 50,
) -> int:
    """
    Pick the column holding names/descriptions.

    Letter-dominated cells score, multi-word cells score more, cells that
    look like dates or plain numbers are penalized.
    """
    sample = list(rows[:sample_size])
    if not sample:
        return -1

    width = max(len(r) for r in sample)
    scores = [0] * width
    for row in sample:
        for index, cell in enumerate(row):
            if index in excluded:
                continue
            text = str(cell or "").strip()
            if len(text) < 3:
                continue

            letters = len(_LETTERS.sub("", text))
            digits = len(_DIGITS.sub("", text))
            if letters > digits:
                scores[index] += 5
            if len(text.split()) >= 2 and letters > 10:
                scores[index] += 3
            if _DATE_PREFIX.match(text) or _NUMERIC_ONLY.match(text):
                scores[index] -= 10

    best = max(scores)
    return scores.index(best) if best > 0 else -1


def identify_type_column(
    rows: Sequence[Sequence[str]],
    excluded: Sequence[int],
    sample_size: int = 100,
    contribution_keywords: Optional[Sequence[str]] = None,
) -> Optional[int]:
    """
    Pick the contribution type column, if there is one.

    A header keyword (TIPO, CATEGORIA, ...) weighs heavily; contribution
    terms in cells weigh more than bare bank types. Needs strong evidence.
    """
    sample = list(rows[:sample_size])
    if not sample:
        return None
    terms = contribution_terms(contribution_keywords)

    width = max(len(r) for r in sample)
    scores = [0] * width

    for index, cell in enumerate(sample[0]):
        if index in excluded:
            continue
        value = strip_accents(str(cell or "")).upper()
        if any(k in value for k in TYPE_HEADER_KEYWORDS):
            scores[index] += 15

    for row in sample:
        for index, cell in enumerate(row):
            if index in excluded:
                continue
            raw = str(cell or "")
            value = strip_accents(raw).upper().strip()
            if len(value) >= 2:
                if any(term in value for term in terms):
                    scores[index] += 5
                elif any(value == k or value == k + "S" for k in BANK_TYPES):
                    scores[index] += 2
            if _DATE_PREFIX.match(raw):
                scores[index] -= 5
            if raw and _MONEY_ONLY.match(raw):
                scores[index] -= 5

    best = max(scores)
    return scores.index(best) if best > 10 else None


def detect_columns(
    rows: Sequence[Sequence[str]],
    sample_size: int = 100,
    contribution_keywords: Optional[Sequence[str]] = None,
) -> DetectedColumns:
    """Assign date, amount, description and type roles to the columns of a grid."""
    date_column = identify_date_column(rows, sample_size=sample_size)
    excluded: List[int] = [date_column] if date_column >= 0 else []

    amount_column = identify_amount_column(rows, excluded, sample_size=sample_size)
    if amount_column >= 0:
        excluded.append(amount_column)

    description_column = identify_name_column(rows, excluded)
    if description_column >= 0:
        excluded.append(description_column)

    type_column = identify_type_column(
        rows, excluded, sample_size=sample_size, contribution_keywords=contribution_keywords,
    )

    return DetectedColumns(
        date_column=date_column,
        amount_column=amount_column,
        description_column=description_column,
        type_column=type_column,
    )
