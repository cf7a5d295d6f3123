"""
Result aggregation for reporting.

Every function here is pure: inputs are never mutated and running any of
them twice on the same input gives the same output.
"""

import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List

from ..models import (
    PLACEHOLDER_CHURCH,
    MatchMethod,
    MatchResult,
    ReconciliationReport,
    ReconciliationStatus,
    ReconciliationSummary,
)
from ..utils.text_normalizer import strip_accents

EXPENSES_GROUP = "expenses"


@dataclass
class PolaritySplit:
    """Income and expense results."""
    income: List[MatchResult] = field(default_factory=list)
    expenses: List[MatchResult] = field(default_factory=list)


def dedupe(results: Iterable[MatchResult]) -> List[MatchResult]:
    """Keep the first result per transaction id, in input order."""
    seen = set()
    unique = []
    for result in results:
        if result.transaction.id in seen:
            continue
        seen.add(result.transaction.id)
        unique.append(result)
    return unique


def group_by_unit(results: Iterable[MatchResult]) -> Dict[str, List[MatchResult]]:
    """
    Group results by church id.

    Results without a real church land in the placeholder group.
    """
    groups: Dict[str, List[MatchResult]] = {}
    for result in dedupe(results):
        church = result.church or PLACEHOLDER_CHURCH
        groups.setdefault(church.id, []).append(result)
    return groups


def is_income(result: MatchResult) -> bool:
    if result.status == ReconciliationStatus.PENDING:
        return True
    amount = result.transaction.amount
    return amount is None or amount >= 0


def split_by_polarity(results: Iterable[MatchResult]) -> PolaritySplit:
    """
    Split results into income and expenses.

    Ghosts always count as (expected) income. Transactions without an
    amount stay on the income side so they remain visible for review.
    """
    split = PolaritySplit()
    for result in dedupe(results):
        if is_income(result):
            split.income.append(result)
        else:
            split.expenses.append(result)
    return split


def summarize(results: Iterable[MatchResult]) -> ReconciliationSummary:
    """Totals over bank movement. Ghost rows only feed pending_expected."""
    summary = ReconciliationSummary()
    income_by_church: Dict[str, Decimal] = {}

    for result in dedupe(results):
        if result.is_ghost:
            summary.pending_count += 1
            summary.pending_expected += result.contributor_amount or Decimal("0.00")
            continue

        summary.total_transactions += 1
        if result.status == ReconciliationStatus.IDENTIFIED:
            summary.identified_count += 1
        elif result.status == ReconciliationStatus.DIVERGENT:
            summary.divergent_count += 1
        else:
            summary.unidentified_count += 1
        if result.match_method == MatchMethod.MANUAL:
            summary.manual_count += 1

        amount = result.bank_amount
        if amount < 0:
            summary.total_expenses += amount
            continue

        summary.total_income += amount
        if result.status == ReconciliationStatus.IDENTIFIED:
            summary.identified_income += amount
            church_id = result.church.id
            income_by_church[church_id] = income_by_church.get(church_id, Decimal("0.00")) + amount
        else:
            summary.unidentified_income += amount

    summary.income_by_church = income_by_church
    return summary


def build_report(results: Iterable[MatchResult]) -> ReconciliationReport:
    """Income grouped by church, expenses in a single group, plus totals."""
    unique = dedupe(results)
    split = split_by_polarity(unique)
    return ReconciliationReport(
        income=group_by_unit(split.income),
        expenses={EXPENSES_GROUP: split.expenses} if split.expenses else {},
        summary=summarize(unique),
    )


def _amount_renderings(result: MatchResult) -> List[str]:
    amounts = [result.transaction.amount, result.contributor_amount]
    rendered = []
    for amount in amounts:
        if amount is None:
            continue
        text = f"{abs(amount):.2f}"
        rendered.extend([text, text.replace(".", ",")])
    return rendered


def _searchable(result: MatchResult) -> str:
    tx = result.transaction
    parts = [
        tx.date.isoformat() if tx.date else "",
        tx.date.strftime("%d/%m/%Y") if tx.date else "",
        tx.description,
        tx.cleaned_description,
        result.contributor.name if result.contributor else "",
        result.church.name,
        result.contribution_type or tx.contribution_type or "",
        result.status.value,
    ]
    parts.extend(_amount_renderings(result))
    return strip_accents(" ".join(parts)).lower()


def filter_by_query(results: Iterable[MatchResult], query: str) -> List[MatchResult]:
    """
    Universal search over date, description, contributor, church, type and
    amount. Every whitespace-separated term must match (case and accent
    insensitive). Amounts match as 1234.56 or 1234,56.
    """
    terms = strip_accents(query or "").lower().split()
    results = list(results)
    if not terms:
        return results

    # Thousands separators in the query are ignored
    terms = [re.sub(r"(?<=\d)\.(?=\d{3}(\D|$))", "", t) for t in terms]
    return [r for r in results if all(t in _searchable(r) for t in terms)]
