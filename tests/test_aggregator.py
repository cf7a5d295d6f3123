"""
Tests for result aggregation and search.
"""

import pytest
from decimal import Decimal

from church_recon.models import ReconciliationStatus
from church_recon.reconciliation import (
    MatchingEngine,
    build_report,
    filter_by_query,
    group_by_unit,
    split_by_polarity,
)


@pytest.fixture
def results(options, make_tx, centro_group):
    transactions = [
        make_tx("t1", "PIX JOAO SILVA", "100.00"),
        make_tx("t2", "TARIFA BANCARIA", "-12.50"),
        make_tx("t3", "PIX DESCONHECIDO", "42.00"),
    ]
    return MatchingEngine(options=options).match(transactions, [centro_group])


class TestAggregator:
    """Pure reporting views."""

    def test_split_by_polarity(self, results):
        split = split_by_polarity(results)

        assert [r.transaction.id for r in split.expenses] == ["t2"]
        # Ghosts count as expected income
        assert len(split.income) == 3

    def test_group_by_unit(self, results, church_centro):
        groups = group_by_unit(results)

        assert set(groups) == {church_centro.id, "unidentified"}
        assert [r.transaction.id for r in groups["unidentified"]] == ["t2", "t3"]

    def test_duplicates_counted_once(self, results):
        doubled = results + results
        assert build_report(doubled).summary == build_report(results).summary

    def test_report_totals(self, results, church_centro):
        report = build_report(results)
        summary = report.summary

        assert summary.total_transactions == 3
        assert summary.identified_count == 1
        assert summary.unidentified_count == 2
        assert summary.pending_count == 1
        assert summary.total_income == Decimal("142.00")
        assert summary.total_expenses == Decimal("-12.50")
        assert summary.identified_income == Decimal("100.00")
        assert summary.unidentified_income == Decimal("42.00")
        assert summary.pending_expected == Decimal("50.00")
        assert summary.income_by_church == {church_centro.id: Decimal("100.00")}
        assert round(summary.identification_rate, 2) == 33.33
        assert list(report.expenses) == ["expenses"]

    def test_amount_less_rows_stay_visible(self, options, make_tx):
        results = MatchingEngine(options=options).match([make_tx("t1", "LINHA QUEBRADA", None)], [])
        split = split_by_polarity(results)
        assert len(split.income) == 1

    def test_empty_report(self):
        report = build_report([])
        assert report.income == {}
        assert report.expenses == {}
        assert report.summary.identification_rate == 0.0


class TestFilterByQuery:
    """Universal search."""

    def test_matches_contributor_without_accents(self, results):
        found = filter_by_query(results, "joão")
        assert [r.transaction.id for r in found] == ["t1"]

    def test_all_terms_must_match(self, results):
        assert filter_by_query(results, "joao 100,00")
        assert filter_by_query(results, "joao 42") == []

    def test_amount_and_date_forms(self, results):
        assert [r.transaction.id for r in filter_by_query(results, "12.50")] == ["t2"]
        assert [r.transaction.id for r in filter_by_query(results, "12,50")] == ["t2"]
        assert len(filter_by_query(results, "15/07/2024")) == 3

    def test_status_and_church(self, results):
        found = filter_by_query(results, "pendente centro")
        assert [r.status for r in found] == [ReconciliationStatus.PENDING]

    def test_empty_query_returns_everything(self, results):
        assert filter_by_query(results, "  ") == results

    def test_thousands_separator_ignored(self, options, make_tx):
        results = MatchingEngine(options=options).match([make_tx("t1", "OFERTA", "1234.56")], [])
        assert filter_by_query(results, "1.234,56") == results


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
