"""
Tests for the Incremental Reconciliation Controller.
"""

import pytest
from datetime import date

from church_recon.config import Settings
from church_recon.models import (
    AuditAction,
    ComparisonType,
    ContributorGroup,
    ContributorListFile,
    ExtractionStatus,
    MatchMethod,
    ReconciliationContext,
    ReconciliationInputs,
    ReconciliationMode,
    ReconciliationStatus,
    SourceFile,
)
from church_recon.reconciliation import (
    IncrementalReconciliationController,
    LearnedAssociationMemory,
    identify_manually,
    merge_results,
)

CSV_STATEMENT = "\n".join([
    "Data;Descricao;Valor;Saldo",
    "15/07/2024;PIX RECEBIDO JOAO SILVA;100,00;1.500,00",
    "16/07/2024;PIX RECEBIDO MARIA SOUZA;50,00;1.550,00",
    "17/07/2024;TARIFA BANCARIA;-12,50;1.537,50",
])

CENTRO_LIST = "Nome;Valor\nJoão Silva;100,00\nMaria Souza;50,00"

UNREADABLE = "Relatorio gerencial\nsem movimentos\nfim"


@pytest.fixture
def controller():
    return IncrementalReconciliationController()


@pytest.fixture
def context(options, church_centro, church_norte):
    return ReconciliationContext(options=options, units=[church_centro, church_norte])


@pytest.fixture
def transactions(make_tx):
    return [
        make_tx("t1", "PIX JOAO SILVA", "100.00"),
        make_tx("t2", "PIX RECEBIDO JOAO", "100.00"),
        make_tx("t3", "TARIFA BANCARIA", "-12.50"),
    ]


@pytest.fixture
def bare_run(controller, context, transactions):
    """A full run without contributor lists: nothing identified."""
    return controller.reconcile([], ReconciliationInputs(transactions=transactions), context)


def primary_ids(results):
    return [r.transaction.id for r in results if not r.is_ghost]


def by_id(results, tx_id):
    return next(r for r in results if r.transaction.id == tx_id)


class TestFullMode:
    """New statement replaces prior results."""

    def test_extracts_and_matches_files(self, controller, context, church_centro):
        inputs = ReconciliationInputs(
            statement=SourceFile("extrato.csv", CSV_STATEMENT),
            contributor_lists=[ContributorListFile(church_centro, "centro.csv", CENTRO_LIST)],
        )

        outcome = controller.reconcile([], inputs, context)

        assert outcome.mode == ReconciliationMode.FULL
        assert outcome.status == ExtractionStatus.OK
        assert outcome.extraction_methods == {"extrato.csv": "delimited", "centro.csv": "delimited"}
        assert outcome.report.summary.identified_count == 2
        assert outcome.report.summary.pending_count == 0
        actions = {e.action for e in outcome.audit_log}
        assert AuditAction.FILE_EXTRACTED in actions
        assert AuditAction.AUTOMATIC_MATCH in actions

    def test_statement_needing_model_keeps_prior_results(self, controller, context, bare_run):
        inputs = ReconciliationInputs(statement=SourceFile("relatorio.pdf", UNREADABLE))

        outcome = controller.reconcile(bare_run.results, inputs, context)

        assert outcome.status == ExtractionStatus.MODEL_REQUIRED
        assert outcome.results == bare_run.results
        assert [m["file_name"] for m in outcome.models_required] == ["relatorio.pdf"]
        assert any(e.action == AuditAction.MODEL_REQUIRED for e in outcome.audit_log)

    def test_unreadable_list_skipped_without_blocking(self, controller, context, transactions, centro_group, church_norte):
        inputs = ReconciliationInputs(
            transactions=transactions,
            contributor_lists=[ContributorListFile(church_norte, "norte.pdf", UNREADABLE)],
            contributor_groups=[centro_group],
        )

        outcome = controller.reconcile([], inputs, context)

        assert outcome.status == ExtractionStatus.OK
        assert [m["file_name"] for m in outcome.models_required] == ["norte.pdf"]
        assert by_id(outcome.results, "t1").status == ReconciliationStatus.IDENTIFIED

    def test_manual_results_carried_over(
        self, controller, context, transactions, centro_group, church_norte, make_contributor
    ):
        norte = ContributorGroup(unit=church_norte, contributors=[make_contributor("Pedro Lima", "100.00")])
        inputs = ReconciliationInputs(transactions=transactions, contributor_groups=[centro_group, norte])
        first = controller.reconcile([], inputs, context)

        manual = identify_manually(by_id(first.results, "t2"), church_norte, norte.contributors[0])
        prior = [manual if r.transaction.id == "t2" else r for r in first.results]

        second = controller.reconcile(prior, inputs, context)

        assert by_id(second.results, "t2") is manual
        assert primary_ids(second.results) == ["t1", "t2", "t3"]
        # Pedro was confirmed by hand, so he is no longer pending
        ghost_names = [r.contributor.name for r in second.results if r.is_ghost]
        assert "Pedro Lima" not in ghost_names
        assert any(e.action == AuditAction.MANUAL_PRESERVED for e in second.audit_log)

    def test_manual_result_dropped_when_transaction_leaves(
        self, controller, context, transactions, church_norte, bare_run
    ):
        manual = identify_manually(by_id(bare_run.results, "t2"), church_norte)
        prior = [manual if r.transaction.id == "t2" else r for r in bare_run.results]

        outcome = controller.reconcile(prior, ReconciliationInputs(transactions=transactions[:1]), context)

        assert primary_ids(outcome.results) == ["t1"]

    def test_comparison_type_filter(self, controller, options, transactions):
        income_only = ReconciliationContext(options=options, comparison_type=ComparisonType.INCOME)
        expenses_only = ReconciliationContext(options=options, comparison_type=ComparisonType.EXPENSES)
        inputs = ReconciliationInputs(transactions=transactions)

        assert primary_ids(controller.reconcile([], inputs, income_only).results) == ["t1", "t2"]
        assert primary_ids(controller.reconcile([], inputs, expenses_only).results) == ["t3"]


class TestAdditiveMode:
    """New contributor lists against prior results."""

    def test_upgrades_unidentified(self, controller, context, bare_run, centro_group):
        outcome = controller.reconcile(
            bare_run.results,
            ReconciliationInputs(contributor_groups=[centro_group]),
            context,
        )

        assert outcome.mode == ReconciliationMode.ADDITIVE
        assert primary_ids(outcome.results) == primary_ids(bare_run.results)
        assert by_id(outcome.results, "t1").status == ReconciliationStatus.IDENTIFIED
        assert any(e.action == AuditAction.ADDITIVE_UPGRADE for e in outcome.audit_log)

    def test_better_suggestion_updates_only_the_suggestion(self, controller, context, bare_run, centro_group):
        outcome = controller.reconcile(
            bare_run.results,
            ReconciliationInputs(contributor_groups=[centro_group]),
            context,
        )

        t2 = by_id(outcome.results, "t2")
        assert t2.status == ReconciliationStatus.UNIDENTIFIED
        assert t2.suggestion.name == "João Silva"
        assert t2.church.is_placeholder

    def test_never_downgrades_identified(
        self, controller, context, transactions, centro_group, church_norte, make_contributor
    ):
        first = controller.reconcile(
            [], ReconciliationInputs(transactions=transactions, contributor_groups=[centro_group]), context,
        )
        rival = ContributorGroup(unit=church_norte, contributors=[
            make_contributor("João Silva", "100.00", date(2024, 7, 15)),
        ])

        outcome = controller.reconcile(first.results, ReconciliationInputs(contributor_groups=[rival]), context)

        before = [r for r in first.results if r.status == ReconciliationStatus.IDENTIFIED]
        for result in before:
            after = by_id(outcome.results, result.transaction.id)
            assert after.status == result.status
            assert after.church == result.church
            assert after.contributor == result.contributor

    def test_manual_results_untouched(self, controller, context, bare_run, centro_group, church_norte):
        manual = identify_manually(by_id(bare_run.results, "t1"), church_norte)
        prior = [manual if r.transaction.id == "t1" else r for r in bare_run.results]

        outcome = controller.reconcile(prior, ReconciliationInputs(contributor_groups=[centro_group]), context)

        assert by_id(outcome.results, "t1") is manual
        assert manual.match_method == MatchMethod.MANUAL

    def test_colliding_ghost_ids_get_suffix(self, controller, context, transactions, centro_group):
        first = controller.reconcile(
            [], ReconciliationInputs(transactions=transactions, contributor_groups=[centro_group]), context,
        )

        outcome = controller.reconcile(first.results, ReconciliationInputs(contributor_groups=[centro_group]), context)

        ids = [r.transaction.id for r in outcome.results]
        assert len(ids) == len(set(ids))
        assert "ghost-igreja-centro-1-maria-souza~2" in ids

    def test_divergent_list_leaves_result_for_review(
        self, controller, context, bare_run, centro_group, church_centro, church_norte, make_contributor
    ):
        memory = LearnedAssociationMemory()
        memory.upsert("PIX JOAO SILVA", make_contributor("Joao Silva", "100.00"), church_norte)
        learned_context = ReconciliationContext(
            options=context.options, units=context.units, learned_associations=memory,
        )

        outcome = controller.reconcile(
            bare_run.results, ReconciliationInputs(contributor_groups=[centro_group]), learned_context,
        )

        t1 = by_id(outcome.results, "t1")
        assert t1.status == ReconciliationStatus.UNIDENTIFIED
        assert t1.church.is_placeholder
        assert t1.divergence.expected_church == church_norte
        assert t1.divergence.actual_church == church_centro
        assert t1.suggestion.name == "João Silva"

        # The fresh pick is still pending in its own unit
        pending = [
            r for r in outcome.results
            if r.is_ghost and r.contributor.name == "João Silva" and r.church == church_centro
        ]
        assert len(pending) == 1
        assert pending[0].status == ReconciliationStatus.PENDING

    def test_memory_keywords_apply_regardless_of_cleaning_keywords(
        self, controller, options, church_centro, centro_group, transactions
    ):
        memory = LearnedAssociationMemory()
        memory.upsert("PIX JOAO SILVA", centro_group.contributors[0], church_centro)
        context = ReconciliationContext(
            options=options, units=[church_centro], learned_associations=memory, cleaning_keywords=["PIX"],
        )

        outcome = controller.reconcile(
            [], ReconciliationInputs(transactions=transactions, contributor_groups=[centro_group]), context,
        )

        assert by_id(outcome.results, "t1").match_method == MatchMethod.LEARNED

    def test_no_new_lists_keeps_prior(self, controller, context, bare_run):
        outcome = controller.reconcile(bare_run.results, ReconciliationInputs(), context)
        assert outcome.results == bare_run.results


class TestContextFromSettings:
    """Context seeded from environment settings."""

    def test_keywords_and_options_from_settings(self):
        settings = Settings(
            _env_file=None,
            similarity_threshold=70,
            ignored_keywords=["PIX RECEBIDO"],
            contribution_keywords=["CULTO"],
        )

        context = ReconciliationContext.from_settings(settings, owner_id="tesouraria")

        assert context.options.similarity_threshold == 70
        assert context.cleaning_keywords == ["PIX RECEBIDO"]
        assert context.contribution_keywords == ["CULTO"]
        assert context.owner_id == "tesouraria"

    def test_contribution_keywords_reach_extraction(self, controller, options):
        statement = "Data;Historico;Valor\n15/07/2024;PIX CULTO JOVENS;30,00\n16/07/2024;PIX RECEBIDO ANA;20,00"
        context = ReconciliationContext(options=options, contribution_keywords=["CULTO"])

        outcome = controller.reconcile(
            [], ReconciliationInputs(statement=SourceFile("extrato.csv", statement)), context,
        )

        types = [r.transaction.contribution_type for r in outcome.results if not r.is_ghost]
        assert types == ["CULTO", "PIX"]


class TestMergeResults:
    """The pure merge function."""

    def test_full_merge_prefers_manual(self, bare_run, church_norte):
        manual = identify_manually(by_id(bare_run.results, "t3"), church_norte)

        merged = merge_results([manual], bare_run.results, ReconciliationMode.FULL)

        assert by_id(merged, "t3") is manual
        assert len(merged) == len(bare_run.results)

    def test_additive_merge_keeps_prior_order(self, bare_run):
        merged = merge_results(bare_run.results, [], ReconciliationMode.ADDITIVE)
        assert merged == bare_run.results


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
