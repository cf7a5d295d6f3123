"""
Incremental Reconciliation Controller - run coordinator.

Decides per invocation what flows through extraction and matching and how
the new results merge with the prior ones:

1. Full mode (a statement is supplied): extract the statement and every
   contributor list, match everything and replace the prior results.
   Manual results whose transaction reappears are carried over as they are.
2. Additive mode (only new contributor lists): match the prior
   unidentified results against the new lists and merge without ever
   downgrading an identified result.

Manual results are never touched by either mode.
"""

from collections import Counter
from dataclasses import dataclass, replace
from typing import Iterable, List, Optional, Sequence, Tuple
from uuid import uuid4

import structlog

from ..ingestion.extractor import AI_METHOD, ExtractionResult, ExtractionStrategySelector
from ..integrations.ai_extractor import AIExtractor, ProgressCallback
from ..models import (
    AuditAction,
    ComparisonType,
    ContributorGroup,
    ContributorListFile,
    DocumentKind,
    ExtractionStatus,
    MatchResult,
    ReconciliationContext,
    ReconciliationInputs,
    ReconciliationMode,
    ReconciliationOutcome,
    ReconciliationStatus,
    Transaction,
)
from ..utils.audit_logger import AuditLogger
from ..utils.text_normalizer import normalize
from .aggregator import build_report
from .matcher import MatchingEngine

logger = structlog.get_logger()

GHOST_SUFFIX = "~"


@dataclass
class MergeStats:
    """Counters describing one merge."""
    upgraded: int = 0
    suggestions_updated: int = 0
    divergences_flagged: int = 0
    ghosts_added: int = 0
    ghost_ids_renamed: int = 0
    manual_preserved: int = 0
    manual_dropped: int = 0
    ghosts_covered: int = 0


def _contributor_key(result: MatchResult) -> Optional[Tuple[str, str, str]]:
    if result.contributor is None:
        return None
    return (
        result.church.id,
        normalize(result.contributor.name),
        str(result.contributor.amount),
    )


def _unique_ghost_id(ghost_id: str, taken: set) -> str:
    n = 2
    candidate = f"{ghost_id}{GHOST_SUFFIX}{n}"
    while candidate in taken:
        n += 1
        candidate = f"{ghost_id}{GHOST_SUFFIX}{n}"
    return candidate


def _merge_full(
    prior: List[MatchResult],
    new: List[MatchResult],
    statement_ids: Optional[Sequence[str]],
) -> Tuple[List[MatchResult], MergeStats]:
    stats = MergeStats()
    manual = {r.transaction.id: r for r in prior if r.is_manual}
    new_primary = {r.transaction.id: r for r in new if not r.is_ghost}
    order = list(statement_ids) if statement_ids is not None else list(new_primary)

    merged: List[MatchResult] = []
    kept_manual: List[MatchResult] = []
    for tx_id in order:
        if tx_id in manual:
            merged.append(manual[tx_id])
            kept_manual.append(manual[tx_id])
        elif tx_id in new_primary:
            merged.append(new_primary[tx_id])

    # A contributor already confirmed by hand is not pending
    covered = Counter(k for k in (_contributor_key(m) for m in kept_manual) if k)
    for ghost in (r for r in new if r.is_ghost):
        if ghost.transaction.id in manual:
            merged.append(manual[ghost.transaction.id])
            kept_manual.append(manual[ghost.transaction.id])
            continue
        key = _contributor_key(ghost)
        if key and covered[key] > 0:
            covered[key] -= 1
            stats.ghosts_covered += 1
            continue
        merged.append(ghost)

    stats.manual_preserved = len(kept_manual)
    stats.manual_dropped = len(manual) - len(kept_manual)
    return merged, stats


def _merge_additive(
    prior: List[MatchResult],
    new: List[MatchResult],
) -> Tuple[List[MatchResult], MergeStats]:
    stats = MergeStats()
    new_primary = {r.transaction.id: r for r in new if not r.is_ghost}

    merged: List[MatchResult] = []
    for result in prior:
        if (
            result.is_manual
            or result.is_ghost
            or result.status != ReconciliationStatus.UNIDENTIFIED
        ):
            merged.append(result)
            continue

        candidate = new_primary.get(result.transaction.id)
        if candidate is None:
            merged.append(result)
        elif candidate.status == ReconciliationStatus.IDENTIFIED:
            merged.append(candidate)
            stats.upgraded += 1
        elif candidate.divergence is not None:
            # Stays unidentified; the conflict and the fresh pick wait for review
            suggestion = candidate.contributor or candidate.suggestion
            merged.append(replace(
                result,
                divergence=candidate.divergence,
                suggestion=suggestion or result.suggestion,
                similarity=candidate.similarity if suggestion else result.similarity,
            ))
            stats.divergences_flagged += 1
        elif candidate.suggestion is not None and (
            result.suggestion is None or candidate.similarity > result.similarity
        ):
            merged.append(replace(
                result,
                suggestion=candidate.suggestion,
                similarity=candidate.similarity,
            ))
            stats.suggestions_updated += 1
        else:
            merged.append(result)

    taken = {r.transaction.id for r in merged}
    for ghost in (r for r in new if r.is_ghost):
        ghost_id = ghost.transaction.id
        if ghost_id in taken:
            ghost_id = _unique_ghost_id(ghost_id, taken)
            ghost = replace(ghost, transaction=replace(ghost.transaction, id=ghost_id))
            stats.ghost_ids_renamed += 1
        taken.add(ghost_id)
        merged.append(ghost)
        stats.ghosts_added += 1

    return merged, stats


def merge_with_stats(
    prior: Iterable[MatchResult],
    new: Iterable[MatchResult],
    mode: ReconciliationMode,
    statement_ids: Optional[Sequence[str]] = None,
) -> Tuple[List[MatchResult], MergeStats]:
    prior = list(prior)
    new = list(new)
    if mode == ReconciliationMode.FULL:
        return _merge_full(prior, new, statement_ids)
    return _merge_additive(prior, new)


def merge_results(
    prior: Iterable[MatchResult],
    new: Iterable[MatchResult],
    mode: ReconciliationMode,
    statement_ids: Optional[Sequence[str]] = None,
) -> List[MatchResult]:
    """
    Merge a fresh matching pass into the prior results.

    FULL: the new results replace the prior ones, except manual results
    whose transaction id is in the statement (`statement_ids`, defaulting
    to the ids in `new`), which are kept in their place.

    ADDITIVE: prior identified, pending and manual results are kept as
    they are. A prior unidentified result is replaced only by an
    identified one. A divergent pass attaches its divergence and offers
    the fresh contributor as the suggestion; otherwise a better suggestion
    is copied over. New ghosts are appended, with colliding ids suffixed
    `~2`, `~3`, ...
    """
    return merge_with_stats(prior, new, mode, statement_ids)[0]


def filter_by_comparison(
    transactions: Iterable[Transaction],
    comparison_type: ComparisonType,
) -> List[Transaction]:
    """Keep the polarity being reconciled. Amount-less rows always pass."""
    if comparison_type == ComparisonType.BOTH:
        return list(transactions)
    if comparison_type == ComparisonType.INCOME:
        return [t for t in transactions if t.amount is None or t.amount >= 0]
    return [t for t in transactions if t.amount is None or t.amount < 0]


class IncrementalReconciliationController:
    """
    Coordinates extraction, matching and merging for one session.

    Holds no session state: prior results, registries and memories come in
    through the call and a complete outcome goes back out.
    """

    def __init__(
        self,
        selector: Optional[ExtractionStrategySelector] = None,
        engine: Optional[MatchingEngine] = None,
    ):
        self.selector = selector or ExtractionStrategySelector()
        self.engine = engine or MatchingEngine()

    def reconcile(
        self,
        prior_results: Iterable[MatchResult],
        inputs: ReconciliationInputs,
        context: Optional[ReconciliationContext] = None,
    ) -> ReconciliationOutcome:
        """
        Run one reconciliation.

        Args:
            prior_results: Results of the previous run (may be empty)
            inputs: New statement and/or contributor lists
            context: Options, units, models, associations, keywords

        Returns:
            ReconciliationOutcome; status MODEL_REQUIRED leaves the prior
            results untouched
        """
        context = context or ReconciliationContext()

        statement_result = None
        if inputs.statement is not None:
            statement_result = self.selector.extract(
                inputs.statement.content,
                inputs.statement.file_name,
                known_models=context.known_models,
                cleaning_keywords=context.cleaning_keywords,
                contribution_keywords=context.contribution_keywords,
                raw_binary_hint=inputs.statement.raw_binary_hint,
                kind=DocumentKind.STATEMENT,
            )

        list_results = [
            (source, self.selector.extract_contributors(
                source.content,
                source.file_name,
                known_models=context.known_models,
                cleaning_keywords=context.cleaning_keywords,
                contribution_keywords=context.contribution_keywords,
            ))
            for source in inputs.contributor_lists
        ]

        return self._complete(prior_results, inputs, context, statement_result, list_results)

    async def reconcile_async(
        self,
        prior_results: Iterable[MatchResult],
        inputs: ReconciliationInputs,
        context: Optional[ReconciliationContext] = None,
        ai_extractor: Optional[AIExtractor] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> ReconciliationOutcome:
        """Same as `reconcile`, with the AI extractor as extraction fallback."""
        context = context or ReconciliationContext()

        statement_result = None
        if inputs.statement is not None:
            statement_result = await self.selector.extract_async(
                inputs.statement.content,
                inputs.statement.file_name,
                known_models=context.known_models,
                cleaning_keywords=context.cleaning_keywords,
                contribution_keywords=context.contribution_keywords,
                raw_binary_hint=inputs.statement.raw_binary_hint,
                kind=DocumentKind.STATEMENT,
                ai_extractor=ai_extractor,
                progress=progress,
            )

        list_results = []
        for source in inputs.contributor_lists:
            result = await self.selector.extract_async(
                source.content,
                source.file_name,
                known_models=context.known_models,
                cleaning_keywords=context.cleaning_keywords,
                contribution_keywords=context.contribution_keywords,
                raw_binary_hint=source.raw_binary_hint,
                kind=DocumentKind.CONTRIBUTOR_LIST,
                ai_extractor=ai_extractor,
                progress=progress,
            )
            list_results.append((source, result))

        return self._complete(prior_results, inputs, context, statement_result, list_results)

    # ------------------------------------------------------------------
    # Shared pipeline
    # ------------------------------------------------------------------

    def _complete(
        self,
        prior_results: Iterable[MatchResult],
        inputs: ReconciliationInputs,
        context: ReconciliationContext,
        statement_result: Optional[ExtractionResult],
        list_results: List[Tuple[ContributorListFile, ExtractionResult]],
    ) -> ReconciliationOutcome:
        prior = list(prior_results)
        mode = ReconciliationMode.FULL if inputs.has_statement else ReconciliationMode.ADDITIVE
        audit = AuditLogger(run_id=str(uuid4()))
        outcome = ReconciliationOutcome(mode=mode)

        logger.info(
            "Starting reconciliation",
            mode=mode.value,
            prior_results=len(prior),
            contributor_lists=len(inputs.contributor_lists),
            run_id=audit.run_id,
        )

        if statement_result is not None:
            self._record_extraction(statement_result, outcome, audit)
            if not statement_result.ok:
                outcome.status = ExtractionStatus.MODEL_REQUIRED
                outcome.results = prior
                outcome.report = build_report(prior)
                outcome.audit_log = list(audit.entries)
                logger.warning(
                    "Statement needs a file model; prior results kept",
                    file_name=statement_result.file_name,
                )
                return outcome

        groups = list(inputs.contributor_groups)
        for source, result in list_results:
            self._record_extraction(result, outcome, audit)
            if result.ok:
                groups.append(ContributorGroup(
                    unit=source.unit,
                    contributors=result.contributors,
                    file_name=source.file_name,
                ))

        units = list(context.units) + [g.unit for g in groups]

        if mode == ReconciliationMode.FULL:
            transactions = list(statement_result.transactions) if statement_result else []
            transactions.extend(inputs.transactions or [])
            transactions = filter_by_comparison(transactions, context.comparison_type)

            manual_ids = {r.transaction.id for r in prior if r.is_manual}
            run = self.engine.match_detailed(
                [t for t in transactions if t.id not in manual_ids],
                groups,
                options=context.options,
                learned_associations=context.learned_associations,
                units=units,
                cleaning_keywords=context.cleaning_keywords,
                owner_id=context.owner_id,
            )
            results, stats = merge_with_stats(
                prior,
                run.results,
                mode,
                statement_ids=[t.id for t in transactions],
            )
        else:
            targets = [
                r.transaction for r in prior
                if r.status == ReconciliationStatus.UNIDENTIFIED
                and not r.is_manual
                and not r.is_ghost
            ]
            targets = filter_by_comparison(targets, context.comparison_type)
            if not groups:
                logger.info("No new contributor lists; prior results kept")
                results, stats = prior, MergeStats()
                run = None
            else:
                run = self.engine.match_detailed(
                    targets,
                    groups,
                    options=context.options,
                    learned_associations=context.learned_associations,
                    units=units,
                    cleaning_keywords=context.cleaning_keywords,
                    owner_id=context.owner_id,
                    identified_only=True,
                )
                results, stats = merge_with_stats(prior, run.results, mode)

        if run is not None:
            audit.log_many(run.audit_entries)
        self._record_merge(mode, prior, results, stats, audit)

        outcome.results = results
        outcome.report = build_report(results)
        outcome.audit_log = list(audit.entries)

        logger.info(
            "Reconciliation complete",
            mode=mode.value,
            results=len(results),
            identified=outcome.report.summary.identified_count,
            unidentified=outcome.report.summary.unidentified_count,
            pending=outcome.report.summary.pending_count,
            run_id=audit.run_id,
        )
        return outcome

    def _record_extraction(
        self,
        result: ExtractionResult,
        outcome: ReconciliationOutcome,
        audit: AuditLogger,
    ) -> None:
        outcome.warnings.extend(result.warnings)

        if not result.ok:
            outcome.models_required.append(result.model_context or {"file_name": result.file_name})
            audit.record(
                AuditAction.MODEL_REQUIRED,
                "File needs a trained model",
                file_name=result.file_name,
            )
            return

        outcome.extraction_methods[result.file_name] = result.method
        if result.method == AI_METHOD:
            audit.record(
                AuditAction.AI_FALLBACK_USED,
                "AI extractor used as fallback",
                file_name=result.file_name,
                rows=len(result.transactions),
            )
        audit.record(
            AuditAction.FILE_EXTRACTED,
            "File extracted",
            file_name=result.file_name,
            method=result.method,
            rows=len(result.transactions),
            confidence=round(result.confidence, 3),
        )
        if result.skipped_rows:
            audit.record(
                AuditAction.ROW_SKIPPED,
                "Malformed rows skipped",
                file_name=result.file_name,
                count=result.skipped_rows,
            )

    def _record_merge(
        self,
        mode: ReconciliationMode,
        prior: List[MatchResult],
        results: List[MatchResult],
        stats: MergeStats,
        audit: AuditLogger,
    ) -> None:
        if mode == ReconciliationMode.ADDITIVE and stats.upgraded:
            before = {r.transaction.id: r.status for r in prior}
            upgraded = [
                r.transaction.id for r in results
                if before.get(r.transaction.id) == ReconciliationStatus.UNIDENTIFIED
                and r.status == ReconciliationStatus.IDENTIFIED
                and not r.is_manual
            ]
            audit.record(
                AuditAction.ADDITIVE_UPGRADE,
                "Unidentified results upgraded by new contributor lists",
                transaction_ids=upgraded,
                count=stats.upgraded,
                suggestions_updated=stats.suggestions_updated,
                ghosts_added=stats.ghosts_added,
            )
        if stats.divergences_flagged:
            logger.info(
                "Learned associations diverge from new contributor lists",
                count=stats.divergences_flagged,
            )

        if stats.manual_preserved or stats.manual_dropped:
            audit.record(
                AuditAction.MANUAL_PRESERVED,
                "Manual results carried over",
                preserved=stats.manual_preserved,
                dropped=stats.manual_dropped,
            )
            if stats.manual_dropped:
                logger.info(
                    "Manual results dropped; their transactions left the statement",
                    count=stats.manual_dropped,
                )
