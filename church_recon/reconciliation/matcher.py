"""
Matching Engine - pairs bank transactions with expected contributions.

For each transaction:
1. Learned association for the normalized description, if its contributor
   is still eligible (LEARNED, similarity 100). A learned target that is no
   longer eligible is surfaced as a divergence, never dropped silently.
2. Otherwise the best eligible candidate by name similarity. Eligible means
   exact signed amount and date within the day tolerance.
3. Ties: higher similarity, then smaller date delta, then list order.
4. Contributors never selected become PENDING ghosts.
"""

import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Set, Tuple

import structlog

from ..models import (
    GHOST_PREFIX,
    PLACEHOLDER_CHURCH,
    AuditAction,
    AuditEntry,
    Church,
    Contributor,
    ContributorGroup,
    Divergence,
    LearnedAssociation,
    MatchMethod,
    MatchOptions,
    MatchResult,
    ReconciliationStatus,
    Transaction,
)
from ..utils.text_normalizer import clean_description, normalize
from ..utils.text_similarity import name_similarity
from .learned_memory import LearnedAssociationMemory

logger = structlog.get_logger()

# Undated contributors rank after any dated one on the date tie-break
_UNDATED = 10 ** 6


@dataclass
class Candidate:
    """A contributor entry flattened out of its group."""
    contributor: Contributor
    unit: Church
    position: int       # insertion order across all groups
    unit_index: int     # position within the unit, for ghost ids
    key: str            # normalized name
    file_name: Optional[str] = None


@dataclass
class ScoredCandidate:
    candidate: Candidate
    similarity: float
    days_apart: Optional[int]

    @property
    def rank(self) -> Tuple[float, int, int]:
        days = self.days_apart if self.days_apart is not None else _UNDATED
        return (-self.similarity, days, self.candidate.position)


@dataclass
class MatchRun:
    """Result of one matching pass."""
    results: List[MatchResult]
    audit_entries: List[AuditEntry] = field(default_factory=list)
    stats: Dict[str, int] = field(default_factory=dict)

    @property
    def primary(self) -> List[MatchResult]:
        return [r for r in self.results if not r.is_ghost]

    @property
    def ghosts(self) -> List[MatchResult]:
        return [r for r in self.results if r.is_ghost]


def ghost_id(unit: Church, index: int, normalized_name: str) -> str:
    slug = re.sub(r"\s+", "-", normalized_name) or "sem-nome"
    return f"{GHOST_PREFIX}{unit.id}-{index}-{slug}"


class LearnedIndex:
    """
    Learned associations, looked up with the keywords they were stored with.

    A LearnedAssociationMemory keys descriptions and contributor names with
    its own ignored keywords and resolves owner precedence itself; a plain
    iterable of associations is keyed with the run's cleaning keywords.
    """

    def __init__(self, learned_associations=(), keywords: Iterable[str] = (), owner_id: Optional[str] = None):
        self.keywords = list(keywords)
        self.owner_id = owner_id
        self.memory: Optional[LearnedAssociationMemory] = None
        self._by_key: Dict[str, LearnedAssociation] = {}
        if isinstance(learned_associations, LearnedAssociationMemory):
            self.memory = learned_associations
        else:
            for association in learned_associations or ():
                self._by_key.setdefault(association.normalized_description, association)

    def __len__(self) -> int:
        return len(self.memory) if self.memory is not None else len(self._by_key)

    def find(self, description: str) -> Optional[LearnedAssociation]:
        if self.memory is not None:
            key = self.memory.key_for(description)
            return self.memory.visible(key, self.owner_id) if key else None
        key = normalize(description, self.keywords)
        return self._by_key.get(key) if key else None

    def contributor_key(self, contributor: Contributor) -> str:
        if self.memory is not None:
            return self.memory.key_for(contributor.name)
        return normalize(contributor.name, self.keywords)


class MatchingEngine:
    """
    Contribution matching engine.

    Stateless between calls: options, associations and keywords are passed
    per invocation. Inputs are never mutated.
    """

    def __init__(self, options: Optional[MatchOptions] = None):
        self.options = options

    def match(
        self,
        transactions: Iterable[Transaction],
        contributor_groups: Iterable[ContributorGroup],
        options: Optional[MatchOptions] = None,
        learned_associations=(),
        units: Iterable[Church] = (),
        cleaning_keywords: Iterable[str] = (),
        owner_id: Optional[str] = None,
        identified_only: bool = False,
    ) -> List[MatchResult]:
        """
        Match transactions against contributor lists.

        Args:
            learned_associations: LearnedAssociationMemory or iterable of
                LearnedAssociation
            owner_id: Scope for memory lookups
            identified_only: Only IDENTIFIED results claim their contributor;
                a divergent pick becomes a ghost too. Used by additive runs,
                where a divergent result is kept as a suggestion.

        Returns:
            One primary result per transaction in input order, followed by
            ghost results for contributors nobody selected
        """
        return self.match_detailed(
            transactions,
            contributor_groups,
            options=options,
            learned_associations=learned_associations,
            units=units,
            cleaning_keywords=cleaning_keywords,
            owner_id=owner_id,
            identified_only=identified_only,
        ).results

    def match_detailed(
        self,
        transactions: Iterable[Transaction],
        contributor_groups: Iterable[ContributorGroup],
        options: Optional[MatchOptions] = None,
        learned_associations=(),
        units: Iterable[Church] = (),
        cleaning_keywords: Iterable[str] = (),
        owner_id: Optional[str] = None,
        identified_only: bool = False,
    ) -> MatchRun:
        """Same as `match`, with audit entries and counters."""
        options = options or self.options or MatchOptions.from_settings()
        keywords = list(cleaning_keywords)
        transactions = list(transactions)
        groups = list(contributor_groups)

        candidates = self._flatten(groups, keywords)
        unit_lookup = self._unit_lookup(units, groups)
        associations = LearnedIndex(learned_associations, keywords, owner_id)

        logger.info(
            "Starting matching",
            transactions=len(transactions),
            contributors=len(candidates),
            associations=len(associations),
            threshold=options.similarity_threshold,
            day_tolerance=options.day_tolerance,
        )

        results: List[MatchResult] = []
        audit_entries: List[AuditEntry] = []
        selected: Set[int] = set()
        stats = {
            "identified": 0,
            "learned": 0,
            "unidentified": 0,
            "divergent": 0,
            "malformed": 0,
            "ghosts": 0,
        }

        for tx in transactions:
            if tx.is_malformed:
                stats["malformed"] += 1
                stats["unidentified"] += 1
                results.append(MatchResult(transaction=tx))
                continue

            key = normalize(tx.description, keywords)
            scored = self._score(tx, key, candidates, options)
            learned = associations.find(tx.description)

            if learned is not None:
                result, chosen = self._apply_learned(
                    tx, learned, scored, options, candidates, unit_lookup, associations, identified_only,
                )
            else:
                result, chosen = self._fresh_result(tx, scored, options)

            selected.update(chosen)
            results.append(result)

            if result.status == ReconciliationStatus.IDENTIFIED:
                stats["identified"] += 1
                if result.match_method == MatchMethod.LEARNED:
                    stats["learned"] += 1
            elif result.status == ReconciliationStatus.DIVERGENT:
                stats["divergent"] += 1
            else:
                stats["unidentified"] += 1

            if result.divergence is not None:
                audit_entries.append(AuditEntry(
                    action=AuditAction.DIVERGENCE_DETECTED,
                    transaction_ids=[tx.id],
                    message="Learned association no longer matches",
                    details={
                        "expected_church": result.divergence.expected_church.id,
                        "actual_church": result.divergence.actual_church.id,
                        "status": result.status.value,
                    },
                ))

        ghosts = self._ghosts(candidates, selected)
        stats["ghosts"] = len(ghosts)
        results.extend(ghosts)

        if stats["learned"]:
            audit_entries.append(AuditEntry(
                action=AuditAction.LEARNED_MATCH,
                message="Transactions identified from learned associations",
                details={"count": stats["learned"]},
            ))
        automatic = stats["identified"] - stats["learned"]
        if automatic:
            audit_entries.append(AuditEntry(
                action=AuditAction.AUTOMATIC_MATCH,
                message="Transactions identified by similarity",
                details={"count": automatic},
            ))
        if ghosts:
            audit_entries.append(AuditEntry(
                action=AuditAction.GHOST_CREATED,
                transaction_ids=[g.transaction.id for g in ghosts],
                message="Expected contributions missing from the statement",
                details={"count": len(ghosts)},
            ))

        logger.info("Matching complete", **stats)
        return MatchRun(results=results, audit_entries=audit_entries, stats=stats)

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def _flatten(self, groups: List[ContributorGroup], keywords: List[str]) -> List[Candidate]:
        candidates = []
        per_unit: Dict[str, int] = {}
        for group in groups:
            for contributor in group.contributors:
                unit_index = per_unit.get(group.unit.id, 0)
                per_unit[group.unit.id] = unit_index + 1
                candidates.append(Candidate(
                    contributor=contributor,
                    unit=group.unit,
                    position=len(candidates),
                    unit_index=unit_index,
                    key=normalize(contributor.name, keywords),
                    file_name=group.file_name,
                ))
        return candidates

    @staticmethod
    def _unit_lookup(units: Iterable[Church], groups: List[ContributorGroup]) -> Dict[str, Church]:
        lookup = {unit.id: unit for unit in units}
        for group in groups:
            lookup.setdefault(group.unit.id, group.unit)
        return lookup

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    @staticmethod
    def _eligible(tx: Transaction, contributor: Contributor, day_tolerance: int) -> Tuple[bool, Optional[int]]:
        if contributor.amount is None or contributor.amount != tx.amount:
            return False, None
        if contributor.date is None:
            return True, None
        days_apart = abs((contributor.date - tx.date).days)
        return days_apart <= day_tolerance, days_apart

    def _score(
        self,
        tx: Transaction,
        key: str,
        candidates: List[Candidate],
        options: MatchOptions,
    ) -> List[ScoredCandidate]:
        """Eligible candidates, best first."""
        scored = []
        for candidate in candidates:
            eligible, days_apart = self._eligible(tx, candidate.contributor, options.day_tolerance)
            if not eligible:
                continue
            scored.append(ScoredCandidate(
                candidate=candidate,
                similarity=name_similarity(key, candidate.key),
                days_apart=days_apart,
            ))
        scored.sort(key=lambda s: s.rank)
        return scored

    def _fresh_result(
        self,
        tx: Transaction,
        scored: List[ScoredCandidate],
        options: MatchOptions,
    ) -> Tuple[MatchResult, List[int]]:
        best = scored[0] if scored else None

        if best is not None and best.similarity >= options.similarity_threshold:
            contributor = best.candidate.contributor
            return MatchResult(
                transaction=tx,
                church=best.candidate.unit,
                status=ReconciliationStatus.IDENTIFIED,
                contributor=contributor,
                match_method=MatchMethod.AUTOMATIC,
                similarity=round(best.similarity, 2),
                contributor_amount=contributor.amount,
                contribution_type=contributor.contribution_type or tx.contribution_type,
            ), [best.candidate.position]

        suggestion = None
        similarity = 0.0
        if best is not None and best.similarity > options.suggestion_floor:
            suggestion = best.candidate.contributor
            similarity = round(best.similarity, 2)

        return MatchResult(
            transaction=tx,
            suggestion=suggestion,
            similarity=similarity,
            contribution_type=tx.contribution_type,
        ), []

    def _apply_learned(
        self,
        tx: Transaction,
        learned: LearnedAssociation,
        scored: List[ScoredCandidate],
        options: MatchOptions,
        candidates: List[Candidate],
        unit_lookup: Dict[str, Church],
        associations: LearnedIndex,
        identified_only: bool = False,
    ) -> Tuple[MatchResult, List[int]]:
        def is_target(candidate: Candidate) -> bool:
            return candidate.unit.id == learned.church_id and learned.contributor_normalized_name in (
                candidate.key,
                candidate.contributor.normalized_name,
                associations.contributor_key(candidate.contributor),
            )

        # Eligible targets, already in tie-break order
        targets = [s for s in scored if is_target(s.candidate)]
        if targets:
            target = min(targets, key=lambda s: (s.days_apart if s.days_apart is not None else _UNDATED, s.candidate.position))
            contributor = target.candidate.contributor
            return MatchResult(
                transaction=tx,
                church=target.candidate.unit,
                status=ReconciliationStatus.IDENTIFIED,
                contributor=contributor,
                match_method=MatchMethod.LEARNED,
                similarity=100.0,
                contributor_amount=contributor.amount,
                contribution_type=contributor.contribution_type or tx.contribution_type,
            ), [target.candidate.position]

        fresh, chosen = self._fresh_result(tx, scored, options)

        expected_church = unit_lookup.get(learned.church_id) or Church(
            id=learned.church_id, name=learned.church_id
        )
        expected = next((c for c in candidates if is_target(c)), None)
        divergence = Divergence(
            expected_church=expected_church,
            actual_church=fresh.church if fresh.status == ReconciliationStatus.IDENTIFIED else PLACEHOLDER_CHURCH,
            expected_contributor=expected.contributor if expected else None,
        )
        if identified_only:
            chosen = []
        if expected is not None:
            chosen = chosen + [expected.position]

        logger.info(
            "Learned association diverges",
            transaction_id=tx.id,
            expected_church=expected_church.id,
            actual_church=divergence.actual_church.id,
        )

        if fresh.status == ReconciliationStatus.IDENTIFIED:
            return MatchResult(
                transaction=tx,
                church=fresh.church,
                status=ReconciliationStatus.DIVERGENT,
                contributor=fresh.contributor,
                match_method=MatchMethod.AUTOMATIC,
                similarity=fresh.similarity,
                divergence=divergence,
                contributor_amount=fresh.contributor_amount,
                contribution_type=fresh.contribution_type,
            ), chosen

        return MatchResult(
            transaction=tx,
            status=ReconciliationStatus.UNIDENTIFIED,
            similarity=fresh.similarity,
            suggestion=fresh.suggestion,
            divergence=divergence,
            contribution_type=fresh.contribution_type,
        ), chosen

    # ------------------------------------------------------------------
    # Ghosts
    # ------------------------------------------------------------------

    def _ghosts(self, candidates: List[Candidate], selected: Set[int]) -> List[MatchResult]:
        ghosts = []
        for candidate in candidates:
            if candidate.position in selected:
                continue
            contributor = candidate.contributor
            tx = Transaction(
                id=ghost_id(candidate.unit, candidate.unit_index, candidate.key),
                date=contributor.date,
                description=contributor.name,
                amount=Decimal("0.00"),
                cleaned_description=contributor.cleaned_name or clean_description(contributor.name),
                original_amount=contributor.original_amount,
                contribution_type=contributor.contribution_type,
                source_file=candidate.file_name,
            )
            ghosts.append(MatchResult(
                transaction=tx,
                church=candidate.unit,
                status=ReconciliationStatus.PENDING,
                contributor=contributor,
                contributor_amount=contributor.amount,
                contribution_type=contributor.contribution_type,
            ))
        return ghosts
