"""
Manual override and divergence resolution.

Pure functions: each returns new MatchResult objects and leaves its input
alone. Allowed status changes:

    NÃO IDENTIFICADO -> IDENTIFICADO      identify_manually / identify_bulk
    PENDENTE         -> IDENTIFICADO      identify_manually / associate_pending
    IDENTIFICADO     -> DIVERGENTE        matching engine only
    DIVERGENTE       -> IDENTIFICADO      confirm_divergence / reject_divergence
    DIVERGENTE       -> NÃO IDENTIFICADO  reject_divergence without a contributor
    IDENTIFICADO     -> NÃO IDENTIFICADO  reopen

Every manual confirmation is upserted into the learned memory when one is
supplied.
"""

from dataclasses import replace
from decimal import Decimal
from typing import Iterable, List, Optional

import structlog

from ..exceptions import InvalidTransitionError
from ..models import (
    PLACEHOLDER_CHURCH,
    Church,
    Contributor,
    MatchMethod,
    MatchResult,
    ReconciliationStatus,
)
from ..utils.text_normalizer import normalize
from .learned_memory import LearnedAssociationMemory

logger = structlog.get_logger()

IDENTIFIED = ReconciliationStatus.IDENTIFIED
UNIDENTIFIED = ReconciliationStatus.UNIDENTIFIED
PENDING = ReconciliationStatus.PENDING
DIVERGENT = ReconciliationStatus.DIVERGENT

ALLOWED_TRANSITIONS = {
    (UNIDENTIFIED, IDENTIFIED),
    (PENDING, IDENTIFIED),
    (IDENTIFIED, DIVERGENT),
    (DIVERGENT, IDENTIFIED),
    (DIVERGENT, UNIDENTIFIED),
    (IDENTIFIED, UNIDENTIFIED),
}


def check_transition(result: MatchResult, target: ReconciliationStatus) -> None:
    """Raise InvalidTransitionError unless result may move to target."""
    if (result.status, target) not in ALLOWED_TRANSITIONS:
        raise InvalidTransitionError(result.status, target, result.transaction.id)


def _learn(
    memory: Optional[LearnedAssociationMemory],
    result: MatchResult,
    owner_id: Optional[str],
) -> None:
    if memory is None or result.is_ghost:
        return
    memory.upsert(result.transaction.description, result.contributor, result.church, owner_id)


def _contributor_from_transaction(result: MatchResult) -> Contributor:
    tx = result.transaction
    name = tx.cleaned_description or tx.description
    return Contributor(
        name=name,
        amount=tx.amount if tx.amount is not None else (result.contributor_amount or Decimal("0.00")),
        cleaned_name=name,
        normalized_name=normalize(name),
        date=tx.date,
        original_amount=tx.original_amount,
        contribution_type=tx.contribution_type,
    )


def _manual(result: MatchResult, church: Church, contributor: Contributor) -> MatchResult:
    return replace(
        result,
        church=church,
        contributor=contributor,
        status=IDENTIFIED,
        match_method=MatchMethod.MANUAL,
        similarity=100.0,
        divergence=None,
        suggestion=None,
        contributor_amount=contributor.amount,
        contribution_type=contributor.contribution_type or result.contribution_type,
    )


def identify_manually(
    result: MatchResult,
    church: Optional[Church] = None,
    contributor: Optional[Contributor] = None,
    memory: Optional[LearnedAssociationMemory] = None,
    owner_id: Optional[str] = None,
) -> MatchResult:
    """
    Attribute a result to a church (and contributor) by hand.

    Without a contributor, one is built from the transaction itself so the
    identified result always names who paid. A ghost keeps its own church
    and contributor unless others are given.
    """
    check_transition(result, IDENTIFIED)

    church = church or (result.church if result.is_ghost else None)
    if church is None or church.is_placeholder:
        raise InvalidTransitionError(result.status, IDENTIFIED, result.transaction.id)

    if contributor is None:
        contributor = result.contributor if result.is_ghost else _contributor_from_transaction(result)

    updated = _manual(result, church, contributor)
    _learn(memory, updated, owner_id)

    logger.info(
        "Result identified manually",
        transaction_id=result.transaction.id,
        church_id=church.id,
        previous_status=result.status.value,
    )
    return updated


def identify_bulk(
    results: Iterable[MatchResult],
    transaction_ids: Iterable[str],
    church: Church,
    memory: Optional[LearnedAssociationMemory] = None,
    owner_id: Optional[str] = None,
) -> List[MatchResult]:
    """
    Identify several results for the same church.

    All targets are validated before anything changes. Results not listed
    are returned as they are.
    """
    results = list(results)
    wanted = set(transaction_ids)

    if church.is_placeholder:
        raise InvalidTransitionError(UNIDENTIFIED, IDENTIFIED)
    for result in results:
        if result.transaction.id in wanted:
            check_transition(result, IDENTIFIED)

    updated = []
    for result in results:
        if result.transaction.id in wanted:
            updated.append(identify_manually(result, church, memory=memory, owner_id=owner_id))
        else:
            updated.append(result)

    logger.info("Bulk identification", count=len(wanted), church_id=church.id)
    return updated


def confirm_divergence(
    result: MatchResult,
    memory: Optional[LearnedAssociationMemory] = None,
    owner_id: Optional[str] = None,
) -> MatchResult:
    """
    Accept the freshly computed assignment over the learned one.

    A divergent result becomes a manual identification and the memory is
    re-pointed. An unidentified result carrying a divergence only has the
    divergence cleared.
    """
    if result.divergence is None:
        raise InvalidTransitionError(result.status, IDENTIFIED, result.transaction.id)

    if result.status == UNIDENTIFIED:
        logger.info("Divergence dismissed", transaction_id=result.transaction.id)
        return replace(result, divergence=None)

    check_transition(result, IDENTIFIED)
    updated = _manual(result, result.church, result.contributor)
    _learn(memory, updated, owner_id)

    logger.info(
        "Divergence confirmed",
        transaction_id=result.transaction.id,
        church_id=updated.church.id,
        expected_church=result.divergence.expected_church.id,
    )
    return updated


def reject_divergence(
    result: MatchResult,
    memory: Optional[LearnedAssociationMemory] = None,
    owner_id: Optional[str] = None,
) -> MatchResult:
    """
    Keep the learned assignment.

    Restores the expected church with its contributor when that contributor
    is still known; otherwise falls back to unidentified with the
    contributor cleared.
    """
    divergence = result.divergence
    if divergence is None or result.status not in (DIVERGENT, UNIDENTIFIED):
        raise InvalidTransitionError(result.status, IDENTIFIED, result.transaction.id)

    if divergence.expected_contributor is not None and not divergence.expected_church.is_placeholder:
        check_transition(result, IDENTIFIED)
        updated = _manual(result, divergence.expected_church, divergence.expected_contributor)
        _learn(memory, updated, owner_id)
        logger.info(
            "Divergence rejected, learned church restored",
            transaction_id=result.transaction.id,
            church_id=divergence.expected_church.id,
        )
        return updated

    if result.status == DIVERGENT:
        check_transition(result, UNIDENTIFIED)
    logger.info("Divergence rejected, result unidentified", transaction_id=result.transaction.id)
    return replace(
        result,
        church=PLACEHOLDER_CHURCH,
        contributor=None,
        status=UNIDENTIFIED,
        match_method=None,
        similarity=0.0,
        divergence=None,
        contributor_amount=None,
    )


def reopen(result: MatchResult) -> MatchResult:
    """
    Explicitly re-open an identified result (manual or not).

    The former contributor is kept as a suggestion.
    """
    check_transition(result, UNIDENTIFIED)
    logger.info(
        "Result reopened",
        transaction_id=result.transaction.id,
        previous_method=result.match_method.value if result.match_method else None,
    )
    return replace(
        result,
        church=PLACEHOLDER_CHURCH,
        contributor=None,
        status=UNIDENTIFIED,
        match_method=None,
        similarity=0.0,
        divergence=None,
        suggestion=result.contributor,
        contributor_amount=None,
    )


def associate_pending(
    results: Iterable[MatchResult],
    ghost_transaction_id: str,
    transaction_id: str,
    memory: Optional[LearnedAssociationMemory] = None,
    owner_id: Optional[str] = None,
) -> List[MatchResult]:
    """
    Bind a pending ghost to the real transaction it turned out to be.

    The transaction takes the ghost's church and contributor as a manual
    identification and the ghost disappears from the result set.
    """
    results = list(results)
    ghost = next((r for r in results if r.transaction.id == ghost_transaction_id), None)
    target = next((r for r in results if r.transaction.id == transaction_id), None)

    if ghost is None or target is None:
        missing = ghost_transaction_id if ghost is None else transaction_id
        raise KeyError(f"No result for transaction {missing}")
    if ghost.status != PENDING:
        raise InvalidTransitionError(ghost.status, IDENTIFIED, ghost_transaction_id)
    if target.is_ghost:
        raise InvalidTransitionError(target.status, IDENTIFIED, transaction_id)
    check_transition(target, IDENTIFIED)

    identified = _manual(target, ghost.church, ghost.contributor)
    _learn(memory, identified, owner_id)

    logger.info(
        "Pending contribution associated",
        ghost_id=ghost_transaction_id,
        transaction_id=transaction_id,
        church_id=ghost.church.id,
    )
    return [
        identified if r is target else r
        for r in results
        if r is not ghost
    ]
