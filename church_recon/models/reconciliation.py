"""Reconciliation result models."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any
from uuid import uuid4

from pydantic import BaseModel, Field

from .enums import (
    AuditAction,
    ComparisonType,
    ExtractionStatus,
    MatchMethod,
    ReconciliationMode,
    ReconciliationStatus,
)
from .transaction import Church, Contributor, ContributorGroup, Transaction, PLACEHOLDER_CHURCH


class MatchOptions(BaseModel):
    """Per-invocation matching options. The engine keeps no config of its own."""
    model_config = {"frozen": True}

    similarity_threshold: float = Field(default=55, ge=0, le=100)
    day_tolerance: int = Field(default=2, ge=0)
    # Unmatched transactions keep their best candidate as a suggestion above this score
    suggestion_floor: float = Field(default=40, ge=0, le=100)

    @classmethod
    def from_settings(cls, settings=None) -> "MatchOptions":
        """Build options from the environment defaults."""
        from ..config import get_settings

        settings = settings or get_settings()
        return cls(
            similarity_threshold=settings.similarity_threshold,
            day_tolerance=settings.day_tolerance,
            suggestion_floor=settings.suggestion_floor,
        )


@dataclass(frozen=True)
class Divergence:
    """
    Conflict between a learned association and a fresh match.

    expected_church is where the learned memory points; actual_church is
    what the similarity pass selected (placeholder when it found nothing).
    """
    expected_church: Church
    actual_church: Church = PLACEHOLDER_CHURCH
    expected_contributor: Optional[Contributor] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "expected_church": self.expected_church.to_dict(),
            "actual_church": self.actual_church.to_dict(),
            "expected_contributor": (
                self.expected_contributor.to_dict() if self.expected_contributor else None
            ),
        }


@dataclass(frozen=True)
class MatchResult:
    """
    One row of reconciliation output.

    Exactly one primary result exists per bank transaction; ghost results
    (status PENDING) represent expected contributions that never arrived.
    Override operations produce new instances instead of mutating.
    """
    transaction: Transaction
    church: Church = PLACEHOLDER_CHURCH
    status: ReconciliationStatus = ReconciliationStatus.UNIDENTIFIED
    contributor: Optional[Contributor] = None
    match_method: Optional[MatchMethod] = None
    similarity: float = 0.0
    divergence: Optional[Divergence] = None
    suggestion: Optional[Contributor] = None
    contributor_amount: Optional[Decimal] = None
    contribution_type: Optional[str] = None

    @property
    def is_ghost(self) -> bool:
        return self.status == ReconciliationStatus.PENDING or self.transaction.is_ghost

    @property
    def is_manual(self) -> bool:
        return self.match_method == MatchMethod.MANUAL

    @property
    def bank_amount(self) -> Decimal:
        """Amount that actually moved through the bank (zero for ghosts)."""
        if self.is_ghost or self.transaction.amount is None:
            return Decimal("0.00")
        return self.transaction.amount

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "transaction": self.transaction.to_dict(),
            "church": self.church.to_dict(),
            "status": self.status.value,
            "contributor": self.contributor.to_dict() if self.contributor else None,
            "match_method": self.match_method.value if self.match_method else None,
            "similarity": self.similarity,
            "divergence": self.divergence.to_dict() if self.divergence else None,
            "suggestion": self.suggestion.to_dict() if self.suggestion else None,
            "contributor_amount": (
                str(self.contributor_amount) if self.contributor_amount is not None else None
            ),
            "contribution_type": self.contribution_type,
        }


@dataclass(frozen=True)
class LearnedAssociation:
    """Description -> contributor/church mapping learned from a confirmation."""
    normalized_description: str
    contributor_normalized_name: str
    church_id: str
    owner_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "normalized_description": self.normalized_description,
            "contributor_normalized_name": self.contributor_normalized_name,
            "church_id": self.church_id,
            "owner_id": self.owner_id,
        }


@dataclass
class AuditEntry:
    """An entry in the audit log."""
    id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=datetime.utcnow)

    # Action
    action: AuditAction = AuditAction.FILE_EXTRACTED

    # Context
    transaction_ids: List[str] = field(default_factory=list)
    file_name: Optional[str] = None

    # Details
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    # Outcome
    success: bool = True


@dataclass
class ReconciliationSummary:
    """Summary totals. Ghost rows never count towards bank movement."""
    # Counts
    total_transactions: int = 0
    identified_count: int = 0
    unidentified_count: int = 0
    divergent_count: int = 0
    pending_count: int = 0
    manual_count: int = 0

    # Amounts
    total_income: Decimal = Decimal("0.00")
    total_expenses: Decimal = Decimal("0.00")
    identified_income: Decimal = Decimal("0.00")
    unidentified_income: Decimal = Decimal("0.00")
    pending_expected: Decimal = Decimal("0.00")
    income_by_church: Dict[str, Decimal] = field(default_factory=dict)

    @property
    def identification_rate(self) -> float:
        """Percentage of bank transactions identified."""
        if self.total_transactions == 0:
            return 0.0
        return (self.identified_count / self.total_transactions) * 100


@dataclass
class ReconciliationReport:
    """Reporting snapshot: income grouped by church, expenses in one group."""
    income: Dict[str, List[MatchResult]] = field(default_factory=dict)
    expenses: Dict[str, List[MatchResult]] = field(default_factory=dict)
    summary: ReconciliationSummary = field(default_factory=ReconciliationSummary)


@dataclass
class ReconciliationOutcome:
    """Complete result of one controller invocation."""
    mode: ReconciliationMode
    status: ExtractionStatus = ExtractionStatus.OK
    results: List[MatchResult] = field(default_factory=list)
    report: ReconciliationReport = field(default_factory=ReconciliationReport)

    # file name -> extraction method that produced its rows
    extraction_methods: Dict[str, str] = field(default_factory=dict)
    # Files that need a trained model, with the context for training
    models_required: List[Dict[str, Any]] = field(default_factory=list)

    audit_log: List[AuditEntry] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class SourceFile:
    """A decoded bank statement handed to the controller."""
    file_name: str
    content: Any  # text, page texts or tokenized rows
    raw_binary_hint: Any = None


@dataclass
class ContributorListFile:
    """A decoded contributor list attributed to one church."""
    unit: Church
    file_name: str
    content: Any
    raw_binary_hint: Any = None


@dataclass
class ReconciliationInputs:
    """
    New input for one controller invocation.

    A statement (file or already-extracted transactions) selects full
    mode; without one the run is additive.
    """
    statement: Optional[SourceFile] = None
    transactions: Optional[List[Transaction]] = None
    contributor_lists: List[ContributorListFile] = field(default_factory=list)
    contributor_groups: List[ContributorGroup] = field(default_factory=list)

    @property
    def has_statement(self) -> bool:
        return self.statement is not None or self.transactions is not None


@dataclass
class ReconciliationContext:
    """Caller-owned state and configuration for one invocation."""
    options: MatchOptions = field(default_factory=MatchOptions)
    units: List[Church] = field(default_factory=list)
    known_models: List[Any] = field(default_factory=list)  # FileModel
    learned_associations: Any = ()  # LearnedAssociationMemory or iterable of LearnedAssociation
    cleaning_keywords: List[str] = field(default_factory=list)
    # None keeps the built-in contribution categories
    contribution_keywords: Optional[List[str]] = None
    comparison_type: ComparisonType = ComparisonType.BOTH
    owner_id: Optional[str] = None

    @classmethod
    def from_settings(cls, settings=None, **overrides) -> "ReconciliationContext":
        """Context seeded with the environment's options and keyword lists."""
        from ..config import get_settings

        settings = settings or get_settings()
        values = {
            "options": MatchOptions.from_settings(settings),
            "cleaning_keywords": list(settings.ignored_keywords),
            "contribution_keywords": list(settings.contribution_keywords),
        }
        values.update(overrides)
        return cls(**values)
