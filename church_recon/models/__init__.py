"""Data models for the contribution reconciliation system."""

from .enums import (
    AuditAction,
    ComparisonType,
    DocumentKind,
    ExtractionStatus,
    MatchMethod,
    ModelStatus,
    ReconciliationMode,
    ReconciliationStatus,
)
from .transaction import (
    GHOST_PREFIX,
    PLACEHOLDER_CHURCH,
    Church,
    Contributor,
    ContributorGroup,
    Transaction,
)
from .file_model import (
    ColumnMapping,
    FileModel,
    Fingerprint,
    ParsingRules,
)
from .reconciliation import (
    AuditEntry,
    ContributorListFile,
    Divergence,
    LearnedAssociation,
    MatchOptions,
    MatchResult,
    ReconciliationContext,
    ReconciliationInputs,
    ReconciliationOutcome,
    ReconciliationReport,
    ReconciliationSummary,
    SourceFile,
)

__all__ = [
    # Enums
    "AuditAction",
    "ComparisonType",
    "DocumentKind",
    "ExtractionStatus",
    "MatchMethod",
    "ModelStatus",
    "ReconciliationMode",
    "ReconciliationStatus",
    # Records
    "GHOST_PREFIX",
    "PLACEHOLDER_CHURCH",
    "Church",
    "Contributor",
    "ContributorGroup",
    "Transaction",
    # File models
    "ColumnMapping",
    "FileModel",
    "Fingerprint",
    "ParsingRules",
    # Reconciliation
    "AuditEntry",
    "ContributorListFile",
    "Divergence",
    "LearnedAssociation",
    "MatchOptions",
    "MatchResult",
    "ReconciliationContext",
    "ReconciliationInputs",
    "ReconciliationOutcome",
    "ReconciliationReport",
    "ReconciliationSummary",
    "SourceFile",
]
