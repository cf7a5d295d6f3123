"""Enumerations for the contribution reconciliation system."""

from enum import Enum


class ReconciliationStatus(str, Enum):
    """
    Status of a single match result.

    IDENTIFIED: Transaction attributed to a contributor and a church
    UNIDENTIFIED: No eligible candidate above the similarity threshold
    PENDING: Ghost record, expected in a contributor list but absent from the bank
    DIVERGENT: Learned association contradicts the freshly computed match
    """
    IDENTIFIED = "IDENTIFICADO"
    UNIDENTIFIED = "NÃO IDENTIFICADO"
    PENDING = "PENDENTE"
    DIVERGENT = "DIVERGENTE"

    def label(self, locale: str = "pt-BR") -> str:
        """Presentation label for the given locale."""
        return _STATUS_LABELS.get(locale, _STATUS_LABELS["pt-BR"])[self]


_STATUS_LABELS = {
    "pt-BR": {
        ReconciliationStatus.IDENTIFIED: "Identificado",
        ReconciliationStatus.UNIDENTIFIED: "Não identificado",
        ReconciliationStatus.PENDING: "Pendente",
        ReconciliationStatus.DIVERGENT: "Divergente",
    },
    "en": {
        ReconciliationStatus.IDENTIFIED: "Identified",
        ReconciliationStatus.UNIDENTIFIED: "Unidentified",
        ReconciliationStatus.PENDING: "Pending",
        ReconciliationStatus.DIVERGENT: "Divergent",
    },
}


class MatchMethod(str, Enum):
    """How a match result was produced."""
    AUTOMATIC = "AUTOMATIC"  # Similarity pass above threshold
    MANUAL = "MANUAL"        # Confirmed by a human
    LEARNED = "LEARNED"      # Learned association memory
    AI = "AI"                # Injected AI extractor / identifier
    TEMPLATE = "TEMPLATE"    # Applied from a trained file model


class ExtractionStatus(str, Enum):
    """Outcome of running the extraction strategies on a file."""
    OK = "OK"
    MODEL_REQUIRED = "MODEL_REQUIRED"


class DocumentKind(str, Enum):
    """Kind of document being extracted."""
    STATEMENT = "statement"      # Bank statement, date is mandatory
    CONTRIBUTOR_LIST = "contributor_list"  # Roster, date is optional


class ModelStatus(str, Enum):
    """Review status of a learned file model."""
    DRAFT = "draft"
    APPROVED = "approved"


class ReconciliationMode(str, Enum):
    """Mode chosen by the incremental controller."""
    FULL = "full"          # New statement, replace prior results
    ADDITIVE = "additive"  # New contributor lists against prior results


class ComparisonType(str, Enum):
    """Polarity of the transactions fed to the matching engine."""
    INCOME = "income"
    EXPENSES = "expenses"
    BOTH = "both"


class AuditAction(str, Enum):
    """Type of audit action."""
    FILE_EXTRACTED = "file_extracted"
    MODEL_REQUIRED = "model_required"
    ROW_SKIPPED = "row_skipped"
    AI_FALLBACK_USED = "ai_fallback_used"
    LEARNED_MATCH = "learned_match"
    AUTOMATIC_MATCH = "automatic_match"
    DIVERGENCE_DETECTED = "divergence_detected"
    GHOST_CREATED = "ghost_created"
    ADDITIVE_UPGRADE = "additive_upgrade"
    MANUAL_PRESERVED = "manual_preserved"
    MANUAL_OVERRIDE = "manual_override"
