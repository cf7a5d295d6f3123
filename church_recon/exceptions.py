"""Exception hierarchy for the reconciliation engine."""


class ReconciliationError(Exception):
    """Base class for every error raised by church_recon."""


class FileModelRegistryError(ReconciliationError):
    """A file model write was rejected. The registry is left unchanged."""


class InvalidFingerprintError(FileModelRegistryError):
    """Fingerprint has no columns or no delimiter."""


class DuplicateLineageError(FileModelRegistryError):
    """Lineage/version already stored, or lineage belongs to another owner."""


class ModelNotFoundError(FileModelRegistryError, KeyError):
    """No file model with the given id."""

    def __str__(self) -> str:
        return Exception.__str__(self)


class InvalidTransitionError(ReconciliationError):
    """A match result status change that the state machine does not allow."""

    def __init__(self, current, target, transaction_id=None):
        self.current = current
        self.target = target
        self.transaction_id = transaction_id
        super().__init__(
            f"Cannot move {transaction_id or 'result'} from "
            f"{getattr(current, 'value', current)} to {getattr(target, 'value', target)}"
        )


class AIExtractionError(ReconciliationError):
    """The injected AI extractor failed after all retries."""
