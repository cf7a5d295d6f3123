"""External integrations for the reconciliation engine."""

from .ai_extractor import AIExtractionClient

__all__ = ["AIExtractionClient"]
