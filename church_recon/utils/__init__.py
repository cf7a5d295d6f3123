"""Utility modules."""

from .text_normalizer import (
    clean_description,
    is_balance_row,
    is_control_row,
    normalize,
    resolve_contribution_type,
    strip_accents,
)
from .text_similarity import name_similarity
from .audit_logger import AuditLogger
from .log_config import configure_logging

__all__ = [
    "clean_description",
    "is_balance_row",
    "is_control_row",
    "normalize",
    "resolve_contribution_type",
    "strip_accents",
    "name_similarity",
    "AuditLogger",
    "configure_logging",
]
