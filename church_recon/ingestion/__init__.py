"""Ingestion module for bank statements and contributor lists."""

from .amounts import parse_amount
from .dates import discover_anchor_year, parse_date
from .extractor import (
    AI_METHOD,
    ExtractionResult,
    ExtractionStrategySelector,
    to_contributors,
    transaction_id,
)
from .fingerprint import (
    find_matching_models,
    fingerprint_matches,
    generate_fingerprint,
    materialize,
    normalize_raw_content,
)
from .strategies import DelimitedStrategy, TextScanStrategy, apply_model

__all__ = [
    "parse_amount",
    "discover_anchor_year",
    "parse_date",
    "AI_METHOD",
    "ExtractionResult",
    "ExtractionStrategySelector",
    "to_contributors",
    "transaction_id",
    "find_matching_models",
    "fingerprint_matches",
    "generate_fingerprint",
    "materialize",
    "normalize_raw_content",
    "DelimitedStrategy",
    "TextScanStrategy",
    "apply_model",
]
