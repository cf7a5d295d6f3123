"""Reconciliation engine components."""

from .aggregator import (
    PolaritySplit,
    build_report,
    filter_by_query,
    group_by_unit,
    split_by_polarity,
)
from .learned_memory import LearnedAssociationMemory
from .matcher import MatchingEngine, MatchRun
from .orchestrator import (
    IncrementalReconciliationController,
    merge_results,
)
from .overrides import (
    associate_pending,
    confirm_divergence,
    identify_bulk,
    identify_manually,
    reject_divergence,
    reopen,
)

__all__ = [
    "PolaritySplit",
    "build_report",
    "filter_by_query",
    "group_by_unit",
    "split_by_polarity",
    "LearnedAssociationMemory",
    "MatchingEngine",
    "MatchRun",
    "IncrementalReconciliationController",
    "merge_results",
    "associate_pending",
    "confirm_divergence",
    "identify_bulk",
    "identify_manually",
    "reject_divergence",
    "reopen",
]
