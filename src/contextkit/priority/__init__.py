"""Document priority scoring and cache management."""

from contextkit.priority.engine import DocumentPriorityEngine
from contextkit.priority.scoring import WEIGHTS, compute_factors, raw_score, select_reason

__all__ = [
    "DocumentPriorityEngine",
    "WEIGHTS",
    "compute_factors",
    "raw_score",
    "select_reason",
]
