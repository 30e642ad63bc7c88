"""Document priority scoring: six normalised factors and their weighted sum.

priority = 0.25·access + 0.20·recency + 0.30·relevance + 0.15·embedded
           − 0.05·file_size + 0.15·preference          clamped to [0, 1]

Pure functions; the engine owns state and persistence.
"""

from __future__ import annotations

import math
from datetime import datetime

from contextkit.models import PriorityFactors

WEIGHTS: dict[str, float] = {
    "access_frequency": 0.25,
    "recency": 0.20,
    "context_relevance": 0.30,
    "embedding_status": 0.15,
    "file_size": -0.05,  # large files lower the score
    "user_preference": 0.15,
}

RECENCY_HALF_SCALE_SECONDS = 30 * 24 * 60 * 60  # e-folding time of the recency decay
FILE_SIZE_CEILING_BYTES = 10 * 1024 * 1024

# (factor, threshold, reason) in tie-break order
_REASONS: tuple[tuple[str, float, str], ...] = (
    ("context_relevance", 0.7, "High context relevance"),
    ("access_frequency", 0.6, "Frequently accessed"),
    ("recency", 0.8, "Recently accessed"),
    ("user_preference", 0.7, "User preference"),
)

REASON_MULTIPLE = "Multiple factors"
REASON_LOW = "Low priority"


def access_frequency_factor(access_count: int) -> float:
    """Log-scaled access count; saturates at 1.0 around 100 accesses."""
    return min(math.log10(max(access_count, 0) + 1) / 2, 1.0)


def recency_factor(last_accessed: datetime, now: datetime) -> float:
    """Exponential decay over 30 days. Timestamps in the future count as now."""
    elapsed = max((now - last_accessed).total_seconds(), 0.0)
    return math.exp(-elapsed / RECENCY_HALF_SCALE_SECONDS)


def file_size_factor(file_size_bytes: int) -> float:
    """1.0 for empty files, falling linearly to 0.0 at 10 MiB and beyond."""
    return max(0.0, 1 - file_size_bytes / FILE_SIZE_CEILING_BYTES)


def compute_factors(
    *,
    now: datetime,
    access_count: int = 0,
    last_accessed: datetime | None = None,
    context_relevance: float = 0.0,
    embedding_ready: bool = False,
    file_size_bytes: int = 0,
    user_preference: float = 0.0,
) -> PriorityFactors:
    return PriorityFactors(
        access_frequency=access_frequency_factor(access_count),
        recency=recency_factor(last_accessed or now, now),
        context_relevance=context_relevance,
        embedding_status=1.0 if embedding_ready else 0.0,
        file_size=file_size_factor(file_size_bytes),
        user_preference=user_preference,
    )


def raw_score(factors: PriorityFactors) -> float:
    """Weighted sum of *factors*, unclamped."""
    return sum(getattr(factors, name) * weight for name, weight in WEIGHTS.items())


def clamp_unit(value: float) -> float:
    return max(0.0, min(1.0, value))


def select_reason(factors: PriorityFactors, priority: float, threshold: float) -> str:
    """Name the dominant factor, or fall back to 'Multiple factors' / 'Low priority'.

    *priority* is the unclamped weighted sum.
    """
    dominant = max(getattr(factors, name) for name, _, _ in _REASONS)
    for name, minimum, reason in _REASONS:
        value = getattr(factors, name)
        if value == dominant and value > minimum:
            return reason
    if priority > threshold:
        return REASON_MULTIPLE
    return REASON_LOW
