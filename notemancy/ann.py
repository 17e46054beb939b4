"""
Approximate-nearest-neighbor sizing and score normalization.

Partitioned (IVF) indexes need a partition count at build time and a probe
count at query time. Too few partitions hurt recall on small corpora and
too many waste time on tiny ones, so both counts are derived from the row
count and clamped to the bounds in IndexTuning.
"""

import math
from enum import Enum

from .config import IndexTuning
from .errors import ConversionError


class TableState(str, Enum):
    """Lifecycle of an embedding table: Absent -> Created -> Indexed."""
    ABSENT = "absent"
    CREATED = "created"
    INDEXED = "indexed"


class DistanceMetric(str, Enum):
    COSINE = "cosine"
    L2 = "l2"
    DOT = "dot"


def _round(value: float) -> int:
    """Round half away from zero."""
    return int(math.floor(value + 0.5))


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def estimate_partitions(row_count: int, tuning: IndexTuning = IndexTuning()) -> int:
    """Partition count for an index over ``row_count`` vectors: clamp(round(sqrt(n)))."""
    return _clamp(
        _round(math.sqrt(max(row_count, 0))),
        tuning.min_partitions,
        tuning.max_partitions,
    )


def estimate_probes(partitions: int, tuning: IndexTuning = IndexTuning()) -> int:
    """Partitions to probe per query: clamp(round(probe_ratio * partitions))."""
    return _clamp(
        _round(tuning.probe_ratio * partitions),
        tuning.min_probes,
        tuning.max_probes,
    )


def estimate_sub_vectors(dimension: int, limit: int = 16) -> int:
    """Largest divisor of ``dimension`` not above ``limit`` (PQ sub-vector count)."""
    for n in range(min(limit, dimension), 0, -1):
        if dimension % n == 0:
            return n
    return 1


def distance_to_similarity(metric, distance: float) -> float:
    """
    Convert a backend distance to a similarity where higher is closer.

    cosine and dot distances are ``1 - score``, so similarity is
    ``1 - distance``. L2 distance is unbounded and maps to
    ``1 / (1 + distance)``.

    Raises:
        ConversionError: If the metric is unknown
    """
    try:
        metric = DistanceMetric(metric)
    except ValueError:
        raise ConversionError(f"Unknown distance metric: {metric!r}") from None
    if metric is DistanceMetric.L2:
        return 1.0 / (1.0 + max(distance, 0.0))
    return 1.0 - distance
