"""Tests for ANN sizing heuristics and distance conversion."""

import pytest

from notemancy.ann import (
    DistanceMetric,
    distance_to_similarity,
    estimate_partitions,
    estimate_probes,
    estimate_sub_vectors,
)
from notemancy.config import IndexTuning
from notemancy.errors import ConversionError


class TestPartitions:

    @pytest.mark.parametrize("rows, expected", [
        (0, 10),
        (50, 10),
        (10_000, 100),
        (250_000, 500),
        (4_000_000, 1000),
    ])
    def test_sqrt_clamped(self, rows, expected):
        assert estimate_partitions(rows) == expected

    def test_rounds_to_nearest(self):
        # sqrt(132) ~ 11.49, sqrt(133) ~ 11.53
        tuning = IndexTuning(min_partitions=1)
        assert estimate_partitions(132, tuning) == 11
        assert estimate_partitions(133, tuning) == 12

    def test_custom_bounds(self):
        tuning = IndexTuning(min_partitions=2, max_partitions=50)
        assert estimate_partitions(9, tuning) == 3
        assert estimate_partitions(1_000_000, tuning) == 50


class TestProbes:

    @pytest.mark.parametrize("partitions, expected", [
        (50, 10),
        (100, 10),
        (500, 50),
        (2000, 100),
    ])
    def test_ratio_clamped(self, partitions, expected):
        assert estimate_probes(partitions) == expected

    def test_probe_ratio_is_tunable(self):
        tuning = IndexTuning(probe_ratio=0.5, min_probes=1, max_probes=1000)
        assert estimate_probes(100, tuning) == 50

    def test_probes_never_exceed_bounds(self):
        for partitions in (1, 10, 999, 100_000):
            assert 10 <= estimate_probes(partitions) <= 100


class TestSubVectors:

    @pytest.mark.parametrize("dimension, expected", [
        (384, 16),
        (768, 16),
        (4, 4),
        (12, 12),
        (17, 1),
    ])
    def test_largest_divisor(self, dimension, expected):
        assert estimate_sub_vectors(dimension) == expected


class TestDistanceToSimilarity:

    def test_cosine(self):
        assert distance_to_similarity("cosine", 0.0) == pytest.approx(1.0)
        assert distance_to_similarity("cosine", 0.25) == pytest.approx(0.75)
        assert distance_to_similarity(DistanceMetric.COSINE, 2.0) == pytest.approx(-1.0)

    def test_dot(self):
        assert distance_to_similarity("dot", 0.4) == pytest.approx(0.6)

    def test_l2_is_bounded(self):
        assert distance_to_similarity("l2", 0.0) == pytest.approx(1.0)
        assert distance_to_similarity("l2", 1.0) == pytest.approx(0.5)
        assert 0 < distance_to_similarity("l2", 1e6) < 1e-5

    def test_monotonic(self):
        for metric in ("cosine", "l2", "dot"):
            assert distance_to_similarity(metric, 0.1) > distance_to_similarity(metric, 0.9)

    def test_unknown_metric(self):
        with pytest.raises(ConversionError):
            distance_to_similarity("hamming", 0.5)
