"""
Unit tests for consensus clustering and the robust centroid
"""

import os
import sys

import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.config import EngineConfig
from common.errors import AggregationFailure
from common.types import Match
from consensus.cluster import (
    cluster_score,
    pick_consensus_cluster,
    remove_outliers,
    to_score,
    weighted_median_lat_lon,
)

PARIS = (48.8566, 2.3522)
BERLIN = (52.5200, 13.4050)
SCATTERED = [
    (35.6762, 139.6503),   # Tokyo
    (40.7128, -74.0060),   # New York
    (-33.8688, 151.2093),  # Sydney
    (-22.9068, -43.1729),  # Rio
    (30.0444, 31.2357),    # Cairo
    (55.7558, 37.6173),    # Moscow
    (19.4326, -99.1332),   # Mexico City
    (1.3521, 103.8198),    # Singapore
]


def match(mid, lat, lon, similarity):
    return Match(id=mid, label=mid, lat=lat, lon=lon, similarity=similarity)


def scattered(start=0.6, step=0.01):
    return [match(f"far{i}", lat, lon, start - step * i) for i, (lat, lon) in enumerate(SCATTERED)]


class TestRemoveOutliers:
    """IQR filter on distance to the mean centroid"""

    def test_small_cluster_unchanged(self):
        cluster = [match("a", *PARIS, 0.9), match("b", *BERLIN, 0.8), match("c", 0.0, 0.0, 0.7)]
        assert remove_outliers(cluster) == cluster

    def test_far_member_dropped(self):
        cluster = [match(f"p{i}", *PARIS, 0.9) for i in range(5)] + [match("berlin", *BERLIN, 0.9)]
        kept = remove_outliers(cluster)
        assert [m.id for m in kept] == [f"p{i}" for i in range(5)]

    def test_cluster_across_antimeridian(self):
        fiji = [(-17.00, 179.95), (-17.02, -179.95), (-17.04, 179.98), (-16.98, -179.98), (-17.01, 179.99)]
        cluster = [match(f"f{i}", lat, lon, 0.9) for i, (lat, lon) in enumerate(fiji)]
        cluster.append(match("north", -14.30, 179.96, 0.9))
        kept = remove_outliers(cluster)
        assert [m.id for m in kept] == [f"f{i}" for i in range(5)]


class TestWeightedMedian:
    """Per-axis weighted median"""

    def test_lower_median_on_even_split(self):
        """Test equal weights over 10/20/30/40 pick 20, not the mean of 20 and 30"""
        items = [match(f"m{lat}", lat, 0.0, 0.8) for lat in (10.0, 20.0, 30.0, 40.0)]
        lat, lon = weighted_median_lat_lon(items, [0.25] * 4)
        assert lat == 20.0
        assert lon == 0.0

    def test_heavy_weight_dominates(self):
        items = [match("a", 10.0, 5.0, 0.8), match("b", 20.0, 6.0, 0.8), match("c", 30.0, 7.0, 0.8)]
        assert weighted_median_lat_lon(items, [0.1, 0.1, 0.8]) == (30.0, 7.0)

    def test_robust_to_one_outlier(self):
        items = [match(f"p{i}", 48.85 + 0.001 * i, 2.35, 0.8) for i in range(4)] + [match("x", -33.0, 151.0, 0.8)]
        lat, lon = weighted_median_lat_lon(items, [0.2] * 5)
        assert lat == pytest.approx(48.851, abs=1e-9)
        assert lon == 2.35

    def test_empty(self):
        with pytest.raises(AggregationFailure):
            weighted_median_lat_lon([], [])


class TestPickConsensusCluster:
    """Seeded clustering"""

    def test_empty(self):
        assert pick_consensus_cluster([], EngineConfig()) == []

    def test_near_perfect_top_match_stands_alone(self):
        """Test a > 0.99 match returns exactly that match"""
        matches = [match("anchor", *PARIS, 0.995)] + [match(f"p{i}", *PARIS, 0.8) for i in range(5)] + scattered()
        assert [m.id for m in pick_consensus_cluster(matches, EngineConfig())] == ["anchor"]

    def test_dense_group_beats_isolated_top(self):
        matches = [
            match("tokyo", 35.6762, 139.6503, 0.80),
            match("a", 48.8566, 2.3522, 0.78),
            match("b", 48.8616, 2.3522, 0.77),
            match("c", 48.8566, 2.3572, 0.76),
            match("d", 48.8616, 2.3572, 0.75),
        ]
        out = pick_consensus_cluster(matches, EngineConfig())
        assert [m.id for m in out] == ["a", "b", "c", "d"]

    def test_truncated_to_max_candidates(self):
        matches = [match(f"p{i}", *PARIS, 0.9 - 0.01 * i) for i in range(10)]
        out = pick_consensus_cluster(matches, EngineConfig())
        assert [m.id for m in out] == [f"p{i}" for i in range(6)]

    def test_fallback_to_neighbourhood_of_top(self):
        """Test undersized clusters fall back to matches within 10 km of the top"""
        matches = [
            match("top", *PARIS, 0.8),
            match("near", PARIS[0] + 0.03, PARIS[1], 0.7),  # ~3.3 km
        ] + scattered()
        out = pick_consensus_cluster(matches, EngineConfig())
        assert [m.id for m in out] == ["top", "near"]

    def test_ultra_mode_requires_larger_clusters(self):
        matches = [
            match("top", *PARIS, 0.80),
            match("near", PARIS[0] + 0.001, PARIS[1], 0.79),
            match("edge", PARIS[0] + 0.18, PARIS[1], 0.78),  # ~20 km
        ] + scattered(0.5)
        normal = pick_consensus_cluster(matches, EngineConfig())
        ultra = pick_consensus_cluster(matches, EngineConfig.ultra())
        assert [m.id for m in normal] == ["top", "near", "edge"]
        assert [m.id for m in ultra] == ["top", "near"]

    def test_respects_search_depth(self):
        cfg = EngineConfig(cluster_search_depth=8)
        matches = scattered(0.8) + [match(f"p{i}", *PARIS, 0.5) for i in range(5)]
        out = pick_consensus_cluster(matches, cfg)
        assert all(m.id.startswith("far") for m in out)


class TestClusterScore:
    def test_density_capped(self):
        cluster = [match(f"p{i}", *PARIS, 1.0) for i in range(10)]
        assert cluster_score(cluster, 3) == pytest.approx(10 * 1.5)

    def test_score_mapping(self):
        assert to_score(-1.0) == 0.0
        assert to_score(0.0) == 0.5
        assert to_score(1.0) == 1.0
