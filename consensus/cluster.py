from __future__ import annotations

from typing import List, Sequence, Tuple
import math

from common.config import EngineConfig
from common.errors import AggregationFailure
from common.geo import (
    distance_between,
    haversine_m,
    is_finite_lat_lon,
    mean_lat_lon,
    weighted_mean_distance_m,
)
from common.types import Match
from common.utils import clamp


NEAR_PERFECT_SIMILARITY = 0.99  # single image-exact anchor
ANCHOR_SEED_SIMILARITY = 0.95   # seed allowed to stand below min cluster size
SEED_COUNT = 10
FALLBACK_RADIUS_M = 10_000.0
DENSITY_CAP = 1.5
CENTROID_TEMPERATURE = 0.05


def to_score(similarity: float) -> float:
    """Map cosine similarity [-1, 1] onto [0, 1]."""
    return clamp((similarity + 1.0) / 2.0, 0.0, 1.0)


def remove_outliers(cluster: Sequence[Match], multiplier: float = 1.5) -> List[Match]:
    """
    IQR filter on each member's distance to the cluster's mean centroid
    (antimeridian-aware, see `mean_lat_lon`).

    Clusters with fewer than 4 members are returned unchanged. Quartiles are
    taken by index into the sorted distances (no interpolation).
    """
    cluster = list(cluster)
    if len(cluster) < 4:
        return cluster

    c_lat, c_lon = mean_lat_lon((m.lat, m.lon) for m in cluster)
    dists = [haversine_m(c_lat, c_lon, m.lat, m.lon) for m in cluster]
    ordered = sorted(dists)
    q1 = ordered[int(len(ordered) * 0.25)]
    q3 = ordered[int(len(ordered) * 0.75)]
    upper = q3 + multiplier * (q3 - q1)
    return [m for m, d in zip(cluster, dists) if d <= upper]


def _weighted_median(values: Sequence[float], weights: Sequence[float]) -> float:
    pairs = sorted(zip(values, weights), key=lambda p: p[0])
    half = sum(weights) / 2.0
    cum = 0.0
    for value, w in pairs:
        cum += w
        if cum >= half:
            return value
    return pairs[-1][0]


def weighted_median_lat_lon(items: Sequence[Match], weights: Sequence[float]) -> Tuple[float, float]:
    """
    Per-axis weighted median: the value at which cumulative weight first
    reaches half the total, computed independently for lat and lon.
    """
    if not items:
        raise AggregationFailure("Cannot compute a centroid of zero candidates")
    if len(items) != len(weights):
        raise ValueError("items and weights must have the same length")
    lat = _weighted_median([m.lat for m in items], weights)
    lon = _weighted_median([m.lon for m in items], weights)
    return lat, lon


def weighted_spread_m(items: Sequence[Match], weights: Sequence[float], centroid: Tuple[float, float]) -> float:
    return weighted_mean_distance_m(centroid, [(m.lat, m.lon) for m in items], weights)


def cluster_score(cluster: Sequence[Match], min_candidates: int) -> float:
    """sum(score^2) scaled by a density factor capped at 1.5."""
    similarity_score = sum(to_score(m.similarity) ** 2 for m in cluster)
    density = min(len(cluster) / max(1, min_candidates), DENSITY_CAP)
    return similarity_score * density


def _within(anchor: Match, pool: Sequence[Match], radius_m: float) -> List[Match]:
    return [m for m in pool if distance_between(anchor, m) <= radius_m]


def pick_consensus_cluster(matches: Sequence[Match], cfg: EngineConfig) -> List[Match]:
    """
    Select the most defensible cluster of mutually reinforcing matches.

    1. shortlist the top `cluster_search_depth` matches
    2. a near-perfect top match (> 0.99) is returned alone
    3. each of the top 10 seeds gathers shortlisted matches within
       `cluster_radius_m`, optionally IQR-filtered when >= 4 members
    4. undersized clusters are skipped unless the seed is > 0.95
    5. the best sum(score^2) * density cluster wins
    6. if nothing reaches the minimum size, fall back to matches within 10 km
       of the top match
    7. truncate to `max_cluster_candidates`, most similar first
    """
    shortlist = list(matches[: min(cfg.cluster_search_depth, len(matches))])
    if not shortlist:
        return []

    top = shortlist[0]
    if top.similarity > NEAR_PERFECT_SIMILARITY:
        return [top]

    best: List[Match] = [top]
    best_score = to_score(top.similarity)

    for seed in shortlist[:SEED_COUNT]:
        cluster = _within(seed, shortlist, cfg.cluster_radius_m)
        if cfg.outlier_rejection and len(cluster) >= 4:
            cluster = remove_outliers(cluster, cfg.iqr_multiplier)

        if len(cluster) < cfg.min_cluster_candidates and not seed.similarity > ANCHOR_SEED_SIMILARITY:
            continue

        score = cluster_score(cluster, cfg.min_cluster_candidates)
        if score > best_score:
            best, best_score = cluster, score

    if len(best) < cfg.min_cluster_candidates:
        best = _within(top, shortlist, FALLBACK_RADIUS_M)

    best = sorted(best, key=lambda m: m.similarity, reverse=True)
    return best[: cfg.max_cluster_candidates]


def check_candidates(candidates: Sequence[Match]) -> None:
    """Raise AggregationFailure on the first candidate with unusable numbers."""
    for m in candidates:
        if not is_finite_lat_lon(m.lat, m.lon):
            raise AggregationFailure(f"Invalid candidate coordinates for {m.id}")
        if not math.isfinite(m.similarity):
            raise AggregationFailure(f"Non-finite similarity for {m.id}")
