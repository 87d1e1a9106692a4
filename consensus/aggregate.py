from __future__ import annotations

from typing import Sequence

from common.config import EngineConfig
from common.errors import AggregationFailure, InvalidCoordinates
from common.geo import in_wgs84_range, is_finite_lat_lon
from common.logging_setup import get_logger
from common.types import AggregatedResult, Location, Match
from common.utils import softmax
from .cluster import (
    CENTROID_TEMPERATURE,
    check_candidates,
    pick_consensus_cluster,
    to_score,
    weighted_median_lat_lon,
    weighted_spread_m,
)
from .continents import (
    MIN_FILTERED_MATCHES,
    calculate_geographic_spread_penalty,
    filter_to_dominant_continent,
    validate_continent_consistency,
)
from .scoring import consensus_strength, estimate_radius_m, score_confidence


log = get_logger("consensus.aggregate")


def aggregate_matches(matches: Sequence[Match], cfg: EngineConfig) -> AggregatedResult:
    """
    Turn ranked matches into one location, confidence and radius.

    Raises:
        AggregationFailure: no matches, no candidates, or non-finite candidate data.
        InvalidCoordinates: the weighted-median centroid is not a valid coordinate.
    """
    if not matches:
        raise AggregationFailure("No vector matches to aggregate")

    filtered = filter_to_dominant_continent(matches)
    pool = filtered if len(filtered) >= MIN_FILTERED_MATCHES else list(matches)

    candidates = pick_consensus_cluster(pool, cfg)
    if not candidates:
        raise AggregationFailure("No candidate matches available for aggregation")
    check_candidates(candidates)

    top = pool[0]
    second = pool[1] if len(pool) > 1 else top
    check_candidates((top, second))
    top_score = to_score(top.similarity)
    second_score = to_score(second.similarity)

    weights = softmax([to_score(m.similarity) for m in candidates], CENTROID_TEMPERATURE)
    lat, lon = weighted_median_lat_lon(candidates, weights)
    if not is_finite_lat_lon(lat, lon) or not in_wgs84_range(lat, lon):
        raise InvalidCoordinates(f"Aggregated coordinates are invalid: ({lat}, {lon})")

    spread_m = weighted_spread_m(candidates, weights, (lat, lon))
    consensus = consensus_strength(len(candidates), len(pool), cfg)
    penalty = calculate_geographic_spread_penalty(candidates)
    continent = validate_continent_consistency(lat, lon, pool)

    confidence = score_confidence(top_score, second_score, consensus, penalty, continent.valid, cfg)
    radius_m = estimate_radius_m(spread_m, confidence, consensus, cfg)

    log.debug(
        "Aggregated matches",
        extra={"extra": {
            "pool": len(pool),
            "candidates": len(candidates),
            "spread_m": round(spread_m, 1),
            "consensus": round(consensus, 3),
            "penalty": penalty,
            "continent_valid": continent.valid,
            "confidence": round(confidence, 4),
            "radius_m": radius_m,
        }},
    )
    return AggregatedResult(
        location=Location(lat=lat, lon=lon, radius_m=radius_m),
        confidence=confidence,
        candidates=candidates,
        spread_m=spread_m,
        continent=continent,
    )
