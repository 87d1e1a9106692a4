"""
Confidence calibration and uncertainty radius.

    confidence = clamp(0.1 + 0.5*top + 0.25*margin + 0.15*consensus - spread_penalty,
                       floor, ceiling)          (halved when the continent check fails)
    radius_m   = clamp(floor_m + spread_m*(1.2 - confidence)*mult
                       + (1 - consensus)*30000*mult, floor_m, ceiling_m)

Bounds come from EngineConfig and tighten in ultra-accuracy mode.
"""
from __future__ import annotations

import math

from common.config import EngineConfig
from common.errors import AggregationFailure
from common.utils import clamp


BASE_CONFIDENCE = 0.1
TOP_WEIGHT = 0.5
MARGIN_WEIGHT = 0.25
CONSENSUS_WEIGHT = 0.15
CONTINENT_FAILURE_FACTOR = 0.5
CONSENSUS_RADIUS_M = 30_000.0


def _require_finite(**values: float) -> None:
    for name, v in values.items():
        if not math.isfinite(v):
            raise AggregationFailure(f"Non-finite {name} in confidence scoring: {v}")


def consensus_strength(cluster_size: int, pool_size: int, cfg: EngineConfig) -> float:
    """Cluster size relative to the searched depth, in [0, 1]."""
    return clamp(cluster_size / max(1, min(cfg.cluster_search_depth, pool_size)), 0.0, 1.0)


def score_confidence(
    top_score: float,
    second_score: float,
    consensus: float,
    spread_penalty: float,
    continent_valid: bool,
    cfg: EngineConfig,
) -> float:
    _require_finite(top_score=top_score, second_score=second_score, consensus=consensus, spread_penalty=spread_penalty)
    margin = clamp(top_score - second_score, 0.0, 1.0)
    confidence = clamp(
        BASE_CONFIDENCE
        + top_score * TOP_WEIGHT
        + margin * MARGIN_WEIGHT
        + consensus * CONSENSUS_WEIGHT
        - spread_penalty,
        cfg.confidence_floor,
        cfg.confidence_ceiling,
    )
    if not continent_valid:
        confidence *= CONTINENT_FAILURE_FACTOR
    return confidence


def estimate_radius_m(spread_m: float, confidence: float, consensus: float, cfg: EngineConfig) -> float:
    """Uncertainty radius; grows as confidence or consensus drops."""
    _require_finite(spread_m=spread_m, confidence=confidence, consensus=consensus)
    mult = cfg.radius_multiplier
    raw = (
        cfg.radius_floor_m
        + spread_m * (1.2 - confidence) * mult
        + (1.0 - consensus) * CONSENSUS_RADIUS_M * mult
    )
    return float(round(clamp(raw, cfg.radius_floor_m, cfg.radius_ceiling_m)))
