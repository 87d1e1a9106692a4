"""
Continent-aware geographic sanity checks.

A coarse, fixed zone table catches "confusers": visually similar references
on another continent. Zones are plain bounding boxes checked in table order,
so overlaps (e.g. the Middle East in both Asia and Africa) resolve to the
first zone listed.
"""
from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from common.geo import haversine_m
from common.types import ContinentCheck, Match


@dataclass(frozen=True, slots=True)
class ContinentZone:
    name: str
    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float
    center_lat: float
    center_lon: float
    max_radius_km: float

    def contains(self, lat: float, lon: float) -> bool:
        return (self.min_lat <= lat <= self.max_lat) and (self.min_lon <= lon <= self.max_lon)


CONTINENT_ZONES: Dict[str, ContinentZone] = {
    z.name: z
    for z in (
        ContinentZone("Europe", 34, 71, -10, 60, 54.5260, 15.2551, 4000),
        ContinentZone("Asia", -10, 77, 40, 180, 34.0479, 100.6197, 8000),
        ContinentZone("NorthAmerica", 15, 72, -170, -50, 54.5260, -105.2551, 7000),
        ContinentZone("SouthAmerica", -56, 13, -120, -34, -8.7832, -55.4915, 6000),
        ContinentZone("Africa", -35, 37, -17, 52, -8.7832, 34.5085, 7000),
        ContinentZone("Oceania", -50, 0, 110, 180, -25.2744, 133.7751, 6000),
    )
}

# distinct continents in a cluster -> confidence penalty
_SPREAD_PENALTY = {0: 0.0, 1: 0.0, 2: 0.1, 3: 0.25}
_SPREAD_PENALTY_MAX = 0.4

MIN_FILTERED_MATCHES = 3
FALLBACK_TOP_MATCHES = 10
CONSISTENCY_TOP_MATCHES = 5

# cross-continent demotion
_DEMOTE_MIN_MATCHES = 10
_DEMOTE_MAX_TOP_MARGIN = 0.10
_DEMOTE_WINDOW_END = 16


def detect_continent(lat: float, lon: float) -> Optional[str]:
    """First zone whose bounding box contains the point, or None (open ocean, poles)."""
    for name, zone in CONTINENT_ZONES.items():
        if zone.contains(lat, lon):
            return name
    return None


def is_within_continent_bounds(lat: float, lon: float, continent: str) -> bool:
    """True if the point lies within the zone's plausible radius of its center."""
    zone = CONTINENT_ZONES.get(continent)
    if zone is None:
        return True
    return haversine_m(zone.center_lat, zone.center_lon, lat, lon) / 1000.0 <= zone.max_radius_km


def get_dominant_continent(matches: Sequence[Match]) -> Optional[str]:
    """Continent with the largest summed similarity, or None if no match resolves."""
    scores: Dict[str, float] = defaultdict(float)
    for m in matches:
        c = detect_continent(m.lat, m.lon)
        if c is not None:
            scores[c] += m.similarity
    if not scores:
        return None
    # max() keeps the first-seen continent on ties, i.e. the one the best match is in
    return max(scores, key=lambda c: scores[c])


def filter_to_dominant_continent(matches: Sequence[Match]) -> List[Match]:
    """
    Keep only matches on the dominant continent.

    Never starves clustering: if filtering would leave fewer than 3 matches
    out of 3 or more, the unfiltered top matches are returned instead.
    """
    matches = list(matches)
    if not matches:
        return matches
    dominant = get_dominant_continent(matches)
    if dominant is None:
        return matches

    filtered = [m for m in matches if detect_continent(m.lat, m.lon) == dominant]
    if len(filtered) < MIN_FILTERED_MATCHES and len(matches) >= MIN_FILTERED_MATCHES:
        return matches[: min(FALLBACK_TOP_MATCHES, len(matches))]
    return filtered if filtered else matches


def calculate_geographic_spread_penalty(matches: Sequence[Match]) -> float:
    continents = {detect_continent(m.lat, m.lon) for m in matches}
    continents.discard(None)
    return _SPREAD_PENALTY.get(len(continents), _SPREAD_PENALTY_MAX)


def validate_continent_consistency(
    predicted_lat: float,
    predicted_lon: float,
    reference_matches: Sequence[Match],
) -> ContinentCheck:
    """
    Check that the predicted point sits on the continent the evidence points to.

    Unresolvable prediction or evidence is treated as valid with neutral
    confidence: absence of evidence is not evidence of inconsistency.
    """
    predicted = detect_continent(predicted_lat, predicted_lon)
    if predicted is None:
        return ContinentCheck(valid=True, confidence=0.5)
    dominant = get_dominant_continent(reference_matches)
    if dominant is None:
        return ContinentCheck(valid=True, confidence=0.5)

    if predicted != dominant:
        top = reference_matches[:CONSISTENCY_TOP_MATCHES]
        top_continents = {detect_continent(m.lat, m.lon) for m in top}
        if predicted not in top_continents:
            return ContinentCheck(
                valid=False,
                confidence=0.2,
                reason=f"Predicted {predicted} but evidence points to {dominant}",
            )
    return ContinentCheck(valid=True, confidence=0.85)


def prevent_cross_continent_errors(matches: Sequence[Match]) -> List[Match]:
    """
    Demote a weak top match that contradicts a clear continental consensus.

    Only acts on >= 10 matches when the top match leads the runner-up by at
    most 0.10, more than half of matches 2..16 sit on another continent, and
    that continent also outweighs the top match's continent by summed
    similarity over the first 16 matches. Only the top match moves: it is
    re-inserted right after the first consensus-continent match, so near
    duplicates of a strong landmark are never pushed behind weaker evidence.
    """
    matches = list(matches)
    if len(matches) < _DEMOTE_MIN_MATCHES:
        return matches

    top, second = matches[0], matches[1]
    top_continent = detect_continent(top.lat, top.lon)
    if top_continent is None:
        return matches
    if top.similarity - second.similarity > _DEMOTE_MAX_TOP_MARGIN:
        return matches

    window = matches[1:_DEMOTE_WINDOW_END]
    counts = Counter(c for c in (detect_continent(m.lat, m.lon) for m in window) if c is not None)
    if not counts:
        return matches
    consensus, count = counts.most_common(1)[0]
    if consensus == top_continent or count <= len(window) * 0.5:
        return matches

    weight: Dict[str, float] = defaultdict(float)
    for m in matches[:_DEMOTE_WINDOW_END]:
        c = detect_continent(m.lat, m.lon)
        if c is not None:
            weight[c] += m.similarity
    if weight[consensus] <= weight[top_continent]:
        return matches

    rest = matches[1:]
    first = next(i for i, m in enumerate(rest) if detect_continent(m.lat, m.lon) == consensus)
    return rest[: first + 1] + [top] + rest[first + 1:]
