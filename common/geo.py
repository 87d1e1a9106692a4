from __future__ import annotations

from typing import Iterable, Sequence, Tuple
import math


EARTH_RADIUS_M = 6371008.8  # mean Earth radius (m)


# -------------------------
# Great-circle distance
# -------------------------
def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine great-circle distance on WGS84 sphere approximation."""
    p1 = math.radians(lat1)
    p2 = math.radians(lat2)
    dphi = p2 - p1
    dl = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2.0) ** 2 + math.cos(p1) * math.cos(p2) * math.sin(dl / 2.0) ** 2
    # float drift can push `a` a hair above 1 for antipodal points
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(min(1.0, a)))


def distance_between(a, b) -> float:
    """Distance (m) between two objects exposing `.lat` / `.lon`."""
    return haversine_m(a.lat, a.lon, b.lat, b.lon)


# -------------------------
# Coordinate sanity
# -------------------------
def is_finite_lat_lon(lat: float, lon: float) -> bool:
    return math.isfinite(lat) and math.isfinite(lon)


def in_wgs84_range(lat: float, lon: float) -> bool:
    return (-90.0 <= lat <= 90.0) and (-180.0 <= lon <= 180.0)


def _wrap_lon(lon: float) -> float:
    return (lon + 180.0) % 360.0 - 180.0


def mean_lat_lon(points: Iterable[Tuple[float, float]]) -> Tuple[float, float]:
    """
    Arithmetic mean of (lat, lon) pairs.

    Longitudes are unwrapped around the first point before averaging, so a
    cluster straddling the antimeridian (179.9, -179.9) centres near 180
    instead of 0. Good enough for clusters spanning well under 180 degrees.
    """
    pts = list(points)
    if not pts:
        raise ValueError("mean_lat_lon requires at least one point")
    ref = pts[0][1]
    lat = sum(p[0] for p in pts) / len(pts)
    lon = sum(ref + _wrap_lon(p[1] - ref) for p in pts) / len(pts)
    return lat, _wrap_lon(lon)


def weighted_mean_distance_m(
    center: Tuple[float, float],
    points: Sequence[Tuple[float, float]],
    weights: Sequence[float],
) -> float:
    """
    Weighted average haversine distance (m) from `center` to `points`.

    Weights are normalized by their sum; a non-positive total gives 0.0.
    """
    if len(points) != len(weights):
        raise ValueError("points and weights must have the same length")
    total = float(sum(weights))
    if total <= 0.0:
        return 0.0
    lat0, lon0 = center
    return float(sum(haversine_m(lat0, lon0, lat, lon) * w for (lat, lon), w in zip(points, weights))) / total
