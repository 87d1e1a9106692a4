"""
Consensus: turning ranked matches into one location estimate

This package provides:
- continent zones and the dominant-continent filter / sanity checks
- seed-based consensus clustering with IQR outlier rejection and a
  weighted-median centroid
- DBSCAN over match coordinates (diagnostics)
- confidence calibration and uncertainty radius
- scene classification from reference labels
- aggregate_matches(): the full matches -> AggregatedResult step
"""
from .aggregate import aggregate_matches
from .cluster import pick_consensus_cluster, remove_outliers, weighted_median_lat_lon
from .continents import detect_continent, filter_to_dominant_continent, prevent_cross_continent_errors
from .scene import classify_scene, scene_context

__all__ = [
    "aggregate_matches",
    "pick_consensus_cluster",
    "remove_outliers",
    "weighted_median_lat_lon",
    "detect_continent",
    "filter_to_dominant_continent",
    "prevent_cross_continent_errors",
    "classify_scene",
    "scene_context",
]
