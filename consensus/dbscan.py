"""
DBSCAN over match coordinates (haversine metric).

An alternative to seed-based consensus clustering: discovers the number of
clusters on its own and labels isolated matches as noise. The engine uses it
for diagnostics (how many distinct places the evidence points to).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Set, Tuple
import math

from common.geo import distance_between, mean_lat_lon
from common.types import Match


@dataclass(slots=True)
class GeoCluster:
    id: int
    points: List[Match] = field(default_factory=list)
    centroid: Tuple[float, float] = (0.0, 0.0)
    density: float = 0.0
    is_noise: bool = False


class DBSCANClusterer:
    """
    Args:
        epsilon_m: neighbourhood radius in meters.
        min_points: neighbours (excluding the point itself) needed for a core point.
        max_clusters: stop after this many non-noise clusters.
    """

    def __init__(self, epsilon_m: float = 50_000.0, min_points: int = 3, max_clusters: int = 10):
        if epsilon_m <= 0:
            raise ValueError("epsilon_m must be > 0")
        self.epsilon_m = float(epsilon_m)
        self.min_points = int(min_points)
        self.max_clusters = int(max_clusters)

    def _neighbors(self, i: int, pts: Sequence[Match], visited: Set[int]) -> List[int]:
        p = pts[i]
        return [
            j for j, q in enumerate(pts)
            if j not in visited and distance_between(p, q) <= self.epsilon_m
        ]

    def _density(self, pts: Sequence[Match]) -> float:
        """(1 - mean pairwise distance / eps) * sqrt(n); 0 for singletons."""
        if len(pts) < 2:
            return 0.0
        total = 0.0
        count = 0
        for a in range(len(pts)):
            for b in range(a + 1, len(pts)):
                total += distance_between(pts[a], pts[b])
                count += 1
        avg = total / count
        return (1.0 - min(avg / self.epsilon_m, 1.0)) * math.sqrt(len(pts))

    def cluster(self, matches: Sequence[Match]) -> List[GeoCluster]:
        """Clusters sorted by density (noise points come back as singleton clusters)."""
        pts = list(matches)
        visited: Set[int] = set()
        clustered: Set[int] = set()
        out: List[GeoCluster] = []
        next_id = 0

        for i in range(len(pts)):
            if i in visited:
                continue
            visited.add(i)
            neighbors = self._neighbors(i, pts, visited)

            if len(neighbors) < self.min_points:
                p = pts[i]
                out.append(GeoCluster(id=-1, points=[p], centroid=(p.lat, p.lon), is_noise=True))
                continue

            members = [i]
            clustered.add(i)
            k = 0
            while k < len(neighbors):
                j = neighbors[k]
                k += 1
                if j not in visited:
                    visited.add(j)
                    second = self._neighbors(j, pts, visited)
                    if len(second) >= self.min_points:
                        neighbors.extend(n for n in second if n not in neighbors)
                if j not in clustered:
                    members.append(j)
                    clustered.add(j)

            cluster_pts = [pts[m] for m in members]
            out.append(
                GeoCluster(
                    id=next_id,
                    points=cluster_pts,
                    centroid=mean_lat_lon((m.lat, m.lon) for m in cluster_pts),
                    density=self._density(cluster_pts),
                )
            )
            next_id += 1
            if next_id >= self.max_clusters:
                break

        return sorted(out, key=lambda c: c.density, reverse=True)

    @staticmethod
    def best_cluster(clusters: Sequence[GeoCluster]) -> Optional[GeoCluster]:
        """Densest non-noise cluster (ties: more points); first cluster if all are noise."""
        valid = [c for c in clusters if not c.is_noise and c.points]
        if not valid:
            return clusters[0] if clusters else None
        return max(valid, key=lambda c: (c.density, len(c.points)))

    @staticmethod
    def top_clusters(clusters: Sequence[GeoCluster], count: int) -> List[GeoCluster]:
        return [c for c in clusters if not c.is_noise][:count]
