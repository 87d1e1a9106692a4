from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Any, Dict, List
import math
import numpy as np


def _as_vector(v: Any) -> np.ndarray:
    return np.asarray(v, dtype=np.float32).reshape(-1)


@dataclass(slots=True)
class ReferenceRecord:
    """
    One catalog entry loaded before the index is built.

    Attributes:
        id: stable catalog identifier.
        label: human-readable place name (landmark, city...).
        lat, lon: WGS84 degrees.
        vector: embedding of length D (not necessarily unit length).
    """
    id: str
    label: str
    lat: float
    lon: float
    vector: np.ndarray = field(repr=False)

    def __post_init__(self) -> None:
        self.lat = float(self.lat)
        self.lon = float(self.lon)
        if not (-90.0 <= self.lat <= 90.0) or not (-180.0 <= self.lon <= 180.0):
            raise ValueError(f"lat/lon out of range for {self.id}")
        self.vector = _as_vector(self.vector)


@dataclass(slots=True)
class Match:
    """
    A catalog record returned by a similarity search.

    `similarity` is cosine similarity, always clamped to [-1, 1].
    """
    id: str
    label: str
    lat: float
    lon: float
    similarity: float
    vector: Optional[np.ndarray] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        s = float(self.similarity)
        if not math.isnan(s):
            s = min(1.0, max(-1.0, s))
        self.similarity = s

    @classmethod
    def from_record(cls, record: ReferenceRecord, similarity: float) -> "Match":
        return cls(
            id=record.id,
            label=record.label,
            lat=record.lat,
            lon=record.lon,
            similarity=similarity,
            vector=record.vector,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "lat": self.lat,
            "lon": self.lon,
            "similarity": self.similarity,
        }


@dataclass(slots=True)
class Location:
    lat: float
    lon: float
    radius_m: float

    def to_dict(self) -> Dict[str, Any]:
        return {"lat": self.lat, "lon": self.lon, "radius_m": self.radius_m}


@dataclass(slots=True)
class ContinentCheck:
    """Outcome of the continent-consistency sanity check."""
    valid: bool
    confidence: float
    reason: Optional[str] = None


@dataclass(slots=True)
class AggregatedResult:
    """
    Numeric output of clustering + scoring.

    Attributes:
        location: weighted-median centroid and uncertainty radius (m).
        confidence: calibrated confidence in [0, 1].
        candidates: the consensus cluster the centroid was computed from.
        spread_m: weighted mean distance of candidates from the centroid.
        continent: continent-consistency check of the centroid.
    """
    location: Location
    confidence: float
    candidates: List[Match] = field(default_factory=list, repr=False)
    spread_m: float = 0.0
    continent: Optional[ContinentCheck] = None


@dataclass(slots=True)
class MatchConsensus:
    same_spot_matches: int = 0
    nearby_matches: int = 0
    same_label_matches: int = 0
    strong_consensus: bool = False
    actionable_coherence: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "same_spot_matches": self.same_spot_matches,
            "nearby_matches": self.nearby_matches,
            "same_label_matches": self.same_label_matches,
            "strong_consensus": self.strong_consensus,
            "actionable_coherence": self.actionable_coherence,
        }


@dataclass(slots=True)
class VisibilityDecision:
    should_withhold_location: bool
    reason: Optional[str]
    low_confidence: bool
    weak_consensus: bool
    match_consensus: MatchConsensus

    def to_dict(self) -> Dict[str, Any]:
        return {
            "should_withhold_location": self.should_withhold_location,
            "reason": self.reason,
            "low_confidence": self.low_confidence,
            "weak_consensus": self.weak_consensus,
            "match_consensus": self.match_consensus.to_dict(),
        }


@dataclass(slots=True)
class SceneContext:
    """Coarse scene type inferred from the top match labels."""
    scene_type: str = "unknown"
    cohort_hint: str = "generic_scene"
    confidence_calibration: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scene_type": self.scene_type,
            "cohort_hint": self.cohort_hint,
            "confidence_calibration": self.confidence_calibration,
        }


@dataclass(slots=True)
class GeoEstimate:
    """
    Final engine output handed to the request layer.

    `location` is the disclosed estimate; when withheld its radius is widened
    so a careless consumer cannot mistake it for a precise fix.
    """
    location: Location
    confidence: float
    tier: str
    visibility: VisibilityDecision
    notes: List[str] = field(default_factory=list)
    top_matches: List[Match] = field(default_factory=list, repr=False)
    scene: SceneContext = field(default_factory=SceneContext)

    @property
    def withheld(self) -> bool:
        return self.visibility.should_withhold_location

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": "low_confidence" if self.withheld else "ok",
            "location": self.location.to_dict(),
            "location_visibility": "withheld" if self.withheld else "visible",
            "location_reason": self.visibility.reason,
            "confidence": self.confidence,
            "confidence_tier": self.tier,
            "visibility": self.visibility.to_dict(),
            "notes": " ".join(self.notes),
            "scene_context": self.scene.to_dict(),
            "top_matches": [m.to_dict() for m in self.top_matches],
        }
