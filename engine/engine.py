from __future__ import annotations

from typing import List, Sequence

from ann.registry import IndexHandle
from common.config import EngineConfig
from common.logging_setup import get_logger
from common.types import GeoEstimate, Location, Match
from common.utils import clamp
from consensus.aggregate import aggregate_matches
from consensus.continents import prevent_cross_continent_errors
from consensus.dbscan import DBSCANClusterer
from consensus.scene import scene_context
from gate.visibility import confidence_tier, decide_location_visibility


log = get_logger("engine")

SEARCH_K = {"fast": 8, "accurate": 20}
FALLBACK_PENALTY = 0.55
CLIP_BOOST = 1.15
MAX_REPORTED_CONFIDENCE = 0.97
WITHHELD_MIN_RADIUS_M = 1_000_000.0

# CLIP cosine scores sit in a narrow low band; stretch them onto the range
# the anchor thresholds expect (0.15 -> 0.15, 0.25 -> 0.45, 0.35 -> 0.75)
CLIP_SIMILARITY_OFFSET = 0.10
CLIP_SIMILARITY_SCALE = 3.0
CLIP_SIMILARITY_FLOOR = 0.05
CLIP_SIMILARITY_CEILING = 0.95


def rescale_clip_similarities(matches: Sequence[Match]) -> List[Match]:
    """Linear rescale of CLIP-index similarities; order and fields otherwise unchanged."""
    return [
        Match(
            id=m.id,
            label=m.label,
            lat=m.lat,
            lon=m.lon,
            similarity=clamp(
                (m.similarity - CLIP_SIMILARITY_OFFSET) * CLIP_SIMILARITY_SCALE,
                CLIP_SIMILARITY_FLOOR,
                CLIP_SIMILARITY_CEILING,
            ),
            vector=m.vector,
        )
        for m in matches
    ]


class GeolocationEngine:
    """
    query embedding -> ANN search -> continent-aware consensus -> confidence
    -> visibility gate -> GeoEstimate.

    Stateless per request; the only shared state is the read-only index held
    by `handle`.
    """

    def __init__(self, cfg: EngineConfig, handle: IndexHandle, top_matches: int = 5):
        self.cfg = cfg
        self.handle = handle
        self.top_matches = top_matches
        self._dbscan = DBSCANClusterer(epsilon_m=cfg.cluster_radius_m, min_points=2)

    def search(self, query_vector, mode: str = "accurate", clip_index: bool = False) -> List[Match]:
        """
        Ranked matches in the order every later stage sees them: CLIP-index
        scores rescaled first, then cross-continent demotion.
        """
        if mode not in SEARCH_K:
            raise ValueError(f"mode must be one of {sorted(SEARCH_K)}, got {mode!r}")
        matches = self.handle.get().search(query_vector, SEARCH_K[mode])
        if clip_index:
            matches = rescale_clip_similarities(matches)
        return prevent_cross_continent_errors(matches)

    def locate(
        self,
        query_vector,
        *,
        mode: str = "accurate",
        uses_fallback_embedding: bool = False,
        uses_fallback_index: bool = False,
        uses_clip: bool = False,
        clip_index: bool = False,
    ) -> GeoEstimate:
        """
        Estimate a location for one query embedding.

        The fallback flags describe where the embedding and the reference
        index came from; they are reported separately by the gate.
        `clip_index` marks a CLIP-sourced reference index: its similarities
        are rescaled before clustering and it counts as a CLIP path for the
        confidence boost and the gate.
        """
        matches = self.search(query_vector, mode, clip_index=clip_index)
        agg = aggregate_matches(matches, self.cfg)
        scene = scene_context(matches)
        uses_clip = uses_clip or clip_index

        any_fallback = uses_fallback_embedding or uses_fallback_index
        confidence = clamp(
            agg.confidence * (FALLBACK_PENALTY if any_fallback else 1.0) * (CLIP_BOOST if uses_clip else 1.0),
            0.0,
            MAX_REPORTED_CONFIDENCE,
        )
        is_wide = agg.location.radius_m > self.cfg.wide_radius_m
        decision = decide_location_visibility(
            confidence,
            matches,
            uses_fallback_embedding=uses_fallback_embedding,
            uses_clip_fallback=uses_clip,
            is_wide_radius=is_wide,
            minimum_confidence=self.cfg.minimum_confidence,
            uses_fallback_index=uses_fallback_index,
        )

        location = agg.location
        if decision.should_withhold_location:
            location = Location(
                lat=location.lat,
                lon=location.lon,
                radius_m=max(location.radius_m, WITHHELD_MIN_RADIUS_M),
            )
            log.debug("Location withheld", extra={"extra": {"reason": decision.reason, "confidence": confidence}})

        places = len(self._dbscan.top_clusters(self._dbscan.cluster(matches), len(matches)))
        notes = self._notes(
            uses_fallback_embedding=uses_fallback_embedding,
            uses_fallback_index=uses_fallback_index,
            uses_clip=uses_clip,
            is_wide=is_wide,
            weak_consensus=decision.weak_consensus,
            low_confidence=decision.low_confidence,
            withheld=decision.should_withhold_location,
            continent_reason=agg.continent.reason if agg.continent else None,
            places=places,
        )
        return GeoEstimate(
            location=location,
            confidence=confidence,
            tier=confidence_tier(confidence),
            visibility=decision,
            notes=notes,
            top_matches=matches[: self.top_matches],
            scene=scene,
        )

    def _notes(
        self,
        *,
        uses_fallback_embedding: bool,
        uses_fallback_index: bool,
        uses_clip: bool,
        is_wide: bool,
        weak_consensus: bool,
        low_confidence: bool,
        withheld: bool,
        continent_reason,
        places: int,
    ) -> List[str]:
        notes = [
            "Approximate location from visual-embedding nearest-neighbor search.",
            "Accuracy depends on reference coverage and landmark visibility.",
        ]
        any_fallback = uses_fallback_embedding or uses_fallback_index
        if uses_fallback_embedding:
            notes.append("Warning: image embedding unavailable; deterministic fallback embedding used.")
        if uses_fallback_index:
            notes.append("Warning: reference index unavailable; fallback coordinate vectors used.")
        if any_fallback and not uses_clip:
            notes.append("Location withheld because fallback mode cannot guarantee continent-level reliability.")
        if is_wide:
            notes.append("Warning: Candidate spread is very large; result is low confidence.")
        if weak_consensus and not is_wide and not any_fallback:
            notes.append("Warning: Top matches disagree geographically; coordinates are not reliable enough to show.")
        if low_confidence and not is_wide and not any_fallback:
            notes.append("Warning: Similarity margin is weak; coordinate may be far from true location.")
        if continent_reason:
            notes.append(f"Warning: {continent_reason}.")
        if places > 1:
            notes.append(f"Evidence splits across {places} distinct areas.")
        if withheld:
            notes.append(
                f"Location coordinates are withheld for this result (required confidence: "
                f"{self.cfg.minimum_confidence * 100:.1f}%+ or a strong local match consensus)."
            )
        return notes
