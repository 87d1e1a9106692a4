from __future__ import annotations

from typing import Optional, Sequence
import re

from common.geo import distance_between
from common.types import Match, MatchConsensus, VisibilityDecision


STRONG_CONSENSUS_RADIUS_M = 1_500.0
ACTIONABLE_COHERENCE_RADIUS_M = 25_000.0
MIN_AGREEING_MATCHES = 3
MATCHES_TO_CHECK = 5

DEFAULT_MINIMUM_CONFIDENCE = 0.65
HIGH_CONFIDENCE = 0.75
MEDIUM_CONFIDENCE = 0.60

# reason codes, highest priority first
REASON_MODEL_FALLBACK = "model_fallback_active"
REASON_INDEX_FALLBACK = "reference_index_fallback_active"
REASON_SPREAD_TOO_WIDE = "candidate_spread_too_wide"
REASON_CONSENSUS_WEAK = "match_consensus_weak"
REASON_LOW_CONFIDENCE = "confidence_below_actionable_threshold"

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def normalize_label(label: str) -> str:
    """Case- and punctuation-insensitive form used for label agreement."""
    return _NON_ALNUM.sub(" ", label.lower()).strip()


def analyze_match_consensus(matches: Sequence[Match], top_k: int = MATCHES_TO_CHECK) -> MatchConsensus:
    """
    Count how many of the top-k matches agree with the top match:
    same spot (<= 1.5 km), nearby (<= 25 km) and same normalized label.
    The top match counts itself.
    """
    top_matches = list(matches[:top_k])
    if not top_matches:
        return MatchConsensus()

    top = top_matches[0]
    top_label = normalize_label(top.label)
    same_spot = nearby = same_label = 0
    for m in top_matches:
        d = distance_between(top, m)
        if d <= STRONG_CONSENSUS_RADIUS_M:
            same_spot += 1
        if d <= ACTIONABLE_COHERENCE_RADIUS_M:
            nearby += 1
        if normalize_label(m.label) == top_label:
            same_label += 1

    strong = same_spot >= MIN_AGREEING_MATCHES or (
        same_label >= MIN_AGREEING_MATCHES and nearby >= MIN_AGREEING_MATCHES
    )
    return MatchConsensus(
        same_spot_matches=same_spot,
        nearby_matches=nearby,
        same_label_matches=same_label,
        strong_consensus=strong,
        actionable_coherence=strong or nearby >= MIN_AGREEING_MATCHES,
    )


def decide_location_visibility(
    confidence: float,
    matches: Sequence[Match],
    uses_fallback_embedding: bool,
    uses_clip_fallback: bool,
    is_wide_radius: bool,
    minimum_confidence: Optional[float] = None,
    uses_fallback_index: bool = False,
) -> VisibilityDecision:
    """
    Withhold or reveal the computed coordinate.

    Pure function of its inputs. Never raises for weak evidence: low
    confidence, wide spread and weak consensus are reported through the
    returned decision. A CLIP fallback disables withholding; the reason is
    still reported so operators see the underlying concern.

    Reason precedence: model fallback, reference-index fallback, spread,
    consensus, confidence.
    """
    threshold = DEFAULT_MINIMUM_CONFIDENCE if minimum_confidence is None else minimum_confidence
    consensus = analyze_match_consensus(matches)

    low_confidence = confidence < threshold and not consensus.strong_consensus
    weak_consensus = not consensus.actionable_coherence
    any_fallback = uses_fallback_embedding or uses_fallback_index
    withhold = not uses_clip_fallback and (any_fallback or is_wide_radius or weak_consensus or low_confidence)

    reason: Optional[str] = None
    if uses_fallback_embedding and not uses_clip_fallback:
        reason = REASON_MODEL_FALLBACK
    elif uses_fallback_index and not uses_clip_fallback:
        reason = REASON_INDEX_FALLBACK
    elif is_wide_radius:
        reason = REASON_SPREAD_TOO_WIDE
    elif weak_consensus:
        reason = REASON_CONSENSUS_WEAK
    elif low_confidence:
        reason = REASON_LOW_CONFIDENCE

    return VisibilityDecision(
        should_withhold_location=withhold,
        reason=reason,
        low_confidence=low_confidence,
        weak_consensus=weak_consensus,
        match_consensus=consensus,
    )


def confidence_tier(confidence: float) -> str:
    if confidence >= HIGH_CONFIDENCE:
        return "high"
    if confidence >= MEDIUM_CONFIDENCE:
        return "medium"
    return "low"
