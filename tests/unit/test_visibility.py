"""
Unit tests for the location visibility gate
"""

import os
import sys

import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.types import Match
from gate.visibility import (
    REASON_CONSENSUS_WEAK,
    REASON_INDEX_FALLBACK,
    REASON_LOW_CONFIDENCE,
    REASON_MODEL_FALLBACK,
    REASON_SPREAD_TOO_WIDE,
    analyze_match_consensus,
    confidence_tier,
    decide_location_visibility,
    normalize_label,
)


def match(mid, lat, lon, similarity, label=None):
    return Match(id=mid, label=label or mid, lat=lat, lon=lon, similarity=similarity)


def golden_gate():
    return [match(f"gg{i}", 37.8199, -122.4783, 1.0, "Golden Gate Bridge") for i in range(5)]


def five_continents():
    return [
        match("london", 51.5074, -0.1278, 0.75),
        match("tokyo", 35.6762, 139.6503, 0.70),
        match("new-york", 40.7128, -74.0060, 0.65),
        match("rio", -22.9068, -43.1729, 0.55),
        match("sydney", -33.8688, 151.2093, 0.49),
    ]


def coherent_area():
    """Five distinct places within ~11 km of each other, none at the same spot"""
    return [match(f"area{i}", 48.8566 + 0.05 * d, 2.3522, 0.7) for i, d in enumerate((0, 1, 2, -1, -2))]


def decide(confidence, matches, **kw):
    args = dict(uses_fallback_embedding=False, uses_clip_fallback=False, is_wide_radius=False)
    args.update(kw)
    return decide_location_visibility(confidence, matches, **args)


class TestMatchConsensus:
    """Agreement among the top matches"""

    def test_same_spot(self):
        c = analyze_match_consensus(golden_gate())
        assert c.same_spot_matches == 5
        assert c.strong_consensus
        assert c.actionable_coherence

    def test_scattered(self):
        c = analyze_match_consensus(five_continents())
        assert c.same_spot_matches == 1
        assert c.nearby_matches == 1
        assert not c.strong_consensus
        assert not c.actionable_coherence

    def test_nearby_without_same_spot(self):
        c = analyze_match_consensus(coherent_area())
        assert c.same_spot_matches == 1
        assert c.nearby_matches == 5
        assert not c.strong_consensus
        assert c.actionable_coherence

    def test_same_label_nearby_is_strong(self):
        matches = [match(f"a{i}", m.lat, m.lon, 0.7, "Louvre") for i, m in enumerate(coherent_area())]
        assert analyze_match_consensus(matches).strong_consensus

    def test_only_top_five_count(self):
        matches = five_continents() + golden_gate()
        assert analyze_match_consensus(matches).nearby_matches == 1

    def test_empty(self):
        c = analyze_match_consensus([])
        assert c.same_spot_matches == 0
        assert not c.actionable_coherence

    def test_label_normalisation(self):
        assert normalize_label("Golden Gate Bridge!") == normalize_label("golden-gate  bridge")


class TestDecideVisibility:
    """Withhold / reveal decision"""

    def test_strong_consensus_overrides_marginal_confidence(self):
        """Test identical landmark matches stay visible just below the threshold"""
        d = decide(0.601, golden_gate(), minimum_confidence=0.605)
        assert not d.should_withhold_location
        assert not d.low_confidence
        assert d.match_consensus.strong_consensus
        assert d.reason is None

    def test_scattered_matches_withheld_despite_confidence(self):
        """Test geographically incoherent matches are withheld even at 0.722"""
        d = decide(0.722, five_continents(), minimum_confidence=0.65)
        assert not d.match_consensus.actionable_coherence
        assert d.weak_consensus
        assert d.should_withhold_location
        assert d.reason == REASON_CONSENSUS_WEAK

    def test_low_confidence(self):
        d = decide(0.5, coherent_area())
        assert d.low_confidence
        assert not d.weak_consensus
        assert d.should_withhold_location
        assert d.reason == REASON_LOW_CONFIDENCE

    def test_default_threshold(self):
        assert not decide(0.66, coherent_area()).should_withhold_location
        assert decide(0.64, coherent_area()).should_withhold_location

    def test_deterministic(self):
        assert decide(0.7, five_continents()) == decide(0.7, five_continents())

    @pytest.mark.parametrize(
        "flags,expected",
        [
            (dict(uses_fallback_embedding=True, uses_fallback_index=True, is_wide_radius=True), REASON_MODEL_FALLBACK),
            (dict(uses_fallback_index=True, is_wide_radius=True), REASON_INDEX_FALLBACK),
            (dict(is_wide_radius=True), REASON_SPREAD_TOO_WIDE),
        ],
    )
    def test_reason_precedence(self, flags, expected):
        d = decide(0.3, five_continents(), **flags)
        assert d.should_withhold_location
        assert d.reason == expected

    def test_fallback_withholds_strong_consensus(self):
        d = decide(0.9, golden_gate(), uses_fallback_embedding=True)
        assert d.should_withhold_location
        assert d.reason == REASON_MODEL_FALLBACK

    def test_clip_fallback_never_withholds(self):
        d = decide(0.2, five_continents(), uses_clip_fallback=True, uses_fallback_embedding=True)
        assert not d.should_withhold_location
        assert d.reason == REASON_CONSENSUS_WEAK


class TestConfidenceTier:
    @pytest.mark.parametrize("value,tier", [(0.9, "high"), (0.75, "high"), (0.6, "medium"), (0.59, "low"), (0.0, "low")])
    def test_tiers(self, value, tier):
        assert confidence_tier(value) == tier
