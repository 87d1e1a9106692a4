"""
Gate: should a computed coordinate be disclosed at all?

The visibility decision is separate from the numeric confidence: geographic
incoherence among the top matches can withhold a confident-looking result,
and a tight same-spot consensus can rescue a borderline-low one.
"""
from .visibility import analyze_match_consensus, confidence_tier, decide_location_visibility

__all__ = ["analyze_match_consensus", "confidence_tier", "decide_location_visibility"]
