"""
Scene type from reference labels.

The query image itself is never inspected: the labels of the top three
matches are joined and tested against keyword families in a fixed order
(landmark, nature, urban, rural). The result only annotates the output; it
does not change confidence or the visibility decision.
"""
from __future__ import annotations

from typing import Sequence
import re

from common.types import Match, SceneContext


SCENE_LABEL_MATCHES = 3

ICONIC_LANDMARK = "iconic_landmark"
GENERIC_SCENE = "generic_scene"

_SCENE_PATTERNS = (
    ("landmark", re.compile(
        r"(tower|bridge|cathedral|temple|castle|palace|mosque|pyramids|colosseum|acropolis|opera|statue"
        r"|capitol|white house|forbidden city|stonehenge|museum|taj mahal|eiffel|sagrada)",
        re.IGNORECASE,
    )),
    ("nature", re.compile(
        r"(beach|coast|reef|mountain|point|crater|sound|glacier|falls|park|bay|alps|canyon|cliff|valley|island)",
        re.IGNORECASE,
    )),
    ("urban", re.compile(r"(city|downtown|skyline|district|street|avenue|square|plaza|market)", re.IGNORECASE)),
    ("rural", re.compile(r"(village|countryside|rural|farm|field|country)", re.IGNORECASE)),
)

_CALIBRATION = {
    "nature": "Wider uncertainty typical for natural scenes",
    "urban": "Moderate precision for urban areas",
    "rural": "Regional-level accuracy for rural scenes",
}


def classify_scene(matches: Sequence[Match]) -> str:
    """landmark / nature / urban / rural / unknown; first matching family wins."""
    if not matches:
        return "unknown"
    labels = " ".join(m.label for m in matches[:SCENE_LABEL_MATCHES])
    for scene, pattern in _SCENE_PATTERNS:
        if pattern.search(labels):
            return scene
    return "unknown"


def infer_cohort_hint(scene_type: str) -> str:
    return ICONIC_LANDMARK if scene_type == "landmark" else GENERIC_SCENE


def confidence_calibration(scene_type: str, cohort_hint: str) -> str:
    if cohort_hint == ICONIC_LANDMARK:
        return "High precision expected for distinctive landmarks"
    return _CALIBRATION.get(scene_type, "Confidence varies by scene distinctiveness")


def scene_context(matches: Sequence[Match]) -> SceneContext:
    scene = classify_scene(matches)
    cohort = infer_cohort_hint(scene)
    return SceneContext(
        scene_type=scene,
        cohort_hint=cohort,
        confidence_calibration=confidence_calibration(scene, cohort),
    )
