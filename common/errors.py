"""
Error taxonomy for the consensus engine.

Every class here marks a contract violation or a data-integrity problem.
None of them is ever turned into a "low confidence" result; weak consensus,
wide spread and low confidence are ordinary outcomes carried by
`VisibilityDecision` instead.
"""
from __future__ import annotations


class GeoConsensusError(Exception):
    """Base class for all engine errors."""

    code = "geoconsensus_error"


class IndexNotBuilt(GeoConsensusError, RuntimeError):
    """ANN index used before a successful build or verified load."""

    code = "index_not_built"


class EmptyCatalog(GeoConsensusError, ValueError):
    """Index build attempted on zero reference records."""

    code = "empty_catalog"


class InvalidVector(GeoConsensusError, ValueError):
    """Query or catalog vector with the wrong dimensionality or non-finite values."""

    code = "invalid_vector"


class InvalidQuery(GeoConsensusError, ValueError):
    """Search called with unusable parameters (e.g. k <= 0)."""

    code = "invalid_query"


class AggregationFailure(GeoConsensusError, RuntimeError):
    """Clustering produced no candidates, or a candidate/score is non-finite."""

    code = "aggregation_failure"


class InvalidCoordinates(GeoConsensusError, ValueError):
    """Final centroid is non-finite or outside WGS84 ranges."""

    code = "invalid_coordinates"


def error_payload(exc: BaseException) -> dict:
    """Stable `{error, message}` payload for logs and CLI output."""
    if isinstance(exc, GeoConsensusError):
        return {"error": exc.code, "message": str(exc)}
    return {"error": "internal_error", "message": "Unexpected engine error"}
