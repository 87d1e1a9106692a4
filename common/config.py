"""
Engine configuration.

One validated `EngineConfig` is built at startup and passed explicitly to the
clustering, scoring and gating functions. Precedence (lowest to highest):
built-in defaults for the selected mode, the `consensus:` section of a YAML
file, then GEOCONSENSUS_* environment variables.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from common.logging_setup import get_logger


log = get_logger("common.config")

ENV_PREFIX = "GEOCONSENSUS_"

# field -> (min, max)
_CLAMPS: Dict[str, Tuple[float, float]] = {
    "cluster_radius_m": (10_000, 100_000),
    "min_cluster_candidates": (2, 10),
    "max_cluster_candidates": (3, 20),
    "cluster_search_depth": (8, 100),
    "iqr_multiplier": (0.5, 5.0),
    "minimum_confidence": (0.0, 1.0),
    "wide_radius_m": (10_000, 5_000_000),
    "embedding_dim": (1, 8192),
    "hnsw_m": (4, 128),
    "hnsw_ef_construction": (16, 2000),
    "hnsw_ef_search": (8, 2000),
}

# field -> env var suffix
_ENV_KEYS: Dict[str, str] = {
    "ultra_accuracy": "ULTRA_ACCURACY",
    "cluster_radius_m": "CLUSTER_RADIUS_M",
    "min_cluster_candidates": "MIN_CLUSTER_CANDIDATES",
    "max_cluster_candidates": "MAX_CLUSTER_CANDIDATES",
    "cluster_search_depth": "CLUSTER_SEARCH_DEPTH",
    "outlier_rejection": "OUTLIER_REJECTION",
    "iqr_multiplier": "IQR_MULTIPLIER",
    "minimum_confidence": "MINIMUM_CONFIDENCE",
    "wide_radius_m": "WIDE_RADIUS_M",
    "embedding_dim": "EMBEDDING_DIM",
    "hnsw_m": "HNSW_M",
    "hnsw_ef_construction": "HNSW_EF_CONSTRUCTION",
    "hnsw_ef_search": "HNSW_EF_SEARCH",
}


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """
    Knobs for clustering, scoring and gating.

    Ultra-accuracy mode is a variant of this value (see `EngineConfig.ultra()`),
    not a flag read inside the algorithms.
    """
    ultra_accuracy: bool = False
    cluster_radius_m: float = 30_000.0
    min_cluster_candidates: int = 3
    max_cluster_candidates: int = 6
    cluster_search_depth: int = 24
    outlier_rejection: bool = True
    iqr_multiplier: float = 1.5
    minimum_confidence: float = 0.65
    wide_radius_m: float = 300_000.0
    embedding_dim: int = 512
    hnsw_m: int = 16
    hnsw_ef_construction: int = 200
    hnsw_ef_search: int = 64

    def __post_init__(self) -> None:
        if self.min_cluster_candidates > self.max_cluster_candidates:
            raise ValueError("min_cluster_candidates must be <= max_cluster_candidates")
        if self.cluster_radius_m <= 0 or self.wide_radius_m <= 0:
            raise ValueError("radii must be > 0")
        if not (0.0 <= self.minimum_confidence <= 1.0):
            raise ValueError("minimum_confidence must be in [0, 1]")
        if self.embedding_dim <= 0:
            raise ValueError("embedding_dim must be > 0")

    # ---- mode-dependent scorer bounds ----
    @property
    def confidence_floor(self) -> float:
        return 0.15 if self.ultra_accuracy else 0.05

    @property
    def confidence_ceiling(self) -> float:
        return 0.95 if self.ultra_accuracy else 0.97

    @property
    def radius_floor_m(self) -> float:
        return 80.0 if self.ultra_accuracy else 100.0

    @property
    def radius_multiplier(self) -> float:
        return 0.7 if self.ultra_accuracy else 1.0

    @property
    def radius_ceiling_m(self) -> float:
        return 500_000.0 if self.ultra_accuracy else 2_000_000.0

    # ---- constructors ----
    @classmethod
    def ultra(cls, **overrides: Any) -> "EngineConfig":
        base = dict(
            ultra_accuracy=True,
            min_cluster_candidates=4,
            max_cluster_candidates=8,
            cluster_search_depth=32,
        )
        base.update(overrides)
        return cls(**base)

    @classmethod
    def defaults(cls, ultra_accuracy: bool = False) -> "EngineConfig":
        return cls.ultra() if ultra_accuracy else cls()

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any], base: Optional["EngineConfig"] = None) -> "EngineConfig":
        """
        Overlay `values` (e.g. a YAML section) on `base`.

        If `values` switches ultra mode on and no base is given, the ultra
        defaults are used as the starting point.
        """
        if base is None:
            base = cls.defaults(_parse_bool(values.get("ultra_accuracy"), False))
        known = {f.name for f in fields(cls)}
        updates: Dict[str, Any] = {}
        for key, raw in values.items():
            if key not in known:
                log.warning("Ignoring unknown config key", extra={"extra": {"key": key}})
                continue
            updates[key] = _coerce(key, raw, getattr(base, key))
        return replace(base, **_relax(base, updates))

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None, base: Optional["EngineConfig"] = None) -> "EngineConfig":
        return cls.from_mapping(_env_values(env), base=base)

    @classmethod
    def load(cls, path: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> "EngineConfig":
        """
        Defaults → YAML `consensus:` section (if `path` exists) → environment.

        Both sources are merged before the mode defaults are chosen, so
        GEOCONSENSUS_ULTRA_ACCURACY=true still picks up YAML overrides.
        """
        values: Dict[str, Any] = {}
        if path and Path(path).exists():
            values.update(_load_yaml_section(path, "consensus"))
        values.update(_env_values(env))
        return cls.from_mapping(values)


def _env_values(env: Optional[Mapping[str, str]]) -> Dict[str, Any]:
    env = os.environ if env is None else env
    values: Dict[str, Any] = {}
    for name, suffix in _ENV_KEYS.items():
        raw = env.get(ENV_PREFIX + suffix)
        if raw is not None and raw != "":
            values[name] = raw
    return values


def _load_yaml_section(path: str, section: str) -> Dict[str, Any]:
    with open(path, "r") as f:
        doc = yaml.safe_load(f) or {}
    if not isinstance(doc, dict):
        raise ValueError(f"{path}: top-level YAML must be a mapping")
    part = doc.get(section) or {}
    if not isinstance(part, dict):
        raise ValueError(f"{path}: '{section}' must be a mapping")
    return part


def _parse_bool(raw: Any, default: bool) -> bool:
    if raw is None:
        return default
    if isinstance(raw, bool):
        return raw
    s = str(raw).strip().lower()
    if s in ("1", "true", "yes", "on"):
        return True
    if s in ("0", "false", "no", "off"):
        return False
    return default


def _coerce(name: str, raw: Any, default: Any) -> Any:
    """Parse and clamp one knob; unparseable input keeps the default."""
    if isinstance(default, bool):
        return _parse_bool(raw, default)
    try:
        value = int(float(raw)) if isinstance(default, int) else float(raw)
    except (TypeError, ValueError, OverflowError):
        log.warning("Unparseable config value, using default", extra={"extra": {"key": name, "value": str(raw)}})
        return default
    if value != value:  # NaN
        return default
    lo, hi = _CLAMPS.get(name, (value, value))
    clamped = type(default)(min(hi, max(lo, value)))
    if clamped != value:
        log.info("Config value clamped", extra={"extra": {"key": name, "value": value, "clamped": clamped}})
    return clamped


def _relax(base: EngineConfig, updates: Dict[str, Any]) -> Dict[str, Any]:
    """Keep min <= max when only one side of the candidate range is overridden."""
    lo = updates.get("min_cluster_candidates", base.min_cluster_candidates)
    hi = updates.get("max_cluster_candidates", base.max_cluster_candidates)
    if lo > hi:
        updates = dict(updates)
        updates["max_cluster_candidates"] = lo
    return updates
