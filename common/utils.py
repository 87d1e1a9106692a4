from __future__ import annotations

from typing import Sequence
import math
import time
import numpy as np


def clamp(v: float, lo: float, hi: float) -> float:
    return float(min(hi, max(lo, v)))


def softmax(scores: Sequence[float], temperature: float = 1.0) -> list[float]:
    """
    Normalize raw scores into probability-like weights.

    Low temperatures (e.g. 0.05) sharpen the distribution so the best-scoring
    members dominate. Falls back to uniform weights if every exponent underflows.
    """
    if len(scores) == 0:
        return []
    x = np.asarray(scores, dtype=float) / max(temperature, 1e-6)
    e = np.exp(x - np.max(x))
    total = float(e.sum())
    if total == 0.0 or not math.isfinite(total):
        return [1.0 / len(scores)] * len(scores)
    return (e / total).tolist()


def unit_normalize(v: np.ndarray) -> np.ndarray:
    """L2-normalize a 1D or 2D (row-wise) float array; zero rows are left as-is."""
    a = np.asarray(v, dtype=np.float32)
    if a.ndim == 1:
        n = float(np.linalg.norm(a))
        return a / n if n > 0 else a.copy()
    norms = np.linalg.norm(a, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return a / norms


def timer_ms(func):
    """
    Decorator that returns (result, elapsed_ms) for benchmarking small functions.
    """
    def wrapper(*args, **kwargs):
        t0 = time.perf_counter()
        out = func(*args, **kwargs)
        dt_ms = (time.perf_counter() - t0) * 1e3
        return out, dt_ms
    return wrapper
