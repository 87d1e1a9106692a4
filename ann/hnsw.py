from __future__ import annotations

from pathlib import Path
from typing import List, NamedTuple, Optional, Sequence

import faiss
import numpy as np

from common.errors import EmptyCatalog, IndexNotBuilt, InvalidQuery, InvalidVector
from common.logging_setup import get_logger, log_duration
from common.types import Match, ReferenceRecord
from common.utils import clamp, unit_normalize


log = get_logger("ann.hnsw")

# Defaults favour recall over raw speed for catalogs under ~100K vectors.
DEFAULT_M = 16
DEFAULT_EF_CONSTRUCTION = 200
DEFAULT_EF_SEARCH = 64


def check_vector(v, dimension: int, what: str = "query") -> np.ndarray:
    """Coerce to a flat float32 vector of length `dimension` with finite values."""
    try:
        a = np.asarray(v, dtype=np.float32).reshape(-1)
    except (TypeError, ValueError) as e:
        raise InvalidVector(f"{what} vector is not numeric: {e}") from e
    if a.shape[0] != dimension:
        raise InvalidVector(f"{what} vector must have {dimension} dimensions, got {a.shape[0]}")
    if not np.isfinite(a).all():
        raise InvalidVector(f"{what} vector contains non-finite values")
    return a


def stack_vectors(records: Sequence[ReferenceRecord], dimension: int) -> np.ndarray:
    """Validate every record vector and stack them into an (N, D) float32 matrix."""
    mat = np.empty((len(records), dimension), dtype=np.float32)
    for i, r in enumerate(records):
        mat[i] = check_vector(r.vector, dimension, what=f"catalog record {r.id!r}")
    return mat


class _Built(NamedTuple):
    index: faiss.Index
    records: List[ReferenceRecord]


class IndexHNSW:
    """
    HNSW approximate nearest-neighbour index over a reference catalog.

    Vectors are unit-normalized before insertion and searched with the inner
    product metric, so the raw score is cosine similarity (1 - cosine
    distance). The faiss graph and the record list are installed together as
    one immutable pair; a rebuild never mutates the pair a concurrent search
    is reading.

    Args:
        dimension: embedding length D shared by catalog and queries.
        m: graph out-degree (memory vs recall).
        ef_construction: build-time candidate list size (build time vs quality).
        ef_search: query-time candidate list size (latency vs recall).
    """

    def __init__(
        self,
        dimension: int = 512,
        m: int = DEFAULT_M,
        ef_construction: int = DEFAULT_EF_CONSTRUCTION,
        ef_search: int = DEFAULT_EF_SEARCH,
    ):
        if dimension <= 0:
            raise ValueError("dimension must be > 0")
        self.dimension = int(dimension)
        self.m = int(m)
        self.ef_construction = int(ef_construction)
        self.ef_search = int(ef_search)
        self._state: Optional[_Built] = None

    @classmethod
    def from_config(cls, cfg) -> "IndexHNSW":
        return cls(
            dimension=cfg.embedding_dim,
            m=cfg.hnsw_m,
            ef_construction=cfg.hnsw_ef_construction,
            ef_search=cfg.hnsw_ef_search,
        )

    # -------------------------
    # Build / search
    # -------------------------
    def build(self, records: Sequence[ReferenceRecord]) -> None:
        records = list(records)
        if not records:
            raise EmptyCatalog("Cannot build HNSW index: empty catalog")

        with log_duration(
            log, "HNSW index built",
            count=len(records), dim=self.dimension, m=self.m, ef_construction=self.ef_construction,
        ):
            mat = unit_normalize(stack_vectors(records, self.dimension))
            index = faiss.IndexHNSWFlat(self.dimension, self.m, faiss.METRIC_INNER_PRODUCT)
            index.hnsw.efConstruction = self.ef_construction
            index.hnsw.efSearch = self.ef_search
            index.add(np.ascontiguousarray(mat, dtype=np.float32))

        self._state = _Built(index=index, records=records)

    def search(self, query_vector, k: int) -> List[Match]:
        """
        Return up to min(k, size) matches, most similar first.

        Ties keep catalog insertion order.
        """
        state = self._state
        if state is None:
            raise IndexNotBuilt("HNSW index not built. Call build() or load() first.")
        if k <= 0:
            raise InvalidQuery("k must be positive")
        q = unit_normalize(check_vector(query_vector, self.dimension))

        kk = min(int(k), state.index.ntotal)
        # per-call params: no shared state is touched by concurrent searches
        params = faiss.SearchParametersHNSW(efSearch=max(self.ef_search, kk))
        sims, ids = state.index.search(q.reshape(1, -1), kk, params=params)

        hits = [
            (float(s), int(i))
            for s, i in zip(sims[0], ids[0])
            if 0 <= int(i) < len(state.records)
        ]
        hits.sort(key=lambda h: (-h[0], h[1]))
        return [Match.from_record(state.records[i], clamp(s, -1.0, 1.0)) for s, i in hits]

    # -------------------------
    # Persistence
    # -------------------------
    def save(self, path: str | Path) -> None:
        state = self._state
        if state is None:
            raise IndexNotBuilt("Cannot save: index not built")
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        faiss.write_index(state.index, str(p))
        log.info("HNSW index saved", extra={"extra": {"path": str(p), "count": state.index.ntotal}})

    def load(self, path: str | Path, records: Sequence[ReferenceRecord]) -> bool:
        """
        Restore a persisted graph for `records`.

        Returns False (caller should rebuild) when the file is missing or
        unreadable, or when its dimension or vector count does not match the
        catalog. A stale or partial index is never installed.
        """
        p = Path(path)
        records = list(records)
        if not p.exists():
            log.info("No persisted HNSW index", extra={"extra": {"path": str(p)}})
            return False
        try:
            index = faiss.read_index(str(p))
        except RuntimeError as e:
            log.warning("Failed to read HNSW index", extra={"extra": {"path": str(p), "error": str(e)}})
            return False

        if index.d != self.dimension:
            log.warning(
                "Persisted HNSW index dimension mismatch",
                extra={"extra": {"path": str(p), "expected": self.dimension, "found": int(index.d)}},
            )
            return False
        if not records or index.ntotal != len(records):
            log.warning(
                "Persisted HNSW index size mismatch",
                extra={"extra": {"path": str(p), "expected": len(records), "found": int(index.ntotal)}},
            )
            return False

        self._state = _Built(index=index, records=records)
        log.info("HNSW index loaded", extra={"extra": {"path": str(p), "count": len(records)}})
        return True

    # -------------------------
    # Introspection
    # -------------------------
    @property
    def size(self) -> int:
        state = self._state
        return 0 if state is None else int(state.index.ntotal)

    @property
    def ready(self) -> bool:
        return self._state is not None

    def set_ef_search(self, ef: int) -> None:
        """Latency/recall trade-off for subsequent searches."""
        if ef <= 0:
            raise ValueError("ef must be > 0")
        self.ef_search = int(ef)
