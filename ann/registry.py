from __future__ import annotations

import asyncio
import threading
from pathlib import Path
from typing import Callable, Optional, Sequence

from common.logging_setup import get_logger
from common.types import ReferenceRecord
from .hnsw import IndexHNSW, DEFAULT_EF_CONSTRUCTION, DEFAULT_EF_SEARCH, DEFAULT_M


log = get_logger("ann.registry")

CatalogLoader = Callable[[], Sequence[ReferenceRecord]]


class IndexHandle:
    """
    Owner of the process-wide ANN index.

    - get(): lazy, single-flight init. Concurrent first callers block on one
      build and all receive the same instance.
    - rebuild(): builds a *new* IndexHNSW from a fresh catalog snapshot and
      swaps the reference; searches already holding the old index finish on it.
    - invalidate(): drop the instance so the next get() rebuilds.

    If `index_path` is given, get() first tries to load the persisted graph and
    only rebuilds (then re-saves) when that load is rejected.
    """

    def __init__(
        self,
        loader: CatalogLoader,
        *,
        dimension: int = 512,
        m: int = DEFAULT_M,
        ef_construction: int = DEFAULT_EF_CONSTRUCTION,
        ef_search: int = DEFAULT_EF_SEARCH,
        index_path: Optional[str | Path] = None,
    ):
        self._loader = loader
        self._dimension = dimension
        self._m = m
        self._ef_construction = ef_construction
        self._ef_search = ef_search
        self._index_path = Path(index_path) if index_path else None
        self._lock = threading.Lock()
        self._index: Optional[IndexHNSW] = None
        self.builds = 0

    @classmethod
    def from_config(cls, loader: CatalogLoader, cfg, index_path: Optional[str | Path] = None) -> "IndexHandle":
        return cls(
            loader,
            dimension=cfg.embedding_dim,
            m=cfg.hnsw_m,
            ef_construction=cfg.hnsw_ef_construction,
            ef_search=cfg.hnsw_ef_search,
            index_path=index_path,
        )

    @property
    def ready(self) -> bool:
        return self._index is not None

    def get(self) -> IndexHNSW:
        index = self._index
        if index is not None:
            return index
        with self._lock:
            if self._index is None:
                self._index = self._create(allow_load=True)
            return self._index

    async def aget(self) -> IndexHNSW:
        """Async variant of get(); the build runs in a worker thread."""
        index = self._index
        if index is not None:
            return index
        return await asyncio.to_thread(self.get)

    def rebuild(self) -> IndexHNSW:
        with self._lock:
            fresh = self._create(allow_load=False)
            self._index = fresh
        log.info("ANN index swapped", extra={"extra": {"count": fresh.size, "builds": self.builds}})
        return fresh

    def invalidate(self) -> None:
        with self._lock:
            self._index = None
        log.info("ANN index invalidated")

    def _create(self, allow_load: bool) -> IndexHNSW:
        records = list(self._loader())
        index = IndexHNSW(
            dimension=self._dimension,
            m=self._m,
            ef_construction=self._ef_construction,
            ef_search=self._ef_search,
        )
        if allow_load and self._index_path is not None and index.load(self._index_path, records):
            return index
        index.build(records)
        self.builds += 1
        if self._index_path is not None:
            index.save(self._index_path)
        return index
