"""
ANN: reference catalog search

Provides:
- IndexHNSW: faiss HNSW graph over unit-normalized embeddings (cosine similarity)
- exact_search / recall_at_k: brute-force reference search for recall checks
- load_catalog / save_catalog: point-in-time catalog snapshots (.npz / .jsonl)
- IndexHandle: lazily built, single-flight, atomically swappable index owner
"""
from .hnsw import IndexHNSW
from .exact import exact_search, recall_at_k
from .catalog import load_catalog, save_catalog
from .registry import IndexHandle

__all__ = ["IndexHNSW", "exact_search", "recall_at_k", "load_catalog", "save_catalog", "IndexHandle"]
