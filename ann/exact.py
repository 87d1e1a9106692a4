from __future__ import annotations

from typing import Iterable, List, Sequence

import numpy as np

from common.errors import EmptyCatalog, InvalidQuery
from common.types import Match, ReferenceRecord
from common.utils import clamp, unit_normalize
from .hnsw import IndexHNSW, check_vector, stack_vectors


def exact_search(records: Sequence[ReferenceRecord], query_vector, k: int) -> List[Match]:
    """
    Brute-force cosine search, O(N) per query.

    Same contract and ordering as IndexHNSW.search(); used as ground truth
    when measuring ANN recall, not on the request path.
    """
    if not records:
        raise EmptyCatalog("Reference catalog is empty")
    if k <= 0:
        raise InvalidQuery("k must be positive")
    dim = int(np.asarray(records[0].vector).shape[0])
    q = unit_normalize(check_vector(query_vector, dim))
    mat = unit_normalize(stack_vectors(records, dim))
    sims = mat @ q
    order = np.argsort(-sims, kind="stable")[: min(k, len(records))]
    return [Match.from_record(records[i], clamp(float(sims[i]), -1.0, 1.0)) for i in order]


def recall_at_k(
    index: IndexHNSW,
    records: Sequence[ReferenceRecord],
    queries: Iterable,
    k: int,
) -> float:
    """Mean fraction of exact top-k ids that the ANN index also returns."""
    total = 0.0
    n = 0
    for q in queries:
        truth = {m.id for m in exact_search(records, q, k)}
        got = {m.id for m in index.search(q, k)}
        total += len(truth & got) / max(1, len(truth))
        n += 1
    return total / n if n else 0.0
