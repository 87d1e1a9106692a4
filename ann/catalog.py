from __future__ import annotations

import json
from pathlib import Path
from typing import List, Sequence

import numpy as np

from common.types import ReferenceRecord


_NPZ_KEYS = ("ids", "labels", "lat", "lon", "vectors")


def load_catalog(path: str | Path) -> List[ReferenceRecord]:
    """
    Load a point-in-time catalog snapshot.

    Supported formats:
      - .npz with arrays ids, labels, lat, lon (N,) and vectors (N, D)
      - .jsonl with one {"id", "label", "lat", "lon", "vector"} object per line
    """
    p = Path(path)
    if p.suffix == ".npz":
        return _load_npz(p)
    if p.suffix in (".jsonl", ".ndjson"):
        return _load_jsonl(p)
    raise ValueError(f"Unsupported catalog format: {p.suffix or p.name}")


def save_catalog(path: str | Path, records: Sequence[ReferenceRecord]) -> None:
    """Write records as .npz (the format the CLI loads fastest)."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    np.savez(
        p,
        ids=np.array([r.id for r in records], dtype=str),
        labels=np.array([r.label for r in records], dtype=str),
        lat=np.array([r.lat for r in records], dtype=float),
        lon=np.array([r.lon for r in records], dtype=float),
        vectors=np.vstack([r.vector for r in records]).astype(np.float32) if records else np.zeros((0, 0), np.float32),
    )


def _load_npz(p: Path) -> List[ReferenceRecord]:
    with np.load(p, allow_pickle=False) as z:
        missing = [k for k in _NPZ_KEYS if k not in z.files]
        if missing:
            raise ValueError(f"{p}: catalog missing arrays {missing}")
        ids, labels, lat, lon, vectors = (z[k] for k in _NPZ_KEYS)
    n = len(ids)
    if not (len(labels) == len(lat) == len(lon) == n) or (n and vectors.shape[0] != n):
        raise ValueError(f"{p}: catalog arrays have inconsistent lengths")
    return [
        ReferenceRecord(id=str(ids[i]), label=str(labels[i]), lat=float(lat[i]), lon=float(lon[i]), vector=vectors[i])
        for i in range(n)
    ]


def _load_jsonl(p: Path) -> List[ReferenceRecord]:
    out: List[ReferenceRecord] = []
    with p.open("r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                row = json.loads(line)
                out.append(
                    ReferenceRecord(
                        id=str(row["id"]),
                        label=str(row.get("label", row["id"])),
                        lat=float(row["lat"]),
                        lon=float(row["lon"]),
                        vector=row["vector"],
                    )
                )
            except (KeyError, TypeError, json.JSONDecodeError) as e:
                raise ValueError(f"{p}:{lineno}: bad catalog row: {e}") from e
    return out
