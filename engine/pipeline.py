from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
import yaml

from ann.catalog import load_catalog
from ann.registry import IndexHandle
from common.config import EngineConfig
from common.errors import GeoConsensusError, error_payload
from common.logging_setup import get_logger, setup_logging
from common.utils import timer_ms
from engine.engine import SEARCH_K, GeolocationEngine


log = get_logger("engine.pipeline")


def _load_yaml(path: str) -> Dict:
    if not path or not Path(path).exists():
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def _load_queries(path: str) -> np.ndarray:
    """
    Query embeddings as an (N, D) array.
    Accepts .npy (1D or 2D), .json (list or list of lists) or whitespace text.
    """
    p = Path(path)
    if p.suffix == ".npy":
        arr = np.load(p, allow_pickle=False)
    elif p.suffix == ".json":
        arr = np.asarray(json.loads(p.read_text()), dtype=np.float32)
    else:
        arr = np.loadtxt(p, dtype=np.float32)
    arr = np.asarray(arr, dtype=np.float32)
    if arr.ndim == 1:
        arr = arr.reshape(1, -1)
    if arr.ndim != 2:
        raise ValueError(f"{p}: expected a vector or a matrix of vectors")
    return arr


def build_arg_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Geolocation consensus engine: locate query embeddings against a reference catalog")
    ap.add_argument("--config", default="config/params.yaml")
    ap.add_argument("--catalog", required=True, help="Reference catalog (.npz or .jsonl)")
    ap.add_argument("--query", required=True, help="Query embedding(s) (.npy, .json or text)")
    ap.add_argument("--mode", choices=sorted(SEARCH_K), default="accurate")
    ap.add_argument("--ultra", action="store_true", help="Force ultra-accuracy mode")
    ap.add_argument("--index-path", default=None, help="Persisted HNSW graph (loaded if valid, else rebuilt)")
    ap.add_argument("--fallback-embedding", action="store_true", help="Query came from the fallback embedder")
    ap.add_argument("--fallback-index", action="store_true", help="Catalog is the fallback reference index")
    ap.add_argument("--clip", action="store_true", help="Embedding came from the CLIP fallback path")
    ap.add_argument("--clip-index", action="store_true", help="Catalog is a CLIP-sourced reference index (rescales similarities)")
    ap.add_argument("--top", type=int, default=5, help="Top matches to include in the output")
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)

    P = _load_yaml(args.config)
    setup_logging(P.get("logging", {}).get("level"), force=True)

    env = dict(os.environ)
    if args.ultra:
        env["GEOCONSENSUS_ULTRA_ACCURACY"] = "true"
    cfg = EngineConfig.load(args.config, env=env)

    index_path = args.index_path or P.get("index", {}).get("path")
    handle = IndexHandle.from_config(lambda: load_catalog(args.catalog), cfg, index_path=index_path)
    engine = GeolocationEngine(cfg, handle, top_matches=args.top)
    locate = timer_ms(engine.locate)

    log.info(
        "Pipeline started",
        extra={"extra": {"catalog": args.catalog, "mode": args.mode, "ultra": cfg.ultra_accuracy}},
    )
    try:
        queries = _load_queries(args.query)
        results = []
        for q in queries:
            estimate, dt_ms = locate(
                q,
                mode=args.mode,
                uses_fallback_embedding=args.fallback_embedding,
                uses_fallback_index=args.fallback_index,
                uses_clip=args.clip,
                clip_index=args.clip_index,
            )
            row = estimate.to_dict()
            row["elapsed_ms"] = int(dt_ms)
            results.append(row)
            log.info(
                "Located query",
                extra={"extra": {
                    "confidence": round(estimate.confidence, 4),
                    "visibility": row["location_visibility"],
                    "reason": estimate.visibility.reason,
                    "latency_ms": int(dt_ms),
                }},
            )
    except GeoConsensusError as e:
        log.error("Locate failed", extra={"extra": error_payload(e)})
        print(json.dumps(error_payload(e)))
        return 2

    print(json.dumps(results[0] if len(results) == 1 else results, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
