from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional
import json
import logging
import os
import sys
import time


LEVEL_ENV_VARS = ("GEOCONSENSUS_LOG_LEVEL", "LOG_LEVEL")


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line:
      {"t": 1712345678901, "lvl": "INFO", "name": "ann.hnsw", "msg": "...", "extra": {...}}

    Callers attach structured fields with `extra={"extra": {...}}`; values
    that are not JSON types (numpy scalars, paths) are stringified.
    """

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "t": int(record.created * 1000),
            "lvl": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        fields = getattr(record, "extra", None)
        if isinstance(fields, dict):
            payload["extra"] = fields
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def _resolve_level(level: Optional[str]) -> int:
    name = level
    for var in LEVEL_ENV_VARS:
        if name:
            break
        name = os.environ.get(var)
    lvl = logging.getLevelName((name or "INFO").upper())
    return lvl if isinstance(lvl, int) else logging.INFO


def setup_logging(level: Optional[str] = None, force: bool = False) -> None:
    """
    Install the JSON handler on the root logger (stderr, so CLI stdout stays
    machine-readable).

    Level: explicit `level`, then GEOCONSENSUS_LOG_LEVEL, then LOG_LEVEL,
    then INFO. Later calls are no-ops unless `force` is set, which only
    re-applies the level.
    """
    root = logging.getLogger()
    lvl = _resolve_level(level)

    if getattr(root, "_geoconsensus_configured", False):
        if force:
            root.setLevel(lvl)
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter())
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(lvl)
    root._geoconsensus_configured = True  # type: ignore[attr-defined]


def get_logger(name: str) -> logging.Logger:
    setup_logging()
    return logging.getLogger(name)


@contextmanager
def log_duration(log: logging.Logger, msg: str, **fields: Any) -> Iterator[Dict[str, Any]]:
    """
    Log `msg` at INFO once the block finishes, with `elapsed_ms` added to
    `fields`. The yielded dict can be filled in from inside the block.
    """
    t0 = time.perf_counter()
    yield fields
    fields["elapsed_ms"] = int(1000.0 * (time.perf_counter() - t0))
    log.info(msg, extra={"extra": fields})
