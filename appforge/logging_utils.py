# appforge/logging_utils.py
from __future__ import annotations

import datetime
import json
import logging
import logging.handlers as lh
import os
import sys
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional


class _HttpNoiseFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        msg = record.getMessage()
        noisy = (
            "HTTP Request:" in msg
            or "HTTP Response:" in msg
            or record.name.startswith("httpx")
            or record.name.startswith("httpcore")
        )
        return not noisy


class JsonFormatter(logging.Formatter):
    """Compact single-line JSON formatter.

    Emits objects with keys: ts (ISO8601 UTC), level, module, msg, meta.
    ``meta`` comes from ``extra={"meta": {...}}`` and is enriched with a few
    well-known fields callers may attach directly to the record.
    """

    _KNOWN_FIELDS = (
        "project_id",
        "path",
        "phase",
        "stage",
        "model",
        "latency_ms",
        "attempt",
        "op",
    )

    def _safe(self, v: Any) -> Any:
        try:
            json.dumps(v)
            return v
        except (TypeError, ValueError):
            return str(v)

    def format(self, record: logging.LogRecord) -> str:
        meta: Dict[str, Any] = {}
        raw_meta = record.__dict__.get("meta")
        if isinstance(raw_meta, dict):
            meta.update({k: self._safe(v) for k, v in raw_meta.items()})
        for k in self._KNOWN_FIELDS:
            if record.__dict__.get(k) is not None:
                meta[k] = self._safe(record.__dict__[k])
        if record.exc_info:
            meta["exc"] = self.formatException(record.exc_info)

        payload = {
            "ts": datetime.datetime.now(datetime.timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "module": record.name,
            "msg": record.getMessage(),
            "meta": meta,
        }
        return json.dumps(payload, separators=(",", ":"))


def configure_quiet_http(quiet_http: bool) -> None:
    """Reduce noisy HTTP-level logs from httpx/openai. Safe to call repeatedly."""
    if not quiet_http:
        return
    for name in ("httpx", "httpcore", "openai"):
        lg = logging.getLogger(name)
        lg.setLevel(logging.WARNING)
        lg.propagate = False
    root = logging.getLogger()
    for h in root.handlers:
        if not any(isinstance(f, _HttpNoiseFilter) for f in h.filters):
            h.addFilter(_HttpNoiseFilter())
    os.environ.setdefault("OPENAI_LOG", "error")


def configure_logging(
    level: str = "INFO",
    *,
    log_file: Optional[str] = "appforge.log",
    structured: bool = True,
    quiet_http: bool = True,
) -> None:
    """Configure global logging.

    Idempotent: an existing handler for the same file or for stdout is reused
    (and has its formatter switched) rather than duplicated. Tests may pass
    ``log_file=None, structured=False``.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    json_fmt = JsonFormatter()
    human_fmt = logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s")
    fmt = json_fmt if structured else human_fmt

    if log_file:
        path = os.path.abspath(log_file)
        fh = next((h for h in root.handlers if getattr(h, "baseFilename", None) == path), None)
        if fh is None:
            fh = lh.RotatingFileHandler(path, maxBytes=2_000_000, backupCount=3, encoding="utf-8")
            root.addHandler(fh)
        fh.setFormatter(fmt)

    sh = next(
        (
            h
            for h in root.handlers
            if isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) is sys.stderr
        ),
        None,
    )
    if sh is None:
        sh = logging.StreamHandler(sys.stderr)
        root.addHandler(sh)
    sh.setFormatter(fmt)

    configure_quiet_http(quiet_http)


@contextmanager
def start_action(logger: logging.Logger, name: str, **ctx: Any) -> Iterator[Dict[str, Any]]:
    """Log start/stop (or error) of a named action with its duration.

    The yielded dict is merged into the closing record, so callers can attach
    results (e.g. counts) discovered while the action runs.
    """
    meta: Dict[str, Any] = {"action": name, **ctx}
    logger.info("action_start", extra={"meta": dict(meta)})
    t0 = time.perf_counter()
    extra: Dict[str, Any] = {}
    try:
        yield extra
    except BaseException as e:
        meta.update(extra)
        meta["dur_ms"] = round((time.perf_counter() - t0) * 1000, 1)
        meta["error"] = f"{type(e).__name__}: {e}"
        logger.error("action_error", extra={"meta": meta})
        raise
    meta.update(extra)
    meta["dur_ms"] = round((time.perf_counter() - t0) * 1000, 1)
    logger.info("action_stop", extra={"meta": meta})


__all__ = ["JsonFormatter", "configure_logging", "configure_quiet_http", "start_action"]
