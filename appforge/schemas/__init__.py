# appforge/schemas/__init__.py
"""
JSON Schemas for the structured model results (plan, review, analyses).

Schema files may reference sibling files with ``{"$ref": "<name>.schema.json"}``.
``load_schema`` inlines those references so the returned dict is
self-contained: the Responses API structured-output mode does not resolve
external references, and jsonschema validation then needs no resolver.
"""
from __future__ import annotations

import copy
import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict

SCHEMA_DIR = Path(__file__).resolve().parent

PLAN = "plan.schema.json"
REVIEW = "review.schema.json"
ANALYSIS = "analysis.schema.json"
CHANGE_ANALYSIS = "change_analysis.schema.json"

# Keys that only make sense on a top-level document.
_DOCUMENT_KEYS = ("$schema", "$id")


@lru_cache(maxsize=None)
def _read(name: str) -> Dict[str, Any]:
    p = SCHEMA_DIR / name
    if not p.exists():
        raise FileNotFoundError(f"Schema not found: {p}")
    return json.loads(p.read_text(encoding="utf-8"))


def _inline(node: Any, seen: tuple) -> Any:
    if isinstance(node, dict):
        ref = node.get("$ref")
        if isinstance(ref, str) and ref.endswith(".schema.json"):
            if ref in seen:
                raise ValueError(f"Cyclic schema reference: {' -> '.join(seen + (ref,))}")
            sub = _inline(_read(ref), seen + (ref,))
            for k in _DOCUMENT_KEYS:
                sub.pop(k, None)
            return sub
        return {k: _inline(v, seen) for k, v in node.items()}
    if isinstance(node, list):
        return [_inline(v, seen) for v in node]
    return copy.deepcopy(node)


def load_schema(name: str) -> Dict[str, Any]:
    """Return a fresh, fully inlined copy of the named schema."""
    return _inline(_read(name), (name,))


__all__ = ["load_schema", "SCHEMA_DIR", "PLAN", "REVIEW", "ANALYSIS", "CHANGE_ANALYSIS"]
