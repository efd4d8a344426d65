# appforge/llm_utils.py
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)


def extract_json_block(text: str) -> str:
    """
    Best-effort extraction of the JSON-looking region from a model response.

    - Prefers ```json``` fenced blocks.
    - Otherwise, finds the first '[' or '{' and returns from there.
    """
    if not text:
        return ""
    fenced = re.search(r"```(?:json)?\s*(.*?)```", text, flags=re.S)
    if fenced:
        return fenced.group(1).strip()
    for i, ch in enumerate(text):
        if ch in "[{":
            return text[i:].strip()
    return text.strip()


@dataclass(frozen=True)
class ParseError:
    """Deterministic, user-displayable parse failure for model JSON outputs."""

    message: str
    offset: Optional[int]
    snippet: str


def _trim_to_balanced_json(block: str) -> str:
    """Trim a candidate block to the first balanced top-level object/array.

    Handles models that append commentary after valid JSON. Returns the block
    unchanged when no balanced end can be found.
    """
    start = next((i for i, ch in enumerate(block) if ch in "[{"), None)
    if start is None:
        return block

    depth = 0
    in_str = False
    escape = False
    for j in range(start, len(block)):
        ch = block[j]
        if in_str:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
        elif ch in "[{":
            depth += 1
        elif ch in "]}":
            depth -= 1
            if depth == 0:
                return block[start : j + 1].strip()
            if depth < 0:
                break
    return block.strip()


def _make_snippet(raw: str, offset: Optional[int]) -> str:
    if not raw:
        return ""
    if offset is None:
        return raw[:80] + ("…" if len(raw) > 80 else "")
    off = max(0, min(int(offset), len(raw) - 1))
    start, end = max(0, off - 40), min(len(raw), off + 40)
    return ("…" if start else "") + raw[start:end] + ("…" if end < len(raw) else "")


def parse_json_text(text: str) -> Union[Dict[str, Any], list, ParseError]:
    """Parse model output into JSON or return a ParseError. Never raises."""
    trimmed = _trim_to_balanced_json(extract_json_block(text))
    try:
        data = json.loads(trimmed)
    except json.JSONDecodeError as e:
        return ParseError(
            message=f"Invalid JSON in model output: {e.msg}",
            offset=e.pos,
            snippet=_make_snippet(trimmed, e.pos),
        )
    if isinstance(data, (dict, list)):
        return data
    return ParseError(
        message="Expected a top-level JSON object or array.",
        offset=None,
        snippet=_make_snippet(trimmed, None),
    )


def parse_json_object(text: str) -> Union[Dict[str, Any], ParseError]:
    """Parse model output as a JSON object."""
    parsed = parse_json_text(text)
    if isinstance(parsed, ParseError):
        logger.debug("failed to parse JSON object from model output: %s (offset=%s)", parsed.message, parsed.offset)
        return parsed
    if isinstance(parsed, dict):
        return parsed
    return ParseError(message="Expected a JSON object, got an array.", offset=None, snippet=_make_snippet(text, None))


__all__ = ["ParseError", "extract_json_block", "parse_json_object", "parse_json_text"]
