"""
agent/decoding.py - Tolerant Structured-Output Decoder

Reasoning-service responses carry a JSON object wrapped in arbitrary prose.
Every phase extracts its payload through tolerant_decode(), which tries, in
this fixed order:

    1. the first fenced block (```json ... ``` or bare ``` ... ```)
    2. the whole response as JSON
    3. a bounded scan: json.raw_decode() from each '{' position, at most
       _MAX_SCAN_CANDIDATES positions within the first _MAX_SCAN_CHARS chars

The first strategy that yields a JSON object wins. Required keys are checked
after a payload is found. Failure raises StructuredOutputError; this module
never logs and never touches state.
"""

from __future__ import annotations

import json
import re
from typing import Any, Iterable, Optional

from taskforge.exceptions import StructuredOutputError

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*([\s\S]*?)\s*```")
_OBJECT_START_RE = re.compile(r"\{")

_MAX_SCAN_CANDIDATES = 64
_MAX_SCAN_CHARS = 200_000

_decoder = json.JSONDecoder()


def tolerant_decode(text: Optional[str], required: Iterable[str] = ()) -> dict[str, Any]:
    """
    Extract a JSON object from free text.

    Args:
        text:     Raw reasoning-service output.
        required: Keys that must be present (and not None) in the payload.

    Raises:
        StructuredOutputError: no object could be recovered, or a required
                               key is missing.
    """
    if not text or not text.strip():
        raise StructuredOutputError("empty response", raw=text or "")

    payload = _from_fence(text)
    if payload is None:
        payload = _from_whole(text)
    if payload is None:
        payload = _from_scan(text)
    if payload is None:
        raise StructuredOutputError("no JSON object found in response", raw=text[:500])

    missing = [k for k in required if payload.get(k) is None]
    if missing:
        raise StructuredOutputError(
            f"payload is missing required field(s): {', '.join(missing)}",
            raw=text[:500],
            missing=missing,
        )
    return payload


def _as_object(value: Any) -> Optional[dict[str, Any]]:
    return value if isinstance(value, dict) else None


def _from_fence(text: str) -> Optional[dict[str, Any]]:
    match = _FENCE_RE.search(text)
    if not match:
        return None
    try:
        return _as_object(json.loads(match.group(1)))
    except json.JSONDecodeError:
        return None


def _from_whole(text: str) -> Optional[dict[str, Any]]:
    try:
        return _as_object(json.loads(text.strip()))
    except json.JSONDecodeError:
        return None


def _from_scan(text: str) -> Optional[dict[str, Any]]:
    window = text[:_MAX_SCAN_CHARS]
    for n, match in enumerate(_OBJECT_START_RE.finditer(window)):
        if n >= _MAX_SCAN_CANDIDATES:
            break
        try:
            value, _ = _decoder.raw_decode(window, match.start())
        except json.JSONDecodeError:
            continue
        obj = _as_object(value)
        if obj is not None:
            return obj
    return None


def as_str_list(value: Any) -> list[str]:
    """Coerce a decoded field into a list of non-empty strings."""
    if value is None:
        return []
    if isinstance(value, (str, int, float)):
        value = [value]
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if v is not None and str(v).strip()]


def as_confidence(value: Any, default: float = 0.5) -> float:
    """Coerce a decoded confidence into [0, 1]."""
    try:
        c = float(value)
    except (TypeError, ValueError):
        return default
    if c != c:  # NaN
        return default
    return max(0.0, min(1.0, c))
