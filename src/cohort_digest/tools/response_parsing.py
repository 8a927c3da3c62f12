"""Helpers for turning model JSON output into typed values."""

from __future__ import annotations

import json
import re
from datetime import date

_FENCE_OPEN_RE = re.compile(r"^```[a-zA-Z]*\s*")
_FENCE_CLOSE_RE = re.compile(r"\s*```$")
_EMBEDDED_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


def parse_json_object(
    text: str | None,
    error_cls: type[Exception] = ValueError,
    allow_embedded: bool = False,
) -> dict:
    """Parse a model response that should be a single JSON object.

    Markdown code fences are stripped first. With ``allow_embedded`` the
    outermost ``{...}`` span is tried when the whole text is not valid JSON;
    otherwise the text must be exactly one object. Failures raise
    ``error_cls`` with a short reason.
    """
    if not text:
        raise error_cls("Empty response")
    cleaned = text.strip()

    # Handle markdown code blocks
    if cleaned.startswith("```"):
        cleaned = _FENCE_OPEN_RE.sub("", cleaned)
        cleaned = _FENCE_CLOSE_RE.sub("", cleaned).strip()

    if not allow_embedded and not (cleaned.startswith("{") and cleaned.endswith("}")):
        raise error_cls("Response is not a JSON object")
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        match = _EMBEDDED_OBJECT_RE.search(cleaned) if allow_embedded else None
        if not match:
            raise error_cls(f"Invalid JSON: {e}") from e
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as inner:
            raise error_cls(f"Invalid JSON: {inner}") from inner
    if not isinstance(data, dict):
        raise error_cls("Response is not a JSON object")
    return data


def coerce_date(value) -> date | None:
    if not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None


def coerce_enum(enum_cls, value, default):
    if isinstance(value, enum_cls):
        return value
    if value is None:
        return default
    if isinstance(value, str):
        normalized = value.strip().lower()
        if not normalized:
            return default
        value = normalized
    try:
        return enum_cls(value)
    except ValueError:
        return default


def coerce_list(value) -> list[str]:
    if value is None:
        return []
    if isinstance(value, list):
        return [str(item).strip() for item in value if str(item).strip()]
    if isinstance(value, str):
        text = value.strip()
        return [text] if text else []
    return [str(value)]


def coerce_text(value) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip()
        return text or None
    return str(value)
