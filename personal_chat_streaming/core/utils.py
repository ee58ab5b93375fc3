"""Shared utility functions for the streaming client.

This module contains small helpers used across the codebase:
- JSON parsing (_safe_json_loads)
- String normalization and truncation
- Citation/source coercion for tool-call payloads
- Identifier generation

These utilities have no dependencies on the rest of the package.
"""

from __future__ import annotations

import json
import uuid
from typing import Any, Optional

# -----------------------------------------------------------------------------
# JSON Helpers
# -----------------------------------------------------------------------------

def _safe_json_loads(payload: Optional[str]) -> Any:
    """Return parsed JSON or None without raising."""
    if not payload:
        return None
    try:
        return json.loads(payload)
    except ValueError:
        return None


# -----------------------------------------------------------------------------
# String Normalization
# -----------------------------------------------------------------------------

def _normalize_optional_str(value: Any) -> Optional[str]:
    """Convert arbitrary input into a trimmed string or None."""
    if value is None:
        return None
    if not isinstance(value, str):
        value = str(value)
    value = value.strip()
    return value or None


def _optional_text(value: Any) -> Optional[str]:
    """Return ``value`` untouched when it is a non-empty string, else None.

    Unlike ``_normalize_optional_str`` this keeps surrounding whitespace, which
    is significant inside streamed text fragments.
    """
    if isinstance(value, str) and value:
        return value
    return None


def _truncate_text(value: str, limit: int) -> str:
    """Return at most ``limit`` characters of ``value``."""
    if limit <= 0:
        return ""
    return value[:limit]


def _coerce_sources(value: Any) -> Optional[list[dict[str, Any]]]:
    """Normalize a tool-call citation list into ``[{"title", "url", ...}]`` dicts.

    Entries without a URL are skipped. Returns None when ``value`` is not a list
    so callers can tell "no sources" apart from "empty sources".
    """
    if not isinstance(value, list):
        return None
    sources: list[dict[str, Any]] = []
    for item in value:
        if not isinstance(item, dict):
            continue
        url = _normalize_optional_str(item.get("url") or item.get("uri"))
        if not url:
            continue
        entry = dict(item)
        entry["url"] = url
        entry["title"] = _normalize_optional_str(item.get("title")) or url
        sources.append(entry)
    return sources


def _new_turn_id() -> str:
    return uuid.uuid4().hex
