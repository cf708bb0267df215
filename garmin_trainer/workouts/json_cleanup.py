"""Recover JSON from loosely formatted AI answers."""

from __future__ import annotations

import json
from typing import Any


def unwrap_json_code_block(text: str) -> str:
    """Strip a surrounding ``` or ```json fence; other fences are left alone."""
    if not text:
        return text

    trimmed = text.strip()
    if not trimmed.startswith("```") or len(trimmed) < 6:
        return text

    first_break = trimmed.find("\n")
    if first_break == -1:
        return text

    header = trimmed[3:first_break].strip().lower()
    if header and header != "json":
        return text

    closing = trimmed.rfind("```")
    if closing <= first_break:
        return text
    return trimmed[first_break + 1 : closing].strip()


def parse_json_with_code_fence(text: str | None) -> tuple[Any, str | None]:
    """Parse AI output as JSON.

    Tries the unwrapped text first, then the outermost {...} span (models
    sometimes add a sentence before or after the document).

    Returns:
        (data, parse_error); data is None when parse_error is set
    """
    if not text or not text.strip():
        return None, "Empty response"

    candidate = unwrap_json_code_block(text)
    try:
        return json.loads(candidate), None
    except json.JSONDecodeError as e:
        first_error = f"Invalid JSON: {e.msg} (line {e.lineno}, column {e.colno})"

    start, end = candidate.find("{"), candidate.rfind("}")
    if start != -1 and end > start:
        try:
            return json.loads(candidate[start : end + 1]), None
        except json.JSONDecodeError:
            return None, first_error
    return None, first_error
