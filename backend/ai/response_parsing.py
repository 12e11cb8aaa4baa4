from __future__ import annotations

import json
import re
from typing import Any

from services.errors import InferenceMalformedError

_CODE_FENCE_RE = re.compile(r"```(?:json)?[ \t]*\n?", re.IGNORECASE)
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")


def clean_json_text(text: str) -> str:
    """Strip code fences and slice from the first ``{`` to the last ``}``."""
    cleaned = _CODE_FENCE_RE.sub("", (text or "").strip()).strip()
    first = cleaned.find("{")
    last = cleaned.rfind("}")
    if first == -1 or last == -1 or last < first:
        raise InferenceMalformedError("No JSON object found in response")
    return cleaned[first:last + 1]


def strip_trailing_commas(text: str) -> str:
    return _TRAILING_COMMA_RE.sub(r"\1", text)


def extract_json_object(text: str) -> dict[str, Any]:
    """Parse the single JSON object a model response is expected to carry.

    Parsing is attempted on the cleaned text first and then once more after
    trailing-comma repair.
    """
    payload = clean_json_text(text)
    try:
        parsed = json.loads(payload)
    except json.JSONDecodeError:
        try:
            parsed = json.loads(strip_trailing_commas(payload))
        except json.JSONDecodeError as exc:
            raise InferenceMalformedError(f"Invalid JSON in model response: {exc.msg}") from exc
    if not isinstance(parsed, dict):
        raise InferenceMalformedError("Model response JSON is not an object")
    return parsed
