"""
Defensive parsing of model output.

Models often wrap JSON in markdown fences or add a sentence before it.
These helpers recover the JSON payload or report that there is none.
"""

from __future__ import annotations

import json
import re
from typing import Any, Optional

_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


def strip_code_fences(raw: str) -> str:
    match = _FENCE.search(raw or "")
    if match:
        return match.group(1).strip()
    return (raw or "").strip()


def _outermost(text: str, open_char: str, close_char: str) -> Optional[str]:
    start = text.find(open_char)
    end = text.rfind(close_char)
    if start == -1 or end <= start:
        return None
    return text[start:end + 1]


def parse_json_payload(raw: str) -> Optional[Any]:
    """
    Return the decoded JSON value in ``raw``, or ``None`` if nothing
    parseable is found.
    """
    text = strip_code_fences(raw)
    if not text:
        return None

    try:
        return json.loads(text)
    except ValueError:
        pass

    for open_char, close_char in (("[", "]"), ("{", "}")):
        chunk = _outermost(text, open_char, close_char)
        if chunk is None:
            continue
        try:
            return json.loads(chunk)
        except ValueError:
            continue
    return None
