"""
URL slugs for exercises and lexicon items.
"""

from __future__ import annotations

import re
from typing import Collection

_INVALID_CHARS = re.compile(r"[^a-z0-9\s-]")
_WHITESPACE = re.compile(r"\s+")
_DASHES = re.compile(r"-+")


def slugify(name: str) -> str:
    """
    Lower-case, drop anything but letters, digits, spaces and hyphens, then
    join words with single hyphens. ``"Hand-Release  Merkin!"`` becomes
    ``"hand-release-merkin"``.
    """
    slug = _INVALID_CHARS.sub("", name.lower()).strip()
    slug = _WHITESPACE.sub("-", slug)
    return _DASHES.sub("-", slug)


def unique_slug(base: str, taken: Collection[str]) -> str:
    """
    Return ``base`` or the first free ``base-N`` (N >= 2) not in ``taken``.
    """
    base = base or "item"
    if base not in taken:
        return base

    suffix = 2
    while f"{base}-{suffix}" in taken:
        suffix += 1
    return f"{base}-{suffix}"
