"""
Reference Tokens

A cross-reference is stored inline as ``[display text](@slug)``: a
markdown-link shape whose target starts with ``@`` so renderers can tell it
apart from a normal URL.

This module holds the pure text operations around those tokens:

- locating a candidate mention in source text (outside existing tokens)
- confirming that a span still holds the expected text
- splicing a set of spans right-to-left so offsets stay valid
- reading tokens back out
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

REFERENCE_TOKEN_PATTERN = re.compile(r"\[([^\[\]]+)\]\(@([^()\s]+)\)")


@dataclass(frozen=True)
class ReferenceToken:
    display: str
    slug: str
    start: int
    end: int


@dataclass(frozen=True)
class SpliceSpan:
    """A half-open ``[start, end)`` span to wrap with a token for ``slug``."""
    start: int
    end: int
    expected: str
    slug: str


def format_reference_token(display: str, slug: str) -> str:
    return f"[{display}](@{slug})"


def parse_reference_tokens(text: str) -> List[ReferenceToken]:
    """Return every embedded token in document order."""
    return [
        ReferenceToken(
            display=m.group(1),
            slug=m.group(2),
            start=m.start(),
            end=m.end(),
        )
        for m in REFERENCE_TOKEN_PATTERN.finditer(text or "")
    ]


def referenced_slugs(text: str) -> List[str]:
    """Distinct target slugs in order of first appearance."""
    seen: List[str] = []
    for token in parse_reference_tokens(text):
        if token.slug not in seen:
            seen.append(token.slug)
    return seen


def _token_ranges(text: str) -> List[Tuple[int, int]]:
    return [(t.start, t.end) for t in parse_reference_tokens(text)]


def _overlaps(start: int, end: int, ranges: Sequence[Tuple[int, int]]) -> bool:
    return any(start < r_end and r_start < end for r_start, r_end in ranges)


def find_span(
    text: str,
    candidate: str,
    exclude: Sequence[Tuple[int, int]] = (),
) -> Optional[Tuple[int, int]]:
    """
    Case-insensitive first occurrence of ``candidate`` that does not fall
    inside an existing reference token or any ``exclude`` range.

    Returns ``None`` when the text does not contain the candidate as plain
    text, which covers detector hallucinations and mentions that are
    already linked.
    """
    needle = candidate.strip()
    if not needle or not text:
        return None

    ranges = _token_ranges(text) + list(exclude)
    for match in re.finditer(re.escape(needle), text, re.IGNORECASE):
        if not _overlaps(match.start(), match.end(), ranges):
            return match.start(), match.end()
    return None


def confirm_span(text: str, start: int, end: int, expected: str) -> bool:
    """
    True if ``text[start:end]`` case-insensitively equals ``expected``.
    """
    if start < 0 or end > len(text) or start >= end:
        return False
    return text[start:end].casefold() == expected.casefold()


def splice_references(
    text: str,
    spans: Iterable[SpliceSpan],
) -> Tuple[str, List[SpliceSpan]]:
    """
    Wrap each span in a reference token.

    Spans are applied by descending start index so that an insertion never
    shifts an offset that has not been processed yet. A span is skipped if
    it overlaps one already applied or if the text it covers no longer
    matches its expected value.

    Returns the rewritten text and the spans that were applied, in
    document order.
    """
    updated = text
    applied: List[SpliceSpan] = []
    boundary = len(text)

    for span in sorted(spans, key=lambda s: (s.start, s.end), reverse=True):
        if span.end > boundary:
            continue
        if not confirm_span(updated, span.start, span.end, span.expected):
            continue

        display = updated[span.start:span.end]
        updated = (
            updated[:span.start]
            + format_reference_token(display, span.slug)
            + updated[span.end:]
        )
        boundary = span.start
        applied.append(span)

    applied.reverse()
    return updated, applied
