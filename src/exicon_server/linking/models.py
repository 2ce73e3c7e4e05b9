"""
Linking Data Models

Values produced while turning mentions into cross-references. A candidate
either becomes a ``ValidatedReference`` or a ``Discarded`` record with a
reason; neither outcome is an exception.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Literal, Optional, Union

DiscardReason = Literal[
    "no_hits",
    "low_similarity",
    "self_reference",
    "not_found_in_text",
    "overlap",
    "span_mismatch",
    "search_failed",
]


@dataclass(frozen=True)
class ReferenceCandidate:
    """A mention as written in the source; it carries no trusted position."""
    text: str


@dataclass(frozen=True)
class ValidatedReference:
    """
    A candidate that passed search validation and the similarity gate.

    ``[start, end)`` indexes the source text as it was before rewriting.
    """
    candidate: str
    start: int
    end: int
    slug: str
    target_id: str
    target_name: str
    similarity: float


@dataclass(frozen=True)
class Discarded:
    candidate: str
    reason: DiscardReason
    detail: Optional[str] = None


Validation = Union[ValidatedReference, Discarded]


@dataclass
class LinkResult:
    document_id: str
    target_field: str
    original_text: str
    updated_text: str
    references: List[ValidatedReference]
    confidence: float
    discarded: List[Discarded] = field(default_factory=list)

    @property
    def slugs(self) -> List[str]:
        seen: List[str] = []
        for ref in self.references:
            if ref.slug not in seen:
                seen.append(ref.slug)
        return seen
