"""
Search Query Builder

Turns a free-text query plus a ``SearchConfig`` snapshot into a
backend-neutral, field-weighted compound query. The index layer compiles
it into concrete engine queries.

One clause is produced per searchable field. Fuzzy clauses carry their
own edit budget, exact prefix length and expansion cap; every clause
carries the field's boost. The compound matches when at least
``minimum_should_match`` clauses match.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

from ..config import SEARCHABLE_FIELDS, SearchConfig


@dataclass(frozen=True)
class FuzzyOptions:
    max_edits: int
    prefix_length: int
    max_expansions: int


@dataclass(frozen=True)
class FieldClause:
    field: str
    boost: float
    fuzzy: Optional[FuzzyOptions] = None


@dataclass(frozen=True)
class CompoundQuery:
    text: str
    clauses: Tuple[FieldClause, ...]
    minimum_should_match: int = 1
    score_threshold: Optional[float] = None


def normalize_query(free_text: Optional[str]) -> str:
    """Trim and collapse internal whitespace."""
    return " ".join((free_text or "").split())


def max_edits_for(text: str, config: SearchConfig) -> int:
    """
    Edit budget for a query: conservative for short queries, permissive
    for longer ones.
    """
    fuzzy = config.fuzzy
    if len(text) <= fuzzy.short_query_length:
        return fuzzy.max_edits.short
    return fuzzy.max_edits.long


def build_query(
    free_text: Optional[str],
    config: SearchConfig,
    *,
    fuzzy: Optional[bool] = None,
) -> Optional[CompoundQuery]:
    """
    Build a compound query, or return ``None`` when there is nothing to
    search for (empty or whitespace-only input). Callers must skip the
    index entirely on ``None``.

    Parameters
    ----------
    free_text : Optional[str]
        Raw user or candidate text.
    config : SearchConfig
        Immutable configuration snapshot for this call.
    fuzzy : Optional[bool]
        Per-call override of ``config.fuzzy.enabled``.
    """
    text = normalize_query(free_text)
    if not text:
        return None

    fuzzy_enabled = config.fuzzy.enabled if fuzzy is None else fuzzy
    options: Optional[FuzzyOptions] = None
    if fuzzy_enabled:
        options = FuzzyOptions(
            max_edits=max_edits_for(text, config),
            prefix_length=config.fuzzy.prefix_length,
            max_expansions=config.fuzzy.max_expansions,
        )

    clauses = tuple(
        FieldClause(
            field=field,
            boost=config.field_weights.for_field(field),
            fuzzy=options if field in config.fuzzy.fields else None,
        )
        for field in SEARCHABLE_FIELDS
    )

    return CompoundQuery(
        text=text,
        clauses=clauses,
        minimum_should_match=config.behavior.minimum_should_match,
        score_threshold=config.behavior.score_threshold,
    )
