"""
Search Data Models

Canonical shapes shared by the index, the executor, the fallback scan and
the API layer.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

DocumentKind = Literal["exercise", "lexicon"]
DocumentStatus = Literal["draft", "submitted", "active", "archived"]

DOCUMENT_STATUSES: Tuple[str, ...] = ("draft", "submitted", "active", "archived")


class IndexedDocument(BaseModel):
    """
    One searchable record as written to the full-text index.

    ``aliases`` holds alternate names; they are matched with the same
    weight class as the primary name.
    """

    id: str = Field(..., min_length=1)
    kind: DocumentKind
    slug: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    aliases: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    text: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    status: DocumentStatus = "active"
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(extra="forbid", frozen=True)


class DocumentSummary(BaseModel):
    """
    Listing/search projection of a document. ``score`` is set only for
    results ranked by the index.
    """

    id: str
    kind: DocumentKind
    slug: str
    name: str
    description: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    status: DocumentStatus
    updated_at: Optional[datetime] = None
    score: Optional[float] = None

    model_config = ConfigDict(extra="forbid")


class SearchFilters(BaseModel):
    """Structural filters applied on top of (or instead of) text relevance."""

    kind: Optional[DocumentKind] = None
    status: DocumentStatus = "active"
    tags: Tuple[str, ...] = ()

    model_config = ConfigDict(extra="forbid", frozen=True)

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, v):
        if v is None:
            return ()
        if isinstance(v, str):
            v = [v]
        return tuple(sorted({t.strip().lower() for t in v if t and t.strip()}))

    def cache_fragment(self) -> str:
        return f"{self.kind or 'all'}:{self.status}:{'-'.join(self.tags)}"


class SearchPage(BaseModel):
    results: List[DocumentSummary] = Field(default_factory=list)
    total_count: int = Field(default=0, ge=0)
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=12, ge=1)

    model_config = ConfigDict(extra="forbid")
