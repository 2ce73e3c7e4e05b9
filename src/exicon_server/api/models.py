"""
API Models for the Exicon Server

This module defines the Pydantic response models of the read-only HTTP
surface. Search pages reuse ``search.models.SearchPage`` directly.

Design Goals
------------
- Strong typing
- Safe defaults (no shared mutable state)
- Clear schema documentation
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..search.models import DocumentKind, DocumentStatus, DocumentSummary


# ---------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------

class HealthResponse(BaseModel):
    status: str = "ok"
    search_index: str = Field(..., description="'available' or 'fallback'")
    indexed_documents: int = Field(default=0, ge=0)

    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------

class SuggestionsResponse(BaseModel):
    """
    Autocomplete names. Empty for queries below the minimum length.
    """
    query: str
    suggestions: List[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------

class AliasModel(BaseModel):
    name: str

    model_config = ConfigDict(extra="ignore")


class DocumentDetail(BaseModel):
    """
    Full document. ``description`` and ``text`` may contain
    ``[text](@slug)`` reference tokens.
    """
    id: str
    kind: DocumentKind
    slug: str
    name: str
    aliases: List[AliasModel] = Field(default_factory=list)
    description: Optional[str] = None
    text: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    status: DocumentStatus
    referenced_slugs: List[str] = Field(default_factory=list)
    referenced_by: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(extra="forbid")


class SimilarResponse(BaseModel):
    slug: str
    results: List[DocumentSummary] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")


class TagCount(BaseModel):
    tag: str = Field(..., min_length=1)
    count: int = Field(..., ge=1)

    model_config = ConfigDict(extra="forbid")


class PopularTagsResponse(BaseModel):
    tags: List[TagCount] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")
