"""
SQLAlchemy Models

Defines the database schema for:
- Documents (exercises and lexicon items share one table, split by ``kind``)
- Cleanup proposals (staged, reviewable field mutations)
- Processed records (durable per-job tracking for resumable batch runs)

Column types are portable so the same models run on PostgreSQL in
production and SQLite in tests.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, List, Optional

from sqlalchemy import (
    JSON,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def _new_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ---------------------------------------------------------------------
# Document Model
# ---------------------------------------------------------------------

class Document(Base):
    """
    An exercise or lexicon item.

    ``aliases`` is a list of ``{"name": ...}`` objects. ``referenced_slugs``
    and ``referenced_by`` hold the forward and reverse cross-reference
    slugs maintained by the linking job.
    """
    __tablename__ = "document"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    kind: Mapped[str] = mapped_column(String(16), nullable=False, default="exercise")
    slug: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    aliases: Mapped[List[Any]] = mapped_column(JSON, nullable=False, default=list)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tags: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="draft")
    referenced_slugs: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    referenced_by: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    __table_args__ = (
        UniqueConstraint("kind", "slug", name="uq_document_kind_slug"),
        Index("idx_document_kind_status", "kind", "status"),
    )

    @property
    def alias_names(self) -> List[str]:
        names = []
        for alias in self.aliases or []:
            name = alias.get("name") if isinstance(alias, dict) else alias
            if name:
                names.append(str(name))
        return names


# ---------------------------------------------------------------------
# Cleanup Proposal Model
# ---------------------------------------------------------------------

class CleanupProposal(Base):
    """
    A proposed change to one field of one document.

    Status moves ``pending -> approved -> applied`` or
    ``pending -> rejected``; auto-apply mode writes ``applied`` directly.
    """
    __tablename__ = "cleanup_proposal"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    document_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    job_type: Mapped[str] = mapped_column(String(64), nullable=False)
    field: Mapped[str] = mapped_column(String(64), nullable=False)
    current_value: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    proposed_value: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    metadata_: Mapped[Optional[dict]] = mapped_column(
        "metadata",
        JSON,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=_utcnow,
    )
    applied_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_proposal_status", "status", "created_at"),
    )


# ---------------------------------------------------------------------
# Processed Record Model (Batch Tracking)
# ---------------------------------------------------------------------

class ProcessedRecord(Base):
    """One row per (job type, document) a batch job has finished."""
    __tablename__ = "processed_record"

    job_type: Mapped[str] = mapped_column(String(64), primary_key=True)
    document_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    processed_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=_utcnow,
    )
