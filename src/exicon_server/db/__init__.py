"""
Database Package

Provides SQLAlchemy async session management, model definitions and the
repositories used by the search fallback, the read API and batch jobs.
"""

from .session import Database, iter_session
from .models import Base, Document, CleanupProposal, ProcessedRecord
from .repository import DocumentRepository, to_indexed, to_summary
from .proposals import ProposalStore, PROPOSAL_STATUSES
from .tracking import ProcessedTracker

__all__ = [
    "Database",
    "iter_session",
    "Base",
    "Document",
    "CleanupProposal",
    "ProcessedRecord",
    "DocumentRepository",
    "to_indexed",
    "to_summary",
    "ProposalStore",
    "PROPOSAL_STATUSES",
    "ProcessedTracker",
]
