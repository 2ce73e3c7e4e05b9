"""
Proposal Store

Insert, look up and transition ``CleanupProposal`` rows.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import PersistenceError, ProposalStateError
from .models import CleanupProposal

PROPOSAL_STATUSES = ("pending", "approved", "rejected", "applied")

# Allowed review transitions; auto-apply writes ``applied`` at creation.
_TRANSITIONS = {
    "pending": {"approved", "rejected"},
    "approved": {"applied"},
    "rejected": set(),
    "applied": set(),
}


class ProposalStore:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        *,
        document_id: str,
        job_type: str,
        field: str,
        current_value: Any,
        proposed_value: Any,
        confidence: float,
        reason: Optional[str] = None,
        status: str = "pending",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> CleanupProposal:
        if status not in ("pending", "applied"):
            raise ProposalStateError(f"New proposals cannot start as {status!r}")

        proposal = CleanupProposal(
            document_id=document_id,
            job_type=job_type,
            field=field,
            current_value=current_value,
            proposed_value=proposed_value,
            confidence=confidence,
            reason=reason,
            status=status,
            metadata_=metadata,
        )
        if status == "applied":
            proposal.applied_at = datetime.now(timezone.utc).replace(tzinfo=None)
        self._session.add(proposal)
        await self._session.flush()
        return proposal

    async def get(self, proposal_id: int) -> Optional[CleanupProposal]:
        return await self._session.get(CleanupProposal, proposal_id)

    async def list_by_status(
        self,
        status: str,
        job_type: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[CleanupProposal]:
        stmt = select(CleanupProposal).where(CleanupProposal.status == status)
        if job_type:
            stmt = stmt.where(CleanupProposal.job_type == job_type)
        stmt = stmt.order_by(CleanupProposal.created_at.asc(), CleanupProposal.id.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def transition(self, proposal_id: int, new_status: str) -> CleanupProposal:
        """
        Move a proposal to ``new_status``.

        Raises
        ------
        PersistenceError
            If the proposal does not exist.
        ProposalStateError
            If the transition is not allowed from the current status.
        """
        proposal = await self.get(proposal_id)
        if proposal is None:
            raise PersistenceError(f"Proposal {proposal_id} not found")

        if new_status not in _TRANSITIONS.get(proposal.status, set()):
            raise ProposalStateError(
                f"Proposal {proposal_id} cannot move from "
                f"{proposal.status!r} to {new_status!r}"
            )

        proposal.status = new_status
        if new_status == "applied":
            proposal.applied_at = datetime.now(timezone.utc).replace(tzinfo=None)
        await self._session.flush()
        return proposal

    async def counts(self) -> Dict[str, Dict[str, int]]:
        """Proposal counts keyed by job type, then status."""
        stmt = select(
            CleanupProposal.job_type,
            CleanupProposal.status,
            func.count(),
        ).group_by(CleanupProposal.job_type, CleanupProposal.status)
        result = await self._session.execute(stmt)

        counts: Dict[str, Dict[str, int]] = {}
        for job_type, status, count in result.all():
            counts.setdefault(job_type, {})[status] = count
        return counts
