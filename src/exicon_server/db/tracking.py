"""
Processed-Id Tracking

Durable record of which documents each batch job type has finished, so a
re-run resumes where the previous one stopped.
"""

from __future__ import annotations

from typing import Dict, Set

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import ProcessedRecord


class ProcessedTracker:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def load_ids(self, job_type: str) -> Set[str]:
        stmt = select(ProcessedRecord.document_id).where(
            ProcessedRecord.job_type == job_type
        )
        result = await self._session.execute(stmt)
        return {row[0] for row in result.all()}

    async def mark(self, job_type: str, document_id: str) -> None:
        """Record a document as processed. Marking twice is a no-op."""
        await self._session.merge(
            ProcessedRecord(job_type=job_type, document_id=document_id)
        )
        await self._session.flush()

    async def reset(self, job_type: str) -> int:
        result = await self._session.execute(
            delete(ProcessedRecord).where(ProcessedRecord.job_type == job_type)
        )
        return result.rowcount or 0

    async def counts(self) -> Dict[str, int]:
        stmt = select(ProcessedRecord.job_type, func.count()).group_by(
            ProcessedRecord.job_type
        )
        result = await self._session.execute(stmt)
        return {job_type: count for job_type, count in result.all()}
