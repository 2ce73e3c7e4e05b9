"""
Batch Job Types

A job tells the orchestrator which documents it wants, how to decide
eligibility, and how to turn one document into an optional outcome. The
orchestrator owns paging, pacing, persistence and tracking.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol, Tuple

from ..cleanup.generator import CLEANUP_FIELDS, CleanupGenerator, is_eligible
from ..db.repository import DocumentRepository
from ..db.session import Database
from ..linking.linker import TARGET_FIELDS, ReferenceLinker, source_text
from .apply import LINKING_JOB_PREFIX


@dataclass
class JobOutcome:
    """A proposed change for one field of one document."""
    field: str
    current_value: Any
    proposed_value: Any
    confidence: float
    reason: str
    metadata: Dict[str, Any] = field(default_factory=dict)


class BatchJob(Protocol):
    job_type: str
    kind: str
    source_fields: Tuple[str, ...]

    def is_eligible(self, document: Any) -> bool: ...

    async def run(self, document: Any) -> Optional[JobOutcome]: ...

    async def finalize(self, database: Database) -> None: ...


# ---------------------------------------------------------------------
# Cross-Reference Linking
# ---------------------------------------------------------------------

class ReferenceLinkingJob:
    """Link exercise mentions in the description (default) or body text."""

    kind = "exercise"

    def __init__(self, linker: ReferenceLinker, target_field: str = "description") -> None:
        if target_field not in TARGET_FIELDS:
            raise ValueError(f"Unsupported target field: {target_field}")
        self._linker = linker
        self.target_field = target_field
        if target_field == "description":
            self.job_type = LINKING_JOB_PREFIX
            self.source_fields: Tuple[str, ...] = ("description", "text")
        else:
            self.job_type = f"{LINKING_JOB_PREFIX}-text"
            self.source_fields = ("text",)

    def is_eligible(self, document: Any) -> bool:
        return bool(source_text(document, self.target_field).strip())

    async def run(self, document: Any) -> Optional[JobOutcome]:
        result = await self._linker.process(document, self.target_field)
        if result is None:
            return None

        return JobOutcome(
            field=self.target_field,
            current_value=getattr(document, self.target_field),
            proposed_value=result.updated_text,
            confidence=result.confidence,
            reason=f"Linked {len(result.references)} exercise reference(s)",
            metadata={
                "original_text": result.original_text,
                "references": [
                    {
                        "text": ref.candidate,
                        "slug": ref.slug,
                        "target_name": ref.target_name,
                        "similarity": ref.similarity,
                        "start": ref.start,
                        "end": ref.end,
                    }
                    for ref in result.references
                ],
            },
        )

    async def finalize(self, database: Database) -> None:
        """Rebuild reverse references from the forward ones."""
        async with database.session() as session:
            await DocumentRepository(session).rebuild_referenced_by()


# ---------------------------------------------------------------------
# Field Cleanup
# ---------------------------------------------------------------------

class FieldCleanupJob:
    """LLM cleanup of one exercise field."""

    kind = "exercise"
    source_fields: Tuple[str, ...] = ("text",)

    def __init__(self, generator: CleanupGenerator, field_name: str) -> None:
        if field_name not in CLEANUP_FIELDS:
            raise ValueError(f"Unsupported cleanup field: {field_name}")
        self._generator = generator
        self.field_name = field_name
        self.job_type = f"cleanup-{field_name}"

    def is_eligible(self, document: Any) -> bool:
        return is_eligible(document, self.field_name)

    async def run(self, document: Any) -> Optional[JobOutcome]:
        suggestion = await self._generator.generate(document, self.field_name)
        if suggestion is None:
            return None
        return JobOutcome(
            field=suggestion.field,
            current_value=suggestion.current_value,
            proposed_value=suggestion.value,
            confidence=suggestion.confidence,
            reason=suggestion.reason,
        )

    async def finalize(self, database: Database) -> None:
        return None
