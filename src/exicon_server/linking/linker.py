"""
Reference Linker

Turns a document's free-text mentions of other exercises into inline
``[text](@slug)`` references.

Pipeline
--------
1. Pick the source text for the target field; empty text -> ``None``.
2. Ask the mention detector for candidate strings; none -> ``None``.
3. Validate each candidate on its own: search active documents with the
   candidate as query, take the top hit, require
   ``similarity(candidate, hit.name) >= threshold``.
4. Locate every accepted candidate in the source (first plain-text
   occurrence not already claimed by a longer candidate or an existing
   token). Candidates the text does not contain are dropped.
5. Splice right-to-left, re-confirming each span just before insertion.
6. Confidence is the mean similarity of the spliced references.

Candidates that fail any step become ``Discarded`` records; only search
timeouts are logged above DEBUG.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional, Tuple

from ..config import LinkingConfig
from ..core.errors import SearchBackendError
from ..search.executor import SearchExecutor
from ..search.models import SearchFilters
from ..text.references import SpliceSpan, find_span, splice_references
from ..text.similarity import similarity
from .detector import MentionDetector
from .models import (
    Discarded,
    LinkResult,
    ReferenceCandidate,
    ValidatedReference,
    Validation,
)

logger = logging.getLogger("exicon.linker")

TARGET_FIELDS = ("description", "text")


def source_text(document: Any, target_field: str) -> str:
    """
    Text to analyze for ``target_field``. The description target falls
    back to the body when no description exists yet.
    """
    if target_field == "text":
        return document.text or ""
    return document.description or document.text or ""


class ReferenceLinker:
    """
    Parameters
    ----------
    detector : MentionDetector
        Proposes candidate mentions.
    executor : SearchExecutor
        Ranked search used to validate candidates.
    config : LinkingConfig
        Similarity threshold, hit count and timeouts.
    target_kind : str
        Kind of document a reference may point to.
    """

    def __init__(
        self,
        detector: MentionDetector,
        executor: SearchExecutor,
        config: LinkingConfig,
        target_kind: str = "exercise",
    ) -> None:
        self._detector = detector
        self._executor = executor
        self._config = config
        self._filters = SearchFilters(kind=target_kind, status="active")

    # ------------------------------------------------------------------
    # Candidate Validation
    # ------------------------------------------------------------------

    async def validate(self, candidate: ReferenceCandidate, document: Any) -> Validation:
        """
        Search for the candidate and gate the top hit on similarity.

        The returned reference has no position yet (``start == end == -1``);
        positions are assigned by ``locate``.
        """
        try:
            page = await asyncio.wait_for(
                self._executor.search(
                    candidate.text,
                    self._filters,
                    page=1,
                    page_size=self._config.max_search_hits,
                ),
                timeout=self._config.search_timeout_seconds,
            )
        except (asyncio.TimeoutError, SearchBackendError) as exc:
            logger.warning("Search for candidate %r failed: %r", candidate.text, exc)
            return Discarded(candidate.text, "search_failed", type(exc).__name__)

        if not page.results:
            logger.debug("No hits for %r", candidate.text)
            return Discarded(candidate.text, "no_hits")

        top = page.results[0]
        if top.id == document.id:
            return Discarded(candidate.text, "self_reference", top.name)

        score = similarity(candidate.text, top.name)
        if score < self._config.similarity_threshold:
            logger.debug("%r -> %r similarity %.3f below threshold", candidate.text, top.name, score)
            return Discarded(candidate.text, "low_similarity", f"{top.name}:{score:.3f}")

        return ValidatedReference(
            candidate=candidate.text,
            start=-1,
            end=-1,
            slug=top.slug,
            target_id=top.id,
            target_name=top.name,
            similarity=score,
        )

    @staticmethod
    def locate(
        text: str,
        accepted: List[ValidatedReference],
    ) -> Tuple[List[ValidatedReference], List[Discarded]]:
        """
        Assign each accepted reference its span in ``text``.

        Longer candidates claim their span first so a shorter name inside a
        longer one ("Merkin" in "Hand Release Merkin") moves on to its next
        free occurrence.
        """
        placed: List[ValidatedReference] = []
        discarded: List[Discarded] = []
        claimed: List[Tuple[int, int]] = []

        for ref in sorted(accepted, key=lambda r: -len(r.candidate)):
            span = find_span(text, ref.candidate, exclude=claimed)
            if span is None:
                reason = "overlap" if find_span(text, ref.candidate) else "not_found_in_text"
                discarded.append(Discarded(ref.candidate, reason))
                continue
            claimed.append(span)
            placed.append(
                ValidatedReference(
                    candidate=ref.candidate,
                    start=span[0],
                    end=span[1],
                    slug=ref.slug,
                    target_id=ref.target_id,
                    target_name=ref.target_name,
                    similarity=ref.similarity,
                )
            )

        placed.sort(key=lambda r: r.start)
        return placed, discarded

    # ------------------------------------------------------------------
    # Document Processing
    # ------------------------------------------------------------------

    async def process(
        self,
        document: Any,
        target_field: str = "description",
    ) -> Optional[LinkResult]:
        """
        Link mentions in one document.

        Returns ``None`` when the source is empty, nothing was detected or
        no candidate survived validation. The caller still counts the
        document as processed in that case.
        """
        if target_field not in TARGET_FIELDS:
            raise ValueError(f"Unsupported target field: {target_field}")

        text = source_text(document, target_field)
        if not text.strip():
            return None

        candidates = await self._detector.detect(text, document.name)
        if not candidates:
            return None
        logger.debug("%s: %s candidates", document.name, len(candidates))

        accepted: List[ValidatedReference] = []
        discarded: List[Discarded] = []
        for candidate in candidates:
            outcome = await self.validate(candidate, document)
            if isinstance(outcome, Discarded):
                discarded.append(outcome)
            else:
                accepted.append(outcome)

        placed, unplaced = self.locate(text, accepted)
        discarded.extend(unplaced)
        if not placed:
            return None

        spans = [SpliceSpan(r.start, r.end, r.candidate, r.slug) for r in placed]
        updated, applied = splice_references(text, spans)

        applied_keys = {(s.start, s.end) for s in applied}
        references = [r for r in placed if (r.start, r.end) in applied_keys]
        discarded.extend(
            Discarded(r.candidate, "span_mismatch")
            for r in placed
            if (r.start, r.end) not in applied_keys
        )
        if not references:
            return None

        confidence = sum(r.similarity for r in references) / len(references)
        logger.info(
            "%s: linked %s of %s candidates (confidence %.2f)",
            document.name,
            len(references),
            len(candidates),
            confidence,
        )
        return LinkResult(
            document_id=document.id,
            target_field=target_field,
            original_text=text,
            updated_text=updated,
            references=references,
            confidence=confidence,
            discarded=discarded,
        )
