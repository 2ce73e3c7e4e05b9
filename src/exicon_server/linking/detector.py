"""
Mention Detector

Asks the language model which substrings of a document's text name other
exercises. The answer is only a list of literal strings: positions are
located later, and every string is treated as possibly hallucinated.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional, Sequence

from ..core.errors import TextUnderstandingError
from ..llm.client import LLMClient
from ..llm.parsing import parse_json_payload
from .models import ReferenceCandidate

logger = logging.getLogger("exicon.linker.detector")

SYSTEM_PROMPT = (
    "You are an expert F3 workout analyst. You identify mentions of other "
    "exercises inside exercise descriptions and answer with JSON only."
)

USER_PROMPT_TEMPLATE = """Analyze the following exercise text and identify any mentions of OTHER exercises.

COMMON EXERCISES (examples):
{vocabulary}

EXERCISE TO ANALYZE:
Name: "{name}"
Text: "{text}"

TASK:
1. Look for the exercise names from the examples above or similar exercises
2. Return ONLY the exercise name text (positions are located separately)
3. Include singular/plural variations (merkin, merkins; burpee, burpees; Box Jump, Box Jumps)
4. Do NOT return the name of the exercise being analyzed ("{name}")
5. Skip text that is already written as [name](@slug)

IMPORTANT:
- Return the EXACT text as it appears (keep original case and spelling)

Return JSON (no markdown formatting):
{{"mentions": [{{"text": "exact exercise name as found in text"}}]}}"""


def build_prompt(text: str, self_name: str, vocabulary: Sequence[str]) -> str:
    return USER_PROMPT_TEMPLATE.format(
        vocabulary="\n".join(f"- {entry}" for entry in vocabulary),
        name=self_name,
        text=text,
    )


def parse_mentions(raw: str, self_name: str = "") -> List[ReferenceCandidate]:
    """
    Extract candidate strings from model output.

    Accepts ``{"mentions": [{"text": ...}]}``, a bare list of such objects,
    or a bare list of strings. Anything else yields no candidates.
    Duplicates (case-insensitive) and the document's own name are dropped.
    """
    payload: Any = parse_json_payload(raw)
    if isinstance(payload, dict):
        payload = payload.get("mentions")
    if not isinstance(payload, list):
        return []

    own = self_name.strip().casefold()
    seen = set()
    candidates: List[ReferenceCandidate] = []
    for item in payload:
        text = item.get("text") if isinstance(item, dict) else item
        if not isinstance(text, str):
            continue
        text = text.strip()
        key = text.casefold()
        if not text or key == own or key in seen:
            continue
        seen.add(key)
        candidates.append(ReferenceCandidate(text=text))
    return candidates


class MentionDetector:
    """
    Parameters
    ----------
    llm : LLMClient
        Chat-completions client.
    vocabulary : Sequence[str]
        Known exercise-name patterns listed in the prompt.
    timeout_seconds : Optional[float]
        Upper bound on one detection call; ``None`` waits indefinitely.
    """

    def __init__(
        self,
        llm: LLMClient,
        vocabulary: Sequence[str],
        timeout_seconds: Optional[float] = None,
    ) -> None:
        self._llm = llm
        self._vocabulary = tuple(vocabulary)
        self._timeout = timeout_seconds

    async def detect(self, text: str, self_name: str) -> List[ReferenceCandidate]:
        """
        Candidate mentions in ``text``. Model errors, timeouts and
        unparseable answers all yield ``[]``.
        """
        if not text or not text.strip():
            return []

        prompt = build_prompt(text, self_name, self._vocabulary)
        try:
            raw = await asyncio.wait_for(
                self._llm.complete(SYSTEM_PROMPT, prompt, json_mode=True),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Mention detection timed out for %r", self_name)
            return []
        except TextUnderstandingError as exc:
            logger.warning("Mention detection failed for %r: %s", self_name, exc)
            return []

        candidates = parse_mentions(raw, self_name)
        if not candidates and raw.strip():
            logger.debug("No usable mentions in model output for %r", self_name)
        return candidates
