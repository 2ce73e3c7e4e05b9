"""
LLM Cleanup Generator

Produces a suggested new value for one field of one exercise:

- ``description``: short summary derived from the body text
- ``tags``: selection from the controlled tag vocabulary
- ``text``: formatting pass that keeps every word of the original

Each answer is ``{"value", "reason", "confidence"}``. Confidence is
clamped to ``[0, 1]``; low-confidence answers and answers identical to the
current value produce no suggestion.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..core.errors import TextUnderstandingError
from ..llm.client import LLMClient
from ..llm.parsing import parse_json_payload

logger = logging.getLogger("exicon.cleanup")

CLEANUP_FIELDS = ("description", "tags", "text")
MIN_CONFIDENCE = 0.5
SHORT_DESCRIPTION_LENGTH = 20

TAG_VOCABULARY: tuple = (
    "upper-body", "shoulders", "chest", "triceps", "lower-body", "glutes",
    "squats", "calves", "lunges", "core", "plank", "full-body", "burpee",
    "merkin", "crawl", "flexibility", "endurance", "sprints", "run",
    "plyometrics", "hill", "stairs", "routine", "base-routine", "partner",
    "coupon", "bench", "pull-up-bar", "playground-swing", "water", "timer",
    "music", "field", "parking-lot", "playground", "track", "game", "jump",
)

SYSTEM_PROMPT_TEMPLATE = """You are a data cleanup specialist for a community-driven F3 exercise database. Improve and standardize data while preserving the original author's voice and intent.

Your task: {task}

GUIDELINES:
1. Keep F3-specific terminology, humor and regional flavor intact
2. Only suggest changes that genuinely improve clarity or readability
3. If the current content is already good, return it unchanged
4. Be conservative: when in doubt, don't change it

Respond with JSON only:
{{"value": ..., "reason": "brief explanation", "confidence": 0.8}}"""

TASKS: Dict[str, str] = {
    "description": (
        "Generate a concise description from the provided text. If the source "
        "is already two sentences or less, copy it as-is; otherwise write one "
        "or two very short sentences under 110 characters that say what the "
        "exercise is and how to do it."
    ),
    "tags": (
        "Select the most appropriate tags for the exercise from this list "
        "only: " + ", ".join(TAG_VOCABULARY) + ". Return the tags as a JSON "
        "array in \"value\"."
    ),
    "text": (
        "Improve the formatting of the exercise text. Use \\n\\n between "
        "distinct sections and \\n within related content. Preserve every "
        "word and phrase exactly as written; change only spacing and line "
        "breaks."
    ),
}


@dataclass(frozen=True)
class CleanupSuggestion:
    field: str
    current_value: Any
    value: Any
    reason: str
    confidence: float


def is_eligible(document: Any, field: str) -> bool:
    """
    Description needs body text and a missing or very short description;
    tags and text only need body text.
    """
    if not (document.text or "").strip():
        return False
    if field == "description":
        current = (document.description or "").strip()
        return len(current) < SHORT_DESCRIPTION_LENGTH
    return field in CLEANUP_FIELDS


def _user_prompt(document: Any, field: str) -> str:
    if field == "description":
        return (
            f'Exercise: "{document.name}"\n'
            f'Source text to summarize: "{document.text}"\n'
            f'Current description: "{document.description or "None"}"\n\n'
            "Please generate a concise description from the source text:"
        )
    if field == "tags":
        return (
            f'Exercise: "{document.name}"\n'
            f'Exercise text: "{document.text}"\n'
            f"Current tags: {list(document.tags or [])}\n\n"
            "Please analyze the exercise and generate appropriate tags:"
        )
    return (
        f'Exercise: "{document.name}"\n'
        f'Current text content: "{document.text}"\n\n'
        "Please improve the formatting of this text while preserving all original content:"
    )


def _clamp(value: float) -> float:
    return min(max(value, 0.0), 1.0)


def _normalize_tags(value: Any) -> Optional[List[str]]:
    if isinstance(value, str):
        value = [part for part in value.split(",")]
    if not isinstance(value, list):
        return None
    tags: List[str] = []
    for item in value:
        if not isinstance(item, str):
            continue
        tag = item.strip().lower()
        if tag in TAG_VOCABULARY and tag not in tags:
            tags.append(tag)
    return tags


class CleanupGenerator:
    def __init__(self, llm: LLMClient, timeout_seconds: Optional[float] = None) -> None:
        self._llm = llm
        self._timeout = timeout_seconds

    async def generate(self, document: Any, field: str) -> Optional[CleanupSuggestion]:
        """
        Ask the model for a new value of ``field``.

        Returns ``None`` when the answer is unusable, below the confidence
        floor or (for tags and text) unchanged.

        Raises
        ------
        TextUnderstandingError
            If the model call fails or times out.
        """
        if field not in CLEANUP_FIELDS:
            raise ValueError(f"Unsupported cleanup field: {field}")

        system_prompt = SYSTEM_PROMPT_TEMPLATE.format(task=TASKS[field])
        try:
            raw = await asyncio.wait_for(
                self._llm.complete(system_prompt, _user_prompt(document, field), json_mode=True),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise TextUnderstandingError(f"Cleanup of {field} timed out") from exc

        return self.interpret(document, field, raw)

    @staticmethod
    def interpret(document: Any, field: str, raw: str) -> Optional[CleanupSuggestion]:
        payload = parse_json_payload(raw)
        if not isinstance(payload, dict) or not payload.get("value"):
            logger.warning("Unusable cleanup answer for %s (%s)", document.name, field)
            return None

        try:
            confidence = _clamp(float(payload.get("confidence")))
        except (TypeError, ValueError):
            logger.warning("Cleanup answer for %s has no numeric confidence", document.name)
            return None

        current: Any = getattr(document, field)
        value: Any = payload["value"]
        if field == "tags":
            value = _normalize_tags(value)
            if not value:
                return None
            unchanged = sorted(value) == sorted(t.lower() for t in (current or []))
        else:
            value = str(value).strip()
            unchanged = value == (current or "").strip()

        if confidence < MIN_CONFIDENCE:
            logger.debug("Cleanup for %s below confidence floor (%.2f)", document.name, confidence)
            return None
        if unchanged and field != "description":
            return None

        return CleanupSuggestion(
            field=field,
            current_value=current,
            value=value,
            reason=str(payload.get("reason") or "No reason provided"),
            confidence=confidence,
        )

