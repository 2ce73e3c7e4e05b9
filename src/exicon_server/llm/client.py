from typing import List, Dict, Any
import httpx

from ..config import settings, LLMConfig
from ..core.errors import TextUnderstandingError


class LLMClient:
    def __init__(self, api_key: str | None = None, config: LLMConfig | None = None):
        self.api_key = api_key or settings.openai_api_key.get_secret_value()
        self.config = config or settings.llm

    async def chat(
        self,
        system_prompt: str,
        messages: List[Dict[str, Any]],
        temperature: float | None = None,
        json_mode: bool = False,
    ) -> Dict[str, Any]:
        """
        Returns the raw message dict from the chat completions API, e.g.:
        {
            "role": "assistant",
            "content": "..."
        }

        Transport errors, non-2xx answers and malformed payloads are
        raised as TextUnderstandingError.
        """
        payload: Dict[str, Any] = {
            "model": self.config.model,
            "messages": [{"role": "system", "content": system_prompt}] + messages,
            "temperature": self.config.temperature if temperature is None else temperature,
            "max_tokens": self.config.max_tokens,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        try:
            async with httpx.AsyncClient(timeout=self.config.timeout_seconds) as client:
                resp = await client.post(
                    f"{self.config.base_url.rstrip('/')}/chat/completions",
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
            resp.raise_for_status()
            data = resp.json()
            return data["choices"][0]["message"]
        except httpx.HTTPError as exc:
            raise TextUnderstandingError(f"LLM request failed: {exc}") from exc
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise TextUnderstandingError(f"Malformed LLM response: {exc}") from exc

    async def complete(self, system_prompt: str, user_prompt: str, json_mode: bool = False) -> str:
        """Single-turn helper returning only the text content."""
        message = await self.chat(
            system_prompt,
            [{"role": "user", "content": user_prompt}],
            json_mode=json_mode,
        )
        return message.get("content") or ""
