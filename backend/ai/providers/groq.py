from typing import Any

import httpx

from ai.providers.base import AIProvider
from services.errors import InferenceRequestError


class GroqProvider(AIProvider):
    """Groq chat completions provider (OpenAI-compatible wire format)."""

    BASE_URL = "https://api.groq.com/openai/v1/chat/completions"
    DEFAULT_MODEL = "llama-3.1-8b-instant"

    def __init__(self, api_key: str, base_url: str | None = None, timeout: float = 120.0):
        super().__init__(api_key, base_url, timeout)
        self._headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    @property
    def url(self) -> str:
        return self._base_url or self.BASE_URL

    # ------------------------------------------------------------------
    # chat
    # ------------------------------------------------------------------
    async def chat(
        self,
        messages: list[dict],
        model: str,
        system: str = "",
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> dict:
        # Prepend system message if provided
        full_messages = list(messages)
        if system:
            full_messages.insert(0, {"role": "system", "content": system})

        payload: dict[str, Any] = {
            "model": model or self.get_default_model(),
            "messages": full_messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        return await self._post(payload)

    async def _post(self, payload: dict) -> dict:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self.url, headers=self._headers, json=payload)
        except httpx.HTTPError as exc:
            raise InferenceRequestError(f"Groq request failed: {exc}") from exc
        if resp.status_code != 200:
            raise InferenceRequestError(
                f"Groq API error: {resp.text}",
                status_code=resp.status_code,
            )
        data = resp.json()

        choice = (data.get("choices") or [{}])[0]
        content = (choice.get("message") or {}).get("content") or ""
        usage = data.get("usage") or {}

        return {
            "content": content,
            "tokens_in": usage.get("prompt_tokens", 0),
            "tokens_out": usage.get("completion_tokens", 0),
            "model": data.get("model", payload["model"]),
        }

