"""
Google Gemini ``generateContent`` backend.
"""

from __future__ import annotations

from typing import Optional

import httpx

from core.errors import ProviderMalformedResponse
from core.providers.base import Completion, HTTPProvider, ProviderProfile, split_system

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


class GeminiProvider(HTTPProvider):
    def __init__(
        self,
        profile: ProviderProfile,
        api_key: str,
        base_url: str = GEMINI_BASE_URL,
        timeout_seconds: float = 60.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(
            profile,
            base_url,
            headers={"x-goog-api-key": api_key},
            timeout_seconds=timeout_seconds,
            http_client=http_client,
        )

    async def complete(self, messages: list[dict], model: str) -> Completion:
        system, turns = split_system(messages)
        payload: dict = {
            "contents": [
                {
                    "role": "model" if turn.get("role") == "assistant" else "user",
                    "parts": [{"text": turn.get("content", "")}],
                }
                for turn in turns
            ],
            "generationConfig": {"temperature": 0.7},
        }
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}

        data = await self._post_json(f"/models/{model}:generateContent", payload, model)
        try:
            parts = data["candidates"][0]["content"]["parts"]
            text = "".join(part.get("text", "") for part in parts)
        except (KeyError, IndexError, TypeError, AttributeError) as exc:
            raise ProviderMalformedResponse(
                "missing candidates[0].content.parts", provider=self.name, model=model
            ) from exc
        usage = data.get("usageMetadata") or {}
        return Completion(
            content=self._require_text(text, model),
            model=model,
            input_tokens=usage.get("promptTokenCount"),
            output_tokens=usage.get("candidatesTokenCount"),
        )
