"""
Cohere v2 chat backend.
"""

from __future__ import annotations

from typing import Optional

import httpx

from core.errors import ProviderMalformedResponse
from core.providers.base import Completion, HTTPProvider, ProviderProfile

COHERE_BASE_URL = "https://api.cohere.com/v2"


class CohereProvider(HTTPProvider):
    def __init__(
        self,
        profile: ProviderProfile,
        api_key: str,
        base_url: str = COHERE_BASE_URL,
        timeout_seconds: float = 60.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(
            profile,
            base_url,
            headers={"Authorization": f"Bearer {api_key}"},
            timeout_seconds=timeout_seconds,
            http_client=http_client,
        )

    async def complete(self, messages: list[dict], model: str) -> Completion:
        data = await self._post_json(
            "/chat",
            {"model": model, "messages": messages, "temperature": 0.7},
            model,
        )
        try:
            blocks = data["message"]["content"]
            text = "".join(block.get("text", "") for block in blocks if block.get("type", "text") == "text")
        except (KeyError, TypeError, AttributeError) as exc:
            raise ProviderMalformedResponse(
                "missing message.content", provider=self.name, model=model
            ) from exc
        tokens = (data.get("usage") or {}).get("tokens") or {}
        return Completion(
            content=self._require_text(text, model),
            model=model,
            input_tokens=tokens.get("input_tokens"),
            output_tokens=tokens.get("output_tokens"),
        )
