"""
Backends that speak the OpenAI ``/chat/completions`` wire format.
"""

from __future__ import annotations

from typing import Optional

import httpx

from core.errors import ProviderMalformedResponse
from core.providers.base import Completion, HTTPProvider, ProviderProfile


class OpenAICompatibleProvider(HTTPProvider):
    def __init__(
        self,
        profile: ProviderProfile,
        base_url: str,
        api_key: str,
        extra_headers: Optional[dict] = None,
        timeout_seconds: float = 60.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        headers = {"Authorization": f"Bearer {api_key}", **(extra_headers or {})}
        super().__init__(
            profile,
            base_url,
            headers=headers,
            timeout_seconds=timeout_seconds,
            http_client=http_client,
        )

    async def complete(self, messages: list[dict], model: str) -> Completion:
        data = await self._post_json(
            "/chat/completions",
            {"model": model, "messages": messages, "temperature": 0.7},
            model,
        )
        try:
            choice = data["choices"][0]
            text = choice["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderMalformedResponse(
                "missing choices[0].message.content", provider=self.name, model=model
            ) from exc
        usage = data.get("usage") or {}
        return Completion(
            content=self._require_text(text, model),
            model=data.get("model") or model,
            input_tokens=usage.get("prompt_tokens"),
            output_tokens=usage.get("completion_tokens"),
        )
