"""
Provider interface shared by every chat backend.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx

from core.errors import (
    ProviderMalformedResponse,
    ProviderRejected,
    ProviderTimeout,
    ProviderUnavailable,
)

REJECTED_STATUSES = {401, 403, 429}


@dataclass(frozen=True)
class ProviderProfile:
    name: str
    models: tuple[str, ...]
    affinities: tuple[str, ...] = ()
    priority: int = 100
    cost_tier: str = "free"
    # (query_type, model) pairs overriding the default model
    type_models: tuple[tuple[str, str], ...] = ()

    def supports(self, model: str) -> bool:
        return model in self.models

    def model_for(self, query_type: str) -> str:
        for kind, model in self.type_models:
            if kind == query_type:
                return model
        return self.models[0]

    @property
    def default_model(self) -> str:
        return self.models[0]


@dataclass(frozen=True)
class Completion:
    content: str
    model: str
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None


class Provider(ABC):
    """A chat backend. Implementations raise ProviderError subclasses on failure."""

    def __init__(self, profile: ProviderProfile):
        self.profile = profile

    @property
    def name(self) -> str:
        return self.profile.name

    @abstractmethod
    async def complete(self, messages: list[dict], model: str) -> Completion:
        """Return a completion for ``messages`` (role/content dicts)."""

    async def aclose(self) -> None:
        return None


class HTTPProvider(Provider):
    """Base for providers spoken to over JSON/HTTP with a pooled async client."""

    def __init__(
        self,
        profile: ProviderProfile,
        base_url: str,
        headers: Optional[dict] = None,
        timeout_seconds: float = 60.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(profile)
        self.base_url = base_url.rstrip("/")
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            limits=httpx.Limits(max_keepalive_connections=10, max_connections=100),
            headers={"Content-Type": "application/json", **(headers or {})},
        )

    async def _post_json(
        self,
        path: str,
        payload: dict,
        model: str,
        params: Optional[dict] = None,
    ) -> dict:
        try:
            response = await self._client.post(f"{self.base_url}{path}", json=payload, params=params)
        except httpx.TimeoutException as exc:
            raise ProviderTimeout("provider request timed out", provider=self.name, model=model) from exc
        except httpx.RequestError as exc:
            raise ProviderUnavailable(
                f"transport error: {type(exc).__name__}", provider=self.name, model=model
            ) from exc

        status = response.status_code
        if status >= 500:
            raise ProviderUnavailable(f"upstream status {status}", provider=self.name, model=model)
        if status >= 400:
            reason = "rejected" if status in REJECTED_STATUSES else "bad request"
            raise ProviderRejected(
                f"upstream {reason} (status {status})",
                provider=self.name,
                model=model,
                status_code=status,
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderMalformedResponse("response is not JSON", provider=self.name, model=model) from exc
        if not isinstance(data, dict):
            raise ProviderMalformedResponse("response is not an object", provider=self.name, model=model)
        return data

    def _require_text(self, text, model: str) -> str:
        if not isinstance(text, str) or not text.strip():
            raise ProviderMalformedResponse("empty completion", provider=self.name, model=model)
        return text

    async def aclose(self) -> None:
        await self._client.aclose()


def split_system(messages: list[dict]) -> tuple[str, list[dict]]:
    """Separate system prompts from the conversational turns."""
    system_parts = [m["content"] for m in messages if m.get("role") == "system" and m.get("content")]
    turns = [m for m in messages if m.get("role") != "system"]
    return "\n\n".join(system_parts), turns
