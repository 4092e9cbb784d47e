"""
Built-in provider catalog and default fallback chains.
"""

from __future__ import annotations

from typing import Optional

from core.providers.base import Provider, ProviderProfile
from core.providers.cohere import CohereProvider
from core.providers.gemini import GeminiProvider
from core.providers.openai_compat import OpenAICompatibleProvider

PROFILES = {
    "groq": ProviderProfile(
        name="groq",
        models=("llama-3.3-70b-versatile", "llama-3.1-8b-instant"),
        affinities=("personal", "instructional", "generic"),
        priority=1,
        type_models=(("generic", "llama-3.1-8b-instant"),),
    ),
    "gemini": ProviderProfile(
        name="gemini",
        models=("gemini-2.5-flash", "gemini-2.0-flash-lite"),
        affinities=("external_lookup", "instructional"),
        priority=2,
    ),
    "cerebras": ProviderProfile(
        name="cerebras",
        models=("llama-3.3-70b", "llama3.1-8b"),
        affinities=("personal", "generic"),
        priority=3,
    ),
    "mistral": ProviderProfile(
        name="mistral",
        models=("mistral-small-latest", "mistral-large-latest"),
        affinities=("instructional",),
        priority=4,
    ),
    "openrouter": ProviderProfile(
        name="openrouter",
        models=("openai/gpt-4o-mini",),
        affinities=("generic",),
        priority=5,
        cost_tier="paid",
    ),
    "cohere": ProviderProfile(
        name="cohere",
        models=("command-r-08-2024",),
        affinities=("generic",),
        priority=6,
    ),
}

OPENAI_COMPATIBLE_BASE_URLS = {
    "groq": "https://api.groq.com/openai/v1",
    "cerebras": "https://api.cerebras.ai/v1",
    "mistral": "https://api.mistral.ai/v1",
    "openrouter": "https://openrouter.ai/api/v1",
}

DEFAULT_CHAINS = {
    "external_lookup": ["gemini", "groq", "cerebras", "mistral", "openrouter", "cohere"],
    "personal": ["groq", "cerebras", "mistral", "gemini", "openrouter", "cohere"],
    "instructional": ["groq", "mistral", "gemini", "cerebras", "openrouter", "cohere"],
    "generic": ["groq", "openrouter", "cerebras", "mistral", "gemini", "cohere"],
}


def build_provider(name: str, api_key: str, timeout_seconds: float = 60.0) -> Provider:
    profile = PROFILES[name]
    if name == "gemini":
        return GeminiProvider(profile, api_key=api_key, timeout_seconds=timeout_seconds)
    if name == "cohere":
        return CohereProvider(profile, api_key=api_key, timeout_seconds=timeout_seconds)
    extra_headers: Optional[dict] = None
    if name == "openrouter":
        extra_headers = {"X-Title": "memoryrouter"}
    return OpenAICompatibleProvider(
        profile,
        base_url=OPENAI_COMPATIBLE_BASE_URLS[name],
        api_key=api_key,
        extra_headers=extra_headers,
        timeout_seconds=timeout_seconds,
    )


def build_configured_providers(api_keys: dict, timeout_seconds: float = 60.0) -> list[Provider]:
    """Instantiate every catalog provider that has an API key."""
    providers = []
    for name in PROFILES:
        key = api_keys.get(name)
        if key:
            providers.append(build_provider(name, key, timeout_seconds=timeout_seconds))
    return providers
