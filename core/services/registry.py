"""
Provider registry: catalog lookup, fallback chains and explicit selection.
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence

import core.config as config
from core.errors import InvalidInput
from core.providers.base import Provider, ProviderProfile
from core.providers.catalog import DEFAULT_CHAINS, build_configured_providers

logger = config.logger


class ProviderRegistry:
    """Immutable after construction."""

    def __init__(self, providers: Iterable[Provider], chains: Optional[dict] = None):
        ordered = sorted(providers, key=lambda p: (p.profile.priority, p.name))
        self._providers: dict[str, Provider] = {}
        for provider in ordered:
            if provider.name in self._providers:
                raise ValueError(f"duplicate provider '{provider.name}'")
            self._providers[provider.name] = provider
        self._chains: dict[str, tuple[str, ...]] = {}
        for query_type, names in (chains or {}).items():
            unknown = [name for name in names if name not in self._providers]
            if unknown:
                logger.info(
                    "fallback_chain_skips_unconfigured",
                    extra={"query_type": query_type, "providers": unknown},
                )
            seen: list[str] = []
            for name in names:
                if name in self._providers and name not in seen:
                    seen.append(name)
            self._chains[query_type] = tuple(seen)

    def get(self, name: str) -> Provider:
        try:
            return self._providers[name]
        except KeyError:
            raise InvalidInput(
                f"unknown provider '{name}'",
                field="provider",
                error_type="unknown_provider",
                data={"available": self.names()},
            ) from None

    def names(self) -> list[str]:
        return list(self._providers.keys())

    def profiles(self) -> list[ProviderProfile]:
        return [provider.profile for provider in self._providers.values()]

    def providers(self) -> list[Provider]:
        return list(self._providers.values())

    def chain_for(self, query_type: str) -> list[str]:
        """Ordered provider names for a query type; every configured provider appears once."""
        configured = self._chains.get(query_type)
        if configured is not None:
            chain = list(configured)
        else:
            chain = [
                profile.name
                for profile in sorted(
                    self.profiles(),
                    key=lambda p: (query_type not in p.affinities, p.priority, p.name),
                )
            ]
        # Providers missing from an explicit chain still serve as last resort.
        for name in self._providers:
            if name not in chain:
                chain.append(name)
        return chain

    def model_for(self, provider: str, query_type: str) -> str:
        return self.get(provider).profile.model_for(query_type)

    def resolve_explicit(
        self,
        provider: Optional[str],
        model: Optional[str],
    ) -> Optional[tuple[str, str]]:
        """Validate a caller-requested provider/model pair; None when nothing was requested."""
        provider = provider.strip().lower() if provider else None
        model = model.strip() if model else None
        if not provider and not model:
            return None
        if provider:
            profile = self.get(provider).profile
            if model is None:
                return provider, profile.default_model
            if not profile.supports(model):
                raise InvalidInput(
                    f"provider '{provider}' does not serve model '{model}'",
                    field="model",
                    error_type="unknown_model",
                    data={"models": list(profile.models)},
                )
            return provider, model
        for profile in self.profiles():
            if profile.supports(model):
                return profile.name, model
        raise InvalidInput(
            f"no configured provider serves model '{model}'",
            field="model",
            error_type="unknown_model",
        )

    async def aclose(self) -> None:
        for provider in self._providers.values():
            await provider.aclose()


def build_default_registry(
    api_keys: Optional[dict] = None,
    chains: Optional[dict] = None,
    timeout_seconds: float = 60.0,
) -> ProviderRegistry:
    providers: Sequence[Provider] = build_configured_providers(
        api_keys if api_keys is not None else config.PROVIDER_API_KEYS,
        timeout_seconds=timeout_seconds,
    )
    merged = dict(DEFAULT_CHAINS)
    merged.update(chains or {})
    return ProviderRegistry(providers, merged)
