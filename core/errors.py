"""
Shared error types for core services.
"""

from typing import Optional


class InvalidInput(ValueError):
    def __init__(
        self,
        message: str,
        field: str = "unknown",
        error_type: str = "invalid",
        error_code: str | None = None,
        data: dict | None = None,
    ):
        super().__init__(message)
        self.field = field
        self.error_type = error_type
        self.error_code = error_code
        self.data = data


class ProviderError(RuntimeError):
    """Base class for a failed provider attempt."""

    outcome = "failed"

    def __init__(self, message: str, provider: Optional[str] = None, model: Optional[str] = None):
        super().__init__(message)
        self.provider = provider
        self.model = model


class ProviderTimeout(ProviderError):
    outcome = "timeout"


class ProviderRejected(ProviderError):
    """Authentication, authorization, or upstream quota rejection."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, provider=provider, model=model)
        self.status_code = status_code


class ProviderMalformedResponse(ProviderError):
    pass


class ProviderUnavailable(ProviderError):
    """Transport failure or upstream 5xx."""


class RateLimited(RuntimeError):
    def __init__(self, user_id: str, provider: str):
        super().__init__(f"rate limit reached for provider {provider}")
        self.user_id = user_id
        self.provider = provider


class AllProvidersExhausted(RuntimeError):
    def __init__(self, attempts: list[dict]):
        super().__init__("no backend available")
        self.attempts = attempts


class EmbeddingUnavailable(RuntimeError):
    """Raised when the embedding provider is unavailable."""


class MemoryStoreUnavailable(RuntimeError):
    """Raised when the memory store cannot be reached."""
