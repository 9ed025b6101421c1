"""
Provider registry and unified LLM request API.

An LLMService holds one provider per ProviderType and marks one of them
active. Callers construct it explicitly at startup (usually through
ConfigManager) and close() it at shutdown.
"""

import logging
from typing import Optional

from .context import Context, background
from .errors import ProviderNotConfiguredError, ProviderNotRegisteredError
from .providers.base import Provider
from .rwlock import RWLock
from .types import (
    CompletionRequest,
    CompletionResponse,
    EmbeddingRequest,
    EmbeddingResponse,
    ProviderStatus,
    ProviderType,
    SuggestTagsRequest,
    SuggestTagsResponse,
    SummarizeRequest,
    SummarizeResponse,
)

logger = logging.getLogger(__name__)


class LLMService:
    """
    Registry of providers with a single active provider.

    Reads take the read side of the lock and mutations the write side.
    Request methods resolve the active provider under the lock and release
    it before calling out, so a slow backend never blocks registry access.
    """

    def __init__(self):
        self._lock = RWLock()
        self._providers: dict[ProviderType, Provider] = {}
        self._active: Optional[ProviderType] = None

    def register_provider(self, provider: Provider) -> None:
        """
        Register (or replace) the provider for its type.

        The first configured provider registered while nothing is active
        becomes the active provider.

        Raises:
            ValueError: If provider is None
        """
        if provider is None:
            raise ValueError("cannot register nil provider")

        provider_type = provider.get_type()
        with self._lock.write():
            self._providers[provider_type] = provider
            logger.info("LLM provider registered: %s (%s)", provider_type, provider.get_name())

            if self._active is None and provider.is_configured(background()):
                self._active = provider_type
                logger.info("LLM auto-selected active provider: %s", provider_type)

    def set_active_provider(self, provider_type: ProviderType) -> None:
        """
        Make `provider_type` the active provider.

        Raises:
            ProviderNotRegisteredError: If no provider of that type is registered
        """
        provider_type = ProviderType(provider_type)
        with self._lock.write():
            if provider_type not in self._providers:
                raise ProviderNotRegisteredError(provider_type)
            self._active = provider_type
        logger.info("LLM active provider changed: %s", provider_type)

    def get_provider(self) -> Optional[Provider]:
        """Return the active provider, or None."""
        with self._lock.read():
            if self._active is None:
                return None
            return self._providers.get(self._active)

    def get_provider_by_type(self, provider_type: ProviderType) -> Provider:
        """
        Raises:
            ProviderNotRegisteredError: If no provider of that type is registered
        """
        with self._lock.read():
            provider = self._providers.get(provider_type)
        if provider is None:
            raise ProviderNotRegisteredError(provider_type)
        return provider

    def get_active_type(self) -> Optional[ProviderType]:
        with self._lock.read():
            return self._active

    def list_providers(self) -> list[ProviderStatus]:
        """Snapshot of every registered provider, in registration order."""
        ctx = background()
        with self._lock.read():
            return [
                ProviderStatus(
                    type=provider_type,
                    name=provider.get_name(),
                    configured=provider.is_configured(ctx),
                    active=provider_type == self._active,
                    default_model=provider.get_default_model(),
                )
                for provider_type, provider in self._providers.items()
            ]

    def is_configured(self, ctx: Context) -> bool:
        """True if any registered provider is configured."""
        with self._lock.read():
            return any(p.is_configured(ctx) for p in self._providers.values())

    def _resolve(self, ctx: Context) -> Provider:
        provider = self.get_provider()
        if provider is None or not provider.is_configured(ctx):
            raise ProviderNotConfiguredError()
        return provider

    def complete(self, ctx: Context, req: CompletionRequest) -> CompletionResponse:
        return self._resolve(ctx).complete(ctx, req)

    def embed(self, ctx: Context, req: EmbeddingRequest) -> EmbeddingResponse:
        return self._resolve(ctx).embed(ctx, req)

    def suggest_tags(self, ctx: Context, req: SuggestTagsRequest) -> SuggestTagsResponse:
        return self._resolve(ctx).suggest_tags(ctx, req)

    def summarize(self, ctx: Context, req: SummarizeRequest) -> SummarizeResponse:
        return self._resolve(ctx).summarize(ctx, req)

    def close(self) -> None:
        """Release provider resources (HTTP connection pools)."""
        with self._lock.read():
            providers = list(self._providers.values())
        for provider in providers:
            close = getattr(provider, "close", None)
            if close is not None:
                close()
