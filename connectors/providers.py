"""
ProviderRegistry — lazily builds and caches provider adapters.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, List

from config.settings import Settings
from connectors.base import BaseConnector
from connectors.errors import ProviderLoadError, ProviderNotFoundError
from connectors.google import GmailConnector, GoogleCalendarConnector, GoogleDriveConnector
from connectors.notion import NotionConnector
from connectors.vault import CredentialVault

logger = logging.getLogger(__name__)

ProviderLoader = Callable[[], BaseConnector]


class ProviderRegistry:
    """Registry of provider adapters, instantiated on first use."""

    def __init__(self) -> None:
        self._loaders: Dict[str, ProviderLoader] = {}
        self._instances: Dict[str, BaseConnector] = {}

    @classmethod
    def with_defaults(cls, settings: Settings, vault: CredentialVault) -> "ProviderRegistry":
        """Registry pre-loaded with every built-in app provider."""
        registry = cls()
        google = {
            "client_id": settings.google_client_id,
            "client_secret": settings.google_client_secret,
            "http_timeout": settings.provider_http_timeout,
        }
        registry.register("gmail", lambda: GmailConnector(vault, **google))
        registry.register("google-drive", lambda: GoogleDriveConnector(vault, **google))
        registry.register("google-calendar", lambda: GoogleCalendarConnector(vault, **google))
        registry.register(
            "notion",
            lambda: NotionConnector(vault, http_timeout=settings.provider_http_timeout),
        )
        return registry

    def register(self, provider: str, loader: ProviderLoader) -> None:
        self._loaders[provider] = loader
        self._instances.pop(provider, None)

    def _load(self, provider: str) -> BaseConnector:
        instance = self._instances.get(provider)
        if instance is not None:
            return instance
        loader = self._loaders.get(provider)
        if loader is None:
            raise ProviderNotFoundError(provider)
        try:
            instance = loader()
        except Exception as exc:
            raise ProviderLoadError(provider, exc) from exc
        if not instance.is_configured():
            logger.warning("Provider %s loaded without client credentials", provider)
        self._instances[provider] = instance
        return instance

    async def get_app_provider(self, provider: str) -> BaseConnector:
        return self._load(provider)

    def has(self, provider: str) -> bool:
        return provider in self._loaders

    def registered(self) -> List[str]:
        return list(self._loaders.keys())

    def list_providers(self) -> List[Dict[str, object]]:
        """Return info about all registered providers."""
        info = []
        for provider in self._loaders:
            try:
                conn = self._load(provider)
            except ProviderLoadError as exc:
                logger.error("%s", exc)
                continue
            info.append(
                {
                    "provider": conn.provider_name,
                    "display_name": conn.display_name,
                    "configured": conn.is_configured(),
                    "validates_tokens": conn.supports_validation,
                }
            )
        return info

    def clear_cache(self) -> None:
        self._instances.clear()
