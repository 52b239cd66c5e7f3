"""
BaseConnector — abstract interface for provider adapters.

Every app provider (Gmail, Google Drive, Notion, …) subclasses this.  Token
refresh is mandatory; token validation is an optional capability that a
subclass opts into by overriding ``validate_token``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from connectors.errors import ProviderError
from connectors.models import Connector, RefreshResult
from connectors.vault import CredentialVault


class BaseConnector(ABC):
    """Abstract base for all provider adapters."""

    def __init__(self, vault: CredentialVault, *, http_timeout: Optional[float] = None) -> None:
        self._vault = vault
        self._http_timeout = http_timeout

    # ── Identity ────────────────────────────────────────────────────────
    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Unique slug: 'gmail', 'google-drive', 'notion', …"""
        ...

    @property
    @abstractmethod
    def display_name(self) -> str:
        """Human-readable: 'Gmail', 'Google Drive', 'Notion', …"""
        ...

    @property
    def scopes(self) -> List[str]:
        return []

    # ── Capabilities ────────────────────────────────────────────────────

    @property
    def supports_validation(self) -> bool:
        return type(self).validate_token is not BaseConnector.validate_token

    async def validate_token(self, access_token: str) -> bool:
        """
        Ask the provider whether *access_token* is still accepted.

        Subclasses that can check tokens override this.
        """
        raise NotImplementedError(f"{self.provider_name} cannot validate tokens")

    async def refresh_token(self, connector: Connector) -> RefreshResult:
        """
        Obtain a fresh access token for *connector*.

        Decrypts the stored refresh token and delegates the exchange to
        ``refresh_access_token``.
        """
        refresh_token = await self._vault.decrypt_refresh_token(connector)
        if not refresh_token:
            raise ProviderError(f"No refresh token available for {self.provider_name}")
        data = await self.refresh_access_token(refresh_token)
        return RefreshResult.model_validate(data)

    @abstractmethod
    async def refresh_access_token(self, refresh_token: str) -> Dict[str, Any]:
        """
        Exchange a refresh token for a new access token.

        Returns
        -------
        dict with keys: access_token, (optional) expires_in, (optional) refresh_token
        """
        ...

    # ── Helpers ─────────────────────────────────────────────────────────

    def is_configured(self) -> bool:
        """
        Return True if this connector has all required config
        (client IDs, secrets, etc.).
        """
        return True

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._http_timeout)
