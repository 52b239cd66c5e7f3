"""
Credential lifecycle — validate / refresh / expire app connector tokens.

``validate_connector_tokens`` fans out one task per connected app connector
and waits for all of them to settle; a failure in one task only affects
that connector.  ``refresh_connector_token`` never raises.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Optional

from connectors.encryption import CredentialEncryptionService
from connectors.errors import CredentialError, MissingEncryptionMetadataError
from connectors.metadata import EncryptionMetadataStore
from connectors.models import (
    Connector,
    ConnectorCategory,
    ConnectorStatus,
    utcnow,
)
from connectors.providers import ProviderRegistry
from connectors.registry import ConnectorRegistry
from connectors.vault import CredentialVault

logger = logging.getLogger(__name__)

EXPIRED_MESSAGE = "Access token has expired and refresh failed. Please reconnect."


class CredentialLifecycleManager:
    def __init__(
        self,
        registry: ConnectorRegistry,
        providers: ProviderRegistry,
        encryption: CredentialEncryptionService,
        metadata: EncryptionMetadataStore,
        *,
        refresh_skew_seconds: int = 120,
    ) -> None:
        self._registry = registry
        self._providers = providers
        self._encryption = encryption
        self._metadata = metadata
        self._vault = CredentialVault(encryption, metadata)
        self._refresh_skew = timedelta(seconds=refresh_skew_seconds)

    # ── Validation ──────────────────────────────────────────────────────

    async def validate_connector_tokens(self) -> None:
        """Validate every connected app connector; never raises."""
        targets = [
            c
            for c in self._registry.get_app_connectors()
            if c.status is ConnectorStatus.CONNECTED
        ]
        if not targets:
            return

        results = await asyncio.gather(
            *(self._validate_one(c) for c in targets),
            return_exceptions=True,
        )
        for connector, result in zip(targets, results):
            if isinstance(result, BaseException):
                logger.warning("Token validation task for %s ended with %r", connector.id, result)

    async def _validate_one(self, connector: Connector) -> None:
        try:
            reason = await self._needs_refresh(connector)
            if reason is None:
                return

            logger.info("%s for %s (%s), attempting refresh", reason, connector.provider, connector.id)
            if await self.refresh_connector_token(connector.id):
                return

            logger.info("Token refresh failed for %s (%s), marking as expired", connector.provider, connector.id)
            await self._registry.update(
                connector.id,
                {"status": ConnectorStatus.EXPIRED, "error_message": EXPIRED_MESSAGE},
            )
        except Exception as exc:
            logger.warning("Failed to validate token for %s (%s): %s", connector.provider, connector.id, exc)

    async def _needs_refresh(self, connector: Connector) -> Optional[str]:
        """Why the token must be refreshed, or None if it looks fine."""
        if connector.token_expires_at is not None and connector.token_expires_at <= utcnow():
            return "Token expired based on expiry time"

        provider = await self._providers.get_app_provider(connector.provider)
        if not provider.supports_validation or not connector.encrypted_token:
            return None

        try:
            token = await self._vault.decrypt_access_token(connector)
        except MissingEncryptionMetadataError:
            logger.warning("Missing encryption metadata for %s (%s), skipping validation", connector.provider, connector.id)
            return None
        except CredentialError as exc:
            logger.error("Token decryption failed for %s (%s): %s", connector.provider, connector.id, exc)
            return "Token decryption failed"

        try:
            valid = await provider.validate_token(token)
        except Exception as exc:
            logger.warning("Token validation errored for %s (%s): %s", connector.provider, connector.id, exc)
            return "Token validation failed (provider error)"
        if not valid:
            return "Token validation failed (revoked or invalid)"
        return None

    # ── Refresh ─────────────────────────────────────────────────────────

    async def refresh_connector_token(self, connector_id: str) -> bool:
        """
        Refresh the access token of one connector.

        1. Bail out if the connector is unknown or has no refresh token.
        2. Ask the provider for a new access token.
        3. Encrypt it with a fresh IV and persist the connector update.
        4. Store the new encryption metadata.

        Returns True on success; every failure is logged and returns False.
        """
        connector = self._registry.get(connector_id)
        if connector is None:
            logger.warning("Connector not found: %s", connector_id)
            return False
        if not connector.encrypted_refresh_token:
            logger.warning("No refresh token available for %s (%s)", connector.provider, connector_id)
            return False

        try:
            logger.info("Attempting token refresh for %s (%s)", connector.provider, connector_id)
            provider = await self._providers.get_app_provider(connector.provider)
            result = await provider.refresh_token(connector)

            await self._encryption.init()
            sealed = await self._encryption.encrypt(result.access_token)
            rotated = await self._encryption.encrypt(result.refresh_token) if result.refresh_token else None

            expires_at = (
                utcnow() + timedelta(seconds=result.expires_in) if result.expires_in else None
            )
            patch = {
                "encrypted_token": sealed.ciphertext,
                "token_expires_at": expires_at,
                "status": ConnectorStatus.CONNECTED,
                "error_message": None,
            }
            if rotated is not None:
                patch["encrypted_refresh_token"] = rotated.ciphertext
            await self._registry.update(connector_id, patch)

            await self._metadata.store(connector_id, sealed.iv, sealed.salt, non_extractable=True)
            if rotated is not None:
                await self._metadata.store(
                    connector_id, rotated.iv, rotated.salt, refresh_token=True, non_extractable=True
                )

            logger.info("Token refreshed successfully for %s (%s)", connector.provider, connector_id)
            return True
        except Exception as exc:
            logger.error("Failed to refresh token for %s (%s): %s", connector.provider, connector_id, exc)
            return False

    # ── Access ──────────────────────────────────────────────────────────

    async def get_active_token(self, connector_id: str) -> Optional[str]:
        """
        Get a usable access token for an app connector.

        Refreshes first when the token expires within the skew window.
        Returns None when the connector is unknown, not connected, or the
        token cannot be produced.
        """
        connector = self._registry.get(connector_id)
        if connector is None or connector.category is not ConnectorCategory.APP:
            return None
        if connector.status is not ConnectorStatus.CONNECTED:
            return None

        if connector.token_expires_at is not None and connector.token_expires_at < utcnow() + self._refresh_skew:
            if not await self.refresh_connector_token(connector_id):
                return None
            connector = self._registry.get(connector_id)
            if connector is None:
                return None

        try:
            return await self._vault.decrypt_access_token(connector)
        except CredentialError as exc:
            logger.error("get_active_token failed for %s: %s", connector_id, exc)
            return None
