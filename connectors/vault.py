"""
CredentialVault — encrypted token access for a connector.

Pairs the encryption service with the per-connector metadata store so
callers can go from a ``Connector`` record to plaintext tokens and back.
"""

from __future__ import annotations

import logging
from typing import Optional

from connectors.encryption import CredentialEncryptionService
from connectors.errors import MissingEncryptionMetadataError
from connectors.metadata import EncryptionMetadataStore
from connectors.models import Connector, EncryptedCredential

logger = logging.getLogger(__name__)


class CredentialVault:
    def __init__(self, encryption: CredentialEncryptionService, metadata: EncryptionMetadataStore) -> None:
        self.encryption = encryption
        self.metadata = metadata

    async def decrypt_access_token(self, connector: Connector) -> Optional[str]:
        """
        Plaintext access token, or None when the connector has none.

        Raises ``MissingEncryptionMetadataError`` when the IV is unknown and
        ``CredentialError`` when decryption fails.
        """
        if not connector.encrypted_token:
            return None
        meta = await self.metadata.get(connector.id)
        if meta is None or not meta.iv:
            raise MissingEncryptionMetadataError(connector.id, "iv")
        await self.encryption.init()
        return await self.encryption.decrypt(connector.encrypted_token, meta.iv, meta.salt)

    async def decrypt_refresh_token(self, connector: Connector) -> Optional[str]:
        """
        Plaintext refresh token, or None when unavailable.

        Falls back to the access-token metadata for connectors whose refresh
        token was encrypted alongside it.
        """
        if not connector.encrypted_refresh_token:
            return None
        meta = await self.metadata.get(connector.id, refresh_token=True)
        if meta is None:
            meta = await self.metadata.get(connector.id)
        if meta is None or not meta.iv:
            logger.warning("Missing refresh token metadata for connector %s", connector.id)
            return None
        await self.encryption.init()
        return await self.encryption.decrypt(connector.encrypted_refresh_token, meta.iv, meta.salt)

    async def seal(self, connector_id: str, plaintext: str, *, refresh_token: bool = False) -> EncryptedCredential:
        """Encrypt a token and record its metadata under the current scheme."""
        await self.encryption.init()
        sealed = await self.encryption.encrypt(plaintext)
        await self.metadata.store(
            connector_id,
            sealed.iv,
            sealed.salt,
            refresh_token=refresh_token,
            non_extractable=True,
        )
        return sealed
