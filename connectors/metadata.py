"""
Per-connector encryption metadata (IV / salt), kept on the local device.
"""

from __future__ import annotations

import logging
from typing import Optional

from connectors.models import EncryptionMetadata
from persistence.base import PersistenceAdapter

logger = logging.getLogger(__name__)


def _key(connector_id: str, refresh_token: bool) -> str:
    return f"{connector_id}:refresh" if refresh_token else connector_id


class EncryptionMetadataStore:
    """Keyed lookup of IV/salt for a connector's access or refresh token."""

    def __init__(self, adapter: PersistenceAdapter) -> None:
        self._adapter = adapter

    async def initialize(self) -> None:
        await self._adapter.initialize()

    async def get(self, connector_id: str, *, refresh_token: bool = False) -> Optional[EncryptionMetadata]:
        record = await self._adapter.get(_key(connector_id, refresh_token))
        if record is None:
            return None
        return EncryptionMetadata.model_validate(record)

    async def store(
        self,
        connector_id: str,
        iv: str,
        salt: str,
        *,
        refresh_token: bool = False,
        non_extractable: bool = True,
    ) -> EncryptionMetadata:
        metadata = EncryptionMetadata(
            connector_id=connector_id,
            iv=iv,
            salt=salt,
            non_extractable=non_extractable,
            refresh_token=refresh_token,
        )
        record = metadata.model_dump(mode="json")
        record["id"] = _key(connector_id, refresh_token)
        await self._adapter.put(record)
        return metadata

    async def delete(self, connector_id: str) -> None:
        await self._adapter.delete(_key(connector_id, False))
        await self._adapter.delete(_key(connector_id, True))
