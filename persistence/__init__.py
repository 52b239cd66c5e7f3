"""
persistence — interchangeable storage backends for connector records.

``create_persistence`` picks the backend from settings:

  • ``local``      — SQLAlchemy async store (SQLite by default)
  • ``replicated`` — last-write-wins shared maps, observed for remote changes

Encryption metadata is device-local and always lives in the local store.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from config.settings import Settings
from persistence.base import (
    CONNECTOR_SYNC_STATES,
    CONNECTORS,
    ENCRYPTION_METADATA,
    PersistenceAdapter,
)
from persistence.local import LocalDatabase, SQLAlchemyStore
from persistence.replicated import ReplicatedMapStore, SharedDocument

logger = logging.getLogger(__name__)

BACKENDS = ("local", "replicated")


@dataclass
class PersistenceBundle:
    connectors: PersistenceAdapter
    sync_states: PersistenceAdapter
    encryption_metadata: PersistenceAdapter
    database: LocalDatabase
    shared_document: Optional[SharedDocument] = None
    _adapters: List[PersistenceAdapter] = field(default_factory=list, repr=False)

    def __post_init__(self) -> None:
        self._adapters = [self.connectors, self.sync_states, self.encryption_metadata]

    async def initialize(self) -> None:
        for adapter in self._adapters:
            await adapter.initialize()

    async def close(self) -> None:
        for adapter in self._adapters:
            await adapter.close()
        await self.database.dispose()


def create_persistence(
    settings: Settings,
    *,
    shared_document: Optional[SharedDocument] = None,
) -> PersistenceBundle:
    """Build the adapters for the backend named by ``settings.persistence_backend``."""
    backend = settings.persistence_backend.lower()
    if backend not in BACKENDS:
        raise ValueError(
            f"Unknown persistence backend '{settings.persistence_backend}' (expected one of {BACKENDS})"
        )

    database = LocalDatabase(settings.database_url, echo=settings.database_echo)
    metadata = SQLAlchemyStore(ENCRYPTION_METADATA, database)

    if backend == "local":
        logger.info("Using local persistence backend")
        return PersistenceBundle(
            connectors=SQLAlchemyStore(CONNECTORS, database),
            sync_states=SQLAlchemyStore(CONNECTOR_SYNC_STATES, database),
            encryption_metadata=metadata,
            database=database,
        )

    document = shared_document or SharedDocument(replica_id=settings.replica_id)
    logger.info("Using replicated persistence backend (replica=%s)", document.replica_id)
    return PersistenceBundle(
        connectors=ReplicatedMapStore(CONNECTORS, document.get_map(CONNECTORS)),
        sync_states=ReplicatedMapStore(CONNECTOR_SYNC_STATES, document.get_map(CONNECTOR_SYNC_STATES)),
        encryption_metadata=metadata,
        database=database,
        shared_document=document,
    )
