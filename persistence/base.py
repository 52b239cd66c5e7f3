"""
PersistenceAdapter — the keyed CRUD contract every backend implements.

One adapter instance serves one named collection.  Records are plain
JSON-compatible dicts keyed by their ``"id"`` field.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

Record = Dict[str, Any]
ChangeCallback = Callable[[List[Record]], None]
Unsubscribe = Callable[[], None]

CONNECTORS = "connectors"
CONNECTOR_SYNC_STATES = "connector_sync_states"
ENCRYPTION_METADATA = "encryption_metadata"


class PersistenceAdapter(ABC):
    """Abstract keyed store for a single collection."""

    def __init__(self, collection: str) -> None:
        self.collection = collection

    async def initialize(self) -> None:
        """Prepare the backend.  Must be idempotent."""
        return None

    @abstractmethod
    async def get(self, key: str) -> Optional[Record]:
        ...

    @abstractmethod
    async def get_all(self) -> List[Record]:
        ...

    @abstractmethod
    async def put(self, record: Record) -> None:
        """Insert or replace the record stored under ``record["id"]``."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    def subscribe(self, callback: ChangeCallback) -> Unsubscribe:
        """
        Register *callback* for changes to the collection.

        The callback receives the full current contents.  Backends without
        remote peers never fire it.
        """
        return lambda: None

    async def close(self) -> None:
        return None

    @staticmethod
    def key_of(record: Record) -> str:
        key = record.get("id")
        if not key:
            raise ValueError("record has no 'id'")
        return str(key)
