"""
ConnectorRegistry — CRUD over connector records and the in-memory read model.

Reads are served from an immutable ``Projection`` snapshot; every mutation
builds a new snapshot and swaps the reference, so a reader iterating the
old one is never disturbed.
"""

from __future__ import annotations

import logging
import uuid
from types import MappingProxyType
from typing import Any, Mapping, Optional, Tuple, Union

from pydantic import BaseModel

from connectors.errors import ConnectorNotFoundError
from connectors.models import (
    Connector,
    ConnectorCategory,
    ConnectorInput,
    ConnectorStatus,
    ConnectorSyncState,
    next_timestamp,
    utcnow,
)
from persistence.base import PersistenceAdapter
from persistence.projection import Projection, project, sort_by_creation_date

logger = logging.getLogger(__name__)

Patch = Union[Mapping[str, Any], BaseModel]

_PINNED_FIELDS = ("id", "created_at", "updated_at")


def _patch_dict(patch: Patch) -> dict:
    if isinstance(patch, BaseModel):
        return patch.model_dump(exclude_unset=True)
    return dict(patch)


class ConnectorRegistry:
    def __init__(self, connectors: PersistenceAdapter, sync_states: PersistenceAdapter) -> None:
        self._connectors_store = connectors
        self._sync_states_store = sync_states
        self._projection = Projection()

    # ── Projection ──────────────────────────────────────────────────────

    @property
    def projection(self) -> Projection:
        return self._projection

    def apply_projection(self, projection: Projection) -> None:
        self._projection = projection

    def _swap(
        self,
        connectors: Optional[Tuple[Connector, ...]] = None,
        sync_states: Optional[Mapping[str, ConnectorSyncState]] = None,
    ) -> None:
        current = self._projection
        self._projection = Projection(
            connectors=current.connectors if connectors is None else connectors,
            sync_states=current.sync_states if sync_states is None else MappingProxyType(dict(sync_states)),
        )

    async def refresh(self) -> Projection:
        """Reload connectors and sync states from persistence."""
        connector_records = await self._connectors_store.get_all()
        sync_state_records = await self._sync_states_store.get_all()
        self._projection = project(connector_records, sync_state_records)
        logger.debug(
            "Projection reloaded: %d connectors, %d sync states",
            len(self._projection.connectors),
            len(self._projection.sync_states),
        )
        return self._projection

    # ── CRUD ────────────────────────────────────────────────────────────

    async def add(self, data: Union[ConnectorInput, Mapping[str, Any]]) -> str:
        payload = data.model_dump() if isinstance(data, BaseModel) else dict(data)
        for field in _PINNED_FIELDS:
            payload.pop(field, None)

        connector_id = str(uuid.uuid4())
        while self.get(connector_id) is not None:
            connector_id = str(uuid.uuid4())

        now = utcnow()
        connector = Connector.model_validate(
            {**payload, "id": connector_id, "created_at": now, "updated_at": now}
        )
        await self._connectors_store.put(connector.model_dump(mode="json"))

        others = [c for c in self._projection.connectors if c.id != connector_id]
        self._swap(connectors=sort_by_creation_date([*others, connector]))
        logger.info("Connector added: %s (%s/%s)", connector_id, connector.category.value, connector.provider)
        return connector_id

    async def update(self, connector_id: str, patch: Patch) -> Connector:
        """Merge *patch* over the persisted record.  ``id`` and ``created_at`` never change."""
        record = await self._connectors_store.get(connector_id)
        if record is None:
            raise ConnectorNotFoundError(connector_id)

        current = Connector.model_validate(record)
        changes = _patch_dict(patch)
        for field in _PINNED_FIELDS:
            changes.pop(field, None)

        previous = current.updated_at
        cached = self.get(connector_id)
        if cached is not None and cached.updated_at > previous:
            previous = cached.updated_at

        merged = current.model_dump()
        merged.update(changes)
        merged["id"] = connector_id
        merged["updated_at"] = next_timestamp(previous)
        updated = Connector.model_validate(merged)

        await self._connectors_store.put(updated.model_dump(mode="json"))

        others = [c for c in self._projection.connectors if c.id != connector_id]
        self._swap(connectors=sort_by_creation_date([*others, updated]))
        return updated

    async def delete(self, connector_id: str) -> None:
        """Remove the connector and its sync state (two independent writes)."""
        await self._connectors_store.delete(connector_id)

        state = self._projection.sync_states.get(connector_id)
        state_key = state.id if state is not None else await self._find_sync_state_key(connector_id)
        if state_key is not None:
            await self._sync_states_store.delete(state_key)

        remaining = tuple(c for c in self._projection.connectors if c.id != connector_id)
        states = {k: v for k, v in self._projection.sync_states.items() if k != connector_id}
        self._swap(connectors=remaining, sync_states=states)
        logger.info("Connector deleted: %s", connector_id)

    async def _find_sync_state_key(self, connector_id: str) -> Optional[str]:
        for record in await self._sync_states_store.get_all():
            if record.get("connector_id") == connector_id:
                return record.get("id")
        return None

    # ── Reads ───────────────────────────────────────────────────────────

    def get(self, connector_id: str) -> Optional[Connector]:
        for connector in self._projection.connectors:
            if connector.id == connector_id:
                return connector
        return None

    def all(self) -> Tuple[Connector, ...]:
        return self._projection.connectors

    def get_by_category(self, category: Union[ConnectorCategory, str]) -> Tuple[Connector, ...]:
        category = ConnectorCategory(category)
        return tuple(c for c in self._projection.connectors if c.category is category)

    def get_by_status(self, status: Union[ConnectorStatus, str]) -> Tuple[Connector, ...]:
        status = ConnectorStatus(status)
        return tuple(c for c in self._projection.connectors if c.status is status)

    def get_app_connectors(self) -> Tuple[Connector, ...]:
        return self.get_by_category(ConnectorCategory.APP)

    def get_api_connectors(self) -> Tuple[Connector, ...]:
        return self.get_by_category(ConnectorCategory.API)

    def get_mcp_connectors(self) -> Tuple[Connector, ...]:
        return self.get_by_category(ConnectorCategory.MCP)

    # ── Sync-state projection (owned here, written by SyncStateTracker) ──

    def get_sync_state(self, connector_id: str) -> Optional[ConnectorSyncState]:
        return self._projection.sync_states.get(connector_id)

    def put_sync_state(self, state: ConnectorSyncState) -> None:
        states = dict(self._projection.sync_states)
        states[state.connector_id] = state
        self._swap(sync_states=states)
