"""
SyncStateTracker — per-connector sync-state upsert with edge-triggered
notifications.

A notification fires only when the status *changes* relative to the state
stored before the call:

    previous != syncing  →  syncing   "Syncing <provider>..."   (info)
    syncing              →  idle      "Sync Completed"           (success)
    syncing              →  error     "Sync Failed"              (error)

Writing the same status again is silent.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Mapping, Optional, Union

from pydantic import BaseModel

from connectors.errors import PersistenceError
from connectors.models import (
    ConnectorSyncState,
    SyncStateOptions,
    SyncStatus,
    utcnow,
)
from connectors.notifications import NotificationSink, provider_display_name
from connectors.registry import ConnectorRegistry
from persistence.base import PersistenceAdapter

logger = logging.getLogger(__name__)

SyncPatch = Union[Mapping[str, Any], BaseModel]


def _patch_dict(patch: SyncPatch) -> dict:
    if isinstance(patch, BaseModel):
        return patch.model_dump(exclude_unset=True)
    return dict(patch)


class SyncStateTracker:
    def __init__(
        self,
        store: PersistenceAdapter,
        registry: ConnectorRegistry,
        notifier: NotificationSink,
    ) -> None:
        self._store = store
        self._registry = registry
        self._notifier = notifier

    def get_sync_state(self, connector_id: str) -> Optional[ConnectorSyncState]:
        return self._registry.get_sync_state(connector_id)

    async def update_sync_state(
        self,
        connector_id: str,
        patch: SyncPatch,
        options: Optional[SyncStateOptions] = None,
    ) -> ConnectorSyncState:
        options = options or SyncStateOptions()
        changes = _patch_dict(patch)
        changes.pop("id", None)
        changes.pop("connector_id", None)

        existing = self._registry.get_sync_state(connector_id)
        if existing is not None:
            merged = existing.model_dump()
            merged.update(changes)
            merged["connector_id"] = connector_id
        else:
            merged = {
                "id": str(uuid.uuid4()),
                "connector_id": connector_id,
                "cursor": None,
                "last_sync_at": utcnow(),
                "items_synced": 0,
                "sync_type": "full",
                "status": "idle",
                **changes,
            }
        state = ConnectorSyncState.model_validate(merged)

        if not options.skip_persist:
            try:
                await self._store.put(state.model_dump(mode="json"))
            except PersistenceError:
                if not options.silent:
                    self._notifier.error("Sync State Error", "Failed to update sync state")
                logger.exception("Failed to persist sync state for connector %s", connector_id)
                raise

        self._registry.put_sync_state(state)

        if not options.silent:
            self._notify_transition(connector_id, existing, changes, state)
        return state

    def _notify_transition(
        self,
        connector_id: str,
        previous: Optional[ConnectorSyncState],
        changes: dict,
        state: ConnectorSyncState,
    ) -> None:
        if changes.get("status") is None:
            return
        connector = self._registry.get(connector_id)
        if connector is None:
            return

        new_status = SyncStatus(changes["status"])
        previous_status = previous.status if previous is not None else None
        name = provider_display_name(connector)

        if new_status is SyncStatus.SYNCING and previous_status is not SyncStatus.SYNCING:
            self._notifier.info(f"Syncing {name}...")
        elif new_status is SyncStatus.IDLE and previous_status is SyncStatus.SYNCING:
            items = changes.get("items_synced")
            if items is None:
                items = state.items_synced
            self._notifier.success("Sync Completed", f"Synced {items} items from {name}")
        elif new_status is SyncStatus.ERROR and previous_status is SyncStatus.SYNCING:
            message = changes.get("error_message") or "Unknown error"
            self._notifier.error("Sync Failed", f"Failed to sync {name}: {message}")
