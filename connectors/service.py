"""
ConnectorService — the caller-facing API of the connector manager.

Wires persistence, the registry, the sync-state tracker and the credential
lifecycle manager together.  Build one with ``ConnectorService.from_settings``
or pass the collaborators in directly (tests do the latter).
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel

from config.settings import Settings
from connectors.credentials import CredentialLifecycleManager
from connectors.encryption import CredentialEncryptionService
from connectors.errors import ConnectorNotFoundError, InvalidStatusTransitionError
from connectors.metadata import EncryptionMetadataStore
from connectors.models import (
    Connector,
    ConnectorCategory,
    ConnectorInput,
    ConnectorStatus,
    ConnectorSyncState,
    SyncStateOptions,
    can_transition,
    utcnow,
)
from connectors.notifications import LoggingNotificationSink, NotificationSink
from connectors.providers import ProviderRegistry
from connectors.registry import ConnectorRegistry, Patch
from connectors.sync_state import SyncPatch, SyncStateTracker
from connectors.vault import CredentialVault
from persistence import PersistenceBundle, create_persistence
from persistence.base import Record, Unsubscribe
from persistence.projection import project

logger = logging.getLogger(__name__)


class ConnectorService:
    def __init__(
        self,
        persistence: PersistenceBundle,
        *,
        encryption: CredentialEncryptionService,
        metadata: Optional[EncryptionMetadataStore] = None,
        providers: Optional[ProviderRegistry] = None,
        notifier: Optional[NotificationSink] = None,
        refresh_skew_seconds: int = 120,
    ) -> None:
        self.persistence = persistence
        self.notifier = notifier or LoggingNotificationSink()
        self.encryption = encryption
        self.metadata = metadata or EncryptionMetadataStore(persistence.encryption_metadata)
        self.vault = CredentialVault(encryption, self.metadata)
        self.providers = providers or ProviderRegistry()
        self.registry = ConnectorRegistry(persistence.connectors, persistence.sync_states)
        self.sync_states = SyncStateTracker(persistence.sync_states, self.registry, self.notifier)
        self.credentials = CredentialLifecycleManager(
            self.registry,
            self.providers,
            encryption,
            self.metadata,
            refresh_skew_seconds=refresh_skew_seconds,
        )

        self.is_loading = False
        self.is_initialized = False
        self._subscriptions: List[Unsubscribe] = []
        self._connector_snapshot: Optional[List[Record]] = None
        self._sync_state_snapshot: Optional[List[Record]] = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        notifier: Optional[NotificationSink] = None,
        persistence: Optional[PersistenceBundle] = None,
    ) -> "ConnectorService":
        persistence = persistence or create_persistence(settings)
        encryption = CredentialEncryptionService(settings.token_encryption_key)
        metadata = EncryptionMetadataStore(persistence.encryption_metadata)
        vault = CredentialVault(encryption, metadata)
        return cls(
            persistence,
            encryption=encryption,
            metadata=metadata,
            providers=ProviderRegistry.with_defaults(settings, vault),
            notifier=notifier,
            refresh_skew_seconds=settings.token_refresh_skew_seconds,
        )

    # ═══════════════════════════════════════════════════════════════════
    # Lifecycle
    # ═══════════════════════════════════════════════════════════════════

    async def initialize(self) -> None:
        """Load the projection and start observing remote changes.  Idempotent."""
        if self.is_initialized:
            return

        self.is_loading = True
        try:
            await self.persistence.initialize()
            await self.encryption.init()
            projection = await self.registry.refresh()
            self._subscribe()
            self.is_initialized = True
            logger.info("Connector service initialised with %d connectors", len(projection.connectors))
        except Exception:
            self.notifier.error(
                "Connector Initialization Failed",
                "Failed to initialize connectors. Please refresh the page.",
            )
            logger.exception("Connector initialisation failed")
            raise
        finally:
            self.is_loading = False

    def _subscribe(self) -> None:
        self._subscriptions.append(
            self.persistence.connectors.subscribe(self._on_connectors_changed)
        )
        self._subscriptions.append(
            self.persistence.sync_states.subscribe(self._on_sync_states_changed)
        )

    def _on_connectors_changed(self, records: List[Record]) -> None:
        self._connector_snapshot = records
        self._reproject()

    def _on_sync_states_changed(self, records: List[Record]) -> None:
        self._sync_state_snapshot = records
        self._reproject()

    def _reproject(self) -> None:
        # Only a collection that has never been observed falls back to the
        # current read model; observed ones use the latest full snapshot.
        current = self.registry.projection
        connectors = self._connector_snapshot
        if connectors is None:
            connectors = [c.model_dump(mode="json") for c in current.connectors]
        sync_states = self._sync_state_snapshot
        if sync_states is None:
            sync_states = [s.model_dump(mode="json") for s in current.sync_states.values()]
        self.registry.apply_projection(project(connectors, sync_states))

    async def close(self) -> None:
        for unsubscribe in self._subscriptions:
            unsubscribe()
        self._subscriptions.clear()
        await self.persistence.close()
        self.is_initialized = False

    async def refresh_connectors(self) -> None:
        self.is_loading = True
        try:
            await self.registry.refresh()
        except Exception:
            self.notifier.error("Connector Refresh Failed", "Failed to refresh connectors")
            logger.exception("Connector refresh failed")
            raise
        finally:
            self.is_loading = False

    # ═══════════════════════════════════════════════════════════════════
    # CRUD
    # ═══════════════════════════════════════════════════════════════════

    async def add_connector(self, data: Union[ConnectorInput, Mapping[str, Any]]) -> str:
        self.is_loading = True
        try:
            return await self.registry.add(data)
        except Exception:
            self.notifier.error("Connector Error", "Failed to add connector")
            logger.exception("Failed to add connector")
            raise
        finally:
            self.is_loading = False

    async def connect_app(
        self,
        data: Union[ConnectorInput, Mapping[str, Any]],
        *,
        access_token: str,
        refresh_token: Optional[str] = None,
        expires_in: Optional[int] = None,
    ) -> str:
        """
        Store a freshly authorised app connector.

        Encrypts the tokens from the OAuth callback, records their metadata
        and creates the connector in the ``connected`` state.
        """
        payload = data.model_dump() if isinstance(data, BaseModel) else dict(data)
        connector_id = await self.add_connector(
            {**payload, "category": ConnectorCategory.APP, "status": ConnectorStatus.CONNECTED}
        )
        sealed = await self.vault.seal(connector_id, access_token)
        patch: dict = {"encrypted_token": sealed.ciphertext}
        if refresh_token:
            sealed_refresh = await self.vault.seal(connector_id, refresh_token, refresh_token=True)
            patch["encrypted_refresh_token"] = sealed_refresh.ciphertext
        if expires_in:
            patch["token_expires_at"] = utcnow() + timedelta(seconds=expires_in)
        await self.update_connector(connector_id, patch)
        return connector_id

    async def update_connector(self, connector_id: str, patch: Patch) -> Connector:
        self.is_loading = True
        try:
            return await self.registry.update(connector_id, patch)
        except Exception:
            self.notifier.error("Connector Error", "Failed to update connector")
            logger.exception("Failed to update connector %s", connector_id)
            raise
        finally:
            self.is_loading = False

    async def delete_connector(self, connector_id: str) -> None:
        self.is_loading = True
        try:
            await self.registry.delete(connector_id)
            await self.metadata.delete(connector_id)
        except Exception:
            self.notifier.error("Connector Error", "Failed to delete connector")
            logger.exception("Failed to delete connector %s", connector_id)
            raise
        finally:
            self.is_loading = False

    def get_connector(self, connector_id: str) -> Optional[Connector]:
        return self.registry.get(connector_id)

    def get_connectors(self) -> Tuple[Connector, ...]:
        return self.registry.all()

    # ── Filtering ───────────────────────────────────────────────────────

    def get_connectors_by_category(self, category: Union[ConnectorCategory, str]) -> Tuple[Connector, ...]:
        return self.registry.get_by_category(category)

    def get_connectors_by_status(self, status: Union[ConnectorStatus, str]) -> Tuple[Connector, ...]:
        return self.registry.get_by_status(status)

    def get_app_connectors(self) -> Tuple[Connector, ...]:
        return self.registry.get_app_connectors()

    def get_api_connectors(self) -> Tuple[Connector, ...]:
        return self.registry.get_api_connectors()

    def get_mcp_connectors(self) -> Tuple[Connector, ...]:
        return self.registry.get_mcp_connectors()

    # ═══════════════════════════════════════════════════════════════════
    # Sync state
    # ═══════════════════════════════════════════════════════════════════

    async def update_sync_state(
        self,
        connector_id: str,
        patch: SyncPatch,
        options: Optional[SyncStateOptions] = None,
        *,
        silent: bool = False,
        skip_persist: bool = False,
    ) -> ConnectorSyncState:
        if options is None:
            options = SyncStateOptions.of(silent=silent, skip_persist=skip_persist)
        return await self.sync_states.update_sync_state(connector_id, patch, options)

    def get_sync_state(self, connector_id: str) -> Optional[ConnectorSyncState]:
        return self.sync_states.get_sync_state(connector_id)

    # ═══════════════════════════════════════════════════════════════════
    # Actions
    # ═══════════════════════════════════════════════════════════════════

    async def set_connector_status(
        self,
        connector_id: str,
        status: Union[ConnectorStatus, str],
        error_message: Optional[str] = None,
    ) -> Connector:
        status = ConnectorStatus(status)
        try:
            current = self.registry.get(connector_id)
            if current is None:
                raise ConnectorNotFoundError(connector_id)
            if not can_transition(current.status, status):
                raise InvalidStatusTransitionError(connector_id, current.status.value, status.value)
        except Exception:
            self.notifier.error("Connector Error", "Failed to update connector status")
            raise

        patch = {
            "status": status,
            "error_message": None if status is ConnectorStatus.CONNECTED else (error_message or None),
        }
        return await self.update_connector(connector_id, patch)

    async def validate_connector_tokens(self) -> None:
        await self.credentials.validate_connector_tokens()

    async def refresh_connector_token(self, connector_id: str) -> bool:
        return await self.credentials.refresh_connector_token(connector_id)

    async def get_active_token(self, connector_id: str) -> Optional[str]:
        return await self.credentials.get_active_token(connector_id)
