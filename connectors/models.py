"""
Pydantic models for connectors, their sync state and credential metadata.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def next_timestamp(previous: Optional[datetime]) -> datetime:
    """Current time, nudged forward so it is strictly after *previous*."""
    now = utcnow()
    if previous is not None and now <= previous:
        return previous + timedelta(microseconds=1)
    return now


# ═══════════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════════


class ConnectorCategory(str, Enum):
    """app: OAuth services · api: custom REST/GraphQL · mcp: MCP servers."""

    APP = "app"
    API = "api"
    MCP = "mcp"


class ConnectorStatus(str, Enum):
    CONNECTED = "connected"
    EXPIRED = "expired"
    ERROR = "error"
    DISCONNECTED = "disconnected"


_ANY_STATUS: FrozenSet[ConnectorStatus] = frozenset(ConnectorStatus)

# A disconnected connector only comes back through a fresh connection.
ALLOWED_STATUS_TRANSITIONS: Mapping[ConnectorStatus, FrozenSet[ConnectorStatus]] = {
    ConnectorStatus.CONNECTED: _ANY_STATUS,
    ConnectorStatus.EXPIRED: _ANY_STATUS,
    ConnectorStatus.ERROR: _ANY_STATUS,
    ConnectorStatus.DISCONNECTED: frozenset(
        {ConnectorStatus.CONNECTED, ConnectorStatus.DISCONNECTED}
    ),
}


def can_transition(current: ConnectorStatus, requested: ConnectorStatus) -> bool:
    return requested in ALLOWED_STATUS_TRANSITIONS[ConnectorStatus(current)]


class SyncStatus(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


class SyncType(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"


class NotificationKind(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"


class NotificationPolicy(str, Enum):
    LOUD = "loud"
    SILENT = "silent"


class DurabilityPolicy(str, Enum):
    PERSIST = "persist"
    MEMORY_ONLY = "memory_only"


# ═══════════════════════════════════════════════════════════════════════════════
# Connector
# ═══════════════════════════════════════════════════════════════════════════════


class ConnectorInput(BaseModel):
    """Everything a caller supplies when creating a connector."""

    model_config = ConfigDict(extra="ignore")

    provider: str
    category: ConnectorCategory
    name: str
    status: ConnectorStatus = ConnectorStatus.CONNECTED

    # App connectors (OAuth)
    encrypted_token: Optional[str] = None
    encrypted_refresh_token: Optional[str] = None
    token_expires_at: Optional[datetime] = None
    scopes: List[str] = Field(default_factory=list)
    account_id: Optional[str] = None
    account_email: Optional[str] = None

    # API / MCP connectors
    api_config: Optional[Dict[str, Any]] = None
    mcp_config: Optional[Dict[str, Any]] = None

    # Sync configuration
    sync_enabled: bool = True
    sync_folders: List[str] = Field(default_factory=list)
    sync_interval: int = 30  # minutes

    error_message: Optional[str] = None
    last_sync_at: Optional[datetime] = None

    @field_validator("token_expires_at", "last_sync_at")
    @classmethod
    def _to_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class Connector(ConnectorInput):
    id: str
    created_at: datetime
    updated_at: datetime

    @field_validator("created_at", "updated_at")
    @classmethod
    def _stamps_to_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    def public_view(self) -> Dict[str, Any]:
        """JSON-safe dict without any ciphertext."""
        return self.model_dump(
            mode="json",
            exclude={"encrypted_token", "encrypted_refresh_token"},
        )


class ConnectorUpdate(BaseModel):
    """Partial patch accepted over HTTP; unset fields are left alone."""

    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    status: Optional[ConnectorStatus] = None
    token_expires_at: Optional[datetime] = None
    scopes: Optional[List[str]] = None
    api_config: Optional[Dict[str, Any]] = None
    mcp_config: Optional[Dict[str, Any]] = None
    sync_enabled: Optional[bool] = None
    sync_folders: Optional[List[str]] = None
    sync_interval: Optional[int] = None
    error_message: Optional[str] = None

    @field_validator("token_expires_at")
    @classmethod
    def _to_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


# ═══════════════════════════════════════════════════════════════════════════════
# Sync state
# ═══════════════════════════════════════════════════════════════════════════════


def _coerce_sync_type(value: Any) -> Any:
    # "delta" is the older spelling written by earlier clients.
    if value == "delta":
        return SyncType.INCREMENTAL
    return value


class ConnectorSyncState(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    connector_id: str
    cursor: Optional[str] = None
    last_sync_at: datetime = Field(default_factory=utcnow)
    items_synced: int = Field(default=0, ge=0)
    sync_type: SyncType = SyncType.FULL
    status: SyncStatus = SyncStatus.IDLE
    error_message: Optional[str] = None

    @field_validator("sync_type", mode="before")
    @classmethod
    def _normalise_sync_type(cls, value: Any) -> Any:
        return _coerce_sync_type(value)

    @field_validator("last_sync_at")
    @classmethod
    def _to_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class SyncStatePatch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    cursor: Optional[str] = None
    last_sync_at: Optional[datetime] = None
    items_synced: Optional[int] = Field(default=None, ge=0)
    sync_type: Optional[SyncType] = None
    status: Optional[SyncStatus] = None
    error_message: Optional[str] = None

    @field_validator("sync_type", mode="before")
    @classmethod
    def _normalise_sync_type(cls, value: Any) -> Any:
        return _coerce_sync_type(value)

    @field_validator("last_sync_at")
    @classmethod
    def _to_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class SyncStateOptions(BaseModel):
    """
    How ``update_sync_state`` treats one call.

    ``notification`` — LOUD emits edge-triggered notifications, SILENT only logs.
    ``durability``   — PERSIST writes through to the store, MEMORY_ONLY updates
                       just the in-memory projection (per-batch progress ticks).
    """

    model_config = ConfigDict(frozen=True)

    notification: NotificationPolicy = NotificationPolicy.LOUD
    durability: DurabilityPolicy = DurabilityPolicy.PERSIST

    @classmethod
    def of(cls, *, silent: bool = False, skip_persist: bool = False) -> "SyncStateOptions":
        return cls(
            notification=NotificationPolicy.SILENT if silent else NotificationPolicy.LOUD,
            durability=DurabilityPolicy.MEMORY_ONLY if skip_persist else DurabilityPolicy.PERSIST,
        )

    @property
    def silent(self) -> bool:
        return self.notification is NotificationPolicy.SILENT

    @property
    def skip_persist(self) -> bool:
        return self.durability is DurabilityPolicy.MEMORY_ONLY


# ═══════════════════════════════════════════════════════════════════════════════
# Credentials
# ═══════════════════════════════════════════════════════════════════════════════


class EncryptedCredential(BaseModel):
    ciphertext: str
    iv: str
    salt: str = ""


class EncryptionMetadata(BaseModel):
    connector_id: str
    iv: str
    salt: str = ""
    non_extractable: bool = True
    refresh_token: bool = False


class RefreshResult(BaseModel):
    access_token: str
    expires_in: Optional[int] = None
    refresh_token: Optional[str] = None


class Notification(BaseModel):
    kind: NotificationKind
    title: str
    description: str = ""
