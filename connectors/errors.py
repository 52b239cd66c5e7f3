"""
Error taxonomy for the connector manager.

Single-entity operations raise these after notifying; batch credential
operations catch them and translate them into connector status changes.
"""

from __future__ import annotations


class ConnectorError(Exception):
    """Base class for every error raised by the connector manager."""


class ConnectorNotFoundError(ConnectorError):
    def __init__(self, connector_id: str) -> None:
        super().__init__(f"Connector not found: {connector_id}")
        self.connector_id = connector_id


class PersistenceError(ConnectorError):
    """A read or write against the backing store failed."""


class CredentialError(ConnectorError):
    """Encrypting or decrypting a credential failed."""


class MissingEncryptionMetadataError(CredentialError):
    def __init__(self, connector_id: str, field: str = "iv") -> None:
        super().__init__(f"Missing encryption metadata '{field}' for connector {connector_id}")
        self.connector_id = connector_id
        self.field = field


class ProviderError(ConnectorError):
    """A provider adapter failed to validate or refresh a token."""


class ProviderNotFoundError(ProviderError):
    def __init__(self, provider: str) -> None:
        super().__init__(f"Provider '{provider}' is not registered")
        self.provider = provider


class ProviderLoadError(ProviderError):
    def __init__(self, provider: str, cause: Exception | None = None) -> None:
        message = f"Failed to load provider '{provider}'"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)
        self.provider = provider


class InvalidStatusTransitionError(ConnectorError):
    def __init__(self, connector_id: str, current: str, requested: str) -> None:
        super().__init__(
            f"Connector {connector_id} cannot move from '{current}' to '{requested}'"
        )
        self.connector_id = connector_id
        self.current = current
        self.requested = requested
