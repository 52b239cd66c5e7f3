"""
Shared fixtures: an isolated ConnectorService per test on either backend.
"""

import base64
from datetime import datetime
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

from config.settings import Settings
from connectors.base import BaseConnector
from connectors.encryption import CredentialEncryptionService
from connectors.models import ConnectorCategory
from connectors.notifications import RecordingNotificationSink
from connectors.providers import ProviderRegistry
from connectors.service import ConnectorService
from persistence import create_persistence

TEST_KEY = base64.urlsafe_b64encode(b"0123456789abcdef0123456789abcdef").decode()


class FakeProvider(BaseConnector):
    """Provider without a validate_token capability."""

    def __init__(self, vault, *, name: str = "fake", refresh_result: Optional[Dict[str, Any]] = None,
                 refresh_error: Optional[Exception] = None) -> None:
        super().__init__(vault)
        self._name = name
        self.refresh_result = refresh_result or {"access_token": "new", "expires_in": 3600}
        self.refresh_error = refresh_error
        self.refresh_calls: List[str] = []

    @property
    def provider_name(self) -> str:
        return self._name

    @property
    def display_name(self) -> str:
        return self._name.title()

    async def refresh_access_token(self, refresh_token: str) -> Dict[str, Any]:
        self.refresh_calls.append(refresh_token)
        if self.refresh_error is not None:
            raise self.refresh_error
        return dict(self.refresh_result)


class ValidatingFakeProvider(FakeProvider):
    def __init__(self, vault, *, valid: bool = True, validate_error: Optional[Exception] = None, **kwargs) -> None:
        super().__init__(vault, **kwargs)
        self.valid = valid
        self.validate_error = validate_error
        self.validated: List[str] = []

    async def validate_token(self, access_token: str) -> bool:
        self.validated.append(access_token)
        if self.validate_error is not None:
            raise self.validate_error
        return self.valid


def make_settings(tmp_path, backend: str = "local") -> Settings:
    return Settings(
        persistence_backend=backend,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'connectors.db'}",
        token_encryption_key=TEST_KEY,
        token_validation_interval_seconds=0,
        _env_file=None,
    )


def build_service(settings: Settings) -> ConnectorService:
    return ConnectorService(
        create_persistence(settings),
        encryption=CredentialEncryptionService(settings.token_encryption_key),
        providers=ProviderRegistry(),
        notifier=RecordingNotificationSink(),
        refresh_skew_seconds=settings.token_refresh_skew_seconds,
    )


@pytest.fixture(params=["local", "replicated"])
def settings(request, tmp_path) -> Settings:
    return make_settings(tmp_path, request.param)


@pytest.fixture
def local_settings(tmp_path) -> Settings:
    return make_settings(tmp_path, "local")


@pytest_asyncio.fixture
async def service(settings):
    svc = build_service(settings)
    await svc.initialize()
    yield svc
    await svc.close()


@pytest_asyncio.fixture
async def local_service(local_settings):
    svc = build_service(local_settings)
    await svc.initialize()
    yield svc
    await svc.close()


def app_input(provider: str = "fake", name: str = "Test", **extra) -> Dict[str, Any]:
    return {"provider": provider, "category": ConnectorCategory.APP, "name": name, **extra}


async def make_app_connector(
    svc: ConnectorService,
    *,
    provider: str = "fake",
    access_token: str = "old-token",
    refresh_token: Optional[str] = None,
    expires_at: Optional[datetime] = None,
) -> str:
    connector_id = await svc.connect_app(
        app_input(provider=provider),
        access_token=access_token,
        refresh_token=refresh_token,
    )
    if expires_at is not None:
        await svc.update_connector(connector_id, {"token_expires_at": expires_at})
    return connector_id
