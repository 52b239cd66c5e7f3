"""
Tests for token validation, refresh and active-token access.
"""

import base64
import os
from datetime import datetime, timedelta, timezone

import pytest

from conftest import FakeProvider, ValidatingFakeProvider, app_input, make_app_connector
from connectors.credentials import EXPIRED_MESSAGE
from connectors.errors import ProviderError
from connectors.models import ConnectorStatus, ConnectorUpdate, SyncStatePatch, utcnow


def _register(service, provider):
    service.providers.register(provider.provider_name, lambda: provider)
    return provider


def _assert_about(value, expected, tolerance=timedelta(seconds=10)):
    assert value is not None
    assert abs(value - expected) < tolerance


class TestValidateConnectorTokens:
    @pytest.mark.asyncio
    async def test_expired_refreshes_and_revoked_expires(self, service):
        refreshable = _register(service, FakeProvider(service.vault, name="fake"))
        revoking = _register(service, ValidatingFakeProvider(service.vault, name="validating", valid=False))

        a = await make_app_connector(
            service, provider="fake", refresh_token="refresh-a", expires_at=utcnow() - timedelta(hours=1)
        )
        b = await make_app_connector(service, provider="validating", access_token="token-b")

        await service.validate_connector_tokens()

        connector_a = service.get_connector(a)
        assert connector_a.status is ConnectorStatus.CONNECTED
        assert connector_a.error_message is None
        _assert_about(connector_a.token_expires_at, utcnow() + timedelta(seconds=3600))
        assert await service.vault.decrypt_access_token(connector_a) == "new"
        assert refreshable.refresh_calls == ["refresh-a"]

        connector_b = service.get_connector(b)
        assert connector_b.status is ConnectorStatus.EXPIRED
        assert connector_b.error_message == EXPIRED_MESSAGE
        assert revoking.validated == ["token-b"]

    @pytest.mark.asyncio
    async def test_both_expired_only_refreshable_recovers(self, service):
        provider = _register(service, FakeProvider(service.vault, name="fake"))
        past = utcnow() - timedelta(minutes=10)
        a = await make_app_connector(service, provider="fake", expires_at=past)
        b = await make_app_connector(service, provider="fake", refresh_token="refresh-b", expires_at=past)
        await service.update_connector(b, {"error_message": "previous failure"})

        await service.validate_connector_tokens()

        connector_a = service.get_connector(a)
        assert connector_a.status is ConnectorStatus.EXPIRED
        assert connector_a.error_message == EXPIRED_MESSAGE

        connector_b = service.get_connector(b)
        assert connector_b.status is ConnectorStatus.CONNECTED
        assert connector_b.error_message is None
        _assert_about(connector_b.token_expires_at, utcnow() + timedelta(seconds=3600))
        assert provider.refresh_calls == ["refresh-b"]

    @pytest.mark.asyncio
    async def test_valid_token_left_alone(self, service):
        provider = _register(service, ValidatingFakeProvider(service.vault, name="ok", valid=True))
        connector_id = await make_app_connector(service, provider="ok", refresh_token="r")
        before = service.get_connector(connector_id)

        await service.validate_connector_tokens()

        assert service.get_connector(connector_id) == before
        assert provider.validated == ["old-token"]
        assert provider.refresh_calls == []

    @pytest.mark.asyncio
    async def test_revoked_token_refreshed(self, service):
        provider = _register(service, ValidatingFakeProvider(service.vault, name="revoked", valid=False))
        connector_id = await make_app_connector(service, provider="revoked", refresh_token="r")

        await service.validate_connector_tokens()

        assert provider.refresh_calls == ["r"]
        assert service.get_connector(connector_id).status is ConnectorStatus.CONNECTED
        assert await service.get_active_token(connector_id) == "new"

    @pytest.mark.asyncio
    async def test_decryption_failure_triggers_refresh(self, service):
        provider = _register(service, ValidatingFakeProvider(service.vault, name="v"))
        connector_id = await make_app_connector(service, provider="v", refresh_token="r")
        wrong_iv = base64.b64encode(os.urandom(12)).decode()
        await service.metadata.store(connector_id, wrong_iv, "")

        await service.validate_connector_tokens()

        assert provider.validated == []
        assert provider.refresh_calls == ["r"]
        assert await service.get_active_token(connector_id) == "new"

    @pytest.mark.asyncio
    async def test_missing_metadata_skips_validation(self, service):
        provider = _register(service, ValidatingFakeProvider(service.vault, name="v", valid=False))
        connector_id = await make_app_connector(service, provider="v", refresh_token="r")
        await service.persistence.encryption_metadata.delete(connector_id)
        before = service.get_connector(connector_id)

        await service.validate_connector_tokens()

        assert provider.validated == []
        assert provider.refresh_calls == []
        assert service.get_connector(connector_id) == before

    @pytest.mark.asyncio
    async def test_provider_without_validation_only_checks_expiry(self, service):
        provider = _register(service, FakeProvider(service.vault, name="fake"))
        connector_id = await make_app_connector(
            service, provider="fake", refresh_token="r", expires_at=utcnow() + timedelta(hours=1)
        )

        await service.validate_connector_tokens()

        assert provider.refresh_calls == []
        assert service.get_connector(connector_id).status is ConnectorStatus.CONNECTED

    @pytest.mark.asyncio
    async def test_validation_error_triggers_refresh(self, service):
        broken = _register(
            service,
            ValidatingFakeProvider(service.vault, name="broken", validate_error=RuntimeError("network down")),
        )
        healthy = _register(service, ValidatingFakeProvider(service.vault, name="healthy", valid=True))
        refreshable = await make_app_connector(service, provider="broken", refresh_token="r")
        stranded = await make_app_connector(service, provider="broken", access_token="stranded-token")
        untouched = await make_app_connector(service, provider="healthy")

        await service.validate_connector_tokens()

        assert broken.refresh_calls == ["r"]
        assert service.get_connector(refreshable).status is ConnectorStatus.CONNECTED
        assert await service.get_active_token(refreshable) == "new"
        assert service.get_connector(stranded).status is ConnectorStatus.EXPIRED
        assert service.get_connector(stranded).error_message == EXPIRED_MESSAGE
        assert service.get_connector(untouched).status is ConnectorStatus.CONNECTED
        assert healthy.refresh_calls == []

    @pytest.mark.asyncio
    async def test_unregistered_provider_is_isolated(self, service):
        _register(service, ValidatingFakeProvider(service.vault, name="revoked", valid=False))
        orphan = await make_app_connector(service, provider="unknown-provider")
        revoked = await make_app_connector(service, provider="revoked")

        await service.validate_connector_tokens()

        assert service.get_connector(orphan).status is ConnectorStatus.CONNECTED
        assert service.get_connector(revoked).status is ConnectorStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_failed_refresh_marks_expired(self, service):
        _register(service, FakeProvider(service.vault, name="fake", refresh_error=ProviderError("invalid_grant")))
        connector_id = await make_app_connector(
            service, provider="fake", refresh_token="r", expires_at=utcnow() - timedelta(minutes=5)
        )

        await service.validate_connector_tokens()

        connector = service.get_connector(connector_id)
        assert connector.status is ConnectorStatus.EXPIRED
        assert connector.error_message == EXPIRED_MESSAGE

    @pytest.mark.asyncio
    async def test_only_connected_app_connectors_checked(self, service):
        provider = _register(service, ValidatingFakeProvider(service.vault, name="v", valid=False))
        errored = await make_app_connector(service, provider="v")
        await service.set_connector_status(errored, "error", "manual")
        await service.add_connector(
            {"provider": "v", "category": "api", "name": "api", "encrypted_token": "x"}
        )

        await service.validate_connector_tokens()

        assert provider.validated == []
        assert service.get_connector(errored).status is ConnectorStatus.ERROR

    @pytest.mark.asyncio
    async def test_no_connectors(self, service):
        await service.validate_connector_tokens()
        assert service.get_connectors() == ()


class TestRefreshConnectorToken:
    @pytest.mark.asyncio
    async def test_without_refresh_token_changes_nothing(self, service):
        provider = _register(service, FakeProvider(service.vault, name="fake"))
        connector_id = await make_app_connector(service, provider="fake")
        before = service.get_connector(connector_id)

        assert await service.refresh_connector_token(connector_id) is False
        assert service.get_connector(connector_id) == before
        assert provider.refresh_calls == []

    @pytest.mark.asyncio
    async def test_unknown_connector(self, service):
        assert await service.refresh_connector_token("missing") is False

    @pytest.mark.asyncio
    async def test_success_updates_token_and_expiry(self, service):
        _register(service, FakeProvider(service.vault, name="fake"))
        connector_id = await make_app_connector(service, provider="fake", refresh_token="r")
        await service.set_connector_status(connector_id, "expired", "stale")

        assert await service.refresh_connector_token(connector_id) is True

        connector = service.get_connector(connector_id)
        assert connector.status is ConnectorStatus.CONNECTED
        assert connector.error_message is None
        _assert_about(connector.token_expires_at, utcnow() + timedelta(seconds=3600))
        assert await service.vault.decrypt_access_token(connector) == "new"
        metadata = await service.metadata.get(connector_id)
        assert metadata.non_extractable is True
        assert metadata.salt == ""

    @pytest.mark.asyncio
    async def test_without_expiry_clears_it(self, service):
        _register(service, FakeProvider(service.vault, name="fake", refresh_result={"access_token": "n"}))
        connector_id = await make_app_connector(
            service, provider="fake", refresh_token="r", expires_at=utcnow() - timedelta(hours=1)
        )

        assert await service.refresh_connector_token(connector_id) is True
        assert service.get_connector(connector_id).token_expires_at is None

    @pytest.mark.asyncio
    async def test_rotated_refresh_token_stored(self, service):
        _register(
            service,
            FakeProvider(
                service.vault,
                name="fake",
                refresh_result={"access_token": "new", "expires_in": 60, "refresh_token": "rotated"},
            ),
        )
        connector_id = await make_app_connector(service, provider="fake", refresh_token="original")

        assert await service.refresh_connector_token(connector_id) is True
        connector = service.get_connector(connector_id)
        assert await service.vault.decrypt_refresh_token(connector) == "rotated"

    @pytest.mark.asyncio
    async def test_provider_error_returns_false(self, service):
        _register(service, FakeProvider(service.vault, name="fake", refresh_error=ProviderError("nope")))
        connector_id = await make_app_connector(service, provider="fake", refresh_token="r")
        before = service.get_connector(connector_id)

        assert await service.refresh_connector_token(connector_id) is False
        assert service.get_connector(connector_id) == before


class TestGetActiveToken:
    @pytest.mark.asyncio
    async def test_returns_plaintext(self, service):
        provider = _register(service, FakeProvider(service.vault, name="fake"))
        connector_id = await make_app_connector(
            service, provider="fake", refresh_token="r", expires_at=utcnow() + timedelta(hours=1)
        )

        assert await service.get_active_token(connector_id) == "old-token"
        assert provider.refresh_calls == []

    @pytest.mark.asyncio
    async def test_refreshes_inside_skew_window(self, service):
        provider = _register(service, FakeProvider(service.vault, name="fake"))
        connector_id = await make_app_connector(
            service, provider="fake", refresh_token="r", expires_at=utcnow() + timedelta(seconds=30)
        )

        assert await service.get_active_token(connector_id) == "new"
        assert provider.refresh_calls == ["r"]

    @pytest.mark.asyncio
    async def test_failed_refresh_returns_none(self, service):
        _register(service, FakeProvider(service.vault, name="fake", refresh_error=ProviderError("nope")))
        connector_id = await make_app_connector(
            service, provider="fake", refresh_token="r", expires_at=utcnow() - timedelta(seconds=1)
        )

        assert await service.get_active_token(connector_id) is None

    @pytest.mark.asyncio
    async def test_not_applicable(self, service):
        api_id = await service.add_connector(
            {"provider": "custom-api", "category": "api", "name": "api"}
        )
        expired_id = await make_app_connector(service)
        await service.set_connector_status(expired_id, "expired")

        assert await service.get_active_token(api_id) is None
        assert await service.get_active_token(expired_id) is None
        assert await service.get_active_token("missing") is None

    @pytest.mark.asyncio
    async def test_connect_app_with_expiry(self, service):
        connector_id = await service.connect_app(
            app_input(), access_token="fresh", refresh_token="r", expires_in=3600
        )

        connector = service.get_connector(connector_id)
        _assert_about(connector.token_expires_at, utcnow() + timedelta(seconds=3600))
        assert connector.status is ConnectorStatus.CONNECTED
        assert await service.get_active_token(connector_id) == "fresh"


def _naive(delta: timedelta) -> datetime:
    return (datetime.now(timezone.utc) + delta).replace(tzinfo=None)


class TestNaiveExpiry:
    @pytest.mark.asyncio
    async def test_naive_past_expiry_is_refreshed(self, service):
        provider = _register(service, FakeProvider(service.vault, name="fake"))
        connector_id = await make_app_connector(
            service, provider="fake", refresh_token="r", expires_at=_naive(-timedelta(hours=1))
        )
        assert service.get_connector(connector_id).token_expires_at.tzinfo is not None

        await service.validate_connector_tokens()

        assert provider.refresh_calls == ["r"]
        connector = service.get_connector(connector_id)
        assert connector.status is ConnectorStatus.CONNECTED
        _assert_about(connector.token_expires_at, utcnow() + timedelta(seconds=3600))

    @pytest.mark.asyncio
    async def test_naive_past_expiry_without_refresh_token_expires(self, service):
        _register(service, FakeProvider(service.vault, name="fake"))
        connector_id = await make_app_connector(service, provider="fake", expires_at=_naive(-timedelta(hours=1)))

        await service.validate_connector_tokens()

        assert service.get_connector(connector_id).status is ConnectorStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_get_active_token_with_naive_expiry(self, service):
        provider = _register(service, FakeProvider(service.vault, name="fake"))
        later = await make_app_connector(
            service, provider="fake", refresh_token="r", expires_at=_naive(timedelta(hours=1))
        )
        soon = await make_app_connector(
            service, provider="fake", refresh_token="s", expires_at=_naive(timedelta(seconds=30))
        )

        assert await service.get_active_token(later) == "old-token"
        assert await service.get_active_token(soon) == "new"
        assert provider.refresh_calls == ["s"]

    def test_patch_models_normalise_to_utc(self):
        naive = datetime(2020, 1, 1, 12, 0)
        aware = datetime(2020, 1, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))

        assert ConnectorUpdate(token_expires_at=naive).token_expires_at == naive.replace(tzinfo=timezone.utc)
        assert ConnectorUpdate(token_expires_at=aware).token_expires_at.tzinfo == timezone.utc
        assert SyncStatePatch(last_sync_at=naive).last_sync_at.tzinfo == timezone.utc
