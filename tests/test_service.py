"""
Tests for ConnectorService lifecycle, remote-change handling and the
background token validator.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from conftest import app_input, build_service, make_settings
from connectors.errors import PersistenceError
from connectors.models import NotificationKind
from connectors.notifications import RecordingNotificationSink
from connectors.service import ConnectorService
from main import run_token_validation


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, local_settings):
        service = build_service(local_settings)
        assert not service.is_initialized

        await service.initialize()
        with patch.object(service.registry, "refresh", new_callable=AsyncMock) as mock_refresh:
            await service.initialize()
        mock_refresh.assert_not_awaited()

        assert service.is_initialized
        assert service.is_loading is False
        await service.close()

    @pytest.mark.asyncio
    async def test_initialize_failure_notifies(self, local_settings):
        service = build_service(local_settings)
        with patch.object(
            service.persistence, "initialize", new_callable=AsyncMock, side_effect=PersistenceError("down")
        ):
            with pytest.raises(PersistenceError):
                await service.initialize()

        assert not service.is_initialized
        assert service.is_loading is False
        assert [n.title for n in service.notifier.notifications] == ["Connector Initialization Failed"]
        await service.close()

    @pytest.mark.asyncio
    async def test_refresh_failure_notifies(self, service):
        with patch.object(
            service.registry, "refresh", new_callable=AsyncMock, side_effect=PersistenceError("gone")
        ):
            with pytest.raises(PersistenceError):
                await service.refresh_connectors()

        assert service.notifier.notifications[-1].title == "Connector Refresh Failed"
        assert service.is_loading is False

    @pytest.mark.asyncio
    async def test_from_settings_registers_builtin_providers(self, tmp_path):
        service = ConnectorService.from_settings(
            make_settings(tmp_path), notifier=RecordingNotificationSink()
        )
        assert service.providers.has("gmail")
        assert service.providers.has("notion")
        await service.initialize()
        await service.close()

    @pytest.mark.asyncio
    async def test_broken_sink_does_not_fail_operation(self, service):
        connector_id = await service.add_connector(app_input(provider="gmail"))
        with patch.object(service.notifier, "notify", side_effect=RuntimeError("ui gone")) as mock_notify:
            state = await service.update_sync_state(connector_id, {"status": "syncing"})

        mock_notify.assert_called_once()
        assert state.status.value == "syncing"

    @pytest.mark.asyncio
    async def test_delete_failure_notifies(self, service):
        connector_id = await service.add_connector(app_input())
        with patch.object(
            service.persistence.connectors, "delete", new_callable=AsyncMock, side_effect=PersistenceError("ro")
        ):
            with pytest.raises(PersistenceError):
                await service.delete_connector(connector_id)

        assert service.notifier.of_kind(NotificationKind.ERROR)[-1].description == "Failed to delete connector"
        assert service.get_connector(connector_id) is not None


class TestRemoteChanges:
    @pytest.fixture
    def replicated_settings(self, tmp_path):
        return make_settings(tmp_path, "replicated")

    @pytest.mark.asyncio
    async def test_peer_update_is_projected(self, replicated_settings):
        service = build_service(replicated_settings)
        await service.initialize()
        connector_id = await service.add_connector(app_input(name="mine"))
        shared = service.persistence.shared_document

        record = service.get_connector(connector_id).model_dump(mode="json")
        record["name"] = "renamed by peer"
        shared.get_map("connectors").apply_remote(connector_id, record, 1000, "peer")

        assert service.get_connector(connector_id).name == "renamed by peer"
        await service.close()

    @pytest.mark.asyncio
    async def test_peer_insert_and_delete(self, replicated_settings):
        service = build_service(replicated_settings)
        await service.initialize()
        mine = await service.add_connector(app_input(name="mine"))
        await service.update_sync_state(mine, {"cursor": "c"}, silent=True)
        shared = service.persistence.shared_document

        peer_record = service.get_connector(mine).model_dump(mode="json")
        peer_record.update(id="from-peer", name="peer", created_at="2000-01-01T00:00:00+00:00")
        shared.get_map("connectors").apply_remote("from-peer", peer_record, 1000, "peer")
        assert [c.id for c in service.get_connectors()] == [mine, "from-peer"]

        shared.get_map("connectors").apply_remote(mine, None, 2000, "peer")
        assert [c.id for c in service.get_connectors()] == ["from-peer"]
        assert service.get_sync_state(mine) is None
        await service.close()

    @pytest.mark.asyncio
    async def test_no_updates_after_close(self, replicated_settings):
        service = build_service(replicated_settings)
        await service.initialize()
        connector_id = await service.add_connector(app_input(name="mine"))
        shared = service.persistence.shared_document
        await service.close()

        record = service.get_connector(connector_id).model_dump(mode="json")
        record["name"] = "late"
        shared.get_map("connectors").apply_remote(connector_id, record, 1000, "peer")

        assert service.get_connector(connector_id).name == "mine"


class TestPeriodicValidation:
    @pytest.mark.asyncio
    async def test_keeps_running_after_failure(self):
        calls = []

        async def _validate():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("transient")

        service = MagicMock()
        service.validate_connector_tokens = AsyncMock(side_effect=_validate)

        task = asyncio.create_task(run_token_validation(service, 0))
        while len(calls) < 3:
            await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert service.validate_connector_tokens.await_count >= 3
