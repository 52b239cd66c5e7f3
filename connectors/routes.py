"""
Connector API routes — CRUD, sync state, status and token lifecycle.

Route prefix: /api/v1/connectors
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel

from connectors.errors import (
    ConnectorNotFoundError,
    InvalidStatusTransitionError,
    PersistenceError,
)
from connectors.models import (
    ConnectorCategory,
    ConnectorInput,
    ConnectorStatus,
    ConnectorUpdate,
    SyncStatePatch,
)
from connectors.service import ConnectorService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["connectors"])


class StatusChange(BaseModel):
    status: ConnectorStatus
    error_message: Optional[str] = None


def get_connector_service(request: Request) -> ConnectorService:
    return request.app.state.connector_service


def _not_found(connector_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Connector not found: {connector_id}",
    )


def _translate(exc: Exception) -> HTTPException:
    if isinstance(exc, ConnectorNotFoundError):
        return _not_found(exc.connector_id)
    if isinstance(exc, InvalidStatusTransitionError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, PersistenceError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


# ── Routes ─────────────────────────────────────────────────────────────


@router.get("/providers")
async def list_providers(service: ConnectorService = Depends(get_connector_service)) -> list[dict]:
    """List registered app providers and whether they are configured."""
    return service.providers.list_providers()


@router.get("")
async def list_connectors(
    category: Optional[ConnectorCategory] = None,
    status_filter: Optional[ConnectorStatus] = Query(None, alias="status"),
    service: ConnectorService = Depends(get_connector_service),
) -> List[Dict[str, Any]]:
    connectors = service.get_connectors()
    if category is not None:
        connectors = service.get_connectors_by_category(category)
    if status_filter is not None:
        connectors = tuple(c for c in connectors if c.status is status_filter)
    return [c.public_view() for c in connectors]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_connector(
    body: ConnectorInput,
    service: ConnectorService = Depends(get_connector_service),
) -> Dict[str, str]:
    try:
        connector_id = await service.add_connector(body)
    except PersistenceError as exc:
        raise _translate(exc)
    return {"id": connector_id}


@router.post("/refresh")
async def refresh_connectors(service: ConnectorService = Depends(get_connector_service)) -> Dict[str, int]:
    try:
        await service.refresh_connectors()
    except PersistenceError as exc:
        raise _translate(exc)
    return {"connectors": len(service.get_connectors())}


@router.post("/validate-tokens")
async def validate_tokens(service: ConnectorService = Depends(get_connector_service)) -> Dict[str, Any]:
    await service.validate_connector_tokens()
    return {
        "expired": [c.id for c in service.get_app_connectors() if c.status is ConnectorStatus.EXPIRED],
    }


@router.get("/{connector_id}")
async def get_connector(
    connector_id: str,
    service: ConnectorService = Depends(get_connector_service),
) -> Dict[str, Any]:
    connector = service.get_connector(connector_id)
    if connector is None:
        raise _not_found(connector_id)
    return connector.public_view()


@router.patch("/{connector_id}")
async def update_connector(
    connector_id: str,
    body: ConnectorUpdate,
    service: ConnectorService = Depends(get_connector_service),
) -> Dict[str, Any]:
    try:
        connector = await service.update_connector(connector_id, body)
    except (ConnectorNotFoundError, PersistenceError) as exc:
        raise _translate(exc)
    return connector.public_view()


@router.delete("/{connector_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_connector(
    connector_id: str,
    service: ConnectorService = Depends(get_connector_service),
) -> None:
    if service.get_connector(connector_id) is None:
        raise _not_found(connector_id)
    try:
        await service.delete_connector(connector_id)
    except PersistenceError as exc:
        raise _translate(exc)


@router.put("/{connector_id}/status")
async def set_status(
    connector_id: str,
    body: StatusChange,
    service: ConnectorService = Depends(get_connector_service),
) -> Dict[str, Any]:
    try:
        connector = await service.set_connector_status(connector_id, body.status, body.error_message)
    except (ConnectorNotFoundError, InvalidStatusTransitionError, PersistenceError) as exc:
        raise _translate(exc)
    return connector.public_view()


@router.get("/{connector_id}/sync-state")
async def get_sync_state(
    connector_id: str,
    service: ConnectorService = Depends(get_connector_service),
) -> Dict[str, Any]:
    state = service.get_sync_state(connector_id)
    if state is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No sync state for connector {connector_id}",
        )
    return state.model_dump(mode="json")


@router.patch("/{connector_id}/sync-state")
async def update_sync_state(
    connector_id: str,
    body: SyncStatePatch,
    silent: bool = False,
    skip_persist: bool = False,
    service: ConnectorService = Depends(get_connector_service),
) -> Dict[str, Any]:
    if service.get_connector(connector_id) is None:
        raise _not_found(connector_id)
    try:
        state = await service.update_sync_state(
            connector_id, body, silent=silent, skip_persist=skip_persist
        )
    except PersistenceError as exc:
        raise _translate(exc)
    return state.model_dump(mode="json")


@router.post("/{connector_id}/refresh-token")
async def refresh_token(
    connector_id: str,
    service: ConnectorService = Depends(get_connector_service),
) -> Dict[str, Any]:
    if service.get_connector(connector_id) is None:
        raise _not_found(connector_id)
    refreshed = await service.refresh_connector_token(connector_id)
    return {"refreshed": refreshed}
