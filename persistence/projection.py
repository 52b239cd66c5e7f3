"""
Pure projection of raw store contents into the in-memory read model.

``project()`` depends only on the records it is handed, so it can be run on
every observed change (including ones this process made itself).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Tuple

from pydantic import ValidationError

from connectors.models import Connector, ConnectorSyncState
from persistence.base import Record

logger = logging.getLogger(__name__)


def sort_by_creation_date(connectors: Iterable[Connector]) -> Tuple[Connector, ...]:
    """Newest first; equal timestamps keep their incoming order."""
    return tuple(sorted(connectors, key=lambda c: c.created_at, reverse=True))


def index_sync_states(states: Iterable[ConnectorSyncState]) -> Mapping[str, ConnectorSyncState]:
    return MappingProxyType({s.connector_id: s for s in states})


@dataclass(frozen=True)
class Projection:
    connectors: Tuple[Connector, ...] = ()
    sync_states: Mapping[str, ConnectorSyncState] = field(
        default_factory=lambda: MappingProxyType({})
    )


def _parse(model, record: Record) -> Optional[object]:
    try:
        return model.model_validate(record)
    except ValidationError as exc:
        logger.warning(
            "Skipping malformed %s record %s: %s",
            model.__name__,
            record.get("id"),
            exc.error_count(),
        )
        return None


def project(
    connector_records: Iterable[Record],
    sync_state_records: Iterable[Record],
) -> Projection:
    """
    Build the read model from full collection snapshots.

    Malformed records are skipped.  Sync states whose connector is absent
    are dropped, which cleans up after an interrupted cascade delete.
    """
    connectors = [c for c in (_parse(Connector, r) for r in connector_records) if c is not None]
    known = {c.id for c in connectors}
    states = [
        s
        for s in (_parse(ConnectorSyncState, r) for r in sync_state_records)
        if s is not None and s.connector_id in known
    ]
    return Projection(
        connectors=sort_by_creation_date(connectors),
        sync_states=index_sync_states(states),
    )
