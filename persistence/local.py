"""
Local durable store — keyed CRUD over the ``stored_records`` table.

All collections share one ``LocalDatabase`` (engine + one-time schema
creation); each ``SQLAlchemyStore`` is a view onto one collection.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from connectors.errors import PersistenceError
from database.models import Base, StoredRecord
from database.session import build_engine, build_session_factory
from persistence.base import PersistenceAdapter, Record

logger = logging.getLogger(__name__)


class LocalDatabase:
    """Owns the engine and guards one-time schema creation."""

    def __init__(self, database_url: str, *, echo: bool = False, engine: AsyncEngine | None = None) -> None:
        self.engine = engine or build_engine(database_url, echo=echo)
        self.session_factory = build_session_factory(self.engine)
        self._initialized = False
        self._init_lock = asyncio.Lock()

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Create tables once; later calls are no-ops."""
        if self._initialized:
            return
        async with self._init_lock:
            if self._initialized:
                return
            try:
                async with self.engine.begin() as conn:
                    await conn.run_sync(Base.metadata.create_all)
            except SQLAlchemyError as exc:
                raise PersistenceError(f"Failed to initialise local store: {exc}") from exc
            self._initialized = True
            logger.info("Local store initialised (%s)", self.engine.url.render_as_string(hide_password=True))

    async def dispose(self) -> None:
        await self.engine.dispose()


class SQLAlchemyStore(PersistenceAdapter):
    """One collection inside the local database."""

    def __init__(self, collection: str, database: LocalDatabase) -> None:
        super().__init__(collection)
        self._db = database

    async def initialize(self) -> None:
        await self._db.initialize()

    def _require_initialized(self) -> None:
        if not self._db.initialized:
            raise PersistenceError(
                f"Local store used before initialize() (collection '{self.collection}')"
            )

    async def get(self, key: str) -> Optional[Record]:
        self._require_initialized()
        try:
            async with self._db.session_factory() as session:
                result = await session.execute(
                    select(StoredRecord.payload).where(
                        StoredRecord.collection == self.collection,
                        StoredRecord.key == key,
                    )
                )
                payload = result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to read {self.collection}/{key}: {exc}") from exc
        return copy.deepcopy(payload) if payload is not None else None

    async def get_all(self) -> List[Record]:
        self._require_initialized()
        try:
            async with self._db.session_factory() as session:
                result = await session.execute(
                    select(StoredRecord.payload)
                    .where(StoredRecord.collection == self.collection)
                    .order_by(StoredRecord.seq)
                )
                payloads = result.scalars().all()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to read {self.collection}: {exc}") from exc
        return [copy.deepcopy(p) for p in payloads]

    async def put(self, record: Record) -> None:
        self._require_initialized()
        key = self.key_of(record)
        payload = copy.deepcopy(record)
        try:
            async with self._db.session_factory() as session:
                result = await session.execute(
                    select(StoredRecord).where(
                        StoredRecord.collection == self.collection,
                        StoredRecord.key == key,
                    )
                )
                existing = result.scalar_one_or_none()
                if existing is not None:
                    existing.payload = payload
                else:
                    session.add(StoredRecord(collection=self.collection, key=key, payload=payload))
                await session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to write {self.collection}/{key}: {exc}") from exc

    async def delete(self, key: str) -> None:
        self._require_initialized()
        try:
            async with self._db.session_factory() as session:
                await session.execute(
                    delete(StoredRecord).where(
                        StoredRecord.collection == self.collection,
                        StoredRecord.key == key,
                    )
                )
                await session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to delete {self.collection}/{key}: {exc}") from exc
