"""
SQLAlchemy ORM models for the local durable store.

Every collection (connectors, connector sync states, encryption metadata)
shares one keyed table; payloads are the JSON form of the domain models.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class StoredRecord(Base):
    __tablename__ = "stored_records"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    collection = Column(String(64), nullable=False)
    key = Column(String(128), nullable=False)
    payload = Column(JSON, nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        UniqueConstraint("collection", "key", name="uq_stored_records_collection_key"),
        Index("ix_stored_records_collection", "collection"),
    )
