"""
Replicated shared-map store.

Writes go straight into a last-write-wins ``SharedMap``; the replication
transport (out of scope here) delivers peer writes through
``apply_remote``.  Every change, local or remote, is reported to map
observers, and the store forwards those to its subscribers.
"""

from __future__ import annotations

import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple

from persistence.base import ChangeCallback, PersistenceAdapter, Record, Unsubscribe

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MapChange:
    keys: FrozenSet[str]
    origin: str
    local: bool


MapObserver = Callable[[MapChange], None]


class SharedMap(ABC):
    """Read / write / observe contract of a replicated key-value map."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    def values(self) -> List[Any]:
        ...

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def observe(self, observer: MapObserver) -> Unsubscribe:
        ...


@dataclass
class _Entry:
    value: Any
    clock: int
    origin: str

    @property
    def deleted(self) -> bool:
        return self.value is None

    def stamp(self) -> Tuple[int, str]:
        return (self.clock, self.origin)


@dataclass
class InMemorySharedMap(SharedMap):
    """
    In-process last-write-wins map.

    Conflicts are settled by ``(lamport clock, origin)``; deletes are kept as
    tombstones so a late, older write cannot resurrect a deleted key.
    Iteration follows first-insertion order of each key.
    """

    replica_id: str = "local"
    _entries: Dict[str, _Entry] = field(default_factory=dict)
    _observers: List[MapObserver] = field(default_factory=list)
    _clock: int = 0

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None or entry.deleted:
            return None
        return copy.deepcopy(entry.value)

    def values(self) -> List[Any]:
        return [copy.deepcopy(e.value) for e in self._entries.values() if not e.deleted]

    def set(self, key: str, value: Any) -> None:
        if value is None:
            raise ValueError("None is reserved for deletions")
        self._write_local(key, copy.deepcopy(value))

    def delete(self, key: str) -> None:
        if key in self._entries and not self._entries[key].deleted:
            self._write_local(key, None)

    def apply_remote(self, key: str, value: Any, clock: int, origin: str) -> bool:
        """Merge a peer write.  Returns False when it lost to a newer local entry."""
        self._clock = max(self._clock, clock)
        incoming = _Entry(copy.deepcopy(value), clock, origin)
        current = self._entries.get(key)
        if current is not None and current.stamp() >= incoming.stamp():
            return False
        self._entries[key] = incoming
        self._emit(MapChange(frozenset({key}), origin, local=False))
        return True

    def entry_clock(self, key: str) -> Optional[int]:
        entry = self._entries.get(key)
        return entry.clock if entry is not None else None

    def observe(self, observer: MapObserver) -> Unsubscribe:
        self._observers.append(observer)

        def _unobserve() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return _unobserve

    def _write_local(self, key: str, value: Any) -> None:
        self._clock += 1
        self._entries[key] = _Entry(value, self._clock, self.replica_id)
        self._emit(MapChange(frozenset({key}), self.replica_id, local=True))

    def _emit(self, change: MapChange) -> None:
        for observer in list(self._observers):
            try:
                observer(change)
            except Exception:
                logger.exception("Shared map observer failed")


class SharedDocument:
    """Named shared maps that replicate together (one per collection)."""

    def __init__(self, replica_id: str = "local") -> None:
        self.replica_id = replica_id
        self._maps: Dict[str, InMemorySharedMap] = {}

    def get_map(self, name: str) -> InMemorySharedMap:
        if name not in self._maps:
            self._maps[name] = InMemorySharedMap(replica_id=self.replica_id)
        return self._maps[name]


class ReplicatedMapStore(PersistenceAdapter):
    """PersistenceAdapter over one ``SharedMap``."""

    def __init__(self, collection: str, shared_map: SharedMap) -> None:
        super().__init__(collection)
        self._map = shared_map

    async def get(self, key: str) -> Optional[Record]:
        return self._map.get(key)

    async def get_all(self) -> List[Record]:
        return self._map.values()

    async def put(self, record: Record) -> None:
        self._map.set(self.key_of(record), record)

    async def delete(self, key: str) -> None:
        self._map.delete(key)

    def subscribe(self, callback: ChangeCallback) -> Unsubscribe:
        def _on_change(change: MapChange) -> None:
            logger.debug(
                "%s changed (%s, keys=%d)",
                self.collection,
                "local" if change.local else f"remote:{change.origin}",
                len(change.keys),
            )
            callback(self._map.values())

        return self._map.observe(_on_change)
