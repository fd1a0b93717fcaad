"""Storage substrate: key-value areas with change notifications.

Two logical areas exist. The synchronized area (preferred) holds rules and
settings; the local area holds metrics and stands in for the synchronized
one when it is unavailable. Every successful write publishes a
:class:`core.events.StorageChange` on the shared bus, including to the
instance that made it.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import time
import uuid
from typing import Any, Dict, Iterable, Optional, Protocol

from core.event_bus import EventBus
from core.events import AreaName, StorageChange, ValueChange
from rules.config_loader import AppConfig, StorageBackendKind
from storage import sqlite_manager
from storage.migrate import initialize_database

LOGGER = logging.getLogger(__name__)


class StorageError(Exception):
    """Base class for storage substrate failures."""


class StorageReadError(StorageError):
    """A ``get`` could not be served."""


class StorageWriteError(StorageError):
    """A ``set`` was rejected; the message is shown to the user."""


class StorageArea(Protocol):
    """Asynchronous key-value area."""

    name: str
    writer_id: str

    async def get(self, keys: Iterable[str]) -> Dict[str, Any]:
        """Return the stored values for the keys that exist."""

    async def set(self, payload: Dict[str, Any]) -> None:
        """Store every key of ``payload`` or raise :class:`StorageWriteError`."""


def _encode(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, sort_keys=True)


def _decode(text: Optional[str]) -> Any:
    if text is None:
        return None
    return json.loads(text)


class MemoryStorageArea:
    """In-process area; values are copied through JSON on every write."""

    def __init__(self, name: str, bus: EventBus, writer_id: str = "memory") -> None:
        self.name = name
        self._bus = bus
        self._writer_id = writer_id
        self._data: Dict[str, str] = {}
        self.fail_reads: Optional[str] = None
        self.fail_writes: Optional[str] = None

    @property
    def writer_id(self) -> str:
        return self._writer_id

    async def get(self, keys: Iterable[str]) -> Dict[str, Any]:
        if self.fail_reads:
            raise StorageReadError(self.fail_reads)
        return {key: _decode(self._data[key]) for key in keys if key in self._data}

    async def set(self, payload: Dict[str, Any]) -> None:
        if self.fail_writes:
            raise StorageWriteError(self.fail_writes)
        try:
            encoded = {key: _encode(value) for key, value in payload.items()}
        except (TypeError, ValueError) as exc:
            raise StorageWriteError(f"value is not serializable: {exc}") from exc
        changes: Dict[str, ValueChange] = {}
        for key, text in encoded.items():
            changes[key] = ValueChange(old_value=_decode(self._data.get(key)), new_value=_decode(text))
            self._data[key] = text
        self._bus.publish(StorageChange(changes=changes, area=self.name, writer=self._writer_id))

    def snapshot(self) -> Dict[str, Any]:
        """Decoded copy of everything stored, for tests and debugging."""

        return {key: _decode(text) for key, text in self._data.items()}

    def put_raw(self, key: str, value: Any) -> None:
        """Seed a value without publishing a change."""

        self._data[key] = _encode(value)


class SqliteStorageArea:
    """Area persisted in the ``kv_store`` table shared by all processes."""

    def __init__(self, name: str, bus: EventBus, db_path: str, writer_id: str) -> None:
        self.name = name
        self._bus = bus
        self._db_path = db_path
        self._writer_id = writer_id

    @property
    def writer_id(self) -> str:
        return self._writer_id

    async def get(self, keys: Iterable[str]) -> Dict[str, Any]:
        keys = list(keys)
        try:
            raw = await asyncio.to_thread(sqlite_manager.get_values, self.name, keys, self._db_path)
            return {key: _decode(text) for key, text in raw.items()}
        except (sqlite3.Error, ValueError) as exc:
            raise StorageReadError(f"{self.name} get failed: {exc}") from exc

    async def set(self, payload: Dict[str, Any]) -> None:
        try:
            encoded = {key: _encode(value) for key, value in payload.items()}
        except (TypeError, ValueError) as exc:
            raise StorageWriteError(f"value is not serializable: {exc}") from exc
        try:
            written = await asyncio.to_thread(
                sqlite_manager.set_values,
                self.name,
                encoded,
                self._writer_id,
                int(time.time()),
                self._db_path,
            )
        except sqlite3.Error as exc:
            raise StorageWriteError(str(exc)) from exc
        changes = {
            row["key"]: ValueChange(old_value=_decode(row["old_value"]), new_value=_decode(row["value"]))
            for row in written
        }
        self._bus.publish(
            StorageChange(
                changes=changes,
                area=self.name,
                writer=self._writer_id,
                detail={"revisions": [row["revision"] for row in written]},
            )
        )


class StorageBackend:
    """The pair of areas one process talks to, plus their shared bus."""

    def __init__(self, local: StorageArea, bus: EventBus, sync: Optional[StorageArea] = None) -> None:
        self.local = local
        self.sync = sync
        self.bus = bus

    @property
    def preferred(self) -> StorageArea:
        """Area for rules and settings: sync when available, else local."""

        return self.sync if self.sync is not None else self.local

    @property
    def preferred_area_name(self) -> str:
        return self.preferred.name

    @property
    def metrics_area(self) -> StorageArea:
        return self.local


def memory_backend(bus: Optional[EventBus] = None, sync_enabled: bool = True) -> StorageBackend:
    bus = bus or EventBus()
    local = MemoryStorageArea(AreaName.LOCAL.value, bus)
    sync = MemoryStorageArea(AreaName.SYNC.value, bus) if sync_enabled else None
    return StorageBackend(local=local, sync=sync, bus=bus)


def sqlite_backend(
    db_path: str,
    bus: Optional[EventBus] = None,
    sync_enabled: bool = True,
    writer_id: Optional[str] = None,
) -> StorageBackend:
    bus = bus or EventBus()
    writer_id = writer_id or uuid.uuid4().hex
    initialize_database(db_path)
    local = SqliteStorageArea(AreaName.LOCAL.value, bus, db_path, writer_id)
    sync = SqliteStorageArea(AreaName.SYNC.value, bus, db_path, writer_id) if sync_enabled else None
    return StorageBackend(local=local, sync=sync, bus=bus)


def build_backend(config: AppConfig, bus: Optional[EventBus] = None, writer_id: Optional[str] = None) -> StorageBackend:
    """Build the backend described by ``config.storage``."""

    storage = config.storage
    if storage.backend is StorageBackendKind.MEMORY:
        LOGGER.info("Using in-memory storage (sync=%s)", storage.sync_enabled)
        return memory_backend(bus=bus, sync_enabled=storage.sync_enabled)
    LOGGER.info("Using SQLite storage at %s (sync=%s)", storage.resolved_db_path, storage.sync_enabled)
    return sqlite_backend(
        storage.resolved_db_path,
        bus=bus,
        sync_enabled=storage.sync_enabled,
        writer_id=writer_id,
    )


__all__ = [
    "MemoryStorageArea",
    "SqliteStorageArea",
    "StorageArea",
    "StorageBackend",
    "StorageError",
    "StorageReadError",
    "StorageWriteError",
    "build_backend",
    "memory_backend",
    "sqlite_backend",
]
