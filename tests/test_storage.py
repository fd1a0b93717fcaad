from __future__ import annotations

import asyncio
import sqlite3
import sys
from pathlib import Path
from typing import List

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from core.event_bus import EventBus
from core.events import StorageChange
from core.models import METRICS_KEY, RULES_KEY, SETTINGS_KEY
from storage import sqlite_manager
from storage.areas import StorageReadError, StorageWriteError, memory_backend, sqlite_backend
from storage.change_watcher import ChangeWatcher, ChangeWatcherSettings
from storage.config_store import ConfigurationStore
from storage.migrate import initialize_database


@pytest.fixture()
def temp_db(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> str:
    db_path = tmp_path / "test.db"
    monkeypatch.setenv("REDIRECT_DB_PATH", str(db_path))
    initialize_database(str(db_path))
    return str(db_path)


def test_kv_set_and_get(temp_db: str) -> None:
    written = sqlite_manager.set_values("sync", {"a": "1", "b": "2"}, "w1", 100)
    assert [row["revision"] for row in written] == [1, 2]
    assert written[0]["old_value"] is None

    written = sqlite_manager.set_values("sync", {"a": "3"}, "w2", 200)
    assert written[0]["old_value"] == "1"
    assert written[0]["revision"] == 3

    assert sqlite_manager.get_values("sync", ["a", "b", "missing"]) == {"a": "3", "b": "2"}
    assert sqlite_manager.get_values("local", ["a"]) == {}
    assert sqlite_manager.latest_revision() == 3


def test_fetch_changes_since_excludes_writer(temp_db: str) -> None:
    sqlite_manager.set_values("sync", {"a": "1"}, "me", 1)
    sqlite_manager.set_values("local", {"b": "2"}, "other", 2)
    rows = sqlite_manager.fetch_changes_since(0, exclude_writer="me")
    assert [(row["area"], row["key"]) for row in rows] == [("local", "b")]
    assert sqlite_manager.fetch_changes_since(2) == []


def test_sqlite_area_round_trip_and_echo(temp_db: str) -> None:
    async def _run() -> None:
        bus = EventBus()
        seen: List[StorageChange] = []
        bus.subscribe(seen.append)
        backend = sqlite_backend(temp_db, bus=bus, writer_id="me")

        await backend.preferred.set({RULES_KEY: [{"id": "r1"}]})
        assert await backend.preferred.get([RULES_KEY, SETTINGS_KEY]) == {RULES_KEY: [{"id": "r1"}]}
        assert await backend.local.get([RULES_KEY]) == {}

        assert len(seen) == 1
        assert seen[0].area == "sync"
        assert seen[0].writer == "me"
        assert seen[0].changes[RULES_KEY].old_value is None
        assert seen[0].new_value(RULES_KEY) == [{"id": "r1"}]

    asyncio.run(_run())


def test_sqlite_area_errors(tmp_path: Path) -> None:
    async def _run() -> None:
        backend = sqlite_backend(str(tmp_path / "ok.db"), writer_id="me")
        with pytest.raises(StorageWriteError):
            await backend.preferred.set({RULES_KEY: {1, 2}})

        with sqlite3.connect(str(tmp_path / "ok.db")) as conn:
            conn.execute("DROP TABLE kv_store")
        with pytest.raises(StorageReadError):
            await backend.preferred.get([RULES_KEY])
        with pytest.raises(StorageWriteError):
            await backend.preferred.set({RULES_KEY: []})

    asyncio.run(_run())


def test_memory_backend_without_sync_prefers_local() -> None:
    backend = memory_backend(sync_enabled=False)
    assert backend.sync is None
    assert backend.preferred is backend.local
    assert backend.preferred_area_name == "local"
    assert backend.metrics_area is backend.local


def test_event_bus_subscribe_and_unsubscribe() -> None:
    bus = EventBus()
    seen: List[StorageChange] = []
    bus.subscribe(seen.append)
    change = StorageChange(changes={}, area="local")
    bus.publish(change)
    bus.unsubscribe(seen.append)
    bus.unsubscribe(seen.append)
    bus.publish(change)
    assert seen == [change]
    assert tuple(bus.subscribers()) == ()


def test_watcher_publishes_foreign_writes_only(temp_db: str) -> None:
    async def _run() -> None:
        engine = sqlite_backend(temp_db, writer_id="engine")
        await engine.local.set({METRICS_KEY: {"total_redirects": 1, "per_rule": {}}})

        bus = EventBus()
        ui = sqlite_backend(temp_db, bus=bus, writer_id="ui")
        watcher = ChangeWatcher(bus, ChangeWatcherSettings(writer_id="ui", db_path=temp_db))
        seen: List[StorageChange] = []
        bus.subscribe(seen.append)

        assert await watcher.poll_once() == 0

        await ui.preferred.set({SETTINGS_KEY: {"hourly_rate": 20}})
        assert len(seen) == 1
        assert await watcher.poll_once() == 0

        await engine.local.set({METRICS_KEY: {"total_redirects": 2, "per_rule": {}}})
        assert await watcher.poll_once() == 1
        change = seen[-1]
        assert change.area == "local"
        assert change.writer == "engine"
        assert change.changes[METRICS_KEY].old_value == {"total_redirects": 1, "per_rule": {}}
        assert change.new_value(METRICS_KEY)["total_redirects"] == 2
        assert await watcher.poll_once() == 0

    asyncio.run(_run())


def test_watcher_old_value_follows_own_writes(temp_db: str) -> None:
    async def _run() -> None:
        bus = EventBus()
        ui = sqlite_backend(temp_db, bus=bus, writer_id="ui")
        watcher = ChangeWatcher(bus, ChangeWatcherSettings(writer_id="ui", db_path=temp_db))
        seen: List[StorageChange] = []
        bus.subscribe(seen.append)

        await ui.preferred.set({SETTINGS_KEY: {"hourly_rate": 20}})
        other_tab = sqlite_backend(temp_db, writer_id="tab-2")
        await other_tab.preferred.set({SETTINGS_KEY: {"hourly_rate": 30}})

        assert await watcher.poll_once() == 1
        assert seen[-1].changes[SETTINGS_KEY].old_value == {"hourly_rate": 20}
        assert seen[-1].new_value(SETTINGS_KEY) == {"hourly_rate": 30}

        watcher.stop()
        assert watcher._remember_own_write not in bus.subscribers()

    asyncio.run(_run())


def test_store_reconciles_engine_metrics_through_watcher(temp_db: str) -> None:
    async def _run() -> None:
        bus = EventBus()
        store = ConfigurationStore(sqlite_backend(temp_db, bus=bus, writer_id="ui"))
        await store.start()
        watcher = ChangeWatcher(bus, ChangeWatcherSettings(writer_id="ui", db_path=temp_db))

        other_tab = ConfigurationStore(sqlite_backend(temp_db, writer_id="tab-2"))
        await other_tab.start()
        await other_tab.set_hourly_rate("30")
        await other_tab.add_rule("a.example.com", "https://b.example.com/")

        engine = sqlite_backend(temp_db, writer_id="engine")
        await engine.local.set({METRICS_KEY: {"total_redirects": 8, "per_rule": {}}})

        assert store.settings.hourly_rate is None
        await watcher.poll_once()
        assert store.settings.hourly_rate == 30.0
        assert store.metrics.total_redirects == 8
        assert store.rules == []

        await store.load_rules()
        assert len(store.rules) == 1

    asyncio.run(_run())
