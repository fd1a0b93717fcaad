"""Propagate writes made by other processes into this process's event bus.

SQLite areas publish their own writes immediately. Writes made by another
UI instance or by the redirect engine only become visible here when the
watcher polls ``kv_store`` and republishes them as storage changes.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, DefaultDict, Dict, Optional, Tuple

from core.event_bus import EventBus
from core.events import StorageChange, ValueChange
from storage import sqlite_manager

LOGGER = logging.getLogger(__name__)


@dataclass
class ChangeWatcherSettings:
    """Runtime configuration for :class:`ChangeWatcher`."""

    writer_id: str
    db_path: Optional[str] = None
    poll_interval: float = 2.0
    batch_size: int = 200


def _decode(text: Optional[str]) -> Any:
    if text is None:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        LOGGER.warning("Ignoring undecodable stored value")
        return None


class ChangeWatcher:
    """Poll the shared key-value table and publish foreign writes."""

    def __init__(self, bus: EventBus, settings: ChangeWatcherSettings) -> None:
        self._bus = bus
        self._settings = settings
        self._running = True
        self._last_revision = sqlite_manager.latest_revision(settings.db_path)
        self._known: Dict[Tuple[str, str], Any] = {
            (row["area"], row["key"]): _decode(row["value"])
            for row in sqlite_manager.list_entries(db_path=settings.db_path)
        }
        bus.subscribe(self._remember_own_write)
        LOGGER.info(
            "Change watcher writer=%s starting after revision %s",
            settings.writer_id,
            self._last_revision,
        )

    def _remember_own_write(self, change: StorageChange) -> None:
        # keeps old_value of later foreign changes current
        if change.writer != self._settings.writer_id:
            return
        for key, value_change in change.changes.items():
            self._known[(change.area, key)] = value_change.new_value

    @property
    def last_revision(self) -> int:
        return self._last_revision

    async def poll_once(self) -> int:
        """Publish changes written by other processes. Returns keys published."""

        rows = await asyncio.to_thread(
            sqlite_manager.fetch_changes_since,
            self._last_revision,
            self._settings.writer_id,
            self._settings.batch_size,
            self._settings.db_path,
        )
        by_area: DefaultDict[str, Dict[str, ValueChange]] = defaultdict(dict)
        writers: Dict[str, str] = {}
        for row in rows:
            area, key = row["area"], row["key"]
            new_value = _decode(row["value"])
            by_area[area][key] = ValueChange(old_value=self._known.get((area, key)), new_value=new_value)
            self._known[(area, key)] = new_value
            writers[area] = row.get("writer") or ""
            self._last_revision = max(self._last_revision, int(row["revision"]))

        published = 0
        for area, changes in by_area.items():
            LOGGER.info("Foreign change in %s: %s", area, ", ".join(sorted(changes)))
            self._bus.publish(StorageChange(changes=changes, area=area, writer=writers.get(area, "")))
            published += len(changes)
        return published

    async def run(self) -> None:
        """Run the polling loop until :meth:`stop` is called."""

        backoff = 1.0
        while self._running:
            try:
                await self.poll_once()
                backoff = 1.0
            except asyncio.CancelledError:  # pragma: no cover - runtime cancellation
                raise
            except Exception as exc:  # pragma: no cover - protective fallback
                LOGGER.exception("Change watcher error: %s", exc)
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, 30.0)
            else:
                await asyncio.sleep(self._settings.poll_interval)

    def stop(self) -> None:
        self._running = False
        self._bus.unsubscribe(self._remember_own_write)
