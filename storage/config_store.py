"""Authoritative in-process copy of redirect rules, metrics and settings.

The store mediates between UI events and the storage substrate:

* rules and settings are read from and written to the preferred area
  (synchronized when available, local otherwise);
* metrics are read from the local area only and never written here, the
  redirect engine owns them;
* change notifications for metrics and settings are applied through
  :meth:`ConfigurationStore.handle_storage_change`, except echoes of this
  store's own settings writes while one is still in flight; rule
  changes from other instances are not reconciled until the next
  :meth:`ConfigurationStore.load_rules`.

Rules are always written back as a whole list, so concurrent instances race
with last-write-wins semantics on the entire collection.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional

from core.event_bus import EventBus
from core.events import StorageChange
from core.models import METRICS_KEY, RULES_KEY, SETTINGS_KEY, Metrics, Rule, Settings
from rules.normalizer import coerce_stored_rule, normalize_metrics, normalize_settings
from rules.validator import (
    HourlyRateResult,
    RuleValidation,
    make_id,
    validate_hourly_rate,
    validate_rule,
)
from storage.areas import StorageArea, StorageBackend

LOGGER = logging.getLogger(__name__)

Listener = Callable[[str], None]

_UNSET: Any = object()


class ConfigurationStore:
    """Load, mutate and persist rules and settings; reconcile external changes."""

    def __init__(
        self,
        backend: StorageBackend,
        bus: Optional[EventBus] = None,
        id_factory: Callable[[], str] = make_id,
    ) -> None:
        self._backend = backend
        self._bus = bus or backend.bus
        self._id_factory = id_factory
        self._rules: List[Rule] = []
        self._metrics = Metrics()
        self._settings = Settings()
        self._listeners: List[Listener] = []
        self._write_locks: Dict[str, asyncio.Lock] = {}
        self._pending_writes: Dict[str, int] = {}
        self._subscribed = False

    # -- lifecycle ---------------------------------------------------------

    async def start(self) -> None:
        """Subscribe to change notifications and load every slice."""

        if not self._subscribed:
            self._bus.subscribe(self.handle_storage_change)
            self._subscribed = True
        await self.load_rules()
        await self.load_metrics()
        await self.load_settings()

    def close(self) -> None:
        if self._subscribed:
            self._bus.unsubscribe(self.handle_storage_change)
            self._subscribed = False

    # -- state -------------------------------------------------------------

    @property
    def rules(self) -> List[Rule]:
        return [replace(rule) for rule in self._rules]

    @property
    def metrics(self) -> Metrics:
        return Metrics(total_redirects=self._metrics.total_redirects, per_rule=dict(self._metrics.per_rule))

    @property
    def settings(self) -> Settings:
        return replace(self._settings)

    def find_rule(self, rule_id: str) -> Optional[Rule]:
        for rule in self._rules:
            if rule.id == rule_id:
                return replace(rule)
        return None

    def add_listener(self, listener: Listener) -> None:
        """Register a callback told which slice changed: rules, metrics or settings."""

        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, slice_name: str) -> None:
        for listener in list(self._listeners):
            listener(slice_name)

    # -- storage helpers ---------------------------------------------------

    async def _read(self, area: StorageArea, key: str) -> Any:
        try:
            result = await area.get([key])
        except Exception as exc:
            LOGGER.error("storage get failed area=%s key=%s: %s", area.name, key, exc)
            return None
        if not isinstance(result, dict):
            return None
        return result.get(key)

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._write_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._write_locks[key] = lock
        return lock

    async def _write(self, area: StorageArea, key: str, payload: Any) -> None:
        # payload is captured by the caller; writes to one key land in call order
        self._pending_writes[key] = self._pending_writes.get(key, 0) + 1
        try:
            async with self._lock_for(key):
                await area.set({key: payload})
        finally:
            self._pending_writes[key] -= 1

    def _is_own_echo(self, change: StorageChange, area: StorageArea, key: str) -> bool:
        return change.writer == area.writer_id and self._pending_writes.get(key, 0) > 0

    # -- rules -------------------------------------------------------------

    async def load_rules(self) -> List[Rule]:
        """Replace in-process rules with what storage holds, without validating."""

        stored = await self._read(self._backend.preferred, RULES_KEY)
        items = stored if isinstance(stored, list) else []
        self._rules = [coerce_stored_rule(item) for item in items]
        LOGGER.info("Loaded %d rule(s) from %s", len(self._rules), self._backend.preferred_area_name)
        self._notify("rules")
        return self.rules

    async def persist_rules(self) -> None:
        """Overwrite the stored rule list with the full in-process list."""

        await self._write(self._backend.preferred, RULES_KEY, [rule.to_dict() for rule in self._rules])

    def _index_of(self, rule_id: str) -> int:
        for index, rule in enumerate(self._rules):
            if rule.id == rule_id:
                return index
        return -1

    async def add_rule(self, source_hostname: object, target_url: object) -> RuleValidation:
        """Validate and append a new enabled rule, then persist the list."""

        draft = {
            "id": self._id_factory(),
            "enabled": True,
            "source_hostname": source_hostname,
            "target_url": target_url,
        }
        validation = validate_rule(draft)
        if not validation.valid:
            return validation

        self._rules.append(replace(validation.normalized))
        self._notify("rules")
        LOGGER.info(
            "Added rule %s: %s -> %s",
            validation.normalized.id,
            validation.normalized.source_hostname,
            validation.normalized.target_url,
        )
        await self.persist_rules()
        return validation

    async def update_rule(
        self,
        rule_id: str,
        *,
        enabled: Any = _UNSET,
        source_hostname: Any = _UNSET,
        target_url: Any = _UNSET,
        allow_persist_on_invalid: bool = False,
    ) -> RuleValidation:
        """Apply an edit to one rule.

        Valid drafts replace the rule with its normalized form. Invalid drafts
        are dropped unless ``allow_persist_on_invalid`` is set (the enabled
        toggle), in which case the trimmed draft is stored as-is.
        """

        index = self._index_of(rule_id)
        current = self._rules[index] if index != -1 else Rule(id=rule_id, enabled=False, source_hostname="", target_url="")
        draft = {
            "id": current.id,
            "enabled": current.enabled if enabled is _UNSET else enabled,
            "source_hostname": current.source_hostname if source_hostname is _UNSET else source_hostname,
            "target_url": current.target_url if target_url is _UNSET else target_url,
        }
        validation = validate_rule(draft)
        if not validation.valid and not allow_persist_on_invalid:
            return validation

        # the rule may have been deleted while the caller was editing it
        index = self._index_of(rule_id)
        if index == -1:
            return validation

        if validation.valid:
            self._rules[index] = replace(validation.normalized)
        else:
            self._rules[index] = Rule(
                id=current.id,
                enabled=bool(draft["enabled"]),
                source_hostname=str(draft["source_hostname"] or "").strip().lower(),
                target_url=str(draft["target_url"] or "").strip(),
            )
        self._notify("rules")
        await self.persist_rules()
        return validation

    async def delete_rule(self, rule_id: str) -> bool:
        """Remove a rule by id and persist; returns whether it existed."""

        before = len(self._rules)
        self._rules = [rule for rule in self._rules if rule.id != rule_id]
        removed = len(self._rules) != before
        if removed:
            LOGGER.info("Deleted rule %s", rule_id)
            self._notify("rules")
        await self.persist_rules()
        return removed

    # -- metrics & settings ------------------------------------------------

    async def load_metrics(self) -> Metrics:
        self._metrics = normalize_metrics(await self._read(self._backend.metrics_area, METRICS_KEY))
        self._notify("metrics")
        return self.metrics

    async def load_settings(self) -> Settings:
        self._settings = normalize_settings(await self._read(self._backend.preferred, SETTINGS_KEY))
        self._notify("settings")
        return self.settings

    async def persist_settings(self) -> None:
        await self._write(self._backend.preferred, SETTINGS_KEY, self._settings.to_dict())

    async def set_hourly_rate(self, raw: object) -> HourlyRateResult:
        """Validate user input and, when valid, store and persist the new rate."""

        result = validate_hourly_rate(raw)
        if not result.valid:
            return result
        self._settings = Settings(hourly_rate=result.value)
        self._notify("settings")
        await self.persist_settings()
        return result

    # -- reconciliation ----------------------------------------------------

    def handle_storage_change(self, change: StorageChange) -> None:
        """Apply a change notification from the storage substrate."""

        if change.area == self._backend.metrics_area.name and change.has(METRICS_KEY):
            self._metrics = normalize_metrics(change.new_value(METRICS_KEY))
            self._notify("metrics")

        preferred = self._backend.preferred
        if change.area == preferred.name and change.has(SETTINGS_KEY):
            if self._is_own_echo(change, preferred, SETTINGS_KEY):
                # in-process settings already hold this or a newer value
                return
            self._settings = normalize_settings(change.new_value(SETTINGS_KEY))
            self._notify("settings")


__all__ = ["ConfigurationStore", "Listener"]
