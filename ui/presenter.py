"""Presentation adapter between the options UI and the configuration store.

Widgets call these handlers with raw field values and render whatever comes
back; none of the handlers raise for bad input or failed writes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from core.models import Rule
from metrics.derived import MetricsSummary, summarize
from rules.validator import RuleValidation, validate_rule
from storage.areas import StorageWriteError
from storage.config_store import ConfigurationStore

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class FormMessage:
    text: str = ""
    kind: Optional[str] = None  # "success" | "error"


@dataclass(slots=True)
class RuleRow:
    """One table row: the stored rule plus its inline errors."""

    rule: Rule
    redirect_count: float = 0
    source_error: str = ""
    target_error: str = ""


def _errors(validation: RuleValidation) -> tuple[str, str]:
    source = validation.source_error.message if validation.source_error else ""
    target = validation.target_error.message if validation.target_error else ""
    return source, target


class OptionsPresenter:
    """Route UI events to the store and shape its state for rendering."""

    def __init__(self, store: ConfigurationStore) -> None:
        self._store = store
        self.form_message = FormMessage()
        self.row_errors: dict[str, tuple[str, str]] = {}

    def _error(self, prefix: str, exc: StorageWriteError) -> FormMessage:
        LOGGER.warning("%s: %s", prefix, exc)
        self.form_message = FormMessage(f"{prefix}: {exc}", "error")
        return self.form_message

    async def submit_add_rule(self, source_hostname: str, target_url: str) -> FormMessage:
        try:
            validation = await self._store.add_rule(source_hostname, target_url)
        except StorageWriteError as exc:
            return self._error("Failed to save rule", exc)
        if not validation.valid:
            error = validation.first_error
            self.form_message = FormMessage(error.message if error else "Invalid rule.", "error")
        else:
            self.form_message = FormMessage("Rule added.", "success")
        return self.form_message

    async def edit_rule(
        self,
        rule_id: str,
        *,
        enabled: bool,
        source_hostname: str,
        target_url: str,
        toggle: bool = False,
    ) -> RuleValidation:
        """Handle an edit to any field of a row; ``toggle`` marks the enabled checkbox."""

        try:
            validation = await self._store.update_rule(
                rule_id,
                enabled=enabled,
                source_hostname=source_hostname,
                target_url=target_url,
                allow_persist_on_invalid=toggle,
            )
        except StorageWriteError as exc:
            self._error("Failed to save rules", exc)
            return validate_rule(
                {"id": rule_id, "enabled": enabled, "source_hostname": source_hostname, "target_url": target_url}
            )
        self.row_errors[rule_id] = _errors(validation)
        if validation.valid or toggle:
            self.form_message = FormMessage()
        return validation

    async def delete_rule(self, rule_id: str) -> FormMessage:
        try:
            await self._store.delete_rule(rule_id)
        except StorageWriteError as exc:
            return self._error("Failed to delete rule", exc)
        self.row_errors.pop(rule_id, None)
        self.form_message = FormMessage()
        return self.form_message

    async def input_hourly_rate(self, text: str) -> str:
        """Returns the inline error for the rate field, empty when accepted."""

        try:
            result = await self._store.set_hourly_rate(text)
        except StorageWriteError as exc:
            self._error("Failed to save hourly rate", exc)
            return ""
        return result.error.message if result.error else ""

    def rows(self) -> List[RuleRow]:
        metrics = self._store.metrics
        rows: List[RuleRow] = []
        for rule in self._store.rules:
            if rule.id in self.row_errors:
                source_error, target_error = self.row_errors[rule.id]
            else:
                source_error, target_error = _errors(validate_rule(rule))
            rows.append(
                RuleRow(
                    rule=rule,
                    redirect_count=metrics.count_for(rule.id),
                    source_error=source_error,
                    target_error=target_error,
                )
            )
        return rows

    def summary(self) -> MetricsSummary:
        return summarize(self._store.metrics, self._store.settings)

    def hourly_rate_text(self) -> str:
        rate = self._store.settings.hourly_rate
        return f"{rate:.2f}" if rate is not None else ""


__all__ = ["FormMessage", "OptionsPresenter", "RuleRow"]
