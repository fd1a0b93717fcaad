"""Defensive coercion of stored payloads into canonical shapes.

Storage is shared with other processes and older releases, so anything read
back may be missing, partial or of the wrong type. These helpers never fail.
"""

from __future__ import annotations

import math
from typing import Any, Dict, Mapping, Union

from core.models import Metrics, Rule, Settings
from rules.validator import make_id


def _is_finite_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def _counts(raw: Any) -> Dict[str, Union[int, float]]:
    if not isinstance(raw, Mapping):
        return {}
    return {str(key): value for key, value in raw.items() if _is_finite_number(value)}


def normalize_metrics(raw: Any) -> Metrics:
    """Return well-formed metrics, falling back to zero values field by field."""

    if not isinstance(raw, Mapping):
        return Metrics()
    total = raw.get("total_redirects")
    per_rule = raw.get("per_rule")
    return Metrics(
        total_redirects=total if _is_finite_number(total) else 0,
        per_rule=_counts(per_rule),
    )


def normalize_settings(raw: Any) -> Settings:
    """Return settings with a usable ``hourly_rate`` or ``None``.

    Stored rates are passed through unrounded; rounding happens only when the
    user types a value.
    """

    if not isinstance(raw, Mapping):
        return Settings()
    rate = raw.get("hourly_rate")
    if not _is_finite_number(rate) or rate < 0:
        return Settings()
    return Settings(hourly_rate=float(rate))


def coerce_stored_rule(item: Any) -> Rule:
    """Map one stored rule without validating it.

    Invalid rules survive the load untouched so the UI can flag them instead
    of silently dropping or fixing them.
    """

    data: Mapping[str, Any] = item if isinstance(item, Mapping) else {}
    return Rule(
        id=str(data.get("id") or make_id()),
        enabled=bool(data.get("enabled")),
        source_hostname=str(data.get("source_hostname") or ""),
        target_url=str(data.get("target_url") or ""),
    )


__all__ = ["coerce_stored_rule", "normalize_metrics", "normalize_settings"]
