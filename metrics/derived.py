"""Turn raw redirect counts into time and money saved estimates."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

from core.models import Metrics, Settings

MINUTES_SAVED_PER_REDIRECT = 17.5

_MINUTES_PER_HOUR = 60
_MINUTES_PER_DAY = 1440


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def minutes_saved(total_redirects: float) -> float:
    return total_redirects * MINUTES_SAVED_PER_REDIRECT


def format_duration(minutes: float) -> str:
    """Render minutes as ``12.5m``, ``1h 10m`` or ``2d 3h``."""

    if minutes < _MINUTES_PER_HOUR:
        return f"{minutes:.1f}m"

    if minutes < _MINUTES_PER_DAY:
        hours = int(minutes // _MINUTES_PER_HOUR)
        rest = _round_half_up(minutes % _MINUTES_PER_HOUR)
        if rest == _MINUTES_PER_HOUR:
            hours, rest = hours + 1, 0
        if hours == 24:
            return "1d"
        return f"{hours}h {rest}m" if rest > 0 else f"{hours}h"

    days = int(minutes // _MINUTES_PER_DAY)
    hours = _round_half_up((minutes % _MINUTES_PER_DAY) / _MINUTES_PER_HOUR)
    if hours == 24:
        days, hours = days + 1, 0
    return f"{days}d {hours}h" if hours > 0 else f"{days}d"


def money_saved(minutes: float, hourly_rate: Optional[float]) -> float:
    if hourly_rate is None or not math.isfinite(hourly_rate):
        return 0.0
    return minutes * (hourly_rate / _MINUTES_PER_HOUR)


def format_currency(value: float) -> str:
    return f"${value:,.2f}"


def format_money_compact(value: float) -> str:
    """``$1.2k`` from one thousand upwards, plain currency below."""

    if value >= 1000:
        return f"${value / 1000:.1f}k"
    return format_currency(value)


@dataclass(slots=True)
class MetricsSummary:
    """Numbers and labels shown in the metrics panel."""

    total_redirects: float
    minutes_saved: float
    time_saved_label: str
    money_saved: float
    money_saved_label: str


def summarize(metrics: Metrics, settings: Settings) -> MetricsSummary:
    minutes = minutes_saved(metrics.total_redirects)
    money = money_saved(minutes, settings.hourly_rate)
    return MetricsSummary(
        total_redirects=metrics.total_redirects,
        minutes_saved=minutes,
        time_saved_label=format_duration(minutes),
        money_saved=money,
        money_saved_label=format_money_compact(money) if settings.hourly_rate is not None else "$0.00",
    )


__all__ = [
    "MINUTES_SAVED_PER_REDIRECT",
    "MetricsSummary",
    "format_currency",
    "format_duration",
    "format_money_compact",
    "minutes_saved",
    "money_saved",
    "summarize",
]
