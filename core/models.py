"""Domain models shared by the validator, the configuration store and the UI.

The shapes mirror what is persisted in the storage substrate so that a value
read back from storage maps one-to-one onto these dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

RULES_KEY = "redirect_rules"
METRICS_KEY = "redirect_metrics"
SETTINGS_KEY = "redirect_settings"


@dataclass(slots=True)
class Rule:
    """Redirect rule: requests for ``source_hostname`` go to ``target_url``."""

    id: str
    enabled: bool
    source_hostname: str
    target_url: str

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "enabled": self.enabled,
            "source_hostname": self.source_hostname,
            "target_url": self.target_url,
        }


@dataclass(slots=True)
class Metrics:
    """Redirect counters written by the redirect engine."""

    total_redirects: float = 0
    per_rule: Dict[str, float] = field(default_factory=dict)

    def count_for(self, rule_id: str) -> float:
        return self.per_rule.get(rule_id) or 0

    def to_dict(self) -> Dict[str, object]:
        return {"total_redirects": self.total_redirects, "per_rule": dict(self.per_rule)}


@dataclass(slots=True)
class Settings:
    """User settings; ``hourly_rate`` of ``None`` means unset."""

    hourly_rate: Optional[float] = None

    def to_dict(self) -> Dict[str, object]:
        return {"hourly_rate": self.hourly_rate}
