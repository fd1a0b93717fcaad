"""Change-notification events emitted by the storage substrate.

Every write to a storage area, whichever process made it, surfaces as one
:class:`StorageChange` so that subscribers never have to know who wrote.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping


class AreaName(str, Enum):
    """Logical storage areas."""

    SYNC = "sync"
    LOCAL = "local"


@dataclass(slots=True)
class ValueChange:
    """Old and new value of a single key."""

    old_value: Any = None
    new_value: Any = None


@dataclass(slots=True)
class StorageChange:
    """A batch of key changes observed in one storage area."""

    changes: Mapping[str, ValueChange]
    area: str
    writer: str = ""
    detail: Mapping[str, Any] = field(default_factory=dict)

    def has(self, key: str) -> bool:
        return key in self.changes

    def new_value(self, key: str) -> Any:
        change = self.changes.get(key)
        return change.new_value if change is not None else None
