# dosewatch/core/ttl_store.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Generic, Optional, Protocol, TypeVar

from dosewatch.core.reminder_state import Clock

V = TypeVar("V")


class KeyedTTLStore(Protocol[V]):
    """Short-lived keyed values. Swap the in-memory one for a shared cache when running several instances."""

    def put(self, key: str, value: V, ttl: timedelta) -> None: ...

    def get(self, key: str) -> Optional[V]: ...

    def delete(self, key: str) -> bool: ...

    def sweep_expired(self) -> int: ...


@dataclass
class _Entry(Generic[V]):
    value: V
    expires_at: datetime


class InMemoryTTLStore(Generic[V]):
    """Process-lifetime store; lost on restart."""

    def __init__(self, clock: Clock):
        self.clock = clock
        self._data: Dict[str, _Entry[V]] = {}

    def put(self, key: str, value: V, ttl: timedelta) -> None:
        self._data[key] = _Entry(value, self.clock.utcnow() + ttl)

    def get(self, key: str) -> Optional[V]:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self.clock.utcnow():
            del self._data[key]
            return None
        return entry.value

    def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def sweep_expired(self) -> int:
        now = self.clock.utcnow()
        dead = [k for k, e in self._data.items() if e.expires_at <= now]
        for k in dead:
            del self._data[k]
        return len(dead)

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: Any) -> bool:
        return self.get(key) is not None
