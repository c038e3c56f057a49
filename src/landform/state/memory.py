from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from landform.core.errors import ConcurrencyError
from landform.model import ResourceKey
from landform.state.base import check_serial
from landform.state.locks import KeyedLock
from landform.state.models import Intent, StateRecord, StateSnapshot


class InMemoryStateStore:
    """State store kept in process memory, for tests and embedding."""

    def __init__(self, records: list[StateRecord] | None = None) -> None:
        self._records: dict[ResourceKey, StateRecord] = {r.key: r for r in records or []}
        self._intents: dict[ResourceKey, Intent] = {}
        self._corrupt: dict[ResourceKey, str] = {}
        self._leases: dict[ResourceKey, str] = {}
        self._keys = KeyedLock()

    def mark_corrupt(self, key: ResourceKey, reason: str) -> None:
        """Simulate an unreadable record."""
        self._records.pop(key, None)
        self._corrupt[key] = reason

    async def load(self) -> StateSnapshot:
        return StateSnapshot(
            records={k: r.model_copy(deep=True) for k, r in self._records.items()},
            corrupt=dict(self._corrupt),
            intents={k: i.model_copy() for k, i in self._intents.items()},
        )

    async def get(self, key: ResourceKey) -> StateRecord | None:
        record = self._records.get(key)
        return record.model_copy(deep=True) if record else None

    async def commit(self, record: StateRecord, *, expected_serial: int | None) -> StateRecord:
        async with self._keys.hold(record.key):
            check_serial(record.key, self._records.get(record.key), expected_serial)
            stored = record.model_copy(deep=True, update={"serial": (expected_serial or 0) + 1})
            self._records[record.key] = stored
            self._intents.pop(record.key, None)
            return stored.model_copy(deep=True)

    async def remove(self, key: ResourceKey, *, expected_serial: int | None) -> None:
        async with self._keys.hold(key):
            check_serial(key, self._records.get(key), expected_serial)
            self._records.pop(key, None)
            self._intents.pop(key, None)

    async def write_intent(self, intent: Intent) -> None:
        async with self._keys.hold(intent.key):
            self._intents[intent.key] = intent.model_copy()

    async def clear_intent(self, key: ResourceKey) -> None:
        async with self._keys.hold(key):
            self._intents.pop(key, None)

    @asynccontextmanager
    async def lock(self, key: ResourceKey, owner: str) -> AsyncIterator[None]:
        holder = self._leases.get(key)
        if holder is not None:
            raise ConcurrencyError(
                f"{key} is locked by another run",
                {"resource": str(key), "holder": holder},
            )
        self._leases[key] = owner
        try:
            yield
        finally:
            if self._leases.get(key) == owner:
                del self._leases[key]

    async def break_lock(self, key: ResourceKey) -> bool:
        return self._leases.pop(key, None) is not None
