from __future__ import annotations

from typing import AsyncContextManager, Protocol

from landform.core.errors import ConcurrencyError
from landform.model import ResourceKey
from landform.state.models import Intent, StateRecord, StateSnapshot


class StateStore(Protocol):
    """Durable record of last-known actual state.

    Read fully at plan time, written per resource at apply time. Writes for
    one key are serialized; distinct keys may be written concurrently.
    """

    async def load(self) -> StateSnapshot:
        ...

    async def get(self, key: ResourceKey) -> StateRecord | None:
        ...

    async def commit(self, record: StateRecord, *, expected_serial: int | None) -> StateRecord:
        """Write ``record`` if the stored serial still equals ``expected_serial``.

        Clears any intent for the key in the same step.
        """
        ...

    async def remove(self, key: ResourceKey, *, expected_serial: int | None) -> None:
        ...

    async def write_intent(self, intent: Intent) -> None:
        ...

    async def clear_intent(self, key: ResourceKey) -> None:
        ...

    def lock(self, key: ResourceKey, owner: str) -> AsyncContextManager[None]:
        """Exclusive per-resource lease across runs; ConcurrencyError when held."""
        ...

    async def break_lock(self, key: ResourceKey) -> bool:
        ...


def check_serial(key: ResourceKey, current: StateRecord | None, expected: int | None) -> None:
    """Optimistic version check against the stored record."""
    stored = current.serial if current is not None else None
    if stored != expected:
        raise ConcurrencyError(
            f"State for {key} changed since it was planned",
            {"resource": str(key), "expected_serial": expected, "stored_serial": stored},
        )
