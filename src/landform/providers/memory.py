from __future__ import annotations

import asyncio
import copy
import itertools
from collections import defaultdict, deque
from typing import Any, Mapping

from landform.core.errors import ProviderError, ResourceNotFound, TransientProviderError
from landform.providers.registry import register_provider


class InMemoryProvider:
    """Provider adapter that keeps resources in process memory.

    Useful for tests, demos and dry runs. ``computed`` attributes are added
    on create the way a real API adds server-side fields; string values are
    formatted with ``{id}`` and ``{kind}``. Failures can be queued per
    operation with :meth:`fail`.
    """

    name = "memory"

    def __init__(
        self,
        kind: str,
        *,
        computed: Mapping[str, Any] | None = None,
        latency: float = 0.0,
    ) -> None:
        self.kind = kind
        self.resources: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, str | None]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._computed = dict(computed or {})
        self._latency = latency
        self._ids = itertools.count(1)
        self._idempotency: dict[str, str] = {}
        self._faults: dict[str, deque[ProviderError]] = defaultdict(deque)

    def fail(self, operation: str, error: ProviderError | None = None, *, times: int = 1) -> None:
        """Queue ``times`` failures for the next calls of ``operation``."""
        fault = error or TransientProviderError(f"{self.kind} {operation} unavailable")
        for _ in range(times):
            self._faults[operation].append(fault)

    async def _enter(self, operation: str, target: str | None) -> None:
        self.calls.append((operation, target))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self._latency:
                await asyncio.sleep(self._latency)
            else:
                await asyncio.sleep(0)
            if self._faults[operation]:
                raise self._faults[operation].popleft()
        finally:
            self.in_flight -= 1

    def _computed_for(self, provider_id: str) -> dict[str, Any]:
        return {
            key: value.format(id=provider_id, kind=self.kind) if isinstance(value, str) else value
            for key, value in self._computed.items()
        }

    async def create(
        self,
        attributes: dict[str, Any],
        *,
        idempotency_key: str | None = None,
    ) -> str:
        await self._enter("create", None)
        if idempotency_key and idempotency_key in self._idempotency:
            return self._idempotency[idempotency_key]
        provider_id = f"{self.kind}-{next(self._ids):04d}"
        self.resources[provider_id] = copy.deepcopy(attributes) | self._computed_for(provider_id)
        if idempotency_key:
            self._idempotency[idempotency_key] = provider_id
        return provider_id

    async def read(self, provider_id: str) -> dict[str, Any]:
        await self._enter("read", provider_id)
        if provider_id not in self.resources:
            raise ResourceNotFound(provider_id)
        return copy.deepcopy(self.resources[provider_id])

    async def update(self, provider_id: str, attributes: dict[str, Any]) -> None:
        await self._enter("update", provider_id)
        if provider_id not in self.resources:
            raise ResourceNotFound(provider_id)
        self.resources[provider_id] = copy.deepcopy(attributes) | self._computed_for(provider_id)

    async def delete(self, provider_id: str) -> None:
        await self._enter("delete", provider_id)
        if self.resources.pop(provider_id, None) is None:
            raise ResourceNotFound(provider_id)

    def operations(self, operation: str) -> list[str | None]:
        return [target for op, target in self.calls if op == operation]


def _factory(**kwargs: Any) -> InMemoryProvider:
    return InMemoryProvider(**kwargs)


register_provider(
    InMemoryProvider.name,
    _factory,
    description="In-process provider for tests and dry runs",
)
