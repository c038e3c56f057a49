from __future__ import annotations

from typing import Any, Iterator, Mapping, Protocol

from landform.core.errors import ConfigurationError


class ProviderAdapter(Protocol):
    """Create/read/update/delete capability for one resource kind.

    Failures are raised as ``ProviderError`` with ``transient`` set by the
    adapter; ``read`` and ``delete`` raise ``ResourceNotFound`` for unknown ids.
    """

    async def create(
        self,
        attributes: dict[str, Any],
        *,
        idempotency_key: str | None = None,
    ) -> str:
        ...

    async def read(self, provider_id: str) -> dict[str, Any]:
        ...

    async def update(self, provider_id: str, attributes: dict[str, Any]) -> None:
        ...

    async def delete(self, provider_id: str) -> None:
        ...


class ProviderAdapterSet(Mapping[str, ProviderAdapter]):
    """Adapters keyed by resource kind."""

    def __init__(self, adapters: Mapping[str, ProviderAdapter] | None = None) -> None:
        self._adapters: dict[str, ProviderAdapter] = dict(adapters or {})

    def register(self, kind: str, adapter: ProviderAdapter) -> None:
        if not kind:
            raise ValueError("Resource kind is required")
        self._adapters[kind] = adapter

    def for_kind(self, kind: str) -> ProviderAdapter:
        adapter = self._adapters.get(kind)
        if adapter is None:
            raise ConfigurationError(
                f"No provider adapter for resource kind '{kind}'",
                {"kind": kind},
            )
        return adapter

    def __getitem__(self, kind: str) -> ProviderAdapter:
        return self._adapters[kind]

    def __iter__(self) -> Iterator[str]:
        return iter(self._adapters)

    def __len__(self) -> int:
        return len(self._adapters)

    async def aclose(self) -> None:
        for adapter in self._adapters.values():
            close = getattr(adapter, "aclose", None)
            if close is not None:
                await close()
