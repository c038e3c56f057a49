"""Registry of provider adapter types and adapter-set construction."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping

from landform.core.errors import ConfigurationError
from landform.providers.base import ProviderAdapter, ProviderAdapterSet

# Called as factory(kind=..., **options) and returns an adapter for that kind.
AdapterFactory = Callable[..., ProviderAdapter]


@dataclass(frozen=True)
class AdapterType:
    """A registered adapter implementation."""

    name: str
    factory: AdapterFactory
    description: str | None = None


class ProviderRegistry:
    """Adapter types by name; each declaration picks one per resource kind."""

    def __init__(self) -> None:
        self._types: dict[str, AdapterType] = {}

    def register(
        self,
        name: str,
        factory: AdapterFactory,
        *,
        description: str | None = None,
    ) -> None:
        if not name:
            raise ValueError("Adapter type name is required")
        self._types[name] = AdapterType(name=name, factory=factory, description=description)

    def create(self, type_name: str, kind: str, **options: Any) -> ProviderAdapter:
        adapter_type = self._types.get(type_name)
        if adapter_type is None:
            raise ConfigurationError(
                f"Unknown provider type '{type_name}' for kind '{kind}'",
                {"kind": kind, "known": ", ".join(sorted(self._types))},
            )
        try:
            return adapter_type.factory(kind=kind, **options)
        except TypeError as exc:
            raise ConfigurationError(
                f"Invalid options for provider '{type_name}' of kind '{kind}': {exc}",
                {"kind": kind},
            ) from exc

    def list(self) -> list[AdapterType]:
        return list(self._types.values())


provider_registry = ProviderRegistry()


def register_provider(
    name: str,
    factory: AdapterFactory,
    *,
    description: str | None = None,
) -> None:
    provider_registry.register(name, factory, description=description)


def create_provider(type_name: str, kind: str, **options: Any) -> ProviderAdapter:
    return provider_registry.create(type_name, kind, **options)


def build_adapter_set(config: Mapping[str, Mapping[str, Any]]) -> ProviderAdapterSet:
    """Create one adapter per kind from ``{kind: {"type": name, **options}}``."""
    adapters = ProviderAdapterSet()
    for kind, entry in config.items():
        options = dict(entry)
        type_name = options.pop("type", None)
        if not type_name:
            raise ConfigurationError(f"Provider for kind '{kind}' has no type", {"kind": kind})
        adapters.register(kind, create_provider(type_name, kind, **options))
    return adapters
