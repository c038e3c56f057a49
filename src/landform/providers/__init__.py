"""Provider adapters and built-in registrations."""

# Import built-in adapters for side effects (registration)
from landform.providers import http as _http  # noqa: F401
from landform.providers import memory as _memory  # noqa: F401
from landform.providers.base import ProviderAdapter, ProviderAdapterSet
from landform.providers.http import HttpProvider
from landform.providers.memory import InMemoryProvider
from landform.providers.registry import (
    build_adapter_set,
    create_provider,
    register_provider,
)
from landform.providers.retry import RetryPolicy, call_with_retry

__all__ = [
    "HttpProvider",
    "InMemoryProvider",
    "ProviderAdapter",
    "ProviderAdapterSet",
    "build_adapter_set",
    "create_provider",
    "RetryPolicy",
    "call_with_retry",
    "register_provider",
]
