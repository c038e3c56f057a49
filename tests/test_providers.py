"""Tests for providers/memory.py, providers/registry.py and providers/base.py."""

import pytest

from landform.core.errors import ConfigurationError, PermanentProviderError, ResourceNotFound, TransientProviderError
from landform.providers import (
    HttpProvider,
    InMemoryProvider,
    ProviderAdapterSet,
    build_adapter_set,
    create_provider,
)
from landform.providers.registry import ProviderRegistry, provider_registry


class TestInMemoryProvider:
    """Tests for InMemoryProvider."""

    @pytest.mark.asyncio
    async def test_crud(self):
        provider = InMemoryProvider("network")

        provider_id = await provider.create({"cidr": "10.0.0.0/16"})
        assert provider_id == "network-0001"
        assert await provider.read(provider_id) == {"cidr": "10.0.0.0/16"}

        await provider.update(provider_id, {"cidr": "10.1.0.0/16"})
        assert (await provider.read(provider_id))["cidr"] == "10.1.0.0/16"

        await provider.delete(provider_id)
        with pytest.raises(ResourceNotFound):
            await provider.read(provider_id)

    @pytest.mark.asyncio
    async def test_computed_attributes(self):
        provider = InMemoryProvider("cluster", computed={"endpoint": "https://{id}.{kind}.local", "port": 443})
        provider_id = await provider.create({"nodes": 3})

        assert await provider.read(provider_id) == {
            "nodes": 3,
            "endpoint": "https://cluster-0001.cluster.local",
            "port": 443,
        }

    @pytest.mark.asyncio
    async def test_idempotency_key_dedupes_creates(self):
        provider = InMemoryProvider("network")
        first = await provider.create({}, idempotency_key="k1")
        second = await provider.create({}, idempotency_key="k1")
        third = await provider.create({}, idempotency_key="k2")

        assert first == second
        assert third != first
        assert len(provider.resources) == 2

    @pytest.mark.asyncio
    async def test_fail_queues_faults(self):
        provider = InMemoryProvider("network")
        provider.fail("create", times=2)
        provider.fail("delete", PermanentProviderError("in use"))

        for _ in range(2):
            with pytest.raises(TransientProviderError):
                await provider.create({})
        provider_id = await provider.create({})
        with pytest.raises(PermanentProviderError):
            await provider.delete(provider_id)
        await provider.delete(provider_id)

    @pytest.mark.asyncio
    async def test_missing_resources(self):
        provider = InMemoryProvider("network")
        with pytest.raises(ResourceNotFound):
            await provider.update("nope", {})
        with pytest.raises(ResourceNotFound):
            await provider.delete("nope")

    @pytest.mark.asyncio
    async def test_calls_are_recorded(self):
        provider = InMemoryProvider("network")
        provider_id = await provider.create({})
        await provider.read(provider_id)

        assert provider.calls == [("create", None), ("read", provider_id)]
        assert provider.operations("read") == [provider_id]
        assert provider.in_flight == 0
        assert provider.max_in_flight == 1

    @pytest.mark.asyncio
    async def test_read_returns_copy(self):
        provider = InMemoryProvider("network")
        provider_id = await provider.create({"tags": {"env": "prod"}})
        data = await provider.read(provider_id)
        data["tags"]["env"] = "dev"
        assert provider.resources[provider_id]["tags"]["env"] == "prod"


class TestRegistry:
    """Tests for the adapter type registry."""

    def test_builtins_registered(self):
        names = {t.name for t in provider_registry.list()}
        assert {"memory", "http"} <= names

    def test_create_provider(self):
        adapter = create_provider("memory", "network")
        assert isinstance(adapter, InMemoryProvider)
        assert adapter.kind == "network"

    def test_unknown_type(self):
        with pytest.raises(ConfigurationError, match="Unknown provider type 'ftp'"):
            create_provider("ftp", "network")

    def test_invalid_options(self):
        with pytest.raises(ConfigurationError, match="Invalid options"):
            create_provider("memory", "network", colour="blue")

    def test_separate_registry(self):
        registry = ProviderRegistry()
        registry.register("fake", lambda kind: InMemoryProvider(kind), description="test")

        assert [t.name for t in registry.list()] == ["fake"]
        assert registry.list()[0].description == "test"
        assert registry.create("fake", "bucket").kind == "bucket"

    def test_register_requires_name(self):
        with pytest.raises(ValueError):
            ProviderRegistry().register("", InMemoryProvider)


class TestBuildAdapterSet:
    """Tests for build_adapter_set."""

    def test_builds_one_adapter_per_kind(self):
        adapters = build_adapter_set(
            {
                "network": {"type": "memory"},
                "subnet": {"type": "http", "base_url": "https://api.example.com"},
            }
        )

        assert set(adapters) == {"network", "subnet"}
        assert isinstance(adapters.for_kind("network"), InMemoryProvider)
        assert isinstance(adapters.for_kind("subnet"), HttpProvider)

    def test_missing_type(self):
        with pytest.raises(ConfigurationError, match="has no type"):
            build_adapter_set({"network": {}})

    def test_options_not_mutated(self):
        options = {"network": {"type": "memory"}}
        build_adapter_set(options)
        assert options == {"network": {"type": "memory"}}


class TestProviderAdapterSet:
    """Tests for ProviderAdapterSet."""

    def test_for_kind_missing(self):
        with pytest.raises(ConfigurationError, match="No provider adapter for resource kind 'vpc'"):
            ProviderAdapterSet().for_kind("vpc")

    def test_mapping_interface(self):
        adapters = ProviderAdapterSet()
        adapters.register("network", InMemoryProvider("network"))
        assert len(adapters) == 1
        assert "network" in adapters
        assert adapters["network"].kind == "network"

    def test_register_requires_kind(self):
        with pytest.raises(ValueError):
            ProviderAdapterSet().register("", InMemoryProvider("x"))

    @pytest.mark.asyncio
    async def test_aclose_closes_adapters(self):
        closed = []

        class Closable(InMemoryProvider):
            async def aclose(self):
                closed.append(self.kind)

        adapters = ProviderAdapterSet({"a": Closable("a"), "b": InMemoryProvider("b")})
        await adapters.aclose()
        assert closed == ["a"]
