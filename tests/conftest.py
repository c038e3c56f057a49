"""Root test configuration."""

import logging

import pytest
import structlog

from landform.config import Settings
from landform.model import Declaration, ResourceRef, ResourceSpec
from landform.providers import InMemoryProvider, ProviderAdapterSet
from landform.state import InMemoryStateStore


def pytest_configure(config):
    """Configure structlog for tests to suppress debug/info output."""
    logging.basicConfig(level=logging.WARNING, force=True)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def _topology(cidr: str = "10.0.0.0/16", nodes: int = 3) -> Declaration:
    """network <- subnet.a, subnet.b <- cluster; database uses subnet.a and the cluster."""
    resources = [
        ResourceSpec("network", "main", {"cidr": cidr}),
        ResourceSpec(
            "subnet",
            "a",
            {"network_id": ResourceRef("network", "main"), "cidr": "10.0.1.0/24"},
        ),
        ResourceSpec(
            "subnet",
            "b",
            {"network_id": ResourceRef("network", "main"), "cidr": "10.0.2.0/24"},
        ),
        ResourceSpec(
            "cluster",
            "main",
            {
                "subnet_ids": [ResourceRef("subnet", "a"), ResourceRef("subnet", "b")],
                "nodes": nodes,
            },
        ),
        ResourceSpec(
            "database",
            "main",
            {
                "subnet_id": ResourceRef("subnet", "a"),
                "cluster_endpoint": ResourceRef("cluster", "main", "endpoint"),
                "engine": "postgres",
            },
        ),
    ]
    return Declaration(
        resources=tuple(resources),
        outputs={
            "cluster_endpoint": ResourceRef("cluster", "main", "endpoint"),
            "network_id": ResourceRef("network", "main"),
        },
    )


@pytest.fixture
def settings(tmp_path):
    """Settings with instant retries so tests never sleep."""
    return Settings(
        state_dir=str(tmp_path / "state"),
        concurrency=4,
        retry_base_seconds=0.0,
        retry_cap_seconds=0.0,
        retry_max_attempts=3,
        operation_timeout_seconds=5.0,
    )


@pytest.fixture
def providers():
    """One in-memory provider per kind; clusters get a computed endpoint."""
    return {
        "network": InMemoryProvider("network"),
        "subnet": InMemoryProvider("subnet"),
        "cluster": InMemoryProvider(
            "cluster", computed={"endpoint": "https://{id}.clusters.example"}
        ),
        "database": InMemoryProvider("database"),
    }


@pytest.fixture
def adapters(providers):
    return ProviderAdapterSet(providers)


@pytest.fixture
def store():
    return InMemoryStateStore()


@pytest.fixture
def make_topology():
    """Factory for the network/subnet/cluster/database declaration."""
    return _topology
