"""Pytest configuration and fixtures."""

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

import pytest

from apis.cluster import Cluster
from apis.initbundle import InitBundle
from apis.provider import ProviderConfig
from clients.central import CentralConnection
from store import MemoryStore


@pytest.fixture
def mock_connection():
    """Create a mock asyncpg connection."""
    conn = AsyncMock()
    return conn


@pytest.fixture
def mock_pool(mock_connection):
    """Create a mock asyncpg pool handing out mock_connection."""
    pool = AsyncMock()

    @asynccontextmanager
    async def acquire():
        yield mock_connection

    pool.acquire = acquire
    return pool


@pytest.fixture
def central():
    """Mock Central connection with empty collections."""
    conn = MagicMock(spec=CentralConnection)
    conn.get_clusters = AsyncMock(return_value=[])
    conn.post_cluster = AsyncMock(return_value=None)
    conn.put_cluster = AsyncMock(return_value=None)
    conn.delete_cluster = AsyncMock()
    conn.get_init_bundles = AsyncMock(return_value=[])
    conn.generate_init_bundle = AsyncMock()
    conn.revoke_init_bundle = AsyncMock()
    conn.close = AsyncMock()
    return conn


@pytest.fixture
def provider_config():
    """ProviderConfig reading its token from a secret."""
    return ProviderConfig.model_validate(
        {
            "metadata": {"name": "default"},
            "spec": {
                "endpoint": "central.example.com:8443",
                "credentials": {
                    "source": "Secret",
                    "secretRef": {
                        "namespace": "stackrox",
                        "name": "central-token",
                        "key": "token",
                    },
                },
            },
        }
    )


@pytest.fixture
def memory_store(provider_config):
    """In-memory store holding the default ProviderConfig and its secret."""
    store = MemoryStore()
    store.add_provider_config(provider_config)
    store.add_secret("stackrox", "central-token", {"token": b"s3cr3t\n"})
    return store


@pytest.fixture
def make_cluster():
    """Factory for Cluster resources."""

    def _make(name="prod", **params):
        for_provider = {"name": name}
        for_provider.update(params)
        return Cluster.model_validate(
            {
                "metadata": {"name": name},
                "spec": {"forProvider": for_provider},
            }
        )

    return _make


@pytest.fixture
def make_init_bundle():
    """Factory for InitBundle resources."""

    def _make(name="bundle-1"):
        return InitBundle.model_validate(
            {
                "metadata": {"name": name},
                "spec": {"forProvider": {"name": name}},
            }
        )

    return _make


@pytest.fixture
def remote_cluster():
    """A cluster as reported by Central."""
    return {
        "id": "c-1",
        "name": "prod",
        "type": 1,
        "mainImage": "stackrox/main",
        "collectorImage": "stackrox/collector:3.0",
        "centralApiEndpoint": "central.stackrox:443",
        "collectionMethod": 3,
        "admissionController": True,
        "admissionControllerUpdates": False,
        "admissionControllerEvents": True,
        "slimCollector": False,
        "labels": {"env": "prod"},
        "tolerationsConfig": {"disabled": False},
        "managedBy": 2,
        "initBundleId": "b-1",
        "healthStatus": {"overallHealthStatus": "HEALTHY"},
        "mostRecentSensorId": {
            "systemNamespaceId": "ns-1",
            "defaultNamespaceId": "ns-2",
            "appNamespace": "stackrox",
            "appNamespaceId": "ns-3",
            "appServiceaccountId": "sa-1",
            "k8sNodeName": "node-1",
        },
    }
