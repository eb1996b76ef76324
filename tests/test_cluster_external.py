"""Unit tests for plugins/managed/cluster/external.py - Cluster client."""

import pytest
from unittest.mock import AsyncMock

import aiohttp

from clients.central import CentralAPIError
from errors import CreateFailed, DeleteFailed, ObserveFailed, UpdateFailed
from plugins.managed.cluster import ClusterClient


def _in_sync_params():
    """Parameters matching the remote_cluster fixture."""
    return dict(
        type="KUBERNETES_CLUSTER",
        mainImage="stackrox/main",
        collectorImage="stackrox/collector:3.0",
        centralApiEndpoint="central.stackrox:443",
        collectionMethod="EBPF",
        admissionController=True,
        admissionControllerEvents=True,
        labels={"env": "prod"},
        tolerations=True,
    )


@pytest.mark.asyncio
class TestObserve:
    """Tests for ClusterClient.observe."""

    async def test_not_found(self, central, make_cluster):
        client = ClusterClient(central)

        observation = await client.observe(make_cluster())

        assert not observation.resource_exists

    async def test_up_to_date(self, central, make_cluster, remote_cluster):
        """Test a matching cluster is reported up to date and observed."""
        central.get_clusters.return_value = [remote_cluster]
        cluster = make_cluster(**_in_sync_params())
        client = ClusterClient(central)

        observation = await client.observe(cluster)

        assert observation.resource_exists
        assert observation.resource_up_to_date, observation.diff
        assert cluster.status.at_provider.id == "c-1"

    async def test_label_order_ignored(self, central, make_cluster, remote_cluster):
        """Test label ordering does not count as drift."""
        remote_cluster["labels"] = {"team": "sec", "env": "prod"}
        central.get_clusters.return_value = [remote_cluster]
        params = _in_sync_params()
        params["labels"] = {"env": "prod", "team": "sec"}

        observation = await ClusterClient(central).observe(make_cluster(**params))

        assert observation.resource_up_to_date

    async def test_drift_reported(self, central, make_cluster, remote_cluster):
        central.get_clusters.return_value = [remote_cluster]
        params = _in_sync_params()
        params["collectorImage"] = "stackrox/collector:4.0"

        observation = await ClusterClient(central).observe(make_cluster(**params))

        assert not observation.resource_up_to_date
        assert observation.diff.startswith("Observed difference in cluster")
        assert "collectorImage" in observation.diff

    async def test_looks_up_external_name(self, central, make_cluster, remote_cluster):
        """Test the external name takes precedence over the declared name."""
        central.get_clusters.return_value = [remote_cluster]
        cluster = make_cluster("renamed")
        cluster.metadata.external_name = "prod"

        observation = await ClusterClient(central).observe(cluster)

        assert observation.resource_exists

    async def test_transport_error(self, central, make_cluster):
        central.get_clusters.side_effect = aiohttp.ClientConnectionError("refused")

        with pytest.raises(ObserveFailed, match="cannot observe cluster"):
            await ClusterClient(central).observe(make_cluster())


@pytest.mark.asyncio
class TestCreate:
    """Tests for ClusterClient.create."""

    async def test_create(self, central, make_cluster, remote_cluster):
        """Test the request is encoded and the response recorded."""
        central.post_cluster.return_value = remote_cluster
        cluster = make_cluster(type="KUBERNETES_CLUSTER")

        creation = await ClusterClient(central).create(cluster)

        request = central.post_cluster.await_args[0][0]
        assert request["name"] == "prod"
        assert request["type"] == 1
        assert cluster.metadata.external_name == "prod"
        assert cluster.status.at_provider.type == "KUBERNETES_CLUSTER"
        assert creation.connection_details == {}

    async def test_create_failure(self, central, make_cluster):
        central.post_cluster.side_effect = CentralAPIError(400, "bad request")

        with pytest.raises(CreateFailed, match="cannot create cluster"):
            await ClusterClient(central).create(make_cluster())


@pytest.mark.asyncio
class TestUpdate:
    """Tests for ClusterClient.update."""

    async def test_update_reuses_observed_cluster(
        self, central, make_cluster, remote_cluster
    ):
        """Test the fetched cluster is the base of the replacement."""
        central.get_clusters.return_value = [remote_cluster]
        central.put_cluster.return_value = dict(
            remote_cluster, collectorImage="stackrox/collector:4.0"
        )
        params = _in_sync_params()
        params["collectorImage"] = "stackrox/collector:4.0"
        cluster = make_cluster(**params)
        client = ClusterClient(central)

        await client.observe(cluster)
        update = await client.update(cluster)

        central.get_clusters.assert_awaited_once()
        request = central.put_cluster.await_args[0][0]
        assert request["id"] == "c-1"
        assert request["healthStatus"] == {"overallHealthStatus": "HEALTHY"}
        assert request["collectorImage"] == "stackrox/collector:4.0"
        assert not update.recreate_pending
        assert cluster.status.at_provider.collector_image == "stackrox/collector:4.0"

    async def test_update_without_observe_fetches(
        self, central, make_cluster, remote_cluster
    ):
        """Test an empty PUT response leaves the observation unchanged."""
        central.get_clusters.return_value = [remote_cluster]
        cluster = make_cluster()

        await ClusterClient(central).update(cluster)

        central.get_clusters.assert_awaited_once()
        central.put_cluster.assert_awaited_once()
        assert cluster.status.at_provider.id == ""

    async def test_update_vanished_cluster(self, central, make_cluster):
        """Test a cluster gone before the update is left for the next pass."""
        update = await ClusterClient(central).update(make_cluster())

        assert not update.recreate_pending
        central.put_cluster.assert_not_awaited()

    async def test_update_cluster_without_id(
        self, central, make_cluster, remote_cluster
    ):
        """Test a fetched cluster lacking an id fails the update."""
        del remote_cluster["id"]
        central.get_clusters.return_value = [remote_cluster]
        central.put_cluster.side_effect = ValueError("cluster 'prod' has no id")

        with pytest.raises(UpdateFailed, match="has no id"):
            await ClusterClient(central).update(make_cluster())

    async def test_update_failure(self, central, make_cluster, remote_cluster):
        central.get_clusters.return_value = [remote_cluster]
        central.put_cluster.side_effect = CentralAPIError(500, "boom")

        with pytest.raises(UpdateFailed, match="cannot update cluster"):
            await ClusterClient(central).update(make_cluster())


@pytest.mark.asyncio
class TestDelete:
    """Tests for ClusterClient.delete."""

    async def test_delete_by_observed_id(self, central, make_cluster):
        cluster = make_cluster()
        cluster.status.at_provider.id = "c-1"

        await ClusterClient(central).delete(cluster)

        central.delete_cluster.assert_awaited_once_with("c-1")

    async def test_delete_is_idempotent(self, central, make_cluster):
        """Test a cluster Central no longer knows counts as deleted."""
        cluster = make_cluster()
        cluster.status.at_provider.id = "c-1"
        central.delete_cluster = AsyncMock(
            side_effect=[None, CentralAPIError(404, "not found")]
        )
        client = ClusterClient(central)

        await client.delete(cluster)
        await client.delete(cluster)

        assert central.delete_cluster.await_count == 2

    async def test_delete_without_id(self, central, make_cluster):
        await ClusterClient(central).delete(make_cluster())

        central.delete_cluster.assert_not_awaited()

    async def test_delete_failure(self, central, make_cluster):
        cluster = make_cluster()
        cluster.status.at_provider.id = "c-1"
        central.delete_cluster.side_effect = CentralAPIError(403, "forbidden")

        with pytest.raises(DeleteFailed, match="cannot delete cluster"):
            await ClusterClient(central).delete(cluster)
