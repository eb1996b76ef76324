"""
Cluster external client - reconciles Cluster resources against Central.

Clusters are updated in place: the declared parameters are applied onto the
cluster fetched from Central and the whole object is replaced.
"""

import logging
from typing import Any, Dict, Optional

from apis.cluster import CLUSTER_KIND, Cluster
from clients.central import CentralAPIError, CentralConnection
from errors import CreateFailed, DeleteFailed, ObserveFailed, UpdateFailed
from plugins.managed.base import (
    TRANSPORT_ERRORS,
    Connector,
    ExternalClient,
    ExternalCreation,
    ExternalObservation,
    ExternalUpdate,
    is_up_to_date,
)
from plugins.managed.cluster import mapper

logger = logging.getLogger(__name__)

ERR_GET_FAILED = "cannot get cluster"
ERR_OBSERVE_FAILED = "cannot observe cluster"
ERR_CREATE_FAILED = "cannot create cluster"
ERR_UPDATE_FAILED = "cannot update cluster"
ERR_DELETE_FAILED = "cannot delete cluster"


class ClusterClient(ExternalClient):
    """External client for one Cluster during one pass."""

    def __init__(self, connection: CentralConnection):
        super().__init__(connection)
        # Cluster fetched by observe() in this pass, reused by update().
        self._fetched: Optional[Dict[str, Any]] = None

    async def _get_cluster(self, resource: Cluster) -> Optional[Dict[str, Any]]:
        clusters = await self.connection.get_clusters()
        return mapper.find_by_name(clusters, resource.lookup_name())

    async def observe(self, resource: Cluster) -> ExternalObservation:
        try:
            cluster = await self._get_cluster(resource)
        except TRANSPORT_ERRORS as e:
            raise ObserveFailed(f"{ERR_OBSERVE_FAILED}: {ERR_GET_FAILED}: {e}") from e

        self._fetched = cluster
        if cluster is None:
            return ExternalObservation(resource_exists=False)

        resource.status.at_provider = mapper.to_observation(cluster)
        up_to_date, diff = is_up_to_date(
            "cluster",
            resource.spec.for_provider,
            mapper.observed_parameters(cluster),
        )
        return ExternalObservation(
            resource_exists=True, resource_up_to_date=up_to_date, diff=diff
        )

    async def create(self, resource: Cluster) -> ExternalCreation:
        request = mapper.to_remote(resource.spec.for_provider)
        try:
            created = await self.connection.post_cluster(request)
        except TRANSPORT_ERRORS as e:
            raise CreateFailed(f"{ERR_CREATE_FAILED}: {e}") from e

        if created:
            resource.status.at_provider = mapper.to_observation(created)
            resource.metadata.external_name = created.get("name") or ""
            logger.info(
                f"Created cluster {resource.metadata.external_name} "
                f"(id {resource.status.at_provider.id})"
            )
        return ExternalCreation()

    async def update(self, resource: Cluster) -> ExternalUpdate:
        try:
            cluster = self._fetched
            if cluster is None:
                cluster = await self._get_cluster(resource)
            if cluster is None:
                logger.info(f"Cluster {resource.lookup_name()} vanished before update")
                return ExternalUpdate()

            request = mapper.to_remote(resource.spec.for_provider, cluster)
            updated = await self.connection.put_cluster(request)
        except TRANSPORT_ERRORS as e:
            raise UpdateFailed(f"{ERR_UPDATE_FAILED}: {e}") from e

        if updated:
            resource.status.at_provider = mapper.to_observation(updated)
            resource.metadata.external_name = updated.get("name") or ""
        return ExternalUpdate()

    async def delete(self, resource: Cluster) -> None:
        cluster_id = resource.status.at_provider.id
        if not cluster_id:
            logger.info(f"Cluster {resource.lookup_name()} has no observed id")
            return

        try:
            await self.connection.delete_cluster(cluster_id)
        except CentralAPIError as e:
            if e.not_found:
                logger.info(f"Cluster {cluster_id} already deleted")
                return
            raise DeleteFailed(f"{ERR_DELETE_FAILED}: {e}") from e
        except TRANSPORT_ERRORS as e:
            raise DeleteFailed(f"{ERR_DELETE_FAILED}: {e}") from e


class ClusterConnector(Connector):
    """Connects Cluster resources to the Central named by their ProviderConfig."""

    kind = CLUSTER_KIND
    resource_class = Cluster

    def new_client(self, connection: CentralConnection) -> ClusterClient:
        return ClusterClient(connection)
