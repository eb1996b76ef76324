"""
InitBundle external client - reconciles InitBundle resources against Central.

Init bundles are immutable once generated. A drifted bundle is revoked and the
next pass generates a fresh one.
"""

import logging
from typing import Any, Dict, Optional

from apis.common import ConditionReason
from apis.initbundle import INIT_BUNDLE_KIND, InitBundle
from clients.central import CentralAPIError, CentralConnection
from errors import (
    CreateFailed,
    DeleteFailed,
    ObserveFailed,
    ProviderError,
    UpdateFailed,
)
from plugins.managed.base import (
    TRANSPORT_ERRORS,
    Connector,
    ExternalClient,
    ExternalCreation,
    ExternalObservation,
    ExternalUpdate,
    is_up_to_date,
)
from plugins.managed.initbundle import mapper

logger = logging.getLogger(__name__)

ERR_GET_FAILED = "cannot get init bundle"
ERR_OBSERVE_FAILED = "cannot observe init bundle"
ERR_CREATE_FAILED = "cannot create init bundle"
ERR_UPDATE_FAILED = "cannot update init bundle"
ERR_DELETE_FAILED = "cannot delete init bundle"

# Ready reasons during which a replacement is already under way.
_TRANSITIONAL_REASONS = (ConditionReason.CREATING, ConditionReason.DELETING)


class InitBundleClient(ExternalClient):
    """External client for one InitBundle during one pass."""

    async def _get_bundle(self, resource: InitBundle) -> Optional[Dict[str, Any]]:
        bundles = await self.connection.get_init_bundles()
        return mapper.find_by_name(bundles, resource.lookup_name())

    async def observe(self, resource: InitBundle) -> ExternalObservation:
        try:
            bundle = await self._get_bundle(resource)
        except TRANSPORT_ERRORS as e:
            raise ObserveFailed(f"{ERR_OBSERVE_FAILED}: {ERR_GET_FAILED}: {e}") from e

        if bundle is None:
            return ExternalObservation(resource_exists=False)

        resource.status.at_provider = mapper.to_observation(bundle)
        up_to_date, diff = is_up_to_date(
            "init bundle",
            resource.spec.for_provider,
            mapper.observed_parameters(bundle),
        )
        return ExternalObservation(
            resource_exists=True, resource_up_to_date=up_to_date, diff=diff
        )

    async def create(self, resource: InitBundle) -> ExternalCreation:
        try:
            response = await self.connection.generate_init_bundle(
                resource.spec.for_provider.name
            )
        except TRANSPORT_ERRORS as e:
            raise CreateFailed(f"{ERR_CREATE_FAILED}: {e}") from e

        meta = response.get("meta") or {}
        resource.status.at_provider = mapper.to_observation(meta)
        resource.metadata.external_name = meta.get("name") or ""
        logger.info(
            f"Generated init bundle {resource.metadata.external_name} "
            f"(id {resource.status.at_provider.id})"
        )
        return ExternalCreation(connection_details=mapper.connection_details(response))

    async def update(self, resource: InitBundle) -> ExternalUpdate:
        reason = resource.ready_reason()
        if reason in _TRANSITIONAL_REASONS:
            logger.info(
                f"Init bundle {resource.lookup_name()} is {reason.value}, "
                f"not replacing it"
            )
            return ExternalUpdate()

        try:
            await self.delete(resource)
        except ProviderError as e:
            raise UpdateFailed(f"{ERR_UPDATE_FAILED}: {e}") from e

        logger.info(f"Revoked drifted init bundle {resource.lookup_name()}")
        return ExternalUpdate(recreate_pending=True)

    async def delete(self, resource: InitBundle) -> None:
        observation = resource.status.at_provider
        if not observation.id:
            logger.info(f"Init bundle {resource.lookup_name()} has no observed id")
            return

        impacted = [c.id for c in observation.impacted_clusters if c.id]
        try:
            await self.connection.revoke_init_bundle([observation.id], impacted)
        except CentralAPIError as e:
            if e.not_found:
                logger.info(f"Init bundle {observation.id} already revoked")
                return
            raise DeleteFailed(f"{ERR_DELETE_FAILED}: {e}") from e
        except TRANSPORT_ERRORS as e:
            raise DeleteFailed(f"{ERR_DELETE_FAILED}: {e}") from e


class InitBundleConnector(Connector):
    """Connects InitBundle resources to the Central named by their ProviderConfig."""

    kind = INIT_BUNDLE_KIND
    resource_class = InitBundle

    def new_client(self, connection: CentralConnection) -> InitBundleClient:
        return InitBundleClient(connection)
