"""
Provider Controller - Reconciliation driver and loop.

Similar to Kubernetes controllers, continuously reconciles the declared state
of managed resources with the state reported by Central. One pass per
resource: connect, observe, then create, update or delete as needed, and
persist the resulting conditions.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Type

from apis.common import (
    Condition,
    ConditionType,
    ManagedResource,
    available,
    creating,
    deleting,
    reconcile_error,
    reconcile_success,
    unavailable,
)
from config import Config
from errors import NotThisKind, ProviderError
from plugins.managed.base import Connector, ExternalClient
from plugins.registry import KindRegistry, get_registry
from store import ResourceStore

logger = logging.getLogger(__name__)


@dataclass
class PassStatus:
    """Outcome of one reconciliation pass."""

    exists: bool = False
    ready_condition: Optional[Condition] = None
    observation: Any = None
    diff: str = ""
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class ManagedReconciler:
    """
    Runs reconciliation passes for one managed kind.

    The resource handed to ``reconcile`` is never mutated; the pass works on
    a copy and persists the outcome through the store.
    """

    def __init__(
        self,
        kind: str,
        resource_class: Type[ManagedResource],
        connector: Connector,
        store: ResourceStore,
        pass_timeout: Optional[float] = None,
    ):
        self.kind = kind
        self.resource_class = resource_class
        self.connector = connector
        self.store = store
        self.pass_timeout = pass_timeout

    async def reconcile(self, resource: ManagedResource) -> PassStatus:
        """
        Run one reconciliation pass.

        Args:
            resource: Typed resource of this reconciler's kind

        Returns:
            PassStatus describing the outcome. Provider errors are reported
            here, not raised.

        Raises:
            NotThisKind: If the resource is not of this reconciler's kind
            asyncio.TimeoutError: If the pass exceeded the pass timeout
        """
        if not isinstance(resource, self.resource_class):
            raise NotThisKind(
                f"managed resource is not a {self.kind}: "
                f"got {type(resource).__name__}"
            )

        if self.pass_timeout:
            return await asyncio.wait_for(
                self._reconcile(resource), timeout=self.pass_timeout
            )
        return await self._reconcile(resource)

    async def record_failure(
        self, resource: ManagedResource, error: Exception
    ) -> PassStatus:
        """
        Persist a failed pass.

        Only the conditions change; observations and the external name
        gathered during the failed pass are discarded.
        """
        failed = resource.model_copy(deep=True)
        failed.set_conditions(unavailable(str(error)), reconcile_error(error))
        await self.store.update_status(failed)
        return PassStatus(
            exists=False,
            ready_condition=failed.get_condition(ConditionType.READY),
            observation=failed.status.at_provider,
            error=str(error),
        )

    async def _reconcile(self, resource: ManagedResource) -> PassStatus:
        name = f"{self.kind}/{resource.metadata.name}"
        working = resource.model_copy(deep=True)

        try:
            client = await self.connector.connect(working)
        except ProviderError as e:
            logger.error(f"Cannot connect {name}: {e}")
            return await self.record_failure(resource, e)

        try:
            status = await self._run(client, working, name)
        except ProviderError as e:
            logger.error(f"Failed to reconcile {name}: {e}")
            return await self.record_failure(resource, e)
        finally:
            await self._disconnect(client, name)

        return status

    async def _run(
        self, client: ExternalClient, working: ManagedResource, name: str
    ) -> PassStatus:
        observation = await client.observe(working)
        status = PassStatus(exists=observation.resource_exists, diff=observation.diff)

        if working.metadata.deletion_requested:
            if observation.resource_exists:
                logger.info(f"Deleting {name}")
                await client.delete(working)
                working.set_conditions(deleting())
            else:
                logger.info(f"External resource of {name} is gone, finalizing")
                await self.store.finalize(working)
                working.set_conditions(deleting(), reconcile_success())
                status.ready_condition = working.get_condition(ConditionType.READY)
                return status

        elif not observation.resource_exists:
            logger.info(f"Creating {name}")
            creation = await client.create(working)
            if creation.connection_details:
                await self.store.publish_connection_details(
                    working, creation.connection_details
                )
            working.set_conditions(creating())

        elif not observation.resource_up_to_date:
            logger.info(f"Updating {name}\n{observation.diff}")
            update = await client.update(working)
            working.set_conditions(
                deleting() if update.recreate_pending else available()
            )

        else:
            logger.debug(f"{name} is up to date")
            working.set_conditions(available())

        working.set_conditions(reconcile_success())
        await self.store.update_status(working)

        status.ready_condition = working.get_condition(ConditionType.READY)
        status.observation = working.status.at_provider
        return status

    async def _disconnect(self, client: ExternalClient, name: str) -> None:
        try:
            await client.disconnect()
        except ProviderError as e:
            logger.warning(f"Error disconnecting {name}: {e}")


class Controller:
    """
    Main controller that implements the reconciliation loop.

    Polls the store for resources that are due, and dispatches each to the
    reconciler of its kind.
    """

    def __init__(
        self,
        store: ResourceStore,
        registry: Optional[KindRegistry] = None,
        config: Optional[Config] = None,
    ):
        self.store = store
        self.registry = registry or get_registry()
        self.config = config or Config.default()
        self.reconcile_interval = self.config.controller.reconcile_interval
        self.max_concurrent_reconciles = self.config.controller.max_concurrent_reconciles
        self.semaphore = asyncio.Semaphore(self.max_concurrent_reconciles)
        self.running = False
        self._shutdown_event = asyncio.Event()

        connectors = self.registry.build_connectors(
            store, self.config.central, self.config.plugins
        )
        self.reconcilers: Dict[str, ManagedReconciler] = {
            kind: ManagedReconciler(
                kind,
                connector.resource_class,
                connector,
                store,
                pass_timeout=self.config.controller.pass_timeout,
            )
            for kind, connector in connectors.items()
        }

    async def start(self):
        """Start the controller reconciliation loop."""
        logger.info(
            f"Starting StackRox provider controller "
            f"(kinds: {', '.join(self.reconcilers) or 'none'})"
        )
        self.running = True
        self._shutdown_event.clear()
        await self._reconciliation_loop()

    async def stop(self):
        """Stop the controller after the current cycle."""
        logger.info("Stopping StackRox provider controller")
        self.running = False
        self._shutdown_event.set()

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _reconciliation_loop(self):
        """Main reconciliation loop - watches for resources needing reconciliation."""
        while self.running:
            try:
                await self.run_once()
                await self._sleep(self.reconcile_interval)
            except Exception as e:
                logger.error(f"Error in reconciliation loop: {e}", exc_info=True)
                await self._sleep(10)  # Brief pause on error

    async def run_once(self) -> List[Optional[PassStatus]]:
        """Run one reconciliation cycle over every due resource."""
        records = await self.store.get_resources_needing_reconciliation(
            list(self.reconcilers), limit=self.max_concurrent_reconciles * 2
        )
        if not records:
            return []

        logger.info(f"Found {len(records)} resources needing reconciliation")
        results = await asyncio.gather(
            *[self._reconcile_record(record) for record in records],
            return_exceptions=True,
        )
        return [r if isinstance(r, PassStatus) else None for r in results]

    async def _reconcile_record(self, record: Mapping[str, Any]) -> Optional[PassStatus]:
        """Reconcile a single stored record."""
        async with self.semaphore:
            kind = record.get("kind", "")
            name = (record.get("metadata") or {}).get("name", "")

            reconciler = self.reconcilers.get(kind)
            if reconciler is None:
                logger.warning(f"No reconciler for {kind}/{name}")
                return None

            try:
                resource = self.registry.parse_resource(record)
            except ValueError as e:
                logger.error(f"Invalid {kind} record {name}: {e}")
                return None

            try:
                status = await reconciler.reconcile(resource)
            except asyncio.TimeoutError:
                logger.error(f"Reconciliation of {kind}/{name} timed out")
                return await reconciler.record_failure(
                    resource, ProviderError("reconciliation pass timed out")
                )
            except Exception as e:
                logger.error(f"Error reconciling {kind}/{name}: {e}", exc_info=True)
                return None

            if status.succeeded:
                reason = status.ready_condition.reason.value
                logger.info(f"Reconciled {kind}/{name}: {reason}")
            return status

    async def trigger_reconciliation(self, kind: str, name: str):
        """Manually trigger reconciliation for a specific resource."""
        logger.info(f"Manually triggering reconciliation for {kind}/{name}")
        await self.store.mark_for_reconciliation(kind, name)
