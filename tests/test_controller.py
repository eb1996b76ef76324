"""Unit tests for controller.py - Reconciliation driver and loop."""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from apis.common import ConditionReason, ConditionType, creating
from config import Config
from controller import Controller, ManagedReconciler
from errors import (
    ConnectionFailed,
    CreateFailed,
    DeleteFailed,
    NotThisKind,
    ObserveFailed,
    ProviderError,
)
from plugins.managed.base import (
    ExternalCreation,
    ExternalObservation,
    ExternalUpdate,
)
from plugins.managed.cluster import ClusterConnector
from plugins.managed.initbundle import InitBundleConnector
from plugins.registry import KindRegistry
from apis.cluster import Cluster
from apis.initbundle import InitBundle


@pytest.fixture
def client():
    """Mock external client: the resource exists and is up to date."""
    client = MagicMock()
    client.observe = AsyncMock(
        return_value=ExternalObservation(
            resource_exists=True, resource_up_to_date=True
        )
    )
    client.create = AsyncMock(return_value=ExternalCreation())
    client.update = AsyncMock(return_value=ExternalUpdate())
    client.delete = AsyncMock()
    client.disconnect = AsyncMock()
    return client


@pytest.fixture
def connector(client):
    connector = MagicMock()
    connector.connect = AsyncMock(return_value=client)
    return connector


@pytest.fixture
def store():
    """Store mock recording every write."""
    store = AsyncMock()
    store.get_resources_needing_reconciliation = AsyncMock(return_value=[])
    return store


@pytest.fixture
def reconciler(connector, store):
    return ManagedReconciler("Cluster", Cluster, connector, store)


def _written(store):
    """The resource passed to the last update_status call."""
    return store.update_status.await_args[0][0]


def _reasons(resource):
    return {c.type: c.reason for c in resource.status.conditions}


@pytest.mark.asyncio
class TestManagedReconciler:
    """Tests for the reconciliation decision flow."""

    async def test_up_to_date(self, reconciler, client, store, make_cluster):
        """Test an in-sync resource becomes Available and Synced."""
        status = await reconciler.reconcile(make_cluster())

        assert status.succeeded
        assert status.exists
        assert status.ready_condition.reason == ConditionReason.AVAILABLE
        assert _reasons(_written(store)) == {
            ConditionType.READY: ConditionReason.AVAILABLE,
            ConditionType.SYNCED: ConditionReason.RECONCILE_SUCCESS,
        }
        client.create.assert_not_awaited()
        client.update.assert_not_awaited()
        client.disconnect.assert_awaited_once()

    async def test_create(self, reconciler, client, store, make_cluster):
        """Test a missing resource is created and marked Creating."""
        client.observe.return_value = ExternalObservation(resource_exists=False)

        status = await reconciler.reconcile(make_cluster())

        client.create.assert_awaited_once()
        assert status.ready_condition.reason == ConditionReason.CREATING
        store.publish_connection_details.assert_not_awaited()

    async def test_create_publishes_connection_details(
        self, reconciler, client, store, make_init_bundle
    ):
        reconciler.resource_class = InitBundle
        client.observe.return_value = ExternalObservation(resource_exists=False)
        client.create.return_value = ExternalCreation(
            connection_details={"kubectlBundle": b"secret"}
        )

        await reconciler.reconcile(make_init_bundle())

        details = store.publish_connection_details.await_args[0][1]
        assert details == {"kubectlBundle": b"secret"}

    async def test_create_keeps_external_name(
        self, reconciler, client, store, make_cluster
    ):
        """Test identifiers set by create are persisted."""
        client.observe.return_value = ExternalObservation(resource_exists=False)

        async def create(resource):
            resource.metadata.external_name = "prod"
            resource.status.at_provider.id = "c-1"
            return ExternalCreation()

        client.create.side_effect = create

        await reconciler.reconcile(make_cluster())

        written = _written(store)
        assert written.metadata.external_name == "prod"
        assert written.status.at_provider.id == "c-1"

    async def test_update(self, reconciler, client, make_cluster):
        client.observe.return_value = ExternalObservation(
            resource_exists=True, resource_up_to_date=False, diff="drift"
        )

        status = await reconciler.reconcile(make_cluster())

        client.update.assert_awaited_once()
        assert status.diff == "drift"
        assert status.ready_condition.reason == ConditionReason.AVAILABLE

    async def test_update_recreate_pending(self, reconciler, client, make_cluster):
        """Test a replaced resource is reported as Deleting."""
        client.observe.return_value = ExternalObservation(
            resource_exists=True, resource_up_to_date=False
        )
        client.update.return_value = ExternalUpdate(recreate_pending=True)

        status = await reconciler.reconcile(make_cluster())

        assert status.ready_condition.reason == ConditionReason.DELETING

    async def test_delete(self, reconciler, client, store, make_cluster):
        """Test a deletion request deletes an existing external resource."""
        cluster = make_cluster()
        cluster.metadata.deletion_requested = True

        status = await reconciler.reconcile(cluster)

        client.delete.assert_awaited_once()
        store.finalize.assert_not_awaited()
        assert status.ready_condition.reason == ConditionReason.DELETING
        assert _written(store).get_condition(ConditionType.SYNCED).status == "True"

    async def test_finalize(self, reconciler, client, store, make_cluster):
        """Test a deleted resource whose external counterpart is gone is finalized."""
        client.observe.return_value = ExternalObservation(resource_exists=False)
        cluster = make_cluster()
        cluster.metadata.deletion_requested = True

        status = await reconciler.reconcile(cluster)

        client.delete.assert_not_awaited()
        store.finalize.assert_awaited_once()
        store.update_status.assert_not_awaited()
        assert status.succeeded
        assert not status.exists

    async def test_input_not_mutated(self, reconciler, client, make_cluster):
        client.observe.return_value = ExternalObservation(resource_exists=False)
        cluster = make_cluster()

        await reconciler.reconcile(cluster)

        assert cluster.status.conditions == []

    async def test_wrong_kind(self, reconciler, connector, make_init_bundle):
        """Test resources of another kind are refused before connecting."""
        with pytest.raises(NotThisKind):
            await reconciler.reconcile(make_init_bundle())

        connector.connect.assert_not_awaited()

    async def test_connect_failure(self, reconciler, connector, client, store, make_cluster):
        """Test a connection failure is recorded without touching Central."""
        connector.connect.side_effect = ConnectionFailed("cannot create central client")

        status = await reconciler.reconcile(make_cluster())

        assert not status.succeeded
        assert "cannot create central client" in status.error
        client.observe.assert_not_awaited()
        client.disconnect.assert_not_awaited()
        assert _reasons(_written(store)) == {
            ConditionType.READY: ConditionReason.UNAVAILABLE,
            ConditionType.SYNCED: ConditionReason.RECONCILE_ERROR,
        }

    @pytest.mark.parametrize(
        "step,error",
        [
            ("observe", ObserveFailed("cannot observe cluster")),
            ("create", CreateFailed("cannot create cluster")),
        ],
    )
    async def test_failure_persists_conditions_only(
        self, reconciler, client, store, make_cluster, step, error
    ):
        """Test observations gathered in a failed pass are discarded."""
        client.observe.return_value = ExternalObservation(resource_exists=False)

        async def fail(resource):
            resource.metadata.external_name = "leaked"
            resource.status.at_provider.id = "leaked"
            raise error

        getattr(client, step).side_effect = fail

        status = await reconciler.reconcile(make_cluster())

        written = _written(store)
        assert status.error == str(error)
        assert written.metadata.external_name == ""
        assert written.status.at_provider.id == ""
        synced = written.get_condition(ConditionType.SYNCED)
        assert synced.status == "False"
        assert synced.message == str(error)
        client.disconnect.assert_awaited_once()

    async def test_delete_failure(self, reconciler, client, store, make_cluster):
        client.delete.side_effect = DeleteFailed("cannot delete cluster")
        cluster = make_cluster()
        cluster.metadata.deletion_requested = True

        status = await reconciler.reconcile(cluster)

        assert not status.succeeded
        store.finalize.assert_not_awaited()
        client.disconnect.assert_awaited_once()

    async def test_disconnect_error_is_logged(self, reconciler, client, make_cluster):
        """Test a failing disconnect does not fail the pass."""
        client.disconnect.side_effect = ProviderError("cannot close central client")

        status = await reconciler.reconcile(make_cluster())

        assert status.succeeded

    async def test_disconnect_on_cancellation(self, reconciler, client, make_cluster):
        started = asyncio.Event()

        async def hang(resource):
            started.set()
            await asyncio.sleep(10)

        client.observe.side_effect = hang
        task = asyncio.create_task(reconciler.reconcile(make_cluster()))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        client.disconnect.assert_awaited_once()

    async def test_pass_timeout(self, reconciler, client, make_cluster):
        """Test the pass is bounded and the connection released."""
        reconciler.pass_timeout = 0.01

        async def hang(resource):
            await asyncio.sleep(10)

        client.observe.side_effect = hang

        with pytest.raises(asyncio.TimeoutError):
            await reconciler.reconcile(make_cluster())
        client.disconnect.assert_awaited_once()

    async def test_reads_previous_conditions(self, reconciler, client, make_cluster):
        """Test the client sees the conditions persisted by the previous pass."""
        seen = []

        async def observe(resource):
            seen.append(resource.ready_reason())
            return ExternalObservation(resource_exists=True, resource_up_to_date=True)

        client.observe.side_effect = observe
        cluster = make_cluster()
        cluster.set_conditions(creating())

        await reconciler.reconcile(cluster)

        assert seen == [ConditionReason.CREATING]


@pytest.fixture
def registry():
    registry = KindRegistry()
    registry.register_connector(ClusterConnector)
    registry.register_connector(InitBundleConnector)
    return registry


@pytest.fixture
def controller(store, registry, connector):
    config = Config.default()
    config.controller.reconcile_interval = 1
    config.controller.max_concurrent_reconciles = 2
    controller = Controller(store, registry=registry, config=config)
    for reconciler in controller.reconcilers.values():
        reconciler.connector = connector
    return controller


@pytest.mark.asyncio
class TestController:
    """Tests for the Controller loop."""

    async def test_init(self, controller, store, registry):
        """Test a reconciler is built per registered kind."""
        assert controller.store is store
        assert controller.registry is registry
        assert set(controller.reconcilers) == {"Cluster", "InitBundle"}
        assert controller.reconcile_interval == 1
        assert controller.running is False

    async def test_disabled_kinds(self, store, registry):
        config = Config.default()
        config.plugins.enabled_kinds = ["InitBundle"]

        controller = Controller(store, registry=registry, config=config)

        assert list(controller.reconcilers) == ["InitBundle"]

    async def test_run_once_nothing_due(self, controller, store):
        assert await controller.run_once() == []

        kinds = store.get_resources_needing_reconciliation.await_args[0][0]
        assert set(kinds) == {"Cluster", "InitBundle"}
        assert store.get_resources_needing_reconciliation.await_args[1]["limit"] == 4

    async def test_run_once_dispatches_by_kind(
        self, controller, store, client, make_cluster, make_init_bundle
    ):
        store.get_resources_needing_reconciliation.return_value = [
            make_cluster().to_record(),
            make_init_bundle().to_record(),
        ]

        results = await controller.run_once()

        assert len(results) == 2
        assert all(r.succeeded for r in results)
        assert client.observe.await_count == 2
        assert store.update_status.await_count == 2

    async def test_unknown_kind_skipped(self, controller, store, client):
        store.get_resources_needing_reconciliation.return_value = [
            {"kind": "Deployment", "metadata": {"name": "x"}}
        ]

        assert await controller.run_once() == [None]
        client.observe.assert_not_awaited()

    async def test_invalid_record_skipped(self, controller, store, client):
        """Test a record that does not parse is logged and skipped."""
        store.get_resources_needing_reconciliation.return_value = [
            {"kind": "Cluster", "metadata": {"name": "x"}, "spec": {}}
        ]

        assert await controller.run_once() == [None]
        client.observe.assert_not_awaited()

    async def test_timeout_recorded_as_failure(
        self, controller, store, client, make_cluster
    ):
        controller.reconcilers["Cluster"].pass_timeout = 0.01

        async def hang(resource):
            await asyncio.sleep(10)

        client.observe.side_effect = hang
        store.get_resources_needing_reconciliation.return_value = [
            make_cluster().to_record()
        ]

        results = await controller.run_once()

        assert results[0].error == "reconciliation pass timed out"
        assert _written(store).get_condition(ConditionType.SYNCED).status == "False"

    async def test_unexpected_error_isolated(
        self, controller, store, client, make_cluster
    ):
        """Test one failing pass does not abort the others."""
        client.observe.side_effect = [
            RuntimeError("bug"),
            ExternalObservation(resource_exists=True, resource_up_to_date=True),
        ]
        store.get_resources_needing_reconciliation.return_value = [
            make_cluster("a").to_record(),
            make_cluster("b").to_record(),
        ]

        results = await controller.run_once()

        assert results.count(None) == 1
        assert sum(1 for r in results if r is not None and r.succeeded) == 1

    async def test_trigger_reconciliation(self, controller, store):
        await controller.trigger_reconciliation("Cluster", "prod")

        store.mark_for_reconciliation.assert_awaited_once_with("Cluster", "prod")

    async def test_start_stop(self, controller, store):
        """Test the loop runs until stopped."""
        task = asyncio.create_task(controller.start())
        await asyncio.sleep(0.05)
        assert controller.running

        await controller.stop()
        await asyncio.wait_for(task, timeout=1)

        assert not controller.running
        store.get_resources_needing_reconciliation.assert_awaited()

    async def test_loop_survives_errors(self, controller, store):
        store.get_resources_needing_reconciliation.side_effect = RuntimeError("db down")

        async def sleep(seconds):
            controller.running = False

        controller._sleep = AsyncMock(side_effect=sleep)
        controller.running = True

        await controller._reconciliation_loop()

        controller._sleep.assert_awaited_once_with(10)


@pytest.mark.asyncio
class TestMemoryStoreIntegration:
    """Full passes against the in-memory store."""

    async def test_create_then_observe(self, memory_store, client, connector, make_cluster):
        cluster = make_cluster()
        memory_store.add_resource(cluster)
        reconciler = ManagedReconciler("Cluster", Cluster, connector, memory_store)
        client.observe.return_value = ExternalObservation(resource_exists=False)

        async def create(resource):
            resource.metadata.external_name = "prod"
            return ExternalCreation()

        client.create.side_effect = create

        await reconciler.reconcile(cluster)

        stored = memory_store.get_resource("Cluster", "prod")
        assert stored["metadata"]["externalName"] == "prod"
        ready = [c for c in stored["status"]["conditions"] if c["type"] == "Ready"]
        assert ready[0]["reason"] == "Creating"

    async def test_finalize_removes_record(
        self, memory_store, client, connector, make_cluster
    ):
        cluster = make_cluster()
        cluster.metadata.deletion_requested = True
        memory_store.add_resource(cluster)
        reconciler = ManagedReconciler("Cluster", Cluster, connector, memory_store)
        client.observe.return_value = ExternalObservation(resource_exists=False)

        await reconciler.reconcile(cluster)

        assert memory_store.get_resource("Cluster", "prod") is None
