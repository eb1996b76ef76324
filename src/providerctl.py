#!/usr/bin/env python3
"""
CLI tool for the StackRox provider
Runs reconciliation passes for the resources declared in a manifest file and
manages the records the provider reads from PostgreSQL
"""

import asyncio
import base64
import json
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import click
import yaml
from tabulate import tabulate

from apis.common import ManagedResource
from apis.provider import PROVIDER_CONFIG_KIND, ProviderConfig
from config import CentralConfig, ControllerConfig, DatabaseConfig
from controller import ManagedReconciler, PassStatus
from db import DatabaseManager
from errors import ProviderError
from plugins.registry import KindRegistry, get_registry, register_builtin_plugins
from store import MemoryStore

SECRET_KIND = "Secret"


def load_manifest(
    filename: str, registry: KindRegistry
) -> Tuple[MemoryStore, List[ManagedResource]]:
    """
    Load a multi-document YAML manifest into an in-memory store.

    ProviderConfig and Secret documents populate the store; every other
    document must be a managed resource of a registered kind.
    """
    with open(filename, "r") as f:
        documents = [doc for doc in yaml.safe_load_all(f) if doc]

    store = MemoryStore()
    resources = []
    for doc in documents:
        kind = doc.get("kind")
        try:
            if kind == PROVIDER_CONFIG_KIND:
                store.add_provider_config(ProviderConfig.model_validate(doc))
            elif kind == SECRET_KIND:
                metadata = doc.get("metadata") or {}
                store.add_secret(
                    metadata.get("namespace", "default"),
                    metadata["name"],
                    _secret_data(doc),
                )
            else:
                resource = registry.parse_resource(doc)
                store.add_resource(resource)
                resources.append(resource)
        except (KeyError, ValueError) as e:
            raise click.ClickException(f"Invalid {kind or 'document'}: {e}")

    return store, resources


def _secret_data(doc: Dict[str, Any]) -> Dict[str, bytes]:
    """Merge base64 ``data`` and plain ``stringData`` like Kubernetes does."""
    data = {
        key: base64.b64decode(value) for key, value in (doc.get("data") or {}).items()
    }
    for key, value in (doc.get("stringData") or {}).items():
        data[key] = str(value).encode()
    return data


def _reconciler(
    registry: KindRegistry, store: MemoryStore, kind: str, central: CentralConfig
) -> ManagedReconciler:
    connector = registry.get_connector_class(kind)(store, central)
    return ManagedReconciler(
        kind,
        connector.resource_class,
        connector,
        store,
        pass_timeout=ControllerConfig.from_env().pass_timeout,
    )


def _status_row(resource: ManagedResource, status: PassStatus) -> List[Any]:
    ready = status.ready_condition
    return [
        resource.kind,
        resource.metadata.name,
        "✓" if status.exists else "✗",
        ready.reason.value if ready else "",
        "✓" if status.succeeded else "✗",
        status.error or "",
    ]


def write_connection_details(
    directory: str, name: str, details: Dict[str, bytes]
) -> List[Path]:
    """
    Write connection details as one file per key under ``directory/name``.

    Files are readable by the owner only.
    """
    target = Path(directory) / name
    target.mkdir(parents=True, exist_ok=True)
    written = []
    for key, value in sorted(details.items()):
        path = target / key
        path.write_bytes(value)
        path.chmod(0o600)
        written.append(path)
    return written


def _condition_reason(record: Dict[str, Any], condition_type: str) -> str:
    for condition in (record.get("status") or {}).get("conditions") or []:
        if condition.get("type") == condition_type:
            return condition.get("reason", "")
    return ""


def _run_with_database(operation: Callable[[DatabaseManager], Awaitable[Any]]) -> Any:
    """Run an operation against the database named by the DB_* variables."""
    try:
        db_config = DatabaseConfig.from_env()
    except ValueError as e:
        raise click.ClickException(str(e))

    async def run():
        db = DatabaseManager(
            host=db_config.host,
            port=db_config.port,
            database=db_config.database,
            user=db_config.user,
            password=db_config.password,
            min_pool_size=1,
            max_pool_size=2,
        )
        await db.connect()
        try:
            return await operation(db)
        finally:
            await db.close()

    return asyncio.run(run())


@click.group()
@click.option(
    "--log-level",
    default="WARNING",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Log level for provider messages",
)
@click.pass_context
def cli(ctx, log_level):
    """StackRox provider CLI - reconcile Central resources from manifests"""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    register_builtin_plugins()
    ctx.obj = get_registry()


@cli.command()
@click.pass_obj
def kinds(registry):
    """List registered managed kinds"""
    rows = [
        [kind, registry.get_connector_class(kind).__name__]
        for kind in registry.list_kinds()
    ]
    click.echo(tabulate(rows, headers=["Kind", "Connector"], tablefmt="grid"))


@cli.command()
@click.argument("filename", type=click.Path(exists=True))
@click.option("--output", "-o", type=click.Choice(["table", "yaml"]), default="table")
@click.option(
    "--connection-details-dir",
    type=click.Path(file_okay=False),
    help="Directory to write published connection details to",
)
@click.pass_obj
def reconcile(registry, filename, output, connection_details_dir):
    """Run one reconciliation pass for every resource in a manifest"""
    store, resources = load_manifest(filename, registry)
    central = CentralConfig.from_env()

    async def run() -> List[PassStatus]:
        results = []
        for resource in resources:
            reconciler = _reconciler(registry, store, resource.kind, central)
            results.append(await reconciler.reconcile(resource))
        return results

    results = asyncio.run(run())

    if output == "yaml":
        records = [
            record
            for record in (
                store.get_resource(r.kind, r.metadata.name) for r in resources
            )
            if record is not None
        ]
        click.echo(yaml.safe_dump_all(records, default_flow_style=False))
    else:
        headers = ["Kind", "Name", "Exists", "Ready", "Synced", "Error"]
        rows = [_status_row(r, s) for r, s in zip(resources, results)]
        click.echo(tabulate(rows, headers=headers, tablefmt="grid"))

    for resource in resources:
        details = store.connection_details.get((resource.kind, resource.metadata.name))
        if not details:
            continue
        name = resource.metadata.name
        if connection_details_dir:
            for path in write_connection_details(connection_details_dir, name, details):
                click.echo(f"Wrote {path}")
        else:
            click.echo(
                f"\nConnection details published for {name}: "
                f"{', '.join(sorted(details))} "
                f"(not saved, use --connection-details-dir)",
                err=True,
            )

    if not all(s.succeeded for s in results):
        raise SystemExit(1)


@cli.command()
@click.argument("filename", type=click.Path(exists=True))
@click.pass_obj
def observe(registry, filename):
    """Observe resources in a manifest and show their drift"""
    store, resources = load_manifest(filename, registry)
    central = CentralConfig.from_env()
    failed = False

    async def observe_one(resource: ManagedResource) -> None:
        nonlocal failed
        connector = registry.get_connector_class(resource.kind)(store, central)
        name = f"{resource.kind}/{resource.metadata.name}"
        try:
            client = await connector.connect(resource)
        except ProviderError as e:
            click.echo(f"{name}: {e}", err=True)
            failed = True
            return
        try:
            observation = await client.observe(resource)
        except ProviderError as e:
            click.echo(f"{name}: {e}", err=True)
            failed = True
            return
        finally:
            await client.disconnect()

        if not observation.resource_exists:
            click.echo(f"{name}: not found")
        elif observation.resource_up_to_date:
            click.echo(f"{name}: up to date")
        else:
            click.echo(f"{name}: {observation.diff}")

        if observation.resource_exists:
            observed = resource.status.at_provider.model_dump(mode="json", by_alias=True)
            click.echo(json.dumps(observed, indent=2))

    async def run():
        for resource in resources:
            await observe_one(resource)

    asyncio.run(run())
    if failed:
        raise SystemExit(1)


# ==================== Database commands ====================


@cli.command()
@click.argument("filename", type=click.Path(exists=True))
@click.pass_obj
def apply(registry, filename):
    """Store the documents of a manifest in the provider database"""
    store, resources = load_manifest(filename, registry)

    async def run(db: DatabaseManager) -> None:
        await db.initialize_schema()
        for provider_config in store.provider_configs.values():
            await db.apply_provider_config(provider_config)
            click.echo(f"providerconfig/{provider_config.metadata.name} applied")
        for (namespace, name), data in store.secrets.items():
            await db.put_secret(namespace, name, data)
            click.echo(f"secret/{namespace}/{name} applied")
        for resource in resources:
            await db.apply_resource(resource)
            click.echo(f"{resource.kind.lower()}/{resource.metadata.name} applied")

    _run_with_database(run)


@cli.command()
@click.argument("kind")
@click.argument("name")
@click.pass_obj
def delete(registry, kind, name):
    """Request deletion of a managed resource"""
    if not registry.has_kind(kind):
        raise click.ClickException(f"Unknown kind: {kind}")

    async def run(db: DatabaseManager) -> bool:
        if await db.get_resource(kind, name) is None:
            return False
        await db.request_deletion(kind, name)
        return True

    if not _run_with_database(run):
        raise click.ClickException(f"{kind}/{name} not found")
    click.echo(f"{kind.lower()}/{name} marked for deletion")


@cli.command()
@click.option("--kind", "-k", default=None, help="Only list resources of this kind")
@click.option("--limit", default=100, show_default=True)
@click.option("--output", "-o", type=click.Choice(["table", "yaml"]), default="table")
def get(kind, limit, output):
    """List managed resources stored in the provider database"""

    async def run(db: DatabaseManager) -> List[Dict[str, Any]]:
        return await db.list_resources(kind=kind, limit=limit)

    records = _run_with_database(run)

    if output == "yaml":
        click.echo(yaml.safe_dump_all(records, default_flow_style=False))
        return

    rows = [
        [
            record["kind"],
            record["metadata"]["name"],
            record["metadata"]["externalName"],
            _condition_reason(record, "Ready"),
            _condition_reason(record, "Synced"),
            "✓" if record["metadata"]["deletionRequested"] else "",
        ]
        for record in records
    ]
    headers = ["Kind", "Name", "External Name", "Ready", "Synced", "Deleting"]
    click.echo(tabulate(rows, headers=headers, tablefmt="grid"))


@cli.command("connection-details")
@click.argument("kind")
@click.argument("name")
@click.option(
    "--output-dir",
    type=click.Path(file_okay=False),
    help="Directory to write the details to, one file per key",
)
def connection_details(kind, name, output_dir):
    """Show or save the connection details published for a resource"""

    async def run(db: DatabaseManager) -> Optional[Dict[str, bytes]]:
        return await db.get_connection_details(kind, name)

    details = _run_with_database(run)
    if not details:
        raise click.ClickException(f"No connection details for {kind}/{name}")

    if output_dir:
        for path in write_connection_details(output_dir, name, details):
            click.echo(f"Wrote {path}")
    else:
        rows = [[key, len(value)] for key, value in sorted(details.items())]
        click.echo(tabulate(rows, headers=["Key", "Bytes"], tablefmt="grid"))


if __name__ == "__main__":
    cli()
