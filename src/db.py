"""
Database Manager - PostgreSQL schema and operations.

Stores managed resources, ProviderConfigs, credential secrets and published
connection details, and schedules resources for reconciliation.
"""

import asyncpg
import base64
import json
import logging
from typing import Any, Dict, List, Optional

from apis.common import ConditionReason, ConditionType, ManagedResource
from apis.provider import ProviderConfig
from migrate import run_migrations
from store import ResourceStore

logger = logging.getLogger(__name__)

# Seconds until an Available resource is checked for drift again
RESYNC_DELAY = 300
# Seconds until a resource in Creating or Deleting is checked again
TRANSITION_DELAY = 10


def _encode_data(data: Dict[str, bytes]) -> str:
    return json.dumps(
        {key: base64.b64encode(value).decode() for key, value in data.items()}
    )


def _decode_data(raw: Any) -> Dict[str, bytes]:
    data = json.loads(raw) if isinstance(raw, str) else (raw or {})
    return {key: base64.b64decode(value) for key, value in data.items()}


class DatabaseManager(ResourceStore):
    """Manages PostgreSQL database operations for the provider."""

    def __init__(
        self,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        min_pool_size: int = 2,
        max_pool_size: int = 10,
        backoff_base_delay: int = 30,
        backoff_max_delay: int = 3600,
        backoff_jitter_factor: float = 0.1,
    ):
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.backoff_base_delay = backoff_base_delay
        self.backoff_max_delay = backoff_max_delay
        self.backoff_jitter_factor = backoff_jitter_factor
        self.pool: Optional[asyncpg.Pool] = None

    async def connect(self):
        """Establish connection pool to PostgreSQL."""
        self.pool = await asyncpg.create_pool(
            host=self.host,
            port=self.port,
            database=self.database,
            user=self.user,
            password=self.password,
            min_size=self.min_pool_size,
            max_size=self.max_pool_size,
            command_timeout=60,  # Query timeout
        )
        logger.info(
            f"Connected to PostgreSQL (pool: {self.min_pool_size}-{self.max_pool_size})"
        )

    async def close(self):
        """Close the connection pool."""
        if self.pool:
            await self.pool.close()
            logger.info("Closed PostgreSQL connection")

    def _ensure_connected(self) -> None:
        """Ensure the database connection pool is established."""
        if self.pool is None:
            raise RuntimeError(
                "Database not connected. Call connect() before performing operations."
            )

    async def initialize_schema(self) -> None:
        """Apply database migrations to bring schema up to date."""
        self._ensure_connected()
        await run_migrations(self.pool)
        logger.info("Database schema initialized")

    # ==================== ProviderConfig Methods ====================

    async def apply_provider_config(self, provider_config: ProviderConfig) -> None:
        """Create or replace a ProviderConfig."""
        self._ensure_connected()
        spec = provider_config.spec.model_dump(mode="json", by_alias=True)
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO provider_configs (name, spec)
                VALUES ($1, $2)
                ON CONFLICT (name)
                DO UPDATE SET spec = EXCLUDED.spec, updated_at = NOW()
                """,
                provider_config.metadata.name,
                json.dumps(spec),
            )
        logger.info(f"Applied ProviderConfig {provider_config.metadata.name}")

    async def get_provider_config(self, name: str) -> Optional[ProviderConfig]:
        """Get a ProviderConfig by name."""
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT name, spec FROM provider_configs WHERE name = $1",
                name,
            )
            if not row:
                return None

            spec = json.loads(row["spec"]) if row["spec"] else {}
            return ProviderConfig.model_validate(
                {"metadata": {"name": row["name"]}, "spec": spec}
            )

    # ==================== Secret Methods ====================

    async def put_secret(
        self, namespace: str, name: str, data: Dict[str, bytes]
    ) -> None:
        """Create or replace a credential secret."""
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO secrets (namespace, name, data)
                VALUES ($1, $2, $3)
                ON CONFLICT (namespace, name)
                DO UPDATE SET data = EXCLUDED.data, updated_at = NOW()
                """,
                namespace,
                name,
                _encode_data(data),
            )
        logger.info(f"Stored secret {namespace}/{name}")

    async def get_secret(self, namespace: str, name: str) -> Optional[Dict[str, bytes]]:
        """Get the decoded data of a secret."""
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            raw = await conn.fetchval(
                "SELECT data FROM secrets WHERE namespace = $1 AND name = $2",
                namespace,
                name,
            )
            if raw is None:
                return None
            return _decode_data(raw)

    # ==================== Managed Resource Methods ====================

    async def apply_resource(self, resource: ManagedResource) -> int:
        """
        Create a managed resource or replace its declared state.

        The generation is bumped when the spec changes. Status and the
        external name are left untouched.

        Returns:
            The resource ID
        """
        self._ensure_connected()
        record = resource.to_record()
        async with self.pool.acquire() as conn:
            resource_id = await conn.fetchval(
                """
                INSERT INTO managed_resources (
                    kind, name, api_version, labels, spec, next_reconcile_time
                )
                VALUES ($1, $2, $3, $4, $5, NOW())
                ON CONFLICT (kind, name) DO UPDATE
                SET api_version = EXCLUDED.api_version,
                    labels = EXCLUDED.labels,
                    spec = EXCLUDED.spec,
                    generation = CASE
                        WHEN managed_resources.spec = EXCLUDED.spec
                        THEN managed_resources.generation
                        ELSE managed_resources.generation + 1
                    END,
                    next_reconcile_time = NOW(),
                    updated_at = NOW()
                RETURNING id
                """,
                resource.kind,
                resource.metadata.name,
                resource.api_version,
                json.dumps(record["metadata"]["labels"]),
                json.dumps(record["spec"]),
            )

            logger.info(
                f"Applied {resource.kind} {resource.metadata.name} "
                f"with ID {resource_id}"
            )
            return resource_id

    async def request_deletion(self, kind: str, name: str) -> None:
        """Mark a managed resource for deletion."""
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE managed_resources
                SET deletion_requested = TRUE,
                    next_reconcile_time = NOW(),
                    updated_at = NOW()
                WHERE kind = $1 AND name = $2
                """,
                kind,
                name,
            )

            logger.info(f"Marked {kind} {name} for deletion")

    async def get_resource(self, kind: str, name: str) -> Optional[Dict[str, Any]]:
        """Get a managed resource record by kind and name."""
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM managed_resources WHERE kind = $1 AND name = $2",
                kind,
                name,
            )
            if not row:
                return None

            return self._parse_resource_row(row)

    async def list_resources(
        self, kind: Optional[str] = None, limit: int = 100
    ) -> List[Dict[str, Any]]:
        """List managed resource records with an optional kind filter."""
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            query = "SELECT * FROM managed_resources WHERE 1=1"
            params = []
            param_count = 0

            if kind:
                param_count += 1
                query += f" AND kind = ${param_count}"
                params.append(kind)

            param_count += 1
            query += f" ORDER BY kind, name LIMIT ${param_count}"
            params.append(limit)

            rows = await conn.fetch(query, *params)
            return [self._parse_resource_row(row) for row in rows]

    async def get_resources_needing_reconciliation(
        self, kinds: List[str], limit: int = 10
    ) -> List[Dict[str, Any]]:
        """
        Get resources that are due a reconciliation pass.

        Deletions go first, then resources never reconciled, then the rest by
        due time.
        """
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT *
                FROM managed_resources
                WHERE kind = ANY($1::text[])
                  AND (
                    next_reconcile_time IS NULL
                    OR next_reconcile_time <= NOW()
                  )
                ORDER BY
                    deletion_requested DESC,
                    last_reconcile_time ASC NULLS FIRST,
                    next_reconcile_time ASC NULLS FIRST
                LIMIT $2
                """,
                list(kinds),
                limit,
            )

            return [self._parse_resource_row(row) for row in rows]

    async def update_status(self, resource: ManagedResource) -> None:
        """
        Persist the status and external name of a resource and schedule its
        next pass.

        A failed pass (Synced is False) is retried with exponential backoff
        and jitter; a successful one resets the retry count.
        """
        self._ensure_connected()
        record = resource.to_record()
        synced = resource.get_condition(ConditionType.SYNCED)
        failed = synced is not None and synced.status == "False"

        if failed:
            schedule = """
                retry_count = retry_count + 1,
                next_reconcile_time = NOW() + (
                    INTERVAL '1 second' * LEAST(
                        $5 * POWER(2, LEAST(retry_count, 10)),
                        $6
                    ) * (1 + (random() * 2 - 1) * $7)
                )
            """
            params = [
                self.backoff_base_delay,
                self.backoff_max_delay,
                self.backoff_jitter_factor,
            ]
        else:
            delay = (
                RESYNC_DELAY
                if resource.ready_reason() == ConditionReason.AVAILABLE
                else TRANSITION_DELAY
            )
            schedule = """
                retry_count = 0,
                next_reconcile_time = NOW() + INTERVAL '1 second' * $5
            """
            params = [delay]

        async with self.pool.acquire() as conn:
            await conn.execute(
                f"""
                UPDATE managed_resources
                SET status = $1,
                    external_name = $2,
                    last_reconcile_time = NOW(),
                    updated_at = NOW(),
                    {schedule}
                WHERE kind = $3 AND name = $4
                """,
                json.dumps(record["status"]),
                resource.metadata.external_name,
                resource.kind,
                resource.metadata.name,
                *params,
            )

    async def publish_connection_details(
        self, resource: ManagedResource, details: Dict[str, bytes]
    ) -> None:
        """Store connection details returned when the resource was created."""
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO connection_secrets (resource_id, data)
                SELECT id, $3 FROM managed_resources
                WHERE kind = $1 AND name = $2
                ON CONFLICT (resource_id)
                DO UPDATE SET data = EXCLUDED.data, updated_at = NOW()
                """,
                resource.kind,
                resource.metadata.name,
                _encode_data(details),
            )
        logger.info(
            f"Published connection details for {resource.kind} "
            f"{resource.metadata.name}"
        )

    async def get_connection_details(
        self, kind: str, name: str
    ) -> Optional[Dict[str, bytes]]:
        """Get the connection details published for a resource."""
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            raw = await conn.fetchval(
                """
                SELECT c.data
                FROM connection_secrets c
                JOIN managed_resources r ON r.id = c.resource_id
                WHERE r.kind = $1 AND r.name = $2
                """,
                kind,
                name,
            )
            if raw is None:
                return None
            return _decode_data(raw)

    async def finalize(self, resource: ManagedResource) -> None:
        """Permanently delete a resource and its connection details."""
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            result = await conn.fetchval(
                """
                DELETE FROM managed_resources
                WHERE kind = $1 AND name = $2 AND deletion_requested
                RETURNING id
                """,
                resource.kind,
                resource.metadata.name,
            )
            if result:
                logger.info(f"Finalized {resource.kind} {resource.metadata.name}")

    async def mark_for_reconciliation(self, kind: str, name: str) -> None:
        """Manually trigger reconciliation for a resource."""
        self._ensure_connected()
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE managed_resources
                SET next_reconcile_time = NOW()
                WHERE kind = $1 AND name = $2
                """,
                kind,
                name,
            )

    def _parse_resource_row(self, row: asyncpg.Record) -> Dict[str, Any]:
        """
        Parse a managed resource row into a manifest-shaped record.

        Args:
            row: An asyncpg.Record from the managed_resources table

        Returns:
            A dictionary with apiVersion, kind, metadata, spec and status,
            ready to be parsed by the kind registry
        """
        result = dict(row)

        def _json(value: Any) -> Dict[str, Any]:
            if isinstance(value, str):
                return json.loads(value)
            return value or {}

        return {
            "apiVersion": result.get("api_version") or "",
            "kind": result["kind"],
            "metadata": {
                "name": result["name"],
                "externalName": result.get("external_name") or "",
                "generation": result.get("generation", 1),
                "deletionRequested": bool(result.get("deletion_requested")),
                "labels": _json(result.get("labels")),
            },
            "spec": _json(result.get("spec")),
            "status": _json(result.get("status")),
        }
