"""
Central API client.

Asynchronous client for the subset of the Central REST API used by the
provider. Every request carries the bearer token; connection errors, request
timeouts and gateway errors are retried with exponential backoff up to a
bounded number of attempts. The terminal failure is raised unchanged.

POST requests create resources in Central and are only resent when the
previous attempt provably never reached it: the connection could not be
opened, or Central answered 503.
"""

import asyncio
import json
import logging
import ssl
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlsplit

import aiohttp

from config import CentralConfig

logger = logging.getLogger(__name__)

ERR_NEW_CLIENT = "cannot create central client"
ERR_CLOSE_CLIENT = "cannot close central client"

DEFAULT_PORT = 443
RETRYABLE_STATUSES = frozenset({502, 503, 504})
# Statuses after which a POST is known not to have been processed
RESENDABLE_STATUSES = frozenset({503})
NON_IDEMPOTENT_METHODS = frozenset({"POST"})

# gRPC status code carried in gateway error bodies
GRPC_NOT_FOUND = 5


class CentralAPIError(Exception):
    """Central answered with a non-success status."""

    def __init__(self, status: int, message: str, code: Optional[int] = None):
        super().__init__(f"central returned {status}: {message}")
        self.status = status
        self.message = message
        self.code = code

    @property
    def not_found(self) -> bool:
        return self.status == 404 or self.code == GRPC_NOT_FOUND


def parse_endpoint(endpoint: str) -> Tuple[str, int]:
    """
    Split a Central endpoint into server name and port.

    Accepts ``host``, ``host:port`` and ``https://host[:port]``.

    Raises:
        ValueError: If the endpoint is empty, not HTTPS or malformed.
    """
    value = (endpoint or "").strip()
    if not value:
        raise ValueError("endpoint cannot be empty")
    if "://" not in value:
        value = f"https://{value}"

    parts = urlsplit(value)
    if parts.scheme != "https":
        raise ValueError(f"endpoint {endpoint!r} must use https")
    if not parts.hostname:
        raise ValueError(f"could not parse endpoint {endpoint!r}")
    try:
        port = parts.port or DEFAULT_PORT
    except ValueError as e:
        raise ValueError(f"invalid port in endpoint {endpoint!r}") from e

    return parts.hostname, port


def _decode_body(text: str) -> Dict[str, Any]:
    if not text:
        return {}
    try:
        body = json.loads(text)
    except json.JSONDecodeError:
        return {"message": text[:200]}
    return body if isinstance(body, dict) else {}


class CentralConnection:
    """
    A connection to one Central instance.

    Owned by a single external client for the duration of one reconciliation
    pass and closed at the end of it.
    """

    def __init__(
        self,
        endpoint: str,
        token: str,
        insecure_skip_tls_verify: bool = False,
        config: Optional[CentralConfig] = None,
    ):
        self.server_name, self.port = parse_endpoint(endpoint)
        host = f"[{self.server_name}]" if ":" in self.server_name else self.server_name
        self.base_url = f"https://{host}:{self.port}"
        self.config = config or CentralConfig()
        self._token = token
        self._ssl = ssl.create_default_context()
        if insecure_skip_tls_verify:
            self._ssl.check_hostname = False
            self._ssl.verify_mode = ssl.CERT_NONE
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def closed(self) -> bool:
        return self._session is None or self._session.closed

    async def open(self) -> None:
        """Create the HTTP session and verify Central answers."""
        if self.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout),
            )
        await self.ping()

    async def close(self) -> None:
        """Close the HTTP session. Closing twice is a no-op."""
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/json",
        }

    async def _send(
        self, method: str, path: str, payload: Optional[Dict[str, Any]] = None
    ) -> Tuple[int, Dict[str, Any]]:
        """Send one request and return its status and decoded body."""
        async with self._session.request(
            method,
            f"{self.base_url}{path}",
            json=payload,
            headers=self._headers(),
            ssl=self._ssl,
            server_hostname=self.server_name,
        ) as response:
            text = await response.text()
            return response.status, _decode_body(text)

    async def _request(
        self, method: str, path: str, payload: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        if self.closed:
            raise RuntimeError("central connection is not open")

        idempotent = method not in NON_IDEMPOTENT_METHODS
        retryable_statuses = RETRYABLE_STATUSES if idempotent else RESENDABLE_STATUSES
        delay = self.config.initial_backoff
        attempts = max(1, self.config.max_attempts)
        for attempt in range(1, attempts + 1):
            try:
                status, body = await self._send(method, path, payload)
            except aiohttp.ClientConnectorError as e:
                # The connection was never opened.
                if attempt == attempts:
                    raise
                logger.debug(
                    f"{method} {path} could not connect "
                    f"(attempt {attempt}/{attempts}): {e}"
                )
            except (aiohttp.ClientConnectionError, asyncio.TimeoutError) as e:
                if not idempotent or attempt == attempts:
                    raise
                logger.debug(
                    f"{method} {path} failed (attempt {attempt}/{attempts}): {e}"
                )
            else:
                if status < 300:
                    return body
                error = CentralAPIError(
                    status,
                    body.get("message") or body.get("error") or "",
                    body.get("code"),
                )
                if status not in retryable_statuses or attempt == attempts:
                    raise error
                logger.debug(
                    f"{method} {path} returned {status} "
                    f"(attempt {attempt}/{attempts})"
                )
            await asyncio.sleep(delay)
            delay *= 2

        raise RuntimeError("unreachable")

    # ==================== Endpoints ====================

    async def ping(self) -> None:
        await self._request("GET", "/v1/ping")

    async def get_clusters(self) -> List[Dict[str, Any]]:
        body = await self._request("GET", "/v1/clusters")
        return body.get("clusters") or []

    async def post_cluster(self, cluster: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        body = await self._request("POST", "/v1/clusters", cluster)
        return body.get("cluster")

    async def put_cluster(self, cluster: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        cluster_id = cluster.get("id")
        if not cluster_id:
            raise ValueError(f"cluster {cluster.get('name')!r} has no id")
        body = await self._request("PUT", f"/v1/clusters/{cluster_id}", cluster)
        return body.get("cluster")

    async def delete_cluster(self, cluster_id: str) -> None:
        await self._request("DELETE", f"/v1/clusters/{cluster_id}")

    async def get_init_bundles(self) -> List[Dict[str, Any]]:
        body = await self._request("GET", "/v1/cluster-init/init-bundles")
        return body.get("items") or []

    async def generate_init_bundle(self, name: str) -> Dict[str, Any]:
        return await self._request(
            "POST", "/v1/cluster-init/init-bundles", {"name": name}
        )

    async def revoke_init_bundle(
        self, ids: List[str], confirm_impacted_cluster_ids: Optional[List[str]] = None
    ) -> None:
        """
        Revoke init bundles.

        Raises:
            CentralAPIError: If Central reports a revocation error for any id.
        """
        body = await self._request(
            "PATCH",
            "/v1/cluster-init/init-bundles/revoke",
            {
                "ids": ids,
                "confirmImpactedClustersIds": confirm_impacted_cluster_ids or [],
            },
        )
        errors = body.get("initBundleRevocationErrors") or []
        if errors:
            details = "; ".join(f"{e.get('id')}: {e.get('error')}" for e in errors)
            raise CentralAPIError(409, f"revocation failed: {details}")


async def connect(
    endpoint: str,
    token: str,
    insecure_skip_tls_verify: bool = False,
    config: Optional[CentralConfig] = None,
) -> CentralConnection:
    """
    Open a verified connection to Central.

    The session is closed again if the handshake fails.
    """
    connection = CentralConnection(
        endpoint,
        token,
        insecure_skip_tls_verify=insecure_skip_tls_verify,
        config=config,
    )
    try:
        await connection.open()
    except BaseException:
        await connection.close()
        raise
    logger.debug(f"Connected to Central at {connection.base_url}")
    return connection
