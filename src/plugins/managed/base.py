"""
Managed Resource Plugin Base - interfaces implemented by every managed kind.

A managed kind ships a Connector and an ExternalClient. The connector turns a
desired-state record into a connected client; the client observes, creates,
updates or deletes the external resource during one reconciliation pass and
is disconnected by the caller when the pass ends.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Type

import aiohttp
from pydantic import BaseModel

from apis.common import ManagedResource
from clients import central
from clients.central import CentralAPIError, CentralConnection
from config import CentralConfig
from credentials import extract_credentials
from errors import (
    ConfigNotFound,
    ConnectionFailed,
    CredentialResolutionFailed,
    CredentialSourceUnavailable,
    ProviderError,
)
from store import ResourceStore

logger = logging.getLogger(__name__)

ERR_GET_PC = "cannot get ProviderConfig"
ERR_GET_CREDS = "cannot get credentials"

# Failures of the transport while opening a connection.
TRANSPORT_ERRORS = (
    ValueError,
    aiohttp.ClientError,
    asyncio.TimeoutError,
    CentralAPIError,
)


@dataclass
class ExternalObservation:
    """Result of observing the external resource."""

    resource_exists: bool = False
    resource_up_to_date: bool = False
    diff: str = ""


@dataclass
class ExternalCreation:
    """Result of creating the external resource."""

    connection_details: Dict[str, bytes] = field(default_factory=dict)


@dataclass
class ExternalUpdate:
    """
    Result of updating the external resource.

    ``recreate_pending`` is set when the kind cannot be updated in place and
    the external resource was deleted so that the next pass recreates it.
    """

    recreate_pending: bool = False


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, (dict, list, tuple, set)) and not value)


def diff_values(desired: Any, observed: Any, path: str = "") -> List[str]:
    """
    Deep-compare two JSON-like values.

    An absent value and an empty collection compare equal.

    Returns:
        One line per differing leaf, naming its path.
    """
    if _is_empty(desired) and _is_empty(observed):
        return []

    if isinstance(desired, dict) and isinstance(observed, dict):
        lines = []
        for key in sorted(set(desired) | set(observed)):
            child = f"{path}.{key}" if path else str(key)
            lines.extend(diff_values(desired.get(key), observed.get(key), child))
        return lines

    if (
        isinstance(desired, list)
        and isinstance(observed, list)
        and len(desired) == len(observed)
    ):
        lines = []
        for index, (a, b) in enumerate(zip(desired, observed)):
            lines.extend(diff_values(a, b, f"{path}[{index}]"))
        return lines

    if desired != observed:
        return [f"  {path}: -{desired!r} +{observed!r}"]
    return []


def is_up_to_date(
    kind_label: str, desired: BaseModel, observed: BaseModel
) -> Tuple[bool, str]:
    """
    Compare declared parameters with the parameters projected from Central.

    Returns:
        Tuple of (up_to_date, diff). The diff names fields by manifest key.
    """
    lines = diff_values(
        desired.model_dump(mode="json", by_alias=True),
        observed.model_dump(mode="json", by_alias=True),
    )
    if lines:
        return False, f"Observed difference in {kind_label}\n" + "\n".join(lines)
    return True, ""


class ExternalClient(ABC):
    """
    Per-pass client for one external resource.

    Methods run strictly in sequence within a pass: observe first, then at
    most one of create, update or delete.
    """

    def __init__(self, connection: Optional[CentralConnection]):
        self.connection = connection

    @abstractmethod
    async def observe(self, resource: ManagedResource) -> ExternalObservation:
        """
        Fetch the external resource and compare it with the desired state.

        Sets ``status.at_provider`` on the resource when it exists.

        Raises:
            ObserveFailed: If Central could not be queried.
        """
        pass

    @abstractmethod
    async def create(self, resource: ManagedResource) -> ExternalCreation:
        """
        Create the external resource.

        Sets the external name and observation on success.

        Raises:
            CreateFailed: If Central rejected or failed the request.
        """
        pass

    @abstractmethod
    async def update(self, resource: ManagedResource) -> ExternalUpdate:
        """
        Bring a drifted external resource back to the desired state.

        Raises:
            UpdateFailed: If Central rejected or failed the request.
        """
        pass

    @abstractmethod
    async def delete(self, resource: ManagedResource) -> None:
        """
        Delete the external resource by the identifier last observed.

        A resource Central no longer knows is treated as deleted.

        Raises:
            DeleteFailed: If Central rejected or failed the request.
        """
        pass

    async def disconnect(self) -> None:
        """Release the connection. Safe to call on a closed client."""
        connection, self.connection = self.connection, None
        if connection is None:
            return
        try:
            await connection.close()
        except aiohttp.ClientError as e:
            raise ProviderError(f"{central.ERR_CLOSE_CLIENT}: {e}") from e


class Connector(ABC):
    """
    Produces a connected ExternalClient for a managed resource.

    Subclasses declare the kind they handle and build the kind's client.
    Connectors hold no per-pass state and may serve concurrent passes.
    """

    kind: str = ""
    resource_class: Type[ManagedResource] = ManagedResource

    def __init__(self, store: ResourceStore, config: Optional[CentralConfig] = None):
        self.store = store
        self.config = config or CentralConfig()

    @abstractmethod
    def new_client(self, connection: CentralConnection) -> ExternalClient:
        """Bind a kind-specific client to an open connection."""
        pass

    async def connect(self, resource: ManagedResource) -> ExternalClient:
        """
        Resolve the ProviderConfig and credentials and connect to Central.

        Raises:
            ConfigNotFound: If the referenced ProviderConfig does not exist.
            CredentialResolutionFailed: If no usable token could be read.
            ConnectionFailed: If Central could not be reached.
        """
        ref = resource.spec.provider_config_ref.name
        provider_config = await self.store.get_provider_config(ref)
        if provider_config is None:
            raise ConfigNotFound(f"{ERR_GET_PC}: ProviderConfig {ref!r} not found")

        try:
            token = await extract_credentials(
                provider_config.spec.credentials, self.store
            )
            token_str = token.decode()
        except CredentialSourceUnavailable as e:
            raise CredentialResolutionFailed(f"{ERR_GET_CREDS}: {e}") from e
        except UnicodeDecodeError as e:
            raise CredentialResolutionFailed(
                f"{ERR_GET_CREDS}: token is not valid UTF-8"
            ) from e

        try:
            connection = await central.connect(
                provider_config.spec.endpoint,
                token_str,
                insecure_skip_tls_verify=provider_config.spec.insecure_skip_tls_verify,
                config=self.config,
            )
        except TRANSPORT_ERRORS as e:
            raise ConnectionFailed(f"{central.ERR_NEW_CLIENT}: {e}") from e

        return self.new_client(connection)
