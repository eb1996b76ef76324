"""
Resource Store - persistence interface used by the reconciliation driver.

The driver reads desired state, provider configurations and credential
secrets through this interface and writes back status, external names and
connection details. ``MemoryStore`` keeps everything in process and backs the
CLI and the tests; ``db.DatabaseManager`` is the PostgreSQL implementation.
"""

import copy
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from apis.common import ManagedResource
from apis.provider import ProviderConfig

logger = logging.getLogger(__name__)


class ResourceStore(ABC):
    """Abstract store for managed resources and their supporting records."""

    @abstractmethod
    async def get_provider_config(self, name: str) -> Optional[ProviderConfig]:
        """Get a ProviderConfig by name, or None if it does not exist."""
        pass

    @abstractmethod
    async def get_secret(self, namespace: str, name: str) -> Optional[Dict[str, bytes]]:
        """Get the data of a secret, or None if it does not exist."""
        pass

    @abstractmethod
    async def get_resources_needing_reconciliation(
        self, kinds: List[str], limit: int = 10
    ) -> List[Dict[str, Any]]:
        """Get raw resource records of the given kinds that are due a pass."""
        pass

    @abstractmethod
    async def update_status(self, resource: ManagedResource) -> None:
        """
        Persist the status and external name of a resource.

        The spec is owned by the user and is never written back.
        """
        pass

    @abstractmethod
    async def publish_connection_details(
        self, resource: ManagedResource, details: Dict[str, bytes]
    ) -> None:
        """Store secret material returned when the external resource was created."""
        pass

    @abstractmethod
    async def finalize(self, resource: ManagedResource) -> None:
        """Remove a resource whose external counterpart is gone."""
        pass

    @abstractmethod
    async def mark_for_reconciliation(self, kind: str, name: str) -> None:
        """Schedule a resource for the next reconciliation cycle."""
        pass


class MemoryStore(ResourceStore):
    """In-process store. Every record is due on every cycle."""

    def __init__(self):
        self.provider_configs: Dict[str, ProviderConfig] = {}
        self.secrets: Dict[Tuple[str, str], Dict[str, bytes]] = {}
        self.resources: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.connection_details: Dict[Tuple[str, str], Dict[str, bytes]] = {}

    def add_provider_config(self, provider_config: ProviderConfig) -> None:
        self.provider_configs[provider_config.metadata.name] = provider_config

    def add_secret(self, namespace: str, name: str, data: Dict[str, bytes]) -> None:
        self.secrets[(namespace, name)] = dict(data)

    def add_resource(self, resource: ManagedResource) -> None:
        self.resources[(resource.kind, resource.metadata.name)] = resource.to_record()

    def get_resource(self, kind: str, name: str) -> Optional[Dict[str, Any]]:
        record = self.resources.get((kind, name))
        return copy.deepcopy(record) if record is not None else None

    async def get_provider_config(self, name: str) -> Optional[ProviderConfig]:
        return self.provider_configs.get(name)

    async def get_secret(self, namespace: str, name: str) -> Optional[Dict[str, bytes]]:
        return self.secrets.get((namespace, name))

    async def get_resources_needing_reconciliation(
        self, kinds: List[str], limit: int = 10
    ) -> List[Dict[str, Any]]:
        records = [
            copy.deepcopy(record)
            for (kind, _), record in self.resources.items()
            if kind in kinds
        ]
        return records[:limit]

    async def update_status(self, resource: ManagedResource) -> None:
        key = (resource.kind, resource.metadata.name)
        record = self.resources.get(key)
        if record is None:
            logger.warning(f"Resource {resource.kind}/{resource.metadata.name} is gone")
            return
        updated = resource.to_record()
        record["metadata"]["externalName"] = updated["metadata"]["externalName"]
        record["status"] = updated["status"]

    async def publish_connection_details(
        self, resource: ManagedResource, details: Dict[str, bytes]
    ) -> None:
        self.connection_details[(resource.kind, resource.metadata.name)] = dict(details)

    async def finalize(self, resource: ManagedResource) -> None:
        key = (resource.kind, resource.metadata.name)
        self.resources.pop(key, None)
        self.connection_details.pop(key, None)

    async def mark_for_reconciliation(self, kind: str, name: str) -> None:
        # Every record is due on every cycle already.
        pass
