"""
Kind Registry - Discovery and registration of managed kinds.

This module maps a kind name to its resource model and its connector. It is
the single place where raw records are turned into typed resources.
"""

import logging
from importlib.metadata import entry_points
from typing import Any, Dict, List, Mapping, Optional, Type

from apis.common import ManagedResource
from config import CentralConfig, PluginConfig
from plugins.managed.base import Connector
from store import ResourceStore

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "stackrox_provider.kinds"


class KindRegistry:
    """
    Central registry for managed kinds.

    Holds connector classes (not instantiated) keyed by the kind they handle.
    """

    def __init__(self):
        self._connectors: Dict[str, Type[Connector]] = {}

    def register_connector(self, connector_class: Type[Connector]) -> None:
        """
        Register a connector class for the kind it declares.

        Args:
            connector_class: The Connector subclass to register

        Raises:
            ValueError: If the kind is already claimed by another connector
        """
        kind = connector_class.kind
        if not kind:
            raise ValueError(f"{connector_class.__name__} does not declare a kind")

        existing = self._connectors.get(kind)
        if existing is not None and existing is not connector_class:
            raise ValueError(
                f"Kind '{kind}' is already claimed by "
                f"'{existing.__name__}'. Cannot register "
                f"'{connector_class.__name__}'."
            )

        self._connectors[kind] = connector_class
        logger.info(f"Registered kind: {kind} ({connector_class.__name__})")

    def has_kind(self, kind: str) -> bool:
        """Check if a kind is registered."""
        return kind in self._connectors

    def list_kinds(self) -> List[str]:
        """List all registered kind names."""
        return list(self._connectors.keys())

    def get_connector_class(self, kind: str) -> Type[Connector]:
        """
        Get the connector class for a kind.

        Raises:
            ValueError: If the kind is not registered
        """
        if kind not in self._connectors:
            available = ", ".join(self._connectors.keys()) or "none"
            raise ValueError(f"Unknown kind: {kind}. Available kinds: {available}")
        return self._connectors[kind]

    def get_resource_class(self, kind: str) -> Type[ManagedResource]:
        return self.get_connector_class(kind).resource_class

    def parse_resource(self, record: Mapping[str, Any]) -> ManagedResource:
        """
        Parse a raw record into the typed model of its kind.

        Raises:
            ValueError: If the kind is unknown
            pydantic.ValidationError: If the record does not match the model
        """
        kind = record.get("kind", "")
        return self.get_resource_class(kind).model_validate(record)

    def build_connectors(
        self,
        store: ResourceStore,
        central_config: Optional[CentralConfig] = None,
        plugin_config: Optional[PluginConfig] = None,
    ) -> Dict[str, Connector]:
        """Instantiate one connector per enabled kind."""
        plugin_config = plugin_config or PluginConfig()
        connectors = {}
        for kind, connector_class in self._connectors.items():
            if not plugin_config.is_enabled(kind):
                logger.info(f"Kind {kind} is disabled")
                continue
            connectors[kind] = connector_class(store, central_config)
        return connectors


# Global registry instance
_registry: Optional[KindRegistry] = None


def get_registry() -> KindRegistry:
    """Get the global kind registry singleton."""
    global _registry
    if _registry is None:
        _registry = KindRegistry()
    return _registry


def reset_registry() -> None:
    """Reset the global registry (mainly for testing)."""
    global _registry
    _registry = None


def register_builtin_plugins() -> None:
    """
    Register the built-in kinds and discover additional kinds via entry
    points.

    Raises:
        RuntimeError: If an enum table of a built-in kind is inconsistent
    """
    from plugins.managed.cluster import ClusterConnector
    from plugins.managed.cluster.mapper import validate_enum_tables
    from plugins.managed.initbundle import InitBundleConnector

    validate_enum_tables()

    registry = get_registry()
    registry.register_connector(ClusterConnector)
    registry.register_connector(InitBundleConnector)

    discovered = entry_points(group=ENTRY_POINT_GROUP)
    for ep in discovered:
        try:
            connector_class = ep.load()
            registry.register_connector(connector_class)
        except Exception as e:
            logger.warning(f"Could not load kind plugin {ep.name}: {e}")
