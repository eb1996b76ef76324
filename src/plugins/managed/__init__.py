"""
Managed resource plugins package.

Each managed kind ships a Connector and an ExternalClient implementing the
interfaces in ``plugins.managed.base``.
"""

from plugins.managed.base import (
    Connector,
    ExternalClient,
    ExternalCreation,
    ExternalObservation,
    ExternalUpdate,
)

__all__ = [
    "Connector",
    "ExternalClient",
    "ExternalCreation",
    "ExternalObservation",
    "ExternalUpdate",
]
