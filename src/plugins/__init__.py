"""
Plugin system for the StackRox provider.

Each managed kind is a plugin: a connector and external client registered
with the kind registry, either built in or discovered through entry points.
"""

from plugins.registry import KindRegistry, get_registry

__all__ = [
    "KindRegistry",
    "get_registry",
]
