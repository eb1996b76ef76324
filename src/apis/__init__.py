"""
Resource models for the StackRox provider.

Each managed kind has a parameters model (what the user declares), an
observation model (what Central reports) and a resource model tying both to
metadata and conditions.
"""

from apis.cluster import Cluster, ClusterObservation, ClusterParameters
from apis.common import (
    Condition,
    ConditionReason,
    ConditionType,
    ManagedResource,
    ObjectMeta,
)
from apis.initbundle import InitBundle, InitBundleObservation, InitBundleParameters
from apis.provider import ProviderConfig

__all__ = [
    "Cluster",
    "ClusterObservation",
    "ClusterParameters",
    "Condition",
    "ConditionReason",
    "ConditionType",
    "InitBundle",
    "InitBundleObservation",
    "InitBundleParameters",
    "ManagedResource",
    "ObjectMeta",
    "ProviderConfig",
]
