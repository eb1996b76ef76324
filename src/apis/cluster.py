"""
Cluster managed resource.

A Cluster declares a secured cluster registration in Central.
"""

from typing import Dict, Literal

from pydantic import Field, field_validator

from apis.common import (
    ApiModel,
    ManagedResource,
    ProviderConfigReference,
    ResourceStatus,
)

CLUSTER_KIND = "Cluster"
CLUSTER_API_VERSION = "cluster.stackrox.crossplane.io/v1alpha1"

# Declared variant sets for the enumerated fields.
COLLECTION_METHODS = (
    "UNSET_COLLECTION",
    "NO_COLLECTION",
    "KERNEL_MODULE",
    "EBPF",
    "CORE_BPF",
)
CLUSTER_TYPES = (
    "GENERIC_CLUSTER",
    "KUBERNETES_CLUSTER",
    "OPENSHIFT_CLUSTER",
    "OPENSHIFT4_CLUSTER",
)
MANAGER_TYPES = (
    "MANAGER_TYPE_UNKNOWN",
    "MANAGER_TYPE_MANUAL",
    "MANAGER_TYPE_HELM_CHART",
    "MANAGER_TYPE_KUBERNETES_OPERATOR",
)


class ClusterParameters(ApiModel):
    """Configurable fields of a Cluster."""

    admission_controller: bool = False
    admission_controller_events: bool = False
    admission_controller_updates: bool = False
    central_api_endpoint: str = ""
    collection_method: str = "UNSET_COLLECTION"
    collector_image: str = ""
    labels: Dict[str, str] = Field(default_factory=dict)
    main_image: str = ""
    name: str
    slim_collector: bool = False
    tolerations: bool = False
    type: str = "GENERIC_CLUSTER"

    @field_validator("collection_method")
    @classmethod
    def validate_collection_method(cls, v: str) -> str:
        if v not in COLLECTION_METHODS:
            raise ValueError(
                f"collectionMethod must be one of: {', '.join(COLLECTION_METHODS)}"
            )
        return v

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        if v not in CLUSTER_TYPES:
            raise ValueError(f"type must be one of: {', '.join(CLUSTER_TYPES)}")
        return v

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v:
            raise ValueError("name cannot be empty")
        return v


class SensorDeployment(ApiModel):
    """Identifiers of the most recent sensor deployment."""

    app_namespace: str = ""
    app_namespace_id: str = ""
    app_service_account_id: str = ""
    default_namespace_id: str = ""
    k8s_node_name: str = ""
    system_namespace_id: str = ""


class ClusterObservation(ApiModel):
    """Observable fields of a Cluster as reported by Central."""

    admission_controller: bool = False
    admission_controller_events: bool = False
    admission_controller_updates: bool = False
    central_api_endpoint: str = ""
    collection_method: str = ""
    collector_image: str = ""
    id: str = ""
    init_bundle_id: str = ""
    labels: Dict[str, str] = Field(default_factory=dict)
    main_image: str = ""
    managed_by: str = ""
    most_recent_sensor: SensorDeployment = Field(default_factory=SensorDeployment)
    name: str = ""
    slim_collector: bool = False
    tolerations: bool = False
    type: str = ""


class ClusterSpec(ApiModel):
    provider_config_ref: ProviderConfigReference = Field(
        default_factory=ProviderConfigReference
    )
    for_provider: ClusterParameters


class ClusterStatus(ResourceStatus):
    at_provider: ClusterObservation = Field(default_factory=ClusterObservation)


class Cluster(ManagedResource):
    """A secured cluster registered with Central."""

    api_version: str = CLUSTER_API_VERSION
    kind: Literal["Cluster"] = CLUSTER_KIND
    spec: ClusterSpec
    status: ClusterStatus = Field(default_factory=ClusterStatus)
