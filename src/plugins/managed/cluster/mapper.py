"""
Translation between Cluster parameters and Central's cluster representation.

Central encodes enumerated fields as integer codes. Each field has a closed
name/code table; codes Central reports that are not in the table map to an
empty name so the diff flags them as drift.
"""

import copy
from typing import Any, Dict, Mapping, Optional, Sequence

from apis.cluster import (
    CLUSTER_TYPES,
    COLLECTION_METHODS,
    MANAGER_TYPES,
    ClusterObservation,
    ClusterParameters,
    SensorDeployment,
)

COLLECTION_METHOD_CODES: Dict[str, int] = {
    "UNSET_COLLECTION": 0,
    "NO_COLLECTION": 1,
    "KERNEL_MODULE": 2,
    "EBPF": 3,
    "CORE_BPF": 4,
}

CLUSTER_TYPE_CODES: Dict[str, int] = {
    "GENERIC_CLUSTER": 0,
    "KUBERNETES_CLUSTER": 1,
    "OPENSHIFT_CLUSTER": 2,
    "OPENSHIFT4_CLUSTER": 5,
}

MANAGER_TYPE_CODES: Dict[str, int] = {
    "MANAGER_TYPE_UNKNOWN": 0,
    "MANAGER_TYPE_MANUAL": 1,
    "MANAGER_TYPE_HELM_CHART": 2,
    "MANAGER_TYPE_KUBERNETES_OPERATOR": 3,
}

ENUM_TABLES = {
    "collectionMethod": (COLLECTION_METHOD_CODES, COLLECTION_METHODS),
    "type": (CLUSTER_TYPE_CODES, CLUSTER_TYPES),
    "managedBy": (MANAGER_TYPE_CODES, MANAGER_TYPES),
}


def validate_enum_tables() -> None:
    """
    Check every enum table against its declared variant set.

    Raises:
        RuntimeError: If a table misses a variant, has an extra one, or maps
            two names to the same code.
    """
    for field_name, (table, declared) in ENUM_TABLES.items():
        missing = set(declared) - set(table)
        extra = set(table) - set(declared)
        if missing or extra:
            raise RuntimeError(
                f"enum table for {field_name} does not match declared variants "
                f"(missing: {sorted(missing)}, extra: {sorted(extra)})"
            )
        if len(set(table.values())) != len(table):
            raise RuntimeError(f"enum table for {field_name} has duplicate codes")


def enum_name(table: Mapping[str, int], value: Any) -> str:
    """
    Translate a code reported by Central to its name.

    Central may report either the integer code or the name; anything not in
    the table yields an empty name.
    """
    if isinstance(value, str):
        if value in table:
            return value
        if not value.isdigit():
            return ""
        value = int(value)
    if value is None:
        value = 0
    if isinstance(value, bool) or not isinstance(value, int):
        return ""
    for name, code in table.items():
        if code == value:
            return name
    return ""


def to_remote(
    params: ClusterParameters, base: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Build a cluster request from declared parameters.

    Args:
        params: Declared cluster parameters.
        base: Cluster fetched from Central. Fields not covered by the
            parameters (id, health, sensor data, ...) are carried over. Not
            modified.

    Returns:
        A new cluster dict ready to be sent to Central.
    """
    cluster = copy.deepcopy(base) if base is not None else {}
    cluster["admissionController"] = params.admission_controller
    cluster["admissionControllerEvents"] = params.admission_controller_events
    cluster["admissionControllerUpdates"] = params.admission_controller_updates
    cluster["centralApiEndpoint"] = params.central_api_endpoint
    cluster["collectionMethod"] = COLLECTION_METHOD_CODES[params.collection_method]
    cluster["collectorImage"] = params.collector_image
    cluster["labels"] = dict(params.labels)
    cluster["mainImage"] = params.main_image
    cluster["name"] = params.name
    cluster["slimCollector"] = params.slim_collector
    tolerations_config = dict(cluster.get("tolerationsConfig") or {})
    tolerations_config["disabled"] = not params.tolerations
    cluster["tolerationsConfig"] = tolerations_config
    cluster["type"] = CLUSTER_TYPE_CODES[params.type]
    return cluster


def _tolerations(remote: Mapping[str, Any]) -> bool:
    disabled = (remote.get("tolerationsConfig") or {}).get("disabled", False)
    return not disabled


def observed_parameters(remote: Mapping[str, Any]) -> ClusterParameters:
    """Project a Central cluster onto the declared parameter set."""
    return ClusterParameters.model_construct(
        admission_controller=bool(remote.get("admissionController", False)),
        admission_controller_events=bool(remote.get("admissionControllerEvents", False)),
        admission_controller_updates=bool(
            remote.get("admissionControllerUpdates", False)
        ),
        central_api_endpoint=remote.get("centralApiEndpoint") or "",
        collection_method=enum_name(
            COLLECTION_METHOD_CODES, remote.get("collectionMethod")
        ),
        collector_image=remote.get("collectorImage") or "",
        labels=dict(remote.get("labels") or {}),
        main_image=remote.get("mainImage") or "",
        name=remote.get("name") or "",
        slim_collector=bool(remote.get("slimCollector", False)),
        tolerations=_tolerations(remote),
        type=enum_name(CLUSTER_TYPE_CODES, remote.get("type")),
    )


def to_observation(remote: Mapping[str, Any]) -> ClusterObservation:
    """Project a Central cluster onto the observation shown in status."""
    sensor = remote.get("mostRecentSensorId") or {}
    params = observed_parameters(remote)
    return ClusterObservation(
        admission_controller=params.admission_controller,
        admission_controller_events=params.admission_controller_events,
        admission_controller_updates=params.admission_controller_updates,
        central_api_endpoint=params.central_api_endpoint,
        collection_method=params.collection_method,
        collector_image=params.collector_image,
        id=remote.get("id") or "",
        init_bundle_id=remote.get("initBundleId") or "",
        labels=params.labels,
        main_image=params.main_image,
        managed_by=enum_name(MANAGER_TYPE_CODES, remote.get("managedBy")),
        most_recent_sensor=SensorDeployment(
            app_namespace=sensor.get("appNamespace") or "",
            app_namespace_id=sensor.get("appNamespaceId") or "",
            app_service_account_id=sensor.get("appServiceaccountId") or "",
            default_namespace_id=sensor.get("defaultNamespaceId") or "",
            k8s_node_name=sensor.get("k8sNodeName") or "",
            system_namespace_id=sensor.get("systemNamespaceId") or "",
        ),
        name=params.name,
        slim_collector=params.slim_collector,
        tolerations=params.tolerations,
        type=params.type,
    )


def find_by_name(
    clusters: Sequence[Mapping[str, Any]], name: str
) -> Optional[Dict[str, Any]]:
    for cluster in clusters:
        if cluster.get("name") == name:
            return dict(cluster)
    return None
