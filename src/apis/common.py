"""
Common managed-resource model shared by all kinds.

Resources follow the Kubernetes shape: metadata, a spec holding the
ProviderConfig reference and the ``forProvider`` parameters, and a status
holding conditions and the ``atProvider`` observation. Manifests use camelCase
keys; Python code uses the snake_case attribute names.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Base model accepting both camelCase aliases and field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ConditionType(str, Enum):
    """Condition types recorded on every managed resource."""

    READY = "Ready"
    SYNCED = "Synced"


class ConditionReason(str, Enum):
    """Reasons for the Ready and Synced conditions."""

    AVAILABLE = "Available"
    UNAVAILABLE = "Unavailable"
    CREATING = "Creating"
    DELETING = "Deleting"
    RECONCILE_SUCCESS = "ReconcileSuccess"
    RECONCILE_ERROR = "ReconcileError"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Condition(ApiModel):
    """A single observed condition of a managed resource."""

    type: ConditionType
    status: str
    reason: ConditionReason
    message: str = ""
    last_transition_time: datetime = Field(default_factory=_now)

    def equal(self, other: "Condition") -> bool:
        """Compare conditions ignoring the transition time."""
        return (
            self.type == other.type
            and self.status == other.status
            and self.reason == other.reason
            and self.message == other.message
        )


def available() -> Condition:
    return Condition(
        type=ConditionType.READY, status="True", reason=ConditionReason.AVAILABLE
    )


def unavailable(message: str = "") -> Condition:
    return Condition(
        type=ConditionType.READY,
        status="False",
        reason=ConditionReason.UNAVAILABLE,
        message=message,
    )


def creating() -> Condition:
    return Condition(
        type=ConditionType.READY, status="False", reason=ConditionReason.CREATING
    )


def deleting() -> Condition:
    return Condition(
        type=ConditionType.READY, status="False", reason=ConditionReason.DELETING
    )


def reconcile_success() -> Condition:
    return Condition(
        type=ConditionType.SYNCED,
        status="True",
        reason=ConditionReason.RECONCILE_SUCCESS,
    )


def reconcile_error(err: Exception) -> Condition:
    return Condition(
        type=ConditionType.SYNCED,
        status="False",
        reason=ConditionReason.RECONCILE_ERROR,
        message=str(err),
    )


class ObjectMeta(ApiModel):
    """Identity and lifecycle metadata of a declared resource."""

    name: str
    external_name: str = ""
    generation: int = 1
    deletion_requested: bool = False
    labels: Dict[str, str] = Field(default_factory=dict)


class ProviderConfigReference(ApiModel):
    name: str = "default"


class ResourceStatus(ApiModel):
    conditions: List[Condition] = Field(default_factory=list)


class ManagedResource(ApiModel):
    """
    Base class for managed resources.

    Subclasses declare ``kind``, ``spec`` (with ``provider_config_ref`` and
    ``for_provider``) and ``status`` (a ResourceStatus with ``at_provider``).
    """

    api_version: str = ""
    metadata: ObjectMeta

    def get_condition(self, condition_type: ConditionType) -> Optional[Condition]:
        for condition in self.status.conditions:
            if condition.type == condition_type:
                return condition
        return None

    def set_conditions(self, *conditions: Condition) -> None:
        """
        Set conditions, replacing any existing condition of the same type.

        The transition time of an unchanged condition is preserved.
        """
        for condition in conditions:
            existing = self.get_condition(condition.type)
            if existing is not None and existing.equal(condition):
                continue
            self.status.conditions = [
                c for c in self.status.conditions if c.type != condition.type
            ] + [condition]

    def ready_reason(self) -> Optional[ConditionReason]:
        condition = self.get_condition(ConditionType.READY)
        return condition.reason if condition is not None else None

    def lookup_name(self) -> str:
        """Name used to find the remote counterpart of this resource."""
        return self.metadata.external_name or self.spec.for_provider.name

    def to_record(self) -> Dict:
        return self.model_dump(mode="json", by_alias=True)
