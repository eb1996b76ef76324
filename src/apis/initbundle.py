"""
InitBundle managed resource.

An InitBundle declares a cluster init bundle in Central. Bundles cannot be
changed once generated; the secret material returned at generation time is
published as connection details.
"""

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import Field, field_validator

from apis.common import (
    ApiModel,
    ManagedResource,
    ProviderConfigReference,
    ResourceStatus,
)

INIT_BUNDLE_KIND = "InitBundle"
INIT_BUNDLE_API_VERSION = "initbundle.stackrox.crossplane.io/v1alpha1"

# Connection detail keys published on creation.
HELM_VALUES_BUNDLE = "helmValuesBundle"
KUBECTL_BUNDLE = "kubectlBundle"


class InitBundleParameters(ApiModel):
    name: str

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v:
            raise ValueError("name cannot be empty")
        return v


class ImpactedCluster(ApiModel):
    id: str = ""
    name: str = ""


class User(ApiModel):
    attributes: Dict[str, str] = Field(default_factory=dict)
    auth_provider_id: str = ""
    id: str = ""


class InitBundleObservation(ApiModel):
    """Observable fields of an init bundle as reported by Central."""

    created_at: Optional[datetime] = None
    created_by: User = Field(default_factory=User)
    expires_at: Optional[datetime] = None
    id: str = ""
    impacted_clusters: List[ImpactedCluster] = Field(default_factory=list)
    name: str = ""


class InitBundleSpec(ApiModel):
    provider_config_ref: ProviderConfigReference = Field(
        default_factory=ProviderConfigReference
    )
    for_provider: InitBundleParameters


class InitBundleStatus(ResourceStatus):
    at_provider: InitBundleObservation = Field(default_factory=InitBundleObservation)


class InitBundle(ManagedResource):
    """A cluster init bundle generated by Central."""

    api_version: str = INIT_BUNDLE_API_VERSION
    kind: Literal["InitBundle"] = INIT_BUNDLE_KIND
    spec: InitBundleSpec
    status: InitBundleStatus = Field(default_factory=InitBundleStatus)
