"""
ProviderConfig - how to reach and authenticate against a Central instance.
"""

from enum import Enum
from typing import Literal, Optional

from pydantic import Field, model_validator

from apis.common import ApiModel, ObjectMeta

PROVIDER_CONFIG_KIND = "ProviderConfig"
PROVIDER_CONFIG_API_VERSION = "stackrox.crossplane.io/v1alpha1"


class CredentialsSource(str, Enum):
    """Where the API token of a ProviderConfig is read from."""

    NONE = "None"
    SECRET = "Secret"
    ENVIRONMENT = "Environment"
    FILESYSTEM = "Filesystem"


class SecretKeySelector(ApiModel):
    namespace: str = "default"
    name: str
    key: str


class EnvSelector(ApiModel):
    name: str


class FsSelector(ApiModel):
    path: str


class ProviderCredentials(ApiModel):
    """Credential source and the selector matching it."""

    source: CredentialsSource = CredentialsSource.NONE
    secret_ref: Optional[SecretKeySelector] = None
    env: Optional[EnvSelector] = None
    fs: Optional[FsSelector] = None

    @model_validator(mode="after")
    def check_selector(self) -> "ProviderCredentials":
        required = {
            CredentialsSource.SECRET: ("secretRef", self.secret_ref),
            CredentialsSource.ENVIRONMENT: ("env", self.env),
            CredentialsSource.FILESYSTEM: ("fs", self.fs),
        }
        if self.source in required:
            field_name, selector = required[self.source]
            if selector is None:
                raise ValueError(
                    f"credentials.{field_name} is required for source "
                    f"{self.source.value}"
                )
        return self


class ProviderConfigSpec(ApiModel):
    endpoint: str
    credentials: ProviderCredentials = Field(default_factory=ProviderCredentials)
    insecure_skip_tls_verify: bool = False


class ProviderConfig(ApiModel):
    """Connection settings shared by the managed resources that reference it."""

    api_version: str = PROVIDER_CONFIG_API_VERSION
    kind: Literal["ProviderConfig"] = PROVIDER_CONFIG_KIND
    metadata: ObjectMeta
    spec: ProviderConfigSpec
