"""
Credential extraction for ProviderConfigs.

Reads the Central API token from the source named in a ProviderConfig: a
secret held by the resource store, an environment variable or a file.
"""

import logging
import os
from pathlib import Path

from apis.provider import CredentialsSource, ProviderCredentials
from errors import CredentialSourceUnavailable
from store import ResourceStore

logger = logging.getLogger(__name__)


async def extract_credentials(
    credentials: ProviderCredentials, store: ResourceStore
) -> bytes:
    """
    Resolve the API token described by ``credentials``.

    Args:
        credentials: Credential source and selector from the ProviderConfig.
        store: Store holding secrets for the Secret source.

    Returns:
        The token bytes, stripped of surrounding whitespace.

    Raises:
        CredentialSourceUnavailable: If the source cannot be read or is empty.
    """
    source = credentials.source

    if source == CredentialsSource.SECRET:
        ref = credentials.secret_ref
        data = await store.get_secret(ref.namespace, ref.name)
        if data is None:
            raise CredentialSourceUnavailable(
                f"secret {ref.namespace}/{ref.name} not found"
            )
        if ref.key not in data:
            raise CredentialSourceUnavailable(
                f"secret {ref.namespace}/{ref.name} has no key {ref.key!r}"
            )
        token = data[ref.key]

    elif source == CredentialsSource.ENVIRONMENT:
        value = os.environ.get(credentials.env.name)
        if value is None:
            raise CredentialSourceUnavailable(
                f"environment variable {credentials.env.name} is not set"
            )
        token = value.encode()

    elif source == CredentialsSource.FILESYSTEM:
        path = Path(credentials.fs.path)
        try:
            token = path.read_bytes()
        except OSError as e:
            raise CredentialSourceUnavailable(f"cannot read {path}: {e}") from e

    else:
        raise CredentialSourceUnavailable(
            f"credential source {source.value} provides no token"
        )

    if isinstance(token, str):
        token = token.encode()
    token = token.strip()
    if not token:
        raise CredentialSourceUnavailable(f"{source.value} credential is empty")
    return token
