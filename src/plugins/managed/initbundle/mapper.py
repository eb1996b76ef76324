"""
Translation between InitBundle parameters and Central's init bundle metadata.
"""

import base64
import binascii
import re
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Sequence

from apis.initbundle import (
    HELM_VALUES_BUNDLE,
    KUBECTL_BUNDLE,
    ImpactedCluster,
    InitBundleObservation,
    InitBundleParameters,
    User,
)

_FRACTION = re.compile(r"\.(\d+)")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a timestamp reported by Central.

    Accepts RFC 3339 strings with any fraction precision and protobuf-style
    ``{"seconds": ..., "nanos": ...}`` mappings. Returns None for missing or
    malformed values.
    """
    if not value:
        return None

    if isinstance(value, Mapping):
        try:
            seconds = int(value.get("seconds", 0))
            nanos = int(value.get("nanos", 0))
        except (TypeError, ValueError):
            return None
        return datetime.fromtimestamp(seconds + nanos / 1e9, tz=timezone.utc)

    text = str(value).strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_request(params: InitBundleParameters) -> Dict[str, Any]:
    return {"name": params.name}


def observed_parameters(meta: Mapping[str, Any]) -> InitBundleParameters:
    """Project init bundle metadata onto the declared parameter set."""
    return InitBundleParameters.model_construct(name=meta.get("name") or "")


def to_observation(meta: Mapping[str, Any]) -> InitBundleObservation:
    """Project init bundle metadata onto the observation shown in status."""
    created_by = meta.get("createdBy") or {}
    attributes = {
        item.get("key", ""): item.get("value", "")
        for item in created_by.get("attributes") or []
    }
    return InitBundleObservation(
        created_at=parse_timestamp(meta.get("createdAt")),
        created_by=User(
            attributes=attributes,
            auth_provider_id=created_by.get("authProviderId") or "",
            id=created_by.get("id") or "",
        ),
        expires_at=parse_timestamp(meta.get("expiresAt")),
        id=meta.get("id") or "",
        impacted_clusters=[
            ImpactedCluster(id=c.get("id") or "", name=c.get("name") or "")
            for c in meta.get("impactedClusters") or []
        ],
        name=meta.get("name") or "",
    )


def _decode_bundle(value: Optional[str]) -> bytes:
    if not value:
        return b""
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return value.encode()


def connection_details(response: Mapping[str, Any]) -> Dict[str, bytes]:
    """Secret material returned once, when the bundle is generated."""
    return {
        HELM_VALUES_BUNDLE: _decode_bundle(response.get("helmValuesBundle")),
        KUBECTL_BUNDLE: _decode_bundle(response.get("kubectlBundle")),
    }


def find_by_name(
    bundles: Sequence[Mapping[str, Any]], name: str
) -> Optional[Dict[str, Any]]:
    for bundle in bundles:
        if bundle.get("name") == name:
            return dict(bundle)
    return None
