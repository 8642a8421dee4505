"""Annotation schema: which keys mark a Secret for sync and how to read them."""
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Mapping, Optional

from .models import SyncIntent

DEFAULT_ANNOTATION_PREFIX = "k8s-secret-sync.weinbender.io"
DEFAULT_SECRET_DATA_KEY = "value"

# Marker written after a successful sync. Its presence stops any further sync.
LAST_SYNCED_ANNOTATION = "last-synced"

_NAME_PATTERN = re.compile(r'^[A-Za-z0-9]([A-Za-z0-9._-]*[A-Za-z0-9])?$')
_DNS_LABEL_PATTERN = re.compile(r'^[a-z0-9]([a-z0-9-]*[a-z0-9])?$')


@dataclass(frozen=True)
class AnnotationKeys:
    """Concrete annotation keys for each logical role."""
    prefix: str
    provider_name: str
    provider_ref: str
    secret_key: str

    @classmethod
    def from_prefix(cls, prefix: str = DEFAULT_ANNOTATION_PREFIX) -> "AnnotationKeys":
        return cls(
            prefix=prefix,
            provider_name=f"{prefix}/provider-name",
            provider_ref=f"{prefix}/provider-ref",
            secret_key=f"{prefix}/secret-key",
        )


def _lookup(annotations: Mapping[str, str], key: str) -> Optional[str]:
    # Empty values count as absent everywhere.
    value = annotations.get(key)
    return value if value else None


def extract_intent(
    keys: AnnotationKeys,
    annotations: Mapping[str, str],
    default_secret_key: str = DEFAULT_SECRET_DATA_KEY,
) -> Optional[SyncIntent]:
    """
    Read the sync intent from an annotation map.

    Args:
        keys: Configured annotation keys
        annotations: The object's annotations
        default_secret_key: Data key used when no override annotation is set

    Returns:
        SyncIntent, or None if the provider name or reference is missing
    """
    provider_name = _lookup(annotations, keys.provider_name)
    reference = _lookup(annotations, keys.provider_ref)
    if provider_name is None or reference is None:
        return None

    destination_key = _lookup(annotations, keys.secret_key) or default_secret_key
    return SyncIntent(
        provider_name=provider_name,
        reference=reference,
        destination_key=destination_key,
    )


def is_synced(annotations: Mapping[str, str]) -> bool:
    """True once the marker annotation has been written."""
    return LAST_SYNCED_ANNOTATION in annotations


def format_timestamp(moment: datetime) -> str:
    """Format a datetime as an RFC3339 UTC timestamp with second precision."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def with_sync_marker(annotations: Mapping[str, str], moment: datetime) -> dict:
    """Return a copy of ``annotations`` carrying the marker for ``moment``."""
    updated = dict(annotations)
    updated[LAST_SYNCED_ANNOTATION] = format_timestamp(moment)
    return updated


def is_valid_annotation_key(key: str) -> bool:
    """
    Check a key against the Kubernetes annotation key grammar.

    A key is an optional DNS subdomain prefix followed by ``/`` and a name of
    at most 63 characters.
    """
    if not key:
        return False

    prefix, sep, name = key.rpartition("/")
    if sep:
        if not prefix or len(prefix) > 253:
            return False
        if not all(_DNS_LABEL_PATTERN.match(label) for label in prefix.split(".")):
            return False

    if len(name) > 63:
        return False
    return bool(_NAME_PATTERN.match(name))
