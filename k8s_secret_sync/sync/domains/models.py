"""Domain models for secret synchronisation."""
import base64
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict


@dataclass
class SecretObject:
    """Snapshot of a cluster Secret as seen by the reconciler."""
    namespace: str
    name: str
    annotations: Dict[str, str] = field(default_factory=dict)
    data: Dict[str, bytes] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def from_k8s(cls, secret: Any) -> "SecretObject":
        """
        Build a snapshot from a kubernetes ``V1Secret``.

        Secret data arrives base64 encoded from the API and is decoded here so
        the rest of the code only deals with raw bytes.
        """
        metadata = secret.metadata
        raw_data = secret.data or {}
        return cls(
            namespace=metadata.namespace,
            name=metadata.name,
            annotations=dict(metadata.annotations or {}),
            data={key: base64.b64decode(value) for key, value in raw_data.items()},
        )


@dataclass(frozen=True)
class SyncIntent:
    """What an object's annotations ask for."""
    provider_name: str
    reference: str
    destination_key: str


class EventType(Enum):
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    BOOKMARK = "BOOKMARK"
    ERROR = "ERROR"


@dataclass
class WatchEvent:
    """A typed change notification for a single Secret."""
    type: EventType
    secret: SecretObject


class SyncOutcome(Enum):
    """Terminal state of one reconciliation pass."""
    INELIGIBLE = "ineligible"
    ALREADY_SYNCED = "already-synced"
    UNSUPPORTED_PROVIDER = "unsupported-provider"
    FETCH_FAILED = "fetch-failed"
    SERIALIZATION_FAILED = "serialization-failed"
    PATCH_FAILED = "patch-failed"
    SYNCED = "synced"
