"""Reconcile annotated Secrets with their external provider."""
import base64
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict

from ..domains.annotations import AnnotationKeys, DEFAULT_SECRET_DATA_KEY, extract_intent, is_synced, with_sync_marker
from ..domains.k8s_client import PatchError, SecretStore
from ..domains.models import SecretObject, SyncOutcome
from ..domains.providers import ProviderError, ProviderRegistry, UnsupportedProvider

logger = logging.getLogger(__name__)


class SerializationError(Exception):
    """The patch payload could not be built."""
    pass


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def build_patch(
    annotations: Dict[str, str],
    destination_key: str,
    value: str,
    moment: datetime,
) -> Dict[str, Any]:
    """
    Build the strategic merge patch body for a synced Secret.

    The body carries the full annotation map plus the marker, and a data map
    with only the destination key. Nothing else on the object is touched.

    Raises:
        SerializationError: If the value cannot be encoded
    """
    try:
        encoded = base64.b64encode(value.encode("utf-8")).decode("ascii")
    except (UnicodeEncodeError, AttributeError) as e:
        raise SerializationError(f"Cannot encode value for data key '{destination_key}': {e}") from e

    return {
        "metadata": {"annotations": with_sync_marker(annotations, moment)},
        "data": {destination_key: encoded},
    }


class Reconciler:
    """
    Decides, per observed Secret, whether to sync it and performs the sync.

    Every pass ends in exactly one SyncOutcome. Per-object failures are
    logged and returned, never raised.
    """

    def __init__(
        self,
        store: SecretStore,
        providers: ProviderRegistry,
        annotation_keys: AnnotationKeys,
        default_secret_key: str = DEFAULT_SECRET_DATA_KEY,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.store = store
        self.providers = providers
        self.annotation_keys = annotation_keys
        self.default_secret_key = default_secret_key
        self._clock = clock

    def reconcile(self, secret: SecretObject) -> SyncOutcome:
        """Run one reconciliation pass for ``secret``."""
        intent = extract_intent(self.annotation_keys, secret.annotations, self.default_secret_key)
        if intent is None:
            logger.debug(f"Ignoring {secret.key}: missing provider name or reference annotation")
            return SyncOutcome.INELIGIBLE

        if is_synced(secret.annotations):
            logger.debug(f"Secret {secret.key} has already been synced (last-synced annotation present)")
            return SyncOutcome.ALREADY_SYNCED

        logger.info(f"Processing {secret.key} with provider {intent.provider_name}")

        try:
            provider = self.providers.get(intent.provider_name)
        except UnsupportedProvider as e:
            logger.warning(f"Skipping {secret.key}: {e}")
            return SyncOutcome.UNSUPPORTED_PROVIDER
        except ProviderError as e:
            logger.error(f"Provider {intent.provider_name} unavailable for {secret.key}: {e}")
            return SyncOutcome.FETCH_FAILED

        try:
            value = provider.resolve(intent.reference)
        except ProviderError as e:
            logger.error(
                f"Failed to resolve {intent.provider_name} reference {intent.reference} "
                f"for {secret.key}: {type(e).__name__}: {e}"
            )
            return SyncOutcome.FETCH_FAILED

        try:
            body = build_patch(secret.annotations, intent.destination_key, value, self._clock())
        except SerializationError as e:
            logger.error(f"Failed to build patch for {secret.key}: {e}")
            return SyncOutcome.SERIALIZATION_FAILED

        try:
            self.store.patch_secret(secret.namespace, secret.name, body)
        except PatchError as e:
            logger.error(f"Failed to update Kubernetes Secret {secret.key}: {e}")
            return SyncOutcome.PATCH_FAILED

        logger.info(
            f"Successfully updated Kubernetes Secret {secret.key} "
            f"(key '{intent.destination_key}') and set last-synced annotation"
        )
        return SyncOutcome.SYNCED

    def close(self) -> None:
        """Release provider connections."""
        self.providers.close()
