"""Shared fixtures for the k8s-secret-sync test suite."""
import base64
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest import mock

import pytest

from k8s_secret_sync.sync.domains.annotations import AnnotationKeys
from k8s_secret_sync.sync.domains.k8s_client import SecretStore
from k8s_secret_sync.sync.domains.models import SecretObject
from k8s_secret_sync.sync.domains.providers import ProviderRegistry, SecretNotFound, SecretProvider

FIXED_NOW = datetime(2024, 5, 1, 12, 30, 45, tzinfo=timezone.utc)

_KSS_ENV_VARS = (
    "KSS_CONFIG_FILE",
    "KSS_SECRET_ANNOTATION_PREFIX",
    "KSS_SECRET_ANNOTATION_KEY_PROVIDER_NAME",
    "KSS_SECRET_ANNOTATION_KEY_PROVIDER_REF",
    "KSS_SECRET_ANNOTATION_KEY_SECRET_KEY",
    "KSS_DEFAULT_SECRET_DATA_KEY",
    "KSS_POLL_INTERVAL",
    "KSS_WATCH_NAMESPACE",
    "KSS_PROVIDERS",
    "KSS_OP_TOKEN_ENV",
    "KSS_GCP_PROJECT",
    "GCP_PROJECT",
    "KSS_GCP_SERVICE_ACCOUNT_PATH",
    "KSS_LOG_LEVEL",
    "OP_SERVICE_ACCOUNT_TOKEN",
)


class FakeProvider(SecretProvider):
    """Provider returning canned values and recording every call."""

    def __init__(self, values=None, error=None):
        self.values = dict(values or {})
        self.error = error
        self.calls = []

    def resolve(self, reference):
        self.calls.append(reference)
        if self.error is not None:
            raise self.error
        if reference not in self.values:
            raise SecretNotFound(f"no value for {reference}")
        return self.values[reference]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Make every test start without KSS_* configuration in the environment."""
    for name in _KSS_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def annotation_keys():
    return AnnotationKeys.from_prefix()


@pytest.fixture
def fake_provider():
    return FakeProvider(values={"vault-item-42": "s3cr3t"})


@pytest.fixture
def registry(fake_provider):
    return ProviderRegistry({"op": lambda: fake_provider})


@pytest.fixture
def store():
    """SecretStore with a mocked CoreV1Api."""
    return SecretStore(api=mock.MagicMock())


def make_secret(namespace="ns", name="db-secret", annotations=None, data=None):
    return SecretObject(
        namespace=namespace,
        name=name,
        annotations=dict(annotations or {}),
        data=dict(data or {}),
    )


def make_v1_secret(namespace="ns", name="db-secret", annotations=None, data=None, resource_version="1"):
    """Stand-in for a kubernetes V1Secret with base64 encoded data."""
    encoded = {
        key: base64.b64encode(value).decode("ascii")
        for key, value in (data or {}).items()
    }
    metadata = SimpleNamespace(
        namespace=namespace,
        name=name,
        annotations=annotations,
        resource_version=resource_version,
    )
    return SimpleNamespace(metadata=metadata, data=encoded or None)
