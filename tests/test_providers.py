"""Test suite for secret providers and the provider registry."""
import os
from types import SimpleNamespace
from unittest import mock

import pytest
from google.api_core import exceptions as gcp_exceptions

from conftest import FakeProvider
from k8s_secret_sync.sync.domains import onepassword_client
from k8s_secret_sync.sync.domains.gcp_client import GCPSecretProvider
from k8s_secret_sync.sync.domains.onepassword_client import OnePasswordProvider
from k8s_secret_sync.sync.domains.providers import (
    ProviderAuthError,
    ProviderError,
    ProviderRegistry,
    ProviderUnavailable,
    SecretNotFound,
    UnsupportedProvider,
)


class TestProviderRegistry:
    """Test lazy provider construction."""

    def test_providers_constructed_lazily(self):
        factory = mock.Mock(return_value=FakeProvider())
        registry = ProviderRegistry({"op": factory})

        factory.assert_not_called()
        provider = registry.get("op")

        factory.assert_called_once()
        assert registry.get("op") is provider
        factory.assert_called_once()

    def test_unused_providers_never_constructed(self):
        op_factory = mock.Mock(return_value=FakeProvider())
        gcp_factory = mock.Mock(return_value=FakeProvider())
        registry = ProviderRegistry({"op": op_factory, "gcp": gcp_factory})

        registry.get("op")

        gcp_factory.assert_not_called()

    def test_unknown_provider(self):
        registry = ProviderRegistry({"op": FakeProvider})

        with pytest.raises(UnsupportedProvider) as exc_info:
            registry.get("unknown-vendor")

        assert exc_info.value.name == "unknown-vendor"

    def test_failed_construction_not_cached(self):
        factory = mock.Mock(side_effect=[RuntimeError("boom"), FakeProvider()])
        registry = ProviderRegistry({"op": factory})

        with pytest.raises(ProviderUnavailable):
            registry.get("op")

        assert isinstance(registry.get("op"), FakeProvider)
        assert factory.call_count == 2

    def test_provider_errors_from_factory_pass_through(self):
        registry = ProviderRegistry({"op": mock.Mock(side_effect=ProviderAuthError("no token"))})

        with pytest.raises(ProviderAuthError):
            registry.get("op")

    def test_names(self):
        registry = ProviderRegistry({"op": FakeProvider, "gcp": FakeProvider})

        assert registry.names() == ["gcp", "op"]

    def test_close_only_touches_built_providers(self):
        built = mock.Mock()
        unused_factory = mock.Mock()
        registry = ProviderRegistry({"op": lambda: built, "gcp": unused_factory})
        registry.get("op")

        registry.close()

        built.close.assert_called_once()
        unused_factory.assert_not_called()

    def test_close_failure_is_logged_and_others_still_closed(self, caplog):
        broken = mock.Mock()
        broken.close.side_effect = RuntimeError("already gone")
        healthy = mock.Mock()
        registry = ProviderRegistry({"gcp": lambda: broken, "op": lambda: healthy})
        registry.get("gcp")
        registry.get("op")

        registry.close()

        healthy.close.assert_called_once()
        assert "already gone" in caplog.text

    def test_providers_rebuilt_after_close(self):
        factory = mock.Mock(side_effect=lambda: FakeProvider())
        registry = ProviderRegistry({"op": factory})
        registry.get("op")

        registry.close()
        registry.get("op")

        assert factory.call_count == 2


@pytest.fixture
def op_sdk(monkeypatch):
    """Replace the 1Password SDK client with async mocks."""
    sdk_client = mock.MagicMock()
    sdk_client.secrets.resolve = mock.AsyncMock(return_value="s3cr3t")
    client_class = mock.MagicMock()
    client_class.authenticate = mock.AsyncMock(return_value=sdk_client)
    monkeypatch.setattr(onepassword_client, "Client", client_class)
    return SimpleNamespace(client_class=client_class, client=sdk_client)


@pytest.fixture
def op_provider(op_sdk):
    provider = OnePasswordProvider("ops_token")
    yield provider
    provider.close()


class TestOnePasswordProvider:
    """Test the 1Password provider against a mocked SDK."""

    def test_authenticates_once_with_token(self, op_provider, op_sdk):
        op_sdk.client_class.authenticate.assert_awaited_once()
        kwargs = op_sdk.client_class.authenticate.call_args.kwargs
        assert kwargs["auth"] == "ops_token"
        assert kwargs["integration_name"] == "k8s-secret-sync"

    def test_resolve(self, op_provider, op_sdk):
        assert op_provider.resolve("op://vault/item/field") == "s3cr3t"
        op_sdk.client.secrets.resolve.assert_awaited_once_with("op://vault/item/field")

    def test_resolve_hits_sdk_every_time(self, op_provider, op_sdk):
        op_provider.resolve("op://vault/item/field")
        op_provider.resolve("op://vault/item/field")

        assert op_sdk.client.secrets.resolve.await_count == 2

    def test_rejects_non_op_reference(self, op_provider, op_sdk):
        with pytest.raises(SecretNotFound):
            op_provider.resolve("vault-item-42")

        op_sdk.client.secrets.resolve.assert_not_awaited()

    @pytest.mark.parametrize("message,expected", [
        ("error resolving secret reference: no item matched the secret reference query", SecretNotFound),
        ("error resolving secret reference: no field matched the secret reference query", SecretNotFound),
        ("invalid service account token", ProviderAuthError),
        ("connection reset by peer", ProviderUnavailable),
    ])
    def test_error_mapping(self, op_provider, op_sdk, message, expected):
        op_sdk.client.secrets.resolve.side_effect = Exception(message)

        with pytest.raises(expected):
            op_provider.resolve("op://vault/item/field")

    def test_empty_token_rejected(self, op_sdk):
        with pytest.raises(ProviderAuthError):
            OnePasswordProvider("")

        op_sdk.client_class.authenticate.assert_not_awaited()

    def test_authentication_failure(self, op_sdk):
        op_sdk.client_class.authenticate.side_effect = Exception("invalid token")

        with pytest.raises(ProviderAuthError):
            OnePasswordProvider("bad")

    @pytest.mark.parametrize("message,expected", [
        ("invalid service account token", ProviderAuthError),
        ("account not found for token", ProviderAuthError),
        ("error sending request: connection refused", ProviderUnavailable),
    ])
    def test_authentication_error_mapping(self, op_sdk, message, expected):
        """Network failures while signing in are transient, not credential problems."""
        op_sdk.client_class.authenticate.side_effect = Exception(message)

        with pytest.raises(expected):
            OnePasswordProvider("ops_token")

    def test_from_env(self, op_sdk, monkeypatch):
        monkeypatch.setenv("CUSTOM_OP_TOKEN", "from-env")

        provider = OnePasswordProvider.from_env("CUSTOM_OP_TOKEN")
        try:
            assert op_sdk.client_class.authenticate.call_args.kwargs["auth"] == "from-env"
        finally:
            provider.close()

    def test_from_env_missing(self, op_sdk):
        with pytest.raises(ProviderAuthError) as exc_info:
            OnePasswordProvider.from_env("MISSING_OP_TOKEN")

        assert "MISSING_OP_TOKEN" in str(exc_info.value)


def _gcp_response(payload: bytes):
    return SimpleNamespace(payload=SimpleNamespace(data=payload))


@pytest.fixture
def gcp_provider():
    provider = GCPSecretProvider(project_id="my-project")
    provider._client = mock.MagicMock()
    provider._client.access_secret_version.return_value = _gcp_response(b"s3cr3t")
    return provider


class TestGCPSecretProvider:
    """Test the GCP Secret Manager provider against a mocked client."""

    @pytest.mark.parametrize("reference,expected", [
        ("db-password", "projects/my-project/secrets/db-password/versions/latest"),
        ("projects/other/secrets/api-key", "projects/other/secrets/api-key/versions/latest"),
        ("projects/other/secrets/api-key/versions/3", "projects/other/secrets/api-key/versions/3"),
    ])
    def test_version_name(self, gcp_provider, reference, expected):
        assert gcp_provider.version_name(reference) == expected

    def test_malformed_reference(self, gcp_provider):
        with pytest.raises(SecretNotFound):
            gcp_provider.version_name("projects/other/keys/api-key")

    def test_bare_name_requires_project(self):
        provider = GCPSecretProvider()

        with pytest.raises(SecretNotFound) as exc_info:
            provider.version_name("db-password")

        assert "no GCP project" in str(exc_info.value)

    def test_resolve(self, gcp_provider):
        assert gcp_provider.resolve("db-password") == "s3cr3t"
        gcp_provider._client.access_secret_version.assert_called_once_with(
            request={"name": "projects/my-project/secrets/db-password/versions/latest"}
        )

    @pytest.mark.parametrize("error,expected", [
        (gcp_exceptions.NotFound("missing"), SecretNotFound),
        (gcp_exceptions.PermissionDenied("denied"), ProviderAuthError),
        (gcp_exceptions.Unauthenticated("who are you"), ProviderAuthError),
        (gcp_exceptions.ServiceUnavailable("try later"), ProviderUnavailable),
    ])
    def test_error_mapping(self, gcp_provider, error, expected):
        gcp_provider._client.access_secret_version.side_effect = error

        with pytest.raises(expected):
            gcp_provider.resolve("db-password")

    def test_non_utf8_payload(self, gcp_provider):
        gcp_provider._client.access_secret_version.return_value = _gcp_response(b"\xff\xfe")

        with pytest.raises(ProviderError):
            gcp_provider.resolve("db-password")

    def test_service_account_path_sets_credentials(self, monkeypatch, tmp_path):
        monkeypatch.delenv("GOOGLE_APPLICATION_CREDENTIALS", raising=False)
        sa_file = tmp_path / "sa.json"
        sa_file.write_text("{}")

        GCPSecretProvider(project_id="p", service_account_path=str(sa_file))

        assert os.environ["GOOGLE_APPLICATION_CREDENTIALS"] == str(sa_file)

    def test_close_releases_transport(self, gcp_provider):
        transport = gcp_provider._client.transport

        gcp_provider.close()

        transport.close.assert_called_once()
        assert gcp_provider._client is None

    def test_close_before_first_use(self):
        GCPSecretProvider(project_id="p").close()
