"""GCP Secret Manager provider."""
import os
import logging
from typing import Optional
from google.api_core import exceptions as gcp_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import secretmanager

from .providers import (
    ProviderAuthError,
    ProviderError,
    ProviderUnavailable,
    SecretNotFound,
    SecretProvider,
)

logger = logging.getLogger(__name__)


class GCPSecretProvider(SecretProvider):
    """Resolves references against GCP Secret Manager."""

    def __init__(self, project_id: Optional[str] = None, service_account_path: Optional[str] = None):
        self.project_id = project_id
        self._client = None

        # Credentials are fixed for the life of the process
        if service_account_path:
            os.environ['GOOGLE_APPLICATION_CREDENTIALS'] = service_account_path
            logger.info(f"Set GOOGLE_APPLICATION_CREDENTIALS from config: {service_account_path}")

    @property
    def client(self) -> secretmanager.SecretManagerServiceClient:
        """Lazy-initialize client."""
        if self._client is None:
            try:
                self._client = secretmanager.SecretManagerServiceClient()
            except auth_exceptions.DefaultCredentialsError as e:
                raise ProviderAuthError(f"No usable GCP credentials: {e}") from e
        return self._client

    def version_name(self, reference: str) -> str:
        """
        Turn a reference into a full secret version resource name.

        Accepted forms:
            projects/<project>/secrets/<secret>/versions/<version>
            projects/<project>/secrets/<secret>  (latest version)
            <secret>                             (configured project, latest version)
        """
        reference = reference.strip("/")
        if reference.startswith("projects/"):
            parts = reference.split("/")
            if len(parts) == 4 and parts[2] == "secrets":
                return f"{reference}/versions/latest"
            if len(parts) == 6 and parts[2] == "secrets" and parts[4] == "versions":
                return reference
            raise SecretNotFound(f"Malformed GCP secret reference: {reference}")

        if not self.project_id:
            raise SecretNotFound(
                f"Cannot resolve bare secret name '{reference}': no GCP project configured"
            )
        return f"projects/{self.project_id}/secrets/{reference}/versions/latest"

    def resolve(self, reference: str) -> str:
        """Fetch the referenced secret version and decode it as UTF-8."""
        name = self.version_name(reference)
        try:
            response = self.client.access_secret_version(request={"name": name})
        except gcp_exceptions.NotFound as e:
            raise SecretNotFound(f"GCP secret not found: {name}") from e
        except (gcp_exceptions.PermissionDenied, gcp_exceptions.Unauthenticated) as e:
            raise ProviderAuthError(f"Access denied to GCP secret {name}: {e}") from e
        except gcp_exceptions.GoogleAPIError as e:
            raise ProviderUnavailable(f"GCP Secret Manager request failed for {name}: {e}") from e
        except auth_exceptions.GoogleAuthError as e:
            raise ProviderAuthError(f"GCP authentication failed: {e}") from e

        try:
            return response.payload.data.decode("UTF-8")
        except UnicodeDecodeError as e:
            raise ProviderError(f"GCP secret {name} is not valid UTF-8") from e

    def close(self) -> None:
        if self._client is not None:
            self._client.transport.close()
            self._client = None
