"""
1Password secret provider.

Uses the official 1Password SDK with a service account token. The SDK is
async only, so the provider keeps its own event loop and drives it from the
synchronous ``resolve`` call.
"""

import asyncio
import logging
import os
from typing import Optional

from onepassword.client import Client

from .providers import (
    ProviderAuthError,
    ProviderUnavailable,
    SecretNotFound,
    SecretProvider,
)

logger = logging.getLogger(__name__)

INTEGRATION_NAME = "k8s-secret-sync"
INTEGRATION_VERSION = "v0.1.0"

_AUTH_MARKERS = ("auth", "token", "unauthorized", "forbidden", "permission")
_NOT_FOUND_MARKERS = ("not found", "no item", "no vault", "no field", "isn't a", "invalid secret reference")


def _classify(action: str, error: Exception, lookup: bool = True):
    """Map an SDK error onto the provider error taxonomy."""
    message = str(error).lower()
    if lookup and any(marker in message for marker in _NOT_FOUND_MARKERS):
        return SecretNotFound(f"1Password could not find {action}: {error}")
    if any(marker in message for marker in _AUTH_MARKERS):
        return ProviderAuthError(f"1Password rejected {action}: {error}")
    return ProviderUnavailable(f"1Password failed {action}: {error}")


class OnePasswordProvider(SecretProvider):
    """
    1Password provider.

    References are secret reference URIs: ``op://<vault>/<item>/<field>``.
    """

    def __init__(self, token: str, loop: Optional[asyncio.AbstractEventLoop] = None):
        if not token:
            raise ProviderAuthError("1Password service account token is empty")

        self._loop = loop or asyncio.new_event_loop()
        try:
            self._client = self._loop.run_until_complete(
                Client.authenticate(
                    auth=token,
                    integration_name=INTEGRATION_NAME,
                    integration_version=INTEGRATION_VERSION,
                )
            )
        except Exception as e:
            self._loop.close()
            raise _classify("service account authentication", e, lookup=False) from e

        logger.info("Connected to 1Password")

    @classmethod
    def from_env(cls, token_env: str = "OP_SERVICE_ACCOUNT_TOKEN") -> "OnePasswordProvider":
        """Build a provider from the token stored in ``token_env``."""
        token = os.getenv(token_env)
        if not token:
            raise ProviderAuthError(f"Environment variable {token_env} not set")
        return cls(token)

    def resolve(self, reference: str) -> str:
        """Resolve an ``op://`` reference."""
        if not reference.startswith("op://"):
            raise SecretNotFound(f"Invalid 1Password reference format: {reference}")

        try:
            return self._loop.run_until_complete(self._client.secrets.resolve(reference))
        except Exception as e:
            raise _classify(f"reference {reference}", e) from e

    def close(self) -> None:
        self._loop.close()
