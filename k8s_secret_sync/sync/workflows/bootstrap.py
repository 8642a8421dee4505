"""Wire configuration, providers and the cluster client into a running watcher."""
import logging
import os
import threading
from typing import Dict, Optional

from kubernetes import client

from ..domains.config_loader import SyncConfig
from ..domains.k8s_client import BootstrapError, SecretStore, init_api_client
from ..domains.providers import ProviderFactory, ProviderRegistry
from .reconciler import Reconciler
from .watcher import SecretWatcher

logger = logging.getLogger(__name__)


def build_registry(config: SyncConfig) -> ProviderRegistry:
    """Register a lazy factory for each enabled provider."""
    factories: Dict[str, ProviderFactory] = {}

    if "op" in config.providers:
        def _onepassword():
            from ..domains.onepassword_client import OnePasswordProvider
            return OnePasswordProvider.from_env(config.op_token_env)

        factories["op"] = _onepassword

    if "gcp" in config.providers:
        def _gcp():
            from ..domains.gcp_client import GCPSecretProvider
            return GCPSecretProvider(
                project_id=config.gcp_project_id,
                service_account_path=config.gcp_service_account_path,
            )

        factories["gcp"] = _gcp

    return ProviderRegistry(factories)


def check_credentials(config: SyncConfig) -> None:
    """
    Fail fast when an enabled provider has no credential.

    Raises:
        BootstrapError: If the 1Password token variable is unset
    """
    if "op" in config.providers and not os.getenv(config.op_token_env):
        raise BootstrapError(f"{config.op_token_env} not set (required by the 'op' provider)")


def create_watcher(
    config: SyncConfig,
    kubeconfig: Optional[str] = None,
    stop_event: Optional[threading.Event] = None,
) -> SecretWatcher:
    """
    Build a watcher ready to run.

    Raises:
        BootstrapError: If credentials are missing or the cluster is unreachable
    """
    check_credentials(config)

    api_client = init_api_client(kubeconfig)
    store = SecretStore(client.CoreV1Api(api_client))
    store.check_connection(config.watch_namespace)

    reconciler = Reconciler(
        store=store,
        providers=build_registry(config),
        annotation_keys=config.annotations,
        default_secret_key=config.default_secret_key,
    )
    return SecretWatcher(
        store=store,
        reconciler=reconciler,
        poll_interval=config.poll_interval,
        namespace=config.watch_namespace,
        stop_event=stop_event,
    )
