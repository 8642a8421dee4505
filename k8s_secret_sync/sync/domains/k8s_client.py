"""Kubernetes client wrapper: cluster connection and Secret access."""
import logging
import os
from typing import Any, Dict, Iterator, Optional

from kubernetes import client, config as k8s_config, watch
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

logger = logging.getLogger(__name__)


class BootstrapError(Exception):
    """The process cannot start (no cluster connection, missing credentials)."""
    pass


class PatchError(Exception):
    """The API server rejected or failed to apply a patch."""
    pass


def default_kubeconfig_path() -> Optional[str]:
    home = os.getenv("HOME")
    if not home:
        return None
    return os.path.join(home, ".kube", "config")


def init_api_client(kubeconfig: Optional[str] = None) -> client.ApiClient:
    """
    Connect to the cluster.

    In-cluster configuration is tried first; outside a cluster the kubeconfig
    file is used (``kubeconfig`` argument, ``$KUBECONFIG``, then
    ``~/.kube/config``).

    Raises:
        BootstrapError: If no configuration can be loaded
    """
    try:
        k8s_config.load_incluster_config()
        logger.info("Using in-cluster Kubernetes configuration")
    except k8s_config.ConfigException:
        config_file = kubeconfig or os.getenv("KUBECONFIG") or default_kubeconfig_path()
        try:
            k8s_config.load_kube_config(config_file=config_file)
        except (k8s_config.ConfigException, OSError, TypeError) as e:
            raise BootstrapError(f"Unable to load Kubernetes configuration from {config_file}: {e}") from e
        logger.info(f"Using kubeconfig: {config_file}")

    return client.ApiClient()


class SecretStore:
    """Secret reads, watches and patches against the Kubernetes API."""

    def __init__(self, api: Optional[client.CoreV1Api] = None):
        self._api = api

    @property
    def api(self) -> client.CoreV1Api:
        """Lazy-initialize API."""
        if self._api is None:
            self._api = client.CoreV1Api()
        return self._api

    def check_connection(self, namespace: Optional[str] = None) -> None:
        """
        List one Secret in the scope that will be watched.

        Confirms both that the API server is reachable and that we may list
        Secrets there.

        Raises:
            BootstrapError: If the call fails or listing is forbidden
        """
        list_func, kwargs = self._list_function(namespace)
        scope = f"namespace {namespace}" if namespace else "all namespaces"
        try:
            list_func(limit=1, **kwargs)
        except ApiException as e:
            if e.status == 403:
                raise BootstrapError(f"Not allowed to list secrets in {scope}: {e.reason}") from e
            raise BootstrapError(f"Kubernetes API check failed: {e.status} {e.reason}") from e
        except HTTPError as e:
            raise BootstrapError(f"Unable to reach the Kubernetes API: {e}") from e

        logger.info("Successfully connected to Kubernetes cluster")

    def _list_function(self, namespace: Optional[str]):
        if namespace:
            return self.api.list_namespaced_secret, {"namespace": namespace}
        return self.api.list_secret_for_all_namespaces, {}

    def list_secrets(self, namespace: Optional[str] = None) -> Any:
        """Return a ``V1SecretList`` for one namespace or the whole cluster."""
        list_func, kwargs = self._list_function(namespace)
        return list_func(**kwargs)

    def watch_secrets(
        self,
        watcher: watch.Watch,
        resource_version: Optional[str],
        timeout_seconds: int,
        namespace: Optional[str] = None,
    ) -> Iterator[Dict[str, Any]]:
        """Stream raw watch events starting after ``resource_version``."""
        list_func, kwargs = self._list_function(namespace)
        if resource_version:
            kwargs["resource_version"] = resource_version
        return watcher.stream(list_func, timeout_seconds=timeout_seconds, **kwargs)

    def patch_secret(self, namespace: str, name: str, body: Dict[str, Any]) -> None:
        """
        Apply a strategic merge patch to a Secret.

        Only the fields present in ``body`` change.

        Raises:
            PatchError: If the API rejects the patch or cannot be reached
        """
        try:
            self.api.patch_namespaced_secret(name=name, namespace=namespace, body=body)
        except ApiException as e:
            raise PatchError(f"Patch of {namespace}/{name} rejected: {e.status} {e.reason}") from e
        except HTTPError as e:
            raise PatchError(f"Patch of {namespace}/{name} failed: {e}") from e
