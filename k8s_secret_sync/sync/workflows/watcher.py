"""Watch loop feeding Secret change notifications to the reconciler."""
import logging
import threading
from typing import Any, Dict, Optional

from kubernetes import watch
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from ..domains.k8s_client import SecretStore
from ..domains.models import EventType, SecretObject, SyncOutcome, WatchEvent
from .reconciler import Reconciler

logger = logging.getLogger(__name__)

# Seconds to wait before re-listing after the API connection failed
ERROR_RETRY_DELAY = 5

_HANDLED_EVENTS = (EventType.ADDED, EventType.MODIFIED)


def to_watch_event(raw: Dict[str, Any]) -> Optional[WatchEvent]:
    """
    Convert a raw watch event into a typed one.

    Returns None for event types or payloads that carry no Secret.
    """
    try:
        event_type = EventType(raw.get("type"))
    except ValueError:
        logger.warning(f"Ignoring watch event with unknown type {raw.get('type')!r}")
        return None

    obj = raw.get("object")
    if obj is None or getattr(obj, "metadata", None) is None:
        return None
    return WatchEvent(type=event_type, secret=SecretObject.from_k8s(obj))


class SecretWatcher:
    """
    Runs list+watch cycles until stopped.

    Every cycle lists all Secrets, reconciles each of them as if newly
    added, then watches from the list's resource version for at most
    ``poll_interval`` seconds. The periodic re-list is the resync.
    Events are handled one at a time.
    """

    def __init__(
        self,
        store: SecretStore,
        reconciler: Reconciler,
        poll_interval: int = 300,
        namespace: Optional[str] = None,
        stop_event: Optional[threading.Event] = None,
    ):
        self.store = store
        self.reconciler = reconciler
        self.poll_interval = poll_interval
        self.namespace = namespace
        self.stop_event = stop_event or threading.Event()
        self._watch: Optional[watch.Watch] = None

    @property
    def stopped(self) -> bool:
        return self.stop_event.is_set()

    def stop(self) -> None:
        """Request shutdown; the current event finishes or is abandoned."""
        self.stop_event.set()
        if self._watch is not None:
            self._watch.stop()

    def handle(self, event: WatchEvent) -> Optional[SyncOutcome]:
        """Dispatch one typed event to the reconciler."""
        if event.type not in _HANDLED_EVENTS:
            logger.debug(f"Ignoring {event.type.value} event for {event.secret.key}")
            return None

        try:
            return self.reconciler.reconcile(event.secret)
        except Exception:
            logger.exception(f"Unexpected error while reconciling {event.secret.key}")
            return None

    def relist(self) -> Optional[str]:
        """Reconcile every current Secret and return the list's resource version."""
        secret_list = self.store.list_secrets(self.namespace)
        items = secret_list.items or []
        logger.info(f"Listed {len(items)} secret(s), reconciling")

        for item in items:
            if self.stopped:
                break
            self.handle(WatchEvent(type=EventType.ADDED, secret=SecretObject.from_k8s(item)))

        return secret_list.metadata.resource_version

    def watch_once(self, resource_version: Optional[str]) -> None:
        """Consume one bounded watch stream."""
        self._watch = watch.Watch()
        try:
            stream = self.store.watch_secrets(
                self._watch,
                resource_version,
                timeout_seconds=self.poll_interval,
                namespace=self.namespace,
            )
            for raw in stream:
                if self.stopped:
                    break
                event = to_watch_event(raw)
                if event is not None:
                    self.handle(event)
        finally:
            self._watch.stop()
            self._watch = None

    def run(self) -> None:
        """Run list+watch cycles until ``stop`` is called."""
        scope = f"namespace {self.namespace}" if self.namespace else "all namespaces"
        logger.info(f"Watching secrets in {scope} (resync every {self.poll_interval}s)")

        while not self.stopped:
            try:
                resource_version = self.relist()
                if self.stopped:
                    break
                self.watch_once(resource_version)
            except ApiException as e:
                if e.status == 410:
                    logger.info("Watch resource version expired, re-listing")
                    continue
                logger.error(f"Kubernetes API error while watching secrets: {e.status} {e.reason}")
                self.stop_event.wait(ERROR_RETRY_DELAY)
            except HTTPError as e:
                logger.error(f"Lost connection to the Kubernetes API: {e}")
                self.stop_event.wait(ERROR_RETRY_DELAY)

        logger.info("Secret watcher stopped")
