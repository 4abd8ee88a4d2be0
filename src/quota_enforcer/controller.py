"""Main controller logic for the Resource Quota Enforcer."""

import logging
import threading
from typing import Any, List, Optional

from kubernetes import client
from kubernetes.client.rest import ApiException

from .config import CACHE_RESYNC_SECONDS, DEFAULT_WORKERS, RESYNC_INTERVAL_SECONDS
from .crd_client import ResourceQuotaPolicyClient
from .events import EVENT_NORMAL, EVENT_WARNING, EventRecorder
from .exceptions import QuotaEnforcerError
from .health import HealthState
from .informer import WatchCache
from .metrics import EnforcerMetrics
from .policy_cache import PolicyCache
from .reconciler import NamespaceEnforcer
from .usage import EnforcementResult
from .utils import object_key
from .workqueue import RateLimitingQueue

logger = logging.getLogger(__name__)


class QuotaController:
    """
    Watches namespaces, pods and ResourceQuotaPolicy objects and keeps every
    namespace within its policy.

    Cache events and a periodic timer feed namespace names into a
    rate-limited queue; a pool of workers reconciles one namespace at a time.
    """

    def __init__(
        self,
        core_api=None,
        custom_api=None,
        policy_cache: Optional[PolicyCache] = None,
        pod_cache: Optional[WatchCache] = None,
        namespace_cache: Optional[WatchCache] = None,
        enforcer: Optional[NamespaceEnforcer] = None,
        policy_client: Optional[ResourceQuotaPolicyClient] = None,
        recorder: Optional[EventRecorder] = None,
        metrics: Optional[EnforcerMetrics] = None,
        health: Optional[HealthState] = None,
        resync_interval: float = RESYNC_INTERVAL_SECONDS,
        cache_resync: float = CACHE_RESYNC_SECONDS,
        dry_run: bool = False,
    ):
        """
        Initialize the controller. Collaborators not given are built from
        the API clients.

        Args:
            core_api: CoreV1Api instance
            custom_api: CustomObjectsApi instance
            resync_interval: Seconds between full namespace re-queues
            cache_resync: Seconds between synthetic cache events (0 disables)
            dry_run: If True, don't delete pods
        """
        self.v1 = core_api if core_api is not None else client.CoreV1Api()
        custom_api = custom_api if custom_api is not None else client.CustomObjectsApi()

        self.metrics = metrics if metrics is not None else EnforcerMetrics()
        self.health = health if health is not None else HealthState()

        if policy_cache is None:
            policy_cache = PolicyCache.for_cluster(custom_api, resync_period=cache_resync)
        if pod_cache is None:
            pod_cache = WatchCache("pods", self.v1.list_pod_for_all_namespaces, resync_period=cache_resync)
        if namespace_cache is None:
            namespace_cache = WatchCache("namespaces", self.v1.list_namespace, resync_period=cache_resync)
        self.policy_cache = policy_cache
        self.pod_cache = pod_cache
        self.namespace_cache = namespace_cache

        if enforcer is None:
            enforcer = NamespaceEnforcer(self.v1, self.metrics, dry_run=dry_run)
        self.enforcer = enforcer
        self.policy_client = policy_client if policy_client is not None else ResourceQuotaPolicyClient(custom_api)
        self.recorder = recorder if recorder is not None else EventRecorder(self.v1)

        self.queue = RateLimitingQueue("resource-quota-enforcer")
        self.resync_interval = resync_interval

        self._caches_started = False
        self.cache_threads: List[threading.Thread] = []
        self._running = False
        self._start_lock = threading.Lock()

        self.namespace_cache.on_change(self._on_namespace_event)
        self.pod_cache.on_change(self._on_namespaced_event)
        self.policy_cache.on_change(self._on_namespaced_event)

    # Event handlers

    def _on_namespace_event(self, event_type: str, namespace: Any) -> None:
        _, name = object_key(namespace)
        if name:
            self.queue.add(name)

    def _on_namespaced_event(self, event_type: str, obj: Any) -> None:
        namespace, _ = object_key(obj)
        if namespace:
            self.queue.add(namespace)

    # Caches

    def start_caches(self, stop_event: threading.Event) -> None:
        """Start the namespace, pod and policy watch caches. Only the first call has an effect."""
        with self._start_lock:
            if self._caches_started:
                return
            self._caches_started = True

        self.cache_threads = [
            self.namespace_cache.start(stop_event),
            self.pod_cache.start(stop_event),
            self.policy_cache.start(stop_event),
        ]

    def wait_for_cache_sync(self, stop_event: threading.Event, timeout: Optional[float] = None) -> bool:
        caches = (self.namespace_cache, self.pod_cache, self.policy_cache.informer)
        return all(cache.wait_for_sync(stop_event, timeout) for cache in caches)

    # Reconciliation

    def sync_namespace(self, namespace: str) -> Optional[EnforcementResult]:
        """
        Reconcile one namespace against its policy.

        Returns:
            The final EnforcementResult, or None if the namespace has no policy

        Raises:
            QuotaEnforcerError: If enforcement or the status update failed
        """
        logger.debug(f"Reconciling namespace: {namespace}")

        policies = self.policy_cache.list(namespace)
        if not policies:
            self.policy_cache.remove(namespace)
            logger.debug(f"No policies found in namespace {namespace}")
            return None

        policy = policies[0]
        if len(policies) > 1:
            logger.warning(f"Namespace {namespace} has {len(policies)} policies, enforcing {policy.name}")
        self.policy_cache.add_or_update(policy)

        self.recorder.record(
            policy, EVENT_NORMAL, "ReconcileStarted",
            f"Started reconciling ResourceQuotaPolicy {policy.name}"
        )

        try:
            result = self.enforcer.enforce_until_ok(namespace, policy)
            self.policy_client.update_policy_status(policy.name, namespace, result.to_status())
        except QuotaEnforcerError as e:
            self.metrics.record_reconcile(namespace, error=True)
            self.recorder.record(
                policy, EVENT_WARNING, "EnforcementFailed",
                f"Failed to enforce policy {policy.name}: {e}"
            )
            raise

        self.metrics.record_reconcile(namespace)
        self.recorder.record(
            policy, EVENT_NORMAL, "ReconcileSucceeded",
            f"Successfully enforced ResourceQuotaPolicy {policy.name}"
        )
        logger.debug(f"Finished syncing namespace {namespace}: {result.to_status()}")
        return result

    def process_next_item(self) -> bool:
        """
        Process a single key from the queue.

        Returns:
            False once the queue is shut down
        """
        namespace, shutdown = self.queue.get()
        if shutdown:
            return False

        try:
            self.sync_namespace(namespace)
        except QuotaEnforcerError as e:
            logger.error(f"Error syncing namespace {namespace}: {e} (will retry)")
            self.queue.add_rate_limited(namespace)
        except Exception:
            logger.exception(f"Unexpected error syncing namespace {namespace} (will retry)")
            self.queue.add_rate_limited(namespace)
        else:
            self.queue.forget(namespace)
            logger.debug(f"Successfully synced namespace {namespace}")
        finally:
            self.queue.done(namespace)

        return True

    def _run_worker(self, worker_id: int) -> None:
        logger.debug(f"Worker {worker_id} started")
        while self.process_next_item():
            pass
        logger.debug(f"Worker {worker_id} stopped")

    def resync_all(self) -> int:
        """
        Queue every namespace for reconciliation.

        Returns:
            Number of namespaces queued
        """
        try:
            namespaces = self.v1.list_namespace().items or []
        except ApiException as e:
            logger.error(f"[Resync] Error listing namespaces: {e.status} {e.reason}")
            return 0

        for namespace in namespaces:
            self.queue.add(namespace.metadata.name)
        logger.info(f"[Resync] Queued {len(namespaces)} namespaces for periodic enforcement")
        return len(namespaces)

    def _resync_loop(self, stop_event: threading.Event) -> None:
        logger.info(f"Starting periodic resync (interval: {self.resync_interval}s)")
        while not stop_event.wait(self.resync_interval):
            self.resync_all()
        logger.info("[Resync] Stopping periodic sync loop")

    def run(self, stop_event: threading.Event, workers: int = DEFAULT_WORKERS) -> None:
        """
        Run the controller until stop_event is set.

        Args:
            stop_event: Process-wide stop signal
            workers: Number of worker threads
        """
        with self._start_lock:
            if self._running:
                logger.warning("Controller is already running")
                return
            self._running = True

        logger.info("=" * 60)
        logger.info("Starting Resource Quota Enforcer controller")
        logger.info("=" * 60)

        self.start_caches(stop_event)
        if not self.wait_for_cache_sync(stop_event):
            logger.error("Failed to sync caches, exiting")
            self.queue.shut_down()
            return

        self.health.set_ready()

        logger.info(f"Starting {workers} workers...")
        threads: List[threading.Thread] = []
        for worker_id in range(workers):
            thread = threading.Thread(
                target=self._run_worker,
                args=(worker_id,),
                name=f"worker-{worker_id}",
                daemon=True
            )
            thread.start()
            threads.append(thread)

        threading.Thread(
            target=self._resync_loop,
            args=(stop_event,),
            name="namespace-resync",
            daemon=True
        ).start()

        stop_event.wait()

        logger.info("Shutting down work queue...")
        self.queue.shut_down()
        for thread in threads:
            thread.join(timeout=5)
        # Open watches notice the stop signal on their next event or timeout
        for thread in self.cache_threads:
            thread.join(timeout=5)
        logger.info("Controller stopped gracefully")
