"""In-memory stand-ins for the Kubernetes API used across the tests."""

import copy
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest
from kubernetes import client
from kubernetes.client.rest import ApiException

from quota_enforcer.config import CRD_GROUP, CRD_PLURAL, CRD_VERSION
from quota_enforcer.informer import WatchCache
from quota_enforcer.metrics import EnforcerMetrics
from quota_enforcer.policy_cache import PolicyCache

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_pod(
    name: str,
    namespace: str = "team-a",
    cpu: Optional[str] = None,
    memory: Optional[str] = None,
    age: int = 0,
    phase: str = "Running",
) -> client.V1Pod:
    """Build a pod created `age` minutes after BASE_TIME."""
    requests = {}
    if cpu:
        requests["cpu"] = cpu
    if memory:
        requests["memory"] = memory

    return client.V1Pod(
        metadata=client.V1ObjectMeta(
            name=name,
            namespace=namespace,
            creation_timestamp=BASE_TIME + timedelta(minutes=age),
            resource_version="1",
        ),
        spec=client.V1PodSpec(
            containers=[
                client.V1Container(
                    name="app",
                    image="busybox",
                    resources=client.V1ResourceRequirements(requests=requests or None),
                )
            ]
        ),
        status=client.V1PodStatus(phase=phase),
    )


def make_policy(
    namespace: str = "team-a",
    name: str = "quota",
    max_pods: Any = None,
    max_cpu: Optional[str] = None,
    max_memory: Optional[str] = None,
    resource_version: str = "1",
) -> Dict[str, Any]:
    spec = {}
    if max_pods is not None:
        spec["maxPods"] = max_pods
    if max_cpu is not None:
        spec["maxCPU"] = max_cpu
    if max_memory is not None:
        spec["maxMemory"] = max_memory
    return {
        "apiVersion": f"{CRD_GROUP}/{CRD_VERSION}",
        "kind": "ResourceQuotaPolicy",
        "metadata": {"name": name, "namespace": namespace, "resourceVersion": resource_version},
        "spec": spec,
    }


class FakeCoreV1Api:
    """Pods, namespaces and events kept in dictionaries."""

    def __init__(self):
        self.pods: Dict[tuple, client.V1Pod] = {}
        self.namespaces: List[str] = []
        self.events: List[Any] = []
        self.deleted: List[str] = []
        self.delete_calls = 0
        self.delete_errors: List[Exception] = []
        self.list_error: Optional[Exception] = None
        self.event_error: Optional[Exception] = None
        self.ignore_deletes = False
        self._lock = threading.Lock()

    def add_pod(self, pod: client.V1Pod) -> None:
        with self._lock:
            self.pods[(pod.metadata.namespace, pod.metadata.name)] = pod

    def list_namespaced_pod(self, namespace, **kwargs):
        if self.list_error is not None:
            raise self.list_error
        with self._lock:
            items = [pod for (ns, _), pod in sorted(self.pods.items()) if ns == namespace]
        return client.V1PodList(items=items, metadata=client.V1ListMeta(resource_version="1"))

    def list_pod_for_all_namespaces(self, **kwargs):
        with self._lock:
            items = [pod for _, pod in sorted(self.pods.items())]
        return client.V1PodList(items=items, metadata=client.V1ListMeta(resource_version="1"))

    def list_namespace(self, **kwargs):
        if self.list_error is not None:
            raise self.list_error
        items = [client.V1Namespace(metadata=client.V1ObjectMeta(name=name)) for name in self.namespaces]
        return client.V1NamespaceList(items=items, metadata=client.V1ListMeta(resource_version="1"))

    def delete_namespaced_pod(self, name, namespace, **kwargs):
        with self._lock:
            self.delete_calls += 1
            if self.delete_errors:
                raise self.delete_errors.pop(0)
            if (namespace, name) not in self.pods:
                raise ApiException(status=404, reason="Not Found")
            if not self.ignore_deletes:
                del self.pods[(namespace, name)]
            self.deleted.append(name)

    def create_namespaced_event(self, namespace, body, **kwargs):
        if self.event_error is not None:
            raise self.event_error
        self.events.append(body)
        return body


class FakeCustomObjectsApi:
    """ResourceQuotaPolicy objects kept in a dictionary."""

    def __init__(self):
        self.policies: Dict[tuple, Dict[str, Any]] = {}
        self.status_patches: List[Dict[str, Any]] = []
        self.status_error: Optional[Exception] = None

    def add_policy(self, policy: Dict[str, Any]) -> None:
        metadata = policy["metadata"]
        self.policies[(metadata["namespace"], metadata["name"])] = policy

    def remove_policy(self, namespace: str, name: str) -> None:
        del self.policies[(namespace, name)]

    def list_cluster_custom_object(self, group, version, plural, **kwargs):
        assert (group, version, plural) == (CRD_GROUP, CRD_VERSION, CRD_PLURAL)
        items = [copy.deepcopy(obj) for _, obj in sorted(self.policies.items())]
        return {"items": items, "metadata": {"resourceVersion": "1"}}

    def get_namespaced_custom_object(self, group, version, namespace, plural, name, **kwargs):
        obj = self.policies.get((namespace, name))
        if obj is None:
            raise ApiException(status=404, reason="Not Found")
        return copy.deepcopy(obj)

    def patch_namespaced_custom_object_status(self, group, version, namespace, plural, name, body, **kwargs):
        if self.status_error is not None:
            raise self.status_error
        self.status_patches.append({"namespace": namespace, "name": name, "body": body})
        obj = self.policies[(namespace, name)]
        obj["status"] = body["status"]
        return copy.deepcopy(obj)


class FakeWatch:
    """
    Replays scripted watch batches. Each stream() call consumes one batch;
    a batch may be an exception to raise. The stop event is set once the
    last batch has been read to the end, or when stream() is called with
    nothing left to replay.
    """

    def __init__(self, batches: List[Any], stop_event: threading.Event):
        self.batches = list(batches)
        self.stop_event = stop_event
        self.calls: List[Dict[str, Any]] = []
        self.stopped = 0

    def __call__(self):
        return self

    def stream(self, func, **kwargs):
        self.calls.append(kwargs)
        if not self.batches:
            self.stop_event.set()
            return
        batch = self.batches.pop(0)
        if isinstance(batch, Exception):
            raise batch
        for event in batch:
            yield event
        if not self.batches:
            self.stop_event.set()

    def stop(self):
        self.stopped += 1


class IdleWatch:
    """Watch that emits nothing and ends when the stop event is set."""

    def __init__(self, stop_event: threading.Event):
        self.stop_event = stop_event

    def __call__(self):
        return self

    def stream(self, func, **kwargs):
        self.stop_event.wait(5)
        return
        yield

    def stop(self):
        pass


def wait_until(predicate, timeout: float = 5.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def metric_value(metrics: EnforcerMetrics, name: str, labels: Optional[Dict[str, str]] = None) -> float:
    """Read one sample from the metrics registry (0.0 if absent)."""
    return metrics.registry.get_sample_value(name, labels or {}) or 0.0


def synced_policy_cache(custom_api: FakeCustomObjectsApi) -> PolicyCache:
    """Policy cache populated by one list, without background threads."""
    cache = PolicyCache.for_cluster(custom_api, resync_period=0)
    cache.informer.relist()
    return cache


@pytest.fixture
def core_api():
    return FakeCoreV1Api()


@pytest.fixture
def custom_api():
    return FakeCustomObjectsApi()


@pytest.fixture
def metrics():
    return EnforcerMetrics()


@pytest.fixture
def stop_event():
    event = threading.Event()
    yield event
    event.set()


@pytest.fixture
def make_cache():
    def build(kind: str, list_func, **kwargs) -> WatchCache:
        kwargs.setdefault("resync_period", 0)
        kwargs.setdefault("backoff_initial", 0.01)
        return WatchCache(kind, list_func, **kwargs)
    return build
