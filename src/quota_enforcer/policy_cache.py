"""Namespace-keyed view of ResourceQuotaPolicy objects."""

import logging
import threading
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from .config import CACHE_RESYNC_SECONDS, CRD_GROUP, CRD_PLURAL, CRD_VERSION
from .informer import ChangeHandler, ReadWriteLock, WatchCache
from .utils import ZERO, to_quantity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PolicySpec:
    """Parsed policy specification. Zero limits are unset."""
    name: str
    namespace: str
    max_pods: int = 0
    max_cpu: Decimal = ZERO
    max_memory: Decimal = ZERO

    @classmethod
    def from_crd(cls, crd_object: Dict[str, Any]) -> "PolicySpec":
        """Create PolicySpec from CRD object."""
        metadata = crd_object.get("metadata", {})
        spec = crd_object.get("spec") or {}
        name = metadata.get("name", "")
        namespace = metadata.get("namespace", "default")

        return cls(
            name=name,
            namespace=namespace,
            max_pods=_parse_max_pods(spec.get("maxPods"), namespace, name),
            max_cpu=_parse_limit(spec.get("maxCPU"), "maxCPU", namespace, name),
            max_memory=_parse_limit(spec.get("maxMemory"), "maxMemory", namespace, name),
        )


def _parse_max_pods(value: Any, namespace: str, name: str) -> int:
    if value is None or value == "":
        return 0
    try:
        max_pods = int(value)
    except (TypeError, ValueError):
        logger.warning(f"Policy {namespace}/{name}: invalid maxPods {value!r}, treating as unset")
        return 0
    if max_pods < 0:
        logger.warning(f"Policy {namespace}/{name}: negative maxPods {max_pods}, treating as unset")
        return 0
    return max_pods


def _parse_limit(value: Any, field_name: str, namespace: str, name: str) -> Decimal:
    try:
        return to_quantity(value)
    except (TypeError, ValueError):
        logger.warning(f"Policy {namespace}/{name}: invalid {field_name} {value!r}, treating as unset")
        return ZERO


class PolicyCache:
    """
    Thread-safe policy lookups for the reconciler and the admission webhook.

    Lookups read the policy watch cache and report nothing until it has
    synced. The enforced map records the policy each namespace was last
    reconciled against; the reconciler writes it and admission may read it.
    """

    def __init__(self, informer: WatchCache):
        """
        Initialize the cache.

        Args:
            informer: WatchCache over ResourceQuotaPolicy objects
        """
        self.informer = informer
        self._enforced: Dict[str, PolicySpec] = {}
        self._lock = ReadWriteLock()

    @classmethod
    def for_cluster(cls, custom_api, resync_period: float = CACHE_RESYNC_SECONDS, **kwargs) -> "PolicyCache":
        """Build a cache watching policies in all namespaces."""
        informer = WatchCache(
            "policies",
            custom_api.list_cluster_custom_object,
            list_kwargs={"group": CRD_GROUP, "version": CRD_VERSION, "plural": CRD_PLURAL},
            resync_period=resync_period,
            **kwargs,
        )
        return cls(informer)

    def run(self, stop_event: threading.Event) -> None:
        self.informer.run(stop_event)

    def start(self, stop_event: threading.Event) -> threading.Thread:
        return self.informer.start(stop_event)

    def has_synced(self) -> bool:
        return self.informer.has_synced()

    def wait_for_ready(self, timeout: float, stop_event: Optional[threading.Event] = None) -> bool:
        return self.informer.wait_for_sync(stop_event, timeout)

    def on_change(self, callback: ChangeHandler) -> None:
        self.informer.on_change(callback)

    def get(self, namespace: str) -> Tuple[Optional[PolicySpec], bool]:
        """
        Get the policy governing a namespace.

        Returns:
            Tuple of (PolicySpec, found); not found before the cache syncs
        """
        obj, found = self.informer.get(namespace)
        if not found:
            return None, False
        return PolicySpec.from_crd(obj), True

    def list(self, namespace: str) -> List[PolicySpec]:
        """List all policies in a namespace, ordered by name."""
        return [PolicySpec.from_crd(obj) for obj in self.informer.list(namespace)]

    def invalidate(self, namespace: str) -> None:
        """No-op: the watch keeps entries current."""
        logger.debug(f"Invalidate requested for {namespace}, watch cache is always current")

    # Enforced policies

    def add_or_update(self, policy: PolicySpec) -> PolicySpec:
        with self._lock.write_lock():
            self._enforced[policy.namespace] = policy
        logger.debug(f"Enforcing policy {policy.namespace}/{policy.name}")
        return policy

    def remove(self, namespace: str) -> Optional[PolicySpec]:
        with self._lock.write_lock():
            policy = self._enforced.pop(namespace, None)
        if policy:
            logger.info(f"Removed enforced policy for namespace {namespace}")
        return policy

    def enforced(self, namespace: str) -> Optional[PolicySpec]:
        with self._lock.read_lock():
            return self._enforced.get(namespace)
