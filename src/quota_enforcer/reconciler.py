"""Enforcement logic: usage computation, victim selection and the eviction loop."""

import logging
import time
from datetime import datetime, timezone
from typing import Any, List, Optional, Sequence, Tuple

from kubernetes import client
from kubernetes.client.rest import ApiException

from .config import (
    CONVERGENCE_PAUSE_SECONDS,
    DELETE_GRACE_PERIOD_SECONDS,
    DELETE_RETRY_PAUSE_SECONDS,
    MAX_ENFORCE_ITERATIONS,
)
from .exceptions import EnforcementError
from .metrics import EnforcerMetrics
from .policy_cache import PolicySpec
from .usage import EnforcementResult, Reason, compute_usage, evaluate
from .utils import creation_time, live_pods

logger = logging.getLogger(__name__)

NO_VICTIM_MESSAGE = "violation but no suitable pod to delete"

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _age_key(pod) -> Tuple[datetime, str]:
    return creation_time(pod) or _EPOCH, pod.metadata.name or ""


def select_victim(pods: Sequence[Any], reason: Reason) -> Optional[Any]:
    """
    Choose the pod to delete for a violation.

    Pod-count violations shed the oldest pod; CPU and memory violations
    remove the newest one. Terminal pods are never chosen.

    Returns:
        The pod, or None if there is no candidate
    """
    if reason == Reason.NONE:
        return None

    candidates = live_pods(pods)
    if not candidates:
        return None

    if reason == Reason.PODS:
        return min(candidates, key=_age_key)
    return max(candidates, key=_age_key)


class NamespaceEnforcer:
    """Deletes pods in a namespace until its usage satisfies a policy."""

    def __init__(
        self,
        core_api=None,
        metrics: Optional[EnforcerMetrics] = None,
        dry_run: bool = False,
        max_iterations: int = MAX_ENFORCE_ITERATIONS,
        delete_retry_pause: float = DELETE_RETRY_PAUSE_SECONDS,
        convergence_pause: float = CONVERGENCE_PAUSE_SECONDS,
    ):
        """
        Initialize the enforcer.

        Args:
            core_api: CoreV1Api instance (created if omitted)
            metrics: Metrics sink for deletions
            dry_run: If True, log victims instead of deleting them
            max_iterations: Cap on delete attempts per call
            delete_retry_pause: Seconds to wait after a failed delete
            convergence_pause: Seconds to wait after a successful delete
        """
        self.v1 = core_api if core_api is not None else client.CoreV1Api()
        self.metrics = metrics
        self.dry_run = dry_run
        self.max_iterations = max_iterations
        self.delete_retry_pause = delete_retry_pause
        self.convergence_pause = convergence_pause

    def list_pods(self, namespace: str) -> List[Any]:
        """List pods straight from the API server."""
        try:
            response = self.v1.list_namespaced_pod(namespace=namespace)
        except ApiException as e:
            raise EnforcementError(
                f"list pods in {namespace}: {e.status} {e.reason}",
                namespace=namespace,
            ) from e
        return list(response.items or [])

    def evaluate_namespace(self, namespace: str, policy: PolicySpec) -> Tuple[EnforcementResult, List[Any]]:
        """
        Compute current usage and check it against the policy.

        Returns:
            Tuple of (EnforcementResult, listed pods)
        """
        pods = self.list_pods(namespace)
        return evaluate(compute_usage(pods), policy), pods

    def delete_pod(self, pod) -> None:
        """Delete a pod. A pod that is already gone counts as deleted."""
        try:
            self.v1.delete_namespaced_pod(
                name=pod.metadata.name,
                namespace=pod.metadata.namespace,
                grace_period_seconds=DELETE_GRACE_PERIOD_SECONDS
            )
        except ApiException as e:
            if e.status != 404:
                raise

    def enforce_until_ok(self, namespace: str, policy: PolicySpec) -> EnforcementResult:
        """
        Delete pods until usage is within the policy or the iteration cap is hit.

        Args:
            namespace: Namespace to enforce
            policy: The PolicySpec to enforce

        Returns:
            The final EnforcementResult; it may still be violated when the
            cap is reached or no pod can be chosen

        Raises:
            EnforcementError: If pods cannot be listed, or the cap was
                reached with the violation unresolved and the last delete failed
        """
        last_error: Optional[ApiException] = None

        for iteration in range(1, self.max_iterations + 1):
            result, pods = self.evaluate_namespace(namespace, policy)

            if not result.violated:
                return result

            victim = select_victim(pods, result.reason)
            if victim is None:
                logger.warning(f"Namespace {namespace} violates {policy.name} ({result.message}) but has no pod to delete")
                return result.with_message(NO_VICTIM_MESSAGE)

            pod_key = f"{namespace}/{victim.metadata.name}"

            if self.dry_run:
                logger.info(f"[DRY-RUN] Would delete pod {pod_key} ({result.message})")
                return result

            try:
                self.delete_pod(victim)
            except ApiException as e:
                last_error = e
                logger.error(f"Failed to delete pod {pod_key}: {e.status} {e.reason}")
                time.sleep(self.delete_retry_pause)
                continue

            last_error = None
            logger.info(f"Deleted {pod_key} to enforce policy {policy.name} ({result.message}, iteration {iteration})")
            if self.metrics is not None:
                self.metrics.record_action("delete", namespace)
            time.sleep(self.convergence_pause)

        final, _ = self.evaluate_namespace(namespace, policy)
        if final.violated:
            if last_error is not None:
                raise EnforcementError(
                    f"namespace {namespace} still violates {policy.name} ({final.message}): "
                    f"delete failed: {last_error.status} {last_error.reason}",
                    namespace=namespace,
                ) from last_error
            logger.warning(
                f"Namespace {namespace} still violates {policy.name} after "
                f"{self.max_iterations} iterations ({final.message}), will retry next cycle"
            )
        return final
