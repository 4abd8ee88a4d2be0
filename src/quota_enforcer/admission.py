"""Admission-time quota check for pod creation."""

import logging
from dataclasses import dataclass
from typing import Optional

from kubernetes import client

from .metrics import EnforcerMetrics
from .policy_cache import PolicyCache, PolicySpec
from .usage import NamespaceUsage, Reason, compute_usage
from .utils import format_cpu, format_memory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdmissionDecision:
    allowed: bool
    reason: str = ""
    tag: Reason = Reason.NONE


ALLOW = AdmissionDecision(allowed=True)


def check_projection(usage: NamespaceUsage, policy: PolicySpec) -> AdmissionDecision:
    """Decide on projected usage (existing pods plus the candidate)."""
    if policy.max_pods > 0 and usage.pod_count > policy.max_pods:
        return AdmissionDecision(
            allowed=False,
            reason=f"maxPods exceeded: {usage.pod_count} > {policy.max_pods}",
            tag=Reason.PODS,
        )
    if policy.max_cpu > 0 and usage.total_cpu > policy.max_cpu:
        return AdmissionDecision(
            allowed=False,
            reason=f"cpu exceeded: {format_cpu(usage.total_cpu)} > {format_cpu(policy.max_cpu)}",
            tag=Reason.CPU,
        )
    if policy.max_memory > 0 and usage.total_memory > policy.max_memory:
        return AdmissionDecision(
            allowed=False,
            reason=f"memory exceeded: {format_memory(usage.total_memory)} > {format_memory(policy.max_memory)}",
            tag=Reason.MEMORY,
        )
    return ALLOW


class AdmissionDecisionEngine:
    """
    Accepts or rejects a pod before it is persisted.

    The candidate pod is counted as already admitted, so a namespace at its
    limit rejects the next pod instead of evicting it later. Missing policies
    and failed reads allow the request.
    """

    def __init__(self, policy_cache: PolicyCache, core_api=None, metrics: Optional[EnforcerMetrics] = None):
        self.policy_cache = policy_cache
        self.v1 = core_api if core_api is not None else client.CoreV1Api()
        self.metrics = metrics if metrics is not None else EnforcerMetrics()

    def decide(self, namespace: str, pod) -> AdmissionDecision:
        """
        Decide whether a pod may be created in a namespace.

        Args:
            namespace: Target namespace
            pod: Candidate V1Pod

        Returns:
            AdmissionDecision
        """
        policy, found = self.policy_cache.get(namespace)
        self.metrics.record_cache_lookup(found)
        if not found:
            self.metrics.record_admission(namespace, "allowed_no_policy")
            return ALLOW

        try:
            pods = self.v1.list_namespaced_pod(namespace=namespace).items or []
        except Exception as e:
            logger.warning(f"Allowing pod in {namespace}: cannot list pods ({e})")
            self.metrics.record_admission(namespace, "allowed_on_error")
            return ALLOW

        projected = compute_usage(pods).with_pod(pod)
        decision = check_projection(projected, policy)

        if decision.allowed:
            self.metrics.record_admission(namespace, "allowed")
        else:
            logger.info(f"Denied pod in {namespace} by policy {policy.name}: {decision.reason}")
            self.metrics.record_admission(namespace, "denied", decision.tag.value)
        return decision

    def invalidate(self, namespace: str) -> None:
        self.policy_cache.invalidate(namespace)
