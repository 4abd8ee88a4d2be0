"""Namespace usage computation and violation checks."""

from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable

from .policy_cache import PolicySpec
from .utils import ZERO, format_cpu, format_memory, is_terminal, pod_requests


class Reason(str, Enum):
    """First violated limit, in check order."""
    NONE = "none"
    PODS = "pods"
    CPU = "cpu"
    MEMORY = "memory"


@dataclass(frozen=True)
class NamespaceUsage:
    """Aggregate requests of the live pods in a namespace."""
    pod_count: int = 0
    total_cpu: Decimal = ZERO
    total_memory: Decimal = ZERO

    def with_pod(self, pod) -> "NamespaceUsage":
        """Return the usage projected as if the given pod were admitted."""
        cpu, memory = pod_requests(pod)
        return NamespaceUsage(
            pod_count=self.pod_count + 1,
            total_cpu=self.total_cpu + cpu,
            total_memory=self.total_memory + memory,
        )


@dataclass(frozen=True)
class EnforcementResult:
    """Outcome of evaluating usage against a policy."""
    usage: NamespaceUsage = field(default_factory=NamespaceUsage)
    violated: bool = False
    reason: Reason = Reason.NONE
    message: str = ""

    def with_message(self, message: str) -> "EnforcementResult":
        return replace(self, message=message)

    def to_status(self) -> Dict[str, Any]:
        """Convert to the policy's status subresource fields."""
        return {
            "currentPods": self.usage.pod_count,
            "cpuUsage": format_cpu(self.usage.total_cpu),
            "memoryUsage": format_memory(self.usage.total_memory),
            "violation": self.violated,
            "message": self.message,
        }


def compute_usage(pods: Iterable[Any]) -> NamespaceUsage:
    """
    Sum container requests across all pods not in a terminal phase.

    Args:
        pods: Pod objects as returned by the API

    Returns:
        The NamespaceUsage
    """
    count = 0
    total_cpu = ZERO
    total_memory = ZERO

    for pod in pods:
        if is_terminal(pod):
            continue
        count += 1
        cpu, memory = pod_requests(pod)
        total_cpu += cpu
        total_memory += memory

    return NamespaceUsage(pod_count=count, total_cpu=total_cpu, total_memory=total_memory)


def evaluate(usage: NamespaceUsage, policy: PolicySpec) -> EnforcementResult:
    """
    Compare usage with a policy's limits.

    Limits of zero are unset. Only the first violation in the order
    pods, cpu, memory is reported.
    """
    if policy.max_pods > 0 and usage.pod_count > policy.max_pods:
        return EnforcementResult(
            usage=usage,
            violated=True,
            reason=Reason.PODS,
            message=f"pods:{usage.pod_count}>max:{policy.max_pods}",
        )

    if policy.max_cpu > 0 and usage.total_cpu > policy.max_cpu:
        return EnforcementResult(
            usage=usage,
            violated=True,
            reason=Reason.CPU,
            message=f"cpu:{format_cpu(usage.total_cpu)}>max:{format_cpu(policy.max_cpu)}",
        )

    if policy.max_memory > 0 and usage.total_memory > policy.max_memory:
        return EnforcementResult(
            usage=usage,
            violated=True,
            reason=Reason.MEMORY,
            message=(
                f"memory:{format_memory(usage.total_memory)}"
                f">max:{format_memory(policy.max_memory)}"
            ),
        )

    return EnforcementResult(usage=usage)
