from decimal import Decimal

from conftest import make_pod
from quota_enforcer.policy_cache import PolicySpec
from quota_enforcer.usage import NamespaceUsage, Reason, compute_usage, evaluate


def policy(max_pods=0, max_cpu="0", max_memory="0"):
    return PolicySpec(
        name="quota",
        namespace="team-a",
        max_pods=max_pods,
        max_cpu=Decimal(max_cpu),
        max_memory=Decimal(max_memory),
    )


def test_compute_usage_skips_terminal_pods():
    pods = [
        make_pod("a", cpu="100m", memory="64Mi"),
        make_pod("b", cpu="200m", memory="64Mi", phase="Pending"),
        make_pod("c", cpu="4", memory="4Gi", phase="Succeeded"),
        make_pod("d", cpu="4", memory="4Gi", phase="Failed"),
    ]

    usage = compute_usage(pods)

    assert usage.pod_count == 2
    assert usage.total_cpu == Decimal("0.3")
    assert usage.total_memory == Decimal(128 * 1024 ** 2)


def test_compute_usage_of_nothing_is_zero():
    assert compute_usage([]) == NamespaceUsage()


def test_zero_limits_are_unset():
    usage = NamespaceUsage(pod_count=50, total_cpu=Decimal(100), total_memory=Decimal(10 ** 12))

    result = evaluate(usage, policy())

    assert not result.violated
    assert result.reason == Reason.NONE
    assert result.message == ""


def test_pods_reported_before_cpu_and_memory():
    usage = NamespaceUsage(pod_count=5, total_cpu=Decimal(8), total_memory=Decimal(10 ** 12))

    result = evaluate(usage, policy(max_pods=2, max_cpu="1", max_memory="1000"))

    assert result.violated
    assert result.reason == Reason.PODS
    assert result.message == "pods:5>max:2"


def test_cpu_reported_before_memory():
    usage = NamespaceUsage(pod_count=1, total_cpu=Decimal("0.8"), total_memory=Decimal(10 ** 12))

    result = evaluate(usage, policy(max_pods=2, max_cpu="0.5", max_memory="1000"))

    assert result.reason == Reason.CPU
    assert result.message == "cpu:800m>max:500m"


def test_memory_violation():
    usage = NamespaceUsage(pod_count=1, total_memory=Decimal(3 * 1024 ** 3))

    result = evaluate(usage, policy(max_memory=str(2 * 1024 ** 3)))

    assert result.reason == Reason.MEMORY
    assert result.message == "memory:3Gi>max:2Gi"


def test_usage_equal_to_limit_is_compliant():
    usage = NamespaceUsage(pod_count=2, total_cpu=Decimal("0.5"))

    assert not evaluate(usage, policy(max_pods=2, max_cpu="0.5")).violated


def test_projection_counts_candidate_pod():
    usage = NamespaceUsage(pod_count=1, total_cpu=Decimal("0.1"))

    projected = usage.with_pod(make_pod("new", cpu="150m", memory="1Mi"))

    assert projected.pod_count == 2
    assert projected.total_cpu == Decimal("0.25")
    assert projected.total_memory == Decimal(1024 ** 2)


def test_to_status():
    usage = NamespaceUsage(pod_count=3, total_cpu=Decimal("0.8"), total_memory=Decimal(2 * 1024 ** 3))
    result = evaluate(usage, policy(max_cpu="0.5"))

    assert result.to_status() == {
        "currentPods": 3,
        "cpuUsage": "800m",
        "memoryUsage": "2Gi",
        "violation": True,
        "message": "cpu:800m>max:500m",
    }
