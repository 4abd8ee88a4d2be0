import pytest
from kubernetes.client.rest import ApiException

from conftest import make_pod, make_policy, metric_value, synced_policy_cache
from quota_enforcer.admission import AdmissionDecisionEngine
from quota_enforcer.usage import Reason


@pytest.fixture
def engine_for(core_api, custom_api, metrics):
    def build(**limits):
        if limits:
            custom_api.add_policy(make_policy("team-a", **limits))
        return AdmissionDecisionEngine(synced_policy_cache(custom_api), core_api, metrics)
    return build


def test_namespace_without_policy_is_allowed(core_api, engine_for, metrics):
    core_api.add_pod(make_pod("a"))
    engine = engine_for()

    decision = engine.decide("team-a", make_pod("new"))

    assert decision.allowed
    assert metric_value(metrics, "rqe_policy_cache_misses_total") == 1
    assert metric_value(metrics, "rqe_admission_requests_total", {"namespace": "team-a", "result": "allowed_no_policy"}) == 1


def test_pod_limit_rejects_the_pod_that_would_exceed_it(core_api, engine_for, metrics):
    for age in range(3):
        core_api.add_pod(make_pod(f"pod-{age}", age=age))
    engine = engine_for(max_pods=3)

    decision = engine.decide("team-a", make_pod("new"))

    assert not decision.allowed
    assert decision.tag == Reason.PODS
    assert decision.reason == "maxPods exceeded: 4 > 3"
    assert metric_value(metrics, "rqe_policy_cache_hits_total") == 1
    assert metric_value(metrics, "rqe_admission_violations_total", {"namespace": "team-a", "reason": "pods"}) == 1


def test_pod_limit_allows_up_to_the_limit(core_api, engine_for, metrics):
    for age in range(2):
        core_api.add_pod(make_pod(f"pod-{age}", age=age))
    engine = engine_for(max_pods=3)

    assert engine.decide("team-a", make_pod("new")).allowed
    assert metric_value(metrics, "rqe_admission_requests_total", {"namespace": "team-a", "result": "allowed"}) == 1


def test_terminal_pods_do_not_count(core_api, engine_for):
    core_api.add_pod(make_pod("a"))
    core_api.add_pod(make_pod("b"))
    core_api.add_pod(make_pod("done", phase="Succeeded"))
    core_api.add_pod(make_pod("crashed", phase="Failed"))
    engine = engine_for(max_pods=3)

    assert engine.decide("team-a", make_pod("new")).allowed


@pytest.mark.parametrize("candidate_cpu, allowed", [("200m", True), ("300m", False)])
def test_cpu_projection(core_api, engine_for, candidate_cpu, allowed):
    core_api.add_pod(make_pod("a", cpu="300m"))
    engine = engine_for(max_cpu="500m")

    decision = engine.decide("team-a", make_pod("new", cpu=candidate_cpu))

    assert decision.allowed is allowed
    if not allowed:
        assert decision.tag == Reason.CPU
        assert decision.reason == "cpu exceeded: 600m > 500m"


@pytest.mark.parametrize("candidate_memory, allowed", [("1Gi", True), ("2Gi", False)])
def test_memory_projection(core_api, engine_for, candidate_memory, allowed):
    core_api.add_pod(make_pod("a", memory="1Gi"))
    engine = engine_for(max_memory="2Gi")

    decision = engine.decide("team-a", make_pod("new", memory=candidate_memory))

    assert decision.allowed is allowed
    if not allowed:
        assert decision.tag == Reason.MEMORY
        assert decision.reason == "memory exceeded: 3Gi > 2Gi"


def test_pod_count_is_checked_before_cpu(core_api, engine_for):
    core_api.add_pod(make_pod("a", cpu="500m"))
    engine = engine_for(max_pods=1, max_cpu="100m")

    decision = engine.decide("team-a", make_pod("new", cpu="500m"))

    assert decision.tag == Reason.PODS


@pytest.mark.parametrize("candidate", [
    make_pod("new"),
    make_pod("greedy", cpu="100000", memory="1Ei"),
])
def test_list_failure_allows_the_pod(core_api, engine_for, metrics, candidate):
    engine = engine_for(max_pods=1, max_cpu="1", max_memory="1Gi")
    core_api.list_error = ApiException(status=500, reason="Internal Server Error")

    decision = engine.decide("team-a", candidate)

    assert decision.allowed
    assert metric_value(metrics, "rqe_admission_requests_total", {"namespace": "team-a", "result": "allowed_on_error"}) == 1


def test_decisions_never_touch_the_cluster(core_api, engine_for):
    for age in range(5):
        core_api.add_pod(make_pod(f"pod-{age}", age=age))
    engine = engine_for(max_pods=1)

    engine.decide("team-a", make_pod("new"))

    assert len(core_api.pods) == 5
    assert core_api.delete_calls == 0
    assert core_api.events == []


def test_other_namespaces_are_unaffected(core_api, engine_for):
    core_api.add_pod(make_pod("a", namespace="team-b"))
    engine = engine_for(max_pods=1)

    assert engine.decide("team-b", make_pod("new", namespace="team-b")).allowed
