"""Prometheus counters for reconciliation and admission."""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter


class EnforcerMetrics:
    """
    Metrics sink passed to the reconciler and the admission engine.

    Counters are registered on the given registry rather than the process
    default, so each instance (and each test) is isolated.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry if registry is not None else CollectorRegistry()

        self.reconcile_total = Counter(
            "resource_quota_enforcer_reconcile_total",
            "Number of reconcile attempts per resource",
            ["resource", "namespace"],
            registry=self.registry,
        )
        self.reconcile_errors = Counter(
            "resource_quota_enforcer_reconcile_errors_total",
            "Number of reconcile errors per resource",
            ["resource", "namespace"],
            registry=self.registry,
        )
        self.enforcement_actions = Counter(
            "resource_quota_enforcer_actions_total",
            "Number of enforcement actions taken by policy",
            ["action", "namespace"],
            registry=self.registry,
        )
        self.admission_requests = Counter(
            "rqe_admission_requests_total",
            "Total number of admission requests received",
            ["namespace", "result"],
            registry=self.registry,
        )
        self.admission_violations = Counter(
            "rqe_admission_violations_total",
            "Total number of admission rejections by reason",
            ["namespace", "reason"],
            registry=self.registry,
        )
        self.cache_hits = Counter(
            "rqe_policy_cache_hits_total",
            "Policy cache hits",
            registry=self.registry,
        )
        self.cache_misses = Counter(
            "rqe_policy_cache_misses_total",
            "Policy cache misses",
            registry=self.registry,
        )

    def record_reconcile(self, namespace: str, error: bool = False) -> None:
        self.reconcile_total.labels("pod", namespace).inc()
        if error:
            self.reconcile_errors.labels("pod", namespace).inc()

    def record_action(self, action: str, namespace: str) -> None:
        self.enforcement_actions.labels(action, namespace).inc()

    def record_cache_lookup(self, hit: bool) -> None:
        if hit:
            self.cache_hits.inc()
        else:
            self.cache_misses.inc()

    def record_admission(self, namespace: str, result: str, reason: Optional[str] = None) -> None:
        self.admission_requests.labels(namespace, result).inc()
        if reason:
            self.admission_violations.labels(namespace, reason).inc()
