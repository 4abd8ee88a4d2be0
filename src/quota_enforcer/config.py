"""Configuration settings for the Resource Quota Enforcer."""

import os


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


# CRD Settings
CRD_GROUP = "platform.example.com"
CRD_VERSION = "v1alpha1"
CRD_PLURAL = "resourcequotapolicies"
CRD_KIND = "ResourceQuotaPolicy"

# Event source for recorded Kubernetes events
COMPONENT_NAME = "resourcequotapolicy-controller"

# Watch settings
WATCH_TIMEOUT_SECONDS = _env_int("WATCH_TIMEOUT_SECONDS", 60)
WATCH_BACKOFF_INITIAL_SECONDS = 1.0
WATCH_BACKOFF_MAX_SECONDS = 30.0

# Periodic re-synthesis of cache events (0 disables)
CACHE_RESYNC_SECONDS = _env_int("CACHE_RESYNC_SECONDS", 30)

# Every namespace is re-queued at this interval
RESYNC_INTERVAL_SECONDS = _env_int("RESYNC_INTERVAL_SECONDS", 60)

# Worker pool
DEFAULT_WORKERS = _env_int("WORKERS", 5)

# Work queue backoff: base * 2**failures, capped
QUEUE_BASE_DELAY_SECONDS = 0.005
QUEUE_MAX_DELAY_SECONDS = 1000.0

# Enforcement loop
MAX_ENFORCE_ITERATIONS = 10
DELETE_RETRY_PAUSE_SECONDS = 0.5
CONVERGENCE_PAUSE_SECONDS = 0.4

# Victims are removed without a grace period so usage drops immediately
DELETE_GRACE_PERIOD_SECONDS = 0

# Pod phases that no longer consume quota
TERMINAL_POD_PHASES = ("Succeeded", "Failed")

# HTTP endpoints
METRICS_PORT = _env_int("METRICS_PORT", 8080)
WEBHOOK_PORT = _env_int("WEBHOOK_PORT", 8443)
TLS_CERT_FILE = os.getenv("TLS_CERT_FILE", "./certs/server.crt")
TLS_KEY_FILE = os.getenv("TLS_KEY_FILE", "./certs/server.key")

# How long the webhook waits for the policy cache before serving anyway
CACHE_READY_TIMEOUT_SECONDS = 30

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
