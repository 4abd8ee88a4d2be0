"""
Resource Quota Enforcer - Entry Point

Runs either the reconciliation controller or the validating admission
webhook for ResourceQuotaPolicy objects.

Usage:
    quota-enforcer controller [--workers N] [--resync SECONDS] [--in-cluster]
    quota-enforcer webhook [--tls-cert-file F] [--tls-key-file F] [--in-cluster]
"""

import argparse
import logging
import signal
import sys
import threading

import uvicorn
from kubernetes import client, config

from .admission import AdmissionDecisionEngine
from .config import (
    CACHE_READY_TIMEOUT_SECONDS,
    CACHE_RESYNC_SECONDS,
    DEFAULT_WORKERS,
    LOG_LEVEL,
    METRICS_PORT,
    RESYNC_INTERVAL_SECONDS,
    TLS_CERT_FILE,
    TLS_KEY_FILE,
    WEBHOOK_PORT,
)
from .controller import QuotaController
from .health import HealthState, create_health_app, serve_in_thread
from .metrics import EnforcerMetrics
from .policy_cache import PolicyCache
from .webhook import create_app

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--in-cluster",
        action="store_true",
        help="Use in-cluster config (for running inside Kubernetes)"
    )
    common.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose/debug logging"
    )

    parser = argparse.ArgumentParser(
        description="Resource Quota Enforcer - Enforce ResourceQuotaPolicy limits per namespace"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    ctrl = subparsers.add_parser("controller", parents=[common], help="Run the reconciliation controller")
    ctrl.add_argument("--workers", type=int, default=DEFAULT_WORKERS, help="Number of worker threads")
    ctrl.add_argument(
        "--resync",
        type=float,
        default=RESYNC_INTERVAL_SECONDS,
        help="Seconds between full namespace resyncs"
    )
    ctrl.add_argument("--metrics-port", type=int, default=METRICS_PORT, help="Health and metrics port")
    ctrl.add_argument("--dry-run", action="store_true", help="Run in dry-run mode (no pods deleted)")

    hook = subparsers.add_parser("webhook", parents=[common], help="Run the validating admission webhook")
    hook.add_argument("--tls-cert-file", default=TLS_CERT_FILE, help="Path to TLS certificate")
    hook.add_argument("--tls-key-file", default=TLS_KEY_FILE, help="Path to TLS private key")
    hook.add_argument("--listen-port", type=int, default=WEBHOOK_PORT, help="Webhook server listen port")
    hook.add_argument(
        "--resync",
        type=float,
        default=CACHE_RESYNC_SECONDS,
        help="Policy cache resync period in seconds"
    )

    return parser


def load_kube_config(in_cluster: bool) -> None:
    try:
        if in_cluster:
            config.load_incluster_config()
            logger.info("Loaded in-cluster configuration")
        else:
            config.load_kube_config()
            logger.info("Loaded kubeconfig from default location")
    except Exception as e:
        logger.error(f"Failed to load Kubernetes config: {e}")
        sys.exit(1)


def install_stop_handlers(stop_event: threading.Event) -> None:
    def handle(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        stop_event.set()

    signal.signal(signal.SIGINT, handle)
    signal.signal(signal.SIGTERM, handle)


def run_controller(args) -> None:
    metrics = EnforcerMetrics()
    health = HealthState()
    controller = QuotaController(
        core_api=client.CoreV1Api(),
        custom_api=client.CustomObjectsApi(),
        metrics=metrics,
        health=health,
        resync_interval=args.resync,
        dry_run=args.dry_run,
    )

    stop_event = threading.Event()
    install_stop_handlers(stop_event)

    server, _ = serve_in_thread(create_health_app(health, metrics.registry), args.metrics_port)
    try:
        controller.run(stop_event, workers=args.workers)
    finally:
        server.should_exit = True


def run_webhook(args) -> None:
    metrics = EnforcerMetrics()
    health = HealthState()
    policy_cache = PolicyCache.for_cluster(client.CustomObjectsApi(), resync_period=args.resync)

    stop_event = threading.Event()
    policy_cache.start(stop_event)

    if policy_cache.wait_for_ready(CACHE_READY_TIMEOUT_SECONDS, stop_event):
        logger.info("Policy cache ready")
        health.set_ready()
    else:
        # Cache misses allow every pod until the first list completes
        logger.warning("Policy cache not ready in time (continuing; cache misses possible)")

        def mark_ready():
            if policy_cache.wait_for_ready(timeout=None, stop_event=stop_event):
                health.set_ready()

        threading.Thread(target=mark_ready, name="cache-ready", daemon=True).start()

    engine = AdmissionDecisionEngine(policy_cache, client.CoreV1Api(), metrics)
    app = create_app(engine, health, metrics.registry)

    logger.info(f"Starting webhook server on :{args.listen_port}")
    try:
        uvicorn.run(
            app,
            host="0.0.0.0",
            port=args.listen_port,
            ssl_certfile=args.tls_cert_file,
            ssl_keyfile=args.tls_key_file,
            log_level="warning",
        )
    finally:
        logger.info("Shutting down webhook server")
        stop_event.set()


def main(argv=None):
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=LOG_LEVEL,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    load_kube_config(args.in_cluster)

    try:
        if args.command == "controller":
            run_controller(args)
        else:
            run_webhook(args)
    except Exception as e:
        logger.error(f"Enforcer error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
