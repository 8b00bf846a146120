#!/usr/bin/env python3
"""
Nebari Operator - Main entry point for the Kopf-based NebariApp operator.

This operator onboards applications behind the shared Nebari gateways:
- Validates namespace opt-in and the backend service
- Compiles routing intent into a Gateway API HTTPRoute
- Configures OIDC authentication through an Envoy Gateway SecurityPolicy,
  provisioning the client in Keycloak when asked to
- Cleans up external clients before a NebariApp is allowed to go away

Usage:
    python -m nebari_operator.operator
    # Or with kopf directly:
    kopf run -m nebari_operator.operator --all-namespaces

Environment Variables:
    NEBARI_OPERATOR_NAMESPACES: Comma-separated list of namespaces to watch
    LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
    KEYCLOAK_ENABLED: Register the managed keycloak provider
"""

import logging
import random
import sys

import kopf
from kubernetes import client

from nebari_operator.constants import NEBARIAPP_FINALIZER

# Importing the handler module registers its decorators with kopf
from nebari_operator.handlers import nebariapp  # noqa: F401
from nebari_operator.observability.logging import setup_structured_logging
from nebari_operator.observability.metrics import MetricsServer
from nebari_operator.services import NebariAppReconciler
from nebari_operator.services.providers import build_providers
from nebari_operator.settings import settings as operator_settings
from nebari_operator.utils.kubernetes import get_kubernetes_client

# Global reference to metrics server for cleanup
_global_metrics_server: MetricsServer | None = None


def configure_logging() -> None:
    """Configure structured logging for the operator based on operator_settings."""
    setup_structured_logging(
        log_level=operator_settings.log_level.upper(),
        enable_json_formatting=operator_settings.json_logs,
        correlation_id_enabled=operator_settings.correlation_ids,
    )


def get_watched_namespaces() -> list[str] | None:
    """
    Get the list of namespaces to watch from operator_settings.

    Returns:
        List of namespace names, or None to watch all namespaces
    """
    return operator_settings.watched_namespaces


@kopf.on.startup()
async def startup_handler(
    settings: kopf.OperatorSettings, memo: kopf.Memo, **_
) -> None:
    """
    Operator startup configuration.

    Configures kopf itself (peering, finalizer, event posting, workers),
    starts the metrics server and builds the reconciler with its provider
    registry, which is shared with the handlers through ``memo``.
    """
    logging.info("Starting Nebari Operator...")
    settings.watching.reconnect_backoff = 1.0

    # Each pod gets a unique priority so exactly one of them is active
    settings.peering.name = operator_settings.operator_name
    settings.peering.priority = random.randint(0, 32767)
    logging.info(
        f"Peering priority set to {settings.peering.priority} for leader election"
    )

    # Kopf guards on.delete with its own finalizer; reuse ours so an object
    # only ever carries one
    settings.persistence.finalizer = NEBARIAPP_FINALIZER
    settings.posting.level = logging.INFO
    settings.execution.max_workers = 20

    watched_namespaces = get_watched_namespaces()
    if watched_namespaces:
        logging.info(f"Watching namespaces: {', '.join(watched_namespaces)}")
    else:
        logging.info("Watching all namespaces (cluster-wide mode)")

    k8s_client = get_kubernetes_client()

    try:
        metrics_server = MetricsServer(
            port=operator_settings.metrics_port, host=operator_settings.metrics_host
        )
        await metrics_server.start()
        logging.info(
            f"Metrics and health endpoints available on {operator_settings.metrics_host}:{operator_settings.metrics_port}"
        )

        global _global_metrics_server
        _global_metrics_server = metrics_server

    except OSError as e:
        logging.error(f"Failed to start metrics server: {e}")
        # Don't fail operator startup if metrics server fails
        logging.warning("Continuing without metrics server")

    providers = build_providers(operator_settings, client.CoreV1Api(k8s_client))
    memo.reconciler = NebariAppReconciler(
        providers, k8s_client=k8s_client, settings=operator_settings
    )
    logging.info("NebariApp reconciler initialized")


@kopf.on.cleanup()
async def cleanup_handler(settings: kopf.OperatorSettings, **_) -> None:
    """Stop the metrics server when the operator shuts down."""
    logging.info("Shutting down Nebari Operator...")

    global _global_metrics_server
    if _global_metrics_server:
        await _global_metrics_server.stop()
        _global_metrics_server = None
        logging.info("Metrics server stopped")


@kopf.on.probe(id="healthz")
async def health_check(memo: kopf.Memo, **_) -> dict[str, str]:
    """
    Liveness probe.

    Returns:
        Dictionary indicating operator health status
    """
    status = "healthy" if getattr(memo, "reconciler", None) else "starting"
    return {"status": status, "operator": operator_settings.operator_name}


def main() -> None:
    """
    Main entry point for the operator.

    Configures logging, determines the namespace scope and runs kopf.
    """
    configure_logging()

    watched_namespaces = get_watched_namespaces()

    try:
        if watched_namespaces:
            kopf.run(
                namespaces=watched_namespaces,
                liveness_endpoint="http://0.0.0.0:8080/healthz",
            )
        else:
            kopf.run(
                clusterwide=True,
                liveness_endpoint="http://0.0.0.0:8080/healthz",
            )
    except KeyboardInterrupt:
        logging.info("Received shutdown signal")
        sys.exit(0)


if __name__ == "__main__":
    main()
