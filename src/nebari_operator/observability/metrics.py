"""
Prometheus metrics for the Nebari operator.

This module provides metrics collection for reconcile passes, the phase they
fail in, cleanup runs and identity provider calls, plus the HTTP server that
exposes them.
"""

import logging
import time
from contextlib import asynccontextmanager

from aiohttp.web import (
    Application,
    AppRunner,
    Request,
    Response,
    TCPSite,
    json_response,
)
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)

# Global metrics registry
_metrics_registry: CollectorRegistry | None = None

# Reconcile phases tracked by PHASE_FAILING
PHASES = ("validation", "routing", "auth")

RECONCILIATION_TOTAL = Counter(
    "nebari_operator_reconciliation_total",
    "Total number of reconciliation attempts",
    ["namespace", "result"],
    registry=None,  # Will be set during initialization
)

RECONCILIATION_DURATION = Histogram(
    "nebari_operator_reconciliation_duration_seconds",
    "Time spent on reconciliation operations",
    ["namespace", "operation"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
    registry=None,
)

RECONCILIATION_ERRORS = Counter(
    "nebari_operator_reconciliation_errors_total",
    "Total number of reconciliation errors",
    ["namespace", "error_type", "retryable"],
    registry=None,
)

PHASE_FAILING = Gauge(
    "nebari_operator_phase_failing",
    "Phase the last reconcile of a NebariApp failed in (1=failing, 0=passing)",
    ["namespace", "name", "phase"],
    registry=None,
)

CLEANUP_TOTAL = Counter(
    "nebari_operator_cleanup_total",
    "Total number of deletion-time cleanup attempts",
    ["namespace", "result"],
    registry=None,
)

OIDC_CLIENT_OPERATIONS = Counter(
    "nebari_operator_oidc_client_operations_total",
    "Identity provider client operations",
    ["provider", "operation", "result"],
    registry=None,
)


def get_metrics_registry() -> CollectorRegistry:
    """Get or create the global metrics registry."""
    global _metrics_registry

    if _metrics_registry is None:
        _metrics_registry = CollectorRegistry()

        for metric in [
            RECONCILIATION_TOTAL,
            RECONCILIATION_DURATION,
            RECONCILIATION_ERRORS,
            PHASE_FAILING,
            CLEANUP_TOTAL,
            OIDC_CLIENT_OPERATIONS,
        ]:
            _metrics_registry.register(metric)

    return _metrics_registry


class ReconciliationTracker:
    """Outcome holder yielded by MetricsCollector.track_reconciliation."""

    def __init__(self):
        self.error: Exception | None = None


class MetricsCollector:
    """Collects and manages metrics for the Nebari operator."""

    def __init__(self):
        self.registry = get_metrics_registry()

    @asynccontextmanager
    async def track_reconciliation(self, namespace: str, operation: str = "reconcile"):
        """
        Context manager to track reconciliation operations.

        Reconcile passes report failures as results rather than exceptions, so
        the yielded tracker lets the caller attach the error it returns.

        Args:
            namespace: Namespace of the resource
            operation: Type of operation being performed (reconcile, delete)
        """
        start_time = time.time()
        tracker = ReconciliationTracker()
        result = "unknown"

        try:
            yield tracker
            result = "error" if tracker.error else "success"
        except Exception as e:
            tracker.error = e
            result = "error"
            raise
        finally:
            if tracker.error is not None:
                retryable = (
                    "true" if getattr(tracker.error, "retryable", False) else "false"
                )
                RECONCILIATION_ERRORS.labels(
                    namespace=namespace,
                    error_type=type(tracker.error).__name__,
                    retryable=retryable,
                ).inc()
            duration = time.time() - start_time
            RECONCILIATION_TOTAL.labels(namespace=namespace, result=result).inc()
            RECONCILIATION_DURATION.labels(
                namespace=namespace, operation=operation
            ).observe(duration)

    def record_phase_result(
        self, namespace: str, name: str, failed_phase: str | None
    ) -> None:
        """
        Record which phase, if any, the last reconcile pass failed in.

        Args:
            namespace: Namespace of the NebariApp
            name: Name of the NebariApp
            failed_phase: Failing phase, or None when the pass succeeded
        """
        for phase in PHASES:
            PHASE_FAILING.labels(namespace=namespace, name=name, phase=phase).set(
                1 if phase == failed_phase else 0
            )

    def forget_resource(self, namespace: str, name: str) -> None:
        """Drop per-object series once a NebariApp is gone."""
        for phase in PHASES:
            try:
                PHASE_FAILING.remove(namespace, name, phase)
            except KeyError:
                pass

    def record_cleanup(self, namespace: str, success: bool) -> None:
        CLEANUP_TOTAL.labels(
            namespace=namespace, result="success" if success else "failure"
        ).inc()

    def record_client_operation(
        self, provider: str, operation: str, success: bool
    ) -> None:
        OIDC_CLIENT_OPERATIONS.labels(
            provider=provider,
            operation=operation,
            result="success" if success else "failure",
        ).inc()


class MetricsServer:
    """HTTP server for exposing Prometheus metrics."""

    def __init__(self, port: int = 8081, host: str = "0.0.0.0"):
        """
        Initialize metrics server.

        Args:
            port: Port to serve metrics on
            host: Host interface to bind to
        """
        self.port = port
        self.host = host
        self.app = Application()
        self.runner: AppRunner | None = None
        self.site: TCPSite | None = None

        self.app.router.add_get("/metrics", self._metrics_handler)
        self.app.router.add_get("/healthz", self._healthz_handler)

    async def _metrics_handler(self, request: Request) -> Response:
        """Handle /metrics endpoint for Prometheus scraping."""
        try:
            metrics_data = generate_latest(get_metrics_registry())
            # CONTENT_TYPE_LATEST carries a charset, which content_type= rejects
            return Response(
                body=metrics_data, headers={"Content-Type": CONTENT_TYPE_LATEST}
            )
        except Exception as e:
            logger.error(f"Failed to generate metrics: {e}")
            return Response(
                text=f"Error generating metrics: {type(e).__name__}. Check logs for details.",
                status=500,
            )

    async def _healthz_handler(self, request: Request) -> Response:
        """Handle /healthz endpoint for Kubernetes probes."""
        return json_response({"status": "ok"})

    async def start(self) -> None:
        """Start the metrics server."""
        self.runner = AppRunner(self.app)
        await self.runner.setup()

        self.site = TCPSite(self.runner, self.host, self.port)
        await self.site.start()

        logger.info(f"Metrics server started on {self.host}:{self.port}")

    async def stop(self) -> None:
        """Stop the metrics server."""
        if self.site:
            await self.site.stop()
            self.site = None

        if self.runner:
            await self.runner.cleanup()
            self.runner = None

        logger.info("Metrics server stopped")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()


# Global metrics collector instance
metrics_collector = MetricsCollector()
