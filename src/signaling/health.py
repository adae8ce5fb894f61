"""Health check endpoints for the relay.

Provides HTTP endpoints for load balancers, monitoring systems, and
orchestration tools (e.g., Docker healthcheck, Kubernetes liveness probe),
plus Prometheus metrics scraping.
"""

import logging
import time
from typing import Any

from aiohttp import web

from signaling.metrics import MetricsCollector, get_metrics_collector
from signaling.registry import ConnectionRegistry

logger = logging.getLogger(__name__)


class HealthCheckHandler:
    """Health check handler for the relay.

    Provides /health, /readiness and /liveness probes and the /metrics
    endpoints.
    """

    def __init__(
        self,
        registry: ConnectionRegistry | None = None,
        transport: Any = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """Initialize health check handler.

        Args:
            registry: ConnectionRegistry instance (optional)
            transport: Transport instance (optional)
            metrics: Metrics collector (defaults to the global collector)
        """
        self.registry = registry
        self.transport = transport
        self.start_time = time.time()
        self.metrics_collector = metrics or get_metrics_collector()

    async def health_check(self, request: web.Request) -> web.Response:
        """Health check endpoint.

        Returns:
            200 OK: Transport is accepting connections
            503 Service Unavailable: Transport is not running

        Response format:
        {
            "status": "healthy" | "unhealthy",
            "uptime_seconds": float,
            "transport": bool,
            "connections": int
        }
        """
        transport_ok = self.transport is not None and self.transport.is_running
        connections = len(self.registry) if self.registry is not None else 0

        response_data = {
            "status": "healthy" if transport_ok else "unhealthy",
            "uptime_seconds": time.time() - self.start_time,
            "transport": transport_ok,
            "connections": connections,
        }

        logger.debug("Health check performed", extra={"status": response_data["status"]})

        return web.json_response(response_data, status=200 if transport_ok else 503)

    async def readiness_check(self, request: web.Request) -> web.Response:
        """Readiness check endpoint (same as health for the relay)."""
        return await self.health_check(request)

    async def liveness_check(self, request: web.Request) -> web.Response:
        """Liveness check endpoint.

        Returns OK if the process is running, even if the transport is down.
        """
        return web.json_response(
            {
                "status": "alive",
                "uptime_seconds": time.time() - self.start_time,
            },
            status=200,
        )

    async def metrics_endpoint(self, request: web.Request) -> web.Response:
        """Prometheus metrics endpoint.

        Returns:
            200 OK: Metrics in Prometheus text format
        """
        try:
            metrics_text = self.metrics_collector.export_prometheus()

            return web.Response(
                text=metrics_text,
                content_type="text/plain",
                status=200,
            )

        except Exception as e:
            logger.error("Failed to export metrics", extra={"error": str(e)}, exc_info=True)
            return web.Response(
                text=f"# Error exporting metrics: {e}\n",
                content_type="text/plain",
                status=500,
            )

    async def metrics_summary(self, request: web.Request) -> web.Response:
        """Human-readable metrics summary endpoint.

        Returns:
            200 OK: Metrics summary in JSON format
        """
        try:
            summary = self.metrics_collector.get_summary()

            return web.json_response(
                {
                    "status": "ok",
                    "uptime_seconds": time.time() - self.start_time,
                    "metrics": summary,
                },
                status=200,
            )

        except Exception as e:
            logger.error(
                "Failed to generate metrics summary", extra={"error": str(e)}, exc_info=True
            )
            return web.json_response({"status": "error", "error": str(e)}, status=500)


def setup_health_routes(
    app: web.Application,
    registry: ConnectionRegistry | None = None,
    transport: Any = None,
    metrics: MetricsCollector | None = None,
) -> None:
    """Set up health check routes on application.

    Args:
        app: aiohttp Application instance
        registry: ConnectionRegistry instance (optional)
        transport: Transport instance (optional)
        metrics: Metrics collector (defaults to the global collector)
    """
    handler = HealthCheckHandler(registry=registry, transport=transport, metrics=metrics)

    app.router.add_get("/health", handler.health_check)
    app.router.add_get("/readiness", handler.readiness_check)
    app.router.add_get("/liveness", handler.liveness_check)

    app.router.add_get("/metrics", handler.metrics_endpoint)
    app.router.add_get("/metrics/summary", handler.metrics_summary)

    logger.info(
        "Health check endpoints configured: "
        "/health, /readiness, /liveness, /metrics, /metrics/summary"
    )
