"""Health check endpoints for the signal relay.

Provides HTTP health check endpoints for load balancers, monitoring systems,
and orchestration tools (e.g., Docker healthcheck, Kubernetes liveness probe).
"""

import logging
import time
from typing import Any

from aiohttp import web

logger = logging.getLogger(__name__)


class HealthCheckHandler:
    """Health check handler for the relay.

    Provides /health endpoint that checks:
    - Signaling WebSocket server is accepting connections
    - Room and connection counts
    - Service uptime
    """

    def __init__(self, relay: Any = None) -> None:
        """Initialize health check handler.

        Args:
            relay: SignalRelayServer instance (optional)
        """
        self.relay = relay
        self.start_time = time.time()

    async def health_check(self, request: web.Request) -> web.Response:
        """Health check endpoint.

        Returns:
            200 OK: Relay is accepting signaling connections
            503 Service Unavailable: Relay is not running

        Response format:
        {
            "status": "healthy" | "unhealthy",
            "uptime_seconds": float,
            "websocket": bool,
            "connections": int,
            "rooms": int,
            "participants": int
        }
        """
        websocket_ok = self.relay is not None and self.relay.is_running

        response_data = {
            "status": "healthy" if websocket_ok else "unhealthy",
            "uptime_seconds": time.time() - self.start_time,
            "websocket": websocket_ok,
            "connections": self.relay.connection_count if self.relay is not None else 0,
            "rooms": self.relay.registry.room_count if self.relay is not None else 0,
            "participants": (
                self.relay.registry.participant_count if self.relay is not None else 0
            ),
        }

        logger.debug("Health check performed", extra={"status": response_data["status"]})

        return web.json_response(response_data, status=200 if websocket_ok else 503)

    async def liveness_check(self, request: web.Request) -> web.Response:
        """Liveness check endpoint.

        Returns OK if the process is running, even if the relay is stopped.

        Returns:
            200 OK: Service is alive
        """
        return web.json_response(
            {
                "status": "alive",
                "uptime_seconds": time.time() - self.start_time,
            },
            status=200,
        )


def setup_health_routes(app: web.Application, relay: Any = None) -> None:
    """Set up health check routes on application.

    Args:
        app: aiohttp Application instance
        relay: SignalRelayServer instance (optional)
    """
    handler = HealthCheckHandler(relay=relay)

    app.router.add_get("/health", handler.health_check)
    app.router.add_get("/liveness", handler.liveness_check)

    logger.info("Health check endpoints configured: /health, /liveness")
