"""Health check endpoints."""

from typing import Any

import structlog
from fastapi import APIRouter, Depends

from session_relay.api.deps import get_broker, get_message_router
from session_relay.api.ws.broker import Broker
from session_relay.api.ws.message_router import MessageRouter
from session_relay.core.exceptions import BrokerError

router = APIRouter(prefix="/health", tags=["health"])
logger = structlog.get_logger(__name__)


@router.get("")
async def health_check() -> dict[str, Any]:
    """Basic health check endpoint."""
    return {
        "data": {
            "status": "healthy",
            "service": "session-relay",
        }
    }


@router.get("/ready")
async def readiness_check(
    broker: Broker = Depends(get_broker),
    message_router: MessageRouter = Depends(get_message_router),
) -> dict[str, Any]:
    """Readiness check with dependency status.

    The relay is ready when Redis answers and the routing loop is alive.

    Returns:
        Detailed readiness status.
    """
    try:
        await broker.ping()
        broker_reachable = True
    except BrokerError:
        broker_reachable = False

    checks: dict[str, bool] = {
        "broker_reachable": broker_reachable,
        "router_running": message_router.is_running,
    }

    all_healthy = all(checks.values())

    logger.debug("readiness_check", checks=checks, healthy=all_healthy)

    return {
        "data": {
            "status": "ready" if all_healthy else "not_ready",
            "checks": checks,
        }
    }


@router.get("/live")
async def liveness_check() -> dict[str, Any]:
    """Liveness check endpoint.

    Simple check to verify the service is running.
    """
    return {
        "data": {
            "status": "alive",
        }
    }
