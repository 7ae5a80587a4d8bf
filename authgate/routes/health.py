"""
AuthGate — Health Check Route
===============================

What:  GET /health for load balancers and monitoring (public route), and
       GET /api/hello, a small JSON greeting for signed-in clients.
How:   Reports registry state, registered client names, and whether the
       default client answers `SELECT 1`.

Status levels:
    healthy:  default client present and reachable
    degraded: zero clients, or the default client is unreachable
              (the process is up; database-backed endpoints answer 503/500)
"""

import logging
import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from authgate import __version__
from authgate.registry import ConnectionRegistry, get_registry
from authgate.redaction import redact
from authgate.schemas.auth import HealthResponse, HelloResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check(
    registry: ConnectionRegistry = Depends(get_registry),
) -> HealthResponse:
    database = "absent"
    overall = "degraded"

    client = await registry.get_client() if registry.is_ready else None
    if client is not None:
        try:
            await client.ping()
            database = "connected"
            overall = "healthy"
        except Exception as e:
            database = "disconnected"
            logger.warning("Health check: default client unreachable: %s", redact(str(e)))

    return HealthResponse(
        status=overall,
        version=__version__,
        registry=registry.state.value,
        clients=list(registry.client_names),
        database=database,
        uptime_seconds=round(time.time() - _start_time, 2),
    )


@router.get(
    "/api/hello",
    response_model=HelloResponse,
    summary="JSON greeting (requires a session)",
)
async def hello() -> HelloResponse:
    return HelloResponse(
        message="Hello from AuthGate!",
        version=__version__,
        timestamp=datetime.now(timezone.utc),
    )
