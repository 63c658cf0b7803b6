"""Observability API endpoints.

Provides health checks and readiness checks for monitoring.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ..dependencies import get_message_repository
from ..messages.repository import MessageRepository
from .health import (
    HealthStatus,
    check_index_health,
    check_message_store_health,
    get_overall_health,
)

router = APIRouter(tags=["Observability"])


@router.get(
    "/health",
    summary="Health check endpoint",
    description="Returns health status of the message store and index",
    status_code=200,
)
def health_check(repository: MessageRepository = Depends(get_message_repository)):
    """Check health of the message store and index.

    Returns 200 OK unless a component is unhealthy, 503 otherwise.
    """
    components = {
        "message_store": check_message_store_health(repository),
        "message_index": check_index_health(repository),
    }

    overall_status = get_overall_health(components)

    response_data = {
        "status": overall_status.value,
        "components": {
            name: {
                "status": comp.status.value,
                "message": comp.message,
                "latency_ms": comp.latency_ms,
            }
            for name, comp in components.items()
        },
    }

    status_code = 200 if overall_status != HealthStatus.UNHEALTHY else 503

    return JSONResponse(content=response_data, status_code=status_code)


@router.get(
    "/ready",
    summary="Readiness check endpoint",
    description="Returns readiness status (for Kubernetes readiness checks)",
    status_code=200,
)
def readiness_check(repository: MessageRepository = Depends(get_message_repository)):
    """Ready once the message index has been loaded from the store."""
    if repository.index_loaded:
        return {
            "status": "ready",
            "message": "Application is ready to serve traffic",
        }
    return JSONResponse(
        content={
            "status": "not_ready",
            "message": "Message index is still loading",
        },
        status_code=503,
    )
