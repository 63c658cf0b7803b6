"""Health check utilities.

Provides health and readiness checks for the message store and index.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from ..domain.messages.errors import StorageError
from ..messages.repository import MessageRepository

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    """Health check status enum."""
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    DEGRADED = "degraded"


@dataclass
class ComponentHealth:
    """Health status for a single component."""
    status: HealthStatus
    message: Optional[str] = None
    latency_ms: Optional[float] = None


def check_message_store_health(repository: MessageRepository) -> ComponentHealth:
    """Check that the blob store is reachable and writable.

    Returns:
        ComponentHealth: Message store health status
    """
    try:
        start = time.time()
        repository.blob_store.check_health()
        latency_ms = (time.time() - start) * 1000

        return ComponentHealth(
            status=HealthStatus.HEALTHY,
            message="Message store OK",
            latency_ms=round(latency_ms, 2),
        )
    except StorageError as e:
        logger.error(f"Message store health check failed: {e}", exc_info=True)
        return ComponentHealth(
            status=HealthStatus.UNHEALTHY,
            message=f"Storage error: {str(e)}",
        )


def check_index_health(repository: MessageRepository) -> ComponentHealth:
    if not repository.index_loaded:
        return ComponentHealth(
            status=HealthStatus.DEGRADED,
            message="Message index not loaded yet",
        )
    return ComponentHealth(
        status=HealthStatus.HEALTHY,
        message=f"{repository.count()} messages indexed",
    )


def get_overall_health(components: Dict[str, ComponentHealth]) -> HealthStatus:
    """Determine overall system health from component health.

    Any unhealthy component makes the system unhealthy; otherwise any
    degraded component makes it degraded.
    """
    statuses = [comp.status for comp in components.values()]

    if HealthStatus.UNHEALTHY in statuses:
        return HealthStatus.UNHEALTHY
    if HealthStatus.DEGRADED in statuses:
        return HealthStatus.DEGRADED
    return HealthStatus.HEALTHY
