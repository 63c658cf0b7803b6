"""FastAPI middleware for observability.

Provides request ID generation and logging for all HTTP requests.

The correlation id lives in a ContextVar so every log line written while
handling a request carries it, including lines from repository work that
runs in worker threads (``asyncio.to_thread`` copies the context). SMTP
deliveries bind their own id through the same helper.
"""

import logging
import time
import uuid
from contextvars import ContextVar
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

# Correlation id of the HTTP request or SMTP delivery being handled
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def get_request_id() -> str:
    """Get current request ID from context.

    Returns:
        str: Current request ID or "no-request-id" if not set
    """
    return request_id_var.get() or "no-request-id"


def bind_request_id(request_id: Optional[str] = None, prefix: str = "") -> str:
    """Set the correlation id for the current context.

    Args:
        request_id: Id supplied by the client (default: generate a UUID4)
        prefix: Prepended to generated ids, e.g. "smtp-"

    Returns:
        str: The id now in effect
    """
    request_id = request_id or f"{prefix}{uuid.uuid4()}"
    request_id_var.set(request_id)
    return request_id


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Middleware to generate and inject request IDs."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request with request ID.

        Args:
            request: Incoming HTTP request
            call_next: Next middleware/handler in chain

        Returns:
            Response: HTTP response with X-Request-ID header
        """
        request_id = bind_request_id(request.headers.get("X-Request-ID"))

        start_time = time.time()
        logger.info(f"{request.method} {request.url.path}")

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(
                f"Request failed: {str(e)}",
                extra={"duration_ms": round(duration_ms, 2)},
                exc_info=True,
            )
            raise

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Request completed: {response.status_code}",
            extra={
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 2),
            },
        )

        response.headers["X-Request-ID"] = request_id
        return response
