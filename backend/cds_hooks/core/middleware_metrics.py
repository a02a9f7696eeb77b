"""
Middleware for collecting HTTP request metrics
"""
import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from cds_hooks.core.cds_protocol import known_hook_type
from cds_hooks.core.logging_config import LoggingConfig
from cds_hooks.core.metrics import (http_errors_total,
                                    http_request_duration_seconds,
                                    http_requests_total)

logger = LoggingConfig.get_logger(__name__)


def normalize_endpoint(path: str) -> str:
    """
    Collapse variable path segments so label cardinality stays bounded

    Card uuids become {id}; custom hook types and unknown workflow events
    become {hook_type} / {event}. Known hook types are kept.
    """
    if not path.startswith("/api/"):
        return path
    parts = path.split("/")
    for i, part in enumerate(parts):
        if len(part) == 36 and part.count("-") == 4:  # UUID format
            parts[i] = "{id}"
        elif i > 0 and parts[i - 1] in ("hooks", "alerts") and part and part != "actions":
            if known_hook_type(part) is None:
                parts[i] = "{hook_type}"
        elif i > 0 and parts[i - 1] == "triggers":
            parts[i] = "{event}"
    return "/".join(parts)


class MetricsMiddleware(BaseHTTPMiddleware):
    """
    Middleware to collect HTTP request metrics for Prometheus
    """

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()

        # Skip metrics endpoint itself
        if request.url.path == "/metrics":
            return await call_next(request)

        error_type = None
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception as e:
            error_type = type(e).__name__
            raise
        finally:
            duration = time.time() - start_time
            endpoint = normalize_endpoint(request.url.path)
            method = request.method
            status_code_str = str(status_code)

            http_requests_total.labels(
                method=method,
                endpoint=endpoint,
                status_code=status_code_str
            ).inc()

            http_request_duration_seconds.labels(
                method=method,
                endpoint=endpoint,
                status_code=status_code_str
            ).observe(duration)

            if status_code >= 400:
                http_errors_total.labels(
                    method=method,
                    endpoint=endpoint,
                    status_code=status_code_str,
                    error_type=error_type or f"http_{status_code}"
                ).inc()

        return response
