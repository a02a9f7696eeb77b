"""
Health check endpoints
"""
from datetime import datetime, timezone

from fastapi import APIRouter, Request

from cds_hooks.core.config import get_settings
from cds_hooks.core.logging_config import LoggingConfig

logger = LoggingConfig.get_logger(__name__)
router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request):
    """
    Basic health check endpoint

    CDS failures never make the service unhealthy: an empty or stale
    catalog only means fewer cards.

    Returns:
        dict: Health status
    """
    settings = get_settings()
    manager = getattr(request.app.state, "hook_manager", None)
    cds_status = {"configured": manager is not None}
    if manager is not None:
        cds_status.update({
            "base_url": manager.http.base_url,
            "disabled": manager.disabled,
            "services_cache_valid": manager.catalog.is_cache_valid(),
            "services_count": len(manager.catalog.cached_services()),
        })
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": settings.app_name,
        "environment": settings.app_env,
        "cds": cds_status,
    }


@router.get("/health/liveness")
async def liveness_check():
    """
    Liveness check - is the service alive?

    Returns:
        dict: Liveness status
    """
    return {
        "status": "alive",
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
