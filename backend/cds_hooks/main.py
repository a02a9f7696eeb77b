"""
Main FastAPI application entry point
"""
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import HTTPException as FastAPIHTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cds_hooks import __version__
from cds_hooks.api.routes import cds, health, metrics
from cds_hooks.core.cds_client import CDSHooksHttpClient
from cds_hooks.core.config import get_settings
from cds_hooks.core.logging_config import LoggingConfig
from cds_hooks.core.middleware import LoggingContextMiddleware
from cds_hooks.core.middleware_metrics import MetricsMiddleware
from cds_hooks.services.feedback_reporter import FeedbackReporter
from cds_hooks.services.hook_executor import HookExecutor
from cds_hooks.services.hook_manager import CDSHookManager
from cds_hooks.services.service_catalog import ServiceCatalog

# Configure logging first
LoggingConfig.configure()

logger = LoggingConfig.get_logger(__name__)


def build_hook_manager(transport: Optional[httpx.AsyncBaseTransport] = None) -> CDSHookManager:
    """Wire the HTTP client, catalog, executor and reporter into one manager"""
    http = CDSHooksHttpClient(transport=transport)
    return CDSHookManager(
        http=http,
        catalog=ServiceCatalog(http),
        executor=HookExecutor(http),
        reporter=FeedbackReporter(http),
    )


def create_app(transport: Optional[httpx.AsyncBaseTransport] = None) -> FastAPI:
    """
    Create the FastAPI application

    Args:
        transport: Optional httpx transport for the CDS client (tests pass
            an httpx.MockTransport)
    """
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan events for FastAPI app"""
        logger.info(f"Starting {settings.app_name} in {settings.app_env} mode...")
        app.state.hook_manager = build_hook_manager(transport)
        logger.info(
            f"CDS Hooks endpoint: {settings.cds_base_url}",
            extra={"cds_disabled": settings.cds_disabled},
        )

        yield

        logger.info(f"Shutting down {settings.app_name}...")
        await app.state.hook_manager.aclose()

    app = FastAPI(
        title=settings.app_name,
        description="CDS Hooks orchestration for the clinical workspace",
        version=__version__,
        lifespan=lifespan,
    )

    # Add logging context middleware (before CORS to capture all requests)
    app.add_middleware(LoggingContextMiddleware)
    if settings.enable_metrics:
        app.add_middleware(MetricsMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler to log all unhandled errors"""
        if isinstance(exc, FastAPIHTTPException):
            raise exc

        logger.error(
            "Unhandled exception",
            exc_info=True,
            extra={
                "error": str(exc),
                "error_type": type(exc).__name__,
                "path": request.url.path,
                "method": request.method,
            }
        )
        return JSONResponse(
            status_code=500,
            content={
                "detail": str(exc),
                "type": type(exc).__name__
            }
        )

    app.include_router(health.router)
    if settings.enable_metrics:
        app.include_router(metrics.router)
    app.include_router(cds.router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("cds_hooks.main:app", host="0.0.0.0", port=8080, reload=False)
