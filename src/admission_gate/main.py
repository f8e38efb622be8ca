"""Main entry point for the admission gate application."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from admission_gate.core.config import Settings, get_settings
from admission_gate.core.logging import get_logger, setup_logging
from admission_gate.rl import (
    EnvironmentFlagBypass,
    RateLimitExceededError,
    RateLimitMiddleware,
    RequestContext,
    create_rate_limiters,
    create_route_bindings,
    create_window_store,
    get_rate_limit_config,
    rate_limit_error_body
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan management
    Handles startup and shutdown procedures
    """
    log = get_logger(__name__)
    settings: Settings = app.state.settings
    config = app.state.rate_limit_config

    log.info(
        "Starting admission gate",
        environment=settings.ENVIRONMENT,
        rate_limiting_enabled=config.enabled,
        store_backend=config.backend,
        store_failure_mode=config.store_failure_mode.value
    )

    if settings.is_production and EnvironmentFlagBypass(config.bypass_env_var)(RequestContext()):
        log.warning("SECURITY WARNING: rate limiting bypass flag is set in production", flag=config.bypass_env_var)

    yield

    log.info("Shutting down admission gate")


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceededError):
    """Render a rate limit denial raised by a route dependency"""
    logger.warning(
        "Request rejected by rate limiter",
        extra={
            "policy": exc.policy_name,
            "path": request.url.path,
            "method": request.method,
            "retry_after": exc.retry_after
        }
    )

    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=rate_limit_error_body(exc),
        headers=exc.headers
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Custom validation error handler"""
    logger.warning(
        "Request validation failed",
        extra={
            "url": str(request.url),
            "method": request.method,
            "errors": exc.errors()
        }
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": "Request validation failed",
            "errors": exc.errors()
        }
    )


async def general_exception_handler(request: Request, exc: Exception):
    """General exception handler for unhandled errors"""
    logger.error(
        "Unhandled exception",
        extra={
            "url": str(request.url),
            "method": request.method,
            "error": str(exc)
        },
        exc_info=True
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error occurred"
        }
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    The window store is constructed here, once, and shared by every limiter.
    Limiters are exposed on `app.state.rate_limiters` so routes can use them
    through `RateLimitGuard`.
    """
    settings = settings or get_settings()
    setup_logging(settings)
    config = get_rate_limit_config(settings)

    app = FastAPI(
        title="Admission Gate",
        description="Request admission control for the content generation backend",
        version="0.1.0",
        lifespan=lifespan,
        openapi_tags=[
            {
                "name": "health",
                "description": "Health check and system status"
            }
        ]
    )
    app.state.settings = settings
    app.state.rate_limit_config = config

    if config.enabled:
        store = create_window_store(config)
        limiters = create_rate_limiters(config, store)
        app.state.window_store = store
        app.state.rate_limiters = limiters
        app.add_middleware(
            RateLimitMiddleware,
            bindings=create_route_bindings(config, limiters),
            trust_forwarded_for=config.trust_forwarded_for,
            trusted_hops=config.trusted_proxy_hops
        )
    else:
        app.state.window_store = None
        app.state.rate_limiters = {}
        logger.info("Rate limiting disabled by configuration")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["RateLimit-Limit", "RateLimit-Remaining", "RateLimit-Reset", "RateLimit-Policy", "Retry-After"]
    )

    app.add_exception_handler(RateLimitExceededError, rate_limit_exceeded_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    @app.get("/health", tags=["health"])
    async def health():
        """Liveness probe with the active rate limiting setup"""
        return {
            "status": "healthy",
            "rate_limiting": {
                "enabled": config.enabled,
                "backend": config.backend,
                "policies": sorted(app.state.rate_limiters)
            }
        }

    return app


# Create app instance for uvicorn to find
app = create_app()


def main() -> None:
    """Main entry point for the application."""
    settings = get_settings()
    application = create_app(settings)

    logger.info("Starting admission gate...")

    uvicorn.run(
        application,
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
        access_log=True,
        server_header=False,
        date_header=True,
    )


if __name__ == "__main__":
    main()
