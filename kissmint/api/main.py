"""
Main FastAPI application for the Kissmint backend.
Configures the API server with routes, error handling and service lifecycle.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

import structlog

from kissmint.core.config import settings
from kissmint.core.exceptions import (
    KissmintException,
    ValidationError,
    NotFoundError,
    AuthenticationError,
    ConfigurationError,
    ExternalServiceError,
    SettlementInProgressError,
)
from kissmint.core.logging import setup_logging
from kissmint.api.schemas.common import HealthCheckResponse, create_error_response
from kissmint.api.routes import prizes, cron, revenue, leaderboard
from kissmint.services.container import ServiceContainer


logger = structlog.get_logger(__name__)


def _status_for(exc: KissmintException) -> int:
    if isinstance(exc, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, AuthenticationError):
        return status.HTTP_401_UNAUTHORIZED
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, SettlementInProgressError):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, ExternalServiceError):
        return status.HTTP_502_BAD_GATEWAY
    if isinstance(exc, ConfigurationError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def kissmint_exception_handler(request: Request, exc: KissmintException) -> JSONResponse:
    status_code = _status_for(exc)
    log = logger.warning if status_code < 500 else logger.error
    log("Request failed", path=request.url.path, error_code=exc.code, error=exc.message)
    return JSONResponse(
        status_code=status_code,
        content=create_error_response(exc.message, exc.code, exc.details).model_dump(mode="json")
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=create_error_response(
            "Invalid request",
            "VALIDATION_ERROR",
            {"errors": [{"loc": list(e.get("loc", [])), "msg": e.get("msg")} for e in exc.errors()]}
        ).model_dump(mode="json")
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error", path=request.url.path, error=str(exc), exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=create_error_response(
            "An unexpected error occurred",
            "INTERNAL_SERVER_ERROR"
        ).model_dump(mode="json")
    )


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting Kissmint API server")
        services = container or ServiceContainer()
        await services.initialize()
        app.state.container = services

        yield

        logger.info("Shutting down Kissmint API server")
        await services.close()

    app = FastAPI(
        title="Kissmint API",
        description="Prize pools, prize distributions, revenue allocation and live leaderboards.",
        version=settings.app_version,
        lifespan=lifespan,
    )

    app.add_exception_handler(KissmintException, kissmint_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.get(
        "/health",
        response_model=HealthCheckResponse,
        tags=["System"],
        summary="Health Check",
        description="Database and Redis status"
    )
    async def health_check(request: Request):
        services: ServiceContainer = request.app.state.container
        health = await services.health_check()
        body = HealthCheckResponse(
            status=health["status"],
            version=settings.app_version,
            services=health["services"]
        )
        if health["status"] != "healthy":
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content=body.model_dump(mode="json")
            )
        return body

    app.include_router(prizes.router, prefix=f"{settings.api_v1_prefix}/prizes")
    app.include_router(cron.router, prefix=f"{settings.api_v1_prefix}/cron")
    app.include_router(revenue.router, prefix=f"{settings.api_v1_prefix}/revenue")
    app.include_router(leaderboard.router, prefix=f"{settings.api_v1_prefix}/leaderboard")

    logger.info("FastAPI application created")
    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "kissmint.api.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level=settings.log_level.lower()
    )
