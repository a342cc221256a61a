"""
API dependencies for FastAPI endpoints.
Services come from the container stored on the application state.
"""

import secrets
from typing import Optional

from fastapi import Depends, Header, Request

import structlog

from kissmint.core.config import settings
from kissmint.core.exceptions import AuthenticationError, ConfigurationError
from kissmint.services.container import ServiceContainer
from kissmint.services.distribution_repository import DistributionRepository
from kissmint.services.leaderboard_service import LeaderboardService
from kissmint.services.prize_pool_service import PrizePoolManager
from kissmint.services.settlement_service import PrizeDistributionService


logger = structlog.get_logger(__name__)


def get_container(request: Request) -> ServiceContainer:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise ConfigurationError("Services are not initialized")
    return container


def get_distribution_service(
    container: ServiceContainer = Depends(get_container)
) -> PrizeDistributionService:
    return container.distribution_service


def get_distribution_repository(
    container: ServiceContainer = Depends(get_container)
) -> DistributionRepository:
    return container.distribution_repository


def get_prize_pool_manager(
    container: ServiceContainer = Depends(get_container)
) -> PrizePoolManager:
    return container.prize_pool_manager


def get_leaderboard_service(
    container: ServiceContainer = Depends(get_container)
) -> LeaderboardService:
    return container.leaderboard_service


def _matches(provided: Optional[str], expected: Optional[str]) -> bool:
    if not provided or not expected:
        return False
    return secrets.compare_digest(provided.encode(), expected.encode())


async def require_admin_api_key(
    x_api_key: Optional[str] = Header(None, alias="x-api-key")
) -> None:
    """Admin endpoints need the configured key in the x-api-key header."""
    if not settings.admin_api_key:
        logger.error("Admin API key not configured, refusing admin request")
        raise AuthenticationError("Admin access is not configured")
    if not _matches(x_api_key, settings.admin_api_key):
        logger.warning("Unauthorized admin access attempt")
        raise AuthenticationError("Invalid or missing API key")


async def require_cron_secret(
    authorization: Optional[str] = Header(None)
) -> None:
    """Cron triggers authenticate with `Authorization: Bearer <cron secret>`."""
    if not settings.cron_secret:
        logger.error("Cron secret not configured, refusing cron request")
        raise AuthenticationError("Cron access is not configured")

    token = None
    if authorization and authorization.startswith("Bearer "):
        token = authorization[len("Bearer "):].strip()
    if not _matches(token, settings.cron_secret):
        logger.warning("Unauthorized cron trigger attempt")
        raise AuthenticationError("Invalid or missing cron secret")
