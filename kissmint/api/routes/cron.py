"""
Scheduled trigger for prize settlement, called by an external cron.
"""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status

import structlog

from kissmint.api.dependencies import get_distribution_service, require_cron_secret
from kissmint.api.schemas.common import SuccessResponse, create_success_response
from kissmint.api.schemas.prizes import DistributionAccepted
from kissmint.core.periods import (
    PoolType, settlement_period, validate_period_identifier, validate_pool_type
)
from kissmint.services.settlement_service import PrizeDistributionService
from .background import run_settlement

router = APIRouter(tags=["Cron"])
logger = structlog.get_logger(__name__)


@router.get(
    "/prize-distribution",
    response_model=SuccessResponse,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(require_cron_secret)],
    summary="Trigger Prize Distribution",
    description="Settle the due daily or weekly period in the background"
)
async def trigger_prize_distribution(
    background_tasks: BackgroundTasks,
    period_type: Optional[str] = Query(None, alias="periodType", description="daily or weekly"),
    period_identifier: Optional[str] = Query(
        None,
        alias="periodIdentifier",
        description="Explicit period; defaults to the period that just closed"
    ),
    service: PrizeDistributionService = Depends(get_distribution_service)
):
    pool_type = validate_pool_type(period_type)

    if period_identifier:
        validate_period_identifier(pool_type, period_identifier)
        period = period_identifier
        background_tasks.add_task(run_settlement, service.settle_prizes_for_period, pool_type, period)
    elif pool_type == PoolType.DAILY:
        period = settlement_period(pool_type)
        background_tasks.add_task(run_settlement, service.settle_daily_prizes)
    else:
        period = settlement_period(pool_type)
        background_tasks.add_task(run_settlement, service.settle_weekly_prizes)

    logger.info("Cron settlement triggered", pool_type=pool_type.value, period_identifier=period)
    return create_success_response(
        data=DistributionAccepted(pool_type=pool_type.value, period_identifier=period),
        message=f"Started {pool_type.value} prize distribution"
    )
