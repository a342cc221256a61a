"""
Prize pool and distribution routes.
"""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Path, Query, status

import structlog

from kissmint.api.dependencies import (
    get_distribution_repository,
    get_distribution_service,
    get_prize_pool_manager,
    require_admin_api_key,
)
from kissmint.api.schemas.common import (
    PaginatedResponse,
    SuccessResponse,
    create_paginated_response,
    create_success_response,
)
from kissmint.api.schemas.prizes import (
    DistributionAccepted,
    DistributionCreateRequest,
    DistributionDetail,
    DistributionSummarySchema,
    PayoutSchema,
    PrizePoolSchema,
    SkippedPayoutSchema,
)
from kissmint.core.exceptions import DistributionNotFoundError, ValidationError
from kissmint.core.periods import settlement_period, validate_period_identifier, validate_pool_type
from kissmint.models.distribution import DistributionStatus
from kissmint.services.distribution_repository import DistributionRepository
from kissmint.services.prize_pool_service import PrizePoolManager
from kissmint.services.settlement_service import PrizeDistributionService
from .background import run_settlement

router = APIRouter(tags=["Prizes"])
logger = structlog.get_logger(__name__)


@router.get(
    "/pools",
    response_model=SuccessResponse,
    summary="Current Prize Pools",
    description="Base prize plus the accumulated bonus for each pool"
)
async def get_prize_pools(
    manager: PrizePoolManager = Depends(get_prize_pool_manager)
):
    pools = await manager.get_current_prize_pools()
    return create_success_response(
        data=[PrizePoolSchema.model_validate(pool) for pool in pools]
    )


@router.get(
    "/distributions",
    response_model=PaginatedResponse,
    summary="List Distributions",
    description="Settlement attempts, newest first"
)
async def list_distributions(
    pool_type: Optional[str] = Query(None, alias="type", description="daily or weekly"),
    status_filter: Optional[str] = Query(None, alias="status", description="PENDING, SUCCESS, FAILED or SKIPPED"),
    limit: int = Query(20, ge=1, le=100, description="Number of items per page"),
    offset: int = Query(0, ge=0, description="Number of items to skip"),
    repository: DistributionRepository = Depends(get_distribution_repository)
):
    pool = validate_pool_type(pool_type) if pool_type else None

    distribution_status = None
    if status_filter:
        try:
            distribution_status = DistributionStatus(status_filter.upper())
        except ValueError:
            raise ValidationError("Invalid status filter", {"status": status_filter})

    rows, total = await repository.list_summaries(pool, distribution_status, limit, offset)
    return create_paginated_response(
        data=[DistributionSummarySchema.model_validate(row) for row in rows],
        total=total,
        limit=limit,
        offset=offset
    )


@router.post(
    "/distributions",
    response_model=SuccessResponse,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(require_admin_api_key)],
    summary="Start Distribution",
    description="Settle a period in the background; poll the distribution list for the outcome"
)
async def create_distribution(
    request: DistributionCreateRequest,
    background_tasks: BackgroundTasks,
    service: PrizeDistributionService = Depends(get_distribution_service)
):
    pool_type = validate_pool_type(request.pool_type)
    period = request.period_identifier or settlement_period(pool_type)
    validate_period_identifier(pool_type, period)

    background_tasks.add_task(
        run_settlement,
        service.settle_prizes_for_period,
        pool_type,
        period
    )
    logger.info("Distribution requested", pool_type=pool_type.value, period_identifier=period)

    return create_success_response(
        data=DistributionAccepted(pool_type=pool_type.value, period_identifier=period),
        message=f"Started {pool_type.value} prize distribution for period {period}"
    )


@router.get(
    "/distributions/{distribution_id}",
    response_model=SuccessResponse,
    summary="Get Distribution",
    description="One settlement attempt, optionally with its payouts"
)
async def get_distribution(
    distribution_id: str = Path(..., description="Distribution summary id"),
    include_payouts: bool = Query(False, description="Include payout and skip rows"),
    repository: DistributionRepository = Depends(get_distribution_repository)
):
    row = await repository.get_summary(distribution_id)
    if row is None:
        raise DistributionNotFoundError(distribution_id)

    summary = DistributionSummarySchema.model_validate(row)
    if not include_payouts:
        return create_success_response(data=summary)

    payouts = await repository.get_payouts(distribution_id)
    skipped = await repository.get_skipped_payouts(distribution_id)
    return create_success_response(
        data=DistributionDetail(
            **summary.model_dump(),
            payouts=[PayoutSchema.model_validate(p) for p in payouts],
            skipped=[SkippedPayoutSchema.model_validate(s) for s in skipped],
        )
    )


@router.post(
    "/distributions/{distribution_id}/retry",
    response_model=SuccessResponse,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(require_admin_api_key)],
    summary="Retry Distribution",
    description="Settle a FAILED attempt's period again in the background"
)
async def retry_distribution(
    background_tasks: BackgroundTasks,
    distribution_id: str = Path(..., description="Distribution summary id"),
    service: PrizeDistributionService = Depends(get_distribution_service)
):
    summary = await service.get_retryable_summary(distribution_id)

    background_tasks.add_task(run_settlement, service.retry_distribution, distribution_id)
    logger.info("Distribution retry requested", summary_id=distribution_id)

    return create_success_response(
        data=DistributionAccepted(
            pool_type=summary.pool_type,
            period_identifier=summary.period_identifier,
            retry_of_id=distribution_id
        ),
        message=f"Retrying {summary.pool_type} prize distribution for period {summary.period_identifier}"
    )
