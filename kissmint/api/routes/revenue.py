"""
Purchase revenue allocation.
"""

from fastapi import APIRouter, Depends

import structlog

from kissmint.api.dependencies import get_prize_pool_manager, require_admin_api_key
from kissmint.api.schemas.common import SuccessResponse, create_success_response
from kissmint.api.schemas.prizes import RevenueAllocationRequest, RevenueSplitSchema
from kissmint.services.prize_pool_service import PrizePoolManager

router = APIRouter(tags=["Revenue"])
logger = structlog.get_logger(__name__)


@router.post(
    "/allocate",
    response_model=SuccessResponse,
    dependencies=[Depends(require_admin_api_key)],
    summary="Allocate Purchase Revenue",
    description="Split a purchase 9% daily pool, 21% weekly pool, 70% treasury"
)
async def allocate_revenue(
    request: RevenueAllocationRequest,
    manager: PrizePoolManager = Depends(get_prize_pool_manager)
):
    split = await manager.allocate_purchase_revenue(request.purchase_id, request.total_revenue)
    return create_success_response(
        data=RevenueSplitSchema.model_validate(split),
        message="Revenue allocated successfully"
    )
