"""
Live leaderboard routes.
"""

from fastapi import APIRouter, Depends, Path, Query

import structlog

from kissmint.api.dependencies import get_leaderboard_service
from kissmint.api.schemas.common import SuccessResponse, create_success_response
from kissmint.api.schemas.prizes import LeaderboardEntrySchema, ScoreSubmissionRequest
from kissmint.core.config import settings
from kissmint.services.leaderboard_service import LeaderboardService

router = APIRouter(tags=["Leaderboard"])
logger = structlog.get_logger(__name__)


@router.post(
    "/scores",
    response_model=SuccessResponse,
    summary="Submit Score",
    description="Record a finished game's score on the current daily and weekly boards"
)
async def submit_score(
    request: ScoreSubmissionRequest,
    service: LeaderboardService = Depends(get_leaderboard_service)
):
    periods = await service.submit_score(
        request.user_id,
        request.score,
        game_id=request.game_id,
        game_session_data=request.game_session_data
    )
    return create_success_response(data={"periods": periods}, message="Score submitted")


@router.get(
    "/{period_type}",
    response_model=SuccessResponse,
    summary="Get Leaderboard",
    description="Top players of the current daily or weekly period"
)
async def get_leaderboard(
    period_type: str = Path(..., description="daily or weekly"),
    limit: int = Query(settings.default_leaderboard_size, ge=1, le=1000, description="Number of entries"),
    service: LeaderboardService = Depends(get_leaderboard_service)
):
    entries = await service.get_active_leaderboard(period_type, top_n=limit)
    return create_success_response(
        data=[LeaderboardEntrySchema.model_validate(e) for e in entries]
    )
