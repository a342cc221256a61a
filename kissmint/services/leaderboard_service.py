"""
Live leaderboards and their durable archive.

Live boards are Redis sorted sets, one per (window, period), higher score is
better. A closed period's final standings are copied into
`leaderboard_archives` before the live key is removed.
"""

import math
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError

from kissmint.cache.redis_client import RedisClient
from kissmint.cache.cache_keys import KeyBuilder, get_key_builder
from kissmint.core.config import settings
from kissmint.core.database import SessionFactory, get_async_session
from kissmint.core.exceptions import ValidationError, LeaderboardError, ArchiveError
from kissmint.core.periods import PoolType, current_period_identifiers, validate_pool_type
from kissmint.models.base import utcnow
from kissmint.models.leaderboard import LeaderboardArchive, ScoreSubmissionLog
from .types import LeaderboardEntry, ArchivedLeaderboardEntry

logger = structlog.get_logger(__name__)


class LeaderboardService:
    """Score submission, ranked reads and archiving."""

    def __init__(
        self,
        redis_client: RedisClient,
        session_factory: SessionFactory = get_async_session,
        key_builder: Optional[KeyBuilder] = None
    ):
        self.redis = redis_client
        self.session_factory = session_factory
        self.keys = key_builder or get_key_builder()
        self.logger = logger.bind(service="leaderboard_service")

    async def validate_score(
        self,
        user_id: str,
        score: float,
        game_id: Optional[str],
        game_session_data: Optional[Dict[str, Any]]
    ) -> bool:
        """Anti-cheat hook. Every well-formed score is accepted for now."""
        return True

    async def _log_submission(
        self,
        user_id: str,
        score: Optional[float],
        game_id: Optional[str],
        game_session_data: Optional[Dict[str, Any]],
        is_valid: bool,
        validation_notes: Optional[str] = None
    ) -> None:
        """Audit one submission. A failed write is logged and never fails the submission."""
        try:
            async with self.session_factory() as db:
                db.add(ScoreSubmissionLog(
                    user_id=user_id or "",
                    score=score,
                    game_id=game_id,
                    game_session_data=game_session_data,
                    is_valid=is_valid,
                    validation_notes=validation_notes,
                    submitted_at=utcnow(),
                ))
        except Exception as e:
            self.logger.error(
                "Failed to log score submission",
                user_id=user_id,
                is_valid=is_valid,
                error=str(e)
            )

    async def _reject(
        self,
        user_id: str,
        score: Optional[float],
        game_id: Optional[str],
        game_session_data: Optional[Dict[str, Any]],
        reason: str
    ) -> None:
        await self._log_submission(user_id, score, game_id, game_session_data, False, reason)
        self.logger.warning("Score submission rejected", user_id=user_id, score=score, reason=reason)
        raise ValidationError(reason, {"user_id": user_id, "score": score})

    async def submit_score(
        self,
        user_id: str,
        score: Any,
        game_id: Optional[str] = None,
        game_session_data: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None
    ) -> Dict[str, str]:
        """
        Record a score on both the current daily and weekly boards.

        A later submission overwrites the user's earlier score for the period.
        Returns the period identifiers the score was written to.
        """
        if not user_id or not str(user_id).strip():
            await self._reject("", None, game_id, game_session_data, "User ID is required.")
        user_id = str(user_id).strip()

        if isinstance(score, bool) or not isinstance(score, (int, float)):
            await self._reject(user_id, None, game_id, game_session_data, "Score must be a number.")
        score = float(score)
        if not math.isfinite(score):
            await self._reject(user_id, None, game_id, game_session_data, "Score must be a finite number.")
        if score < 0:
            await self._reject(user_id, score, game_id, game_session_data, "Score cannot be negative.")

        if not await self.validate_score(user_id, score, game_id, game_session_data):
            await self._reject(user_id, score, game_id, game_session_data, "Failed validation checks.")

        periods = current_period_identifiers(now)
        daily_key = self.keys.leaderboard_key(PoolType.DAILY, periods[PoolType.DAILY.value])
        weekly_key = self.keys.leaderboard_key(PoolType.WEEKLY, periods[PoolType.WEEKLY.value])

        try:
            async with self.redis.pipeline() as pipe:
                pipe.zadd(daily_key, {user_id: score})
                pipe.zadd(weekly_key, {user_id: score})
                pipe.expire(daily_key, settings.daily_leaderboard_ttl_seconds)
                pipe.expire(weekly_key, settings.weekly_leaderboard_ttl_seconds)
        except Exception as e:
            raise LeaderboardError(
                "Failed to submit score",
                {"user_id": user_id, "error": str(e)}
            ) from e

        self.logger.info(
            "Score submitted",
            user_id=user_id,
            score=score,
            daily_key=daily_key,
            weekly_key=weekly_key
        )
        await self._log_submission(user_id, score, game_id, game_session_data, True)
        return periods

    async def get_leaderboard_for_period(
        self,
        period_type: PoolType,
        period_identifier: str,
        top_n: int = 100
    ) -> List[LeaderboardEntry]:
        """Top N of a given period, highest score first, ranks 1-based by position."""
        period_type = validate_pool_type(period_type)
        if top_n <= 0:
            return []

        key = self.keys.leaderboard_key(period_type, period_identifier)
        try:
            raw = await self.redis.zrevrange_withscores(key, 0, top_n - 1)
        except Exception as e:
            raise LeaderboardError(
                f"Failed to fetch {period_type.value} leaderboard",
                {"period_identifier": period_identifier, "error": str(e)}
            ) from e

        return [
            LeaderboardEntry(user_id=str(member), score=float(score), rank=position)
            for position, (member, score) in enumerate(raw, start=1)
        ]

    async def get_active_leaderboard(
        self,
        period_type: PoolType,
        top_n: int = 100,
        now: Optional[datetime] = None
    ) -> List[LeaderboardEntry]:
        """Top N of the period currently accepting scores."""
        period_type = validate_pool_type(period_type)
        period = current_period_identifiers(now)[period_type.value]
        return await self.get_leaderboard_for_period(period_type, period, top_n)

    async def archive_leaderboard(
        self,
        period_type: PoolType,
        period_identifier: str,
        entries_with_prizes: List[ArchivedLeaderboardEntry]
    ) -> int:
        """
        Persist final standings, then drop the live board.

        All rows go in one transaction. The live key is deleted only once that
        transaction committed, so a failed insert leaves the live board intact.
        Returns the number of archived rows.
        """
        period_type = validate_pool_type(period_type)
        if not entries_with_prizes:
            self.logger.info(
                "Nothing to archive",
                period_type=period_type.value,
                period_identifier=period_identifier
            )
            return 0

        archived_at = utcnow()
        try:
            async with self.session_factory() as db:
                db.add_all([
                    LeaderboardArchive(
                        period_identifier=period_identifier,
                        board_type=period_type.value,
                        user_id=entry.user_id,
                        rank=entry.rank,
                        score=entry.score,
                        prize_amount=entry.prize_amount,
                        archived_at=archived_at,
                    )
                    for entry in entries_with_prizes
                ])
        except SQLAlchemyError as e:
            raise ArchiveError(
                f"Failed to archive {period_type.value} leaderboard",
                {"period_identifier": period_identifier, "error": str(e)}
            ) from e

        key = self.keys.leaderboard_key(period_type, period_identifier)
        if not await self.redis.delete(key):
            self.logger.warning(
                "Live leaderboard not cleared after archive",
                period_type=period_type.value,
                period_identifier=period_identifier,
                key=key
            )

        self.logger.info(
            "Leaderboard archived",
            period_type=period_type.value,
            period_identifier=period_identifier,
            entries=len(entries_with_prizes)
        )
        return len(entries_with_prizes)
