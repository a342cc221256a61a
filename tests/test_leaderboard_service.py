"""
Test live leaderboards, score submission auditing and archiving.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from kissmint.core.exceptions import ArchiveError, LeaderboardError, ValidationError
from kissmint.core.periods import PoolType
from kissmint.models.leaderboard import LeaderboardArchive, ScoreSubmissionLog
from kissmint.services.leaderboard_service import LeaderboardService
from kissmint.services.types import ArchivedLeaderboardEntry


NOW = datetime(2025, 6, 8, 15, 0, tzinfo=timezone.utc)


async def submissions(db):
    async with db() as session:
        return (await session.execute(select(ScoreSubmissionLog))).scalars().all()


@pytest.mark.asyncio
async def test_submit_score_writes_both_boards(leaderboard_service, fake_redis, keys):
    periods = await leaderboard_service.submit_score("101", 250, game_id="tap", now=NOW)

    assert periods == {"daily": "2025-06-08", "weekly": "2025-W23"}
    daily_key = keys.leaderboard_key(PoolType.DAILY, "2025-06-08")
    weekly_key = keys.leaderboard_key(PoolType.WEEKLY, "2025-W23")
    assert fake_redis.zsets[daily_key] == {"101": 250.0}
    assert fake_redis.zsets[weekly_key] == {"101": 250.0}
    assert fake_redis.ttls[daily_key] == 2 * 24 * 60 * 60
    assert fake_redis.ttls[weekly_key] == 9 * 24 * 60 * 60


@pytest.mark.asyncio
async def test_later_submission_overwrites_score(leaderboard_service):
    await leaderboard_service.submit_score("101", 250, now=NOW)
    await leaderboard_service.submit_score("101", 90, now=NOW)

    board = await leaderboard_service.get_active_leaderboard(PoolType.DAILY, now=NOW)
    assert [(e.user_id, e.score) for e in board] == [("101", 90.0)]


@pytest.mark.asyncio
async def test_accepted_submission_is_audited(leaderboard_service, db):
    await leaderboard_service.submit_score("101", 42, game_id="tap", game_session_data={"taps": 42}, now=NOW)

    rows = await submissions(db)
    assert len(rows) == 1
    assert rows[0].is_valid is True
    assert rows[0].game_session_data == {"taps": 42}


@pytest.mark.asyncio
async def test_negative_score_is_rejected_and_logged(leaderboard_service, db):
    with pytest.raises(ValidationError, match="Score cannot be negative."):
        await leaderboard_service.submit_score("101", -5, game_id="tap", now=NOW)

    rows = await submissions(db)
    assert len(rows) == 1
    assert rows[0].is_valid is False
    assert rows[0].validation_notes == "Score cannot be negative."
    assert await leaderboard_service.get_active_leaderboard(PoolType.DAILY, now=NOW) == []
    assert await leaderboard_service.get_active_leaderboard(PoolType.WEEKLY, now=NOW) == []


@pytest.mark.asyncio
@pytest.mark.parametrize("user_id,score", [
    ("", 10),
    (None, 10),
    ("101", "12"),
    ("101", None),
    ("101", float("nan")),
    ("101", float("inf")),
])
async def test_malformed_submissions_are_rejected(leaderboard_service, db, user_id, score):
    with pytest.raises(ValidationError):
        await leaderboard_service.submit_score(user_id, score, now=NOW)

    rows = await submissions(db)
    assert [r.is_valid for r in rows] == [False]


@pytest.mark.asyncio
async def test_anti_cheat_rejection(leaderboard_service, db, monkeypatch):
    async def reject(*args):
        return False

    monkeypatch.setattr(leaderboard_service, "validate_score", reject)
    with pytest.raises(ValidationError, match="Failed validation checks."):
        await leaderboard_service.submit_score("101", 10, now=NOW)
    assert await leaderboard_service.get_active_leaderboard(PoolType.DAILY, now=NOW) == []


@pytest.mark.asyncio
async def test_store_failure_raises_leaderboard_error(leaderboard_service, fake_redis):
    fake_redis.fail_on = {"execute"}
    with pytest.raises(LeaderboardError):
        await leaderboard_service.submit_score("101", 10, now=NOW)


@pytest.mark.asyncio
async def test_audit_failure_does_not_fail_submission(redis_client, keys, fake_redis):
    @asynccontextmanager
    async def broken_session():
        raise OperationalError("INSERT", {}, Exception("db down"))
        yield

    service = LeaderboardService(redis_client, broken_session, keys)
    await service.submit_score("101", 10, now=NOW)
    assert fake_redis.zsets[keys.leaderboard_key(PoolType.DAILY, "2025-06-08")] == {"101": 10.0}


@pytest.mark.asyncio
async def test_leaderboard_ordering_and_ranks(leaderboard_service, seed_board):
    await seed_board(PoolType.WEEKLY, "2025-W22", {"101": 10, "102": 30, "103": 20, "104": 5})

    board = await leaderboard_service.get_leaderboard_for_period(PoolType.WEEKLY, "2025-W22", top_n=3)
    assert [(e.user_id, e.score, e.rank) for e in board] == [
        ("102", 30.0, 1),
        ("103", 20.0, 2),
        ("101", 10.0, 3),
    ]


@pytest.mark.asyncio
async def test_leaderboard_of_unknown_period_is_empty(leaderboard_service):
    assert await leaderboard_service.get_leaderboard_for_period(PoolType.DAILY, "2020-01-01") == []


@pytest.mark.asyncio
async def test_leaderboard_rejects_unknown_type(leaderboard_service):
    with pytest.raises(ValidationError):
        await leaderboard_service.get_active_leaderboard("monthly")


@pytest.mark.asyncio
async def test_archive_writes_rows_then_clears_live_board(leaderboard_service, seed_board, fake_redis, db):
    key = await seed_board(PoolType.DAILY, "2025-06-07", {"101": 10, "102": 20})
    entries = [
        ArchivedLeaderboardEntry(user_id="102", score=20, rank=1, prize_amount=Decimal("40")),
        ArchivedLeaderboardEntry(user_id="101", score=10, rank=2, prize_amount=Decimal("24")),
    ]

    assert await leaderboard_service.archive_leaderboard(PoolType.DAILY, "2025-06-07", entries) == 2

    assert key not in fake_redis.zsets
    async with db() as session:
        rows = (await session.execute(
            select(LeaderboardArchive).order_by(LeaderboardArchive.rank)
        )).scalars().all()
    assert [(r.user_id, r.rank, r.board_type, r.period_identifier) for r in rows] == [
        ("102", 1, "daily", "2025-06-07"),
        ("101", 2, "daily", "2025-06-07"),
    ]
    assert Decimal(rows[0].prize_amount) == Decimal("40")


@pytest.mark.asyncio
async def test_archive_of_nothing_keeps_live_board(leaderboard_service, seed_board, fake_redis):
    key = await seed_board(PoolType.DAILY, "2025-06-07", {"101": 10})
    assert await leaderboard_service.archive_leaderboard(PoolType.DAILY, "2025-06-07", []) == 0
    assert key in fake_redis.zsets


@pytest.mark.asyncio
async def test_failed_archive_keeps_live_board(redis_client, keys, seed_board, fake_redis):
    @asynccontextmanager
    async def broken_session():
        raise OperationalError("INSERT", {}, Exception("db down"))
        yield

    service = LeaderboardService(redis_client, broken_session, keys)
    key = await seed_board(PoolType.DAILY, "2025-06-07", {"101": 10})
    entries = [ArchivedLeaderboardEntry(user_id="101", score=10, rank=1)]

    with pytest.raises(ArchiveError):
        await service.archive_leaderboard(PoolType.DAILY, "2025-06-07", entries)
    assert fake_redis.zsets[key] == {"101": 10.0}


@pytest.mark.asyncio
async def test_archive_survives_failed_live_board_delete(leaderboard_service, seed_board, fake_redis, db):
    key = await seed_board(PoolType.DAILY, "2025-06-07", {"101": 10})
    fake_redis.fail_on = {"delete"}
    entries = [ArchivedLeaderboardEntry(user_id="101", score=10, rank=1)]

    assert await leaderboard_service.archive_leaderboard(PoolType.DAILY, "2025-06-07", entries) == 1

    assert key in fake_redis.zsets
    async with db() as session:
        rows = (await session.execute(select(LeaderboardArchive))).scalars().all()
    assert [r.user_id for r in rows] == ["101"]
