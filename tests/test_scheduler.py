"""
Test the settlement scheduler with a fixed clock and a mocked distribution service.
"""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from kissmint.core.exceptions import SettlementInProgressError
from kissmint.core.periods import PoolType
from kissmint.models.distribution import DistributionStatus
from kissmint.scheduler import ScheduledTask, SettlementScheduler


class FixedClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FixedClock(datetime(2025, 6, 9, 0, 5, tzinfo=timezone.utc))


@pytest.fixture
def service():
    mock = MagicMock()
    mock.settle_prizes_for_period = AsyncMock(
        return_value=SimpleNamespace(id="summary-1", status=DistributionStatus.SUCCESS)
    )
    return mock


@pytest.mark.asyncio
async def test_first_tick_triggers_due_periods(service, clock):
    scheduler = SettlementScheduler(service, interval=60, clock=clock)

    await scheduler.run_pending_tasks()

    calls = [c.args for c in service.settle_prizes_for_period.await_args_list]
    assert calls == [(PoolType.DAILY, "2025-06-08"), (PoolType.WEEKLY, "2025-W23")]


@pytest.mark.asyncio
async def test_period_triggers_only_once(service, clock):
    scheduler = SettlementScheduler(service, interval=60, clock=clock)

    assert await scheduler.trigger_if_due(PoolType.DAILY) is True
    clock.advance(hours=5)
    assert await scheduler.trigger_if_due(PoolType.DAILY) is False
    clock.advance(days=1)
    assert await scheduler.trigger_if_due(PoolType.DAILY) is True

    periods = [c.args[1] for c in service.settle_prizes_for_period.await_args_list]
    assert periods == ["2025-06-08", "2025-06-09"]


@pytest.mark.asyncio
async def test_failed_settlement_is_not_retriggered(service, clock):
    service.settle_prizes_for_period.side_effect = RuntimeError("rpc down")
    scheduler = SettlementScheduler(service, interval=60, clock=clock)

    await scheduler.run_pending_tasks()
    clock.advance(seconds=61)
    await scheduler.run_pending_tasks()

    assert service.settle_prizes_for_period.await_count == 2
    assert scheduler.tasks["daily_settlement"].error_count == 1
    assert scheduler.tasks["daily_settlement"].last_error == "rpc down"


@pytest.mark.asyncio
async def test_settlement_in_progress_is_not_an_error(service, clock):
    service.settle_prizes_for_period.side_effect = SettlementInProgressError("daily", "2025-06-08")
    scheduler = SettlementScheduler(service, interval=60, clock=clock)

    assert await scheduler.trigger_if_due(PoolType.DAILY) is False
    assert scheduler.last_triggered[PoolType.DAILY] == "2025-06-08"


@pytest.mark.asyncio
async def test_tasks_wait_for_interval(service, clock):
    scheduler = SettlementScheduler(service, interval=60, clock=clock)
    await scheduler.run_pending_tasks()

    clock.advance(seconds=30)
    assert not any(task.should_run() for task in scheduler.tasks.values())
    clock.advance(seconds=30)
    assert all(task.should_run() for task in scheduler.tasks.values())


@pytest.mark.asyncio
async def test_scheduled_task_counts_runs(clock):
    func = AsyncMock()
    task = ScheduledTask("noop", func, interval_seconds=10, run_immediately=False, clock=clock)

    assert not task.should_run()
    clock.advance(seconds=10)
    await task.run()

    assert task.run_count == 1
    assert task.status()["last_run"] == clock.now.isoformat()


@pytest.mark.asyncio
async def test_health_check_reports_tasks(service, clock):
    scheduler = SettlementScheduler(service, interval=60, clock=clock)
    scheduler.running = True
    await scheduler.run_pending_tasks()

    health = await scheduler.health_check()
    assert health["healthy"] is True
    assert health["total_tasks"] == 2
    assert health["last_triggered"] == {"daily": "2025-06-08", "weekly": "2025-W23"}
