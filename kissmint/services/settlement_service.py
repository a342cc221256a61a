"""
Prize settlement.

Closes a daily or weekly period: claims the prize pool, ranks the period's
winners, resolves their wallets, pays them and records every step in the
distribution audit trail.

Attempt lifecycle:

    PENDING row -> claim pool -> fetch winners
        no winners                 -> SKIPPED
        pool <= 0                  -> SKIPPED
        nothing payable            -> SKIPPED
        payouts executed, all ok   -> SUCCESS
        any payout failed          -> FAILED
        executor raised            -> FAILED (error re-raised)

Only one attempt per (pool type, period) runs at a time, and a period that
already has a PENDING, SUCCESS or SKIPPED attempt is never settled again.
A FAILED period can be retried: the retry reuses the budget the first attempt
claimed and skips winners that were already paid.
"""

import uuid
from decimal import Decimal, ROUND_FLOOR
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set

import structlog

from kissmint.cache.redis_client import RedisClient
from kissmint.cache.cache_keys import KeyBuilder, get_key_builder
from kissmint.core.config import settings
from kissmint.core.exceptions import (
    SettlementInProgressError, DistributionNotFoundError,
    DistributionNotRetryableError, PayoutError
)
from kissmint.core.periods import (
    PoolType, daily_settlement_period, weekly_settlement_period,
    validate_pool_type, validate_period_identifier
)
from kissmint.models.distribution import (
    DistributionSummary, DistributionStatus, PayoutStatus, SkipReason
)
from .distribution_repository import DistributionRepository
from .identity_service import FarcasterIdentityResolver
from .leaderboard_service import LeaderboardService
from .payout_service import SolanaPayoutExecutor, to_smallest_unit, from_smallest_unit
from .prize_pool_service import PrizePoolManager
from .types import (
    LeaderboardEntry, ArchivedLeaderboardEntry, PayoutResult,
    PlannedPayout, SkippedPayout, SettlementPlan
)

logger = structlog.get_logger(__name__)


# Share of the claimed pool per rank; ranks outside the table get nothing
PRIZE_DISTRIBUTION_PERCENTAGES: Dict[int, Decimal] = {
    1: Decimal("0.40"),
    2: Decimal("0.24"),
    3: Decimal("0.16"),
    4: Decimal("0.12"),
    5: Decimal("0.08"),
}

NUMBER_OF_WINNERS = len(PRIZE_DISTRIBUTION_PERCENTAGES)

SKIP_NO_WINNERS = "no winners"
SKIP_EMPTY_POOL = "pool was zero or negative"
SKIP_NO_PAYOUTS = "no payouts calculated"


def calculate_prize_amount(claimed_pool: Decimal, rank: int) -> Decimal:
    """Whole display units for a rank, rounded down."""
    percentage = PRIZE_DISTRIBUTION_PERCENTAGES.get(rank)
    if percentage is None or claimed_pool <= 0:
        return Decimal("0")
    return (claimed_pool * percentage).to_integral_value(rounding=ROUND_FLOOR)


class PrizeDistributionService:
    """Runs settlement attempts and their retries."""

    def __init__(
        self,
        leaderboard_service: LeaderboardService,
        prize_pool_manager: PrizePoolManager,
        payout_executor: SolanaPayoutExecutor,
        identity_resolver: FarcasterIdentityResolver,
        distribution_repository: DistributionRepository,
        redis_client: RedisClient,
        key_builder: Optional[KeyBuilder] = None
    ):
        self.leaderboard_service = leaderboard_service
        self.prize_pool_manager = prize_pool_manager
        self.payout_executor = payout_executor
        self.identity_resolver = identity_resolver
        self.repository = distribution_repository
        self.redis = redis_client
        self.keys = key_builder or get_key_builder()
        self.logger = logger.bind(service="prize_distribution")

    @property
    def decimals(self) -> int:
        return self.payout_executor.decimals

    # Entry points

    async def settle_daily_prizes(self, now: Optional[datetime] = None) -> DistributionSummary:
        """Settle yesterday's UTC daily board."""
        return await self.settle_prizes_for_period(PoolType.DAILY, daily_settlement_period(now))

    async def settle_weekly_prizes(self, now: Optional[datetime] = None) -> DistributionSummary:
        """Settle the ISO week that contained the day 7 days ago."""
        return await self.settle_prizes_for_period(PoolType.WEEKLY, weekly_settlement_period(now))

    async def get_retryable_summary(self, summary_id: str) -> DistributionSummary:
        summary = await self.repository.get_summary(summary_id)
        if summary is None:
            raise DistributionNotFoundError(summary_id)
        if summary.status != DistributionStatus.FAILED:
            raise DistributionNotRetryableError(summary_id, DistributionStatus(summary.status).value)
        return summary

    async def retry_distribution(self, summary_id: str) -> DistributionSummary:
        """Settle the period of a FAILED attempt again."""
        summary = await self.get_retryable_summary(summary_id)
        self.logger.info(
            "Retrying failed distribution",
            summary_id=summary_id,
            pool_type=summary.pool_type,
            period_identifier=summary.period_identifier
        )
        return await self.settle_prizes_for_period(
            PoolType(summary.pool_type),
            summary.period_identifier
        )

    async def settle_prizes_for_period(
        self,
        pool_type: PoolType,
        period_identifier: str
    ) -> DistributionSummary:
        """
        Settle one period under its settlement lock.

        Raises SettlementInProgressError if another attempt holds the lock.
        """
        pool_type = validate_pool_type(pool_type)
        validate_period_identifier(pool_type, period_identifier)

        lock_key = self.keys.settlement_lock_key(pool_type, period_identifier)
        token = uuid.uuid4().hex
        if not await self.redis.acquire_lock(lock_key, token, settings.settlement_lock_ttl_seconds):
            self.logger.warning(
                "Settlement already in progress",
                pool_type=pool_type.value,
                period_identifier=period_identifier
            )
            raise SettlementInProgressError(pool_type.value, period_identifier)

        try:
            return await self._settle(pool_type, period_identifier)
        finally:
            try:
                await self.redis.release_lock(lock_key, token)
            except Exception as e:
                self.logger.error("Failed to release settlement lock", key=lock_key, error=str(e))

    # Attempt

    async def _settle(self, pool_type: PoolType, period_identifier: str) -> DistributionSummary:
        log = self.logger.bind(pool_type=pool_type.value, period_identifier=period_identifier)

        prior = await self.repository.get_latest_summary(pool_type, period_identifier)
        if prior is not None and prior.status != DistributionStatus.FAILED:
            log.warning(
                "Period already settled or in progress, nothing to do",
                summary_id=prior.id,
                status=DistributionStatus(prior.status).value
            )
            return prior

        previous_claim = None
        paid_user_ids: Set[str] = set()
        if prior is not None:
            previous_claim = await self.repository.get_claimed_pool(pool_type, period_identifier)
            paid_user_ids = await self.repository.get_paid_user_ids(pool_type, period_identifier)

        summary = await self.repository.create_summary(
            pool_type,
            period_identifier,
            settings.prize_currency,
            retry_of_id=prior.id if prior is not None else None
        )
        log = log.bind(summary_id=summary.id)
        log.info("Settlement started", retry_of_id=summary.retry_of_id)

        claimed = await self._claim(pool_type, summary, previous_claim, log)

        try:
            winners = await self.leaderboard_service.get_leaderboard_for_period(
                pool_type, period_identifier, top_n=NUMBER_OF_WINNERS
            )
        except Exception as e:
            await self._mark_failed(summary.id, f"Failed to fetch winners: {e}", log)
            raise

        if not winners:
            log.info("No winners for period")
            return await self._finish(summary.id, DistributionStatus.SKIPPED, log, error_message=SKIP_NO_WINNERS)

        if claimed <= 0:
            log.info("Prize pool empty, nothing to distribute", claimed=str(claimed))
            result = await self._finish(summary.id, DistributionStatus.SKIPPED, log, error_message=SKIP_EMPTY_POOL)
            await self._archive(pool_type, period_identifier, self._archive_entries(claimed, winners), log)
            return result

        plan = await self._build_plan(claimed, winners, paid_user_ids, log)
        await self._record_skipped(summary.id, plan.skipped, log)

        if not plan.payouts:
            log.info("No payouts calculated", skipped=len(plan.skipped))
            result = await self._finish(summary.id, DistributionStatus.SKIPPED, log, error_message=SKIP_NO_PAYOUTS)
            await self._archive(pool_type, period_identifier, plan.archive_entries, log)
            return result

        results = await self._execute(summary.id, plan.payouts, log)

        await self.repository.log_payouts(summary.id, plan.payouts, results, self.decimals)

        succeeded = [r for r in results if r.succeeded]
        failed = len(results) - len(succeeded)
        distributed = from_smallest_unit(sum(r.amount for r in succeeded), self.decimals)
        if distributed > claimed:
            log.warning(
                "Distributed amount exceeds claimed pool",
                distributed=str(distributed),
                claimed=str(claimed)
            )

        if failed:
            return await self._finish(
                summary.id,
                DistributionStatus.FAILED,
                log,
                total_distributed_amount=distributed,
                number_of_winners=len(succeeded),
                error_message=f"{failed} of {len(results)} payouts failed, {len(succeeded)} succeeded",
            )

        result = await self._finish(
            summary.id,
            DistributionStatus.SUCCESS,
            log,
            total_distributed_amount=distributed,
            number_of_winners=len(succeeded),
        )
        await self._archive(pool_type, period_identifier, plan.archive_entries, log)
        return result

    async def _claim(
        self,
        pool_type: PoolType,
        summary: DistributionSummary,
        previous_claim: Optional[Decimal],
        log
    ) -> Decimal:
        """Budget of this attempt: the earlier claim on retry, otherwise the live pool."""
        if previous_claim is not None:
            claimed = previous_claim
            log.info("Reusing pool claimed by an earlier attempt", claimed=str(claimed))
        else:
            try:
                raw = await self.prize_pool_manager.claim_pool(pool_type)
            except Exception as e:
                await self._mark_failed(summary.id, f"Failed to claim prize pool: {e}", log)
                raise
            quantum = Decimal(1).scaleb(-self.decimals)
            claimed = Decimal(str(raw)).quantize(quantum, rounding=ROUND_FLOOR)

        try:
            await self.repository.update_summary(
                summary.id,
                total_prize_pool_claimed=claimed,
                pool_claimed=True
            )
        except Exception as e:
            # The ledger is already zeroed; the amount only survives in this log line
            log.error("Failed to record claimed pool", claimed=str(claimed), error=str(e))
            await self._mark_failed(summary.id, f"Failed to record claimed pool {claimed}: {e}", log)
            raise
        return claimed

    def _archive_entries(
        self,
        claimed: Decimal,
        winners: Iterable[LeaderboardEntry]
    ) -> List[ArchivedLeaderboardEntry]:
        return [
            ArchivedLeaderboardEntry(
                user_id=w.user_id,
                score=w.score,
                rank=w.rank,
                prize_amount=calculate_prize_amount(claimed, w.rank),
            )
            for w in winners
        ]

    async def _build_plan(
        self,
        claimed: Decimal,
        winners: List[LeaderboardEntry],
        paid_user_ids: Set[str],
        log
    ) -> SettlementPlan:
        """Compute every prize and resolve wallets for the ones worth paying."""
        plan = SettlementPlan(claimed_pool=claimed)
        plan.archive_entries = self._archive_entries(claimed, winners)

        for entry in sorted(plan.archive_entries, key=lambda e: e.rank):
            prize = entry.prize_amount
            if prize <= 0:
                continue

            if entry.user_id in paid_user_ids:
                log.info("Winner already paid for this period", user_id=entry.user_id, rank=entry.rank)
                plan.skipped.append(SkippedPayout(
                    user_id=entry.user_id,
                    rank=entry.rank,
                    score=entry.score,
                    prize_amount=prize,
                    reason=SkipReason.ALREADY_PAID.value,
                ))
                continue

            try:
                address = await self.identity_resolver.resolve_wallet_address(entry.user_id)
            except Exception as e:
                log.error("Wallet resolution raised", user_id=entry.user_id, rank=entry.rank, error=repr(e))
                address = None
            if not address:
                log.warning(
                    "Skipping winner without a resolvable wallet",
                    user_id=entry.user_id,
                    rank=entry.rank,
                    prize=str(prize)
                )
                plan.skipped.append(SkippedPayout(
                    user_id=entry.user_id,
                    rank=entry.rank,
                    score=entry.score,
                    prize_amount=prize,
                    reason=SkipReason.UNRESOLVED_ADDRESS.value,
                ))
                continue

            plan.payouts.append(PlannedPayout(
                user_id=entry.user_id,
                wallet_address=address,
                rank=entry.rank,
                score=entry.score,
                prize_amount=prize,
                prize_amount_units=to_smallest_unit(prize, self.decimals),
            ))

        computed = sum((e.prize_amount for e in plan.archive_entries), Decimal("0"))
        if computed > claimed:
            log.warning(
                "Computed prizes exceed claimed pool",
                computed=str(computed),
                claimed=str(claimed)
            )
        return plan

    async def _record_skipped(self, summary_id: str, skipped: List[SkippedPayout], log) -> None:
        if not skipped or not settings.record_skipped_payouts:
            return
        try:
            await self.repository.log_skipped_payouts(summary_id, skipped)
        except Exception as e:
            log.error("Failed to record skipped payouts", skipped=len(skipped), error=str(e))

    async def _execute(self, summary_id: str, payouts: List[PlannedPayout], log) -> List[PayoutResult]:
        """
        Hand the payouts to the executor.

        If the executor raises, every payout is logged FAILED with the error,
        the attempt is marked FAILED and the error propagates.
        """
        requests = [p.to_request() for p in payouts]
        log.info("Executing payouts", payouts=len(requests), total_units=sum(r.amount for r in requests))
        try:
            results = await self.payout_executor.distribute_payouts(requests)
            if len(results) != len(requests):
                raise PayoutError(
                    f"Payout executor returned {len(results)} results for {len(requests)} payouts"
                )
        except Exception as e:
            log.error("Payout execution failed", error=str(e))
            failed = [
                PayoutResult(
                    wallet_address=r.wallet_address,
                    amount=r.amount,
                    status=PayoutStatus.FAILED,
                    error=str(e),
                )
                for r in requests
            ]
            try:
                await self.repository.log_payouts(summary_id, payouts, failed, self.decimals)
            except Exception as log_error:
                log.error("Failed to log failed payouts", error=str(log_error))
            await self._mark_failed(summary_id, f"Payout execution failed: {e}", log)
            raise
        return results

    async def _archive(
        self,
        pool_type: PoolType,
        period_identifier: str,
        entries: List[ArchivedLeaderboardEntry],
        log
    ) -> None:
        if not settings.archive_after_settlement or not entries:
            return
        try:
            await self.leaderboard_service.archive_leaderboard(pool_type, period_identifier, entries)
        except Exception as e:
            log.error("Leaderboard archive failed after settlement", error=str(e))

    async def _finish(
        self,
        summary_id: str,
        status: DistributionStatus,
        log,
        **fields
    ) -> DistributionSummary:
        summary = await self.repository.update_summary(summary_id, status=status, **fields)
        log.info(
            "Settlement finished",
            status=status.value,
            distributed=str(summary.total_distributed_amount),
            winners_paid=summary.number_of_winners,
            message=summary.error_message
        )
        return summary

    async def _mark_failed(self, summary_id: str, message: str, log) -> Optional[DistributionSummary]:
        try:
            return await self.repository.update_summary(
                summary_id,
                status=DistributionStatus.FAILED,
                error_message=message
            )
        except Exception as e:
            log.error("Failed to mark distribution failed", message=message, error=str(e))
            return None
