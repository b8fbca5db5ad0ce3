"""
Subscription Renewal Job — renews every subscription due on a given date.

Flow per run:
  1. Page through ACTIVE, claimable, due subscriptions ordered by
     (renewal_date, id). Each round fetches CONCURRENT_BATCHES pages of
     BATCH_SIZE concurrently, keyed off the last row of the previous round,
     so a subscription is visited at most once per run.
  2. Claim each one with a conditional UPDATE on ``is_processing`` and
     ``processing_started_at``; a claim that affects no row means another
     worker owns it. A claim older than CLAIM_LEASE_SEC belongs to a run that
     died and is taken over, so a crash between the charge and lock steps
     resumes on the next run.
  3. Dispatch to the payment-method handler under tenacity, retrying
     transient failures up to MAX_RETRIES. Precondition/invariant errors are
     not retried.
  4. On terminal failure release the claim so the next run picks it up.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import (
    AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_exponential, wait_none,
)

from config import RenewalConfig
from models.subscription import Subscription
from services.errors import SubscriptionError
from services.notifications import Notifier
from services.renewal_handlers import RenewalHandler, RenewalOutcome, build_handlers, handler_for
from services.subscription_queries import claimable

logger = logging.getLogger(__name__)


@dataclass
class RenewalResult:
    subscription_id: uuid.UUID
    success: bool
    outcome: RenewalOutcome | None = None
    attempts: int = 0
    error: Exception | None = None
    skipped: bool = False


@dataclass
class RenewalSummary:
    run_date: date
    total: int = 0
    successful: int = 0
    failed: int = 0
    paused: int = 0
    skipped: int = 0
    failures: list[RenewalResult] = field(default_factory=list)

    def record(self, result: RenewalResult) -> None:
        if result.skipped:
            self.skipped += 1
            return
        self.total += 1
        if result.success:
            self.successful += 1
            if result.outcome is not None and result.outcome != RenewalOutcome.RENEWED:
                self.paused += 1
        else:
            self.failed += 1
            self.failures.append(result)


def _is_retryable(exc: Exception) -> bool:
    if isinstance(exc, SubscriptionError):
        return exc.retryable
    return True


class SubscriptionRenewalJob:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config: RenewalConfig | None = None,
        handlers: dict[str, RenewalHandler] | None = None,
        notify: Notifier | None = None,
    ):
        self.config = config or RenewalConfig()
        self._session_factory = session_factory
        self._handlers = handlers or build_handlers(
            session_factory, notify, self.config.DELIVERY_BUFFER_DAYS,
        )

    async def renew_subscriptions(self, today: date) -> RenewalSummary:
        logger.info("Starting subscription renewal for %s", today.isoformat())
        summary = RenewalSummary(run_date=today)
        workers = asyncio.Semaphore(self.config.CONCURRENT_BATCHES)
        cursor: tuple[date, uuid.UUID] | None = None

        try:
            while True:
                pages = await asyncio.gather(*(
                    self._fetch_page(today, cursor, i * self.config.BATCH_SIZE)
                    for i in range(self.config.CONCURRENT_BATCHES)
                ))
                rows = [row for page in pages for row in page]
                if not rows:
                    break

                results = await asyncio.gather(*(
                    self._process_bounded(workers, row, today) for row in rows
                ))
                round_ok = round_failed = 0
                for result in results:
                    summary.record(result)
                    if result.skipped:
                        continue
                    if result.success:
                        round_ok += 1
                    else:
                        round_failed += 1
                        logger.error(
                            "Failed to process subscription %s after %d attempt(s): %r",
                            result.subscription_id, result.attempts, result.error,
                        )

                cursor = (rows[-1].renewal_date, rows[-1].id)
                logger.info(
                    "Processed batch: %d subscriptions (%d successful, %d failed)",
                    round_ok + round_failed, round_ok, round_failed,
                )
        except Exception:
            logger.exception("Critical error in subscription renewal for %s", today.isoformat())
            raise

        logger.info(
            "Subscription renewal completed: %d total, %d successful, %d failed, %d paused, %d skipped",
            summary.total, summary.successful, summary.failed, summary.paused, summary.skipped,
        )
        return summary

    def _stale_before(self, now: datetime) -> datetime:
        return now - timedelta(seconds=self.config.CLAIM_LEASE_SEC)

    async def _fetch_page(self, today: date, cursor: tuple[date, uuid.UUID] | None, offset: int):
        query = (
            select(Subscription.id, Subscription.renewal_date, Subscription.payment_method)
            .where(
                Subscription.status == "ACTIVE",
                claimable(self._stale_before(datetime.now(timezone.utc))),
                Subscription.renewal_date <= today,
            )
            .order_by(Subscription.renewal_date.asc(), Subscription.id.asc())
            .offset(offset)
            .limit(self.config.BATCH_SIZE)
        )
        if cursor is not None:
            last_date, last_id = cursor
            query = query.where(or_(
                Subscription.renewal_date > last_date,
                and_(Subscription.renewal_date == last_date, Subscription.id > last_id),
            ))
        async with self._session_factory() as db:
            return (await db.execute(query)).all()

    async def _process_bounded(self, workers: asyncio.Semaphore, row, today: date) -> RenewalResult:
        async with workers:
            return await self.process_with_retry(row.id, row.payment_method, today)

    def _retrying(self, subscription_id: uuid.UUID) -> AsyncRetrying:
        def log_retry(retry_state: RetryCallState) -> None:
            logger.warning(
                "Retrying subscription %s, attempt %d: %s",
                subscription_id, retry_state.attempt_number + 1, retry_state.outcome.exception(),
            )

        backoff = self.config.RETRY_BACKOFF_SEC
        return AsyncRetrying(
            stop=stop_after_attempt(self.config.MAX_RETRIES + 1),
            wait=wait_exponential(multiplier=backoff) if backoff else wait_none(),
            retry=retry_if_exception(_is_retryable),
            before_sleep=log_retry,
            reraise=True,
        )

    async def process_with_retry(
        self,
        subscription_id: uuid.UUID,
        payment_method: str,
        today: date,
    ) -> RenewalResult:
        if not await self.claim(subscription_id, today):
            logger.info("Subscription %s is already being processed, skipping.", subscription_id)
            return RenewalResult(subscription_id, success=False, skipped=True)

        attempts = 0
        try:
            async for attempt in self._retrying(subscription_id):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    handler = handler_for(self._handlers, payment_method)
                    outcome = await handler.process(subscription_id, today)
        except Exception as e:
            await self.release(subscription_id)
            return RenewalResult(subscription_id, success=False, attempts=attempts, error=e)
        return RenewalResult(subscription_id, success=True, outcome=outcome, attempts=attempts)

    async def claim(self, subscription_id: uuid.UUID, today: date) -> bool:
        """Atomically take the per-row processing lock, or a lock whose lease ran out."""
        now = datetime.now(timezone.utc)
        async with self._session_factory() as db:
            async with db.begin():
                result = await db.execute(
                    update(Subscription)
                    .where(
                        Subscription.id == subscription_id,
                        claimable(self._stale_before(now)),
                        Subscription.status == "ACTIVE",
                        Subscription.renewal_date <= today,
                    )
                    .values(is_processing=True, processing_started_at=now)
                    .execution_options(synchronize_session=False)
                )
                claimed = result.rowcount == 1
        return claimed

    async def release(self, subscription_id: uuid.UUID) -> None:
        async with self._session_factory() as db:
            async with db.begin():
                await db.execute(
                    update(Subscription)
                    .where(Subscription.id == subscription_id)
                    .values(is_processing=False, processing_started_at=None)
                    .execution_options(synchronize_session=False)
                )
