"""Admin API endpoints — manual renewal runs."""

from datetime import date
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config import settings
from db.database import get_session_factory
from schemas import RenewalRunResponse, RenewalFailure
from services.renewal_job import SubscriptionRenewalJob
from services.scheduling import store_today

router = APIRouter()


@router.post("/renewals/run", response_model=RenewalRunResponse)
async def run_renewals(
    today: date | None = None,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """Manually trigger the renewal job (defaults to today)."""
    job = SubscriptionRenewalJob(session_factory, settings.renewal_config())
    summary = await job.renew_subscriptions(today or store_today(settings.RENEWAL_TIMEZONE))

    return RenewalRunResponse(
        run_date=summary.run_date,
        total=summary.total,
        successful=summary.successful,
        failed=summary.failed,
        paused=summary.paused,
        skipped=summary.skipped,
        failures=[
            RenewalFailure(
                subscription_id=f.subscription_id,
                attempts=f.attempts,
                error=repr(f.error),
            )
            for f in summary.failures
        ],
    )
