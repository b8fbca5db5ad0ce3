"""
Harvest Subscriptions — FastAPI Backend
Recurring product subscriptions with wallet and cash-on-delivery renewals.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import settings
from db.database import engine, async_session
from routers import subscriptions, admin
from services.renewal_job import SubscriptionRenewalJob
from services.renewal_scheduler import run_renewal_scheduler

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    # Startup
    stop_event = asyncio.Event()
    scheduler = None
    if settings.RENEWAL_SCHEDULER_ENABLED:
        job = SubscriptionRenewalJob(async_session, settings.renewal_config())
        scheduler = asyncio.create_task(run_renewal_scheduler(
            job, settings.RENEWAL_RUN_AT, settings.RENEWAL_TIMEZONE, stop_event,
        ))
    logger.info("🚀 Subscriptions API starting...")
    yield
    # Shutdown
    stop_event.set()
    if scheduler is not None:
        await scheduler
    await engine.dispose()
    logger.info("🛑 Subscriptions API shut down.")


app = FastAPI(
    title="Harvest Subscriptions API",
    description="Subscription renewal engine backend",
    version="1.0.0",
    lifespan=lifespan,
)

# ── CORS ───────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ────────────────────────────────────────────────
app.include_router(subscriptions.router, prefix="/api/subscriptions", tags=["Subscriptions"])
app.include_router(admin.router, prefix="/api/admin", tags=["Admin"])


@app.get("/health")
async def health_check():
    return {"status": "healthy", "service": "Harvest Subscriptions API"}
