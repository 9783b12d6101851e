"""FastAPI application for subscription-webhooks."""

import logging
from contextlib import asynccontextmanager
from functools import partial

from fastapi import FastAPI, Request

from src.config import settings
from src.database import close_db, init_db
from src.jobs.retry_sweep import process_retry_queue
from src.jobs.subscription_sync import run_subscription_sync
from src.routes.audit import router as audit_router
from src.routes.dependencies import get_dispatcher
from src.routes.webhooks import router as webhooks_router
from src.schemas.audit import SchedulerStatus
from src.services.scheduler import Scheduler

logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)
logger = logging.getLogger(__name__)


def build_scheduler() -> Scheduler:
    scheduler = Scheduler(tick_seconds=settings.scheduler_tick_seconds)
    scheduler.schedule_daily("syncSubscriptions", run_subscription_sync, settings.subscription_sync_hour_utc)
    scheduler.schedule_daily(
        "processWebhookQueue",
        partial(process_retry_queue, get_dispatcher()),
        settings.retry_queue_daily_hour_utc,
    )
    return scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("subscription-webhooks starting up")
    await init_db()
    scheduler = build_scheduler()
    app.state.scheduler = scheduler
    if settings.scheduler_enabled:
        scheduler.start()
        scheduler.schedule_interval(
            "webhook-retry",
            partial(process_retry_queue, get_dispatcher()),
            settings.retry_sweep_interval_seconds,
        )
    yield
    logger.info("subscription-webhooks shutting down")
    await scheduler.stop()
    await close_db()


app = FastAPI(
    title="Subscription Webhooks",
    description="Idempotent ingestion and retry of billing-provider subscription webhooks",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(webhooks_router, prefix=settings.api_prefix)
app.include_router(audit_router, prefix=settings.api_prefix)


@app.get("/health")
async def health():
    return {"status": "ok", "service": "subscription-webhooks"}


@app.get("/health/scheduler", response_model=SchedulerStatus)
async def scheduler_status(request: Request):
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        return SchedulerStatus(running=False, jobs=[], interval_jobs=[])
    return SchedulerStatus.model_validate(scheduler.status())
