"""Daily maintenance: expire subscriptions and trials whose end date has passed."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.database import async_session
from src.models.subscription import Subscription

logger = logging.getLogger(__name__)

_RENEWING_STATUSES = ("active", "on_trial")


async def sync_expired_subscriptions(db: AsyncSession, now: datetime) -> int:
    result = await db.execute(
        update(Subscription)
        .where(
            Subscription.status.in_(_RENEWING_STATUSES),
            Subscription.current_period_end < now,
        )
        .values(status="expired")
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    if result.rowcount:
        logger.info("Updated %d subscriptions to expired status", result.rowcount)
    else:
        logger.info("No expired subscriptions found")
    return result.rowcount


async def sync_expired_trials(db: AsyncSession, now: datetime) -> int:
    result = await db.execute(
        update(Subscription)
        .where(
            Subscription.status == "on_trial",
            Subscription.trial_ends_at.is_not(None),
            Subscription.trial_ends_at < now,
        )
        .values(status="expired")
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    if result.rowcount:
        logger.info("Updated %d trials to expired status", result.rowcount)
    else:
        logger.info("No expired trials found")
    return result.rowcount


async def run_subscription_sync(
    *,
    session_factory: async_sessionmaker[AsyncSession] = async_session,
    now: datetime | None = None,
) -> None:
    now = now or datetime.now(timezone.utc)
    logger.info("Starting subscription sync cycle")
    async with session_factory() as db:
        await sync_expired_subscriptions(db, now)
        await sync_expired_trials(db, now)
    logger.info("Subscription sync cycle completed")
