"""When each failed webhook event becomes eligible for another attempt.

The queue holds at most one item per event. Callers own the transaction:
these helpers add or change rows on the session but never commit.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from src.models.retry_queue_item import RetryQueueItem

logger = logging.getLogger(__name__)

DEFAULT_SWEEP_LIMIT = 10


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def enqueue(
    db: AsyncSession,
    event_id: str,
    delay: timedelta,
    *,
    now: datetime | None = None,
) -> RetryQueueItem:
    """Schedule ``event_id`` for ``now + delay``.

    A second failure before the first retry fires pushes the existing item
    forward and bumps its ``retry_count`` instead of adding another row.
    """
    next_retry_at = (now or _utcnow()) + delay

    result = await db.execute(
        select(RetryQueueItem).where(RetryQueueItem.event_id == event_id)
    )
    item = result.scalar_one_or_none()
    if item is None:
        item = RetryQueueItem(event_id=event_id, next_retry_at=next_retry_at, retry_count=1)
        db.add(item)
    else:
        item.next_retry_at = next_retry_at
        item.retry_count = item.retry_count + 1
    await db.flush()

    logger.info(
        "Webhook event %s enqueued for retry %d at %s",
        event_id,
        item.retry_count,
        next_retry_at.isoformat(),
    )
    return item


async def due_items(
    db: AsyncSession,
    limit: int = DEFAULT_SWEEP_LIMIT,
    *,
    now: datetime | None = None,
) -> list[RetryQueueItem]:
    """Items whose ``next_retry_at`` has passed, soonest first, with their events loaded."""
    result = await db.execute(
        select(RetryQueueItem)
        .where(RetryQueueItem.next_retry_at <= (now or _utcnow()))
        .options(selectinload(RetryQueueItem.event))
        .order_by(RetryQueueItem.next_retry_at)
        .limit(limit)
    )
    return list(result.scalars().all())


async def get_item(db: AsyncSession, event_id: str) -> RetryQueueItem | None:
    result = await db.execute(
        select(RetryQueueItem).where(RetryQueueItem.event_id == event_id)
    )
    return result.scalar_one_or_none()


async def remove(db: AsyncSession, event_id: str) -> bool:
    """Delete the item for ``event_id``; returns whether one existed."""
    result = await db.execute(
        delete(RetryQueueItem).where(RetryQueueItem.event_id == event_id)
    )
    removed = bool(result.rowcount)
    if removed:
        logger.debug("Removed retry queue item for webhook event %s", event_id)
    return removed
