"""Idempotent persistence and status tracking for webhook events.

Every inbound notification is logged once per provider event id before it is
dispatched. Failures are counted on the event row and, until the retry
ceiling is reached, scheduled on the retry queue with an escalating backoff.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import and_, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from src.config import settings
from src.models.webhook_event import WebhookEvent, new_event_id
from src.services import retry_queue

logger = logging.getLogger(__name__)

RETRY_DELAYS: tuple[timedelta, ...] = (
    timedelta(minutes=5),
    timedelta(minutes=30),
    timedelta(hours=2),
    timedelta(hours=24),
)

_MAX_ERROR_LENGTH = 2000


class EventNotFoundError(LookupError):
    """No webhook event row exists for the given internal id."""

    def __init__(self, event_id: str) -> None:
        super().__init__(f"Webhook event not found: {event_id}")
        self.event_id = event_id


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def retry_delay(attempt: int) -> timedelta:
    """Backoff before the next attempt, given the 1-based number of failures so far."""
    index = min(max(attempt, 1), len(RETRY_DELAYS)) - 1
    return RETRY_DELAYS[index]


def describe_error(error: BaseException | str) -> str:
    if isinstance(error, str):
        message = error
    else:
        message = str(error) or error.__class__.__name__
    return message[:_MAX_ERROR_LENGTH]


def _insert_ignoring_duplicates(dialect_name: str, values: dict[str, Any]):
    if dialect_name == "postgresql":
        stmt = postgresql.insert(WebhookEvent)
    elif dialect_name == "sqlite":
        stmt = sqlite.insert(WebhookEvent)
    else:
        return None
    return stmt.values(**values).on_conflict_do_nothing(
        index_elements=[WebhookEvent.external_id]
    )


async def log_event(
    db: AsyncSession,
    external_id: str,
    kind: str,
    payload: dict[str, Any],
) -> str:
    """Record an inbound event and return the canonical internal id.

    Redelivery of an already-logged ``external_id`` is not an error: the
    existing row wins and its id is returned, whatever ``kind`` and
    ``payload`` the repeat delivery carried.
    """
    new_id = new_event_id()
    values = {
        "id": new_id,
        "external_id": external_id,
        "kind": kind,
        "payload": payload,
        "processed": False,
        "error_count": 0,
        "created_at": _utcnow(),
    }

    stmt = _insert_ignoring_duplicates(db.bind.dialect.name, values)
    if stmt is not None:
        await db.execute(stmt)
    else:
        try:
            async with db.begin_nested():
                db.add(WebhookEvent(**values))
        except IntegrityError:
            pass  # duplicate external_id; the existing row is read back below

    event_id = await db.scalar(
        select(WebhookEvent.id).where(WebhookEvent.external_id == external_id)
    )
    await db.commit()

    if event_id != new_id:
        logger.warning("Duplicate webhook event %s, using existing record %s", external_id, event_id)
    else:
        logger.info("Webhook event logged: %s (%s) -> %s", external_id, kind, event_id)
    return event_id


async def get_event(
    db: AsyncSession,
    event_id: str,
    *,
    with_queue_item: bool = False,
) -> WebhookEvent | None:
    stmt = select(WebhookEvent).where(WebhookEvent.id == event_id)
    if with_queue_item:
        stmt = stmt.options(selectinload(WebhookEvent.queue_item))
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def mark_processed(
    db: AsyncSession,
    event_id: str,
    *,
    now: datetime | None = None,
) -> None:
    """Flag the event as applied. Prior ``error`` / ``error_count`` stay as history."""
    result = await db.execute(
        update(WebhookEvent)
        .where(WebhookEvent.id == event_id)
        .values(processed=True, processed_at=now or _utcnow())
    )
    if not result.rowcount:
        await db.rollback()
        raise EventNotFoundError(event_id)
    await retry_queue.remove(db, event_id)
    await db.commit()
    logger.info("Webhook event %s marked processed", event_id)


async def record_failure(
    db: AsyncSession,
    event_id: str,
    error: BaseException | str,
    should_retry: bool = True,
    *,
    now: datetime | None = None,
) -> int:
    """Count a failed attempt and reschedule it while below the retry ceiling.

    Returns the event's new ``error_count``. Once the ceiling is reached the
    event's queue item is dropped and it is left for an operator. A failure
    reported for an event that a concurrent attempt already applied is
    ignored and the unchanged count is returned.
    """
    message = describe_error(error)
    result = await db.execute(
        update(WebhookEvent)
        .where(WebhookEvent.id == event_id, WebhookEvent.processed.is_(False))
        .values(error=message, error_count=WebhookEvent.error_count + 1)
    )
    if not result.rowcount:
        await db.rollback()
        error_count = await db.scalar(
            select(WebhookEvent.error_count).where(WebhookEvent.id == event_id)
        )
        if error_count is None:
            raise EventNotFoundError(event_id)
        logger.warning("Webhook event %s already processed, ignoring failure: %s", event_id, message)
        return error_count

    error_count = await db.scalar(
        select(WebhookEvent.error_count).where(WebhookEvent.id == event_id)
    )
    logger.error("Webhook event %s failed (attempt %d): %s", event_id, error_count, message)

    ceiling = settings.webhook_max_retries
    if should_retry and error_count < ceiling:
        await retry_queue.enqueue(db, event_id, retry_delay(error_count), now=now)
    else:
        await retry_queue.remove(db, event_id)
        if error_count >= ceiling:
            logger.error("Webhook event %s reached the retry ceiling (%d)", event_id, ceiling)
    await db.commit()
    return error_count


async def mark_permanently_failed(
    db: AsyncSession,
    event_id: str,
    error: BaseException | str,
) -> None:
    """Stop retrying: pin ``error_count`` at the ceiling and drop the queue item."""
    ceiling = settings.webhook_max_retries
    current = await db.scalar(
        select(WebhookEvent.error_count).where(WebhookEvent.id == event_id)
    )
    if current is None:
        raise EventNotFoundError(event_id)

    await db.execute(
        update(WebhookEvent)
        .where(WebhookEvent.id == event_id)
        .values(
            error=describe_error(f"Max retries exceeded: {describe_error(error)}"),
            error_count=max(current, ceiling),
        )
    )
    await retry_queue.remove(db, event_id)
    await db.commit()
    logger.error("Webhook event %s permanently failed", event_id)


def _pending_clause():
    return and_(
        WebhookEvent.processed.is_(False),
        or_(
            WebhookEvent.error_count < settings.webhook_max_retries,
            WebhookEvent.error.is_(None),
        ),
    )


def _failed_clause():
    return and_(
        WebhookEvent.processed.is_(False),
        WebhookEvent.error_count >= settings.webhook_max_retries,
        WebhookEvent.error.is_not(None),
    )


async def get_pending(db: AsyncSession, limit: int = 100) -> list[WebhookEvent]:
    """Unprocessed events still eligible for processing, oldest first."""
    result = await db.execute(
        select(WebhookEvent)
        .where(_pending_clause())
        .order_by(WebhookEvent.created_at.asc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def get_failed(db: AsyncSession, limit: int = 100) -> list[WebhookEvent]:
    """Events that exhausted their retries, most recent first."""
    result = await db.execute(
        select(WebhookEvent)
        .where(_failed_clause())
        .order_by(WebhookEvent.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def list_events(
    db: AsyncSession,
    *,
    processed: bool | None = None,
    skip: int = 0,
    take: int = 100,
) -> list[WebhookEvent]:
    stmt = select(WebhookEvent)
    if processed is not None:
        stmt = stmt.where(WebhookEvent.processed.is_(processed))
    result = await db.execute(
        stmt.order_by(WebhookEvent.created_at.desc()).offset(skip).limit(take)
    )
    return list(result.scalars().all())


async def replay(db: AsyncSession, event_id: str) -> None:
    """Re-admit an event for processing; ``error_count`` is kept."""
    result = await db.execute(
        update(WebhookEvent)
        .where(WebhookEvent.id == event_id)
        .values(processed=False, error=None)
    )
    if not result.rowcount:
        await db.rollback()
        raise EventNotFoundError(event_id)
    await db.commit()
    logger.info("Replaying webhook event %s", event_id)
