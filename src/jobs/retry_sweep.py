"""Retry sweep: re-dispatch webhook events whose backoff has elapsed."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import settings
from src.database import async_session
from src.services import event_store, retry_queue
from src.services.dispatcher import Dispatcher

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    processed: int = 0
    rescheduled: int = 0
    permanently_failed: int = 0
    skipped: int = 0

    @property
    def attempted(self) -> int:
        return self.processed + self.rescheduled + self.permanently_failed


async def process_retry_queue(
    dispatcher: Dispatcher,
    *,
    session_factory: async_sessionmaker[AsyncSession] = async_session,
    limit: int | None = None,
    now: datetime | None = None,
) -> SweepResult:
    """Run one bounded pass over the due part of the retry queue."""
    now = now or datetime.now(timezone.utc)
    limit = limit or settings.retry_sweep_batch_size
    result = SweepResult()

    async with session_factory() as db:
        items = await retry_queue.due_items(db, limit, now=now)
        if not items:
            logger.info("No webhooks to retry")
            return result

        # Plain values only: a dispatcher rollback expires every loaded object.
        due = [
            (item.event_id, item.retry_count, item.event.kind, item.event.payload, item.event.processed)
            for item in items
        ]
        await db.commit()
        logger.info("Processing %d webhook retries", len(due))

        for event_id, retry_count, kind, payload, processed in due:
            if processed:
                await retry_queue.remove(db, event_id)
                await db.commit()
                result.skipped += 1
                continue

            logger.info("Retrying webhook event %s: %s (attempt %d)", event_id, kind, retry_count + 1)
            try:
                await dispatcher.dispatch(db, kind, payload, now=now)
            except Exception as exc:
                logger.error("Retry failed for webhook event %s: %s", event_id, exc)
                if retry_count >= settings.webhook_max_retries:
                    await event_store.mark_permanently_failed(db, event_id, exc)
                    result.permanently_failed += 1
                else:
                    await event_store.record_failure(db, event_id, exc, should_retry=True, now=now)
                    result.rescheduled += 1
                continue

            await event_store.mark_processed(db, event_id, now=now)
            result.processed += 1
            logger.info("Webhook event %s processed on retry", event_id)

    logger.info(
        "Retry sweep complete: %d processed, %d rescheduled, %d permanently failed",
        result.processed,
        result.rescheduled,
        result.permanently_failed,
    )
    return result
