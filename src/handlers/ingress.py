"""Request/response contract for one inbound billing webhook.

1. Log the delivery (deduplicated on the provider's event id).
2. Short-circuit if the event was already applied.
3. Dispatch it.
4. Mark it processed, or record the failure for the retry queue.

The provider always gets a 200 once the event is logged. Failed events are
retried internally, so provider redelivery must not be triggered as well.
"""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from src.schemas.events import WebhookAck, WebhookEnvelope
from src.services import event_store
from src.services.dispatcher import Dispatcher
from src.services.event_store import EventNotFoundError

logger = logging.getLogger(__name__)

RETRY_WARNING = "Processing failed but logged for retry"


async def handle_webhook(
    db: AsyncSession,
    dispatcher: Dispatcher,
    provider: str,
    envelope: WebhookEnvelope,
) -> WebhookAck:
    logger.info("Webhook received from %s: %s (%s)", provider, envelope.event_name, envelope.event_id)
    event_id = await event_store.log_event(
        db,
        envelope.event_id,
        envelope.event_name,
        envelope.stored_payload(),
    )
    return await process_event(db, dispatcher, event_id)


async def process_event(
    db: AsyncSession,
    dispatcher: Dispatcher,
    event_id: str,
) -> WebhookAck:
    """Dispatch a logged event once and record the outcome.

    Also used by the operator retry endpoint, so it always starts from the
    stored payload rather than the request body.
    """
    event = await event_store.get_event(db, event_id)
    if event is None:
        raise EventNotFoundError(event_id)
    if event.processed:
        logger.info("Webhook event %s already processed, skipping", event_id)
        return WebhookAck(event_id=event_id, cached=True)

    kind, payload = event.kind, event.payload
    try:
        await dispatcher.dispatch(db, kind, payload)
    except Exception as exc:
        logger.error("Error handling webhook event %s (%s): %s", event_id, kind, exc)
        await event_store.record_failure(db, event_id, exc, should_retry=True)
        return WebhookAck(event_id=event_id, warning=RETRY_WARNING)

    await event_store.mark_processed(db, event_id)
    return WebhookAck(event_id=event_id)
