"""Inbound webhook route."""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.database import get_db
from src.handlers.ingress import handle_webhook
from src.routes.dependencies import get_dispatcher
from src.schemas.events import WebhookAck, WebhookEnvelope
from src.services.dispatcher import Dispatcher

router = APIRouter(tags=["webhooks"])


@router.post(
    "/webhooks/{provider}",
    response_model=WebhookAck,
    response_model_exclude_none=True,
)
async def receive_webhook(
    provider: str,
    envelope: WebhookEnvelope,
    db: AsyncSession = Depends(get_db),
    dispatcher: Dispatcher = Depends(get_dispatcher),
) -> WebhookAck:
    """Receive a verified billing event.

    Always answers 200 once the event is logged; processing failures are
    reported in ``warning`` and retried from the internal queue.
    Duplicate deliveries of a processed event return ``cached: true``.
    """
    if provider not in settings.webhook_providers:
        raise HTTPException(status.HTTP_404_NOT_FOUND, f"Unknown webhook provider: {provider}")
    return await handle_webhook(db, dispatcher, provider, envelope)
