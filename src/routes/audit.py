"""Operator endpoints over the webhook event log."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.database import get_db
from src.handlers.ingress import process_event
from src.routes.dependencies import get_dispatcher, require_operator
from src.schemas.audit import ReplayResponse, WebhookEventDetail, WebhookEventView
from src.schemas.events import WebhookAck
from src.services import event_store
from src.services.dispatcher import Dispatcher
from src.services.event_store import EventNotFoundError

router = APIRouter(
    prefix="/webhooks/audit",
    tags=["webhook-audit"],
    dependencies=[Depends(require_operator)],
)


def _not_found(exc: EventNotFoundError) -> HTTPException:
    return HTTPException(status.HTTP_404_NOT_FOUND, str(exc))


@router.get("/events", response_model=list[WebhookEventView])
async def list_events(
    processed: Optional[bool] = None,
    skip: int = Query(0, ge=0),
    take: int = Query(100, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    return await event_store.list_events(db, processed=processed, skip=skip, take=take)


@router.get("/events/{event_id}", response_model=WebhookEventDetail)
async def get_event(event_id: str, db: AsyncSession = Depends(get_db)):
    event = await event_store.get_event(db, event_id, with_queue_item=True)
    if event is None:
        raise _not_found(EventNotFoundError(event_id))
    return event


@router.post("/events/{event_id}/replay", response_model=ReplayResponse)
async def replay_event(event_id: str, db: AsyncSession = Depends(get_db)) -> ReplayResponse:
    """Reset ``processed`` and ``error``; does not dispatch by itself."""
    try:
        await event_store.replay(db, event_id)
    except EventNotFoundError as exc:
        raise _not_found(exc) from exc
    return ReplayResponse(message="Webhook queued for replay", event_id=event_id)


@router.post(
    "/events/{event_id}/retry",
    response_model=WebhookAck,
    response_model_exclude_none=True,
)
async def retry_event(
    event_id: str,
    db: AsyncSession = Depends(get_db),
    dispatcher: Dispatcher = Depends(get_dispatcher),
) -> WebhookAck:
    """Dispatch the stored payload now, recording the outcome like a live delivery."""
    try:
        return await process_event(db, dispatcher, event_id)
    except EventNotFoundError as exc:
        raise _not_found(exc) from exc


@router.get("/pending", response_model=list[WebhookEventView])
async def pending_events(
    limit: int = Query(100, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    return await event_store.get_pending(db, limit)


@router.get("/failed", response_model=list[WebhookEventView])
async def failed_events(
    limit: int = Query(100, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    return await event_store.get_failed(db, limit)
