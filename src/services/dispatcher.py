"""Applies billing webhook events to local subscription state.

Each known event kind maps to one handler. A handler's writes are committed
together or rolled back together, and any exception is re-raised untouched:
whether to retry is the caller's decision. The dispatcher never reads or
writes the event log or the retry queue.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.models.subscription import Subscription
from src.schemas.events import EventKind, SubscriptionPayload
from src.services.notifications import PaymentFailureNotifier

logger = logging.getLogger(__name__)

Handler = Callable[[AsyncSession, SubscriptionPayload, datetime], Awaitable[None]]


def _as_str(value: Any) -> str | None:
    return None if value is None else str(value)


def _require_status(data: SubscriptionPayload) -> str:
    if not data.attributes.status:
        raise ValueError("Missing status in webhook data")
    return data.attributes.status


def _upsert_subscription(dialect_name: str, values: dict[str, Any], updates: dict[str, Any]):
    if dialect_name == "postgresql":
        stmt = postgresql.insert(Subscription)
    elif dialect_name == "sqlite":
        stmt = sqlite.insert(Subscription)
    else:
        return None
    return stmt.values(**values).on_conflict_do_update(
        index_elements=[Subscription.external_subscription_id],
        set_=updates,
    )


class Dispatcher:
    """Routes ``(kind, payload)`` to the matching subscription handler."""

    def __init__(self, notifier: PaymentFailureNotifier | None = None) -> None:
        self._notifier = notifier or PaymentFailureNotifier()
        self._handlers: dict[EventKind, Handler] = {
            EventKind.SUBSCRIPTION_CREATED: self._subscription_created,
            EventKind.SUBSCRIPTION_UPDATED: self._subscription_updated,
            EventKind.SUBSCRIPTION_CANCELLED: self._subscription_cancelled,
            EventKind.SUBSCRIPTION_RESUMED: self._subscription_resumed,
            EventKind.SUBSCRIPTION_EXPIRED: self._subscription_expired,
            EventKind.SUBSCRIPTION_PAUSED: self._subscription_paused,
            EventKind.SUBSCRIPTION_UNPAUSED: self._subscription_unpaused,
            EventKind.PAYMENT_SUCCESS: self._payment_success,
            EventKind.PAYMENT_FAILED: self._payment_failed,
        }

    async def dispatch(
        self,
        db: AsyncSession,
        kind: str,
        payload: dict[str, Any],
        *,
        now: datetime | None = None,
    ) -> EventKind:
        """Apply one event. Returns the resolved kind; raises on failure."""
        event_kind = EventKind.parse(kind)
        handler = self._handlers.get(event_kind)
        if handler is None:
            logger.info("Unhandled webhook event type %s, ignoring", kind)
            return EventKind.UNKNOWN

        data = SubscriptionPayload.model_validate(payload)
        try:
            await handler(db, data, now or datetime.now(timezone.utc))
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        if event_kind is EventKind.PAYMENT_FAILED:
            await self._notifier.notify(db, data.id)
        return event_kind

    async def _update_where(self, db: AsyncSession, data: SubscriptionPayload, *criteria, **values) -> int:
        result = await db.execute(
            update(Subscription)
            .where(Subscription.external_subscription_id == data.id, *criteria)
            .values(**values)
        )
        if not result.rowcount:
            logger.info("No local subscription matched %s", data.id)
        return result.rowcount

    async def _subscription_created(self, db: AsyncSession, data: SubscriptionPayload, now: datetime) -> None:
        user_id = data.user_id
        if not user_id:
            logger.error("No user_id in subscription custom_data for %s", data.id)
            raise ValueError("Missing user_id in webhook data")

        attrs = data.attributes
        fields = {
            "status": _require_status(data),
            "variant_id": _as_str(attrs.variant_id),
            "current_period_start": now,
            "current_period_end": attrs.renews_at or now + timedelta(days=settings.default_period_days),
            "cancel_at_period_end": attrs.cancelled,
            "trial_ends_at": attrs.trial_ends_at,
        }

        values = {
            "user_id": user_id,
            "external_customer_id": _as_str(attrs.customer_id) or "",
            "external_subscription_id": data.id,
            **fields,
        }
        stmt = _upsert_subscription(db.bind.dialect.name, values, {**fields, "updated_at": now})
        if stmt is not None:
            await db.execute(stmt)
        else:
            result = await db.execute(
                select(Subscription).where(Subscription.external_subscription_id == data.id)
            )
            subscription = result.scalar_one_or_none()
            if subscription is None:
                db.add(Subscription(**values))
            else:
                for name, value in fields.items():
                    setattr(subscription, name, value)
            await db.flush()
        logger.info("Subscription created: %s (user %s, status %s)", data.id, user_id, attrs.status)

    async def _subscription_updated(self, db: AsyncSession, data: SubscriptionPayload, now: datetime) -> None:
        attrs = data.attributes
        values: dict[str, Any] = {
            "status": _require_status(data),
            "variant_id": _as_str(attrs.variant_id),
            "cancel_at_period_end": attrs.cancelled,
            "trial_ends_at": attrs.trial_ends_at,
        }
        if attrs.renews_at is not None:
            values["current_period_end"] = attrs.renews_at
        await self._update_where(db, data, **values)
        logger.info("Subscription updated: %s (status %s)", data.id, attrs.status)

    async def _subscription_cancelled(self, db: AsyncSession, data: SubscriptionPayload, now: datetime) -> None:
        await self._update_where(db, data, status=_require_status(data), cancel_at_period_end=True)
        logger.info("Subscription cancelled: %s", data.id)

    async def _subscription_resumed(self, db: AsyncSession, data: SubscriptionPayload, now: datetime) -> None:
        await self._update_where(db, data, status=_require_status(data), cancel_at_period_end=False)
        logger.info("Subscription resumed: %s", data.id)

    async def _subscription_expired(self, db: AsyncSession, data: SubscriptionPayload, now: datetime) -> None:
        await self._update_where(db, data, status="expired")
        logger.info("Subscription expired: %s", data.id)

    async def _subscription_paused(self, db: AsyncSession, data: SubscriptionPayload, now: datetime) -> None:
        await self._update_where(db, data, status="paused")
        logger.info("Subscription paused: %s", data.id)

    async def _subscription_unpaused(self, db: AsyncSession, data: SubscriptionPayload, now: datetime) -> None:
        await self._update_where(db, data, status=_require_status(data))
        logger.info("Subscription unpaused: %s", data.id)

    async def _payment_success(self, db: AsyncSession, data: SubscriptionPayload, now: datetime) -> None:
        values: dict[str, Any] = {"status": "active"}
        if data.attributes.renews_at is not None:
            values["current_period_end"] = data.attributes.renews_at
        # Only a past-due subscription is reactivated by a successful payment.
        await self._update_where(db, data, Subscription.status == "past_due", **values)
        logger.info("Payment succeeded for subscription %s", data.id)

    async def _payment_failed(self, db: AsyncSession, data: SubscriptionPayload, now: datetime) -> None:
        await self._update_where(db, data, status=_require_status(data))
        logger.info("Payment failed for subscription %s (status %s)", data.id, data.attributes.status)
