"""Best-effort customer notifications sent after a dispatch commits.

Delivery problems are reported through the boolean result and this module's
logger only. Nothing here raises into the dispatcher.
"""

from __future__ import annotations

import logging
from contextlib import suppress

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.clients.email_client import EmailClient
from src.config import settings
from src.models.subscription import Subscription
from src.models.user import User
from src.templates.email_templates import (
    PAYMENT_FAILED_SUBJECT,
    build_payment_failed_html,
    build_payment_failed_text,
)

logger = logging.getLogger(__name__)


class PaymentFailureNotifier:
    """E-mails the subscription owner when a renewal payment fails."""

    async def notify(self, db: AsyncSession, external_subscription_id: str) -> bool:
        """Return True when the e-mail was handed to the provider."""
        if not settings.resend_api_key:
            logger.warning("E-mail not configured, skipping payment failure notice for %s", external_subscription_id)
            return False

        client: EmailClient | None = None
        try:
            result = await db.execute(
                select(User.email, User.name)
                .join(Subscription, Subscription.user_id == User.id)
                .where(Subscription.external_subscription_id == external_subscription_id)
            )
            recipient = result.first()
            if recipient is None:
                logger.info("No user found for subscription %s, payment failure notice not sent", external_subscription_id)
                return False

            billing_url = f"{settings.app_url.rstrip('/')}/settings/billing"
            client = EmailClient()
            await client.send(
                recipient.email,
                PAYMENT_FAILED_SUBJECT,
                build_payment_failed_html(recipient.name, billing_url),
                text=build_payment_failed_text(recipient.name, billing_url),
            )
            logger.info("Payment failure e-mail sent for subscription %s", external_subscription_id)
            return True
        except Exception as exc:
            logger.error("Payment failure e-mail for subscription %s failed: %s", external_subscription_id, exc)
            # A failed lookup aborts the transaction; the caller keeps using the session.
            with suppress(Exception):
                await db.rollback()
            return False
        finally:
            if client is not None:
                with suppress(Exception):
                    await client.close()
