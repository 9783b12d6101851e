"""Pydantic models for inbound billing webhooks."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class EventKind(str, Enum):
    """Provider event names the dispatcher acts on."""

    SUBSCRIPTION_CREATED = "subscription_created"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SUBSCRIPTION_CANCELLED = "subscription_cancelled"
    SUBSCRIPTION_RESUMED = "subscription_resumed"
    SUBSCRIPTION_EXPIRED = "subscription_expired"
    SUBSCRIPTION_PAUSED = "subscription_paused"
    SUBSCRIPTION_UNPAUSED = "subscription_unpaused"
    PAYMENT_SUCCESS = "subscription_payment_success"
    PAYMENT_FAILED = "subscription_payment_failed"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, name: str) -> "EventKind":
        try:
            return cls(name)
        except ValueError:
            return cls.UNKNOWN


class WebhookEnvelope(BaseModel):
    """Pre-verified delivery from the billing provider."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    event_name: str = Field(alias="eventName", min_length=1)
    event_id: str = Field(alias="eventId", min_length=1)
    data: dict[str, Any]
    meta: Optional[dict[str, Any]] = None

    def stored_payload(self) -> dict[str, Any]:
        """Payload persisted on the event row; carries ``meta`` so retries can replay it."""
        payload = dict(self.data)
        if self.meta is not None and "meta" not in payload:
            payload["meta"] = self.meta
        return payload


class WebhookAck(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    received: bool = True
    event_id: str = Field(alias="eventId")
    cached: Optional[bool] = None
    warning: Optional[str] = None


class SubscriptionAttributes(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: Optional[str] = None
    customer_id: Optional[int | str] = None
    variant_id: Optional[int | str] = None
    renews_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    trial_ends_at: Optional[datetime] = None
    cancelled: bool = False


class EventMeta(BaseModel):
    model_config = ConfigDict(extra="ignore")

    custom_data: dict[str, Any] = Field(default_factory=dict)


class SubscriptionPayload(BaseModel):
    """The ``data`` object of a subscription webhook."""

    model_config = ConfigDict(extra="ignore")

    id: str
    attributes: SubscriptionAttributes
    meta: EventMeta = Field(default_factory=EventMeta)

    @property
    def user_id(self) -> str | None:
        value = self.meta.custom_data.get("user_id")
        return str(value) if value else None
