"""Durable record of every inbound billing-provider notification."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text
from sqlalchemy.orm import relationship

from src.database import Base


def new_event_id() -> str:
    return str(uuid.uuid4())


class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    id = Column(String(36), primary_key=True, default=new_event_id)
    external_id = Column(String, unique=True, nullable=False, index=True)
    kind = Column(String, nullable=False)
    payload = Column(JSON, nullable=False)
    processed = Column(Boolean, default=False, nullable=False, index=True)
    processed_at = Column(DateTime, nullable=True)
    error = Column(Text, nullable=True)
    error_count = Column(Integer, default=0, nullable=False)
    created_at = Column(
        DateTime, default=lambda: datetime.now(timezone.utc), nullable=False
    )

    queue_item = relationship(
        "RetryQueueItem",
        back_populates="event",
        uselist=False,
        passive_deletes=True,
    )
