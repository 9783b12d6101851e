"""Pending re-attempt for a webhook event whose dispatch failed."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from src.database import Base


class RetryQueueItem(Base):
    __tablename__ = "webhook_retry_queue"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(
        String(36),
        ForeignKey("webhook_events.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    next_retry_at = Column(DateTime, nullable=False, index=True)
    retry_count = Column(Integer, default=1, nullable=False)

    event = relationship("WebhookEvent", back_populates="queue_item")
