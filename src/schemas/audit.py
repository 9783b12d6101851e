"""Operator-facing views of the event log, retry queue and scheduler."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class RetryQueueItemView(_CamelModel):
    event_id: str
    next_retry_at: datetime
    retry_count: int


class WebhookEventView(_CamelModel):
    id: str
    external_id: str
    kind: str
    payload: dict[str, Any]
    processed: bool
    processed_at: Optional[datetime] = None
    error: Optional[str] = None
    error_count: int
    created_at: datetime


class WebhookEventDetail(WebhookEventView):
    queue_item: Optional[RetryQueueItemView] = None


class ReplayResponse(_CamelModel):
    message: str
    event_id: str


class ScheduledJobView(_CamelModel):
    name: str
    next_run_time: datetime


class IntervalJobView(_CamelModel):
    name: str


class SchedulerStatus(_CamelModel):
    running: bool
    jobs: list[ScheduledJobView]
    interval_jobs: list[IntervalJobView]
