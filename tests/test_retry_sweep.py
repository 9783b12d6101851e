"""Tests for the retry sweep."""

from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from conftest import subscription_data
from src.database import async_session
from src.handlers.ingress import process_event
from src.jobs.retry_sweep import process_retry_queue
from src.models.retry_queue_item import RetryQueueItem
from src.schemas.events import EventKind
from src.services import event_store


class StubDispatcher:
    """Fails the first ``failures`` calls, then succeeds."""

    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.calls = 0

    async def dispatch(self, db, kind, payload, *, now=None):
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"datastore timeout #{self.calls}")
        return EventKind.parse(kind)


async def _event(external_id: str = "ext-1") -> str:
    async with async_session() as db:
        return await event_store.log_event(db, external_id, "subscription_updated", subscription_data())


async def _queue_item(event_id: str) -> RetryQueueItem | None:
    async with async_session() as db:
        return await db.scalar(select(RetryQueueItem).where(RetryQueueItem.event_id == event_id))


async def _state(event_id: str):
    async with async_session() as db:
        return await event_store.get_event(db, event_id)


async def _queue(event_id: str, *, retry_count: int, error_count: int, due: datetime) -> None:
    async with async_session() as db:
        for _ in range(error_count):
            await event_store.record_failure(db, event_id, "earlier failure", should_retry=False)
        db.add(RetryQueueItem(event_id=event_id, next_retry_at=due, retry_count=retry_count))
        await db.commit()


async def test_sweep_success_marks_processed_and_dequeues():
    event_id = await _event()
    now = datetime.now(timezone.utc)
    await _queue(event_id, retry_count=1, error_count=1, due=now - timedelta(minutes=1))

    result = await process_retry_queue(StubDispatcher(), now=now)

    assert result.processed == 1
    assert await _queue_item(event_id) is None
    event = await _state(event_id)
    assert event.processed is True
    assert event.error_count == 1


async def test_sweep_ignores_items_not_yet_due():
    event_id = await _event()
    now = datetime.now(timezone.utc)
    await _queue(event_id, retry_count=1, error_count=1, due=now + timedelta(minutes=5))
    dispatcher = StubDispatcher()

    result = await process_retry_queue(dispatcher, now=now)

    assert result.attempted == 0
    assert dispatcher.calls == 0
    assert await _queue_item(event_id) is not None


async def test_sweep_permanent_failure_at_ceiling():
    event_id = await _event()
    now = datetime.now(timezone.utc)
    await _queue(event_id, retry_count=5, error_count=4, due=now - timedelta(minutes=1))

    result = await process_retry_queue(StubDispatcher(failures=99), now=now)

    assert result.permanently_failed == 1
    assert await _queue_item(event_id) is None
    event = await _state(event_id)
    assert event.processed is False
    assert event.error_count == 5
    assert event.error.startswith("Max retries exceeded")
    async with async_session() as db:
        assert [e.id for e in await event_store.get_failed(db)] == [event_id]


async def test_sweep_failure_below_ceiling_reschedules():
    event_id = await _event()
    now = datetime.now(timezone.utc)
    await _queue(event_id, retry_count=1, error_count=1, due=now - timedelta(minutes=1))

    result = await process_retry_queue(StubDispatcher(failures=1), now=now)

    assert result.rescheduled == 1
    item = await _queue_item(event_id)
    assert item.retry_count == 2
    assert (await _state(event_id)).error_count == 2


async def test_sweep_is_bounded_by_batch_size():
    now = datetime.now(timezone.utc)
    for n in range(12):
        event_id = await _event(f"ext-{n}")
        await _queue(event_id, retry_count=1, error_count=1, due=now - timedelta(minutes=n + 1))

    dispatcher = StubDispatcher()
    result = await process_retry_queue(dispatcher, now=now)

    assert result.processed == 10
    assert dispatcher.calls == 10


async def test_sweep_drops_items_for_already_processed_events():
    event_id = await _event()
    now = datetime.now(timezone.utc)
    await _queue(event_id, retry_count=1, error_count=1, due=now - timedelta(minutes=1))
    async with async_session() as db:
        # Bypass mark_processed so the queue item survives, as in a race with ingress.
        event = await event_store.get_event(db, event_id)
        event.processed = True
        await db.commit()
    dispatcher = StubDispatcher()

    result = await process_retry_queue(dispatcher, now=now)

    assert result.skipped == 1
    assert dispatcher.calls == 0
    assert await _queue_item(event_id) is None


async def test_four_failures_then_success_via_repeated_sweeps():
    event_id = await _event()
    dispatcher = StubDispatcher(failures=4)

    async with async_session() as db:
        ack = await process_event(db, dispatcher, event_id)
    assert ack.warning is not None

    clock = datetime.now(timezone.utc)
    for _ in range(4):
        clock += timedelta(days=1)
        await process_retry_queue(dispatcher, now=clock)

    assert dispatcher.calls == 5
    event = await _state(event_id)
    assert event.processed is True
    assert event.error_count == 4
    assert await _queue_item(event_id) is None
