"""Tests for the operator endpoints over the event log."""

from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from conftest import subscription_data
from src.database import async_session
from src.main import app
from src.routes.dependencies import get_dispatcher
from src.services import event_store

AUDIT_URL = "/api/v1/webhooks/audit"
AUTH = {"Authorization": "AdminSecret test-admin-secret"}


async def _event(external_id: str, *, failures: int = 0, processed: bool = False) -> str:
    async with async_session() as db:
        event_id = await event_store.log_event(db, external_id, "subscription_created", subscription_data())
    for _ in range(failures):
        async with async_session() as db:
            await event_store.record_failure(db, event_id, "db timeout")
    if processed:
        async with async_session() as db:
            await event_store.mark_processed(db, event_id)
    return event_id


async def _request(method: str, path: str, headers: dict | None = AUTH, **kwargs):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        return await client.request(method, f"{AUDIT_URL}{path}", headers=headers, **kwargs)


@pytest.mark.parametrize(
    "headers",
    [None, {"Authorization": "Bearer abc"}, {"Authorization": "AdminSecret wrong"}],
)
async def test_requires_admin_secret(headers):
    resp = await _request("GET", "/events", headers=headers)
    assert resp.status_code == 401


async def test_list_events_filters_on_processed():
    done = await _event("ext-1", processed=True)
    open_ = await _event("ext-2")

    all_events = (await _request("GET", "/events")).json()
    processed = (await _request("GET", "/events", params={"processed": "true"})).json()
    unprocessed = (await _request("GET", "/events", params={"processed": "false"})).json()

    assert {e["id"] for e in all_events} == {done, open_}
    assert [e["id"] for e in processed] == [done]
    assert [e["id"] for e in unprocessed] == [open_]
    assert unprocessed[0]["externalId"] == "ext-2"
    assert unprocessed[0]["errorCount"] == 0


async def test_list_events_paginates_newest_first():
    ids = [await _event(f"ext-{n}") for n in range(3)]
    page = (await _request("GET", "/events", params={"skip": 1, "take": 1})).json()
    assert [e["id"] for e in page] == [ids[1]]


async def test_take_is_capped_at_one_hundred():
    resp = await _request("GET", "/events", params={"take": 101})
    assert resp.status_code == 422


async def test_event_detail_includes_queue_item():
    event_id = await _event("ext-1", failures=1)

    resp = await _request("GET", f"/events/{event_id}")

    assert resp.status_code == 200
    body = resp.json()
    assert body["error"] == "db timeout"
    assert body["queueItem"]["retryCount"] == 1
    assert body["queueItem"]["eventId"] == event_id


async def test_event_detail_not_found():
    resp = await _request("GET", "/events/does-not-exist")
    assert resp.status_code == 404


async def test_replay_resets_failed_event():
    event_id = await _event("ext-1", failures=5)
    assert [e["id"] for e in (await _request("GET", "/failed")).json()] == [event_id]

    resp = await _request("POST", f"/events/{event_id}/replay")

    assert resp.status_code == 200
    assert resp.json() == {"message": "Webhook queued for replay", "eventId": event_id}
    detail = (await _request("GET", f"/events/{event_id}")).json()
    assert detail["processed"] is False
    assert detail["error"] is None
    assert detail["errorCount"] == 5
    assert (await _request("GET", "/failed")).json() == []
    assert [e["id"] for e in (await _request("GET", "/pending")).json()] == [event_id]


async def test_replay_unknown_event():
    resp = await _request("POST", "/events/missing/replay")
    assert resp.status_code == 404


async def test_manual_retry_dispatches_stored_payload():
    event_id = await _event("ext-1", failures=5)
    stub = AsyncMock()
    app.dependency_overrides[get_dispatcher] = lambda: stub
    try:
        resp = await _request("POST", f"/events/{event_id}/retry")
        again = await _request("POST", f"/events/{event_id}/retry")
    finally:
        app.dependency_overrides.clear()

    assert resp.json() == {"received": True, "eventId": event_id}
    assert again.json()["cached"] is True
    stub.dispatch.assert_awaited_once()
    _db, kind, payload = stub.dispatch.await_args.args
    assert kind == "subscription_created"
    assert payload["id"] == "sub-1"


async def test_manual_retry_unknown_event():
    resp = await _request("POST", "/events/missing/retry")
    assert resp.status_code == 404
