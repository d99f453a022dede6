import httpx
import pytest

BASE = "/api/v2/system/notifications"


def _notification(subject="Residence permit expiring", **extra):
    payload = {
        "type": "document_expiry",
        "channel": "email",
        "recipient": {"email": "hr@example.com", "name": "HR", "id": 12},
        "subject": subject,
        "bodyHtml": "<p>Expires in 30 days</p>",
        "priority": "high",
        "metadata": {"employeeId": 44},
    }
    payload.update(extra)
    return payload


def _kill(app, item_id):
    """Drive an item to `dead` through the queue's own failure path."""
    queue = app.state.notification_queue
    queue.dispatcher.channels["email"] = _refuse
    queue.base_retry_delay = 0
    while queue.get(item_id).status != "dead":
        for claimed in queue.claim_ready(10):
            queue.process(claimed)


def _refuse(item):
    raise RuntimeError("mailbox unavailable")


@pytest.mark.asyncio
async def test_enqueue_and_get(async_client):
    resp = await async_client.post(f"{BASE}/queue", json=_notification())
    assert resp.status_code == 201
    data = resp.json()
    assert data["status"] == "pending"
    item_id = data["id"]

    resp = await async_client.get(f"{BASE}/queue/{item_id}")
    assert resp.status_code == 200
    item = resp.json()
    assert item["status"] == "pending"
    assert item["priority"] == "high"
    assert item["recipient"] == {"email": "hr@example.com", "name": "HR", "id": 12}
    assert item["maxAttempts"] == 3
    assert item["createdAt"].endswith("Z")
    assert item["metadata"] == {"employeeId": 44}


@pytest.mark.asyncio
async def test_enqueue_validation_errors(async_client):
    resp = await async_client.post(f"{BASE}/queue", json=_notification(recipient={}))
    assert resp.status_code == 422
    body = resp.json()
    assert body["success"] is False
    assert body["error"]["type"] == "validation_error"

    resp = await async_client.post(f"{BASE}/queue", json=_notification(priority="urgent"))
    assert resp.status_code == 422

    resp = await async_client.post(f"{BASE}/queue", json=_notification(maxAttempts=0))
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_enqueue_batch(async_client):
    resp = await async_client.post(
        f"{BASE}/queue/batch",
        json={"notifications": [_notification("one"), _notification("two", channel="slack")]},
    )
    assert resp.status_code == 201
    data = resp.json()
    assert data["count"] == 2
    assert len(data["ids"]) == 2

    resp = await async_client.post(f"{BASE}/queue/batch", json={"notifications": []})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_stats(async_client):
    await async_client.post(f"{BASE}/queue", json=_notification())
    await async_client.post(f"{BASE}/queue", json=_notification())

    resp = await async_client.get(f"{BASE}/queue/stats")
    assert resp.status_code == 200
    assert resp.json() == {
        "isRunning": False,
        "pending": 2,
        "processing": 0,
        "sent": 0,
        "failed": 0,
        "dead": 0,
    }


@pytest.mark.asyncio
async def test_cancel(async_client):
    item_id = (await async_client.post(f"{BASE}/queue", json=_notification())).json()["id"]

    resp = await async_client.delete(f"{BASE}/queue/{item_id}")
    assert resp.status_code == 200
    assert resp.json() == {"message": f"Notification {item_id} cancelled"}

    resp = await async_client.get(f"{BASE}/queue/{item_id}")
    assert resp.status_code == 404
    assert resp.json()["error"]["type"] == "not_found"

    resp = await async_client.delete(f"{BASE}/queue/{item_id}")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_cancel_non_pending_is_rejected(async_client, fastapi_app):
    item_id = (await async_client.post(f"{BASE}/queue", json=_notification())).json()["id"]
    _kill(fastapi_app, item_id)

    resp = await async_client.delete(f"{BASE}/queue/{item_id}")
    assert resp.status_code == 400
    assert "pending" in resp.json()["error"]["message"]


@pytest.mark.asyncio
async def test_start_and_stop_worker(async_client):
    resp = await async_client.post(f"{BASE}/queue/start")
    assert resp.json() == {"message": "Notification queue started"}
    assert (await async_client.get(f"{BASE}/queue/stats")).json()["isRunning"] is True

    resp = await async_client.post(f"{BASE}/queue/stop")
    assert resp.json() == {"message": "Notification queue stopped"}
    resp = await async_client.post(f"{BASE}/queue/stop")
    assert resp.json() == {"message": "Notification queue is already stopped"}


@pytest.mark.asyncio
async def test_dead_letter_endpoints(async_client, fastapi_app):
    first = (await async_client.post(f"{BASE}/queue", json=_notification("first"))).json()["id"]
    second = (await async_client.post(f"{BASE}/queue", json=_notification("second"))).json()["id"]
    _kill(fastapi_app, first)
    _kill(fastapi_app, second)

    resp = await async_client.get(f"{BASE}/dead-letter")
    assert resp.status_code == 200
    entries = resp.json()
    assert {entry["id"] for entry in entries} == {first, second}
    assert entries[0]["lastError"] == "mailbox unavailable"
    assert entries[0]["attempts"] == entries[0]["maxAttempts"] == 3

    resp = await async_client.post(f"{BASE}/dead-letter/{first}/retry")
    assert resp.json() == {"message": f"Notification {first} requeued"}
    item = (await async_client.get(f"{BASE}/queue/{first}")).json()
    assert item["status"] == "pending"
    assert item["attempts"] == 0

    resp = await async_client.post(f"{BASE}/dead-letter/{first}/retry")
    assert resp.status_code == 404

    resp = await async_client.post(f"{BASE}/dead-letter/retry-all")
    assert resp.json() == {"message": "Requeued 1 of 1 dead-letter notification(s)"}
    resp = await async_client.post(f"{BASE}/dead-letter/retry-all")
    assert resp.json() == {"message": "No dead-letter notifications to retry"}
    assert (await async_client.get(f"{BASE}/dead-letter")).json() == []


@pytest.mark.asyncio
async def test_job_notifications_reach_the_queue(async_client, erp_stub):
    erp_stub.responses["weekly_report"] = httpx.Response(
        200,
        json={
            "reportsSent": 1,
            "notifications": [_notification("Weekly report", type="weekly_report")],
        },
    )

    resp = await async_client.post("/api/v2/system/scheduler/jobs/weekly_report/run")
    assert resp.json()["result"]["notificationsQueued"] == 1

    stats = (await async_client.get(f"{BASE}/queue/stats")).json()
    assert stats["pending"] == 1
