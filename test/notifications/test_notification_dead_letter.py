import pytest

from erp_scheduler.notifications.dead_letter import NotificationDeadLetterStore
from erp_scheduler.notifications.delivery import NotificationDispatcher
from erp_scheduler.notifications.queue import NotificationQueue
from erp_scheduler.scheduler.errors import NotificationNotFoundError


@pytest.fixture
def dead_queue(setup_db, fake_channel, clock):
    q = NotificationQueue(NotificationDispatcher({"email": fake_channel}), clock=clock)
    fake_channel.fail = True
    return q


@pytest.fixture
def store(clock):
    return NotificationDeadLetterStore(clock=clock)


def _kill(queue, subject):
    item_id = queue.enqueue(
        {
            "recipient": {"email": "hr@example.com"},
            "subject": subject,
            "bodyText": "Residence permit expires soon",
            "maxAttempts": 1,
        }
    )
    assert queue.process_ready() == {item_id: "dead"}
    return item_id


def test_list_shows_only_dead_items(dead_queue, store):
    dead_id = _kill(dead_queue, "dead")
    dead_queue.enqueue({"recipient": {"email": "a@example.com"}, "subject": "pending", "bodyText": "x"})

    assert [item.id for item in store.list()] == [dead_id]


def test_retry_one_requeues_with_fresh_budget(dead_queue, store, fake_channel):
    item_id = _kill(dead_queue, "expiry")

    assert store.retry_one(item_id) == {"message": f"Notification {item_id} requeued"}
    item = dead_queue.get(item_id)
    assert item.status == "pending"
    assert item.attempts == 0
    assert item.last_error is None
    assert item.next_retry_at is None
    assert store.list() == []

    fake_channel.fail = False
    assert dead_queue.process_ready() == {item_id: "sent"}


def test_retry_one_rejects_unknown_and_non_dead(dead_queue, store):
    pending = dead_queue.enqueue({"recipient": {"email": "a@example.com"}, "subject": "s", "bodyText": "x"})

    with pytest.raises(NotificationNotFoundError):
        store.retry_one("notif_missing")
    with pytest.raises(NotificationNotFoundError):
        store.retry_one(pending)


def test_retry_all(dead_queue, store):
    assert store.retry_all() == {"message": "No dead-letter notifications to retry"}

    ids = [_kill(dead_queue, f"n{n}") for n in range(3)]
    assert store.retry_all() == {"message": "Requeued 3 of 3 dead-letter notification(s)"}
    assert {dead_queue.get(item_id).status for item_id in ids} == {"pending"}
    assert dead_queue.stats()["dead"] == 0
