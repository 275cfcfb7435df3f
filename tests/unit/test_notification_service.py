"""Unit tests for the notification outbox."""

from unittest.mock import AsyncMock

import pytest

from sitetrack.core import db_client
from sitetrack.domain.actor import Role
from sitetrack.services import notification_service
from sitetrack.services.notification_service import NotificationEvent, NotificationOutbox


def _event(recipient_id: str = "u1", title: str = "Hello") -> NotificationEvent:
    return NotificationEvent(recipient_id=recipient_id, title=title, message="body")


@pytest.fixture
async def users(patched_db):
    """Two admins, one site incharge and one contractor."""
    for user_id, role in [("adm-1", "admin"), ("adm-2", "admin"), ("si-1", "site_incharge"), ("con-1", "contractor")]:
        await patched_db.create_record(collection="users", data={"id": user_id, "role": role, "name": user_id})
    return patched_db


@pytest.mark.unit
class TestOutboxQueue:
    async def test_enqueue_does_not_deliver_inline(self):
        deliver = AsyncMock()
        box = NotificationOutbox(deliver=deliver, maxsize=10)

        assert box.enqueue(_event()) is True

        assert box.pending == 1
        deliver.assert_not_awaited()

    async def test_full_queue_drops_event(self):
        box = NotificationOutbox(deliver=AsyncMock(), maxsize=1)

        assert box.enqueue(_event("u1")) is True
        assert box.enqueue(_event("u2")) is False
        assert box.pending == 1

    async def test_worker_delivers_in_order(self):
        seen = []

        async def _deliver(event):
            seen.append(event.recipient_id)

        box = NotificationOutbox(deliver=_deliver, maxsize=10)
        box.start()
        try:
            box.enqueue(_event("u1"))
            box.enqueue(_event("u2"))
            await box.drain()
        finally:
            await box.stop()

        assert seen == ["u1", "u2"]
        assert box.pending == 0

    async def test_start_twice_keeps_one_worker(self):
        box = NotificationOutbox(deliver=AsyncMock(), maxsize=10)
        box.start()
        worker = box._worker
        box.start()

        assert box._worker is worker
        await box.stop()
        assert not box.is_running

    async def test_failure_is_parked_and_worker_keeps_going(self):
        deliver = AsyncMock(side_effect=[RuntimeError("smtp down"), None])
        box = NotificationOutbox(deliver=deliver, maxsize=10)
        box.start()
        try:
            box.enqueue(_event("u1"))
            box.enqueue(_event("u2"))
            await box.drain()
        finally:
            await box.stop()

        assert deliver.await_count == 2
        assert len(box.dead_letters) == 1
        parked, error = box.dead_letters[0]
        assert parked.recipient_id == "u1"
        assert error == "smtp down"

    async def test_stop_keeps_undelivered_events(self):
        box = NotificationOutbox(deliver=AsyncMock(), maxsize=10)
        box.enqueue(_event())
        box.start()
        await box.stop()
        box.enqueue(_event("u2"))

        assert box.pending >= 1

    async def test_stop_without_start_is_noop(self):
        box = NotificationOutbox(deliver=AsyncMock(), maxsize=10)

        await box.stop()

        assert not box.is_running


@pytest.mark.unit
class TestNotify:
    async def test_queues_event(self, patched_db):
        assert notification_service.notify(recipient_id="u1", title="Hi", message="there", triggered_by="u2")

        assert notification_service.outbox.pending == 1

    async def test_missing_recipient_is_skipped(self, patched_db):
        assert notification_service.notify(recipient_id=None, title="Hi", message="there") is False
        assert notification_service.notify(recipient_id="", title="Hi", message="there") is False

        assert notification_service.outbox.pending == 0

    async def test_notify_roles_skips_trigger(self, users, outbox, delivered):
        queued = await notification_service.notify_roles(
            roles=[Role.ADMIN, Role.SITE_INCHARGE], title="Issue", message="m", triggered_by="adm-1"
        )
        await outbox.drain()

        assert queued == 2
        assert sorted(e.recipient_id for e in delivered) == ["adm-2", "si-1"]
        assert all(e.triggered_by == "adm-1" for e in delivered)

    async def test_notify_roles_lookup_failure_queues_nothing(self, users):
        users.fail_next = db_client.DatabaseError("locked")

        queued = await notification_service.notify_roles(roles=[Role.ADMIN], title="Issue", message="m")

        assert queued == 0


@pytest.mark.unit
class TestPersistNotification:
    async def test_writes_unread_inbox_record(self, patched_db):
        await notification_service.persist_notification(_event("u7", "Task Verified"))

        records = await patched_db.list_records("notifications", filter_query='user_id = "u7"')
        assert len(records) == 1
        assert records[0]["title"] == "Task Verified"
        assert records[0]["is_read"] is False
