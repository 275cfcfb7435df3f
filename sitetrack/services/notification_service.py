"""Outbound notification queue, decoupled from the task write paths.

Write paths enqueue a NotificationEvent and return immediately. A background
worker delivers queued events; delivery failures are logged and parked in a
dead letter buffer, never raised into the code that enqueued them.
"""

import asyncio
import contextlib
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from pydantic import BaseModel, Field

from sitetrack.core import db_client
from sitetrack.core.config import Constants, settings
from sitetrack.core.db_client import sanitize_param
from sitetrack.core.logging import span
from sitetrack.domain.actor import Role


logger = logging.getLogger(__name__)

NOTIFICATIONS_COLLECTION = "notifications"


class NotificationEvent(BaseModel):
    """A message for one recipient."""

    recipient_id: str
    title: str
    message: str
    triggered_by: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


Deliver = Callable[[NotificationEvent], Awaitable[None]]


async def persist_notification(event: NotificationEvent) -> None:
    """Default delivery: store the notification for the recipient's inbox."""
    await db_client.create_record(
        collection=NOTIFICATIONS_COLLECTION,
        data={
            "user_id": event.recipient_id,
            "title": event.title,
            "message": event.message,
            "triggered_by": event.triggered_by,
            "is_read": False,
            "created_at": event.created_at.isoformat(),
        },
    )


class NotificationOutbox:
    """Bounded in-process queue of notification events with one delivery worker."""

    def __init__(self, *, deliver: Deliver | None = None, maxsize: int | None = None) -> None:
        """Initialize the outbox.

        Args:
            deliver: Coroutine that sends one event (defaults to persist_notification)
            maxsize: Queue bound (defaults to settings.notification_queue_size)
        """
        self._deliver = deliver or persist_notification
        self._maxsize = maxsize if maxsize is not None else settings.notification_queue_size
        self._queue: asyncio.Queue[NotificationEvent] = asyncio.Queue(maxsize=self._maxsize)
        self._worker: asyncio.Task[None] | None = None
        self.dead_letters: deque[tuple[NotificationEvent, str]] = deque(maxlen=100)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def enqueue(self, event: NotificationEvent) -> bool:
        """Queue an event without blocking. Returns False if it was dropped."""
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.error(
                "Notification queue full, dropping event",
                extra={"recipient_id": event.recipient_id, "title": event.title, "maxsize": self._maxsize},
            )
            return False
        return True

    def start(self) -> None:
        """Start the delivery worker on the running loop."""
        if self.is_running:
            return
        self._worker = asyncio.create_task(self._run(), name="notification-outbox")
        logger.info("Notification outbox started")

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.deliver_one(event)
            finally:
                self._queue.task_done()

    async def deliver_one(self, event: NotificationEvent) -> bool:
        """Deliver a single event, logging and parking it on failure."""
        with span("notification_service.deliver"):
            try:
                await self._deliver(event)
            except Exception as e:
                logger.error(
                    "Notification delivery failed",
                    extra={
                        "recipient_id": event.recipient_id,
                        "title": event.title,
                        "triggered_by": event.triggered_by,
                        "error": str(e),
                    },
                )
                self.dead_letters.append((event, str(e)))
                return False
            return True

    async def drain(self) -> None:
        """Wait until every queued event has been handled by the worker."""
        await self._queue.join()

    async def stop(self) -> None:
        """Cancel the worker. Undelivered events stay queued for the next start()."""
        if self._worker is None:
            return
        self._worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._worker
        self._worker = None

        # The old queue is bound to the loop that is shutting down
        remaining = asyncio.Queue(maxsize=self._maxsize)
        while not self._queue.empty():
            remaining.put_nowait(self._queue.get_nowait())
        self._queue = remaining
        logger.info("Notification outbox stopped", extra={"pending": remaining.qsize()})


outbox = NotificationOutbox()


def notify(*, recipient_id: str | None, title: str, message: str, triggered_by: str | None = None) -> bool:
    """Queue a notification for one user. Never raises into the caller."""
    if not recipient_id:
        logger.debug("Skipping notification without recipient", extra={"title": title})
        return False
    return outbox.enqueue(
        NotificationEvent(recipient_id=recipient_id, title=title, message=message, triggered_by=triggered_by)
    )


async def notify_roles(
    *,
    roles: list[Role],
    title: str,
    message: str,
    triggered_by: str | None = None,
) -> int:
    """Queue a notification for every user holding one of the roles.

    Returns:
        Number of events queued
    """
    with span("notification_service.notify_roles"):
        clauses = " || ".join(f'role = "{sanitize_param(role)}"' for role in roles)
        try:
            users = await db_client.list_records(
                collection="users",
                filter_query=f"({clauses})",
                per_page=Constants.MAX_PER_PAGE_LIMIT,
            )
        except db_client.DatabaseError as e:
            logger.error("Failed to look up notification recipients", extra={"roles": roles, "error": str(e)})
            return 0

        queued = 0
        for user in users:
            if user["id"] == triggered_by:
                continue
            if notify(recipient_id=user["id"], title=title, message=message, triggered_by=triggered_by):
                queued += 1
        return queued
