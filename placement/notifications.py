"""Fire-and-forget notification queue and its background worker."""
from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from placement.repositories import SqlNotificationRepository
from portal.models import Notification

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationMessage:
    user_id: str
    title: str
    message: str
    type: str
    link_url: str | None = None


class NotificationQueue:
    """Bounded in-process queue; producers never wait on delivery."""

    def __init__(self, maxsize: int = 0) -> None:
        self._queue: asyncio.Queue[NotificationMessage] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def enqueue(self, message: NotificationMessage) -> bool:
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("Notification queue full, dropping %r for user %s", message.title, message.user_id)
            return False
        return True

    async def get(self) -> NotificationMessage:
        return await self._queue.get()

    def task_done(self) -> None:
        self._queue.task_done()

    async def join(self) -> None:
        await self._queue.join()

    def qsize(self) -> int:
        return self._queue.qsize()


class NotificationWorker:
    """Drain ``queue`` and persist each message as a ``Notification`` row."""

    def __init__(self, queue: NotificationQueue, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.queue = queue
        self.session_factory = session_factory
        self._task: asyncio.Task[None] | None = None

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="notification-worker")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def run(self) -> None:
        while True:
            message = await self.queue.get()
            try:
                await self.deliver(message)
            except Exception:  # pylint: disable=broad-except
                logger.exception("Failed to deliver notification %r to user %s", message.title, message.user_id)
            finally:
                self.queue.task_done()

    async def deliver(self, message: NotificationMessage) -> Notification:
        async with self.session_factory() as session:
            notification = Notification(
                user_id=message.user_id,
                title=message.title,
                message=message.message,
                type=message.type,
                link_url=message.link_url,
            )
            await SqlNotificationRepository(session).add(notification)
            await session.commit()
        logger.info("Notification sent to %s: %s", message.user_id, message.title)
        return notification
