"""
Fire-and-forget delivery of notifications.

Services hand notifications to the dispatcher only after their state change
has been committed. Each delivery runs as its own asyncio task; a failing sink
is logged and never reaches the caller.
"""
import asyncio
import logging
from typing import Iterable, Set

from app.document_control.application.ports import NotificationSink
from app.document_control.domain.models import Notification

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    def __init__(self, sink: NotificationSink) -> None:
        self._sink = sink
        self._pending: Set[asyncio.Task] = set()

    def dispatch(self, notifications: Iterable[Notification]) -> int:
        count = 0
        for notification in notifications:
            task = asyncio.get_running_loop().create_task(self._deliver(notification))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            count += 1
        return count

    async def _deliver(self, notification: Notification) -> None:
        try:
            await self._sink.send(notification)
        except Exception:
            logger.exception(
                f"Failed to deliver notification '{notification.title}' "
                f"to user {notification.user_id} "
                f"({notification.entity_type}/{notification.entity_id})"
            )

    async def drain(self) -> None:
        """Wait for every delivery scheduled so far."""
        while True:
            pending = [task for task in self._pending if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending)
