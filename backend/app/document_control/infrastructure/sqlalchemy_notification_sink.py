import logging

from sqlalchemy.ext.asyncio import async_sessionmaker

from app.document_control.application.ports import NotificationSink, new_id, utc_now
from app.document_control.domain.models import Notification
from database import Notification as NotificationModel

logger = logging.getLogger(__name__)


class SqlAlchemyNotificationSink(NotificationSink):
    """Stores in-app notifications using a session of its own.

    Delivery runs after the originating request has committed, so it cannot
    share that request's session.
    """

    def __init__(self, session_maker: async_sessionmaker) -> None:
        self._session_maker = session_maker

    async def send(self, notification: Notification) -> None:
        async with self._session_maker() as session:
            session.add(
                NotificationModel(
                    id=new_id(),
                    user_id=notification.user_id,
                    title=notification.title,
                    message=notification.message,
                    notification_type=notification.notification_type,
                    entity_type=notification.entity_type,
                    entity_id=notification.entity_id,
                    read=False,
                    created_at=utc_now(),
                )
            )
            await session.commit()
        logger.debug(f"Notification stored for user {notification.user_id}")
