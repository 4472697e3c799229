"""In-app inbox: the user-facing notification records."""

import logging
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import UserNotification, utc_now
from .flows import NotificationError


logger = logging.getLogger(__name__)


class NotificationNotFoundError(NotificationError):
    """In-app notification does not exist."""
    pass


class InboxService:
    """Writes and reads UserNotification rows."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(
        self,
        user_id: UUID,
        title: str,
        message: str,
        notification_type: str = "general",
        data: dict[str, Any] | None = None,
    ) -> UserNotification:
        notification = UserNotification(
            user_id=user_id,
            title=title,
            message=message,
            notification_type=notification_type,
            data=data or {},
        )
        self._session.add(notification)
        await self._session.flush()
        return notification

    async def list_inbox(
        self,
        user_id: UUID,
        unread_only: bool = False,
        limit: int = 50,
    ) -> list[UserNotification]:
        query = (
            select(UserNotification)
            .where(UserNotification.user_id == user_id)
            .order_by(UserNotification.created_at.desc())
            .limit(limit)
        )
        if unread_only:
            query = query.where(UserNotification.is_read.is_(False))

        result = await self._session.execute(query)
        return list(result.scalars().all())

    async def mark_read(self, notification_id: UUID) -> UserNotification:
        notification = await self._session.get(UserNotification, notification_id)
        if notification is None:
            raise NotificationNotFoundError(f"Notification {notification_id} not found")

        if not notification.is_read:
            notification.is_read = True
            notification.read_at = utc_now()
            await self._session.flush()

        return notification
