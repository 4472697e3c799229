"""
Preference Store: per-user, per-event-type, per-channel opt-in/opt-out.

A missing row means the channel is enabled.
"""

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Channel, NotificationPreference


logger = logging.getLogger(__name__)


class PreferenceStore:
    """Reads and upserts NotificationPreference rows."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def load_for_event(
        self,
        user_id: UUID,
        event_type: str,
    ) -> dict[Channel, bool]:
        """Return {channel: is_enabled} for every stored row of (user, event_type)."""
        result = await self._session.execute(
            select(NotificationPreference).where(
                NotificationPreference.user_id == user_id,
                NotificationPreference.event_type == event_type,
            )
        )
        return {pref.channel: pref.is_enabled for pref in result.scalars().all()}

    async def is_enabled(
        self,
        user_id: UUID,
        event_type: str,
        channel: Channel,
    ) -> bool:
        preferences = await self.load_for_event(user_id, event_type)
        return preferences.get(channel, True)

    async def list_for_user(self, user_id: UUID) -> list[NotificationPreference]:
        result = await self._session.execute(
            select(NotificationPreference)
            .where(NotificationPreference.user_id == user_id)
            .order_by(NotificationPreference.event_type, NotificationPreference.channel)
        )
        return list(result.scalars().all())

    async def set_preference(
        self,
        user_id: UUID,
        event_type: str,
        channel: Channel,
        is_enabled: bool,
    ) -> NotificationPreference:
        """Upsert the (user, event_type, channel) row."""
        result = await self._session.execute(
            select(NotificationPreference).where(
                NotificationPreference.user_id == user_id,
                NotificationPreference.event_type == event_type,
                NotificationPreference.channel == channel,
            )
        )
        preference = result.scalar_one_or_none()

        if preference is None:
            preference = NotificationPreference(
                user_id=user_id,
                event_type=event_type,
                channel=channel,
                is_enabled=is_enabled,
            )
            self._session.add(preference)
        else:
            preference.is_enabled = is_enabled

        await self._session.flush()
        logger.info(
            f"Preference set: user={user_id} event={event_type} "
            f"channel={channel.value} enabled={is_enabled}"
        )
        return preference
