from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from canary.db.models import NotificationPreference, User

EMAIL_CHANNEL = "email"


class PreferenceService:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def enabled_email_addresses(self, user_id: uuid.UUID) -> list[str]:
        rows = await self.session.scalars(
            select(NotificationPreference.address)
            .where(
                NotificationPreference.user_id == user_id,
                NotificationPreference.channel == EMAIL_CHANNEL,
                NotificationPreference.enabled.is_(True),
            )
            .order_by(NotificationPreference.created_at)
        )
        return list(rows)

    async def primary_email(self, user_id: uuid.UUID) -> str | None:
        return await self.session.scalar(select(User.email).where(User.id == user_id))
