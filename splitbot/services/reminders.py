from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.reminder import ReminderSetting


async def get_reminder_setting(session: AsyncSession, group_id: int) -> Optional[ReminderSetting]:
    result = await session.execute(select(ReminderSetting).where(ReminderSetting.group_id == group_id))
    return result.scalars().first()


async def toggle_reminders(session: AsyncSession, group_id: int) -> bool:
    """Flip the group's reminder switch. Groups without a row count as enabled."""
    setting = await get_reminder_setting(session, group_id)
    if setting is None:
        setting = ReminderSetting(group_id=group_id, enabled=False)
        session.add(setting)
    else:
        setting.enabled = not setting.enabled
    await session.commit()
    return setting.enabled


async def mark_reminder_sent(session: AsyncSession, group_id: int, sent_at: datetime) -> None:
    setting = await get_reminder_setting(session, group_id)
    if setting is None:
        session.add(ReminderSetting(group_id=group_id, enabled=True, last_sent_at=sent_at))
    else:
        setting.last_sent_at = sent_at
    await session.commit()
