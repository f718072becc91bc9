from __future__ import annotations

from collections.abc import Iterable
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.account import AccountDetail
from ..models.user import GroupMember, User
from ..schemas.user import UserCreate


async def ensure_user(session: AsyncSession, payload: UserCreate) -> User:
    """Create the user or refresh the names Telegram reports for them."""
    existing = await get_user_by_telegram_id(session, payload.telegram_id)
    if existing:
        changed = False
        for field in ("username", "first_name", "last_name"):
            value = getattr(payload, field)
            if value and getattr(existing, field) != value:
                setattr(existing, field, value)
                changed = True
        if changed:
            await session.commit()
            await session.refresh(existing)
        return existing

    user = User(
        telegram_id=payload.telegram_id,
        username=payload.username,
        first_name=payload.first_name,
        last_name=payload.last_name,
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


async def get_user_by_telegram_id(session: AsyncSession, telegram_id: int) -> Optional[User]:
    result = await session.execute(select(User).where(User.telegram_id == telegram_id))
    return result.scalars().first()


async def is_group_member(session: AsyncSession, group_id: int, user_id: int) -> bool:
    result = await session.execute(
        select(GroupMember.id).where(GroupMember.group_id == group_id, GroupMember.user_id == user_id)
    )
    return result.first() is not None


async def register_member(
    session: AsyncSession,
    *,
    group_id: int,
    user_id: int,
    registered_by: int,
) -> bool:
    """Register a user in a group. Returns False when they were already registered."""
    if await is_group_member(session, group_id, user_id):
        return False
    session.add(GroupMember(group_id=group_id, user_id=user_id, registered_by=registered_by))
    await session.commit()
    return True


async def list_group_members(session: AsyncSession, group_id: int) -> list[User]:
    result = await session.execute(
        select(User)
        .join(GroupMember, GroupMember.user_id == User.telegram_id)
        .where(GroupMember.group_id == group_id)
        .order_by(GroupMember.created_at, GroupMember.id)
    )
    return list(result.scalars().unique().all())


async def set_account_details(
    session: AsyncSession,
    user_id: int,
    account_info: str,
    *,
    payment_type: str = "bank",
) -> AccountDetail:
    """Store new payout details, deactivating whatever was active before."""
    await session.execute(
        update(AccountDetail)
        .where(AccountDetail.user_id == user_id, AccountDetail.is_active.is_(True))
        .values(is_active=False)
    )
    detail = AccountDetail(user_id=user_id, payment_type=payment_type, account_info=account_info)
    session.add(detail)
    await session.commit()
    await session.refresh(detail)
    return detail


async def get_active_account_details(session: AsyncSession, user_id: int) -> Optional[AccountDetail]:
    result = await session.execute(
        select(AccountDetail)
        .where(AccountDetail.user_id == user_id, AccountDetail.is_active.is_(True))
        .order_by(AccountDetail.id.desc())
    )
    return result.scalars().first()


async def get_display_names(session: AsyncSession, telegram_ids: Iterable[int]) -> dict[int, str]:
    ids = set(telegram_ids)
    if not ids:
        return {}
    result = await session.execute(select(User).where(User.telegram_id.in_(ids)))
    return {user.telegram_id: user.display_name() for user in result.scalars().all()}
