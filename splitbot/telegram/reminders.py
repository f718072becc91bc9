"""Daily DM reminders for members with unpaid splits, and the commands that toggle them."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from telegram import Update
from telegram.error import TelegramError
from telegram.ext import ContextTypes

from ..db import SessionLocal
from ..services import reminders as reminder_service
from ..services import reports as report_service
from .helpers import format_amount, is_group_chat

logger = logging.getLogger(__name__)

GROUP_ONLY_TEXT = "This command can only be used in group chats."


def reminder_text(unpaid_count: int, total: Decimal) -> str:
    plural = "s" if unpaid_count > 1 else ""
    return (
        "🔔 Daily Reminder\n\n"
        f"You have {unpaid_count} pending expense{plural}\n"
        f"Total owed: {format_amount(total)}\n\n"
        "Use /myexpenses to see details\n"
        "Use /markpaid to mark as paid"
    )


def _as_utc(value: datetime) -> datetime:
    # SQLite hands timestamps back without tzinfo
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


async def _remind_group(
    session_factory: async_sessionmaker[AsyncSession], bot: Any, group_id: int, now: datetime
) -> int:
    async with session_factory() as session:
        setting = await reminder_service.get_reminder_setting(session, group_id)
        if setting is not None and not setting.enabled:
            return 0
        if setting is not None and setting.last_sent_at is not None:
            if _as_utc(setting.last_sent_at).date() == now.date():
                return 0

        sent = 0
        for debtor in await report_service.unpaid_totals_by_debtor(session, group_id):
            try:
                await bot.send_message(chat_id=debtor.user_id, text=reminder_text(debtor.unpaid_count, debtor.total))
            except TelegramError:
                # usually the member never opened a private chat with the bot
                logger.warning("Could not send reminder to user %s", debtor.user_id, exc_info=True)
                continue
            sent += 1
        await reminder_service.mark_reminder_sent(session, group_id, now)
    return sent


async def send_reminders(
    session_factory: async_sessionmaker[AsyncSession],
    bot: Any,
    *,
    now: Optional[datetime] = None,
) -> int:
    """DM every debtor in every group with unpaid splits, at most once per group per day.

    Returns the number of reminders delivered. A failing group is logged and skipped.
    """
    now = now or datetime.now(timezone.utc)
    async with session_factory() as session:
        group_ids = await report_service.list_groups_with_unpaid_splits(session)

    delivered = 0
    for group_id in group_ids:
        try:
            delivered += await _remind_group(session_factory, bot, group_id, now)
        except Exception:
            logger.exception("Failed to process reminders for group %s", group_id)
    return delivered


async def reminder_job(context: ContextTypes.DEFAULT_TYPE) -> None:
    delivered = await send_reminders(SessionLocal, context.bot)
    logger.info("Daily reminders delivered: %d", delivered)


async def set_reminder(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not update.message:
        return
    chat = update.effective_chat
    if not is_group_chat(chat):
        await update.message.reply_text(GROUP_ONLY_TEXT)
        return

    try:
        async with SessionLocal() as session:
            enabled = await reminder_service.toggle_reminders(session, chat.id)
    except Exception:
        logger.exception("Failed to toggle reminders for group %s", chat.id)
        await update.message.reply_text("Could not change the reminder setting. Please try again.")
        return

    if enabled:
        await update.message.reply_text(
            "🔔 Daily reminders have been enabled for this group!\n\n"
            "Users with pending expenses will receive a daily DM reminder."
        )
    else:
        await update.message.reply_text("🔕 Daily reminders have been disabled for this group.")


async def reminder_status(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not update.message:
        return
    chat = update.effective_chat
    if not is_group_chat(chat):
        await update.message.reply_text(GROUP_ONLY_TEXT)
        return

    async with SessionLocal() as session:
        setting = await reminder_service.get_reminder_setting(session, chat.id)

    if setting is not None and not setting.enabled:
        await update.message.reply_text(
            "🔕 Daily reminders are currently disabled.\n\nUse /setreminder to enable them."
        )
        return
    last_sent = "Never"
    if setting is not None and setting.last_sent_at is not None:
        last_sent = _as_utc(setting.last_sent_at).strftime("%Y-%m-%d %H:%M UTC")
    await update.message.reply_text(
        f"🔔 Daily reminders are enabled\n\nLast sent: {last_sent}\n\nUse /setreminder to disable"
    )
