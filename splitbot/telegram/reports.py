"""Group reports delivered by DM: /summary, /history and /owed."""

from __future__ import annotations

import logging
from collections import defaultdict
from decimal import Decimal

from telegram import Update
from telegram.error import TelegramError
from telegram.ext import ContextTypes

from ..db import SessionLocal
from ..schemas.expense import ExpenseRead, UnpaidSplitRead
from ..schemas.report import ReceivablesRead, UserSummary
from ..services import expenses as expense_service
from ..services import reports as report_service
from ..services import users as user_service
from .helpers import format_amount, is_group_chat

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 20
DM_FAILED_TEXT = (
    "❌ I couldn't send you a DM. Please start a chat with me first "
    "by clicking my name and pressing \"Start\"."
)


def _name(names: dict[int, str], user_id: int) -> str:
    return names.get(user_id, f"User {user_id}")


def summary_text(summary: UserSummary, unpaid: list[UnpaidSplitRead], names: dict[int, str]) -> str:
    lines = [
        "📊 Your Expense Summary:",
        "",
        f"💸 Total Unpaid: {format_amount(summary.total_owed)}",
        f"✅ Total Paid: {format_amount(summary.total_paid)}",
        f"📝 Pending Expenses: {summary.unpaid_count}",
        "",
    ]
    by_payee: dict[int, list[Decimal]] = defaultdict(list)
    for split in unpaid:
        by_payee[split.payee_id].append(split.amount)
    if by_payee:
        lines.append("💰 You owe:")
        for payee_id, amounts in sorted(by_payee.items()):
            plural = "s" if len(amounts) > 1 else ""
            lines.append(
                f"  • {_name(names, payee_id)}: {format_amount(sum(amounts, Decimal('0')))} "
                f"({len(amounts)} expense{plural})"
            )
    else:
        lines.append("🎉 You don't owe anyone!")
    lines += ["", "Use /myexpenses to see detailed breakdown", "Use /markpaid to mark expenses as paid"]
    return "\n".join(lines)


def history_text(expenses: list[ExpenseRead], names: dict[int, str]) -> str:
    if not expenses:
        return "No expenses recorded yet in this group."
    lines = ["📚 Recent Expense History:", ""]
    for expense in expenses:
        paid = sum(1 for split in expense.splits if split.paid)
        lines.append(f"💰 #{expense.group_expense_number} - {format_amount(expense.amount)}")
        if expense.description:
            lines.append(f"   {expense.description}")
        lines.append(f"   Paid by: {_name(names, expense.paid_by)} | {expense.created_at:%Y-%m-%d}")
        lines.append(f"   Split: {expense.split_type.value} among {len(expense.splits)} user(s)")
        lines.append(f"   Status: {paid}/{len(expense.splits)} paid")
        lines.append("")
    lines.append(f"Showing last {len(expenses)} expenses")
    return "\n".join(lines)


def owed_text(receivables: ReceivablesRead, names: dict[int, str]) -> str:
    lines = [
        "💰 Payments Owed to You:",
        "",
        f"Total Pending: {format_amount(receivables.total_pending)}",
        f"Total Received: {format_amount(receivables.total_received)}",
        "",
    ]
    if not receivables.splits:
        lines.append("✅ Everyone has paid you!")
        return "\n".join(lines)

    by_debtor: dict[int, list[UnpaidSplitRead]] = defaultdict(list)
    for split in receivables.splits:
        by_debtor[split.debtor_id].append(split)
    lines.append("📋 Breakdown:")
    for debtor_id, splits in sorted(by_debtor.items()):
        total = sum((split.amount for split in splits), Decimal("0"))
        numbers = ", ".join(f"#{split.group_expense_number}" for split in splits)
        lines += ["", f"{_name(names, debtor_id)}:", f"  Amount: {format_amount(total)}", f"  Expenses: {numbers}"]
    return "\n".join(lines)


async def _reply_in_private(update: Update, context: ContextTypes.DEFAULT_TYPE, text: str, notice: str) -> None:
    try:
        await context.bot.send_message(chat_id=update.effective_user.id, text=text)
    except TelegramError:
        logger.warning("Could not DM user %s", update.effective_user.id, exc_info=True)
        await update.message.reply_text(DM_FAILED_TEXT)
        return
    await update.message.reply_text(notice)


def _group_id(update: Update) -> int | None:
    chat = update.effective_chat
    if not is_group_chat(chat):
        return None
    return chat.id


async def summary(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not update.message:
        return
    group_id = _group_id(update)
    if group_id is None:
        await update.message.reply_text("Please use this command in a group chat to see your summary for that group.")
        return

    user_id = update.effective_user.id
    async with SessionLocal() as session:
        totals = await report_service.get_user_summary(session, user_id, group_id)
        unpaid = await expense_service.list_unpaid_splits(session, user_id, group_id=group_id)
        names = await user_service.get_display_names(session, (split.payee_id for split in unpaid))
    await _reply_in_private(
        update, context, summary_text(totals, unpaid, names), "📊 I've sent you your summary in a DM!"
    )


async def history(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not update.message:
        return
    group_id = _group_id(update)
    if group_id is None:
        await update.message.reply_text("Please use this command in a group chat to see the history for that group.")
        return

    async with SessionLocal() as session:
        rows = await expense_service.list_group_expenses(session, group_id, limit=HISTORY_LIMIT)
        expenses = [ExpenseRead.model_validate(row) for row in rows]
        names = await user_service.get_display_names(session, (expense.paid_by for expense in expenses))
    await _reply_in_private(
        update, context, history_text(expenses, names), "📚 I've sent you the expense history in a DM!"
    )


async def owed(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not update.message:
        return
    group_id = _group_id(update)
    if group_id is None:
        await update.message.reply_text("Please use this command in a group chat to see who owes you there.")
        return

    user_id = update.effective_user.id
    async with SessionLocal() as session:
        receivables = await report_service.list_receivables(session, user_id, group_id)
        names = await user_service.get_display_names(session, (split.debtor_id for split in receivables.splits))
    await _reply_in_private(
        update, context, owed_text(receivables, names), "💳 I've sent you payment details in a DM!"
    )
