from __future__ import annotations

import asyncio
import contextlib
import logging
import textwrap
from decimal import Decimal
from io import BytesIO
from typing import Any, Optional

from telegram import BotCommand, InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.error import BadRequest
from telegram.ext import (
    AIORateLimiter,
    Application,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from ..blobs import FileSystemBlobStore
from ..config import Settings, get_settings
from ..db import SessionLocal
from ..flows import ExpenseFlow, PaymentFlow
from ..flows import expense as expense_flow
from ..flows import payment as payment_flow
from ..flows.replies import Keyboard, PhotoUpload, Reply, ReplyKind
from ..ledger import SqlLedger
from ..schemas.user import UserCreate
from ..services import users as user_service
from ..sessions import InMemorySessionStore, RedisSessionStore, SessionStore, expense_sessions, payment_sessions
from . import reports
from .helpers import format_amount, is_group_chat, shorten
from .reminders import reminder_job, reminder_status, set_reminder

logger = logging.getLogger(__name__)

HELP_TEXT = textwrap.dedent(
    """
    How I can help your group split bills:

    - /register - register yourself in this group (reply to someone's message to register them).
    - /setaccount <details> - save the bank account others should pay you on.
    - /addexpense - record a shared expense step by step: amount, description, location, photos, who joins, who paid, and how to split.
    - /markpaid - pick one of your debts, see where to pay, and confirm once you have transferred the money.
    - /myexpenses - list what you still owe.
    - /summary - get your totals for this group by DM.
    - /history - get the last 20 expenses of this group by DM.
    - /owed - get who still owes you in this group by DM.
    - /setreminder - turn the daily DM reminder for this group on or off.
    - /reminderstatus - check whether daily reminders are on.

    Type `skip` or use the Skip button for optional steps.
    """
)

ALLOWED_UPDATES = ["message", "callback_query"]

EXPENSE_CALLBACK_PATTERN = (
    f"^({expense_flow.SKIP_PREFIX}|{expense_flow.USER_PREFIX}|{expense_flow.PAID_BY_PREFIX}"
    f"|{expense_flow.SPLIT_PREFIX}|{expense_flow.USERS_DONE}$)"
)
PAYMENT_CALLBACK_PATTERN = (
    f"^({payment_flow.MARK_PAID_PREFIX}|{payment_flow.CONFIRM_PREFIX}|{payment_flow.SKIP_PREFIX}"
    f"|{payment_flow.CANCEL}$)"
)


def _user_payload(tele_user: Any) -> UserCreate:
    return UserCreate(
        telegram_id=tele_user.id,
        username=tele_user.username,
        first_name=tele_user.first_name,
        last_name=tele_user.last_name,
    )


def _markup(buttons: Optional[Keyboard]) -> Optional[InlineKeyboardMarkup]:
    if not buttons:
        return None
    return InlineKeyboardMarkup(
        [[InlineKeyboardButton(button.label, callback_data=button.data) for button in row] for row in buttons]
    )


def _is_message_not_modified_error(error: Exception) -> bool:
    return "message is not modified" in str(error).lower()


async def _deliver(update: Update, context: ContextTypes.DEFAULT_TYPE, replies: list[Reply]) -> None:
    """Send what a flow produced. A button press is always answered exactly once."""
    query = update.callback_query
    answered = False
    for reply in replies:
        if reply.kind is ReplyKind.TOAST and query is not None:
            if not answered:
                await query.answer(reply.text or None, show_alert=reply.alert)
                answered = True
            continue
        if reply.kind is ReplyKind.REFRESH and query is not None:
            if not answered:
                await query.answer(reply.text or None)
                answered = True
            try:
                await query.edit_message_reply_markup(reply_markup=_markup(reply.buttons))
            except BadRequest as exc:
                if not _is_message_not_modified_error(exc):
                    raise
            continue
        if reply.chat_id is not None:
            try:
                await context.bot.send_message(
                    chat_id=reply.chat_id, text=reply.text, reply_markup=_markup(reply.buttons)
                )
            except Exception:
                logger.warning("Could not deliver notification to chat %s", reply.chat_id, exc_info=True)
            continue
        await update.effective_message.reply_text(reply.text, reply_markup=_markup(reply.buttons))
    if query is not None and not answered:
        await query.answer()


def _photo_upload(photo: Any) -> PhotoUpload:
    async def fetch() -> bytes:
        file = await photo.get_file()
        buffer = BytesIO()
        await file.download_to_memory(out=buffer)
        return buffer.getvalue()

    return PhotoUpload(file_id=photo.file_id, fetch=fetch)


async def auto_register(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Anyone who talks in a group becomes a member of it."""
    tele_user = update.effective_user
    chat = update.effective_chat
    if tele_user is None or tele_user.is_bot or not is_group_chat(chat):
        return
    try:
        async with SessionLocal() as session:
            await user_service.ensure_user(session, _user_payload(tele_user))
            if await user_service.register_member(
                session, group_id=chat.id, user_id=tele_user.id, registered_by=tele_user.id
            ):
                logger.info("Auto-registered user %s in group %s", tele_user.id, chat.id)
    except Exception:
        logger.exception("Failed to auto-register user %s in group %s", tele_user.id, chat.id)


async def start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not update.message:
        return
    await update.message.reply_text(
        "Hi! Add me to a group, have everyone send /register, then use /addexpense to split a bill.\n"
        "Send /help to see everything I can do."
    )


async def help_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not update.message:
        return
    await update.message.reply_text(HELP_TEXT)


async def register(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not update.message:
        return
    chat = update.effective_chat
    if not is_group_chat(chat):
        await update.message.reply_text("Use /register inside the group you want to split expenses in.")
        return

    caller = update.effective_user
    target = caller
    replied = update.message.reply_to_message
    if replied is not None and replied.from_user is not None:
        if replied.from_user.is_bot:
            await update.message.reply_text("Bots cannot be registered.")
            return
        target = replied.from_user

    try:
        async with SessionLocal() as session:
            user = await user_service.ensure_user(session, _user_payload(target))
            created = await user_service.register_member(
                session, group_id=chat.id, user_id=target.id, registered_by=caller.id
            )
    except Exception:
        logger.exception("Failed to register user %s in group %s", target.id, chat.id)
        await update.message.reply_text("Could not register right now. Please try again.")
        return

    name = user.display_name()
    if created:
        await update.message.reply_text(f"✅ {name} is now registered in this group.")
    else:
        await update.message.reply_text(f"{name} is already registered in this group.")


async def set_account(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not update.message:
        return
    tele_user = update.effective_user
    details = " ".join(context.args or []).strip()
    if not details:
        await update.message.reply_text(
            "Usage: /setaccount <bank and account number>\nExample: /setaccount BCA 1234567890 a.n. Jane"
        )
        return

    try:
        async with SessionLocal() as session:
            await user_service.ensure_user(session, _user_payload(tele_user))
            await user_service.set_account_details(session, tele_user.id, details)
    except Exception:
        logger.exception("Failed to store account details for user %s", tele_user.id)
        await update.message.reply_text("Could not save your payment details. Please try again.")
        return
    await update.message.reply_text(
        "✅ Payment details saved. People who owe you will see them when they use /markpaid."
    )


async def add_expense(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not update.message:
        return
    flow: ExpenseFlow = context.application.bot_data["expense_flow"]
    chat = update.effective_chat
    replies = await flow.start(update.effective_user.id, chat.id, is_group=is_group_chat(chat))
    await _deliver(update, context, replies)


async def mark_paid(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not update.message:
        return
    flow: PaymentFlow = context.application.bot_data["payment_flow"]
    chat = update.effective_chat
    group_id = chat.id if is_group_chat(chat) else None
    replies = await flow.list_unpaid(update.effective_user.id, group_id=group_id)
    await _deliver(update, context, replies)


async def my_expenses(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not update.message:
        return
    ledger: SqlLedger = context.application.bot_data["ledger"]
    chat = update.effective_chat
    group_id = chat.id if is_group_chat(chat) else None
    splits = await ledger.list_unpaid_splits(update.effective_user.id, group_id=group_id)
    if not splits:
        await update.message.reply_text("🎉 You don't owe anything right now!")
        return

    lines = ["📋 Your pending expenses:", ""]
    total = Decimal("0")
    for split in splits:
        label = f"#{split.group_expense_number} - {format_amount(split.amount)}"
        if split.description:
            label += f" ({shorten(split.description)})"
        lines.append(label)
        total += split.amount
    lines += ["", f"Total owed: {format_amount(total)}", "", "Use /markpaid to mark expenses as paid"]
    await update.message.reply_text("\n".join(lines))


async def expense_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    if not query or not query.data:
        return
    flow: ExpenseFlow = context.application.bot_data["expense_flow"]
    user_id = update.effective_user.id
    data = query.data

    if data == expense_flow.USERS_DONE:
        replies = await flow.finish_selection(user_id)
    elif data.startswith(expense_flow.SKIP_PREFIX):
        replies = await flow.skip(user_id, data[len(expense_flow.SKIP_PREFIX):])
    elif data.startswith(expense_flow.USER_PREFIX):
        replies = await flow.toggle_participant(user_id, data[len(expense_flow.USER_PREFIX):])
    elif data.startswith(expense_flow.PAID_BY_PREFIX):
        replies = await flow.choose_payer(user_id, data[len(expense_flow.PAID_BY_PREFIX):])
    elif data.startswith(expense_flow.SPLIT_PREFIX):
        chat = update.effective_chat
        replies = await flow.choose_split(
            user_id,
            data[len(expense_flow.SPLIT_PREFIX):],
            origin_chat_id=chat.id if chat else None,
        )
    else:
        replies = []
    await _deliver(update, context, replies)


def _split_id(data: str, prefix: str) -> Optional[int]:
    try:
        return int(data[len(prefix):])
    except ValueError:
        return None


async def payment_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    query = update.callback_query
    if not query or not query.data:
        return
    flow: PaymentFlow = context.application.bot_data["payment_flow"]
    user_id = update.effective_user.id
    data = query.data

    replies: list[Reply] = []
    if data == payment_flow.CANCEL:
        replies = await flow.cancel(user_id)
    else:
        for prefix, handler in (
            (payment_flow.MARK_PAID_PREFIX, flow.select),
            (payment_flow.CONFIRM_PREFIX, flow.confirm),
            (payment_flow.SKIP_PREFIX, flow.skip),
        ):
            if data.startswith(prefix):
                split_id = _split_id(data, prefix)
                if split_id is not None:
                    replies = await handler(user_id, split_id)
                break
    await _deliver(update, context, replies)


async def conversation_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not update.message or not update.message.text:
        return
    flow: ExpenseFlow = context.application.bot_data["expense_flow"]
    replies = await flow.handle_text(update.effective_user.id, update.effective_chat.id, update.message.text)
    if replies is None:
        return
    await _deliver(update, context, replies)


async def conversation_photo(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    if not update.message or not update.message.photo:
        return
    user_id = update.effective_user.id
    upload = _photo_upload(update.message.photo[-1])

    payments: PaymentFlow = context.application.bot_data["payment_flow"]
    replies = await payments.handle_photo(user_id, upload)
    if replies is None:
        expenses: ExpenseFlow = context.application.bot_data["expense_flow"]
        replies = await expenses.handle_photo(user_id, upload)
    if replies is None:
        return
    await _deliver(update, context, replies)


def _create_session_store(settings: Settings) -> SessionStore:
    if settings.redis_url:
        return RedisSessionStore.from_url(settings.redis_url)
    logger.warning("REDIS_URL is not set; conversation sessions are kept in process memory.")
    return InMemorySessionStore()


def _schedule_reminders(application: Application, settings: Settings) -> None:
    if not settings.reminders_enabled:
        logger.info("REMINDERS_ENABLED is off; daily reminders are not scheduled.")
        return
    if application.job_queue is None:
        logger.warning("Job queue unavailable (missing job-queue extra); daily reminders disabled.")
        return
    application.job_queue.run_daily(reminder_job, time=settings.reminder_time, name="daily-reminders")


def _create_application(token: str, settings: Settings, store: SessionStore) -> Application:
    application = (
        Application.builder()
        .token(token)
        .rate_limiter(AIORateLimiter())
        .build()
    )
    ledger = SqlLedger(SessionLocal)
    blobs = FileSystemBlobStore(settings.blob_storage_path)
    application.bot_data["ledger"] = ledger
    application.bot_data["expense_flow"] = ExpenseFlow(
        expense_sessions(store, settings.expense_session_ttl_seconds), ledger, blobs
    )
    application.bot_data["payment_flow"] = PaymentFlow(
        payment_sessions(store, settings.payment_session_ttl_seconds), ledger, blobs
    )
    application.add_handler(MessageHandler(filters.ChatType.GROUPS, auto_register), group=-1)
    application.add_handler(CommandHandler("start", start))
    application.add_handler(CommandHandler("help", help_command))
    application.add_handler(CommandHandler("register", register))
    application.add_handler(CommandHandler("setaccount", set_account))
    application.add_handler(CommandHandler("addexpense", add_expense))
    application.add_handler(CommandHandler("markpaid", mark_paid))
    application.add_handler(CommandHandler("myexpenses", my_expenses))
    application.add_handler(CommandHandler("summary", reports.summary))
    application.add_handler(CommandHandler("history", reports.history))
    application.add_handler(CommandHandler("owed", reports.owed))
    application.add_handler(CommandHandler("setreminder", set_reminder))
    application.add_handler(CommandHandler("reminderstatus", reminder_status))
    application.add_handler(CallbackQueryHandler(expense_callback, pattern=EXPENSE_CALLBACK_PATTERN))
    application.add_handler(CallbackQueryHandler(payment_callback, pattern=PAYMENT_CALLBACK_PATTERN))
    application.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, conversation_text))
    application.add_handler(MessageHandler(filters.PHOTO, conversation_photo))
    _schedule_reminders(application, settings)
    return application


_application: Application | None = None
_session_store: SessionStore | None = None
_lock = asyncio.Lock()


async def init_bot() -> None:
    """Initialise the Telegram bot and register the webhook."""
    settings = get_settings()
    if not settings.telegram_bot_token or not settings.telegram_webhook_secret:
        logger.info("Telegram bot or webhook secret not configured; skipping bot initialisation.")
        return
    if not settings.backend_base_url:
        logger.warning("BACKEND_BASE_URL is missing; skipping Telegram webhook setup.")
        return

    base_url = str(settings.backend_base_url)
    webhook_url = base_url.rstrip("/") + f"/api/telegram/webhook/{settings.telegram_webhook_secret}"

    async with _lock:
        global _application, _session_store
        if _application is not None:
            return

        store = _create_session_store(settings)
        application = _create_application(settings.telegram_bot_token, settings, store)

        try:
            await application.initialize()
            await application.start()
            try:
                await application.bot.set_my_commands(
                    [
                        BotCommand("start", "Show welcome message"),
                        BotCommand("help", "List bot features"),
                        BotCommand("register", "Register in this group"),
                        BotCommand("setaccount", "Save your payment details"),
                        BotCommand("addexpense", "Add a shared expense"),
                        BotCommand("markpaid", "Mark a debt as paid"),
                        BotCommand("myexpenses", "Show what you owe"),
                        BotCommand("summary", "Your totals in this group"),
                        BotCommand("history", "Recent expenses in this group"),
                        BotCommand("owed", "Who still owes you"),
                        BotCommand("setreminder", "Toggle daily reminders"),
                        BotCommand("reminderstatus", "Show reminder status"),
                    ]
                )
            except Exception:
                logger.exception("Failed to set Telegram command list.")
            if settings.telegram_register_webhook_on_start:
                await application.bot.set_webhook(
                    url=webhook_url, drop_pending_updates=False, allowed_updates=ALLOWED_UPDATES
                )
        except Exception:
            logger.exception("Failed to initialise Telegram webhook; bot disabled for this run.")
            with contextlib.suppress(Exception):
                await application.stop()
            with contextlib.suppress(Exception):
                await application.shutdown()
            if isinstance(store, RedisSessionStore):
                await store.aclose()
            return

        _application = application
        _session_store = store
        logger.info("Telegram webhook configured at %s", webhook_url)


async def handle_update(payload: dict[str, Any]) -> None:
    """Process a Telegram update forwarded by FastAPI."""
    async with _lock:
        if _application is None:
            raise RuntimeError("Telegram bot is not initialised.")
        application = _application
    update = Update.de_json(payload, application.bot)
    await application.process_update(update)


async def shutdown_bot() -> None:
    """Tear down the Telegram bot and release the session store."""
    async with _lock:
        global _application, _session_store
        if _application is None:
            return
        await _application.stop()
        await _application.shutdown()
        if isinstance(_session_store, RedisSessionStore):
            await _session_store.aclose()
        _application = None
        _session_store = None
