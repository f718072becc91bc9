from __future__ import annotations

from datetime import time
from decimal import Decimal
from io import BytesIO
from types import SimpleNamespace
from unittest import IsolatedAsyncioTestCase
from unittest.mock import AsyncMock, MagicMock, patch

from fakes import InMemoryBlobStore, InMemoryLedger
from telegram import InlineKeyboardMarkup
from telegram.error import BadRequest

from splitbot.flows import ExpenseFlow, PaymentFlow
from splitbot.flows.replies import Button, message, refresh, toast
from splitbot.schemas.expense import UnpaidSplitRead
from splitbot.sessions import (
    ConfirmStep,
    ExpenseKey,
    InMemorySessionStore,
    PaymentKey,
    PhotoStep,
    expense_sessions,
    payment_sessions,
)
from splitbot.telegram import bot

GROUP_CHAT = SimpleNamespace(id=-100500, type="supergroup")
PRIVATE_CHAT = SimpleNamespace(id=11, type="private")


class DummyMessage:
    """Minimal stand-in for a Telegram message used in handlers."""

    def __init__(
        self,
        text: str | None = None,
        *,
        photo: list | None = None,
        reply_to_message=None,
    ) -> None:
        self.text = text
        self.photo = photo or []
        self.reply_to_message = reply_to_message
        self.reply_text = AsyncMock()


class DummyCallbackQuery:
    def __init__(self, data: str, *, message=None) -> None:
        self.data = data
        self.message = message
        self.answer = AsyncMock()
        self.edit_message_text = AsyncMock()
        self.edit_message_reply_markup = AsyncMock()


class DummyFile:
    def __init__(self, data: bytes) -> None:
        self._data = data

    async def download_to_memory(self, *, out: BytesIO):
        out.write(self._data)


class DummyPhoto:
    def __init__(self, data: bytes, file_id: str = "AgADphoto") -> None:
        self._file = DummyFile(data)
        self.file_id = file_id

    async def get_file(self) -> DummyFile:
        return self._file


def _user(user_id: int = 11, **names):
    defaults = {"username": "alice", "first_name": "Alice", "last_name": None, "is_bot": False}
    defaults.update(names)
    return SimpleNamespace(id=user_id, **defaults)


def _message_update(message: DummyMessage, *, chat=GROUP_CHAT, user=None):
    return SimpleNamespace(
        message=message,
        effective_message=message,
        effective_chat=chat,
        effective_user=user or _user(),
        callback_query=None,
    )


def _callback_update(query: DummyCallbackQuery, *, chat=GROUP_CHAT, user=None):
    bot_message = DummyMessage()
    query.message = bot_message
    return SimpleNamespace(
        message=None,
        effective_message=bot_message,
        effective_chat=chat,
        effective_user=user or _user(),
        callback_query=query,
    )


def _context(**bot_data):
    return SimpleNamespace(
        application=SimpleNamespace(bot_data=bot_data),
        bot=SimpleNamespace(send_message=AsyncMock()),
        args=[],
    )


class DeliverTests(IsolatedAsyncioTestCase):
    async def test_messages_reply_in_chat_with_keyboard(self) -> None:
        msg = DummyMessage("/addexpense")
        update = _message_update(msg)

        await bot._deliver(update, _context(), [message("hello", [[Button("Skip", "expense_skip:photo")]])])

        msg.reply_text.assert_awaited_once()
        markup = msg.reply_text.await_args.kwargs["reply_markup"]
        self.assertIsInstance(markup, InlineKeyboardMarkup)
        self.assertEqual(markup.inline_keyboard[0][0].callback_data, "expense_skip:photo")

    async def test_button_press_is_answered_once(self) -> None:
        query = DummyCallbackQuery("expense_users_done")
        update = _callback_update(query)

        await bot._deliver(update, _context(), [toast("first", alert=True), toast("second")])

        query.answer.assert_awaited_once_with("first", show_alert=True)

    async def test_unanswered_press_gets_empty_answer(self) -> None:
        query = DummyCallbackQuery("expense_split:equal")
        update = _callback_update(query)

        await bot._deliver(update, _context(), [message("✅ Expense #1 added successfully!")])

        query.answer.assert_awaited_once_with()
        update.effective_message.reply_text.assert_awaited_once()

    async def test_refresh_ignores_message_not_modified(self) -> None:
        query = DummyCallbackQuery("expense_user:11")
        query.edit_message_reply_markup.side_effect = BadRequest("Message is not modified: specified new markup")
        update = _callback_update(query)

        await bot._deliver(update, _context(), [refresh([[Button("✓ Alice", "expense_user:11")]], "1 user(s) selected")])

        query.answer.assert_awaited_once_with("1 user(s) selected")
        query.edit_message_reply_markup.assert_awaited_once()

    async def test_refresh_reraises_other_errors(self) -> None:
        query = DummyCallbackQuery("expense_user:11")
        query.edit_message_reply_markup.side_effect = BadRequest("Message to edit not found")
        update = _callback_update(query)

        with self.assertRaises(BadRequest):
            await bot._deliver(update, _context(), [refresh([], "")])

    async def test_failed_notification_is_not_fatal(self) -> None:
        msg = DummyMessage()
        update = _message_update(msg, chat=PRIVATE_CHAT)
        context = _context()
        context.bot.send_message.side_effect = RuntimeError("bot was blocked by the user")

        await bot._deliver(update, context, [message("to payee", chat_id=10), message("to caller")])

        context.bot.send_message.assert_awaited_once()
        msg.reply_text.assert_awaited_once_with("to caller", reply_markup=None)


class TelegramBotTests(IsolatedAsyncioTestCase):
    async def test_add_expense_starts_flow_in_group(self) -> None:
        msg = DummyMessage("/addexpense")
        flow = AsyncMock()
        flow.start.return_value = [message("Step 1")]

        await bot.add_expense(_message_update(msg), _context(expense_flow=flow))

        flow.start.assert_awaited_once_with(11, GROUP_CHAT.id, is_group=True)
        msg.reply_text.assert_awaited_once_with("Step 1", reply_markup=None)

    async def test_add_expense_in_private_chat_is_flagged(self) -> None:
        flow = AsyncMock()
        flow.start.return_value = [message("group only")]

        await bot.add_expense(_message_update(DummyMessage("/addexpense"), chat=PRIVATE_CHAT), _context(expense_flow=flow))

        flow.start.assert_awaited_once_with(11, PRIVATE_CHAT.id, is_group=False)

    async def test_expense_callbacks_are_routed(self) -> None:
        flow = AsyncMock()
        for method in ("skip", "toggle_participant", "finish_selection", "choose_payer", "choose_split"):
            getattr(flow, method).return_value = []
        context = _context(expense_flow=flow)

        await bot.expense_callback(_callback_update(DummyCallbackQuery("expense_skip:location")), context)
        await bot.expense_callback(_callback_update(DummyCallbackQuery("expense_user:all")), context)
        await bot.expense_callback(_callback_update(DummyCallbackQuery("expense_users_done")), context)
        await bot.expense_callback(_callback_update(DummyCallbackQuery("expense_paidby:12")), context)
        await bot.expense_callback(_callback_update(DummyCallbackQuery("expense_split:custom")), context)

        flow.skip.assert_awaited_once_with(11, "location")
        flow.toggle_participant.assert_awaited_once_with(11, "all")
        flow.finish_selection.assert_awaited_once_with(11)
        flow.choose_payer.assert_awaited_once_with(11, "12")
        flow.choose_split.assert_awaited_once_with(11, "custom", origin_chat_id=GROUP_CHAT.id)

    async def test_payment_callbacks_are_routed(self) -> None:
        flow = AsyncMock()
        for method in ("select", "confirm", "skip", "cancel"):
            getattr(flow, method).return_value = []
        context = _context(payment_flow=flow)

        await bot.payment_callback(_callback_update(DummyCallbackQuery("markpaid:5")), context)
        await bot.payment_callback(_callback_update(DummyCallbackQuery("confirmpaid:5")), context)
        await bot.payment_callback(_callback_update(DummyCallbackQuery("pay_skip:5")), context)
        await bot.payment_callback(_callback_update(DummyCallbackQuery("cancel_payment")), context)
        query = DummyCallbackQuery("markpaid:not-a-number")
        await bot.payment_callback(_callback_update(query), context)

        flow.select.assert_awaited_once_with(11, 5)
        flow.confirm.assert_awaited_once_with(11, 5)
        flow.skip.assert_awaited_once_with(11, 5)
        flow.cancel.assert_awaited_once_with(11)
        query.answer.assert_awaited_once_with()

    async def test_text_without_session_gets_no_reply(self) -> None:
        msg = DummyMessage("just chatting")
        flow = AsyncMock()
        flow.handle_text.return_value = None

        await bot.conversation_text(_message_update(msg), _context(expense_flow=flow))

        flow.handle_text.assert_awaited_once_with(11, GROUP_CHAT.id, "just chatting")
        msg.reply_text.assert_not_awaited()

    async def test_photo_goes_to_payment_flow_first(self) -> None:
        msg = DummyMessage(photo=[DummyPhoto(b"small", "small"), DummyPhoto(b"large-bytes", "large")])
        payments = AsyncMock()
        payments.handle_photo.return_value = None
        expenses = AsyncMock()
        expenses.handle_photo.return_value = [message("Step 5")]

        await bot.conversation_photo(_message_update(msg), _context(payment_flow=payments, expense_flow=expenses))

        payments.handle_photo.assert_awaited_once()
        upload = expenses.handle_photo.await_args.args[1]
        self.assertEqual(upload.file_id, "large")
        self.assertEqual(await upload.fetch(), b"large-bytes")
        msg.reply_text.assert_awaited_once_with("Step 5", reply_markup=None)

    async def test_photo_claimed_by_payment_flow(self) -> None:
        msg = DummyMessage(photo=[DummyPhoto(b"slip")])
        payments = AsyncMock()
        payments.handle_photo.return_value = [message("✅ Payment marked as complete!")]
        expenses = AsyncMock()

        await bot.conversation_photo(_message_update(msg), _context(payment_flow=payments, expense_flow=expenses))

        expenses.handle_photo.assert_not_awaited()

    async def test_photo_reaches_expense_while_payment_awaits_confirmation(self) -> None:
        store = InMemorySessionStore()
        expenses_repo = expense_sessions(store)
        payments_repo = payment_sessions(store)
        ledger = InMemoryLedger()
        blobs = InMemoryBlobStore()
        await payments_repo.start(PaymentKey(11), ConfirmStep(split_id=7))
        await expenses_repo.start(ExpenseKey(11), PhotoStep(group_id=GROUP_CHAT.id, amount=Decimal("90")))
        context = _context(
            payment_flow=PaymentFlow(payments_repo, ledger, blobs),
            expense_flow=ExpenseFlow(expenses_repo, ledger, blobs),
        )
        msg = DummyMessage(photo=[DummyPhoto(b"bill", "bill")])

        await bot.conversation_photo(_message_update(msg), context)

        expense = await expenses_repo.load(ExpenseKey(11))
        self.assertEqual(expense.step, "vendor_slip")
        self.assertEqual(blobs.objects[expense.photo_ref][0], b"bill")
        self.assertEqual((await payments_repo.load(PaymentKey(11))).step, "confirm")
        self.assertIn("Step 5", msg.reply_text.await_args.args[0])

    async def test_my_expenses_lists_total(self) -> None:
        msg = DummyMessage("/myexpenses")
        ledger = AsyncMock()
        ledger.list_unpaid_splits.return_value = [
            UnpaidSplitRead(
                split_id=1, expense_id=1, group_id=-100500, group_expense_number=3,
                debtor_id=11, payee_id=10, amount=Decimal("100"), description="Dinner",
            ),
            UnpaidSplitRead(
                split_id=2, expense_id=2, group_id=-100500, group_expense_number=4,
                debtor_id=11, payee_id=10, amount=Decimal("1250.5"),
            ),
        ]

        await bot.my_expenses(_message_update(msg), _context(ledger=ledger))

        ledger.list_unpaid_splits.assert_awaited_once_with(11, group_id=GROUP_CHAT.id)
        text = msg.reply_text.await_args.args[0]
        self.assertIn("#3 - 100.00 (Dinner)", text)
        self.assertIn("Total owed: 1,350.50", text)

    async def test_register_replied_to_user(self) -> None:
        target = _user(12, username="bob", first_name="Bob")
        msg = DummyMessage("/register", reply_to_message=SimpleNamespace(from_user=target))
        services = MagicMock()
        services.ensure_user = AsyncMock(return_value=SimpleNamespace(display_name=lambda: "Bob"))
        services.register_member = AsyncMock(return_value=True)

        with patch.object(bot, "SessionLocal", MagicMock()), patch.object(bot, "user_service", services):
            await bot.register(_message_update(msg), _context())

        payload = services.ensure_user.await_args.args[1]
        self.assertEqual(payload.telegram_id, 12)
        services.register_member.assert_awaited_once()
        self.assertEqual(
            services.register_member.await_args.kwargs,
            {"group_id": GROUP_CHAT.id, "user_id": 12, "registered_by": 11},
        )
        msg.reply_text.assert_awaited_once_with("✅ Bob is now registered in this group.")

    async def test_register_requires_group(self) -> None:
        msg = DummyMessage("/register")

        await bot.register(_message_update(msg, chat=PRIVATE_CHAT), _context())

        self.assertIn("inside the group", msg.reply_text.await_args.args[0])

    async def test_set_account_requires_details(self) -> None:
        msg = DummyMessage("/setaccount")

        await bot.set_account(_message_update(msg, chat=PRIVATE_CHAT), _context())

        self.assertIn("Usage: /setaccount", msg.reply_text.await_args.args[0])

    async def test_set_account_stores_details(self) -> None:
        msg = DummyMessage("/setaccount BCA 123")
        context = _context()
        context.args = ["BCA", "123"]
        services = MagicMock()
        services.ensure_user = AsyncMock()
        services.set_account_details = AsyncMock()

        with patch.object(bot, "SessionLocal", MagicMock()), patch.object(bot, "user_service", services):
            await bot.set_account(_message_update(msg, chat=PRIVATE_CHAT), context)

        self.assertEqual(services.set_account_details.await_args.args[1:], (11, "BCA 123"))
        self.assertIn("Payment details saved", msg.reply_text.await_args.args[0])

    async def test_auto_register_ignores_private_chats_and_bots(self) -> None:
        services = MagicMock()
        services.ensure_user = AsyncMock()
        services.register_member = AsyncMock(return_value=False)

        with patch.object(bot, "SessionLocal", MagicMock()), patch.object(bot, "user_service", services):
            await bot.auto_register(_message_update(DummyMessage("hi"), chat=PRIVATE_CHAT), _context())
            await bot.auto_register(_message_update(DummyMessage("hi"), user=_user(99, is_bot=True)), _context())
            services.ensure_user.assert_not_awaited()

            await bot.auto_register(_message_update(DummyMessage("hi")), _context())

        services.register_member.assert_awaited_once()

    async def test_auto_register_failure_does_not_raise(self) -> None:
        services = MagicMock()
        services.ensure_user = AsyncMock(side_effect=RuntimeError("db down"))

        with patch.object(bot, "SessionLocal", MagicMock()), patch.object(bot, "user_service", services):
            await bot.auto_register(_message_update(DummyMessage("hi")), _context())


class BotLifecycleTests(IsolatedAsyncioTestCase):
    async def test_handle_update_requires_initialised_bot(self) -> None:
        with patch.object(bot, "_application", None):
            with self.assertRaises(RuntimeError):
                await bot.handle_update({"update_id": 1})

    async def test_init_bot_skips_without_token(self) -> None:
        settings = SimpleNamespace(telegram_bot_token=None, telegram_webhook_secret=None)
        with patch.object(bot, "get_settings", return_value=settings), patch.object(
            bot, "_create_application"
        ) as create:
            await bot.init_bot()
        create.assert_not_called()

    async def test_daily_reminder_is_scheduled(self) -> None:
        application = SimpleNamespace(job_queue=MagicMock())
        settings = SimpleNamespace(reminders_enabled=True, reminder_time=time(hour=9))

        bot._schedule_reminders(application, settings)

        application.job_queue.run_daily.assert_called_once_with(
            bot.reminder_job, time=time(hour=9), name="daily-reminders"
        )

    async def test_reminders_need_a_job_queue(self) -> None:
        settings = SimpleNamespace(reminders_enabled=True, reminder_time=time(hour=9))

        with self.assertLogs("splitbot.telegram.bot", level="WARNING"):
            bot._schedule_reminders(SimpleNamespace(job_queue=None), settings)

    async def test_reminders_can_be_switched_off(self) -> None:
        application = SimpleNamespace(job_queue=MagicMock())

        bot._schedule_reminders(application, SimpleNamespace(reminders_enabled=False))

        application.job_queue.run_daily.assert_not_called()
