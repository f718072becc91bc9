"""Settling one debt: pick it, confirm the transfer, optionally attach a slip."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Optional

from ..blobs import BlobStore
from ..ledger import Ledger
from ..sessions import ConfirmStep, PaymentKey, PaymentSessions, ProofStep, SessionConflict, SessionExpired, advance
from ..telegram.helpers import format_amount, shorten
from .commit import commit_payment
from .replies import Button, Keyboard, PhotoUpload, Reply, message, toast

logger = logging.getLogger(__name__)

MARK_PAID_PREFIX = "markpaid:"
CONFIRM_PREFIX = "confirmpaid:"
SKIP_PREFIX = "pay_skip:"
CANCEL = "cancel_payment"
MAX_LISTED = 10

EXPIRED_TEXT = "Session expired. Please start again with /markpaid."
CONFLICT_TEXT = "Another update was processed at the same time. Please repeat your last action."
UNAVAILABLE_TEXT = "Expense not found or already paid"


class PaymentFlow:
    def __init__(
        self,
        sessions: PaymentSessions,
        ledger: Ledger,
        blobs: BlobStore,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.sessions = sessions
        self.ledger = ledger
        self.blobs = blobs
        self.clock = clock

    async def list_unpaid(self, user_id: int, *, group_id: Optional[int] = None) -> list[Reply]:
        splits = await self.ledger.list_unpaid_splits(user_id, group_id=group_id)
        if not splits:
            return [message("🎉 You have no pending expenses to mark as paid!")]

        buttons: Keyboard = []
        for split in splits[:MAX_LISTED]:
            label = f"#{split.group_expense_number} - {format_amount(split.amount)}"
            if split.description:
                label += f" ({shorten(split.description)})"
            buttons.append([Button(label, f"{MARK_PAID_PREFIX}{split.split_id}")])

        text = "💸 Select an expense to mark as paid:\n\n"
        if len(splits) > MAX_LISTED:
            text += f"Showing {MAX_LISTED} of {len(splits)} pending expenses.\nUse /myexpenses to see all.\n\n"
        return [message(text.rstrip(), buttons)]

    async def select(self, user_id: int, split_id: int) -> list[Reply]:
        split = await self.ledger.get_unpaid_split(split_id)
        if split is None or split.debtor_id != user_id:
            return [toast(UNAVAILABLE_TEXT, alert=True)]

        account = await self.ledger.get_payee_account_details(split.payee_id)
        if account is None:
            return [
                message(
                    "⚠️ The person who paid for this expense hasn't set up payment details yet.\n"
                    "Ask them to use /setaccount to add their payment information."
                )
            ]

        await self.sessions.start(PaymentKey(user_id), ConfirmStep(split_id=split_id))
        payee = await self.ledger.get_member(split.payee_id)
        payee_name = payee.display_name if payee else f"User {split.payee_id}"

        lines = [
            f"💸 Payment Details for Expense #{split.group_expense_number}:",
            "",
            f"Amount to pay: {format_amount(split.amount)}",
        ]
        if split.description:
            lines.append(f"For: {split.description}")
        lines += [
            "",
            f"Pay to: {payee_name}",
            f"{account.payment_type.title()}: {account.account_info}",
            "",
            "Once you've paid, tap the button below to mark it as paid.",
        ]
        buttons = [
            [Button("✅ I've Paid This", f"{CONFIRM_PREFIX}{split_id}")],
            [Button("❌ Cancel", CANCEL)],
        ]
        return [message("\n".join(lines), buttons)]

    async def confirm(self, user_id: int, split_id: int) -> list[Reply]:
        key = PaymentKey(user_id)
        session = await self.sessions.load(key)
        if session is None:
            return [toast(EXPIRED_TEXT, alert=True)]
        if session.step != "confirm" or session.split_id != split_id:
            return []

        split = await self.ledger.get_unpaid_split(split_id)
        if split is None or split.debtor_id != user_id:
            await self.sessions.delete(key)
            return [message(f"⚠️ {UNAVAILABLE_TEXT}.")]

        try:
            await self.sessions.save(key, advance(session, ProofStep))
        except SessionExpired:
            return [toast(EXPIRED_TEXT, alert=True)]
        except SessionConflict:
            return [toast(CONFLICT_TEXT, alert=True)]
        return [
            message(
                "📸 Send a photo of the transfer slip as proof (optional)",
                [[Button("Skip", f"{SKIP_PREFIX}{split_id}")]],
            )
        ]

    async def handle_photo(self, user_id: int, upload: PhotoUpload) -> Optional[list[Reply]]:
        """Returns None unless the user is waiting to attach a transfer slip.

        A payment still at ``confirm`` does not claim the photo, so it can go to
        an expense conversation running at the same time.
        """
        key = PaymentKey(user_id)
        session = await self.sessions.load(key)
        if session is None or session.step != "photo":
            return None

        proof_key = f"payment_slips/{session.split_id}/{int(self.clock() * 1000)}_{upload.file_id}.jpg"
        warnings: list[Reply] = []
        try:
            data = await upload.fetch()
            await self.blobs.put(proof_key, data, "image/jpeg")
        except Exception:
            logger.warning("Could not store transfer slip for split %s", session.split_id, exc_info=True)
            proof_key = None
            warnings.append(message("⚠️ Could not save the transfer slip. Recording the payment without it."))
        return warnings + await commit_payment(
            self.ledger, self.sessions, key, session.split_id, proof_ref=proof_key
        )

    async def skip(self, user_id: int, split_id: int) -> list[Reply]:
        key = PaymentKey(user_id)
        session = await self.sessions.load(key)
        if session is None:
            return [toast(EXPIRED_TEXT, alert=True)]
        if session.step != "photo" or session.split_id != split_id:
            return []
        return await commit_payment(self.ledger, self.sessions, key, split_id)

    async def cancel(self, user_id: int) -> list[Reply]:
        await self.sessions.delete(PaymentKey(user_id))
        return [toast("Cancelled"), message("Payment marking cancelled.")]
