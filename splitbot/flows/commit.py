"""Terminal writes that turn a finished conversation into ledger records.

Both commits run their ledger writes in one transaction. The session is only
deleted after that transaction succeeded; on failure it stays so the user can
retry the last step.

An expense is claimed before it is written: the flow saves the session with
``committing`` set, so a second press of the same button either loses the
version race or finds the claim, and never writes a duplicate. Payments need no
claim because marking a split paid is itself conditional.
"""

from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from ..ledger import Ledger
from ..models.expense import SplitType
from ..schemas.expense import ExpenseCreate
from ..schemas.user import MemberRead
from ..sessions import (
    CustomSplitsStep,
    ExpenseKey,
    ExpenseSessions,
    PaymentKey,
    PaymentSessions,
    SessionError,
    SplitTypeStep,
)
from ..telegram.helpers import format_amount
from .replies import Reply, message

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


class SplitUnavailable(Exception):
    """The split is gone, already paid, or owed by someone else."""


def member_name(members: dict[int, MemberRead], user_id: int) -> str:
    member = members.get(user_id)
    return member.display_name if member else f"User {user_id}"


def compute_shares(session: SplitTypeStep, split_type: SplitType) -> dict[int, Decimal]:
    """Owed amount per participant, payer excluded.

    Equal splits divide by everyone selected, payer included: the payer's own
    share is absorbed into what they fronted.
    """
    if split_type is SplitType.EQUAL:
        per_head = (session.amount / len(session.selected)).quantize(CENT, rounding=ROUND_HALF_UP)
        return {uid: per_head for uid in sorted(session.selected) if uid != session.paid_by}
    if not isinstance(session, CustomSplitsStep):
        raise TypeError("custom shares need the entered split map")
    return {
        uid: amount
        for uid, amount in sorted(session.custom_splits.items())
        if uid != session.paid_by
    }


async def _delete_session(sessions, key) -> None:
    try:
        await sessions.delete(key)
    except Exception:
        logger.exception("Committed, but could not clear session %s", key.render())


async def _release_claim(sessions: ExpenseSessions, key: ExpenseKey, session: SplitTypeStep) -> None:
    try:
        await sessions.save(key, session.model_copy(update={"committing": False}))
    except SessionError:
        logger.warning("Could not release commit claim on session %s", key.render(), exc_info=True)


async def commit_expense(
    ledger: Ledger,
    sessions: ExpenseSessions,
    key: ExpenseKey,
    session: SplitTypeStep,
    *,
    split_type: SplitType,
    origin_chat_id: Optional[int],
) -> list[Reply]:
    """Write the expense and its splits for a session the caller has claimed.

    ``session`` must be the claimed copy returned by the repository (``committing``
    set, current version). On failure the claim is released so the user can retry.
    """
    shares = compute_shares(session, split_type)
    payload = ExpenseCreate(
        group_id=session.group_id,
        created_by=key.user_id,
        paid_by=session.paid_by,
        amount=session.amount,
        description=session.description,
        location=session.location,
        photo_ref=session.photo_ref,
        vendor_slip_ref=session.vendor_slip_ref,
        split_type=split_type,
    )
    try:
        async with ledger.transaction() as tx:
            created = await tx.create_expense(payload)
            for participant_id, amount in shares.items():
                await tx.create_split(created.id, participant_id, amount)
    except Exception:
        logger.exception("Failed to save expense for group %s", session.group_id)
        await _release_claim(sessions, key, session)
        return [
            message(
                "❌ Could not save the expense. Your answers are kept, "
                "please try the last step again in a moment."
            )
        ]

    await _delete_session(sessions, key)
    logger.info(
        "Expense #%s saved in group %s with %d split(s)",
        created.group_expense_number,
        session.group_id,
        len(shares),
    )

    try:
        members = {m.user_id: m for m in await ledger.get_group_members(session.group_id)}
    except Exception:
        logger.warning("Could not load member names for group %s", session.group_id, exc_info=True)
        members = {}

    lines = [
        f"✅ Expense #{created.group_expense_number} added successfully!",
        "",
        f"💰 Total Amount: {format_amount(session.amount)}",
        f"💳 Paid by: {member_name(members, session.paid_by)}",
    ]
    if session.description:
        lines.append(f"📝 Description: {session.description}")
    if session.location:
        lines.append(f"📍 Location: {session.location}")
    if session.photo_ref:
        lines.append("📷 Bill photo attached")
    if session.vendor_slip_ref:
        lines.append("🧾 Vendor payment slip attached")
    lines.append("")
    lines.append(f"👥 To be paid by {len(shares)} user(s):")
    for participant_id, amount in shares.items():
        lines.append(f"  • {member_name(members, participant_id)}: {format_amount(amount)}")
    text = "\n".join(lines)

    replies = [message(text)]
    if origin_chat_id != session.group_id:
        replies.append(message(text, chat_id=session.group_id))
    return replies


async def commit_payment(
    ledger: Ledger,
    sessions: PaymentSessions,
    key: PaymentKey,
    split_id: int,
    *,
    proof_ref: Optional[str] = None,
) -> list[Reply]:
    try:
        async with ledger.transaction() as tx:
            split = await tx.get_unpaid_split(split_id)
            if split is None or split.debtor_id != key.user_id:
                raise SplitUnavailable(split_id)
            if not await tx.mark_split_paid(split_id):
                raise SplitUnavailable(split_id)
            await tx.record_payment(split_id, key.user_id, split.payee_id, split.amount, proof_ref)
    except SplitUnavailable:
        await _delete_session(sessions, key)
        return [message("⚠️ This expense was not found or is already paid.")]
    except Exception:
        logger.exception("Failed to record payment for split %s", split_id)
        return [message("❌ Could not record the payment. Please try again in a moment.")]

    await _delete_session(sessions, key)
    logger.info("Split %s settled by %s", split_id, key.user_id)

    try:
        payer = await ledger.get_member(key.user_id)
        payee = await ledger.get_member(split.payee_id)
    except Exception:
        logger.warning("Could not load names for split %s", split_id, exc_info=True)
        payer = payee = None
    payer_name = payer.display_name if payer else f"User {key.user_id}"
    payee_name = payee.display_name if payee else f"User {split.payee_id}"

    details = [f"Expense #{split.group_expense_number}", f"Amount: {format_amount(split.amount)}"]
    if split.description:
        details.append(f"Description: {split.description}")
    if proof_ref:
        details.append("Transfer slip attached")
    summary = "\n".join(details)

    return [
        message(f"✅ Payment marked as complete!\n\n{summary}\n\n{payee_name} has been notified."),
        message(f"✅ {payer_name} marked their payment as paid!\n\n{summary}", chat_id=split.payee_id),
    ]
