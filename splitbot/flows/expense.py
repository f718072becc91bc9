"""Multi-step expense creation.

amount -> description -> location -> photo -> vendor_slip -> users -> paid_by
-> split_type -> (custom_splits) -> commit

Every handler loads the caller's session, ignores events meant for another
step, and writes the session back at most once.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from decimal import Decimal
from typing import Optional

from ..blobs import BlobStore
from ..ledger import Ledger
from ..models.expense import SplitType
from ..schemas.user import MemberRead
from ..sessions import (
    AmountStep,
    CustomSplitsStep,
    DescriptionStep,
    ExpenseKey,
    ExpenseSessions,
    LocationStep,
    PaidByStep,
    PhotoStep,
    SessionConflict,
    SessionError,
    SessionExpired,
    SplitTypeStep,
    UsersStep,
    VendorSlipStep,
    advance,
)
from ..telegram.helpers import check_amount, format_amount, is_skip, parse_amount_token, parse_positive_amount
from .commit import commit_expense, member_name
from .replies import Button, Keyboard, PhotoUpload, Reply, message, refresh, toast

logger = logging.getLogger(__name__)

SKIP_PREFIX = "expense_skip:"
USER_PREFIX = "expense_user:"
USERS_DONE = "expense_users_done"
PAID_BY_PREFIX = "expense_paidby:"
SPLIT_PREFIX = "expense_split:"
SELECT_ALL = "all"

SPLIT_TOLERANCE = Decimal("0.01")
# column widths of expenses.description / expenses.location
MAX_DESCRIPTION_LENGTH = 512
MAX_LOCATION_LENGTH = 255

EXPIRED_TEXT = "Session expired. Please start again with /addexpense."
CONFLICT_TEXT = "Another update was processed at the same time. Please repeat your last action."
SAVING_TEXT = "⏳ This expense is already being saved."
SPLIT_EXAMPLE = "Example: 123456 50.00"
SPLIT_FORMAT_HINT = f"Format: user_id amount\n{SPLIT_EXAMPLE}"


class SplitLineError(ValueError):
    """A custom split line that cannot be recorded."""


def parse_split_line(line: str, selected: Iterable[int]) -> tuple[int, Decimal]:
    parts = line.split()
    if len(parts) != 2:
        raise SplitLineError(f"Invalid format. Use: user_id amount\n{SPLIT_EXAMPLE}")
    raw_id, raw_amount = parts
    try:
        participant_id = int(raw_id)
    except ValueError as exc:
        raise SplitLineError(f"Invalid participant id '{raw_id}'. Use the numeric ID shown in the list.") from exc
    try:
        amount = parse_amount_token(raw_amount)
    except ValueError as exc:
        raise SplitLineError(f"Invalid amount '{raw_amount}'. Enter a number like 50.00.") from exc
    try:
        check_amount(amount)
    except ValueError as exc:
        raise SplitLineError(str(exc)) from exc
    if participant_id not in set(selected):
        raise SplitLineError(f"User {participant_id} is not in the selected participants.")
    return participant_id, amount


def _skip_keyboard(field: str) -> Keyboard:
    return [[Button("Skip", f"{SKIP_PREFIX}{field}")]]


def _too_long(label: str, limit: int, field: str) -> Reply:
    return message(
        f"{label} is too long (max {limit} characters). Please send a shorter one or tap Skip.",
        _skip_keyboard(field),
    )


def participant_keyboard(members: list[MemberRead], selected: set[int]) -> Keyboard:
    rows: Keyboard = []
    row: list[Button] = []
    for member in members:
        mark = "✓" if member.user_id in selected else "○"
        row.append(Button(f"{mark} {member.display_name}", f"{USER_PREFIX}{member.user_id}"))
        if len(row) == 2:
            rows.append(row)
            row = []
    if row:
        rows.append(row)
    rows.append([Button("All Users", f"{USER_PREFIX}{SELECT_ALL}")])
    rows.append([Button("Continue", USERS_DONE)])
    return rows


def payer_keyboard(members: list[MemberRead], current_user_id: int) -> Keyboard:
    rows: Keyboard = []
    row: list[Button] = []
    for member in members:
        label = f"{member.display_name} (You)" if member.user_id == current_user_id else member.display_name
        row.append(Button(label, f"{PAID_BY_PREFIX}{member.user_id}"))
        if len(row) == 2:
            rows.append(row)
            row = []
    if row:
        rows.append(row)
    return rows


SPLIT_TYPE_KEYBOARD: Keyboard = [
    [Button("Equal Split", f"{SPLIT_PREFIX}{SplitType.EQUAL.value}")],
    [Button("Custom Split", f"{SPLIT_PREFIX}{SplitType.CUSTOM.value}")],
]


class ExpenseFlow:
    def __init__(
        self,
        sessions: ExpenseSessions,
        ledger: Ledger,
        blobs: BlobStore,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.sessions = sessions
        self.ledger = ledger
        self.blobs = blobs
        self.clock = clock

    # -- persistence helpers -------------------------------------------------

    @staticmethod
    def _failure(exc: SessionError, *, as_toast: bool = False) -> list[Reply]:
        text = EXPIRED_TEXT if isinstance(exc, SessionExpired) else CONFLICT_TEXT
        return [toast(text, alert=True) if as_toast else message(text)]

    async def _save(self, key: ExpenseKey, session, *, as_toast: bool = False) -> Optional[list[Reply]]:
        """Write the session back; returns the replies to send instead when that fails."""
        try:
            await self.sessions.save(key, session)
        except (SessionExpired, SessionConflict) as exc:
            return self._failure(exc, as_toast=as_toast)
        return None

    async def _commit(
        self,
        key: ExpenseKey,
        session: SplitTypeStep,
        *,
        split_type: SplitType,
        origin_chat_id: Optional[int],
        as_toast: bool = False,
    ) -> list[Reply]:
        """Claim the session, then write it to the ledger."""
        try:
            claimed = await self.sessions.save(key, session.model_copy(update={"committing": True}))
        except SessionExpired as exc:
            return self._failure(exc, as_toast=as_toast)
        except SessionConflict:
            return [toast(SAVING_TEXT) if as_toast else message(SAVING_TEXT)]
        return await commit_expense(
            self.ledger,
            self.sessions,
            key,
            claimed,
            split_type=split_type,
            origin_chat_id=origin_chat_id,
        )

    async def _store_upload(self, folder: str, group_id: int, upload: PhotoUpload) -> tuple[Optional[str], list[Reply]]:
        blob_key = f"{folder}/{group_id}/{int(self.clock() * 1000)}_{upload.file_id}.jpg"
        try:
            data = await upload.fetch()
            await self.blobs.put(blob_key, data, "image/jpeg")
        except Exception:
            logger.warning("Could not store %s photo for group %s", folder, group_id, exc_info=True)
            return None, [message("⚠️ Could not save that photo. Continuing without it.")]
        return blob_key, []

    # -- entry ---------------------------------------------------------------

    async def start(self, user_id: int, chat_id: int, *, is_group: bool) -> list[Reply]:
        if not is_group:
            return [message("This command can only be used in group chats.")]
        members = await self.ledger.get_group_members(chat_id)
        if all(member.user_id != user_id for member in members):
            return [
                message(
                    "You need to be registered first.\n\n"
                    "Use /register, or ask someone to reply to your message with /register."
                )
            ]
        await self.sessions.start(ExpenseKey(user_id), AmountStep(group_id=chat_id))
        logger.info("User %s started an expense in group %s", user_id, chat_id)
        return [message("💰 Let's add a new expense!\n\nStep 1: Please enter the total amount (just the number):")]

    # -- free text -----------------------------------------------------------

    async def handle_text(self, user_id: int, chat_id: int, text: str) -> Optional[list[Reply]]:
        """Route a text message. Returns None when the user has no expense in progress."""
        key = ExpenseKey(user_id)
        session = await self.sessions.load(key)
        if session is None:
            return None
        if session.step == "amount":
            return await self._on_amount(key, session, text)
        if session.step == "description":
            if is_skip(text):
                return await self._on_description(key, session, None)
            if len(text) > MAX_DESCRIPTION_LENGTH:
                return [_too_long("Description", MAX_DESCRIPTION_LENGTH, "description")]
            return await self._on_description(key, session, text)
        if session.step == "location":
            if is_skip(text):
                return await self._on_location(key, session, None)
            if len(text) > MAX_LOCATION_LENGTH:
                return [_too_long("Location", MAX_LOCATION_LENGTH, "location")]
            return await self._on_location(key, session, text)
        if session.step == "photo" and is_skip(text):
            return await self._on_photo(key, session, None)
        if session.step == "vendor_slip" and is_skip(text):
            return await self._on_vendor_slip(key, session, None)
        if session.step == "custom_splits":
            if session.committing:
                return [message(SAVING_TEXT)]
            return await self._on_custom_splits(key, session, text, origin_chat_id=chat_id)
        return []

    async def _on_amount(self, key: ExpenseKey, session: AmountStep, text: str) -> list[Reply]:
        try:
            amount = parse_positive_amount(text)
        except ValueError:
            return [message("Please enter a valid positive number.")]
        failure = await self._save(key, advance(session, DescriptionStep, amount=amount))
        if failure:
            return failure
        return [
            message(
                f"Amount: {format_amount(amount)}\n\nStep 2: Please enter a description for this expense:",
                _skip_keyboard("description"),
            )
        ]

    async def _on_description(
        self, key: ExpenseKey, session: DescriptionStep, description: Optional[str], *, as_toast: bool = False
    ) -> list[Reply]:
        failure = await self._save(key, advance(session, LocationStep, description=description), as_toast=as_toast)
        if failure:
            return failure
        return [message("Step 3: Where was this expense? (location)", _skip_keyboard("location"))]

    async def _on_location(
        self, key: ExpenseKey, session: LocationStep, location: Optional[str], *, as_toast: bool = False
    ) -> list[Reply]:
        failure = await self._save(key, advance(session, PhotoStep, location=location), as_toast=as_toast)
        if failure:
            return failure
        return [message("Step 4: Send a photo of the bill/receipt (optional)", _skip_keyboard("photo"))]

    # -- photos --------------------------------------------------------------

    async def handle_photo(self, user_id: int, upload: PhotoUpload) -> Optional[list[Reply]]:
        key = ExpenseKey(user_id)
        session = await self.sessions.load(key)
        if session is None:
            return None
        if session.step == "photo":
            return await self._on_photo(key, session, upload)
        if session.step == "vendor_slip":
            return await self._on_vendor_slip(key, session, upload)
        return []

    async def _on_photo(
        self, key: ExpenseKey, session: PhotoStep, upload: Optional[PhotoUpload], *, as_toast: bool = False
    ) -> list[Reply]:
        photo_ref, warnings = None, []
        if upload is not None:
            photo_ref, warnings = await self._store_upload("bills", session.group_id, upload)
        failure = await self._save(key, advance(session, VendorSlipStep, photo_ref=photo_ref), as_toast=as_toast)
        if failure:
            return warnings + failure
        return warnings + [
            message(
                "Step 5: Send a photo of the vendor payment slip (optional)",
                _skip_keyboard("vendor_slip"),
            )
        ]

    async def _on_vendor_slip(
        self, key: ExpenseKey, session: VendorSlipStep, upload: Optional[PhotoUpload], *, as_toast: bool = False
    ) -> list[Reply]:
        slip_ref, warnings = None, []
        if upload is not None:
            slip_ref, warnings = await self._store_upload("vendor_slips", session.group_id, upload)

        members = await self.ledger.get_group_members(session.group_id)
        if not members:
            await self.sessions.delete(key)
            return warnings + [
                message("No users registered in this group. Please register users first with /register.")
            ]

        updated = advance(session, UsersStep, vendor_slip_ref=slip_ref, selected=set())
        failure = await self._save(key, updated, as_toast=as_toast)
        if failure:
            return warnings + failure
        return warnings + [
            message(
                "Step 6: Select the users to split this expense with:\n\n"
                "(Tap users to toggle selection, then tap Continue)",
                participant_keyboard(members, updated.selected),
            )
        ]

    # -- buttons -------------------------------------------------------------

    async def skip(self, user_id: int, field: str) -> list[Reply]:
        key = ExpenseKey(user_id)
        session = await self.sessions.load(key)
        if session is None:
            return [toast(EXPIRED_TEXT, alert=True)]
        if session.step != field:
            return []
        if field == "description":
            return await self._on_description(key, session, None, as_toast=True)
        if field == "location":
            return await self._on_location(key, session, None, as_toast=True)
        if field == "photo":
            return await self._on_photo(key, session, None, as_toast=True)
        if field == "vendor_slip":
            return await self._on_vendor_slip(key, session, None, as_toast=True)
        return []

    async def toggle_participant(self, user_id: int, target: str) -> list[Reply]:
        key = ExpenseKey(user_id)
        session = await self.sessions.load(key)
        if session is None:
            return [toast(EXPIRED_TEXT, alert=True)]
        if session.step != "users":
            return []

        members = await self.ledger.get_group_members(session.group_id)
        member_ids = {member.user_id for member in members}
        if target == SELECT_ALL:
            selected = set(member_ids)
        else:
            try:
                participant_id = int(target)
            except ValueError:
                return []
            if participant_id not in member_ids:
                return [toast("That user is not registered in this group.", alert=True)]
            selected = set(session.selected) ^ {participant_id}

        failure = await self._save(key, session.model_copy(update={"selected": selected}), as_toast=True)
        if failure:
            return failure
        return [refresh(participant_keyboard(members, selected), f"{len(selected)} user(s) selected")]

    async def finish_selection(self, user_id: int) -> list[Reply]:
        key = ExpenseKey(user_id)
        session = await self.sessions.load(key)
        if session is None:
            return [toast(EXPIRED_TEXT, alert=True)]
        if session.step != "users":
            return []
        if not session.selected:
            return [toast("Please select at least one user", alert=True)]

        failure = await self._save(key, advance(session, PaidByStep), as_toast=True)
        if failure:
            return failure
        members = await self.ledger.get_group_members(session.group_id)
        return [
            message(
                f"Selected {len(session.selected)} user(s) to split with.\n\nStep 7: Who paid the full amount?",
                payer_keyboard(members, user_id),
            )
        ]

    async def choose_payer(self, user_id: int, payer: str) -> list[Reply]:
        key = ExpenseKey(user_id)
        session = await self.sessions.load(key)
        if session is None:
            return [toast(EXPIRED_TEXT, alert=True)]
        if session.step != "paid_by":
            return []
        try:
            payer_id = int(payer)
        except ValueError:
            return []

        members = {member.user_id: member for member in await self.ledger.get_group_members(session.group_id)}
        if payer_id not in members:
            return [toast("Only registered members of this group can be selected as payer.", alert=True)]

        failure = await self._save(key, advance(session, SplitTypeStep, paid_by=payer_id), as_toast=True)
        if failure:
            return failure
        return [
            message(
                f"Paid by: {member_name(members, payer_id)}\n\nStep 8: How should the bill be split?",
                SPLIT_TYPE_KEYBOARD,
            )
        ]

    async def choose_split(
        self, user_id: int, split_type: str, *, origin_chat_id: Optional[int] = None
    ) -> list[Reply]:
        key = ExpenseKey(user_id)
        session = await self.sessions.load(key)
        if session is None:
            return [toast(EXPIRED_TEXT, alert=True)]
        if session.step != "split_type":
            return []
        if session.committing:
            return [toast(SAVING_TEXT)]
        try:
            chosen = SplitType(split_type)
        except ValueError:
            return []

        if chosen is SplitType.EQUAL:
            return await self._commit(
                key, session, split_type=SplitType.EQUAL, origin_chat_id=origin_chat_id, as_toast=True
            )

        debtors = sorted(uid for uid in session.selected if uid != session.paid_by)
        if not debtors:
            return [toast("A custom split needs at least one user besides the payer.", alert=True)]
        failure = await self._save(key, advance(session, CustomSplitsStep, custom_splits={}), as_toast=True)
        if failure:
            return failure

        members = {member.user_id: member for member in await self.ledger.get_group_members(session.group_id)}
        lines = [f"Total: {format_amount(session.amount)}", "", "Please enter the amount for each person:", ""]
        for index, uid in enumerate(debtors, start=1):
            lines.append(f"{index}. {member_name(members, uid)} (ID: {uid})")
        lines.append("")
        lines.append(SPLIT_FORMAT_HINT)
        lines.append("You can send several lines at once.")
        return [message("\n".join(lines))]

    # -- custom split entry ----------------------------------------------------

    async def _on_custom_splits(
        self,
        key: ExpenseKey,
        session: CustomSplitsStep,
        text: str,
        *,
        origin_chat_id: Optional[int] = None,
    ) -> list[Reply]:
        lines = [line.strip() for line in text.splitlines() if line.strip()]
        if not lines:
            return [message(f"Invalid format. Use: user_id amount\n{SPLIT_EXAMPLE}")]

        replies: list[Reply] = []
        entries = dict(session.custom_splits)
        recorded = 0
        for line in lines:
            try:
                participant_id, amount = parse_split_line(line, session.selected)
            except SplitLineError as exc:
                prefix = f"'{line}': " if len(lines) > 1 else ""
                replies.append(message(f"{prefix}{exc}"))
                continue
            entries[participant_id] = amount
            recorded += 1
        if not recorded:
            return replies

        try:
            updated = await self.sessions.save(key, session.model_copy(update={"custom_splits": entries}))
        except (SessionExpired, SessionConflict) as exc:
            return replies + self._failure(exc)

        members = {member.user_id: member for member in await self.ledger.get_group_members(session.group_id)}
        missing = [uid for uid in sorted(session.selected) if uid != session.paid_by and uid not in entries]
        if missing:
            names = ", ".join(member_name(members, uid) for uid in missing)
            replies.append(
                message(
                    f"✓ {recorded} amount(s) recorded\n\nRemaining users: {names}\n\n"
                    "Continue entering amounts (user_id amount)"
                )
            )
            return replies

        total = sum((amount for uid, amount in entries.items() if uid != session.paid_by), Decimal("0"))
        if abs(total - session.amount) > SPLIT_TOLERANCE:
            replies.append(
                message(
                    f"⚠️ Custom splits total ({format_amount(total)}) doesn't match "
                    f"expense amount ({format_amount(session.amount)}).\n\n"
                    "Please re-enter the amounts that are wrong (user_id amount); "
                    "a new amount replaces the previous one."
                )
            )
            return replies

        return replies + await self._commit(
            key, updated, split_type=SplitType.CUSTOM, origin_chat_id=origin_chat_id
        )
