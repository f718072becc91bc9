from __future__ import annotations

from decimal import Decimal, InvalidOperation

MAX_AMOUNT = Decimal("1000000000000")
CENT = Decimal("0.01")


def parse_amount_token(raw: str) -> Decimal:
    try:
        value = Decimal(raw.strip().replace(",", ""))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Invalid amount '{raw}'.") from exc
    if not value.is_finite():
        raise ValueError(f"Invalid amount '{raw}'.")
    return value


def check_amount(value: Decimal) -> Decimal:
    """Reject amounts the ledger cannot store exactly (Numeric(14, 2))."""
    if value <= 0:
        raise ValueError("Amount must be greater than zero.")
    if value >= MAX_AMOUNT:
        raise ValueError("Amount is too large.")
    if value != value.quantize(CENT):
        raise ValueError("Use at most two decimal places.")
    return value


def parse_positive_amount(raw: str) -> Decimal:
    return check_amount(parse_amount_token(raw))


def format_amount(amount: str | Decimal) -> str:
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        return str(amount)
    return f"{value.quantize(CENT):,}"


def shorten(text: str | None, limit: int = 20) -> str:
    if not text:
        return ""
    return text if len(text) <= limit else text[: limit - 1] + "…"


def is_skip(text: str) -> bool:
    return text.strip().casefold() == "skip"


GROUP_CHAT_TYPES = {"group", "supergroup"}


def is_group_chat(chat) -> bool:
    return chat is not None and chat.type in GROUP_CHAT_TYPES
