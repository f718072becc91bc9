"""What a conversation step wants sent back; the Telegram layer decides how."""

from __future__ import annotations

import enum
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Optional


class ReplyKind(str, enum.Enum):
    MESSAGE = "message"
    # answer the button press itself (short notice or alert)
    TOAST = "toast"
    # redraw the buttons on the message that was pressed
    REFRESH = "refresh"


@dataclass(frozen=True, slots=True)
class Button:
    label: str
    data: str


Keyboard = list[list[Button]]


@dataclass(frozen=True, slots=True)
class Reply:
    text: str = ""
    kind: ReplyKind = ReplyKind.MESSAGE
    buttons: Optional[Keyboard] = None
    chat_id: Optional[int] = None
    alert: bool = False


@dataclass(frozen=True, slots=True)
class PhotoUpload:
    """A photo sent by the user; bytes are only downloaded when a step needs them."""

    file_id: str
    fetch: Callable[[], Awaitable[bytes]]


def message(text: str, buttons: Optional[Keyboard] = None, *, chat_id: Optional[int] = None) -> Reply:
    return Reply(text=text, buttons=buttons, chat_id=chat_id)


def toast(text: str, *, alert: bool = False) -> Reply:
    return Reply(text=text, kind=ReplyKind.TOAST, alert=alert)


def refresh(buttons: Keyboard, notice: str = "") -> Reply:
    return Reply(text=notice, kind=ReplyKind.REFRESH, buttons=buttons)
