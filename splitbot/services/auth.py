"""Verification of the init data Telegram hands to the mini-app.

See https://core.telegram.org/bots/webapps#validating-data-received-via-the-mini-app
"""

from __future__ import annotations

import hmac
from datetime import datetime, timedelta, timezone
from hashlib import sha256
from urllib.parse import parse_qsl

from pydantic import ValidationError

from ..config import get_settings
from ..schemas.auth import WebAppSession, WebAppUser


class AuthenticationError(Exception):
    """Base exception for authentication failures."""


class WebAppAuthenticationError(AuthenticationError):
    """Raised when mini-app init data cannot be verified."""


def _build_data_check_string(fields: dict[str, str]) -> str:
    """Return the canonical string used for Telegram signature verification."""

    parts = [f"{key}={value}" for key, value in sorted(fields.items()) if key != "hash"]
    return "\n".join(parts)


def _verify_signature(fields: dict[str, str], bot_token: str) -> None:
    if not bot_token:
        raise WebAppAuthenticationError("Telegram bot token is not configured on the server.")
    received_hash = fields.get("hash")
    if not received_hash:
        raise WebAppAuthenticationError("Init data is missing its hash.")

    secret_key = hmac.new(b"WebAppData", bot_token.encode(), sha256).digest()
    check_string = _build_data_check_string(fields)
    expected_hash = hmac.new(secret_key, check_string.encode(), sha256).hexdigest()
    if not hmac.compare_digest(expected_hash, received_hash):
        raise WebAppAuthenticationError("Init data failed signature verification.")


def _ensure_fresh(session: WebAppSession, *, max_age_seconds: int) -> None:
    issued_at = session.auth_datetime()
    now = datetime.now(timezone.utc)
    if issued_at > now + timedelta(seconds=30):
        raise WebAppAuthenticationError("Init data timestamp is in the future.")
    if now - issued_at > timedelta(seconds=max_age_seconds):
        raise WebAppAuthenticationError("Init data is too old; reopen the mini-app.")


def verify_init_data(init_data: str, *, bot_token: str | None = None) -> WebAppSession:
    """Validate a raw ``initData`` query string and return the caller it vouches for."""

    settings = get_settings()
    if not init_data:
        raise WebAppAuthenticationError("Init data is missing.")
    fields = dict(parse_qsl(init_data, keep_blank_values=True))
    _verify_signature(fields, bot_token if bot_token is not None else settings.telegram_bot_token or "")

    if "user" not in fields:
        raise WebAppAuthenticationError("Init data does not identify a user.")
    try:
        session = WebAppSession(
            user=WebAppUser.model_validate_json(fields["user"]),
            auth_date=fields.get("auth_date", ""),
        )
    except ValidationError as exc:
        raise WebAppAuthenticationError("Init data is malformed.") from exc

    _ensure_fresh(session, max_age_seconds=settings.webapp_init_data_max_age_seconds)
    return session
