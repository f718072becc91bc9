from __future__ import annotations

import hashlib
import hmac
import json
import time
import unittest
from types import SimpleNamespace
from unittest.mock import patch
from urllib.parse import urlencode

from splitbot.services import auth

BOT_TOKEN = "123456:TEST-TOKEN"


def sign_init_data(fields: dict[str, str], bot_token: str = BOT_TOKEN) -> str:
    """Build an init data query string the way Telegram signs it."""
    check_string = "\n".join(f"{key}={value}" for key, value in sorted(fields.items()))
    secret = hmac.new(b"WebAppData", bot_token.encode(), hashlib.sha256).digest()
    signed = dict(fields, hash=hmac.new(secret, check_string.encode(), hashlib.sha256).hexdigest())
    return urlencode(signed)


def init_data_for(user_id: int, *, auth_date: int | None = None) -> str:
    return sign_init_data(
        {
            "query_id": "AAHdF6IQAAAAAN0XohDhrOrc",
            "user": json.dumps({"id": user_id, "first_name": "Alice", "username": "alice"}),
            "auth_date": str(auth_date if auth_date is not None else int(time.time())),
        }
    )


class VerifyInitDataTests(unittest.TestCase):
    def setUp(self) -> None:
        settings = SimpleNamespace(telegram_bot_token=BOT_TOKEN, webapp_init_data_max_age_seconds=3600)
        patcher = patch.object(auth, "get_settings", return_value=settings)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_valid_init_data(self) -> None:
        session = auth.verify_init_data(init_data_for(11))

        self.assertEqual(session.user.id, 11)
        self.assertEqual(session.user.full_name(), "Alice")

    def test_tampered_payload_is_rejected(self) -> None:
        raw = init_data_for(11).replace("alice", "mallory")
        with self.assertRaises(auth.WebAppAuthenticationError):
            auth.verify_init_data(raw)

    def test_other_bot_signature_is_rejected(self) -> None:
        raw = sign_init_data({"user": json.dumps({"id": 11}), "auth_date": str(int(time.time()))}, "999:OTHER")
        with self.assertRaises(auth.WebAppAuthenticationError):
            auth.verify_init_data(raw)

    def test_stale_init_data_is_rejected(self) -> None:
        with self.assertRaises(auth.WebAppAuthenticationError):
            auth.verify_init_data(init_data_for(11, auth_date=int(time.time()) - 7200))

    def test_missing_hash_or_user(self) -> None:
        with self.assertRaises(auth.WebAppAuthenticationError):
            auth.verify_init_data("auth_date=1&user=%7B%7D")
        with self.assertRaises(auth.WebAppAuthenticationError):
            auth.verify_init_data(sign_init_data({"auth_date": str(int(time.time()))}))
        with self.assertRaises(auth.WebAppAuthenticationError):
            auth.verify_init_data("")
