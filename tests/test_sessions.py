from __future__ import annotations

from decimal import Decimal
from unittest import IsolatedAsyncioTestCase, TestCase
from unittest.mock import AsyncMock, MagicMock

from splitbot.sessions import (
    AmountStep,
    ConfirmStep,
    CustomSplitsStep,
    DescriptionStep,
    ExpenseKey,
    InMemorySessionStore,
    PaymentKey,
    RedisSessionStore,
    SessionConflict,
    SessionExpired,
    advance,
    expense_sessions,
    payment_sessions,
)
from splitbot.sessions import codec
from splitbot.sessions.models import EXPENSE_SESSION_ADAPTER, PAYMENT_SESSION_ADAPTER


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class InMemorySessionStoreTests(IsolatedAsyncioTestCase):
    async def test_value_expires_after_ttl(self) -> None:
        clock = FakeClock()
        store = InMemorySessionStore(clock)
        await store.put("k", "v", 10)

        clock.now += 9
        self.assertEqual(await store.get("k"), "v")
        clock.now += 1
        self.assertIsNone(await store.get("k"))

    async def test_replace_only_when_value_matches(self) -> None:
        store = InMemorySessionStore(FakeClock())
        await store.put("k", "a", 10)

        self.assertFalse(await store.replace("k", "stale", "b", 10))
        self.assertTrue(await store.replace("k", "a", "b", 10))
        self.assertEqual(await store.get("k"), "b")

    async def test_replace_of_missing_key_expects_none(self) -> None:
        store = InMemorySessionStore(FakeClock())
        self.assertFalse(await store.replace("k", "a", "b", 10))
        self.assertTrue(await store.replace("k", None, "b", 10))

    async def test_delete_is_idempotent(self) -> None:
        store = InMemorySessionStore(FakeClock())
        await store.delete("missing")
        await store.put("k", "v", 10)
        await store.delete("k")
        self.assertIsNone(await store.get("k"))


class RedisSessionStoreTests(IsolatedAsyncioTestCase):
    def _store(self):
        client = MagicMock()
        client.set = AsyncMock()
        client.get = AsyncMock(return_value="raw")
        client.delete = AsyncMock()
        script = AsyncMock(return_value=1)
        client.register_script.return_value = script
        return RedisSessionStore(client), client, script

    async def test_put_sets_expiry(self) -> None:
        store, client, _ = self._store()
        await store.put("expense_session:1", "{}", 600)
        client.set.assert_awaited_once_with("expense_session:1", "{}", ex=600)

    async def test_replace_passes_empty_string_for_absent(self) -> None:
        store, _, script = self._store()
        self.assertTrue(await store.replace("k", None, "new", 300))
        script.assert_awaited_once_with(keys=["k"], args=["", "new", 300])

    async def test_replace_reports_lost_race(self) -> None:
        store, _, script = self._store()
        script.return_value = 0
        self.assertFalse(await store.replace("k", "old", "new", 300))


class SessionCodecTests(TestCase):
    def test_custom_split_session_survives_encoding(self) -> None:
        session = CustomSplitsStep(
            group_id=-100123,
            amount=Decimal("300.10"),
            description="Dinner",
            selected={1, 2, 3},
            paid_by=1,
            custom_splits={2: Decimal("150.05"), 3: Decimal("150.05")},
            version=4,
        )

        decoded = codec.decode(EXPENSE_SESSION_ADAPTER, codec.encode(session))

        self.assertEqual(decoded, session)
        self.assertIsInstance(decoded, CustomSplitsStep)
        self.assertEqual(decoded.custom_splits[2], Decimal("150.05"))

    def test_step_tag_selects_the_model(self) -> None:
        raw = codec.encode(ConfirmStep(split_id=9))
        self.assertIsInstance(codec.decode(PAYMENT_SESSION_ADAPTER, raw), ConfirmStep)

    def test_garbage_reads_as_missing(self) -> None:
        self.assertIsNone(codec.decode(EXPENSE_SESSION_ADAPTER, "not json"))
        self.assertIsNone(codec.decode(EXPENSE_SESSION_ADAPTER, '{"step": "nope", "group_id": 1}'))
        self.assertIsNone(codec.decode(EXPENSE_SESSION_ADAPTER, None))

    def test_step_without_its_fields_is_rejected(self) -> None:
        self.assertIsNone(codec.decode(EXPENSE_SESSION_ADAPTER, '{"step": "description", "group_id": 1}'))

    def test_advance_carries_known_fields(self) -> None:
        session = advance(AmountStep(group_id=5, version=2), DescriptionStep, amount=Decimal("10"))
        self.assertEqual(session.step, "description")
        self.assertEqual(session.group_id, 5)
        self.assertEqual(session.version, 2)


class SessionRepositoryTests(IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.clock = FakeClock()
        self.store = InMemorySessionStore(self.clock)
        self.sessions = expense_sessions(self.store, 600)
        self.key = ExpenseKey(42)

    async def test_start_writes_under_namespaced_key(self) -> None:
        await self.sessions.start(self.key, AmountStep(group_id=-1))
        self.assertIsNotNone(await self.store.get("expense_session:42"))

    async def test_save_bumps_version(self) -> None:
        started = await self.sessions.start(self.key, AmountStep(group_id=-1))
        saved = await self.sessions.save(self.key, advance(started, DescriptionStep, amount=Decimal("5")))

        self.assertEqual(saved.version, 1)
        loaded = await self.sessions.load(self.key)
        self.assertEqual(loaded, saved)

    async def test_stale_write_is_rejected(self) -> None:
        started = await self.sessions.start(self.key, AmountStep(group_id=-1))
        await self.sessions.save(self.key, advance(started, DescriptionStep, amount=Decimal("5")))

        with self.assertRaises(SessionConflict):
            await self.sessions.save(self.key, advance(started, DescriptionStep, amount=Decimal("7")))
        loaded = await self.sessions.load(self.key)
        self.assertEqual(loaded.amount, Decimal("5"))

    async def test_save_after_expiry_raises(self) -> None:
        started = await self.sessions.start(self.key, AmountStep(group_id=-1))
        self.clock.now += 601

        self.assertIsNone(await self.sessions.load(self.key))
        with self.assertRaises(SessionExpired):
            await self.sessions.save(self.key, advance(started, DescriptionStep, amount=Decimal("5")))

    async def test_save_refreshes_ttl(self) -> None:
        started = await self.sessions.start(self.key, AmountStep(group_id=-1))
        self.clock.now += 500
        await self.sessions.save(self.key, advance(started, DescriptionStep, amount=Decimal("5")))
        self.clock.now += 500
        self.assertIsNotNone(await self.sessions.load(self.key))

    async def test_keys_are_bound_to_their_repository(self) -> None:
        payments = payment_sessions(self.store)
        with self.assertRaises(TypeError):
            await payments.load(ExpenseKey(1))
        await payments.start(PaymentKey(42), ConfirmStep(split_id=3))
        self.assertIsNone(await self.sessions.load(self.key))
