from __future__ import annotations

import tempfile
from decimal import Decimal
from pathlib import Path
from unittest import IsolatedAsyncioTestCase, TestCase

from splitbot.blobs import BlobStoreError, FileSystemBlobStore
from splitbot.telegram.helpers import format_amount, is_skip, parse_positive_amount, shorten


class FileSystemBlobStoreTests(IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.store = FileSystemBlobStore(self.root)

    async def asyncTearDown(self) -> None:
        self._tmp.cleanup()

    async def test_put_get_delete(self) -> None:
        key = "bills/-100500/1700000000000_AgAD.jpg"
        await self.store.put(key, b"jpeg-bytes", "image/jpeg")

        self.assertTrue((self.root / "bills" / "-100500" / "1700000000000_AgAD.jpg").exists())
        self.assertEqual(await self.store.get(key), b"jpeg-bytes")

        await self.store.delete(key)
        self.assertIsNone(await self.store.get(key))
        await self.store.delete(key)

    async def test_keys_cannot_escape_root(self) -> None:
        with self.assertRaises(BlobStoreError):
            await self.store.put("../outside.jpg", b"x", "image/jpeg")
        with self.assertRaises(BlobStoreError):
            await self.store.put("/etc/passwd", b"x", "image/jpeg")


class AmountHelperTests(TestCase):
    def test_parse_positive_amount(self) -> None:
        self.assertEqual(parse_positive_amount(" 1,250.75 "), Decimal("1250.75"))
        for raw in ("", "abc", "0", "-1", "nan", "inf", "1e13", "1.005"):
            with self.subTest(raw=raw):
                with self.assertRaises(ValueError):
                    parse_positive_amount(raw)

    def test_format_amount(self) -> None:
        self.assertEqual(format_amount(Decimal("1234567.5")), "1,234,567.50")
        self.assertEqual(format_amount("100"), "100.00")

    def test_shorten_and_skip(self) -> None:
        self.assertEqual(shorten("short"), "short")
        self.assertEqual(len(shorten("x" * 40)), 20)
        self.assertEqual(shorten(None), "")
        self.assertTrue(is_skip("  Skip "))
        self.assertFalse(is_skip("skipping"))
