import dataclasses
import os
import sys
import tempfile
import unittest
from datetime import datetime, timedelta, timezone

# Ensure project src/ is on sys.path for imports
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
src_path = os.path.join(ROOT, "src")
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from core.bridge import build_app  # noqa: E402
from utils.config import Settings  # noqa: E402

ADMIN = ("boss", "admin_pw")
CLERK = ("clerk", "clerk_pw")


class Clock:
    """Settable replacement for utcnow."""

    def __init__(self, start: datetime = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now += timedelta(**delta)


class AppTestCase(unittest.IsolatedAsyncioTestCase):
    """
    Every test gets its own SQLite file, a fully wired AppContext and a
    controllable clock. bcrypt runs at its minimum cost to keep tests fast.
    """

    settings_overrides: dict = {}

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.temp_dir.name, "test.sqlite")
        self.clock = Clock()
        self.settings = dataclasses.replace(
            Settings(),
            db_path=self.db_path,
            bcrypt_rounds=4,
            rate_limit_max=0,
            **self.settings_overrides,
        )
        self.ctx = build_app(self.settings, clock=self.clock)

    async def asyncSetUp(self):
        await self.ctx.database.open()

    async def asyncTearDown(self):
        await self.ctx.close()

    def tearDown(self):
        self.temp_dir.cleanup()

    # ---------- fixtures ----------

    def assertOk(self, result: dict) -> dict:
        self.assertTrue(result.get("success"), result.get("error"))
        return result

    def assertFailed(self, result: dict, code: str) -> dict:
        self.assertFalse(result.get("success"), result)
        self.assertTrue(
            result["error"].startswith(code + ":"),
            f"expected {code}, got {result['error']!r}",
        )
        return result

    async def make_user(self, username=CLERK[0], password=CLERK[1], role="standard") -> int:
        return self.assertOk(await self.ctx.users.add_user(username, password, role))["id"]

    async def make_admin(self) -> int:
        return await self.make_user(ADMIN[0], ADMIN[1], "admin")

    async def login(self, username=CLERK[0], password=CLERK[1]) -> str:
        return self.assertOk(await self.ctx.auth.login(username, password))["token"]

    async def make_category(self, name="Phones") -> int:
        return self.assertOk(await self.ctx.catalog.add_category(name))["id"]

    async def make_product(self, category_id: int, name="Widget", stock=10, **extra) -> int:
        data = {"name": name, "category_id": category_id, "stock": stock, **extra}
        return self.assertOk(await self.ctx.products.create_product(data))["id"]

    async def stock_of(self, product_id: int) -> int:
        result = self.assertOk(await self.ctx.products.get_product(product_id))
        return result["product"]["stock"]

    async def movements(self, product_id: int) -> list:
        result = self.assertOk(await self.ctx.products.list_movements(product_id))
        return result["items"]

    async def count(self, table: str, where: str = "", params: tuple = ()) -> int:
        async with self.ctx.database.connection() as conn:
            cur = await conn.execute(
                f"SELECT COUNT(*) FROM {table} {'WHERE ' + where if where else ''};",
                params,
            )
            row = await cur.fetchone()
            await cur.close()
        return row[0]
