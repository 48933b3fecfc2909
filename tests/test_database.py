import asyncio
import os
import tempfile
import unittest

import support  # noqa: F401

import db.crud as crud
from db.database import ConnectionPool, Database
from utils.errors import StorageError
from utils.time_utils import from_db, parse_date_filter, to_db, to_iso, utcnow


class DatabaseTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.temp_dir.name, "nested", "test.sqlite")

    def tearDown(self):
        self.temp_dir.cleanup()

    def make_db(self, **pool_kwargs) -> Database:
        database = Database(ConnectionPool(self.db_path, **pool_kwargs))
        self.addAsyncCleanup(database.close)
        return database

    async def test_open_creates_schema_once(self):
        database = self.make_db()
        await database.open()
        self.assertTrue(os.path.exists(self.db_path))
        async with database.connection() as conn:
            cur = await conn.execute("SELECT name FROM sqlite_master WHERE type = 'table';")
            tables = {row["name"] for row in await cur.fetchall()}
            await cur.close()
        for table in ("users", "sessions", "categories", "subcategories", "products",
                      "stock_movements", "sales", "services"):
            self.assertIn(table, tables)

        # reopening an initialized file keeps the data
        async with database.transaction() as conn:
            await crud.insert_category(conn, "Phones")
        await database.close()
        again = self.make_db()
        async with again.connection() as conn:
            self.assertEqual([c.name for c in await crud.list_categories(conn)], ["Phones"])

    async def test_transaction_rolls_back_on_error(self):
        database = self.make_db()
        with self.assertRaises(RuntimeError):
            async with database.transaction() as conn:
                await crud.insert_category(conn, "Ghost")
                raise RuntimeError("abort")
        async with database.connection() as conn:
            self.assertEqual(await crud.list_categories(conn), [])
        self.assertEqual(database.pool.stats()["in_use"], 0)

    async def test_connection_returned_after_error(self):
        database = self.make_db(max_size=1)
        for _ in range(3):
            with self.assertRaises(Exception):
                async with database.connection() as conn:
                    await conn.execute("SELECT * FROM nowhere;")
        async with database.connection() as conn:
            cur = await conn.execute("SELECT 1;")
            self.assertEqual((await cur.fetchone())[0], 1)
            await cur.close()

    async def test_acquire_times_out_when_pool_exhausted(self):
        database = self.make_db(max_size=1, acquire_timeout=0.1)
        async with database.connection():
            with self.assertRaises(StorageError) as cm:
                async with database.connection():
                    pass
        self.assertEqual(cm.exception.code, "DB_UNAVAILABLE")
        self.assertEqual(database.pool.stats()["waiting"], 0)

    async def test_pool_bounds_concurrent_users(self):
        database = self.make_db(max_size=2)
        peak = 0

        async def worker():
            nonlocal peak
            async with database.connection():
                peak = max(peak, database.pool.stats()["in_use"])
                await asyncio.sleep(0.01)

        await asyncio.gather(*(worker() for _ in range(6)))
        self.assertLessEqual(peak, 2)
        self.assertEqual(database.pool.stats()["total"], 2)

    async def test_idle_connections_are_pruned(self):
        database = self.make_db(max_size=3, idle_timeout=0.01)
        async with database.connection(), database.connection():
            pass
        self.assertEqual(database.pool.stats()["total"], 2)
        await asyncio.sleep(0.05)
        async with database.connection():
            pass
        self.assertEqual(database.pool.stats()["total"], 1)

    async def test_closed_pool_refuses_work(self):
        database = self.make_db()
        await database.open()
        await database.close()
        with self.assertRaises(StorageError):
            async with database.connection():
                pass
        health = await database.health_check()
        self.assertFalse(health["healthy"])

    async def test_health_check(self):
        database = self.make_db()
        health = await database.health_check()
        self.assertTrue(health["healthy"])
        self.assertEqual(health["max"], 5)


class TimeUtilsTestCase(unittest.TestCase):
    def test_round_trip_is_utc(self):
        now = utcnow()
        self.assertEqual(from_db(to_db(now)), now)
        self.assertIsNone(from_db(None))

    def test_to_iso(self):
        self.assertEqual(to_iso("2025-03-01 10:00:00.250000"), "2025-03-01T10:00:00Z")
        self.assertIsNone(to_iso(None))

    def test_date_filters(self):
        self.assertEqual(parse_date_filter("2025-03-01"), "2025-03-01 00:00:00.000000")
        self.assertEqual(
            parse_date_filter("2025-03-01", end_of_day=True), "2025-03-01 23:59:59.999999"
        )
        self.assertEqual(
            parse_date_filter("2025-03-01T12:00:00+02:00"), "2025-03-01 10:00:00.000000"
        )
        self.assertEqual(parse_date_filter("2025-03-01T12:00:00Z"), "2025-03-01 12:00:00.000000")
        self.assertIsNone(parse_date_filter(""))
        with self.assertRaises(ValueError):
            parse_date_filter("03/01/2025")


if __name__ == "__main__":
    unittest.main()
