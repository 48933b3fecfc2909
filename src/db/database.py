# manages the bounded aiosqlite connection pool and transaction scopes
from __future__ import annotations

import asyncio
import os.path
import time
from contextlib import asynccontextmanager
from sqlite3 import Row
from typing import AsyncIterator, Dict, List, Tuple

import aiosqlite

from utils.errors import StorageError
from utils.logger import get_logger

_logger = get_logger(__name__)

SCHEMA_PATH = os.path.join(os.path.dirname(__file__), "schema.sql")


async def _init_db(conn: aiosqlite.Connection) -> None:
    _logger.info(f"Initializing database with script {SCHEMA_PATH}...")
    with open(SCHEMA_PATH, "r") as f:
        await conn.executescript(f.read())


async def _table_exists(conn: aiosqlite.Connection, table_name: str) -> bool:
    cur = await conn.execute(
        """
        SELECT name
        FROM sqlite_master
        WHERE type = 'table'
          AND name = ?;
        """,
        (table_name,),
    )
    row = await cur.fetchone()
    await cur.close()
    return row is not None


class ConnectionPool:
    """Bounded pool of aiosqlite connections.

    At most ``max_size`` connections exist at once; callers beyond that wait up
    to ``acquire_timeout`` seconds for a slot. Connections idle for longer than
    ``idle_timeout`` are closed, down to ``min_size``.
    """

    def __init__(
        self,
        path: str,
        min_size: int = 1,
        max_size: int = 5,
        connect_timeout: float = 5.0,
        acquire_timeout: float = 30.0,
        idle_timeout: float = 30.0,
    ) -> None:
        self.path = path
        self.min_size = min_size
        self.max_size = max_size
        self.connect_timeout = connect_timeout
        self.acquire_timeout = acquire_timeout
        self.idle_timeout = idle_timeout

        self._slots = asyncio.Semaphore(max_size)
        self._idle: List[Tuple[aiosqlite.Connection, float]] = []
        self._size = 0
        self._waiting = 0
        self._opened = False
        self._closed = False
        self._init_lock = asyncio.Lock()

    async def open(self) -> None:
        """Create the minimum number of connections, initializing the schema once."""
        async with self._init_lock:
            if self._opened:
                return
            if self._closed:
                raise StorageError("Connection pool is closed", code="DB_UNAVAILABLE")
            directory = os.path.dirname(self.path)
            if directory and self.path != ":memory:":
                os.makedirs(directory, exist_ok=True)

            conn = await self._connect()
            try:
                if not await _table_exists(conn, "users"):
                    await _init_db(conn)
            except BaseException:
                await self._discard(conn)
                raise
            self._idle.append((conn, time.monotonic()))
            while self._size < self.min_size:
                self._idle.append((await self._connect(), time.monotonic()))
            self._opened = True
            _logger.info(
                f"Database pool ready at {self.path} "
                f"(min={self.min_size}, max={self.max_size})"
            )

    async def _connect(self) -> aiosqlite.Connection:
        async def _open() -> aiosqlite.Connection:
            return await aiosqlite.connect(
                self.path, timeout=self.acquire_timeout, isolation_level=None
            )

        try:
            conn = await asyncio.wait_for(_open(), self.connect_timeout)
        except TimeoutError:
            raise StorageError(
                "Timed out connecting to the database", code="DB_UNAVAILABLE"
            ) from None
        conn.row_factory = Row
        await conn.execute("PRAGMA foreign_keys = ON;")
        await conn.execute("PRAGMA journal_mode = WAL;")
        self._size += 1
        _logger.debug(f"New database connection ({self._size} open)")
        return conn

    async def _discard(self, conn: aiosqlite.Connection) -> None:
        self._size -= 1
        try:
            await conn.close()
        except Exception as exc:
            _logger.warning(f"Error closing database connection: {exc}")

    async def _prune_idle(self) -> None:
        now = time.monotonic()
        while (
            self._idle
            and self._size > self.min_size
            and now - self._idle[0][1] > self.idle_timeout
        ):
            conn, _ = self._idle.pop(0)
            await self._discard(conn)
            _logger.debug("Closed idle database connection")

    async def _checkout(self) -> aiosqlite.Connection:
        await self._prune_idle()
        if self._idle:
            conn, _ = self._idle.pop()
            return conn
        return await self._connect()

    async def _checkin(self, conn: aiosqlite.Connection) -> None:
        if self._closed:
            await self._discard(conn)
            return
        if conn.in_transaction:
            try:
                await conn.rollback()
            except Exception as exc:
                _logger.warning(f"Discarding connection after failed rollback: {exc}")
                await self._discard(conn)
                return
        self._idle.append((conn, time.monotonic()))

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[aiosqlite.Connection]:
        """Borrow a connection; it is always returned, even on error or cancellation."""
        if not self._opened:
            await self.open()
        if self._closed:
            raise StorageError("Connection pool is closed", code="DB_UNAVAILABLE")

        self._waiting += 1
        try:
            await asyncio.wait_for(self._slots.acquire(), self.acquire_timeout)
        except TimeoutError:
            _logger.error(
                f"Timed out after {self.acquire_timeout}s waiting for a connection"
            )
            raise StorageError(
                "Timed out waiting for a database connection", code="DB_UNAVAILABLE"
            ) from None
        finally:
            self._waiting -= 1

        try:
            conn = await self._checkout()
        except BaseException:
            self._slots.release()
            raise
        try:
            yield conn
        finally:
            try:
                await self._checkin(conn)
            finally:
                self._slots.release()

    def stats(self) -> Dict[str, int]:
        idle = len(self._idle)
        return {
            "total": self._size,
            "idle": idle,
            "in_use": self._size - idle,
            "waiting": self._waiting,
            "max": self.max_size,
        }

    async def close(self) -> None:
        self._closed = True
        while self._idle:
            conn, _ = self._idle.pop()
            await self._discard(conn)
        _logger.info("Database pool closed")


class Database:
    """Entry point for the services: scoped connections and transactions."""

    def __init__(self, pool: ConnectionPool) -> None:
        self.pool = pool

    @classmethod
    def from_settings(cls, settings) -> "Database":
        return cls(
            ConnectionPool(
                settings.db_path,
                min_size=settings.pool_min,
                max_size=settings.pool_max,
                connect_timeout=settings.connect_timeout,
                acquire_timeout=settings.acquire_timeout,
                idle_timeout=settings.idle_timeout,
            )
        )

    async def open(self) -> None:
        await self.pool.open()

    async def close(self) -> None:
        await self.pool.close()

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        async with self.pool.acquire() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """One atomic unit: commits on success, rolls back on any exception.

        BEGIN IMMEDIATE takes the write lock up front, so rows read inside the
        block cannot change underneath it.
        """
        async with self.pool.acquire() as conn:
            await conn.execute("BEGIN IMMEDIATE;")
            try:
                yield conn
            except BaseException:
                await conn.rollback()
                raise
            await conn.commit()

    async def health_check(self) -> Dict[str, object]:
        try:
            async with self.connection() as conn:
                cur = await conn.execute("SELECT 1;")
                await cur.fetchone()
                await cur.close()
            return {"healthy": True, **self.pool.stats()}
        except Exception as exc:
            _logger.error(f"Database health check failed: {exc}")
            return {"healthy": False, "error": str(exc)}
