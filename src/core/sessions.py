# issues, validates and expires bearer tokens
from __future__ import annotations

import asyncio
import contextlib
import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

import db.crud as crud
from db.database import Database
from db.models import Session, User
from utils.errors import SessionExpired, SessionNotFound
from utils.logger import get_logger, token_hint
from utils.time_utils import utcnow

_logger = get_logger(__name__)

TOKEN_BYTES = 32  # 256 bits


def hash_token(token: str) -> str:
    """Only this digest is ever stored; the plaintext stays with the client."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


@dataclass
class _CachedSession:
    user: User
    expires_at: datetime
    checked_at: datetime


class SessionRegistry:
    """
    Two-tier session store.

    The ``sessions`` table is the source of truth; ``_index`` is a cache keyed by
    token digest so most validations skip the database. A cache miss (e.g. after
    a restart) falls back to the table and repopulates the cache, and cache
    entries older than ``revalidate_seconds`` are re-checked so a logout done
    elsewhere is noticed.
    """

    def __init__(
        self,
        database: Database,
        timeout_hours: float = 24,
        revalidate_seconds: float = 60,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._db = database
        self.timeout = timedelta(hours=timeout_hours)
        self.revalidate_seconds = revalidate_seconds
        self._clock = clock
        self._index: Dict[str, _CachedSession] = {}
        self._lock = asyncio.Lock()
        self._sweeper: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._index)

    async def issue(self, user: User) -> Session:
        token = secrets.token_hex(TOKEN_BYTES)
        digest = hash_token(token)
        created_at = self._clock()
        expires_at = created_at + self.timeout

        async with self._db.transaction() as conn:
            session_id = await crud.insert_session(
                conn, user.id, digest, created_at, expires_at
            )
        async with self._lock:
            self._index[digest] = _CachedSession(
                User(id=user.id, username=user.username, role=user.role),
                expires_at,
                created_at,
            )

        _logger.info(
            f"Session {token_hint(token)} issued for {user.username} "
            f"(expires {expires_at:%Y-%m-%d %H:%M} UTC)"
        )
        return Session(
            id=session_id,
            user_id=user.id,
            token=token,
            created_at=created_at,
            expires_at=expires_at,
        )

    async def validate(self, token: Optional[str]) -> User:
        """
        Return the identity behind ``token``.

        Raises SessionNotFound for an empty or unknown token and SessionExpired
        when the session is past its expiry or was deactivated. An expired
        session is evicted from the cache and marked inactive in storage.
        """
        if not token or not isinstance(token, str):
            raise SessionNotFound()
        digest = hash_token(token)
        now = self._clock()

        async with self._lock:
            cached = self._index.get(digest)
            if cached is not None:
                if now >= cached.expires_at:
                    await self._expire(digest)
                    raise SessionExpired()
                if (now - cached.checked_at).total_seconds() < self.revalidate_seconds:
                    return cached.user

            async with self._db.connection() as conn:
                found = await crud.get_session(conn, digest)
            if found is None:
                self._index.pop(digest, None)
                raise SessionNotFound()

            session, user = found
            if not session.active or now >= session.expires_at:
                await self._expire(digest)
                raise SessionExpired()

            self._index[digest] = _CachedSession(user, session.expires_at, now)
            return user

    async def _expire(self, digest: str) -> None:
        # caller holds self._lock
        self._index.pop(digest, None)
        async with self._db.transaction() as conn:
            await crud.deactivate_session(conn, digest)
        _logger.info("Expired session evicted")

    async def revoke(self, token: Optional[str]) -> None:
        """Deactivate a session. Unknown or already revoked tokens are fine."""
        if not token or not isinstance(token, str):
            return
        digest = hash_token(token)
        async with self._lock:
            async with self._db.transaction() as conn:
                changed = await crud.deactivate_session(conn, digest)
            self._index.pop(digest, None)
        if changed:
            _logger.info(f"Session {token_hint(token)} revoked")

    async def revoke_user(self, user_id: int, keep_token: Optional[str] = None) -> int:
        """Revoke every session of a user, optionally sparing the caller's own."""
        keep = hash_token(keep_token) if keep_token else None
        async with self._lock:
            async with self._db.transaction() as conn:
                changed = await crud.deactivate_user_sessions(conn, user_id, keep)
            for digest in [
                d for d, c in self._index.items() if c.user.id == user_id and d != keep
            ]:
                del self._index[digest]
        if changed:
            _logger.info(f"Revoked {changed} session(s) of user id={user_id}")
        return changed

    async def sweep_expired(self) -> int:
        """Delete expired sessions from storage and cache. Never raises."""
        now = self._clock()
        try:
            async with self._lock:
                for digest in [d for d, c in self._index.items() if now >= c.expires_at]:
                    del self._index[digest]
                async with self._db.transaction() as conn:
                    removed = await crud.delete_expired_sessions(conn, now)
        except Exception as exc:
            _logger.error(f"Session sweep failed: {exc}")
            return 0
        if removed:
            _logger.info(f"Swept {removed} expired session(s)")
        return removed

    def start_sweeper(self, interval: float = 3600) -> None:
        if self._sweeper is not None and not self._sweeper.done():
            return

        async def _run() -> None:
            while True:
                await asyncio.sleep(interval)
                await self.sweep_expired()

        self._sweeper = asyncio.create_task(_run(), name="session-sweeper")
        _logger.debug(f"Session sweeper started (every {interval:g}s)")

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._sweeper
        self._sweeper = None
