# credential checks, session-bound authorization and the handler wrappers
from __future__ import annotations

import asyncio
import functools
import time
from collections import defaultdict, deque
from typing import Any, Awaitable, Callable, Deque, Dict, Optional

import bcrypt

import db.crud as crud
from core.sessions import SessionRegistry
from db.database import Database
from db.models import User
from utils.config import Settings
from utils.errors import (
    AuthenticationError,
    AuthorizationError,
    ValidationError,
    handle,
    returns_result,
)
from utils.logger import get_logger, log_user_activity

_logger = get_logger(__name__)

INVALID_CREDENTIALS = "Invalid username or password"

Operation = Callable[[Dict[str, Any], User], Awaitable[Dict[str, Any]]]


def _hashpw(password: str, rounds: int) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds)).decode("utf-8")


def _checkpw(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # malformed hash in storage
        return False


async def hash_password(password: str, rounds: int = 12) -> str:
    return await asyncio.to_thread(_hashpw, password, rounds)


async def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    return await asyncio.to_thread(_checkpw, password, password_hash)


class RateLimiter:
    """Sliding-window request counter keyed by user id."""

    def __init__(
        self,
        max_requests: int = 100,
        window_seconds: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: Dict[Any, Deque[float]] = defaultdict(deque)

    @property
    def enabled(self) -> bool:
        return self.max_requests > 0 and self.window_seconds > 0

    def check(self, key) -> None:
        if not self.enabled:
            return
        now = self._clock()
        hits = self._hits[key]
        while hits and now - hits[0] >= self.window_seconds:
            hits.popleft()
        if len(hits) >= self.max_requests:
            _logger.warning(f"Rate limit exceeded for user id={key}")
            raise AuthorizationError(
                "Rate limit exceeded, try again later", code="RATE_LIMITED"
            )
        hits.append(now)


class AuthGateway:
    def __init__(
        self,
        database: Database,
        registry: SessionRegistry,
        settings: Settings,
        rate_limiter: Optional[RateLimiter] = None,
    ) -> None:
        self._db = database
        self.registry = registry
        self.settings = settings
        self.rate_limiter = rate_limiter or RateLimiter(
            settings.rate_limit_max, settings.rate_limit_window
        )
        self._dummy_hash: Optional[str] = None

    async def prepare(self) -> None:
        """Hash the decoy password up front so no login pays for it."""
        await self._dummy()

    async def _dummy(self) -> str:
        if self._dummy_hash is None:
            self._dummy_hash = await hash_password(
                "not-a-real-password", self.settings.bcrypt_rounds
            )
        return self._dummy_hash

    @returns_result
    async def login(self, username: Any, password: Any) -> Dict[str, Any]:
        if (
            not isinstance(username, str)
            or not username.strip()
            or not isinstance(password, str)
            or not password
        ):
            raise AuthenticationError(INVALID_CREDENTIALS, code="INVALID_CREDENTIALS")
        username = username.strip()

        async with self._db.connection() as conn:
            user = await crud.get_user_by_username(conn, username)

        if user is None:
            # same bcrypt cost as a real check, so response time does not leak existence
            await verify_password(password, await self._dummy())
            ok = False
        else:
            ok = await verify_password(password, user.password_hash)

        if not ok:
            _logger.warning(f"Failed login attempt for '{username}'")
            raise AuthenticationError(INVALID_CREDENTIALS, code="INVALID_CREDENTIALS")

        session = await self.registry.issue(user)
        log_user_activity(_logger, user, "login")
        return {"success": True, "user": user.public(), "token": session.token}

    async def logout(self, token: Optional[str]) -> Dict[str, Any]:
        try:
            await self.registry.revoke(token)
        except Exception as exc:
            # the client drops its token either way
            handle(exc)
        return {"success": True}

    @returns_result
    async def validate_session(self, token: Optional[str]) -> Dict[str, Any]:
        user = await self.registry.validate(token)
        return {"success": True, "user": user.public()}

    async def require_auth(self, token: Optional[str]) -> User:
        if not token:
            raise AuthenticationError("No session token provided", code="NO_TOKEN")
        return await self.registry.validate(token)

    @staticmethod
    def require_admin(user: User) -> User:
        if not user.is_admin:
            _logger.warning(f"Admin access denied for {user.username} (id={user.id})")
            raise AuthorizationError(
                "Administrator privileges required", code="ADMIN_REQUIRED"
            )
        return user

    def with_auth(self, operation: Operation) -> Callable[..., Awaitable[Dict[str, Any]]]:
        return self._guard(operation, admin=False)

    def with_admin_auth(
        self, operation: Operation
    ) -> Callable[..., Awaitable[Dict[str, Any]]]:
        return self._guard(operation, admin=True)

    def _guard(self, operation: Operation, admin: bool):
        """
        Resolve the token in the payload to a user, check role and rate limit,
        then run ``operation(payload, user)``. The token never reaches the
        operation and no exception leaves the wrapper.
        """

        @functools.wraps(operation)
        async def wrapper(payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
            try:
                if payload is None:
                    payload = {}
                if not isinstance(payload, dict):
                    raise ValidationError("Request payload must be an object")
                payload = dict(payload)
                token = payload.pop("token", None)
                alias = payload.pop("session_token", None)
                user = await self.require_auth(token or alias)
                if admin:
                    self.require_admin(user)
                self.rate_limiter.check(user.id)
                return await operation(payload, user)
            except Exception as exc:
                return handle(exc)

        return wrapper

    def log_user_activity(self, user: User, action: str, **details) -> None:
        log_user_activity(_logger, user, action, **details)
