# user administration; every public call here is admin-gated at the bridge
from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, Optional

import db.crud as crud
import utils.validators as v
from core.auth import hash_password, verify_password
from core.sessions import SessionRegistry
from db.database import Database
from db.models import User
from utils.config import Settings
from utils.errors import (
    AuthenticationError,
    BusinessError,
    NotFoundError,
    ValidationError,
    returns_result,
)
from utils.logger import get_logger
from utils.time_utils import to_iso, utcnow

_logger = get_logger(__name__)


class UserService:
    def __init__(
        self,
        database: Database,
        registry: SessionRegistry,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._db = database
        self.registry = registry
        self.settings = settings
        self._clock = clock

    async def _hash(self, password: str) -> str:
        return await hash_password(password, self.settings.bcrypt_rounds)

    @returns_result
    async def list_users(self) -> Dict[str, Any]:
        async with self._db.connection() as conn:
            users = await crud.list_users(conn)
        return {"success": True, "items": [u.public() for u in users]}

    @returns_result
    async def add_user(self, username: Any, password: Any, role: Any = "standard") -> Dict[str, Any]:
        username = v.username(username)
        password = v.password(password)
        role = v.role(role)
        password_hash = await self._hash(password)

        async with self._db.transaction() as conn:
            if await crud.get_user_by_username(conn, username) is not None:
                raise BusinessError("Username already exists", code="DUPLICATE_ENTRY")
            user_id = await crud.insert_user(
                conn, username, password_hash, role, self._clock()
            )
        _logger.info(f"User created: {username} (id={user_id}, role={role})")
        return {"success": True, "id": user_id}

    @returns_result
    async def edit_user(
        self, user_id: Any, username: Any, role: Any, password: Any = None
    ) -> Dict[str, Any]:
        user_id = v.record_id(user_id, "User ID")
        username = v.username(username)
        role = v.role(role)
        password_hash = None
        if password not in (None, ""):
            password_hash = await self._hash(v.password(password))

        async with self._db.transaction() as conn:
            user = await crud.get_user(conn, user_id)
            if user is None:
                raise NotFoundError("User")
            other = await crud.get_user_by_username(conn, username)
            if other is not None and other.id != user_id:
                raise BusinessError("Username already exists", code="DUPLICATE_ENTRY")
            if user.is_admin and role != "admin" and await crud.count_admins(conn) <= 1:
                raise BusinessError(
                    "The last administrator cannot be demoted", code="LAST_ADMIN"
                )
            await crud.update_user(conn, user_id, username, role, password_hash)

        if password_hash is not None or role != user.role or username != user.username:
            # cached identities would keep the old name and role
            await self.registry.revoke_user(user_id)
        _logger.info(f"User updated: {username} (id={user_id}, role={role})")
        return {"success": True}

    @returns_result
    async def delete_user(self, username: Any, acting_user: Optional[User] = None) -> Dict[str, Any]:
        username = v.required(username, "Username")
        if not isinstance(username, str):
            raise ValidationError("Username must be text")
        async with self._db.transaction() as conn:
            user = await crud.get_user_by_username(conn, username.strip())
            if user is None:
                raise NotFoundError("User")
            if acting_user is not None and acting_user.id == user.id:
                raise BusinessError("You cannot delete your own account", code="SELF_DELETE")
            if user.is_admin and await crud.count_admins(conn) <= 1:
                raise BusinessError("The last administrator cannot be deleted", code="LAST_ADMIN")
            sales = await crud.count_sales_for_user(conn, user.id)
            if sales:
                raise BusinessError(
                    f"User '{user.username}' has {sales} recorded sale(s) and cannot be deleted",
                    code="HAS_DEPENDENTS",
                )
            await crud.delete_user(conn, user.id)

        # durable rows went with the user; this drops cached ones
        await self.registry.revoke_user(user.id)
        _logger.info(f"User deleted: {user.username} (id={user.id})")
        return {"success": True}

    @returns_result
    async def change_password(
        self,
        user_id: Any,
        old_password: Any,
        new_password: Any,
        current_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Change a password and revoke the user's other sessions."""
        user_id = v.record_id(user_id, "User ID")
        v.required(old_password, "Current password")
        new_password = v.password(new_password, "New password")
        if new_password == old_password:
            raise ValidationError("The new password must be different from the current one")

        async with self._db.connection() as conn:
            user = await crud.get_user(conn, user_id)
        if user is None:
            raise NotFoundError("User")
        if not await verify_password(str(old_password), user.password_hash):
            raise AuthenticationError(
                "Current password is incorrect", code="INVALID_CREDENTIALS"
            )

        password_hash = await self._hash(new_password)
        async with self._db.transaction() as conn:
            await crud.set_password_hash(conn, user_id, password_hash)
        revoked = await self.registry.revoke_user(user_id, keep_token=current_token)
        _logger.info(
            f"Password changed for {user.username} (id={user_id}); "
            f"{revoked} other session(s) revoked"
        )
        return {"success": True}

    @returns_result
    async def list_users_with_activity(self, limit: Any = 50) -> Dict[str, Any]:
        limit = v.integer(50 if limit in (None, "") else limit, "Limit", 1, v.MAX_PAGE_SIZE)
        async with self._db.connection() as conn:
            items = await crud.list_users_with_activity(conn, self._clock(), limit)
        for item in items:
            item["last_session"] = to_iso(item["last_session"])
        return {"success": True, "items": items}

    @returns_result
    async def user_statistics(self) -> Dict[str, Any]:
        async with self._db.connection() as conn:
            stats = await crud.user_statistics(conn)
        stats["cached_sessions"] = len(self.registry)
        return {"success": True, "statistics": stats}

    async def ensure_admin(self, username: Optional[str], password: Optional[str]) -> bool:
        """
        Create the first administrator when none exists.
        Returns True when an account was created. Invalid credentials raise.
        """
        async with self._db.connection() as conn:
            if await crud.count_admins(conn):
                return False
        if not username or not password:
            _logger.warning(
                "No administrator account exists; set ADMIN_USERNAME and ADMIN_PASSWORD"
            )
            return False
        username = v.username(username)
        password_hash = await self._hash(v.password(password))
        async with self._db.transaction() as conn:
            await crud.insert_user(conn, username, password_hash, "admin", self._clock())
        _logger.info(f"Bootstrap administrator '{username}' created")
        return True
