from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from core.bridge import Bridge

# failures that mean the stored token is no longer usable
_SESSION_ERRORS = ("INVALID_SESSION", "SESSION_EXPIRED", "NO_TOKEN")


@dataclass
class GlobalState:
    """
    Centralized application state shared by screens.

    Fields:
      - bridge: channel dispatcher every screen talks through
      - token: bearer token of the logged-in user, None when logged out
      - user: {"id", "username", "role"} as returned by login
    """

    bridge: Optional[Bridge] = None
    token: Optional[str] = None
    user: Dict[str, Any] = field(default_factory=dict)

    @property
    def logged_in(self) -> bool:
        return self.token is not None

    @property
    def role(self) -> Optional[str]:
        return self.user.get("role")

    @property
    def username(self) -> Optional[str]:
        return self.user.get("username")

    async def call(self, channel: str, **payload: Any) -> Dict[str, Any]:
        """Invoke a channel with the current token attached."""
        if self.token:
            payload.setdefault("token", self.token)
        result = await self.bridge.invoke(channel, payload)
        if not result.get("success") and str(result.get("error", "")).startswith(
            _SESSION_ERRORS
        ):
            self.token = None
            self.user = {}
        return result

    async def login(self, username: str, password: str) -> Dict[str, Any]:
        result = await self.bridge.invoke(
            "login", {"username": username, "password": password}
        )
        if result.get("success"):
            self.token = result["token"]
            self.user = result["user"]
        return result

    async def logout(self) -> None:
        """
        End the current session if one exists.
        This is only called upon logging out or quitting
        """
        if self.token is None:
            return
        await self.bridge.invoke("logout", {"token": self.token})
        self.token = None
        self.user = {}
