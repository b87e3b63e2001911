"""Identity of the signed-in user.

The identity provider is external; this module only defines what the job
board consumes from it: a stable user id and an email, or nothing when no
session exists.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from jobboard.errors import StoreUnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CurrentUser:
    """The session's user."""

    id: str
    email: Optional[str] = None


class IdentityProvider(Protocol):
    """Protocol for identity backends."""

    async def current_user(self) -> Optional[CurrentUser]:
        """Return the signed-in user, or None without a session."""
        ...


class StaticIdentity:
    """Identity fixed at construction; used per request by the HTTP API and in tests."""

    def __init__(self, user: Optional[CurrentUser]):
        self._user = user

    async def current_user(self) -> Optional[CurrentUser]:
        return self._user


class SupabaseIdentity:
    """Identity read from a supabase-py client's auth session."""

    def __init__(self, client):
        self._client = client

    async def current_user(self) -> Optional[CurrentUser]:
        try:
            response = await asyncio.to_thread(self._client.auth.get_user)
        except Exception as e:
            # supabase auth errors moved packages between releases (gotrue -> supabase_auth)
            if type(e).__name__ == "AuthSessionMissingError":
                return None
            logger.warning(f"Identity lookup failed: {e}")
            raise StoreUnavailableError("current_user", e) from e
        if response is None or getattr(response, "user", None) is None:
            return None
        return CurrentUser(id=response.user.id, email=response.user.email)
