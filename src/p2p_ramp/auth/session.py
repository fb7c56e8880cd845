"""
Durable session record.

The stored user (with its session) is a write-through cache of the order
service's answer; it is reconciled through ``refetch_user`` before being
trusted again after a restart.
"""
from __future__ import annotations

import logging
from typing import Optional

from pydantic import ValidationError

from p2p_ramp.service.models import User
from p2p_ramp.storage.client_store import ClientStore

logger = logging.getLogger(__name__)

USER_SESSION_KEY = "user_session"
PREFERRED_CURRENCY_KEY = "preferred_currency"


def truncate_token(token: str) -> str:
    """Loggable form of a session token."""
    return f"{token[:6]}..." if len(token) > 6 else "***"


class SessionStore:
    def __init__(self, store: ClientStore) -> None:
        self._store = store

    async def load_user(self) -> Optional[User]:
        raw = await self._store.get(USER_SESSION_KEY)
        if raw is None:
            return None
        try:
            return User.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Discarding unreadable session record: {e}")
            await self._store.delete(USER_SESSION_KEY)
            return None

    async def save_user(self, user: User) -> None:
        await self._store.set(USER_SESSION_KEY, user.model_dump_json())

    async def clear(self) -> None:
        await self._store.delete(USER_SESSION_KEY)

    async def get_preferred_currency(self) -> Optional[str]:
        return await self._store.get(PREFERRED_CURRENCY_KEY)

    async def set_preferred_currency(self, currency: str) -> None:
        await self._store.set(PREFERRED_CURRENCY_KEY, currency)
