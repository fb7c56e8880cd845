"""
Durable client storage: a string key/value table.

Holds the session record, the preferred display currency, exchange rate
entries and short-lived registration/password-reset payloads. Values are
JSON text; callers serialise through pydantic so big integers survive as
decimal strings.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional

from p2p_ramp.storage.database import Database

logger = logging.getLogger(__name__)


@dataclass
class ClientStoreConfig:
    table_name: str = "client_storage"


class ClientStore:
    """
    Key/value repository over ``client_storage``.

    Usage:
        store = ClientStore(db)
        await store.ensure_schema()
        await store.set("preferred_currency", '"EUR"')
        raw = await store.pop("pending_registration:1234")  # single-use read
    """

    def __init__(self, db: Database, config: Optional[ClientStoreConfig] = None) -> None:
        self.db = db
        self.config = config or ClientStoreConfig()

    @property
    def table_name(self) -> str:
        return self.config.table_name

    async def ensure_schema(self) -> None:
        await self.db.execute(
            f"CREATE TABLE IF NOT EXISTS {self.table_name} ("
            "key TEXT PRIMARY KEY, "
            "value TEXT NOT NULL, "
            "updated_at BIGINT NOT NULL)"
        )

    async def get(self, key: str) -> Optional[str]:
        return await self.db.fetchval(
            f"SELECT value FROM {self.table_name} WHERE key = $1", key
        )

    async def set(self, key: str, value: str) -> None:
        await self.db.execute(
            f"INSERT INTO {self.table_name} (key, value, updated_at) VALUES ($1, $2, $3) "
            "ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value, updated_at = EXCLUDED.updated_at",
            key,
            value,
            int(time.time()),
        )
        logger.debug(f"Stored {key}")

    async def delete(self, key: str) -> bool:
        """Remove a key. Returns True if it existed."""
        result = await self.db.execute(f"DELETE FROM {self.table_name} WHERE key = $1", key)
        return result != "DELETE 0"

    async def pop(self, key: str) -> Optional[str]:
        """Read and remove a key in one statement, so a value is consumed at most once."""
        return await self.db.fetchval(
            f"DELETE FROM {self.table_name} WHERE key = $1 RETURNING value", key
        )
