"""
Storage Layer - durable client storage on async PostgreSQL.

Public API:
    Database, DatabaseConfig - Connection pool management
    ClientStore, ClientStoreConfig - Key/value repository (sessions, rates, pending payloads)
"""
from p2p_ramp.storage.client_store import ClientStore, ClientStoreConfig
from p2p_ramp.storage.database import Database, DatabaseConfig

__all__ = [
    "ClientStore",
    "ClientStoreConfig",
    "Database",
    "DatabaseConfig",
]
