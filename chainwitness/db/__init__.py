"""
Database Layer for the Chain Witness Engine

Provides:
- PostgreSQL schema
- WitnessStore abstraction (InMemory for dev, Postgres for prod)
- Environment-based configuration
"""

from .store import (
    WitnessStore,
    StoreSession,
    InMemoryWitnessStore,
    PostgresWitnessStore,
    StoreError,
    LockTimeoutError,
)
from .config import DatabaseConfig, WitnessStoreDriver, get_database_url, get_witnessstore_driver
from .factory import create_store, load_schema

__all__ = [
    "WitnessStore",
    "StoreSession",
    "InMemoryWitnessStore",
    "PostgresWitnessStore",
    "StoreError",
    "LockTimeoutError",
    "DatabaseConfig",
    "WitnessStoreDriver",
    "get_database_url",
    "get_witnessstore_driver",
    "create_store",
    "load_schema",
]
