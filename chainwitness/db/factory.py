"""
Store factory.

Mode is determined by environment variables:
- WITNESSSTORE_DRIVER: Explicit driver selection (memory, psycopg2)
- DATABASE_URL or DATABASE_HOST: Database connection (auto-selects psycopg2)
- Neither set: Use in-memory (default for development)
"""

from pathlib import Path
from typing import Optional

import psycopg2
import psycopg2.pool

from ..observability import get_logger
from .config import DatabaseConfig, WitnessStoreDriver, get_witnessstore_driver
from .store import InMemoryWitnessStore, PostgresWitnessStore, StoreError, WitnessStore

logger = get_logger(__name__)

SCHEMA_PATH = Path(__file__).parent / "schema.sql"


def create_store(config: Optional[DatabaseConfig] = None) -> WitnessStore:
    """
    Create the appropriate WitnessStore based on configuration.

    Returns:
        InMemoryWitnessStore for development/testing
        PostgresWitnessStore when a database is configured

    Raises:
        StoreError: PostgreSQL is selected but unreachable
    """
    driver = get_witnessstore_driver()

    if driver == WitnessStoreDriver.MEMORY:
        logger.info("Using in-memory witness store (no persistence)")
        return InMemoryWitnessStore()

    config = config or DatabaseConfig.from_env()
    return create_postgres_store(config)


def create_postgres_store(config: DatabaseConfig) -> PostgresWitnessStore:
    """Create PostgresWitnessStore over a connection pool and check connectivity."""
    try:
        pool = psycopg2.pool.ThreadedConnectionPool(
            config.pool_min_size,
            config.pool_max_size,
            config.to_dsn(),
        )
    except psycopg2.Error as e:
        logger.error(
            "Could not connect to PostgreSQL",
            url=config.to_url(include_password=False),
            error=str(e),
        )
        raise StoreError(f"Could not connect to PostgreSQL: {e}") from e

    logger.info(
        "PostgreSQL connection pool established",
        host=config.host,
        port=config.port,
        database=config.database,
        pool_min=config.pool_min_size,
        pool_max=config.pool_max_size,
    )
    return PostgresWitnessStore(
        pool,
        lock_timeout_ms=config.lock_timeout_ms,
        statement_timeout_ms=config.statement_timeout_ms,
    )


def load_schema() -> str:
    return SCHEMA_PATH.read_text(encoding="utf-8")
