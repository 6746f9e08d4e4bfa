"""Ruling store configuration and factory.

SQLite is the development default; PostgreSQL with pgvector is used in
production. Both adapters expose the same async interface.
"""

import os
import logging
from enum import Enum
from typing import Union, TYPE_CHECKING

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from indexer.postgres_adapter import PostgresAdapter
    from indexer.sqlite_adapter import SQLiteAdapter

logger = logging.getLogger(__name__)


class DatabaseType(str, Enum):
    """Supported database types."""
    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"


class PostgresConfig(BaseModel):
    """PostgreSQL connection configuration."""
    host: str = "localhost"
    port: int = 5432
    database: str = "rulings"
    user: str = "rulings"
    password: str = ""
    min_connections: int = 2
    max_connections: int = 10
    command_timeout: int = 60
    embedding_dimension: int = 1536


class DatabaseConfig(BaseModel):
    """Database configuration."""
    type: DatabaseType = Field(default=DatabaseType.SQLITE, description="Database type")
    sqlite_path: str = Field(default="data/rulings.db", description="SQLite database path")
    postgres: PostgresConfig = Field(default_factory=PostgresConfig, description="PostgreSQL configuration")

    @classmethod
    def from_env(cls) -> 'DatabaseConfig':
        """Create configuration from environment variables."""
        db_type = os.getenv('RULINGS_DB_TYPE', 'sqlite').lower()

        if db_type == 'postgresql':
            postgres_config = PostgresConfig(
                host=os.getenv('POSTGRES_HOST', 'localhost'),
                port=int(os.getenv('POSTGRES_PORT', '5432')),
                database=os.getenv('POSTGRES_DB', 'rulings'),
                user=os.getenv('POSTGRES_USER', 'rulings'),
                password=os.getenv('POSTGRES_PASSWORD', ''),
                min_connections=int(os.getenv('POSTGRES_MIN_CONNECTIONS', '2')),
                max_connections=int(os.getenv('POSTGRES_MAX_CONNECTIONS', '10')),
                command_timeout=int(os.getenv('POSTGRES_COMMAND_TIMEOUT', '60')),
                embedding_dimension=int(os.getenv('RULINGS_EMBEDDING_DIMENSION', '1536')),
            )
            return cls(type=DatabaseType.POSTGRESQL, postgres=postgres_config)

        return cls(
            type=DatabaseType.SQLITE,
            sqlite_path=os.getenv('SQLITE_PATH', 'data/rulings.db'),
        )


def create_store(config: DatabaseConfig) -> Union['PostgresAdapter', 'SQLiteAdapter']:
    """Build the adapter for the configured backend. Call ``initialize()`` before use."""
    if config.type == DatabaseType.POSTGRESQL:
        from indexer.postgres_adapter import PostgresAdapter
        logger.info("Using PostgreSQL ruling store")
        return PostgresAdapter(config.postgres)

    from indexer.sqlite_adapter import SQLiteAdapter
    logger.info(f"Using SQLite ruling store at {config.sqlite_path}")
    return SQLiteAdapter(config.sqlite_path)


async def open_store(config: DatabaseConfig) -> Union['PostgresAdapter', 'SQLiteAdapter']:
    """Create and initialize the configured store."""
    store = create_store(config)
    await store.initialize()
    return store
