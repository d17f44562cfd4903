"""Database configuration and factory for siteqa.

Provides a single place that owns the document-store adapter for the life of
the process.
"""

import os
import logging
from typing import Optional

from pydantic import BaseModel, Field

from indexer.sqlite_adapter import SQLiteAdapter

logger = logging.getLogger(__name__)


class DatabaseConfig(BaseModel):
    """Database configuration."""
    sqlite_path: str = Field(default="data/siteqa.db", description="SQLite database path")
    enable_fulltext: bool = Field(default=True, description="Use FTS5 when the SQLite build has it")

    @classmethod
    def from_env(cls) -> 'DatabaseConfig':
        """Create configuration from environment variables."""
        return cls(
            sqlite_path=os.getenv('SQLITE_PATH', 'data/siteqa.db'),
            enable_fulltext=os.getenv('SITEQA_DISABLE_FTS', '').lower() not in {'1', 'true', 'yes'},
        )


class DatabaseFactory:
    """Factory owning the document-store adapter."""

    _instance: Optional['DatabaseFactory'] = None
    _adapter: Optional[SQLiteAdapter] = None

    def __new__(cls) -> 'DatabaseFactory':
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def initialize(self, config: Optional[DatabaseConfig] = None) -> SQLiteAdapter:
        """Initialize the adapter based on configuration."""
        if config is None:
            config = DatabaseConfig.from_env()

        if self._adapter is not None:
            await self.close()

        logger.info(f"Initializing SQLite adapter at {config.sqlite_path}")
        self._adapter = SQLiteAdapter(config.sqlite_path, enable_fulltext=config.enable_fulltext)
        await self._adapter.initialize()
        return self._adapter

    async def close(self):
        """Close database connections."""
        if self._adapter:
            await self._adapter.close()
            self._adapter = None
            logger.info("Database adapter closed")


# Global database factory instance
db_factory = DatabaseFactory()


async def initialize_database(config: Optional[DatabaseConfig] = None) -> SQLiteAdapter:
    """Initialize database with configuration."""
    return await db_factory.initialize(config)


async def close_database():
    """Close database connections."""
    await db_factory.close()
