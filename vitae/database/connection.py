"""
Vitae - Database Connection
===========================

asyncpg pool behind PostgresRecordStore. jsonb columns (entry provenance,
activity metadata, pending candidate source data) come back as dicts.

Usage:
    db = await DatabaseConnection.open(config.database)
    row = await db.fetchrow("SELECT * FROM cv_records WHERE owner_id = $1", owner_id)
    await db.close()
"""

import json
import logging
from typing import List, Optional

import asyncpg

from vitae.ingest.config import DatabaseConfig
from vitae.shared.exceptions import PersistenceError

logger = logging.getLogger(__name__)


class DatabaseConnection:
    """Connection pool sized from DatabaseConfig."""

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self._pool: Optional[asyncpg.Pool] = None

    @classmethod
    async def open(cls, config: DatabaseConfig) -> "DatabaseConnection":
        db = cls(config)
        await db.connect()
        return db

    async def connect(self) -> None:
        if self._pool is not None:
            return
        if not self.config.enabled:
            raise PersistenceError("DATABASE_URL is not set")

        self._pool = await asyncpg.create_pool(
            self.config.connection_string,
            min_size=self.config.min_connections,
            max_size=self.config.max_connections,
            init=self._init_connection,
            command_timeout=60,
        )
        logger.info(
            f"Database pool created: {self.config.min_connections}-"
            f"{self.config.max_connections} connections"
        )

    async def _init_connection(self, conn: asyncpg.Connection) -> None:
        await conn.set_type_codec(
            "jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog"
        )

    async def close(self) -> None:
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("Database pool closed")

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise PersistenceError("Database not connected")
        return self._pool

    async def execute(self, query: str, *args) -> str:
        async with self.pool.acquire() as conn:
            return await conn.execute(query, *args)

    async def fetch(self, query: str, *args) -> List[asyncpg.Record]:
        async with self.pool.acquire() as conn:
            return await conn.fetch(query, *args)

    async def fetchrow(self, query: str, *args) -> Optional[asyncpg.Record]:
        async with self.pool.acquire() as conn:
            return await conn.fetchrow(query, *args)

    async def fetchval(self, query: str, *args):
        async with self.pool.acquire() as conn:
            return await conn.fetchval(query, *args)
