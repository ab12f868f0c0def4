"""
External sinks for tick data.

Two collaborator roles:
- CacheSink: low-latency last-price cache, set("stock:{id}", price)
- PersistenceSink: durable store, insert(id, price, timestamp)

Real implementations use Redis (redis-py, synchronous, called from dispatcher
worker threads) and Postgres (asyncpg, called from the flusher's event loop).
The Null* versions run the dashboard without any external services.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Protocol

import asyncpg
import redis

logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "stock:"

CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS stock_data (
    stock_id INTEGER NOT NULL,
    price REAL NOT NULL,
    ts TIMESTAMPTZ NOT NULL DEFAULT NOW()
)
"""
INSERT_SQL = "INSERT INTO stock_data (stock_id, price, ts) VALUES ($1, $2, $3)"


def cache_key(instrument_id: int) -> str:
    return f"{CACHE_KEY_PREFIX}{instrument_id}"


class CacheSink(Protocol):
    def set(self, key: str, value: float) -> None: ...


class PersistenceSink(Protocol):
    async def open(self) -> None: ...

    async def insert(
        self, instrument_id: int, price: float, timestamp: datetime | None = None
    ) -> None: ...

    async def close(self) -> None: ...


class NullCache:
    """Cache sink that drops everything."""

    def set(self, key: str, value: float) -> None:
        pass


class NullStore:
    """Persistence sink that drops everything."""

    async def open(self) -> None:
        pass

    async def insert(
        self, instrument_id: int, price: float, timestamp: datetime | None = None
    ) -> None:
        pass

    async def close(self) -> None:
        pass


class RedisCache:
    """
    Last-price cache in Redis.

    redis-py keeps a connection pool per client, so one instance is shared by
    every dispatcher worker.
    """

    def __init__(self, url: str = "redis://127.0.0.1:6379/0", client: redis.Redis | None = None) -> None:
        self.url = url
        self._client = client if client is not None else redis.Redis.from_url(url)

    def set(self, key: str, value: float) -> None:
        # Errors propagate to the dispatcher, which logs and drops them
        self._client.set(key, value)

    def close(self) -> None:
        self._client.close()


class PostgresStore:
    """
    Tick history in Postgres via an asyncpg pool.

    The pool is bound to the event loop that ran open(); every other call
    must come from that same loop (the flusher's).
    """

    def __init__(self, dsn: str, min_size: int = 1, max_size: int = 5) -> None:
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self._pool: asyncpg.Pool | None = None

    async def open(self) -> None:
        if self._pool is not None:
            return
        self._pool = await asyncpg.create_pool(
            dsn=self.dsn, min_size=self.min_size, max_size=self.max_size
        )
        async with self._pool.acquire() as conn:
            await conn.execute(CREATE_TABLE_SQL)
        logger.info("Connected to Postgres (pool %d-%d)", self.min_size, self.max_size)

    async def insert(
        self, instrument_id: int, price: float, timestamp: datetime | None = None
    ) -> None:
        if self._pool is None:
            raise RuntimeError("PostgresStore.open() has not been called")
        ts = timestamp if timestamp is not None else datetime.now(timezone.utc)
        await self._pool.execute(INSERT_SQL, instrument_id, price, ts)

    async def close(self) -> None:
        if self._pool is None:
            return
        pool, self._pool = self._pool, None
        await pool.close()
