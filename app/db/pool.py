# app/db/pool.py
"""
PostgreSQL connection pool manager using psycopg_pool.

Batch analysis holds one connection per in-flight record while persisting,
so max_size should stay at or above the largest batch size in use.
"""

import asyncio
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DatabasePoolManager:
    """
    Database connection pool manager.

    Owns the AsyncConnectionPool lifecycle (open on startup, close on
    shutdown) and hands out autocommit connections or transactions.
    """

    def __init__(self):
        self.pool: AsyncConnectionPool | None = None
        self._initialized = False
        self._closed = False

    @property
    def initialized(self) -> bool:
        return self._initialized and not self._closed

    async def initialize(self) -> None:
        """Initialize the connection pool on application or worker startup."""
        if self._initialized:
            logger.warning("Database pool already initialized")
            return

        if self._closed:
            raise RuntimeError("Cannot reinitialize closed pool")

        try:
            logger.info("Initializing database connection pool")
            pool_config = self._get_pool_config()

            self.pool = AsyncConnectionPool(
                conninfo=settings.SUPABASE_DB_URL,
                open=False,
                **pool_config,
            )
            await self.pool.open()
            await self.pool.wait()

            # Connections must be usable before the smoke test runs
            self._initialized = True
            await self._test_pool_connections()

            logger.info(
                "Database pool initialized successfully",
                min_size=pool_config["min_size"],
                max_size=pool_config["max_size"],
                timeout=pool_config["timeout"],
            )

        except Exception as e:
            logger.error("Failed to initialize database pool", error=str(e))
            self._initialized = False
            if self.pool:
                try:
                    await self.pool.close()
                except Exception as close_error:
                    logger.warning("Error closing partially opened pool", error=str(close_error))
                self.pool = None
            raise RuntimeError(f"Database pool initialization failed: {e}") from e

    def _get_pool_config(self) -> dict[str, Any]:
        config = settings.get_db_pool_config()
        config.update(
            {
                "check": AsyncConnectionPool.check_connection,
                "configure": self._configure_connection,
            }
        )
        return config

    async def _configure_connection(self, conn: psycopg.AsyncConnection) -> None:
        """Configure each new connection from the pool."""
        try:
            conn.row_factory = dict_row

            # Autocommit keeps idle connections out of INTRANS state
            await conn.set_autocommit(True)

            app_name = f"inbox-analysis-{settings.environment}"
            await conn.execute(sql.SQL("SET application_name = {}").format(sql.Literal(app_name)))
            await conn.execute("SET timezone = 'UTC'")
            await conn.execute("SET statement_timeout = '60s'")

        except Exception:
            logger.exception("Failed to configure database connection")

    async def _test_pool_connections(self) -> None:
        async with self.connection() as conn:
            cur = await conn.execute("SELECT 1 AS ok")
            row = await cur.fetchone()
        if not row or row["ok"] != 1:
            raise RuntimeError("Database connection test failed - got unexpected result")

    async def close(self) -> None:
        """Close the connection pool gracefully."""
        if not self._initialized or self._closed:
            return

        try:
            logger.info("Closing database connection pool")

            if self.pool:
                await asyncio.wait_for(self.pool.close(), timeout=30.0)

            self._initialized = False
            self._closed = True
            logger.info("Database pool closed successfully")

        except TimeoutError:
            logger.warning("Database pool close timed out, forcing shutdown")
        except Exception as e:
            logger.error("Error closing database pool", error=str(e))

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """
        Get a connection from the pool.

        Usage:
            async with db_pool.connection() as conn:
                await conn.execute("SELECT 1")
        """
        if not self._initialized:
            raise RuntimeError("Database pool not initialized. Call initialize() first.")

        if self._closed:
            raise RuntimeError("Database pool is closed")

        try:
            async with self.pool.connection() as conn:
                yield conn

        except Exception as e:
            logger.error("Database connection error", error=str(e), error_type=type(e).__name__)
            raise

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """
        Get a connection with automatic transaction management.

        Usage:
            async with db_pool.transaction() as conn:
                await conn.execute("UPDATE emails ...")
                await conn.execute("INSERT INTO actions ...")
                # Commit on success, rollback on exception
        """
        async with self.connection() as conn:
            async with conn.transaction():
                yield conn

    async def health_check(self) -> dict[str, Any]:
        """
        Pool stats plus a round-trip query.

        Unhealthy when the round trip fails or callers are already queueing for
        connections, since a full batch would then stall on persistence.
        """
        if not self.initialized:
            error = "Pool is closed" if self._closed else "Pool not initialized"
            return {"healthy": False, "error": error, "service": "database_pool"}

        stats = self.pool.get_stats()
        pool_size = stats.get("pool_size", 0)
        pool_available = stats.get("pool_available", 0)
        requests_waiting = stats.get("requests_waiting", 0)

        t0 = time.monotonic()
        try:
            await self._test_pool_connections()
        except Exception as e:
            logger.error("Database pool health check failed", error=str(e))
            return {"healthy": False, "service": "database_pool", "error": str(e)}
        round_trip_ms = round((time.monotonic() - t0) * 1000, 2)

        in_use = pool_size - pool_available
        utilization = round(in_use / pool_size * 100, 2) if pool_size else 0.0

        health = {
            "healthy": requests_waiting == 0,
            "service": "database_pool",
            "connection_time_ms": round_trip_ms,
            "pool_stats": {
                "pool_size": pool_size,
                "pool_available": pool_available,
                "pool_utilization_percent": utilization,
                "requests_waiting": requests_waiting,
            },
        }
        if requests_waiting:
            health["error"] = f"{requests_waiting} requests waiting for connections"

        max_size = self.pool.max_size
        if max_size < settings.ANALYSIS_DEFAULT_BATCH_SIZE:
            health["warnings"] = [
                f"Pool max_size {max_size} is below the default batch size "
                f"{settings.ANALYSIS_DEFAULT_BATCH_SIZE}"
            ]
        return health


# Global pool instance
db_pool = DatabasePoolManager()


# Convenience functions for easy imports
async def get_db_connection():
    """Get database connection from pool."""
    return db_pool.connection()


async def db_health_check() -> dict[str, Any]:
    """Get database pool health status."""
    return await db_pool.health_check()


@asynccontextmanager
async def pool_session() -> AsyncGenerator[DatabasePoolManager, None]:
    """
    Make sure the pool is open for a worker run.

    Opens the pool if needed and closes it afterwards only if this call
    opened it, so jobs work both standalone and inside the API process.
    """
    opened_here = not db_pool.initialized
    if opened_here:
        await db_pool.initialize()
    try:
        yield db_pool
    finally:
        if opened_here:
            await db_pool.close()
