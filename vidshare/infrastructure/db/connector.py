"""
Name: Data Store Connector (PostgreSQL pool)

Responsibilities:
  - Open the single process-wide async connection pool, once, at startup
  - Configure every pooled connection (statement_timeout guardrail)
  - Expose the pool through a DataStoreHandle with ping() and close()

Collaborators:
  - psycopg_pool.AsyncConnectionPool
  - lifecycle/runner.py: connects before the pipeline is assembled, closes on drain
  - api/routes.get_data_store(): hands the handle to route groups

Principles:
  - Fail fast: unreachable store, bad credentials or a malformed URI raise
    DataStoreConnectionError and are never retried
  - No module-level singleton: the handle is created here and injected
"""

from __future__ import annotations

from typing import Any, Callable

import psycopg
from psycopg.conninfo import conninfo_to_dict
from psycopg_pool import AsyncConnectionPool

from ...crosscutting.exceptions import DataStoreConnectionError
from ...crosscutting.logger import logger
from .errors import DataStoreAlreadyConnectedError, DataStoreClosedError


class DataStoreHandle:
    """Shared handle to the backing store, owned by the process until shutdown."""

    def __init__(self, pool: AsyncConnectionPool, *, host: str):
        self._pool = pool
        self.host = host
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pool(self) -> AsyncConnectionPool:
        if self._closed:
            raise DataStoreClosedError("Data store handle is closed.")
        return self._pool

    def connection(self, timeout: float | None = None):
        """Async context manager yielding a pooled connection."""
        return self.pool.connection(timeout=timeout)

    async def ping(self) -> bool:
        """Connectivity check for readiness probes."""
        if self._closed:
            return False
        try:
            async with self._pool.connection() as conn:
                await conn.execute("SELECT 1")
            return True
        except psycopg.Error as e:
            logger.warning("data store ping failed", extra={"error": str(e)})
            return False

    async def close(self) -> None:
        """Close the pool (idempotent)."""
        if self._closed:
            return
        self._closed = True
        logger.info("closing data store pool", extra={"host": self.host})
        await self._pool.close()
        logger.info("data store pool closed")


class DataStoreConnector:
    """
    One-shot connector.

    connect() may be called once; the second call raises
    DataStoreAlreadyConnectedError so a process never holds two live handles.
    """

    def __init__(
        self,
        uri: str,
        *,
        min_size: int = 1,
        max_size: int = 10,
        connect_timeout: float = 10.0,
        statement_timeout_ms: int = 30000,
        pool_factory: Callable[..., Any] = AsyncConnectionPool,
    ):
        self._uri = uri
        self._min_size = min_size
        self._max_size = max_size
        self._connect_timeout = connect_timeout
        self._statement_timeout_ms = statement_timeout_ms
        self._pool_factory = pool_factory
        self._handle: DataStoreHandle | None = None

    @classmethod
    def from_settings(cls, settings) -> "DataStoreConnector":
        return cls(
            settings.data_store_uri,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            connect_timeout=settings.db_connect_timeout_seconds,
            statement_timeout_ms=settings.db_statement_timeout_ms,
        )

    async def connect(self) -> DataStoreHandle:
        """
        Open the pool and wait until it is ready.

        Raises:
            DataStoreConnectionError: malformed URI, unreachable store, auth failure
            DataStoreAlreadyConnectedError: connect() already succeeded
        """
        if self._handle is not None:
            raise DataStoreAlreadyConnectedError("Data store already connected.")

        try:
            params = conninfo_to_dict(self._uri)
        except psycopg.ProgrammingError as exc:
            raise DataStoreConnectionError(
                f"Database connection failed: malformed DATA_STORE_URI ({exc})",
                original_error=exc,
            ) from exc
        host = params.get("host") or "localhost"

        pool = self._pool_factory(
            self._uri,
            min_size=self._min_size,
            max_size=self._max_size,
            open=False,
            configure=self._configure_connection,
            timeout=self._connect_timeout,
            name="vidshare",
        )

        try:
            await pool.open(wait=True, timeout=self._connect_timeout)
        except (psycopg.Error, OSError) as exc:
            await pool.close()
            raise DataStoreConnectionError(
                f"Database connection failed: {exc}", original_error=exc
            ) from exc

        logger.info("data store connected", extra={"host": host})
        self._handle = DataStoreHandle(pool, host=host)
        return self._handle

    async def _configure_connection(self, conn) -> None:
        timeout_ms = int(self._statement_timeout_ms)
        if timeout_ms > 0:
            await conn.execute(f"SET statement_timeout = {timeout_ms}")
            await conn.commit()
