"""
Async SQLAlchemy engine and sessions for the snapshot, statistics, wallet
and claim tables.

`get_transaction()` is the only way writes happen: it commits when the
block exits cleanly and rolls back on any exception. `get_session()` is for
reads. Driver-level failures (DBAPIError) inside a transaction count
against a circuit breaker; once it opens, new transactions are refused
immediately with DatabaseCircuitOpenError. Domain exceptions still roll back
but never trip the breaker.

PostgreSQL sessions get `SET LOCAL statement_timeout`; SQLite (tests) gets a
NullPool and no timeout. `health_check()` is the pre-flight probe a backup
runs before touching any partition.

    async with DatabaseService.get_transaction() as session:
        session.add_all(rows)
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from mathboard.core.circuit_breaker import CircuitBreaker
from mathboard.core.config.config import Config
from mathboard.core.database.base import Base
from mathboard.core.exceptions import CircuitBreakerError
from mathboard.core.logging.logger import get_logger

logger = get_logger(__name__)


class DatabaseInitializationError(RuntimeError):
    pass


class DatabaseNotInitializedError(RuntimeError):
    pass


class DatabaseCircuitOpenError(CircuitBreakerError):
    """Transaction refused: the database circuit is open."""


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


class DatabaseService:
    """Process-wide engine holder; every method is a classmethod."""

    _engine: Optional[AsyncEngine] = None
    _sessions: Optional[async_sessionmaker[AsyncSession]] = None
    _breaker: Optional[CircuitBreaker] = None
    _statement_timeout_ms: Optional[int] = None
    _lock: asyncio.Lock = asyncio.Lock()

    # ========================================================================
    # Lifecycle
    # ========================================================================

    @classmethod
    async def initialize(cls, database_url: Optional[str] = None) -> None:
        """
        Create the engine and session factory once.

        `database_url` overrides Config.DATABASE_URL (tests pass SQLite or a
        testcontainer URL). Raises DatabaseInitializationError when no URL
        is available or the engine cannot be built.
        """
        async with cls._lock:
            if cls._engine is not None:
                return

            url = database_url or Config.DATABASE_URL
            if not url:
                raise DatabaseInitializationError("No database URL configured (set DATABASE_URL)")

            try:
                parsed = make_url(url)
                backend = parsed.get_backend_name()
                options: Dict[str, Any] = {"echo": Config.DATABASE_ECHO}
                if backend == "sqlite" or Config.is_testing():
                    options["poolclass"] = NullPool
                else:
                    options.update(
                        pool_pre_ping=True,
                        pool_size=Config.DATABASE_POOL_SIZE,
                        max_overflow=Config.DATABASE_MAX_OVERFLOW,
                        pool_recycle=Config.DATABASE_POOL_RECYCLE,
                    )
                engine = create_async_engine(url, **options)
            except Exception as exc:
                logger.critical(
                    "Could not create database engine",
                    extra={"error_type": type(exc).__name__, "error": str(exc)},
                )
                raise DatabaseInitializationError(f"Could not create database engine: {exc}") from exc

            cls._engine = engine
            cls._sessions = async_sessionmaker(engine, expire_on_commit=False)
            cls._breaker = CircuitBreaker(
                "database",
                failure_threshold=Config.CIRCUIT_BREAKER_FAILURE_THRESHOLD,
                recovery_timeout=float(Config.CIRCUIT_BREAKER_RECOVERY_TIMEOUT),
                half_open_max_calls=3,
            )
            cls._statement_timeout_ms = (
                Config.DATABASE_STATEMENT_TIMEOUT_MS if backend == "postgresql" else None
            )
            logger.info(
                "Database engine ready",
                extra={"backend": backend, "database": parsed.database, "pooled": "poolclass" not in options},
            )

    @classmethod
    async def shutdown(cls) -> None:
        async with cls._lock:
            engine, cls._engine = cls._engine, None
            cls._sessions = None
            cls._breaker = None
            cls._statement_timeout_ms = None
            if engine is not None:
                await engine.dispose()
                logger.info("Database engine disposed")

    @classmethod
    def is_initialized(cls) -> bool:
        return cls._engine is not None

    @classmethod
    async def create_schema(cls) -> None:
        """create_all for every mapped table; bootstrap and tests only."""
        engine = cls._require_engine()

        import mathboard.database.models  # noqa: F401  (registers tables)

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema ensured", extra={"tables": sorted(Base.metadata.tables)})

    # ========================================================================
    # Health
    # ========================================================================

    @classmethod
    async def health_check(cls) -> bool:
        """SELECT 1. False when uninitialized or unreachable; never raises."""
        if cls._engine is None:
            return False

        start = time.perf_counter()
        try:
            async with cls._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (DBAPIError, OSError) as exc:
            logger.warning(
                "Database health check failed",
                extra={"error_type": type(exc).__name__, "error": str(exc), "duration_ms": _elapsed_ms(start)},
            )
            return False
        return True

    @classmethod
    def get_circuit_breaker_metrics(cls) -> Dict[str, Any]:
        if cls._breaker is None:
            return {"circuit_state": "NOT_INITIALIZED"}
        return cls._breaker.snapshot()

    # ========================================================================
    # Sessions
    # ========================================================================

    @classmethod
    def _require_engine(cls) -> AsyncEngine:
        if cls._engine is None or cls._sessions is None:
            raise DatabaseNotInitializedError("DatabaseService.initialize() has not been awaited")
        return cls._engine

    @classmethod
    async def _prepare(cls, session: AsyncSession) -> None:
        if cls._statement_timeout_ms is not None:
            await session.execute(text(f"SET LOCAL statement_timeout = {int(cls._statement_timeout_ms)}"))

    @classmethod
    @asynccontextmanager
    async def get_session(cls) -> AsyncGenerator[AsyncSession, None]:
        """Read session; nothing is committed."""
        cls._require_engine()
        assert cls._sessions is not None

        async with cls._sessions() as session:
            await cls._prepare(session)
            yield session

    @classmethod
    @asynccontextmanager
    async def get_transaction(cls) -> AsyncGenerator[AsyncSession, None]:
        """Write session: commit on clean exit, rollback and re-raise otherwise."""
        cls._require_engine()
        assert cls._sessions is not None and cls._breaker is not None

        breaker = cls._breaker
        if not await breaker.allow_request():
            logger.warning("Database transaction refused; circuit open")
            raise DatabaseCircuitOpenError("database", breaker.consecutive_failures, breaker.retry_after())

        start = time.perf_counter()
        async with cls._sessions() as session:
            try:
                await cls._prepare(session)
                yield session
                await session.commit()
            except DBAPIError as exc:
                await session.rollback()
                await breaker.record_failure()
                logger.error(
                    "Database transaction rolled back",
                    extra={"error_type": type(exc).__name__, "error": str(exc), "duration_ms": _elapsed_ms(start)},
                )
                raise
            except BaseException:
                await session.rollback()
                raise
            await breaker.record_success()
