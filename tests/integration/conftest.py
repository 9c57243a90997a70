"""
Integration fixtures: real PostgreSQL and Redis via testcontainers.

Containers are session scoped; every test gets a freshly created schema and
an empty Redis database. Run with `pytest -m integration` (Docker required).
"""

from __future__ import annotations

from typing import Any, Generator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from testcontainers.postgres import PostgresContainer
from testcontainers.redis import RedisContainer

from mathboard.core.database.base import Base
from mathboard.core.database.service import DatabaseService
from mathboard.core.logging.logger import get_logger
from mathboard.core.redis.service import RedisService

logger = get_logger(__name__)


# ============================================================================
# CONTAINERS
# ============================================================================


@pytest.fixture(scope="session")
def postgres_container() -> Generator[PostgresContainer, None, None]:
    logger.info("Starting PostgreSQL testcontainer...")
    container = PostgresContainer(image="postgres:17-alpine", driver="asyncpg")
    container.start()
    logger.info("PostgreSQL testcontainer started: %s", container.get_connection_url())

    yield container

    logger.info("Stopping PostgreSQL testcontainer...")
    container.stop()


@pytest.fixture(scope="session")
def redis_container() -> Generator[RedisContainer, None, None]:
    logger.info("Starting Redis testcontainer...")
    container = RedisContainer(image="redis:7-alpine")
    container.start()
    logger.info(
        "Redis testcontainer started: %s:%s",
        container.get_container_host_ip(),
        container.get_exposed_port(6379),
    )

    yield container

    logger.info("Stopping Redis testcontainer...")
    container.stop()


# ============================================================================
# SERVICES
# ============================================================================


@pytest_asyncio.fixture
async def live_database(postgres_container: PostgresContainer) -> Any:
    """DatabaseService on the PostgreSQL container with a clean schema."""
    import mathboard.database.models  # noqa: F401

    url = postgres_container.get_connection_url()

    engine = create_async_engine(url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    await engine.dispose()

    await DatabaseService.shutdown()
    await DatabaseService.initialize(url)
    yield DatabaseService
    await DatabaseService.shutdown()


@pytest_asyncio.fixture
async def live_redis(redis_container: RedisContainer) -> Any:
    """RedisService on the Redis container, flushed before each test."""
    host = redis_container.get_container_host_ip()
    port = redis_container.get_exposed_port(6379)

    await RedisService.shutdown()
    await RedisService.initialize(f"redis://{host}:{port}/0")
    await RedisService.client().flushdb()
    yield RedisService
    await RedisService.shutdown()
