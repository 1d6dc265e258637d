"""Shared pytest setup: suite markers and the backing-service containers.

The Neo4j and Redis containers start on first request and live for the
whole session.  Unit tests use in-process fakes and need neither.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from pathlib import Path
import time

import pytest
import redis as sync_redis
from dotenv import load_dotenv
from neo4j import AsyncGraphDatabase
from redis.asyncio import Redis
from testcontainers.core.container import DockerContainer

logger = logging.getLogger(__name__)

_REPO_ROOT = Path(__file__).resolve().parents[1]
_READY_ATTEMPTS = 30

# Variables already set in the environment win over the .env file.
load_dotenv(dotenv_path=_REPO_ROOT / ".env", override=False)


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    """Mark tests ``unit`` or ``integration`` after their directory."""
    markers = {"unit": pytest.mark.unit, "integration": pytest.mark.integration}
    for item in items:
        try:
            parts = Path(str(item.fspath)).resolve().relative_to(_REPO_ROOT).parts
        except ValueError:
            continue
        if len(parts) >= 2 and parts[0] == "tests" and parts[1] in markers:
            item.add_marker(markers[parts[1]])


def _wait_until_ready(service: str, check: Callable[[], None]) -> None:
    for attempt in range(1, _READY_ATTEMPTS + 1):
        try:
            check()
            return
        except Exception as exc:
            if attempt == _READY_ATTEMPTS:
                raise
            logger.debug(
                "%s not accepting connections yet (%d/%d): %s",
                service,
                attempt,
                _READY_ATTEMPTS,
                exc,
            )
            time.sleep(1)


# ---------------------------------------------------------------------------
# Neo4j
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def neo4j_container():
    """Bolt URI of a Neo4j 5 Community container with auth disabled."""
    container = (
        DockerContainer("neo4j:5-community")
        .with_exposed_ports(7687)
        .with_env("NEO4J_AUTH", "none")
    )
    with container as c:
        uri = f"bolt://{c.get_container_host_ip()}:{c.get_exposed_port(7687)}"

        async def _connect() -> None:
            driver = AsyncGraphDatabase.driver(uri)
            try:
                await driver.verify_connectivity()
            finally:
                await driver.close()

        _wait_until_ready("Neo4j", lambda: asyncio.run(_connect()))
        yield uri


@pytest.fixture()
async def neo4j_driver(neo4j_container):
    driver = AsyncGraphDatabase.driver(neo4j_container)
    yield driver
    await driver.close()


@pytest.fixture(scope="session")
def _graph_schema_initialized(neo4j_container):
    """Create constraints and the 4-dimension chunk indexes once."""
    from rolerag.store.schema import init_schema

    async def _init():
        driver = AsyncGraphDatabase.driver(neo4j_container)
        await init_schema(driver, embedding_dimensions=4)
        await driver.close()

    asyncio.run(_init())
    return True


# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def redis_container():
    """URL of a Redis 7 container."""
    container = DockerContainer("redis:7-alpine").with_exposed_ports(6379)
    with container as c:
        host = c.get_container_host_ip()
        port = int(c.get_exposed_port(6379))

        def _ping() -> None:
            client = sync_redis.Redis(host=host, port=port)
            try:
                client.ping()
            finally:
                client.close()

        _wait_until_ready("Redis", _ping)
        yield f"redis://{host}:{port}"


@pytest.fixture()
async def redis_client(redis_container):
    client = Redis.from_url(redis_container)
    yield client
    await client.aclose()
