"""Root conftest: suite markers and the Redis backend for integration tests.

Integration tests talk to ``GRAVITAS_REDIS_URL`` when it is set (from the
environment or a repository-root ``.env``); otherwise a ``redis:7-alpine``
testcontainer is started once per session. Without Docker those tests skip.
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Iterator
from pathlib import Path

import pytest
import redis as sync_redis
from dotenv import load_dotenv
from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from testcontainers.core.container import DockerContainer

logger = logging.getLogger(__name__)

ROOT = Path(__file__).resolve().parents[1]

load_dotenv(dotenv_path=ROOT / ".env", override=False)

_SUITE_MARKERS = {
    "unit": pytest.mark.unit,
    "integration": pytest.mark.integration,
}

_REDIS_READY_ATTEMPTS = 30


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    """Mark each test with the suite directory it lives in."""
    for item in items:
        try:
            parts = Path(str(item.fspath)).resolve().relative_to(ROOT).parts
        except ValueError:
            continue
        if len(parts) >= 2 and parts[0] == "tests" and parts[1] in _SUITE_MARKERS:
            item.add_marker(_SUITE_MARKERS[parts[1]])


def _wait_for_redis(url: str) -> None:
    client = sync_redis.Redis.from_url(url)
    try:
        for attempt in range(1, _REDIS_READY_ATTEMPTS + 1):
            try:
                client.ping()
                return
            except RedisConnectionError as exc:
                if attempt == _REDIS_READY_ATTEMPTS:
                    raise
                logger.debug("Redis not ready (%d/%d): %s", attempt, _REDIS_READY_ATTEMPTS, exc)
                time.sleep(1)
    finally:
        client.close()


# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def redis_url() -> Iterator[str]:
    """URL of the Redis instance shared by the whole session."""
    external = os.getenv("GRAVITAS_REDIS_URL")
    if external:
        _wait_for_redis(external)
        yield external
        return

    container = DockerContainer("redis:7-alpine").with_exposed_ports(6379)
    try:
        container.start()
    except Exception as exc:
        pytest.skip(f"Docker unavailable for Redis container: {exc}")
    try:
        url = (
            f"redis://{container.get_container_host_ip()}:"
            f"{container.get_exposed_port(6379)}"
        )
        _wait_for_redis(url)
        yield url
    finally:
        container.stop()


@pytest.fixture()
async def redis_client(redis_url: str):
    """Async client bound to the current test's event loop."""
    client = Redis.from_url(redis_url)
    yield client
    await client.aclose()
