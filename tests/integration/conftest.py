"""Integration fixtures: a clean Redis-backed store per test."""

from __future__ import annotations

import pytest

from gravitas.gateways import RedisStore


@pytest.fixture()
async def redis_store(redis_client):
    store = RedisStore(redis_client)
    await store.clear()
    yield store
    await store.clear()
