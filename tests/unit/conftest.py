"""Unit test fixtures: in-process store, fixed clock and audit log."""

from __future__ import annotations

from datetime import datetime
from datetime import timedelta
from datetime import timezone
from pathlib import Path

import pytest

from gravitas.audit import AuditLogger
from gravitas.config import AuditConfig
from gravitas.gateways import HashingEmbeddingGateway
from gravitas.gateways import InMemoryStore
from gravitas.models.schemas import Memory
from gravitas.observability import reset_latency_metrics

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock; ``advance`` moves it forward."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture()
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def embedder() -> HashingEmbeddingGateway:
    return HashingEmbeddingGateway(dims=64)


@pytest.fixture()
def audit_logger(tmp_path: Path) -> AuditLogger:
    return AuditLogger(AuditConfig(file_path=str(tmp_path / "audit.jsonl")))


@pytest.fixture(autouse=True)
def _reset_metrics():
    reset_latency_metrics()
    yield
    reset_latency_metrics()


@pytest.fixture()
def add_memory(store: InMemoryStore, clock: FakeClock):
    """Insert a memory straight into the store, stamped with the fake clock."""

    async def _add(
        content: str = "a quiet evening",
        *,
        owner_id: str = "owner-1",
        gravity: float = 0.5,
        **fields: object,
    ) -> Memory:
        fields.setdefault("created_at", clock())
        return await store.insert_memory(
            Memory(owner_id=owner_id, content=content, gravity_score=gravity, **fields)
        )

    return _add
