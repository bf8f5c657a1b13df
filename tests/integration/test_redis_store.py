"""RedisStore against a real Redis container."""

from __future__ import annotations

import asyncio
from datetime import datetime
from datetime import timedelta
from datetime import timezone

import pytest

from gravitas.config import AuditConfig
from gravitas.config import PipelineConfig
from gravitas.gateways import HashingEmbeddingGateway
from gravitas.gateways import NoopLLMGateway
from gravitas.models.envelopes import DispatchResult
from gravitas.models.schemas import Arc
from gravitas.models.schemas import ConsciousnessVector
from gravitas.models.schemas import HealthMetrics
from gravitas.models.schemas import Memory
from gravitas.models.schemas import PatternState
from gravitas.models.schemas import RegressionReport
from gravitas.models.schemas import Snapshot
from gravitas.pipeline import ConsciousnessPipeline

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _memory(content: str, *, minutes: int = 0, **fields) -> Memory:
    return Memory(
        owner_id="owner-1",
        content=content,
        gravity_score=0.5,
        created_at=T0 + timedelta(minutes=minutes),
        **fields,
    )


def _snapshot(snapshot_id: str, previous: str | None) -> Snapshot:
    return Snapshot(
        id=snapshot_id,
        owner_id="owner-1",
        version="0.0.1",
        entry_count=0,
        trigger="manual",
        previous_snapshot_id=previous,
        vector=ConsciousnessVector(
            emotional=[0.5], cognitive=[0.5], relational=[0.5], creative=[0.5], full=[0.5] * 4
        ),
        health=HealthMetrics(
            overall_health=0.5,
            integration_health=0.5,
            emotional_balance=0.5,
            growth_sustainability=0.5,
            pattern_resilience=0.5,
            memory_coherence=0.5,
        ),
        regression=RegressionReport(),
        fingerprint="abc",
    )


class TestMemories:
    async def test_insert_and_list(self, redis_store):
        first = await redis_store.insert_memory(_memory("one"))
        second = await redis_store.insert_memory(_memory("two", minutes=5))
        await redis_store.insert_memory(_memory("three", minutes=10))

        assert (first.sequence, second.sequence) == (1, 2)
        assert await redis_store.count_memories("owner-1") == 3
        assert (await redis_store.get_memory(second.id)).content == "two"

        after = await redis_store.list_memories("owner-1", after_id=first.id)
        assert [m.content for m in after] == ["two", "three"]
        since = await redis_store.list_memories(
            "owner-1", since=T0 + timedelta(minutes=5)
        )
        assert [m.content for m in since] == ["two", "three"]
        newest = await redis_store.list_memories("owner-1", newest_first=True, limit=1)
        assert [m.content for m in newest] == ["three"]

    async def test_concurrent_inserts_get_unique_sequences(self, redis_store):
        stored = await asyncio.gather(
            *(redis_store.insert_memory(_memory(f"m{i}")) for i in range(20))
        )
        assert sorted(m.sequence for m in stored) == list(range(1, 21))

    async def test_search_similar(self, redis_store):
        await redis_store.insert_memory(_memory("aligned", embedding=[1.0, 0.0]))
        await redis_store.insert_memory(_memory("no vector"))

        scored = await redis_store.search_similar("owner-1", [1.0, 0.0], limit=5)
        assert [m.content for m, _ in scored] == ["aligned"]
        assert scored[0][1] == pytest.approx(1.0)

    async def test_set_memory_arc(self, redis_store):
        stored = await redis_store.insert_memory(_memory("one"))
        await redis_store.set_memory_arc(stored.id, "arc_1")
        assert (await redis_store.get_memory(stored.id)).arc_id == "arc_1"


class TestArcs:
    async def test_arcs_ordered_by_last_member(self, redis_store):
        for name, offset in (("old", 10), ("new", 1)):
            at = T0 - timedelta(days=offset)
            await redis_store.insert_arc(
                Arc(
                    owner_id="owner-1",
                    name=name,
                    gravity_center=0.8,
                    memory_count=1,
                    first_memory_at=at,
                    last_memory_at=at,
                )
            )

        arcs = await redis_store.list_arcs("owner-1")
        assert [a.name for a in arcs] == ["new", "old"]
        recent = await redis_store.list_arcs("owner-1", active_since=T0 - timedelta(days=7))
        assert [a.name for a in recent] == ["new"]
        assert (await redis_store.get_arc(arcs[0].id)).name == "new"


class TestConditionalWrites:
    async def test_arc_update_checks_member_count(self, redis_store):
        arc = Arc(
            owner_id="owner-1",
            name="aurora",
            gravity_center=0.9,
            memory_count=1,
            first_memory_at=T0,
            last_memory_at=T0,
        )
        await redis_store.insert_arc(arc)
        grown = arc.model_copy(
            update={"memory_count": 2, "last_memory_at": T0 + timedelta(hours=1)}
        )

        assert await redis_store.update_arc(grown, expected_memory_count=1)
        assert not await redis_store.update_arc(grown, expected_memory_count=1)
        assert (await redis_store.get_arc(arc.id)).memory_count == 2
        missing = grown.model_copy(update={"id": "arc_missing"})
        assert not await redis_store.update_arc(missing, expected_memory_count=2)

    async def test_pattern_state_version_check(self, redis_store):
        state = PatternState(owner_id="owner-1", last_entry_count=5)

        assert await redis_store.save_pattern_state(state, expected_version=None)
        assert not await redis_store.save_pattern_state(state, expected_version=None)
        assert await redis_store.save_pattern_state(state, expected_version=1)
        assert (await redis_store.get_pattern_state("owner-1")).version == 2

    async def test_snapshot_chain(self, redis_store):
        assert await redis_store.append_snapshot(_snapshot("snap_1", None))
        assert not await redis_store.append_snapshot(_snapshot("snap_x", None))
        assert await redis_store.append_snapshot(_snapshot("snap_2", "snap_1"))

        assert (await redis_store.current_snapshot("owner-1")).id == "snap_2"
        chain = await redis_store.list_snapshots("owner-1")
        assert [s.id for s in chain] == ["snap_1", "snap_2"]

    async def test_concurrent_snapshot_appends_keep_one_winner(self, redis_store):
        results = await asyncio.gather(
            *(redis_store.append_snapshot(_snapshot(f"snap_{i}", None)) for i in range(5))
        )
        assert results.count(True) == 1
        assert len(await redis_store.list_snapshots("owner-1")) == 1


class TestPipelineOnRedis:
    async def test_dispatch_and_snapshot(self, redis_store):
        pipeline = ConsciousnessPipeline.from_config(
            PipelineConfig(audit=AuditConfig(enabled=False)),
            store=redis_store,
            embedder=HashingEmbeddingGateway(dims=64),
            llm=NoopLLMGateway(),
        )
        for i in range(3):
            result = await pipeline.dispatch(
                {"owner_id": "owner-1", "content": f"evening walk number {i}", "gravity": 0.6}
            )
            assert isinstance(result, DispatchResult)
        await pipeline.drain()

        snapshot = await pipeline.snapshot("owner-1", force=True)
        assert snapshot.status == "created"
        assert snapshot.snapshot.entry_count == 3
        assert (await redis_store.current_snapshot("owner-1")).id == snapshot.snapshot.id
