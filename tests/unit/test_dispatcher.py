"""Unit tests for the memory dispatcher."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from gravitas.audit import AuditEventType
from gravitas.config import DispatcherConfig
from gravitas.config import FusionConfig
from gravitas.engine.dispatcher import MemoryDispatcher
from gravitas.engine.dispatcher import classify_gravity
from gravitas.engine.fusion import ArcFusionEngine
from gravitas.errors import EmbeddingError
from gravitas.errors import InputValidationError
from gravitas.errors import StoreError
from gravitas.models.envelopes import DispatchInput
from gravitas.models.schemas import MemoryType


def _request(content: str = "Walked along the river", **fields) -> DispatchInput:
    fields.setdefault("owner_id", "owner-1")
    return DispatchInput(content=content, **fields)


# ---------------------------------------------------------------------------
# Gravity
# ---------------------------------------------------------------------------


class TestGravity:
    @pytest.mark.parametrize(
        ("gravity", "label"),
        [
            (0.95, "critical"),
            (0.9, "critical"),
            (0.7, "significant"),
            (0.5, "moderate"),
            (0.3, "light"),
            (0.29, "minimal"),
        ],
    )
    def test_classify_gravity(self, gravity, label):
        assert classify_gravity(gravity) == label

    @pytest.mark.asyncio
    async def test_system_memory_gravity_halved(self, store, embedder, clock):
        dispatcher = MemoryDispatcher(store, embedder, clock=clock)
        result = await dispatcher.dispatch(
            _request("Nightly index rebuilt", gravity=0.8, memory_type="system")
        )
        assert result.memory.memory_type is MemoryType.system
        assert result.memory.gravity_score == pytest.approx(0.4)
        assert result.gravity_class == "light"

    @pytest.mark.asyncio
    async def test_user_message_flag_overrides_system_type(self, store, embedder, clock):
        dispatcher = MemoryDispatcher(store, embedder, clock=clock)
        result = await dispatcher.dispatch(
            _request(
                gravity=0.8,
                memory_type="system",
                metadata={"is_user_message": True},
            )
        )
        assert result.memory.memory_type is MemoryType.user
        assert result.memory.gravity_score == pytest.approx(0.8)

    @pytest.mark.asyncio
    async def test_default_and_clamped_gravity(self, store, embedder, clock):
        dispatcher = MemoryDispatcher(store, embedder, clock=clock)
        default = await dispatcher.dispatch(_request())
        clamped = await dispatcher.dispatch(_request(gravity=1.7))
        assert default.memory.gravity_score == 0.5
        assert clamped.memory.gravity_score == 1.0


# ---------------------------------------------------------------------------
# Validation and storage
# ---------------------------------------------------------------------------


class TestDispatch:
    @pytest.mark.asyncio
    async def test_missing_owner_rejected(self, store, embedder):
        dispatcher = MemoryDispatcher(store, embedder)
        with pytest.raises(InputValidationError):
            await dispatcher.dispatch(_request(owner_id="  "))
        assert await store.count_memories("") == 0

    @pytest.mark.asyncio
    async def test_blank_content_rejected(self, store, embedder):
        dispatcher = MemoryDispatcher(store, embedder)
        with pytest.raises(InputValidationError):
            await dispatcher.dispatch(_request("   "))
        assert await store.count_memories("owner-1") == 0

    @pytest.mark.asyncio
    async def test_stores_memory_with_embedding(self, store, embedder, clock):
        dispatcher = MemoryDispatcher(store, embedder, clock=clock)
        result = await dispatcher.dispatch(_request(emotion="calm", topic="walks"))

        stored = await store.get_memory(result.memory.id)
        assert stored is not None
        assert stored.embedding is not None
        assert stored.created_at == clock()
        assert result.vital_signs["has_embedding"] is True
        assert result.vital_signs["entry_count"] == 1

    @pytest.mark.asyncio
    async def test_embedding_failure_is_soft(self, store, clock):
        embedder = AsyncMock()
        embedder.embed.side_effect = EmbeddingError("provider down")
        dispatcher = MemoryDispatcher(store, embedder, clock=clock)

        result = await dispatcher.dispatch(_request())

        assert result.memory.embedding is None
        assert result.vital_signs["has_embedding"] is False
        assert await store.count_memories("owner-1") == 1

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self, embedder):
        store = AsyncMock()
        store.insert_memory.side_effect = StoreError("write failed")
        dispatcher = MemoryDispatcher(store, embedder)

        with pytest.raises(StoreError):
            await dispatcher.dispatch(_request())

    @pytest.mark.asyncio
    async def test_dispatch_is_audited(self, store, embedder, audit_logger):
        dispatcher = MemoryDispatcher(store, embedder, audit_logger=audit_logger)
        result = await dispatcher.dispatch(_request(gravity=0.6))

        events = await audit_logger.read_events(
            event_type=AuditEventType.MEMORY_DISPATCHED
        )
        assert len(events) == 1
        assert events[0].payload["memory_id"] == result.memory.id


# ---------------------------------------------------------------------------
# Cascades
# ---------------------------------------------------------------------------


class TestCascades:
    @pytest.mark.asyncio
    async def test_low_gravity_skips_fusion(self, store, embedder, clock):
        fusion = ArcFusionEngine(store, clock=clock)
        dispatcher = MemoryDispatcher(store, embedder, fusion=fusion, clock=clock)
        result = await dispatcher.dispatch(_request(gravity=0.5))
        assert [c.kind for c in result.cascades] == []

    @pytest.mark.asyncio
    async def test_high_gravity_without_fusion_engine(self, store, embedder, clock):
        dispatcher = MemoryDispatcher(store, embedder, clock=clock)

        result = await dispatcher.dispatch(_request(gravity=0.95))

        assert [c.kind for c in result.cascades] == []
        assert result.memory.arc_id is None

    @pytest.mark.asyncio
    async def test_high_gravity_emotional_memory_founds_arc(self, store, embedder, clock):
        fusion = ArcFusionEngine(store, clock=clock)
        dispatcher = MemoryDispatcher(store, embedder, fusion=fusion, clock=clock)

        result = await dispatcher.dispatch(_request(gravity=0.95, emotion="awe"))

        fusion_result = result.cascades[0]
        assert fusion_result.kind == "arc_fusion"
        assert fusion_result.status == "completed"
        assert fusion_result.detail["action"] == "create_new_arc"
        assert result.memory.arc_id == fusion_result.detail["arc_id"]
        assert result.vital_signs["arc_id"] == result.memory.arc_id

    @pytest.mark.asyncio
    async def test_fusion_failure_reported_not_raised(
        self, store, embedder, clock, audit_logger
    ):
        fusion = AsyncMock()
        fusion.process.side_effect = RuntimeError("boom")
        dispatcher = MemoryDispatcher(
            store, embedder, fusion=fusion, audit_logger=audit_logger, clock=clock
        )

        result = await dispatcher.dispatch(_request(gravity=0.8))

        assert result.cascades[0].status == "failed"
        assert result.cascades[0].error == "boom"
        assert await store.count_memories("owner-1") == 1
        failures = await audit_logger.read_events(event_type=AuditEventType.CASCADE_FAILED)
        assert failures[0].payload["cascade"] == "arc_fusion"

    @pytest.mark.asyncio
    async def test_emotion_flags_pattern_analysis(self, store, embedder):
        dispatcher = MemoryDispatcher(store, embedder)
        result = await dispatcher.dispatch(_request(emotion="joy"))
        assert result.cascades[0].kind == "pattern_analysis"
        assert result.cascades[0].status == "flagged"
        assert result.cascades[0].detail == {"emotion": "joy", "scheduled": False}

    @pytest.mark.asyncio
    async def test_neutral_emotion_not_flagged(self, store, embedder):
        dispatcher = MemoryDispatcher(store, embedder)
        result = await dispatcher.dispatch(_request(emotion="neutral"))
        assert result.cascades == []

    @pytest.mark.asyncio
    async def test_identity_anchor_flags_reflection(self, store, embedder):
        dispatcher = MemoryDispatcher(store, embedder)
        result = await dispatcher.dispatch(_request(identity_anchor=True))
        assert [c.kind for c in result.cascades] == ["reflection"]

    @pytest.mark.asyncio
    async def test_background_pattern_run(self, store, embedder):
        patterns = AsyncMock()
        dispatcher = MemoryDispatcher(
            store,
            embedder,
            pattern_engine=patterns,
            config=DispatcherConfig(background_pattern_run=True),
        )

        result = await dispatcher.dispatch(_request(emotion="joy"))
        await dispatcher.drain()

        assert result.cascades[0].detail["scheduled"] is True
        patterns.detect.assert_awaited_once()
        assert patterns.detect.await_args.args[0] == "owner-1"

    @pytest.mark.asyncio
    async def test_background_failure_is_logged(self, store, embedder, audit_logger):
        snapshots = AsyncMock()
        snapshots.snapshot.side_effect = RuntimeError("snapshot broke")
        dispatcher = MemoryDispatcher(
            store,
            embedder,
            snapshot_engine=snapshots,
            audit_logger=audit_logger,
            config=DispatcherConfig(background_snapshot_check=True),
        )

        await dispatcher.dispatch(_request())
        await dispatcher.drain()

        failures = await audit_logger.read_events(event_type=AuditEventType.CASCADE_FAILED)
        assert [f.payload["cascade"] for f in failures] == ["snapshot_check"]

    @pytest.mark.asyncio
    async def test_fusion_runs_with_jaccard_similarity(self, store, embedder, clock):
        fusion = ArcFusionEngine(
            store, config=FusionConfig(semantic_similarity="jaccard"), clock=clock
        )
        dispatcher = MemoryDispatcher(store, embedder, fusion=fusion, clock=clock)

        first = await dispatcher.dispatch(
            _request("Watching the aurora over the frozen lake", gravity=0.95, emotion="awe")
        )
        clock.advance(hours=1)
        second = await dispatcher.dispatch(
            _request("The aurora over the lake again tonight", gravity=0.93, emotion="awe")
        )
        clock.advance(hours=1)
        third = await dispatcher.dispatch(_request("Paid the electricity bill", gravity=0.4))

        assert first.cascades[0].detail["action"] == "create_new_arc"
        assert second.cascades[0].detail["action"] == "merge_into_arc"
        assert second.memory.arc_id == first.memory.arc_id
        assert third.memory.arc_id is None
        assert [c.kind for c in third.cascades] == []
