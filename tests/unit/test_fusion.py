"""Unit tests for arc fusion."""

from __future__ import annotations

import asyncio

import pytest

from gravitas.audit import AuditEventType
from gravitas.config import FusionConfig
from gravitas.engine.fusion import ArcFusionEngine
from gravitas.engine.fusion import arc_name
from gravitas.engine.fusion import blend_tone
from gravitas.engine.fusion import fusion_score
from gravitas.engine.fusion import jaccard
from gravitas.engine.fusion import semantic_similarity
from gravitas.engine.fusion import term_set
from gravitas.gateways import InMemoryStore
from gravitas.models.schemas import Memory

JACCARD = FusionConfig(semantic_similarity="jaccard")


@pytest.fixture()
def engine(store, clock, audit_logger) -> ArcFusionEngine:
    return ArcFusionEngine(store, config=JACCARD, audit_logger=audit_logger, clock=clock)


async def _assert_center_is_member_mean(store, arc_id: str) -> None:
    arc = await store.get_arc(arc_id)
    members = await store.get_memories(arc.member_ids)
    assert arc.memory_count == len(members)
    mean = sum(m.gravity_score for m in members) / len(members)
    assert arc.gravity_center == pytest.approx(mean)


# ---------------------------------------------------------------------------
# Scoring helpers
# ---------------------------------------------------------------------------


class TestScoring:
    def test_fusion_score_monotone_in_semantic(self):
        low = fusion_score(
            semantic=0.2, emotional_match=0.5, gravity_alignment=0.5, recency=0.5, config=JACCARD
        )
        high = fusion_score(
            semantic=0.8, emotional_match=0.5, gravity_alignment=0.5, recency=0.5, config=JACCARD
        )
        assert high > low

    def test_fusion_score_monotone_in_gravity_alignment(self):
        scores = [
            fusion_score(
                semantic=0.5,
                emotional_match=1.0,
                gravity_alignment=g,
                recency=1.0,
                config=JACCARD,
            )
            for g in (0.0, 0.25, 0.5, 0.75, 1.0)
        ]
        assert scores == sorted(scores)

    def test_fusion_score_all_ones(self):
        score = fusion_score(
            semantic=1.0, emotional_match=1.0, gravity_alignment=1.0, recency=1.0, config=JACCARD
        )
        assert score == pytest.approx(0.95)

    def test_jaccard(self):
        assert jaccard({"a", "b"}, {"b", "c"}) == pytest.approx(1 / 3)
        assert jaccard(set(), {"a"}) == 0.0

    def test_term_set_drops_short_tokens(self):
        memory = Memory(owner_id="o", content="We saw an owl at the lake", gravity_score=0.5)
        assert term_set(memory) == {"saw", "owl", "the", "lake"}

    def test_semantic_similarity_prefers_embeddings(self):
        a = Memory(owner_id="o", content="one", gravity_score=0.5, embedding=[1.0, 0.0])
        b = Memory(owner_id="o", content="two", gravity_score=0.5, embedding=[1.0, 0.0])
        assert semantic_similarity(a, b) == pytest.approx(1.0)
        assert semantic_similarity(a, b, mode="jaccard") == 0.0

    def test_semantic_similarity_falls_back_without_vectors(self):
        a = Memory(owner_id="o", content="frozen lake", gravity_score=0.5, embedding=[1.0])
        b = Memory(owner_id="o", content="frozen lake", gravity_score=0.5)
        assert semantic_similarity(a, b) == pytest.approx(1.0)


class TestBlendTone:
    @pytest.mark.parametrize(
        ("current", "incoming", "expected"),
        [
            ("awe", "awe", "awe"),
            ("awe", "grief", "complex"),
            (None, "joy", "joy"),
            ("neutral", "joy", "joy"),
            ("joy", "neutral", "joy"),
            ("joy", None, "joy"),
        ],
    )
    def test_blend(self, current, incoming, expected):
        assert blend_tone(current, incoming) == expected


class TestArcName:
    def test_topic_wins(self):
        memory = Memory(owner_id="o", content="long text here", topic="work", gravity_score=0.5)
        assert arc_name(memory) == "work"

    def test_first_words_of_content(self):
        memory = Memory(owner_id="o", content="Watching the aurora tonight", gravity_score=0.5)
        assert arc_name(memory) == "Watching the aurora"


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


class TestFusionRules:
    @pytest.mark.asyncio
    async def test_singularity_then_resonance_then_nothing(
        self, engine, store, clock, add_memory
    ):
        first = await add_memory(
            "Watching the aurora over the frozen lake", gravity=0.95, emotion="awe"
        )
        created = await engine.process(first)
        assert created.action == "create_new_arc"
        assert created.rule == "singularity"
        assert (await store.get_memory(first.id)).arc_id == created.arc.id

        clock.advance(hours=1)
        second = await add_memory(
            "The aurora over the lake again tonight", gravity=0.93, emotion="awe"
        )
        merged = await engine.process(second)
        assert merged.action == "merge_into_arc"
        assert merged.rule == "resonance"
        assert merged.score > JACCARD.merge_threshold
        assert merged.arc.id == created.arc.id
        assert merged.arc.memory_count == 2
        assert merged.arc.gravity_center == pytest.approx(0.94)
        assert merged.arc.emotional_tone == "awe"

        clock.advance(hours=1)
        third = await add_memory("Paid the electricity bill", gravity=0.4)
        skipped = await engine.process(third)
        assert skipped.action == "no_fusion"
        assert (await store.get_memory(third.id)).arc_id is None

    @pytest.mark.asyncio
    async def test_gravity_center_tracks_member_mean(self, engine, store, clock, add_memory):
        contents = [
            ("Watching the aurora over the frozen lake", 0.95),
            ("The aurora over the lake again tonight", 0.93),
            ("Aurora over the lake at dawn", 0.8),
        ]
        arc_id = None
        for content, gravity in contents:
            memory = await add_memory(content, gravity=gravity, emotion="awe")
            decision = await engine.process(memory)
            arc_id = arc_id or decision.arc.id
            assert decision.arc.id == arc_id
            await _assert_center_is_member_mean(store, arc_id)
            clock.advance(hours=2)

    @pytest.mark.asyncio
    async def test_concurrent_merges_keep_every_member(self, clock):
        class YieldingStore(InMemoryStore):
            async def list_arcs(self, owner_id, *, active_since=None):
                arcs = await super().list_arcs(owner_id, active_since=active_since)
                await asyncio.sleep(0)
                return arcs

            async def get_memories(self, memory_ids):
                found = await super().get_memories(memory_ids)
                await asyncio.sleep(0)
                return found

        store = YieldingStore()
        engine = ArcFusionEngine(store, config=JACCARD, clock=clock)
        founder = await store.insert_memory(
            Memory(
                owner_id="owner-1",
                content="Watching the aurora over the frozen lake",
                gravity_score=0.95,
                emotion="awe",
                created_at=clock(),
            )
        )
        created = await engine.process(founder)
        clock.advance(hours=1)
        later = [
            await store.insert_memory(
                Memory(
                    owner_id="owner-1",
                    content=content,
                    gravity_score=gravity,
                    emotion="awe",
                    created_at=clock(),
                )
            )
            for content, gravity in (
                ("The aurora over the lake again tonight", 0.93),
                ("Aurora over the lake at dawn", 0.8),
            )
        ]

        decisions = await asyncio.gather(*(engine.process(m) for m in later))

        assert [d.action for d in decisions] == ["merge_into_arc"] * 2
        arc = await store.get_arc(created.arc.id)
        assert arc.memory_count == 3
        assert set(arc.member_ids) == {founder.id, *(m.id for m in later)}
        await _assert_center_is_member_mean(store, arc.id)

    @pytest.mark.asyncio
    async def test_already_in_arc(self, engine, add_memory):
        memory = await add_memory("anything", gravity=0.95, emotion="awe", arc_id="arc_x")
        decision = await engine.process(memory)
        assert decision.action == "no_fusion"
        assert decision.reason == "already_in_arc"

    @pytest.mark.asyncio
    async def test_high_gravity_without_emotion_is_not_singular(self, engine, add_memory):
        memory = await add_memory("Signed the lease", gravity=0.97)
        decision = await engine.process(memory)
        assert decision.action == "no_fusion"
        assert decision.reason == "no_matching_arc"

    @pytest.mark.asyncio
    async def test_stale_arcs_are_not_candidates(self, engine, clock, add_memory):
        first = await add_memory(
            "Watching the aurora over the frozen lake", gravity=0.95, emotion="awe"
        )
        await engine.process(first)

        clock.advance(days=8)
        later = await add_memory(
            "Watching the aurora over the frozen lake", gravity=0.85, emotion="awe"
        )
        decision = await engine.process(later)
        assert decision.action == "no_fusion"

    @pytest.mark.asyncio
    async def test_thematic_density_founds_arc(self, engine, store, clock, add_memory):
        content = "Finished the quarterly planning document for the team"
        seeds = []
        for _ in range(3):
            seeds.append(await add_memory(content, gravity=0.8, topic="work"))
            clock.advance(hours=3)
        memory = await add_memory(content, gravity=0.8, topic="work")

        decision = await engine.process(memory)

        assert decision.action == "create_new_arc"
        assert decision.rule == "thematic_density"
        assert set(decision.arc.member_ids) == {memory.id, *(s.id for s in seeds)}
        assert decision.arc.gravity_center == pytest.approx(0.8)
        assert decision.arc.name == "work"
        for seed in seeds:
            assert (await store.get_memory(seed.id)).arc_id == decision.arc.id

    @pytest.mark.asyncio
    async def test_density_needs_enough_related_memories(self, engine, clock, add_memory):
        content = "Finished the quarterly planning document for the team"
        await add_memory(content, gravity=0.8, topic="work")
        clock.advance(hours=1)
        memory = await add_memory(content, gravity=0.8, topic="work")
        decision = await engine.process(memory)
        assert decision.action == "no_fusion"

    @pytest.mark.asyncio
    async def test_create_and_merge_are_audited(self, engine, clock, add_memory, audit_logger):
        first = await add_memory(
            "Watching the aurora over the frozen lake", gravity=0.95, emotion="awe"
        )
        await engine.process(first)
        clock.advance(hours=1)
        second = await add_memory(
            "The aurora over the lake again tonight", gravity=0.93, emotion="awe"
        )
        await engine.process(second)

        created = await audit_logger.read_events(event_type=AuditEventType.ARC_CREATED)
        merged = await audit_logger.read_events(event_type=AuditEventType.ARC_MERGED)
        assert len(created) == 1
        assert merged[0].payload["memory_id"] == second.id
