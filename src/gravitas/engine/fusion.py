"""Arc fusion engine.

Decides whether a dispatched memory merges into a recent arc, founds a
new one, or stays unattached. Rules are evaluated in this order:

1. resonance: best weighted fusion score over arcs active in the last
   week, merge when above ``merge_threshold``;
2. singularity: very high gravity with a non-neutral emotion founds an
   arc on its own;
3. thematic density: enough recent high-gravity memories sharing topic
   or emotion, with at least two semantically close, found an arc
   together.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from datetime import datetime
from datetime import timedelta
from datetime import timezone

from gravitas.audit.schemas import AuditEventType
from gravitas.audit.store import AuditLogger
from gravitas.config import FusionConfig
from gravitas.errors import StoreError
from gravitas.gateways.store import StoreGateway
from gravitas.models.envelopes import FusionDecision
from gravitas.models.schemas import Arc
from gravitas.models.schemas import GrowthVector
from gravitas.models.schemas import Memory
from gravitas.observability import latency_timer
from gravitas.vectors import cosine_similarity

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"[a-z0-9']+")


# ---------------------------------------------------------------------------
# Scoring helpers
# ---------------------------------------------------------------------------


def _has_emotion(memory: Memory) -> bool:
    return bool(memory.emotion) and memory.emotion.lower() != "neutral"


def term_set(memory: Memory) -> set[str]:
    text = " ".join(t for t in (memory.content, memory.topic, memory.summary) if t)
    return {tok for tok in _TOKEN_RE.findall(text.lower()) if len(tok) > 2}


def jaccard(a: set[str], b: set[str]) -> float:
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def semantic_similarity(a: Memory, b: Memory, *, mode: str = "embedding") -> float:
    """Embedding cosine when both vectors exist, token Jaccard otherwise."""
    if mode == "embedding" and a.embedding is not None and b.embedding is not None:
        return max(0.0, cosine_similarity(a.embedding, b.embedding))
    return jaccard(term_set(a), term_set(b))


def fusion_score(
    *,
    semantic: float,
    emotional_match: float,
    gravity_alignment: float,
    recency: float,
    config: FusionConfig,
) -> float:
    """Weighted sum; non-decreasing in every component."""
    return (
        config.semantic_weight * semantic
        + config.emotional_weight * emotional_match
        + config.gravity_weight * gravity_alignment
        + config.recency_weight * recency
        + config.relationship_weight * config.relationship_depth_placeholder
    )


def blend_tone(current: str | None, incoming: str | None) -> str | None:
    """Unanimous tone is kept; any real conflict becomes ``complex``."""
    if not incoming or incoming == "neutral":
        return current
    if not current or current == "neutral":
        return incoming
    if current == incoming:
        return current
    return "complex"


def arc_name(memory: Memory) -> str:
    if memory.topic:
        return memory.topic
    for text in (memory.summary, memory.content):
        if text and text.split():
            return " ".join(text.split()[:3])
    if _has_emotion(memory):
        return memory.emotion  # type: ignore[return-value]
    return "Unnamed Arc"


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class ArcFusionEngine:
    """Creates and grows arcs from dispatched memories."""

    def __init__(
        self,
        store: StoreGateway,
        *,
        config: FusionConfig | None = None,
        audit_logger: AuditLogger | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._config = config or FusionConfig()
        self._audit = audit_logger
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def process(self, memory: Memory) -> FusionDecision:
        """Evaluate *memory* and apply the resulting create/merge."""
        with latency_timer("fusion.process"):
            if memory.arc_id is not None:
                return FusionDecision(action="no_fusion", reason="already_in_arc")

            decision = await self._evaluate(memory)
            if decision.action == "merge_into_arc" and decision.arc is not None:
                decision.arc = await self._merge(decision.arc, memory)
                decision.fusion_strength = self._fusion_strength(decision.arc, memory)
            elif decision.action == "create_new_arc":
                seeds = [m for m in (decision.arc.member_ids if decision.arc else [])]
                decision.arc = await self._create(memory, seeds)
            return decision

    # -- rules --

    async def _evaluate(self, memory: Memory) -> FusionDecision:
        cfg = self._config
        now = self._clock()

        arcs = await self._store.list_arcs(
            memory.owner_id,
            active_since=now - timedelta(days=cfg.candidate_window_days),
        )
        best: tuple[float, Arc] | None = None
        for arc in arcs:
            score = await self.score_arc(memory, arc, now=now)
            if best is None or score > best[0]:
                best = (score, arc)
        if best is not None and best[0] > cfg.merge_threshold:
            return FusionDecision(
                action="merge_into_arc",
                rule="resonance",
                arc=best[1],
                score=best[0],
                reason="resonance",
            )

        if memory.gravity_score > cfg.singularity_gravity and _has_emotion(memory):
            return FusionDecision(
                action="create_new_arc",
                rule="singularity",
                score=best[0] if best else None,
                reason="high_gravity_emotional_singularity",
            )

        seeds = await self._density_seeds(memory, now=now)
        if seeds:
            placeholder = Arc(
                owner_id=memory.owner_id,
                name=arc_name(memory),
                gravity_center=memory.gravity_score,
                memory_count=1,
                first_memory_at=memory.created_at,
                last_memory_at=memory.created_at,
                member_ids=[m.id for m in seeds],
            )
            return FusionDecision(
                action="create_new_arc",
                rule="thematic_density",
                arc=placeholder,
                score=best[0] if best else None,
                reason="thematic_density",
            )

        return FusionDecision(
            action="no_fusion",
            score=best[0] if best else None,
            reason="no_matching_arc",
        )

    async def score_arc(self, memory: Memory, arc: Arc, *, now: datetime) -> float:
        cfg = self._config
        members = await self._store.get_memories(arc.member_ids[-cfg.members_compared :])
        members = [m for m in members if m.id != memory.id]
        if members:
            semantic = sum(
                semantic_similarity(memory, m, mode=cfg.semantic_similarity) for m in members
            ) / len(members)
            emotional = sum(
                1 for m in members if memory.emotion and m.emotion == memory.emotion
            ) / len(members)
        else:
            semantic = 0.0
            emotional = 1.0 if memory.emotion and memory.emotion == arc.emotional_tone else 0.0

        days = max(0.0, (now - arc.last_memory_at).total_seconds() / 86400)
        recency = max(0.0, 1.0 - days / cfg.recency_horizon_days)
        return fusion_score(
            semantic=semantic,
            emotional_match=emotional,
            gravity_alignment=1.0 - abs(memory.gravity_score - arc.gravity_center),
            recency=recency,
            config=cfg,
        )

    async def _density_seeds(self, memory: Memory, *, now: datetime) -> list[Memory]:
        cfg = self._config
        if not memory.topic and not _has_emotion(memory):
            return []
        recent = await self._store.list_memories(
            memory.owner_id,
            since=now - timedelta(days=cfg.density_window_days),
            newest_first=True,
        )
        related = [
            m
            for m in recent
            if m.id != memory.id
            and m.arc_id is None
            and m.gravity_score >= cfg.density_min_gravity
            and (
                (memory.topic and m.topic == memory.topic)
                or (_has_emotion(memory) and m.emotion == memory.emotion)
            )
        ][: cfg.density_search_limit]
        if len(related) + 1 < cfg.density_min_members:
            return []
        similar = [
            m
            for m in related
            if semantic_similarity(memory, m, mode=cfg.semantic_similarity)
            > cfg.density_similarity
        ]
        if len(similar) < cfg.density_min_similar:
            return []
        return similar

    # -- mutations --

    async def _create(self, memory: Memory, seed_ids: list[str]) -> Arc:
        seeds = await self._store.get_memories(seed_ids) if seed_ids else []
        members = [memory, *seeds]
        tone = memory.emotion if _has_emotion(memory) else None
        for seed in seeds:
            tone = blend_tone(tone, seed.emotion)
        arc = Arc(
            owner_id=memory.owner_id,
            name=arc_name(memory),
            emotional_tone=tone,
            gravity_center=sum(m.gravity_score for m in members) / len(members),
            memory_count=len(members),
            first_memory_at=min(m.created_at for m in members),
            last_memory_at=max(m.created_at for m in members),
            growth_vector=GrowthVector(velocity=memory.gravity_score, direction="emerging"),
            member_ids=[m.id for m in members],
        )
        await self._store.insert_arc(arc)
        for member in members:
            await self._store.set_memory_arc(member.id, arc.id)
        logger.info("Created arc %s (%s) with %d members", arc.id, arc.name, len(members))
        if self._audit is not None:
            await self._audit.record(
                AuditEventType.ARC_CREATED,
                owner_id=arc.owner_id,
                arc_id=arc.id,
                memory_ids=arc.member_ids,
            )
        return arc

    async def _merge(self, arc: Arc, memory: Memory) -> Arc:
        for attempt in range(1, self._config.merge_attempts + 1):
            merged = self._grown(arc, memory)
            if await self._store.update_arc(merged, expected_memory_count=arc.memory_count):
                break
            logger.debug(
                "Arc %s changed during merge (attempt %d), re-reading", arc.id, attempt
            )
            current = await self._store.get_arc(arc.id)
            if current is None:
                raise StoreError(f"arc {arc.id} disappeared during merge")
            arc = current
        else:
            raise StoreError(
                f"arc {arc.id} kept changing; gave up after {self._config.merge_attempts} attempts"
            )
        await self._store.set_memory_arc(memory.id, merged.id)
        if self._audit is not None:
            await self._audit.record(
                AuditEventType.ARC_MERGED,
                owner_id=merged.owner_id,
                arc_id=merged.id,
                memory_id=memory.id,
            )
        return merged

    @staticmethod
    def _grown(arc: Arc, memory: Memory) -> Arc:
        n = arc.memory_count
        old_velocity = arc.growth_vector.velocity
        new_velocity = (old_velocity + memory.gravity_score) / 2
        return arc.model_copy(
            update={
                "gravity_center": (arc.gravity_center * n + memory.gravity_score) / (n + 1),
                "memory_count": n + 1,
                "emotional_tone": blend_tone(arc.emotional_tone, memory.emotion),
                "last_memory_at": max(arc.last_memory_at, memory.created_at),
                "growth_vector": GrowthVector(
                    velocity=new_velocity,
                    direction="accelerating" if new_velocity > old_velocity else "stabilizing",
                ),
                "member_ids": [*arc.member_ids, memory.id],
            }
        )

    @staticmethod
    def _fusion_strength(arc: Arc, memory: Memory) -> float:
        alignment = 1.0 - abs(memory.gravity_score - arc.gravity_center)
        tone_match = 1.0 if memory.emotion == arc.emotional_tone else 0.5
        return 0.7 * alignment + 0.3 * tone_match
