"""Memory dispatcher: ingestion entry point.

Normalizes an incoming experience, scores its gravity, requests an
embedding, persists the record and runs the downstream cascades.
Only the store write is on the critical path: embedding and cascade
failures are logged and reported in the result, never raised.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from collections.abc import Callable
from datetime import datetime
from datetime import timezone
from typing import TYPE_CHECKING

from gravitas.audit.schemas import AuditEventType
from gravitas.audit.store import AuditLogger
from gravitas.config import DispatcherConfig
from gravitas.engine.fusion import ArcFusionEngine
from gravitas.errors import EmbeddingError
from gravitas.errors import InputValidationError
from gravitas.gateways.embedding import EmbeddingGateway
from gravitas.gateways.embedding import truncate_for_embedding
from gravitas.gateways.store import StoreGateway
from gravitas.models.envelopes import CascadeResult
from gravitas.models.envelopes import DispatchInput
from gravitas.models.envelopes import DispatchResult
from gravitas.models.envelopes import PatternOptions
from gravitas.models.envelopes import SnapshotOptions
from gravitas.models.schemas import Memory
from gravitas.models.schemas import MemoryType
from gravitas.observability import latency_timer

if TYPE_CHECKING:
    from gravitas.engine.patterns import PatternEngine
    from gravitas.engine.snapshot import SnapshotEngine

logger = logging.getLogger(__name__)

# (lower bound, label), checked top-down
_GRAVITY_CLASSES: tuple[tuple[float, str], ...] = (
    (0.9, "critical"),
    (0.7, "significant"),
    (0.5, "moderate"),
    (0.3, "light"),
)


def classify_gravity(gravity: float) -> str:
    for bound, label in _GRAVITY_CLASSES:
        if gravity >= bound:
            return label
    return "minimal"


def resolve_memory_type(request: DispatchInput) -> MemoryType:
    if request.memory_type == MemoryType.user.value or request.metadata.get(
        "is_user_message"
    ):
        return MemoryType.user
    return MemoryType.system


def adjusted_gravity(
    base: float | None, memory_type: MemoryType, config: DispatcherConfig
) -> float:
    """Clamp the caller's gravity and down-weight system content."""
    gravity = config.default_gravity if base is None else float(base)
    gravity = max(0.0, min(1.0, gravity))
    if memory_type is MemoryType.system:
        gravity *= config.system_gravity_factor
    return gravity


class MemoryDispatcher:
    """Ingests memories and fans out best-effort cascades."""

    def __init__(
        self,
        store: StoreGateway,
        embedder: EmbeddingGateway,
        *,
        fusion: ArcFusionEngine | None = None,
        pattern_engine: PatternEngine | None = None,
        snapshot_engine: SnapshotEngine | None = None,
        audit_logger: AuditLogger | None = None,
        config: DispatcherConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._fusion = fusion
        self._patterns = pattern_engine
        self._snapshots = snapshot_engine
        self._audit = audit_logger
        self._config = config or DispatcherConfig()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._tasks: set[asyncio.Task[None]] = set()

    async def dispatch(self, request: DispatchInput) -> DispatchResult:
        """Store one memory and run its cascades.

        Raises:
            InputValidationError: owner id or content missing.
            StoreError: the primary write failed.
        """
        with latency_timer("dispatcher.dispatch"):
            owner_id = request.owner_id.strip()
            content = request.content.strip()
            if not owner_id:
                raise InputValidationError("owner_id is required")
            if not content:
                raise InputValidationError("content is required")

            memory_type = resolve_memory_type(request)
            gravity = adjusted_gravity(request.gravity, memory_type, self._config)
            embedding = await self._embed(content)

            memory = await self._store.insert_memory(
                Memory(
                    owner_id=owner_id,
                    content=content,
                    gravity_score=gravity,
                    emotion=request.emotion,
                    topic=request.topic,
                    summary=request.summary,
                    embedding=embedding,
                    features=request.features,
                    created_at=self._clock(),
                    memory_type=memory_type,
                    identity_anchor=request.identity_anchor,
                    session_id=request.session_id,
                    thread_id=request.thread_id,
                    tags=list(request.tags),
                    metadata=dict(request.metadata),
                )
            )
            logger.debug("Stored memory %s for %s", memory.id, owner_id)

            memory, cascades = await self._run_cascades(memory)
            gravity_class = classify_gravity(memory.gravity_score)

            if self._audit is not None:
                await self._audit.record(
                    AuditEventType.MEMORY_DISPATCHED,
                    owner_id=owner_id,
                    memory_id=memory.id,
                    gravity_score=memory.gravity_score,
                    memory_type=memory.memory_type.value,
                    cascades=[c.kind for c in cascades],
                )

            return DispatchResult(
                memory=memory,
                gravity_class=gravity_class,
                cascades=cascades,
                vital_signs={
                    "gravity_score": memory.gravity_score,
                    "gravity_class": gravity_class,
                    "memory_type": memory.memory_type.value,
                    "has_embedding": memory.embedding is not None,
                    "entry_count": memory.sequence,
                    "arc_id": memory.arc_id,
                },
            )

    async def drain(self) -> None:
        """Wait for outstanding background follow-ups."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    # -- steps --

    async def _embed(self, content: str) -> list[float] | None:
        try:
            return await self._embedder.embed(
                truncate_for_embedding(content, self._config.max_embedding_chars)
            )
        except EmbeddingError:
            logger.warning("Embedding failed; storing memory without a vector", exc_info=True)
            return None

    async def _run_cascades(self, memory: Memory) -> tuple[Memory, list[CascadeResult]]:
        cascades: list[CascadeResult] = []

        fusion = self._fusion
        if fusion is not None and memory.gravity_score >= self._config.fusion_gravity_threshold:
            result = await self._fusion_cascade(fusion, memory)
            cascades.append(result)
            arc_id = result.detail.get("arc_id")
            if arc_id:
                memory = memory.model_copy(update={"arc_id": arc_id})

        if memory.emotion and memory.emotion.lower() != "neutral":
            scheduled = False
            if self._config.background_pattern_run and self._patterns is not None:
                engine = self._patterns
                self._spawn(
                    "pattern_analysis",
                    memory.owner_id,
                    lambda: engine.detect(memory.owner_id, PatternOptions()),
                )
                scheduled = True
            cascades.append(
                CascadeResult(
                    kind="pattern_analysis",
                    status="flagged",
                    detail={"emotion": memory.emotion, "scheduled": scheduled},
                )
            )

        if memory.identity_anchor:
            cascades.append(
                CascadeResult(
                    kind="reflection",
                    status="flagged",
                    detail={"memory_id": memory.id},
                )
            )

        if self._config.background_snapshot_check and self._snapshots is not None:
            snapshots = self._snapshots
            self._spawn(
                "snapshot_check",
                memory.owner_id,
                lambda: snapshots.snapshot(memory.owner_id, SnapshotOptions()),
            )

        return memory, cascades

    async def _fusion_cascade(self, fusion: ArcFusionEngine, memory: Memory) -> CascadeResult:
        try:
            decision = await fusion.process(memory)
        except Exception as exc:
            logger.exception("Arc fusion cascade failed for memory %s", memory.id)
            await self._record_cascade_failure(memory, "arc_fusion", exc)
            return CascadeResult(kind="arc_fusion", status="failed", error=str(exc))
        return CascadeResult(
            kind="arc_fusion",
            status="completed",
            detail={
                "action": decision.action,
                "rule": decision.rule,
                "arc_id": decision.arc.id if decision.arc is not None else None,
                "score": decision.score,
                "fusion_strength": decision.fusion_strength,
                "reason": decision.reason,
            },
        )

    def _spawn(
        self,
        kind: str,
        owner_id: str,
        factory: Callable[[], Awaitable[object]],
    ) -> None:
        """Schedule a follow-up; its failure is logged, never raised."""

        async def _runner() -> None:
            try:
                await factory()
            except Exception as exc:
                logger.exception("Background %s failed for owner %s", kind, owner_id)
                await self._record_cascade_failure_for(owner_id, kind, exc)

        task = asyncio.create_task(_runner())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _record_cascade_failure(
        self, memory: Memory, kind: str, exc: Exception
    ) -> None:
        await self._record_cascade_failure_for(
            memory.owner_id, kind, exc, memory_id=memory.id
        )

    async def _record_cascade_failure_for(
        self,
        owner_id: str,
        kind: str,
        exc: Exception,
        *,
        memory_id: str | None = None,
    ) -> None:
        if self._audit is None:
            return
        try:
            await self._audit.record(
                AuditEventType.CASCADE_FAILED,
                owner_id=owner_id,
                cascade=kind,
                memory_id=memory_id,
                error=str(exc),
            )
        except OSError:
            logger.exception("Could not audit %s cascade failure", kind)
