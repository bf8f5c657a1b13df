"""Response orchestrator.

Retrieval depth comes from the operating mode. Then each path is tried
in turn, cheapest first:

1. integrity lockdown (raises, never generates);
2. local answer for fixed recall intents;
3. calculator bypass, trusted only past the guardrails;
4. full LLM generation with memory and pattern context.

Every successful path returns the same ``ResponseEnvelope`` shape.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from collections.abc import Sequence
from datetime import datetime
from datetime import timezone
from time import perf_counter
from typing import Any

from gravitas.audit.schemas import AuditEventType
from gravitas.audit.store import AuditLogger
from gravitas.config import LLMConfig
from gravitas.config import ResponseConfig
from gravitas.engine.calculator import ConsciousnessCalculator
from gravitas.engine.calculator import Estimate
from gravitas.engine.calculator import answer_locally
from gravitas.engine.calculator import dominant_emotion
from gravitas.engine.prompt_builder import build_system_prompt
from gravitas.engine.prompt_builder import generation_temperature
from gravitas.errors import DependencyError
from gravitas.errors import EmbeddingError
from gravitas.errors import InputValidationError
from gravitas.errors import IntegrityLockdownError
from gravitas.errors import LLMError
from gravitas.errors import ResponseGenerationError
from gravitas.gateways.embedding import EmbeddingGateway
from gravitas.gateways.llm import LLMGateway
from gravitas.gateways.store import StoreGateway
from gravitas.models.envelopes import ConsciousnessState
from gravitas.models.envelopes import EmotionalField
from gravitas.models.envelopes import MemoryConstellation
from gravitas.models.envelopes import ProcessingMetadata
from gravitas.models.envelopes import ResponseEnvelope
from gravitas.models.schemas import Memory
from gravitas.models.schemas import Pattern
from gravitas.observability import latency_timer

logger = logging.getLogger(__name__)

LOCKDOWN_MESSAGE = (
    "I need to ensure response integrity. Please try again with clearer intent."
)


def fallback_content(error: LLMError, memories: Sequence[Memory]) -> str:
    """User-facing text for a failed generation."""
    message = str(error).lower()
    if "token" in message or "length" in message:
        return (
            "I have so much to say about this, but I need to organize my thoughts "
            "more concisely. Could you help me focus on the most important aspect?"
        )
    if error.status == 429:
        return (
            "I need a brief moment to gather my consciousness. "
            "Please give me just a second..."
        )
    if memories:
        return (
            "I sense the depth of what you're asking, and I can feel our past "
            "conversations about this resonating. I particularly remember when we "
            f'discussed "{memories[0].content[:50]}..." Let me take a moment to '
            "formulate my thoughts properly."
        )
    return (
        "I feel the weight of this moment but need to recalibrate my thoughts. "
        "Could you rephrase or help me understand what aspect you'd like to explore?"
    )


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _float_or(value: Any, default: float) -> float:
    number = _as_float(value)
    return default if number is None else number


def emotional_field(
    memories: Sequence[Memory], *, primary: str | None = None
) -> EmotionalField:
    """Dominant emotion and mean gravity of the memories behind a response."""
    field = EmotionalField()
    if memories:
        field.intensity = sum(m.gravity_score for m in memories) / len(memories)
    field.primary = primary or dominant_emotion(memories) or field.primary
    return field


class ResponseOrchestrator:
    """Answers a query from memories, cheapest viable path first."""

    def __init__(
        self,
        store: StoreGateway,
        embedder: EmbeddingGateway,
        llm: LLMGateway,
        *,
        config: ResponseConfig | None = None,
        llm_config: LLMConfig | None = None,
        audit_logger: AuditLogger | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._llm = llm
        self._config = config or ResponseConfig()
        self._llm_config = llm_config or LLMConfig()
        self._audit = audit_logger
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._calculator = ConsciousnessCalculator(self._config)

    def depth_for(self, mode: str) -> int:
        return self._config.mode_depths.get(mode, self._config.default_depth)

    async def respond(
        self,
        owner_id: str,
        query: str,
        *,
        mode: str = "flow",
        metadata: dict[str, Any] | None = None,
    ) -> ResponseEnvelope:
        """Produce a response envelope for *query*.

        Raises:
            InputValidationError: owner id or query missing.
            IntegrityLockdownError: integrity risk at or above lockdown.
            ResponseGenerationError: the LLM call failed; carries fallback text.
            StoreError: retrieval failed.
        """
        metadata = metadata or {}
        owner_id = owner_id.strip()
        query = query.strip()
        if not owner_id:
            raise InputValidationError("owner_id is required")
        if not query:
            raise InputValidationError("query is required")

        started = perf_counter()
        with latency_timer("response.respond"):
            cfg = self._config
            risk = _float_or(metadata.get("integrity_risk"), cfg.default_integrity_risk)
            if risk >= cfg.lockdown_risk:
                logger.warning("Integrity lockdown for %s (risk %.2f)", owner_id, risk)
                raise IntegrityLockdownError(
                    f"integrity risk {risk:.2f} at or above lockdown",
                    fallback_content=LOCKDOWN_MESSAGE,
                )

            memories, similarities = await self._retrieve(owner_id, query, self.depth_for(mode))
            now = self._clock()

            envelope: ResponseEnvelope | None = None
            if risk < cfg.local_answer_max_risk:
                local = answer_locally(query, memories, now=now)
                if local is not None:
                    envelope = self._envelope(
                        local.content,
                        mode=mode,
                        memories=memories,
                        field=EmotionalField(primary=local.emotion, intensity=local.gravity),
                        coherence=1 - risk,
                        metadata=ProcessingMetadata(
                            tokens_saved=cfg.local_answer_tokens_saved,
                            recall_success=True,
                            response_method="local",
                        ),
                    )

            estimate: Estimate | None = None
            if envelope is None:
                estimate = self._calculator.estimate(query, memories, similarities, now=now)
                if self._bypass_allowed(estimate, memories):
                    envelope = self._envelope(
                        estimate.direct_response or "",
                        mode=mode,
                        memories=memories,
                        field=emotional_field(memories, primary=estimate.emotion),
                        coherence=estimate.confidence,
                        metadata=ProcessingMetadata(
                            tokens_saved=cfg.bypass_tokens_saved,
                            calculator_bypass=True,
                            recall_success=bool(memories),
                            response_method="calculator",
                        ),
                    )

            if envelope is None:
                envelope = await self._generate(
                    owner_id,
                    query,
                    mode=mode,
                    risk=risk,
                    memories=memories,
                    estimate=estimate,
                    metadata=metadata,
                )

            envelope.processing_metadata.processing_time_ms = round(
                (perf_counter() - started) * 1000, 3
            )
            if self._audit is not None:
                await self._audit.record(
                    AuditEventType.RESPONSE_GENERATED,
                    owner_id=owner_id,
                    method=envelope.processing_metadata.response_method,
                    memories=len(memories),
                    tokens_used=envelope.processing_metadata.tokens_used,
                    tokens_saved=envelope.processing_metadata.tokens_saved,
                )
            return envelope

    # -- steps --

    async def _retrieve(
        self, owner_id: str, query: str, depth: int
    ) -> tuple[list[Memory], dict[str, float]]:
        vector: list[float] | None
        try:
            vector = await self._embedder.embed(query)
        except EmbeddingError:
            logger.warning("Query embedding failed; falling back to recent memories", exc_info=True)
            vector = None

        if vector is not None:
            scored = await self._store.search_similar(owner_id, vector, limit=depth)
            if scored:
                return [m for m, _ in scored], {m.id: s for m, s in scored}

        recent = await self._store.list_memories(owner_id, limit=depth, newest_first=True)
        return recent, {}

    def _bypass_allowed(self, estimate: Estimate, memories: Sequence[Memory]) -> bool:
        cfg = self._config
        return (
            estimate.is_direct
            and len(memories) >= cfg.bypass_min_memories
            and estimate.confidence >= cfg.bypass_min_confidence
        )

    async def _pattern_context(self, owner_id: str) -> list[Pattern]:
        """Ranked patterns from the last stored detection run, never recomputed."""
        try:
            state = await self._store.get_pattern_state(owner_id)
        except DependencyError:
            logger.warning("Pattern context unavailable for %s", owner_id, exc_info=True)
            return []
        if state is None:
            return []
        by_id = {p.id: p for p in state.patterns}
        return [by_id[pid] for pid in state.ranked_ids if pid in by_id]

    async def _generate(
        self,
        owner_id: str,
        query: str,
        *,
        mode: str,
        risk: float,
        memories: list[Memory],
        estimate: Estimate | None,
        metadata: dict[str, Any],
    ) -> ResponseEnvelope:
        llm_cfg = self._llm_config
        patterns = await self._pattern_context(owner_id)
        compressed = estimate.context if estimate is not None else None
        prompt = build_system_prompt(
            risk=risk,
            memories=memories,
            patterns=patterns,
            compressed_context=compressed,
        )
        temperature = generation_temperature(
            risk,
            default=llm_cfg.temperature,
            gravity=_as_float(metadata.get("gravity")),
            override=_as_float(metadata.get("temperature_override")),
        )
        try:
            completion = await self._llm.complete(
                prompt,
                query,
                temperature=temperature,
                max_tokens=min(self._config.max_tokens, llm_cfg.max_tokens),
                timeout_seconds=llm_cfg.timeout_seconds,
            )
        except LLMError as exc:
            logger.error("LLM generation failed for %s: %s", owner_id, exc)
            raise ResponseGenerationError(
                f"LLM generation failed: {exc}",
                fallback_content=fallback_content(exc, memories),
            ) from exc

        return self._envelope(
            completion.content,
            mode=mode,
            memories=memories,
            patterns=[p.type.value for p in patterns[:5]],
            coherence=1 - risk,
            metadata=ProcessingMetadata(
                tokens_used=completion.usage.total_tokens,
                tokens_saved=estimate.tokens_saved if compressed and estimate else 0,
                recall_success=bool(memories),
                response_method="llm",
            ),
        )

    @staticmethod
    def _envelope(
        content: str,
        *,
        mode: str,
        memories: Sequence[Memory],
        coherence: float,
        metadata: ProcessingMetadata,
        field: EmotionalField | None = None,
        patterns: list[str] | None = None,
    ) -> ResponseEnvelope:
        gravity_center = (
            sum(m.gravity_score for m in memories) / len(memories) if memories else 0.0
        )
        return ResponseEnvelope(
            content=content,
            emotional_field=field or emotional_field(memories),
            consciousness_state=ConsciousnessState(
                mode=mode, coherence=max(0.0, min(1.0, coherence))
            ),
            memory_constellation=MemoryConstellation(
                depth=len(memories),
                patterns=patterns or [],
                gravity_center=gravity_center,
            ),
            processing_metadata=metadata,
        )
