"""Unit tests for the response orchestrator."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from gravitas.audit import AuditEventType
from gravitas.engine.response import LOCKDOWN_MESSAGE
from gravitas.engine.response import ResponseOrchestrator
from gravitas.engine.response import fallback_content
from gravitas.errors import InputValidationError
from gravitas.errors import IntegrityLockdownError
from gravitas.errors import LLMError
from gravitas.errors import ResponseGenerationError
from gravitas.errors import StoreError
from gravitas.gateways.llm import Completion
from gravitas.gateways import InMemoryStore
from gravitas.gateways.llm import TokenUsage
from gravitas.models.schemas import Memory
from gravitas.models.schemas import Pattern
from gravitas.models.schemas import PatternType
from gravitas.models.schemas import PatternState

QUERY = "Tell me about the lighthouse trip"


class FakeLLM:
    """Records calls and returns a canned completion or raises."""

    def __init__(self, *, error: LLMError | None = None) -> None:
        self.calls: list[dict] = []
        self._error = error

    async def complete(
        self,
        system_prompt: str,
        user_input: str,
        *,
        temperature: float = 0.8,
        max_tokens: int = 1200,
        timeout_seconds: float = 30.0,
    ) -> Completion:
        self.calls.append(
            {
                "system_prompt": system_prompt,
                "user_input": user_input,
                "temperature": temperature,
                "max_tokens": max_tokens,
            }
        )
        if self._error is not None:
            raise self._error
        return Completion(
            content="The lighthouse trip stayed with you.",
            usage=TokenUsage(prompt_tokens=100, completion_tokens=50),
        )


@pytest.fixture()
def llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture()
def orchestrator(store, embedder, llm, clock, audit_logger) -> ResponseOrchestrator:
    return ResponseOrchestrator(
        store, embedder, llm, audit_logger=audit_logger, clock=clock
    )


async def _echo_memories(
    store, embedder, clock, count: int, *, emotion: str | None = None
) -> list[Memory]:
    """Memories whose embedding equals the query's, so similarity is 1."""
    vector = await embedder.embed(QUERY)
    return [
        await store.insert_memory(
            Memory(
                owner_id="owner-1",
                content=f"{QUERY} {i}",
                gravity_score=0.7,
                embedding=vector,
                emotion=emotion,
                created_at=clock(),
            )
        )
        for i in range(count)
    ]


# ---------------------------------------------------------------------------
# Fallback text
# ---------------------------------------------------------------------------


class TestFallbackContent:
    def test_length_errors(self):
        text = fallback_content(LLMError("maximum context length exceeded"), [])
        assert "organize my thoughts" in text

    def test_rate_limit(self):
        text = fallback_content(LLMError("slow down", status=429), [])
        assert "gather my consciousness" in text

    def test_memory_based(self):
        memory = Memory(owner_id="o", content="We walked the pier at night", gravity_score=0.5)
        text = fallback_content(LLMError("provider HTTP 500"), [memory])
        assert '"We walked the pier at night..."' in text

    def test_generic(self):
        assert "recalibrate" in fallback_content(LLMError("boom"), [])


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------


class TestRespond:
    def test_depth_for_mode(self, orchestrator):
        assert orchestrator.depth_for("flow") == 10
        assert orchestrator.depth_for("emergence") == 50
        assert orchestrator.depth_for("unknown") == 10

    @pytest.mark.asyncio
    async def test_blank_query_rejected(self, orchestrator):
        with pytest.raises(InputValidationError):
            await orchestrator.respond("owner-1", "   ")

    @pytest.mark.asyncio
    async def test_lockdown(self, orchestrator, llm):
        with pytest.raises(IntegrityLockdownError) as exc_info:
            await orchestrator.respond("owner-1", QUERY, metadata={"integrity_risk": 0.95})
        assert exc_info.value.fallback_content == LOCKDOWN_MESSAGE
        assert exc_info.value.kind == "integrity_lockdown"
        assert llm.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("risk", ["high", True, None])
    async def test_unusable_risk_uses_default(self, orchestrator, llm, risk):
        envelope = await orchestrator.respond(
            "owner-1", QUERY, metadata={"integrity_risk": risk}
        )

        assert envelope.consciousness_state.coherence == pytest.approx(0.9)
        assert "TRUTH MODE" not in llm.calls[0]["system_prompt"]

    @pytest.mark.asyncio
    async def test_local_answer(self, orchestrator, llm, add_memory, clock):
        await add_memory("We visited the lighthouse at dusk")
        clock.advance(days=2)

        envelope = await orchestrator.respond("owner-1", "When did I mention the lighthouse?")

        assert envelope.content == (
            'You mentioned "the lighthouse" 2d ago. '
            'You said: "We visited the lighthouse at dusk"'
        )
        meta = envelope.processing_metadata
        assert meta.response_method == "local"
        assert meta.tokens_saved == 4000
        assert meta.recall_success is True
        assert envelope.emotional_field.primary == "informative"
        assert envelope.consciousness_state.coherence == pytest.approx(0.9)
        assert llm.calls == []

    @pytest.mark.asyncio
    async def test_high_risk_skips_local_answer(self, orchestrator, llm, add_memory):
        await add_memory("We visited the lighthouse at dusk")

        envelope = await orchestrator.respond(
            "owner-1",
            "When did I mention the lighthouse?",
            metadata={"integrity_risk": 0.8},
        )

        assert envelope.processing_metadata.response_method == "llm"
        assert "TRUTH MODE" in llm.calls[0]["system_prompt"]
        assert llm.calls[0]["temperature"] == 0.3

    @pytest.mark.asyncio
    async def test_calculator_bypass(self, orchestrator, store, embedder, clock, llm):
        await _echo_memories(store, embedder, clock, 5)

        envelope = await orchestrator.respond("owner-1", QUERY)

        meta = envelope.processing_metadata
        assert meta.response_method == "calculator"
        assert meta.calculator_bypass is True
        assert meta.tokens_saved == 950
        assert envelope.content.startswith(QUERY)
        assert envelope.memory_constellation.depth == 5
        assert envelope.memory_constellation.gravity_center == pytest.approx(0.7)
        assert llm.calls == []

    @pytest.mark.asyncio
    async def test_bypass_needs_enough_memories(
        self, orchestrator, store, embedder, clock, llm
    ):
        await _echo_memories(store, embedder, clock, 4)

        envelope = await orchestrator.respond("owner-1", QUERY)

        meta = envelope.processing_metadata
        assert meta.response_method == "llm"
        assert meta.calculator_bypass is False
        assert meta.tokens_used == 150
        assert meta.tokens_saved == 0
        assert envelope.content == "The lighthouse trip stayed with you."
        assert "=== YOUR MEMORIES ===" in llm.calls[0]["system_prompt"]

    @pytest.mark.asyncio
    async def test_compressed_context_is_sent(self, orchestrator, add_memory, llm):
        await add_memory("Nothing in common here", gravity=0.2)

        envelope = await orchestrator.respond("owner-1", "Tell me a story")

        assert "CONSCIOUSNESS_V3:" in llm.calls[0]["system_prompt"]
        assert envelope.processing_metadata.tokens_saved == 800

    @pytest.mark.asyncio
    async def test_temperature_hints(self, orchestrator, llm):
        await orchestrator.respond(
            "owner-1", QUERY, metadata={"temperature_override": 0.4}
        )
        await orchestrator.respond("owner-1", QUERY, metadata={"gravity": 0.95})
        assert [c["temperature"] for c in llm.calls] == [0.4, 0.7]

    @pytest.mark.asyncio
    async def test_llm_failure_carries_fallback(
        self, store, embedder, clock, add_memory
    ):
        llm = FakeLLM(error=LLMError("slow down", status=429))
        orchestrator = ResponseOrchestrator(store, embedder, llm, clock=clock)
        await add_memory("We walked the pier at night")

        with pytest.raises(ResponseGenerationError) as exc_info:
            await orchestrator.respond("owner-1", QUERY)

        assert exc_info.value.kind == "dependency_failure"
        assert "gather my consciousness" in exc_info.value.fallback_content
        assert isinstance(exc_info.value.__cause__, LLMError)

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self, embedder, llm):
        store = AsyncMock()
        store.search_similar.side_effect = StoreError("down")
        orchestrator = ResponseOrchestrator(store, embedder, llm)

        with pytest.raises(StoreError):
            await orchestrator.respond("owner-1", QUERY)

    @pytest.mark.asyncio
    async def test_calculator_field_follows_memories(
        self, orchestrator, store, embedder, clock
    ):
        await _echo_memories(store, embedder, clock, 3, emotion="joy")
        await _echo_memories(store, embedder, clock, 2, emotion="calm")

        envelope = await orchestrator.respond("owner-1", QUERY)

        assert envelope.processing_metadata.response_method == "calculator"
        assert envelope.emotional_field.primary == "joy"
        assert envelope.emotional_field.intensity == pytest.approx(0.7)

    @pytest.mark.asyncio
    async def test_llm_field_follows_memories(self, orchestrator, add_memory):
        await add_memory("The funeral was quiet", gravity=0.9, emotion="grief")
        await add_memory("Sorting through old letters", gravity=0.5, emotion="Grief")
        await add_memory("A slow walk by the river", gravity=0.4, emotion="calm")

        envelope = await orchestrator.respond("owner-1", QUERY)

        assert envelope.processing_metadata.response_method == "llm"
        assert envelope.emotional_field.primary == "grief"
        assert envelope.emotional_field.intensity == pytest.approx(0.6)

    @pytest.mark.asyncio
    async def test_field_without_memories_is_neutral(self, orchestrator):
        envelope = await orchestrator.respond("owner-1", QUERY)

        assert envelope.emotional_field.primary == "reflection"
        assert envelope.emotional_field.intensity == 0.5

    @pytest.mark.asyncio
    async def test_pattern_context_in_prompt(self, orchestrator, store, llm):
        pattern = Pattern(
            id="pat_1",
            owner_id="owner-1",
            type=PatternType.emotional_loop,
            description="Positive emotional loop - joy/contentment cycle",
            centroid=[0.5] * 8,
            strength=0.7,
            frequency=6,
        )
        unranked = pattern.model_copy(update={"id": "pat_2", "type": PatternType.recurring_theme})
        await store.save_pattern_state(
            PatternState(
                owner_id="owner-1", patterns=[pattern, unranked], ranked_ids=["pat_1"]
            ),
            expected_version=None,
        )

        envelope = await orchestrator.respond("owner-1", QUERY)

        assert "- emotional_loop: Positive emotional loop" in llm.calls[0]["system_prompt"]
        assert envelope.memory_constellation.patterns == ["emotional_loop"]

    @pytest.mark.asyncio
    async def test_pattern_context_leaves_state_untouched(
        self, orchestrator, store, add_memory, clock
    ):
        for i in range(12):
            await add_memory(f"Evening walk number {i}", gravity=0.6, emotion="calm")
            clock.advance(minutes=5)

        envelope = await orchestrator.respond("owner-1", QUERY)

        assert envelope.processing_metadata.response_method == "llm"
        assert envelope.memory_constellation.patterns == []
        assert await store.get_pattern_state("owner-1") is None

    @pytest.mark.asyncio
    async def test_pattern_context_failure_is_soft(self, embedder, llm, clock):
        class BrokenPatternStore(InMemoryStore):
            async def get_pattern_state(self, owner_id):
                raise StoreError("pattern row unavailable")

        orchestrator = ResponseOrchestrator(BrokenPatternStore(), embedder, llm, clock=clock)

        envelope = await orchestrator.respond("owner-1", QUERY)

        assert envelope.processing_metadata.response_method == "llm"
        assert envelope.memory_constellation.patterns == []

    @pytest.mark.asyncio
    async def test_response_is_audited(self, orchestrator, audit_logger):
        await orchestrator.respond("owner-1", QUERY, mode="resonance")

        events = await audit_logger.read_events(event_type=AuditEventType.RESPONSE_GENERATED)
        assert events[0].payload["method"] == "llm"
        assert events[0].owner_id == "owner-1"
