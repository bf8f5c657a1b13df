"""Gravitas: FastMCP v2 server exposing the memory pipeline.

Tools delegate to a ``ConsciousnessPipeline``. Call
``configure(redis_url=...)`` before using the server; without a Redis
URL the pipeline runs on the in-process store.
"""

from __future__ import annotations

from time import perf_counter
from typing import Any

from fastmcp import FastMCP

from gravitas.config import PipelineConfig
from gravitas.engine.snapshot import RegressionHook
from gravitas.gateways.embedding import EmbeddingGateway
from gravitas.gateways.llm import LLMGateway
from gravitas.gateways.redis_store import RedisStore
from gravitas.gateways.store import StoreGateway
from gravitas.models.envelopes import DispatchResult
from gravitas.models.envelopes import ErrorEnvelope
from gravitas.models.envelopes import PatternReport
from gravitas.models.envelopes import ResponseEnvelope
from gravitas.models.envelopes import SnapshotResult
from gravitas.observability import latency_metrics_snapshot
from gravitas.observability import record_latency
from gravitas.pipeline import ConsciousnessPipeline

mcp = FastMCP("Gravitas")

# ---------------------------------------------------------------------------
# Pipeline instance (set via configure())
# ---------------------------------------------------------------------------

_pipeline: ConsciousnessPipeline | None = None
_redis_store: RedisStore | None = None


async def configure(
    redis_url: str | None = None,
    *,
    config: PipelineConfig | None = None,
    store: StoreGateway | None = None,
    embedder: EmbeddingGateway | None = None,
    llm: LLMGateway | None = None,
    on_regression: RegressionHook | None = None,
) -> None:
    """Initialize the pipeline backend.

    Must be called before the MCP tools can function.
    """
    global _pipeline, _redis_store
    await shutdown()

    if store is None and redis_url is not None:
        _redis_store = RedisStore.from_url(redis_url)
        store = _redis_store

    _pipeline = ConsciousnessPipeline.from_config(
        config,
        store=store,
        embedder=embedder,
        llm=llm,
        on_regression=on_regression,
    )


async def shutdown() -> None:
    """Wait for background work, close clients and release the pipeline."""
    global _pipeline, _redis_store
    if _pipeline is not None:
        await _pipeline.drain()
        _pipeline = None
    if _redis_store is not None:
        try:
            await _redis_store.close()
        except RuntimeError:
            # Tests may reconfigure across event loops.
            pass
        _redis_store = None


def _get_pipeline() -> ConsciousnessPipeline:
    """Return the pipeline instance or raise."""
    if _pipeline is None:
        raise RuntimeError("Pipeline not configured. Call configure() first.")
    return _pipeline


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp.tool
async def dispatch_memory(
    owner_id: str,
    content: str,
    gravity: float | None = None,
    memory_type: str = "user",
    emotion: str | None = None,
    topic: str | None = None,
    summary: str | None = None,
    session_id: str | None = None,
    thread_id: str | None = None,
    identity_anchor: bool = False,
    tags: list[str] | None = None,
    metadata: dict[str, Any] | None = None,
) -> DispatchResult | ErrorEnvelope:
    """Store an experience and run its cascades.

    Args:
        owner_id: Owner the memory belongs to.
        content: Free-text content of the experience.
        gravity: Base salience in [0, 1]; system content is halved.
        memory_type: "user" or "system".
        emotion: Optional emotion label.
        topic: Optional topic label.
        summary: Optional short summary.
        session_id: Conversation session identifier.
        thread_id: Conversation thread identifier.
        identity_anchor: Flags the memory for reflection.
        tags: Free-form tags.
        metadata: Extra caller data.
    """
    start = perf_counter()
    ok = False
    try:
        result = await _get_pipeline().dispatch(
            {
                "owner_id": owner_id,
                "content": content,
                "gravity": gravity,
                "memory_type": memory_type,
                "emotion": emotion,
                "topic": topic,
                "summary": summary,
                "session_id": session_id,
                "thread_id": thread_id,
                "identity_anchor": identity_anchor,
                "tags": tags or [],
                "metadata": metadata or {},
            }
        )
        ok = isinstance(result, DispatchResult)
        return result
    finally:
        record_latency(
            operation="mcp.dispatch_memory",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def detect_patterns(
    owner_id: str, force: bool = False
) -> PatternReport | ErrorEnvelope:
    """Return the owner's ranked behavioral patterns.

    Args:
        owner_id: Owner to analyze.
        force: Recompute even when no trigger is due.
    """
    start = perf_counter()
    ok = False
    try:
        result = await _get_pipeline().detect_patterns(owner_id, force=force)
        ok = isinstance(result, PatternReport)
        return result
    finally:
        record_latency(
            operation="mcp.detect_patterns",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def create_snapshot(
    owner_id: str, force: bool = False
) -> SnapshotResult | ErrorEnvelope:
    """Create the next consciousness snapshot when one is due.

    Args:
        owner_id: Owner to snapshot.
        force: Bypass the entry-count trigger analysis.
    """
    start = perf_counter()
    ok = False
    try:
        result = await _get_pipeline().snapshot(owner_id, force=force)
        ok = isinstance(result, SnapshotResult)
        return result
    finally:
        record_latency(
            operation="mcp.create_snapshot",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def respond(
    owner_id: str,
    query: str,
    mode: str = "flow",
    metadata: dict[str, Any] | None = None,
) -> ResponseEnvelope | ErrorEnvelope:
    """Answer a query from the owner's memories.

    Args:
        owner_id: Owner whose memories are consulted.
        query: The user's message.
        mode: flow, resonance, revelation, fusion or emergence (deeper recall).
        metadata: integrity_risk, gravity and temperature_override hints.
    """
    start = perf_counter()
    ok = False
    try:
        result = await _get_pipeline().respond(
            owner_id, query, mode=mode, metadata=metadata
        )
        ok = isinstance(result, ResponseEnvelope)
        return result
    finally:
        record_latency(
            operation="mcp.respond",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


@mcp.tool
async def pipeline_metrics() -> dict[str, dict[str, float | int]]:
    """Return latency aggregates for every pipeline stage."""
    return latency_metrics_snapshot()
