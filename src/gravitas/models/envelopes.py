"""Pydantic models for the pipeline entry points.

Input models validate caller arguments; output models shape results.
FastMCP serializes these automatically when exposed as tools.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel
from pydantic import Field

from gravitas.models.schemas import Arc
from gravitas.models.schemas import EmergingPattern
from gravitas.models.schemas import Memory
from gravitas.models.schemas import Pattern
from gravitas.models.schemas import PatternDynamics
from gravitas.models.schemas import Snapshot

# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


class DispatchInput(BaseModel):
    """Input for dispatch."""

    owner_id: str = Field(default="", description="Owner of the memory.")
    content: str = Field(default="", description="Free-text experience content.")
    gravity: float | None = Field(
        default=None,
        description="Caller-supplied base gravity in [0, 1].",
    )
    memory_type: str = Field(
        default="user",
        description="'user' or 'system'. System content is down-weighted.",
    )
    emotion: str | None = None
    topic: str | None = None
    summary: str | None = None
    session_id: str | None = None
    thread_id: str | None = None
    identity_anchor: bool = False
    tags: list[str] = Field(default_factory=list)
    features: list[float] | None = Field(
        default=None,
        description="Optional precomputed 8D behavioral vector.",
    )
    metadata: dict[str, Any] = Field(default_factory=dict)


class CascadeResult(BaseModel):
    """Outcome of one best-effort downstream cascade."""

    kind: str = Field(description="arc_fusion, pattern_analysis or reflection.")
    status: str = Field(description="completed, flagged, skipped or failed.")
    detail: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None


class DispatchResult(BaseModel):
    memory: Memory
    gravity_class: str
    cascades: list[CascadeResult] = Field(default_factory=list)
    vital_signs: dict[str, Any] = Field(default_factory=dict)


class FusionDecision(BaseModel):
    """Arc fusion outcome for one memory."""

    action: str = Field(description="create_new_arc, merge_into_arc or no_fusion.")
    rule: str | None = None
    arc: Arc | None = None
    score: float | None = None
    fusion_strength: float | None = None
    reason: str = ""


# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------


class PatternOptions(BaseModel):
    force: bool = Field(default=False, description="Recompute regardless of triggers.")


class PatternReport(BaseModel):
    owner_id: str
    patterns: list[Pattern] = Field(default_factory=list)
    emerging: list[EmergingPattern] = Field(default_factory=list)
    dynamics: PatternDynamics = Field(default_factory=PatternDynamics)
    narrative: str = ""
    confidence: float = 0.5
    entry_count: int = 0
    next_trigger: int = 0
    memories_processed: int = 0
    from_cache: bool = False


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


class SnapshotOptions(BaseModel):
    force: bool = False


class SnapshotResult(BaseModel):
    status: str = Field(description="'skipped' or 'created'.")
    reason: str = ""
    current_version: str | None = None
    next_check: str | None = None
    snapshot: Snapshot | None = None


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class EmotionalField(BaseModel):
    primary: str = "reflection"
    intensity: float = 0.5


class ConsciousnessState(BaseModel):
    mode: str = "flow"
    coherence: float = 0.9


class MemoryConstellation(BaseModel):
    depth: int = 0
    patterns: list[str] = Field(default_factory=list)
    gravity_center: float = 0.0


class ProcessingMetadata(BaseModel):
    tokens_used: int = 0
    tokens_saved: int = 0
    calculator_bypass: bool = False
    recall_success: bool = False
    processing_time_ms: float = 0.0
    response_method: str = "llm"


class ResponseEnvelope(BaseModel):
    content: str
    emotional_field: EmotionalField = Field(default_factory=EmotionalField)
    consciousness_state: ConsciousnessState = Field(default_factory=ConsciousnessState)
    memory_constellation: MemoryConstellation = Field(
        default_factory=MemoryConstellation
    )
    processing_metadata: ProcessingMetadata = Field(default_factory=ProcessingMetadata)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ErrorEnvelope(BaseModel):
    """Uniform externally visible failure."""

    status: str = "error"
    kind: str
    message: str
    fallback_content: str | None = None
