"""Pydantic models for stored pipeline artifacts.

Memories, arcs, patterns and snapshots are the four persisted record
kinds; everything else here is a nested value object.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from datetime import timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel
from pydantic import Field

FEATURE_DIMENSIONS = (
    "emotion_valence",
    "cognitive_load",
    "temporal_urgency",
    "identity_relevance",
    "contradiction_score",
    "reinforcement_strength",
    "relationship_impact",
    "action_potential",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class MemoryType(str, Enum):
    """Origin of a memory record."""

    user = "user"
    system = "system"


class PatternType(str, Enum):
    """Pattern families produced by the pattern detectors."""

    emotional_loop = "emotional_loop"
    recurring_theme = "recurring_theme"
    behavioral_pattern = "behavioral_pattern"
    relationship_dynamic = "relationship_dynamic"
    contradiction_pattern = "contradiction_pattern"


class PatternStatus(str, Enum):
    active = "active"
    dormant = "dormant"


# ---------------------------------------------------------------------------
# Memory
# ---------------------------------------------------------------------------


class Memory(BaseModel):
    """An experience record. Immutable once written except ``arc_id``."""

    id: str = Field(
        default_factory=lambda: f"mem_{uuid.uuid4().hex}",
        description="Unique memory identifier.",
    )
    owner_id: str = Field(description="Owner the memory belongs to.")
    content: str = Field(description="Free-text content of the experience.")
    gravity_score: float = Field(
        ge=0.0,
        le=1.0,
        description="Salience after type adjustment.",
    )
    emotion: str | None = Field(default=None, description="Emotion label.")
    topic: str | None = Field(default=None, description="Topic label.")
    summary: str | None = Field(default=None, description="Optional short summary.")
    embedding: list[float] | None = Field(
        default=None,
        description="Dense embedding; None when the embedding call failed.",
    )
    features: list[float] | None = Field(
        default=None,
        description="Caller-supplied 8D behavioral vector, if any.",
    )
    created_at: datetime = Field(default_factory=_utcnow)
    arc_id: str | None = Field(default=None, description="Arc back-reference.")
    memory_type: MemoryType = MemoryType.user
    identity_anchor: bool = False
    session_id: str | None = None
    thread_id: str | None = None
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    sequence: int = Field(
        default=0,
        description="Per-owner insertion order assigned by the store.",
    )


# ---------------------------------------------------------------------------
# Arc
# ---------------------------------------------------------------------------


class GrowthVector(BaseModel):
    velocity: float = 0.0
    direction: str = "emerging"


class Arc(BaseModel):
    """A named cluster of related memories with a running gravity centroid."""

    id: str = Field(default_factory=lambda: f"arc_{uuid.uuid4().hex}")
    owner_id: str
    name: str
    emotional_tone: str | None = None
    gravity_center: float = Field(ge=0.0, le=1.0)
    memory_count: int = Field(ge=1)
    first_memory_at: datetime
    last_memory_at: datetime
    growth_vector: GrowthVector = Field(default_factory=GrowthVector)
    member_ids: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Pattern
# ---------------------------------------------------------------------------


class PatternHistoryPoint(BaseModel):
    entry_count: int
    strength: float
    velocity: float = 0.0


class PatternInterference(BaseModel):
    """Correlation between two patterns observed in the same run."""

    pattern_id: str
    pattern_type: PatternType
    correlation: float
    relationship: str = Field(description="'amplifies' or 'suppresses'.")
    conflicting: bool = Field(
        default=False,
        description="True when the two centroids have opposite valence.",
    )


class Pattern(BaseModel):
    """A recurring cluster in the 8D behavioral feature space."""

    id: str
    owner_id: str
    type: PatternType
    description: str = ""
    centroid: list[float] = Field(min_length=8, max_length=8)
    strength: float = Field(ge=0.0, le=1.0)
    frequency: int = Field(ge=0)
    intensity: float = 0.0
    density: float = 0.0
    resonance: float = 0.5
    velocity: float = 0.0
    acceleration: float = 0.0
    trend: str = "new"
    status: PatternStatus = PatternStatus.active
    memory_ids: list[str] = Field(default_factory=list)
    attributes: dict[str, Any] = Field(
        default_factory=dict,
        description="Detector-specific extras (behavior_type, volatility, ...).",
    )
    interference: list[PatternInterference] = Field(default_factory=list)
    last_reinforced_entry: int = 0
    first_detected: datetime = Field(default_factory=_utcnow)
    last_observed: datetime = Field(default_factory=_utcnow)


class EmergingPattern(BaseModel):
    """A sub-threshold proto-cluster. Reported, never persisted."""

    pattern_type: PatternType
    near_pattern_id: str
    description: str
    probability: float
    entries_until_formation: int
    early_intervention: str
    trajectory: list[float]


class PatternDynamics(BaseModel):
    total: int = 0
    new: int = 0
    strengthening: int = 0
    weakening: int = 0
    dormant: int = 0
    active: int = 0
    with_interference: int = 0


class PatternState(BaseModel):
    """Per-owner cache row for the pattern engine."""

    owner_id: str
    version: int = 0
    last_entry_count: int = 0
    last_memory_id: str | None = None
    patterns: list[Pattern] = Field(default_factory=list)
    history: dict[str, list[PatternHistoryPoint]] = Field(default_factory=dict)
    ranked_ids: list[str] = Field(default_factory=list)
    emerging: list[EmergingPattern] = Field(default_factory=list)
    dynamics: PatternDynamics = Field(default_factory=PatternDynamics)
    narrative: str = ""
    confidence: float = 0.5
    memories_processed: int = 0


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------


class ConsciousnessVector(BaseModel):
    emotional: list[float]
    cognitive: list[float]
    relational: list[float]
    creative: list[float]
    full: list[float]
    dimensional_drifts: dict[str, float] = Field(default_factory=dict)
    total_drift: float = 0.0
    diversity: float = 0.0
    trajectory: str = "emerging"


class RegressionReport(BaseModel):
    regression_detected: bool = False
    markers: dict[str, bool] = Field(default_factory=dict)
    affected_dimensions: list[str] = Field(default_factory=list)
    severity: float = 0.0
    action_required: bool = False
    recommended_action: str = "none"


class HealthMetrics(BaseModel):
    overall_health: float
    integration_health: float
    emotional_balance: float
    growth_sustainability: float
    pattern_resilience: float
    memory_coherence: float
    health_trend: str = "stable"
    needs_attention: bool = False


class Capability(BaseModel):
    name: str
    type: str
    confidence: float
    source_pattern_id: str | None = None


class Snapshot(BaseModel):
    """A versioned point-in-time summary. Never mutated after creation."""

    id: str
    owner_id: str
    version: str
    entry_count: int
    trigger: str
    previous_snapshot_id: str | None = None
    last_memory_id: str | None = Field(
        default=None,
        description="Newest memory folded into this snapshot.",
    )
    vector: ConsciousnessVector
    health: HealthMetrics
    regression: RegressionReport
    deltas: dict[str, Any] = Field(default_factory=dict)
    totals: dict[str, int] = Field(default_factory=dict)
    capabilities: list[Capability] = Field(default_factory=list)
    crossed_pattern_ids: list[str] = Field(default_factory=list)
    dormant_pattern_ids: list[str] = Field(default_factory=list)
    fingerprint: str
    created_at: datetime = Field(default_factory=_utcnow)
