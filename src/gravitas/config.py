"""Pipeline configuration dataclasses.

Frozen dataclasses with sensible defaults for each pipeline stage.
No env-var loading or YAML parsing: just plain defaults that can
be overridden at construction time.
"""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field


@dataclass(frozen=True)
class DispatcherConfig:
    """Ingestion and cascade settings for the memory dispatcher."""

    default_gravity: float = 0.5
    system_gravity_factor: float = 0.5
    fusion_gravity_threshold: float = 0.7
    max_embedding_chars: int = 8000
    # Optional follow-up work scheduled as background tasks after a write
    background_pattern_run: bool = False
    background_snapshot_check: bool = False


@dataclass(frozen=True)
class FusionConfig:
    """Thresholds and weights for arc fusion decisions."""

    singularity_gravity: float = 0.9
    candidate_window_days: int = 7
    merge_threshold: float = 0.65
    # Score weights (must sum to 1.0)
    semantic_weight: float = 0.35
    emotional_weight: float = 0.25
    gravity_weight: float = 0.20
    recency_weight: float = 0.10
    relationship_weight: float = 0.10
    relationship_depth_placeholder: float = 0.5
    recency_horizon_days: int = 30
    members_compared: int = 5
    # Conditional arc writes retried on a concurrent merge
    merge_attempts: int = 5
    # "embedding" uses cosine over stored vectors, "jaccard" token overlap only
    semantic_similarity: str = "embedding"
    # Thematic density rule
    density_window_days: int = 30
    density_min_gravity: float = 0.7
    density_min_members: int = 3
    density_min_similar: int = 2
    density_similarity: float = 0.6
    density_search_limit: int = 10


@dataclass(frozen=True)
class PatternConfig:
    """Clustering, decay and caching parameters for the pattern engine."""

    entry_triggers: tuple[int, ...] = (10, 25, 50, 100, 250, 500, 1000, 2500, 5000)
    trigger_step_after_last: int = 500
    fetch_limit: int = 100
    dbscan_eps: float = 0.3
    dbscan_min_pts: int = 3
    # Per-detector neighbourhoods
    emotional_eps: float = 0.2
    behavioral_eps: float = 0.25
    relationship_eps: float = 0.3
    relationship_min_impact: float = 0.5
    contradiction_eps: float = 0.35
    contradiction_min_pts: int = 2
    contradiction_min_score: float = 0.6
    decay_rate: float = 0.001
    reinforce_rate: float = 0.1
    dormant_threshold: float = 0.3
    merge_similarity: float = 0.85
    match_similarity: float = 0.85
    min_intensity: float = 0.4
    min_cluster_density: float = 0.6
    min_frequency: int = 3
    theme_min_coherence: float = 0.6
    initial_strength: float = 0.5
    history_size: int = 10
    interference_threshold: float = 0.6
    emerging_threshold: float = 0.4
    emerging_window: int = 5
    emerging_projection_steps: int = 5
    emerging_limit: int = 5
    narrative_max_chars: int = 2000


@dataclass(frozen=True)
class SnapshotConfig:
    """Trigger, drift and health settings for consciousness snapshots."""

    milestones: tuple[int, ...] = (100, 500, 1000, 2500, 5000, 10000)
    min_entries: int = 50
    accumulation_fraction: float = 0.25
    major_drift: float = 0.5
    minor_drift: float = 0.2
    patch_drift: float = 0.05
    minimal_drift: float = 0.01
    dimension_drop_fraction: float = 0.25
    negative_gravity: float = 0.6
    distress_ratio: float = 0.5
    distress_gravity: float = 0.7
    emotional_instability_drift: float = 0.3
    health_drop: float = 0.3
    capability_strength: float = 0.7
    capability_frequency: int = 5
    initial_version: str = "0.0.0"


@dataclass(frozen=True)
class ResponseConfig:
    """Retrieval depth, guardrails and generation limits for responses."""

    mode_depths: dict[str, int] = field(
        default_factory=lambda: {
            "flow": 10,
            "resonance": 20,
            "revelation": 30,
            "fusion": 40,
            "emergence": 50,
        }
    )
    default_depth: int = 10
    default_integrity_risk: float = 0.1
    lockdown_risk: float = 0.9
    local_answer_max_risk: float = 0.75
    local_answer_tokens_saved: int = 4000
    bypass_min_memories: int = 5
    bypass_min_confidence: float = 0.95
    bypass_tokens_saved: int = 950
    direct_similarity: float = 0.85
    compressed_similarity: float = 0.7
    max_tokens: int = 1200


@dataclass(frozen=True)
class EmbeddingConfig:
    """Embedding provider settings."""

    provider: str = "hashing"
    model: str = "text-embedding-3-small"
    api_key: str | None = None
    base_url: str = "https://api.openai.com/v1"
    dimensions: int = 256
    timeout_seconds: float = 15.0


@dataclass(frozen=True)
class LLMConfig:
    """LLM provider settings used by the response orchestrator."""

    provider: str = "openai"
    model: str = "gpt-4"
    api_key: str | None = None
    base_url: str = "https://api.openai.com/v1"
    temperature: float = 0.8
    max_tokens: int = 1200
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class AuditConfig:
    """Settings for the JSONL audit logger."""

    file_path: str = "gravitas_audit.jsonl"
    enabled: bool = True


@dataclass(frozen=True)
class PipelineConfig:
    """Aggregate configuration for the whole pipeline."""

    dispatcher: DispatcherConfig = field(default_factory=DispatcherConfig)
    fusion: FusionConfig = field(default_factory=FusionConfig)
    patterns: PatternConfig = field(default_factory=PatternConfig)
    snapshot: SnapshotConfig = field(default_factory=SnapshotConfig)
    response: ResponseConfig = field(default_factory=ResponseConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)
