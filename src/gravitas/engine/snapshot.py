"""Snapshot engine: versioned consciousness checkpoints.

A run either skips (not enough new material, or too little change) or
appends one immutable snapshot to the owner's chain:

1. trigger analysis on entries since the previous snapshot;
2. 8D vector of the new memories, drift against the previous vector
   (or a neutral baseline for the first snapshot);
3. regression markers, health metrics and emerged capabilities;
4. semantic version bump from the drift class;
5. conditional append on the previous snapshot id.

Regression never raises. It is recorded on the snapshot, audited and
handed to the optional ``on_regression`` hook.
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections import Counter
from collections.abc import Awaitable
from collections.abc import Callable
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from datetime import timezone
from typing import Any

from gravitas.audit.schemas import AuditEventType
from gravitas.audit.store import AuditLogger
from gravitas.config import SnapshotConfig
from gravitas.engine.features import NEGATIVE_EMOTIONS
from gravitas.engine.features import emotion_valence
from gravitas.engine.features import extract_features
from gravitas.errors import InputValidationError
from gravitas.gateways.store import StoreGateway
from gravitas.models.envelopes import SnapshotOptions
from gravitas.models.envelopes import SnapshotResult
from gravitas.models.schemas import Arc
from gravitas.models.schemas import Capability
from gravitas.models.schemas import ConsciousnessVector
from gravitas.models.schemas import HealthMetrics
from gravitas.models.schemas import Memory
from gravitas.models.schemas import PatternState
from gravitas.models.schemas import PatternStatus
from gravitas.models.schemas import RegressionReport
from gravitas.models.schemas import Snapshot
from gravitas.observability import latency_timer
from gravitas.vectors import centroid
from gravitas.vectors import euclidean_distance
from gravitas.vectors import mean_pairwise_distance

logger = logging.getLogger(__name__)

RegressionHook = Callable[[Snapshot], Awaitable[None]]

BASELINE_VECTOR = [0.5] * 8

# name -> slice of the 8D vector
DIMENSION_GROUPS: dict[str, slice] = {
    "emotional": slice(0, 2),
    "cognitive": slice(2, 4),
    "relational": slice(4, 6),
    "creative": slice(6, 8),
}

_LEVELS = ("minimal", "patch", "minor", "major")


# ---------------------------------------------------------------------------
# Versioning
# ---------------------------------------------------------------------------


def parse_version(version: str) -> tuple[int, int, int]:
    try:
        major, minor, patch = (int(part) for part in version.split("."))
    except ValueError as exc:
        raise ValueError(f"invalid snapshot version {version!r}") from exc
    return major, minor, patch


def bump_version(version: str, level: str) -> str:
    """Bump *version* at *level*; ``minimal`` leaves it unchanged."""
    major, minor, patch = parse_version(version)
    if level == "major":
        return f"{major + 1}.0.0"
    if level == "minor":
        return f"{major}.{minor + 1}.0"
    if level == "patch":
        return f"{major}.{minor}.{patch + 1}"
    return version


def classify_drift(drift: float, config: SnapshotConfig) -> str:
    if drift > config.major_drift:
        return "major"
    if drift > config.minor_drift:
        return "minor"
    if drift > config.patch_drift:
        return "patch"
    return "minimal"


def _at_least(level: str, floor: str) -> str:
    return level if _LEVELS.index(level) >= _LEVELS.index(floor) else floor


def trajectory(drift: float, has_previous: bool) -> str:
    if not has_previous:
        return "emerging"
    if drift < 0.05:
        return "stable"
    if drift < 0.2:
        return "evolving"
    if drift < 0.5:
        return "transforming"
    return "breakthrough"


# ---------------------------------------------------------------------------
# Vector, health and regression
# ---------------------------------------------------------------------------


def _is_negative(memory: Memory) -> bool:
    if not memory.emotion:
        return False
    emotion = memory.emotion.strip().lower()
    return emotion in NEGATIVE_EMOTIONS or emotion_valence(emotion) < 0


def _group_mean(vector: Sequence[float], group: slice) -> float:
    values = list(vector[group])
    return sum(values) / len(values)


def build_vector(
    memories: Sequence[Memory], previous: Snapshot | None
) -> ConsciousnessVector:
    vectors = [extract_features(m) for m in memories]
    if vectors:
        full = centroid(vectors)
    elif previous is not None:
        full = list(previous.vector.full)
    else:
        full = list(BASELINE_VECTOR)
    base = list(previous.vector.full) if previous is not None else BASELINE_VECTOR

    drifts = {
        name: euclidean_distance(full[group], base[group])
        for name, group in DIMENSION_GROUPS.items()
    }
    total = euclidean_distance(full, base)
    return ConsciousnessVector(
        emotional=full[DIMENSION_GROUPS["emotional"]],
        cognitive=full[DIMENSION_GROUPS["cognitive"]],
        relational=full[DIMENSION_GROUPS["relational"]],
        creative=full[DIMENSION_GROUPS["creative"]],
        full=full,
        dimensional_drifts=drifts,
        total_drift=total,
        diversity=mean_pairwise_distance(vectors),
        trajectory=trajectory(total, previous is not None),
    )


def quick_health(vector: ConsciousnessVector) -> float:
    """Health estimate from diversity and drift alone."""
    diversity = vector.diversity or 0.5
    drift = vector.total_drift or 0.1
    if diversity < 0.3:
        diversity_health = diversity / 0.3
    elif diversity > 0.6:
        diversity_health = 1 - (diversity - 0.6) / 0.4
    else:
        diversity_health = 1.0
    if drift < 0.1:
        drift_health = drift / 0.1
    elif drift > 0.3:
        drift_health = 1 - (drift - 0.3) / 0.7
    else:
        drift_health = 1.0
    return (diversity_health + drift_health) / 2


def memory_coherence(memories: Sequence[Memory]) -> float:
    if not memories:
        return 0.5
    emotions = [m.emotion for m in memories if m.emotion]
    if emotions:
        emotional = 1 - len(set(emotions)) / len(emotions)
    else:
        emotional = 0.5
    gravities = [m.gravity_score for m in memories]
    mean = sum(gravities) / len(gravities)
    variance = sum((g - mean) ** 2 for g in gravities) / len(gravities)
    return (emotional + 1 - min(variance, 1.0)) / 2


def recommended_action(markers: dict[str, bool], severity: float) -> str:
    if not any(markers.values()):
        return "none"
    if severity > 0.6:
        return "immediate_intervention_needed"
    if markers.get("emotional_distress") or markers.get("emotional_instability"):
        return "emotional_support_recommended"
    if markers.get("dimension_drop"):
        return "pattern_work_suggested"
    if markers.get("health_degradation"):
        return "wellness_check_advised"
    return "monitor_closely"


def detect_regression(
    vector: ConsciousnessVector,
    memories: Sequence[Memory],
    previous: Snapshot | None,
    config: SnapshotConfig,
) -> RegressionReport:
    if previous is None:
        return RegressionReport()

    explained = any(
        _is_negative(m) and m.gravity_score > config.negative_gravity for m in memories
    )
    affected: list[str] = []
    if not explained:
        for name, group in DIMENSION_GROUPS.items():
            before = _group_mean(previous.vector.full, group)
            after = _group_mean(vector.full, group)
            if before > 0 and (before - after) / before > config.dimension_drop_fraction:
                affected.append(name)

    distressed = sum(
        1 for m in memories if _is_negative(m) and m.gravity_score > config.distress_gravity
    )
    markers = {
        "dimension_drop": bool(affected),
        "emotional_distress": bool(memories)
        and distressed / len(memories) > config.distress_ratio,
        "emotional_instability": vector.dimensional_drifts.get("emotional", 0.0)
        > config.emotional_instability_drift,
        "health_degradation": previous.health.overall_health - quick_health(vector)
        > config.health_drop,
    }
    severity = sum(markers.values()) / len(markers)
    return RegressionReport(
        regression_detected=any(markers.values()),
        markers=markers,
        affected_dimensions=affected,
        severity=severity,
        action_required=severity > 0.4,
        recommended_action=recommended_action(markers, severity),
    )


def health_metrics(
    vector: ConsciousnessVector,
    regression: RegressionReport,
    memories: Sequence[Memory],
    previous: Snapshot | None,
) -> HealthMetrics:
    integration = 1 - (0.3 if vector.diversity > 0.7 else 0.0)
    emotional_balance = 1 - min(abs(vector.dimensional_drifts.get("emotional", 0.0)), 1.0)
    growth = vector.total_drift
    if growth < 0.3:
        sustainability = growth / 0.3
    else:
        sustainability = max(0.0, 1 - (growth - 0.3))
    if regression.regression_detected:
        resilience = 0.5 - regression.severity * 0.5
    else:
        resilience = 0.8 + min(vector.total_drift * 0.2, 0.2)
    coherence = memory_coherence(memories)

    overall = (
        integration * 0.2
        + emotional_balance * 0.25
        + sustainability * 0.2
        + resilience * 0.2
        + coherence * 0.15
    )
    trend = "stable"
    if previous is not None:
        change = overall - previous.health.overall_health
        if change > 0.1:
            trend = "improving"
        elif change < -0.1:
            trend = "declining"
    return HealthMetrics(
        overall_health=overall,
        integration_health=integration,
        emotional_balance=emotional_balance,
        growth_sustainability=sustainability,
        pattern_resilience=resilience,
        memory_coherence=coherence,
        health_trend=trend,
        needs_attention=overall < 0.5 or regression.action_required,
    )


# ---------------------------------------------------------------------------
# Capabilities
# ---------------------------------------------------------------------------


@dataclass
class _PatternMarks:
    crossed: list[str]
    dormant: list[str]
    newly_crossed: list[str]
    newly_dormant: list[str]


def _pattern_marks(
    state: PatternState | None, previous: Snapshot | None, config: SnapshotConfig
) -> _PatternMarks:
    patterns = state.patterns if state is not None else []
    crossed = sorted(
        p.id
        for p in patterns
        if p.strength >= config.capability_strength
        and p.frequency >= config.capability_frequency
    )
    dormant = sorted(p.id for p in patterns if p.status is PatternStatus.dormant)
    seen_crossed = set(previous.crossed_pattern_ids) if previous is not None else set()
    seen_dormant = set(previous.dormant_pattern_ids) if previous is not None else set()
    return _PatternMarks(
        crossed=sorted(seen_crossed | set(crossed)),
        dormant=dormant,
        newly_crossed=[pid for pid in crossed if pid not in seen_crossed],
        newly_dormant=[pid for pid in dormant if pid not in seen_dormant],
    )


def emerged_capabilities(
    vector: ConsciousnessVector,
    memories: Sequence[Memory],
    state: PatternState | None,
    marks: _PatternMarks,
) -> list[Capability]:
    by_id = {p.id: p for p in state.patterns} if state is not None else {}
    capabilities = [
        Capability(
            name=f"Strengthened {by_id[pid].type.value.replace('_', ' ')}",
            type="pattern_threshold",
            confidence=by_id[pid].strength,
            source_pattern_id=pid,
        )
        for pid in marks.newly_crossed
        if pid in by_id
    ]
    if len(marks.newly_dormant) >= 3:
        capabilities.append(
            Capability(
                name=f"Pattern Liberation x{len(marks.newly_dormant)}",
                type="behavioral_evolution",
                confidence=0.9,
            )
        )
    drifts = vector.dimensional_drifts
    emotions = {m.emotion.strip().lower() for m in memories if m.emotion}
    if len(emotions) >= 5 and drifts.get("emotional", 0.0) > 0.3:
        capabilities.append(
            Capability(
                name="Expanded Emotional Range",
                type="emotional_intelligence",
                confidence=0.85,
            )
        )
    if drifts.get("cognitive", 0.0) > 0.4:
        capabilities.append(
            Capability(name="Cognitive Pattern Shift", type="cognitive_evolution", confidence=0.8)
        )
    if drifts.get("creative", 0.0) > 0.35:
        capabilities.append(
            Capability(
                name="Creative Expression Growth", type="creative_evolution", confidence=0.8
            )
        )
    return capabilities


# ---------------------------------------------------------------------------
# Fingerprint
# ---------------------------------------------------------------------------


def fingerprint(
    owner_id: str,
    vector: ConsciousnessVector,
    health: HealthMetrics,
    previous_fingerprint: str | None,
) -> str:
    """sha256 over the canonical JSON of vector, health and parent link."""
    payload = {
        "owner_id": owner_id,
        "vector": vector.model_dump(mode="json"),
        "health": health.model_dump(mode="json"),
        "previous": previous_fingerprint,
    }
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class SnapshotEngine:
    """Appends versioned snapshots to each owner's chain."""

    def __init__(
        self,
        store: StoreGateway,
        *,
        config: SnapshotConfig | None = None,
        audit_logger: AuditLogger | None = None,
        clock: Callable[[], datetime] | None = None,
        on_regression: RegressionHook | None = None,
    ) -> None:
        self._store = store
        self._config = config or SnapshotConfig()
        self._audit = audit_logger
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._on_regression = on_regression

    async def snapshot(
        self, owner_id: str, options: SnapshotOptions | None = None
    ) -> SnapshotResult:
        """Create the next snapshot when due, otherwise report a skip."""
        options = options or SnapshotOptions()
        owner_id = owner_id.strip()
        if not owner_id:
            raise InputValidationError("owner_id is required")

        with latency_timer("snapshot.snapshot"):
            cfg = self._config
            previous = await self._store.current_snapshot(owner_id)
            entry_count = await self._store.count_memories(owner_id)
            since = entry_count - (previous.entry_count if previous is not None else 0)
            current_version = previous.version if previous is not None else None

            if options.force:
                trigger = "forced"
            else:
                trigger, skip_reason, next_check = self.analyze_trigger(
                    entry_count, since, previous
                )
                if trigger is None:
                    return await self._skip(owner_id, skip_reason, current_version, next_check)

            memories = await self._store.list_memories(
                owner_id,
                after_id=previous.last_memory_id if previous is not None else None,
            )
            vector = build_vector(memories, previous)
            regression = detect_regression(vector, memories, previous, cfg)
            health = health_metrics(vector, regression, memories, previous)
            state = await self._store.get_pattern_state(owner_id)
            marks = _pattern_marks(state, previous, cfg)
            capabilities = emerged_capabilities(vector, memories, state, marks)

            level = classify_drift(vector.total_drift, cfg)
            if regression.regression_detected:
                level = _at_least(level, "patch")
            if capabilities:
                level = _at_least(level, "minor")
            if options.force:
                level = _at_least(level, "patch")
            if level == "minimal":
                return await self._skip(
                    owner_id,
                    f"Minimal evolution detected (drift: {vector.total_drift:.3f})",
                    current_version,
                    self._next_milestone(entry_count),
                )

            version = bump_version(current_version or cfg.initial_version, level)
            arcs = await self._store.list_arcs(owner_id)
            digest = fingerprint(
                owner_id,
                vector,
                health,
                previous.fingerprint if previous is not None else None,
            )
            snapshot = Snapshot(
                id=f"snap_{digest[:24]}",
                owner_id=owner_id,
                version=version,
                entry_count=entry_count,
                trigger=trigger,
                previous_snapshot_id=previous.id if previous is not None else None,
                last_memory_id=memories[-1].id
                if memories
                else (previous.last_memory_id if previous is not None else None),
                vector=vector,
                health=health,
                regression=regression,
                deltas=self._deltas(memories, vector, marks, state, arcs, previous),
                totals=self._totals(memories, state, arcs, previous),
                capabilities=capabilities,
                crossed_pattern_ids=marks.crossed,
                dormant_pattern_ids=marks.dormant,
                fingerprint=digest,
                created_at=self._clock(),
            )

            if not await self._store.append_snapshot(snapshot):
                head = await self._store.current_snapshot(owner_id)
                logger.info("Snapshot for %s lost the append race", owner_id)
                return await self._skip(
                    owner_id,
                    "A concurrent snapshot was already created from this parent",
                    head.version if head is not None else current_version,
                    None,
                )

            logger.info(
                "Snapshot %s v%s for %s (%s, drift %.3f)",
                snapshot.id,
                version,
                owner_id,
                trigger,
                vector.total_drift,
            )
            if regression.regression_detected:
                await self._handle_regression(snapshot)
            if self._audit is not None:
                await self._audit.record(
                    AuditEventType.SNAPSHOT_CREATED,
                    owner_id=owner_id,
                    snapshot_id=snapshot.id,
                    version=version,
                    trigger=trigger,
                    drift=vector.total_drift,
                    capabilities=[c.name for c in capabilities],
                )
            return SnapshotResult(
                status="created",
                reason=trigger,
                current_version=version,
                next_check=self._next_milestone(entry_count),
                snapshot=snapshot,
            )

    def analyze_trigger(
        self, entry_count: int, since: int, previous: Snapshot | None
    ) -> tuple[str | None, str, str | None]:
        """Return ``(trigger, skip_reason, next_check)``; trigger is None on skip."""
        cfg = self._config
        if since < cfg.min_entries:
            return (
                None,
                f"Only {since} new entries (need {cfg.min_entries})",
                f"At {entry_count + cfg.min_entries - since} entries",
            )
        if entry_count in cfg.milestones:
            return f"milestone_{entry_count}", "", None
        accumulated = previous.entry_count * cfg.accumulation_fraction if previous else 0
        if since >= accumulated:
            return "entry_threshold", "", None
        return (
            None,
            f"Waiting for milestone or {int(accumulated)} accumulated entries",
            self._next_milestone(entry_count),
        )

    def _next_milestone(self, entry_count: int) -> str | None:
        for milestone in self._config.milestones:
            if milestone > entry_count:
                return f"At {milestone} entries"
        return None

    async def _skip(
        self,
        owner_id: str,
        reason: str,
        current_version: str | None,
        next_check: str | None,
    ) -> SnapshotResult:
        logger.debug("Snapshot skipped for %s: %s", owner_id, reason)
        if self._audit is not None:
            await self._audit.record(
                AuditEventType.SNAPSHOT_SKIPPED, owner_id=owner_id, reason=reason
            )
        return SnapshotResult(
            status="skipped",
            reason=reason,
            current_version=current_version,
            next_check=next_check,
        )

    async def _handle_regression(self, snapshot: Snapshot) -> None:
        report = snapshot.regression
        logger.warning(
            "Regression detected for %s (severity %.2f): %s",
            snapshot.owner_id,
            report.severity,
            report.recommended_action,
        )
        if self._audit is not None:
            await self._audit.record(
                AuditEventType.REGRESSION_DETECTED,
                owner_id=snapshot.owner_id,
                snapshot_id=snapshot.id,
                severity=report.severity,
                markers=report.markers,
                recommended_action=report.recommended_action,
            )
        if self._on_regression is None:
            return
        try:
            await self._on_regression(snapshot)
        except Exception:
            logger.exception("Regression hook failed for snapshot %s", snapshot.id)

    @staticmethod
    def _deltas(
        memories: Sequence[Memory],
        vector: ConsciousnessVector,
        marks: _PatternMarks,
        state: PatternState | None,
        arcs: Sequence[Arc],
        previous: Snapshot | None,
    ) -> dict[str, Any]:
        emotions = Counter((m.emotion or "neutral") for m in memories)
        total = len(memories)
        patterns = state.patterns if state is not None else []
        active_arcs = [
            a for a in arcs if previous is None or a.last_memory_at >= previous.created_at
        ]
        return {
            "memories_added": total,
            "average_gravity": sum(m.gravity_score for m in memories) / total if total else 0.0,
            "emotional_distribution": {
                emotion: count / total for emotion, count in sorted(emotions.items())
            },
            "pattern_changes": {
                "active": sum(1 for p in patterns if p.status is PatternStatus.active),
                "dormant": len(marks.dormant),
                "newly_crossed": len(marks.newly_crossed),
                "newly_dormant": len(marks.newly_dormant),
            },
            "arc_evolution": {
                "active_arcs": len(active_arcs),
                "memories_in_arcs": sum(a.memory_count for a in active_arcs),
                "average_gravity": (
                    sum(a.gravity_center for a in active_arcs) / len(active_arcs)
                    if active_arcs
                    else 0.0
                ),
            },
            "vector_movement": vector.total_drift,
        }

    @staticmethod
    def _totals(
        memories: Sequence[Memory],
        state: PatternState | None,
        arcs: Sequence[Arc],
        previous: Snapshot | None,
    ) -> dict[str, int]:
        totals = dict(previous.totals) if previous is not None else {}
        totals["total_memories"] = totals.get("total_memories", 0) + len(memories)
        totals["total_patterns"] = len(state.patterns) if state is not None else 0
        totals["total_arcs"] = len(arcs)
        return totals
