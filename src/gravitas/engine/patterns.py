"""Pattern engine: trigger-gated behavioral pattern detection.

One run, per owner:

1. decide between the cached row and a recompute (entry-count triggers);
2. project new memories into the 8D feature space and cluster them
   with five detectors;
3. reinforce matching patterns, create the rest, decay the patterns
   that were not reinforced, merge near-duplicates;
4. derive velocity/acceleration from the stored strength history,
   interference between active patterns and emerging signals;
5. rank the viable patterns, write the cache row with a
   compare-and-swap on its version.

Everything after the store reads is a pure function of the stored state
and the new memories, so concurrent or repeated runs converge.
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Callable
from collections.abc import Sequence
from dataclasses import dataclass
from dataclasses import field
from datetime import datetime
from datetime import timezone
from typing import Any

import numpy as np

from gravitas.audit.schemas import AuditEventType
from gravitas.audit.store import AuditLogger
from gravitas.config import PatternConfig
from gravitas.engine.clustering import dbscan
from gravitas.engine.clustering import project
from gravitas.engine.features import extract_features
from gravitas.engine.narrative import build_narrative
from gravitas.engine.narrative import categorize_behavior
from gravitas.engine.narrative import categorize_contradiction
from gravitas.engine.narrative import describe_behavior
from gravitas.engine.narrative import describe_contradiction
from gravitas.engine.narrative import describe_emotional
from gravitas.engine.narrative import describe_relationship
from gravitas.engine.narrative import describe_theme
from gravitas.engine.narrative import intervention_for
from gravitas.engine.narrative import significance
from gravitas.errors import InputValidationError
from gravitas.gateways.store import StoreGateway
from gravitas.models.envelopes import PatternOptions
from gravitas.models.envelopes import PatternReport
from gravitas.models.schemas import EmergingPattern
from gravitas.models.schemas import Memory
from gravitas.models.schemas import Pattern
from gravitas.models.schemas import PatternDynamics
from gravitas.models.schemas import PatternHistoryPoint
from gravitas.models.schemas import PatternInterference
from gravitas.models.schemas import PatternState
from gravitas.models.schemas import PatternStatus
from gravitas.models.schemas import PatternType
from gravitas.observability import latency_timer
from gravitas.vectors import centroid as mean_vector
from gravitas.vectors import cosine_similarity
from gravitas.vectors import euclidean_distance

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Vector statistics
# ---------------------------------------------------------------------------


def cluster_intensity(vectors: Sequence[Sequence[float]]) -> float:
    c = mean_vector(vectors)
    return abs(c[0]) * 0.3 + c[5] * 0.4 + c[3] * 0.3


def coherence(vectors: Sequence[Sequence[float]]) -> float:
    """Mean pairwise cosine similarity."""
    if len(vectors) < 2:
        return 0.0
    sims = [
        cosine_similarity(vectors[i], vectors[j])
        for i in range(len(vectors) - 1)
        for j in range(i + 1, len(vectors))
    ]
    return sum(sims) / len(sims)


def volatility(vectors: Sequence[Sequence[float]]) -> float:
    """Share of consecutive valence shifts larger than 0.3."""
    if len(vectors) < 2:
        return 0.0
    shifts = sum(
        1 for prev, cur in zip(vectors, vectors[1:]) if abs(cur[0] - prev[0]) > 0.3
    )
    return shifts / (len(vectors) - 1)


def resonance(centroid: Sequence[float]) -> float:
    return max(0.0, 1.0 - float(np.std(np.asarray(centroid, dtype=np.float64))))


def stability(vectors: Sequence[Sequence[float]]) -> float:
    if len(vectors) < 3:
        return 1.0
    pairs = np.asarray(
        [mean_vector([a, b]) for a, b in zip(vectors, vectors[1:])], dtype=np.float64
    )
    return max(0.0, 1.0 - float(pairs.var(axis=0).sum()) / 8)


def predictive_power(history: Sequence[PatternHistoryPoint]) -> float:
    if len(history) < 3:
        return 0.0
    hits = sum(
        1
        for cur, nxt in zip(history[1:-1], history[2:])
        if abs(cur.strength + cur.velocity - nxt.strength) < 0.1
    )
    return hits / (len(history) - 2)


def next_trigger(entry_count: int, config: PatternConfig) -> int:
    for trigger in config.entry_triggers:
        if trigger > entry_count:
            return trigger
    return entry_count + config.trigger_step_after_last


def pattern_id(owner_id: str, pattern_type: PatternType, memory_ids: Sequence[str]) -> str:
    signature = f"{owner_id}|{pattern_type.value}|{','.join(sorted(memory_ids))}"
    return "pat_" + hashlib.sha256(signature.encode("utf-8")).hexdigest()[:16]


def _weighted_centroid(a: Sequence[float], wa: int, b: Sequence[float], wb: int) -> list[float]:
    total = wa + wb
    if total <= 0:
        return list(b)
    return ((np.asarray(a) * wa + np.asarray(b) * wb) / total).tolist()


# ---------------------------------------------------------------------------
# Candidates
# ---------------------------------------------------------------------------


@dataclass
class ClusterCandidate:
    """A cluster emitted by one detector in the current run."""

    type: PatternType
    members: list[Memory]
    vectors: list[list[float]]
    centroid: list[float]
    intensity: float
    density: float
    description: str = ""
    attributes: dict[str, Any] = field(default_factory=dict)


@dataclass
class _RunResult:
    patterns: list[Pattern]
    history: dict[str, list[PatternHistoryPoint]]
    emerging: list[EmergingPattern]


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class PatternEngine:
    """Maintains the per-owner pattern cache row."""

    def __init__(
        self,
        store: StoreGateway,
        *,
        config: PatternConfig | None = None,
        audit_logger: AuditLogger | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._config = config or PatternConfig()
        self._audit = audit_logger
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def detect(
        self, owner_id: str, options: PatternOptions | None = None
    ) -> PatternReport:
        """Return the owner's ranked patterns, recomputing when due."""
        options = options or PatternOptions()
        owner_id = owner_id.strip()
        if not owner_id:
            raise InputValidationError("owner_id is required")

        with latency_timer("patterns.detect"):
            cfg = self._config
            entry_count = await self._store.count_memories(owner_id)
            upcoming = next_trigger(entry_count, cfg)
            at_trigger = entry_count in cfg.entry_triggers
            state = await self._store.get_pattern_state(owner_id)

            if (
                not options.force
                and state is not None
                and not at_trigger
                and entry_count == state.last_entry_count
            ):
                return self._report(state, entry_count, upcoming, from_cache=True)

            new_memories = await self._store.list_memories(
                owner_id,
                after_id=state.last_memory_id if state is not None else None,
                limit=cfg.fetch_limit,
                newest_first=True,
            )
            new_memories.reverse()

            if (
                not options.force
                and state is not None
                and not new_memories
                and (not at_trigger or entry_count == state.last_entry_count)
            ):
                return self._report(state, entry_count, upcoming, from_cache=True)

            fresh = self.recompute(owner_id, state, new_memories, entry_count)
            saved = await self._store.save_pattern_state(
                fresh, expected_version=state.version if state is not None else None
            )
            if not saved:
                # Another run for this owner won the write; serve its row.
                logger.info("Pattern state for %s changed concurrently", owner_id)
                winner = await self._store.get_pattern_state(owner_id)
                if winner is not None:
                    return self._report(winner, entry_count, upcoming, from_cache=True)

            if self._audit is not None:
                await self._audit.record(
                    AuditEventType.PATTERN_RUN,
                    owner_id=owner_id,
                    entry_count=entry_count,
                    memories_processed=len(new_memories),
                    patterns=len(fresh.patterns),
                    ranked=len(fresh.ranked_ids),
                )
            return self._report(fresh, entry_count, upcoming, from_cache=False)

    # -- recompute --

    def recompute(
        self,
        owner_id: str,
        state: PatternState | None,
        new_memories: Sequence[Memory],
        entry_count: int,
    ) -> PatternState:
        """Pure update of *state* with *new_memories*; no I/O."""
        cfg = self._config
        previous = state or PatternState(owner_id=owner_id)
        new_entries = max(0, entry_count - previous.last_entry_count)

        run = self._update_patterns(owner_id, previous, list(new_memories), entry_count, new_entries)
        viable = [p for p in run.patterns if self._is_viable(p)]
        ranked = sorted(viable, key=lambda p: (-significance(p), p.id))

        previous_ids = {p.id for p in previous.patterns}
        dynamics = PatternDynamics(
            total=len(run.patterns),
            new=sum(1 for p in run.patterns if p.id not in previous_ids),
            strengthening=sum(1 for p in run.patterns if p.velocity > 0.01),
            weakening=sum(1 for p in run.patterns if p.velocity < -0.01),
            dormant=sum(1 for p in run.patterns if p.status is PatternStatus.dormant),
            active=sum(1 for p in run.patterns if p.status is PatternStatus.active),
            with_interference=sum(1 for p in run.patterns if p.interference),
        )
        narrative = build_narrative(
            ranked,
            run.emerging,
            dynamics,
            now=self._clock(),
            max_chars=cfg.narrative_max_chars,
        )

        return PatternState(
            owner_id=owner_id,
            version=previous.version,
            last_entry_count=entry_count,
            last_memory_id=new_memories[-1].id if new_memories else previous.last_memory_id,
            patterns=run.patterns,
            history=run.history,
            ranked_ids=[p.id for p in ranked],
            emerging=run.emerging,
            dynamics=dynamics,
            narrative=narrative,
            confidence=self._confidence(ranked, len(new_memories)),
            memories_processed=len(new_memories),
        )

    def _update_patterns(
        self,
        owner_id: str,
        previous: PatternState,
        memories: list[Memory],
        entry_count: int,
        new_entries: int,
    ) -> _RunResult:
        cfg = self._config
        vectors = [extract_features(m) for m in memories]
        patterns = {p.id: p for p in previous.patterns}
        reinforced: set[str] = set()
        clustered_ids: set[str] = set()

        for candidate in self.detect_candidates(memories, vectors, list(patterns.values())):
            clustered_ids.update(m.id for m in candidate.members)
            match = self._find_similar(candidate.centroid, candidate.type, patterns.values())
            if match is not None:
                patterns[match.id] = self._reinforce(
                    match, candidate, entry_count, bump=match.id not in reinforced
                )
                reinforced.add(match.id)
            else:
                created = self._create(owner_id, candidate, entry_count)
                patterns[created.id] = created
                reinforced.add(created.id)

        for pid, pattern in patterns.items():
            if pid not in reinforced and new_entries:
                strength = max(0.0, pattern.strength - cfg.decay_rate * new_entries)
                patterns[pid] = pattern.model_copy(
                    update={"strength": strength, "status": self._status(strength)}
                )

        merged, absorbed = self._merge_duplicates(list(patterns.values()))

        history: dict[str, list[PatternHistoryPoint]] = {}
        with_dynamics: list[Pattern] = []
        for pattern in merged:
            updated, points = self._apply_history(
                pattern, previous.history.get(pattern.id, []), entry_count
            )
            with_dynamics.append(updated)
            history[pattern.id] = points
        if absorbed:
            logger.debug("Merged duplicate patterns: %s", absorbed)

        final = self._with_interference(with_dynamics)
        unclustered = [v for m, v in zip(memories, vectors) if m.id not in clustered_ids]
        emerging = self._predict_emerging(unclustered, final)
        return _RunResult(
            patterns=final,
            history=history,
            emerging=emerging,
        )

    # -- detectors --

    def detect_candidates(
        self,
        memories: Sequence[Memory],
        vectors: Sequence[Sequence[float]],
        existing: Sequence[Pattern],
    ) -> list[ClusterCandidate]:
        """Run the five detectors over one batch of feature vectors."""
        cfg = self._config
        if len(vectors) < cfg.dbscan_min_pts:
            return []
        return [
            *self._emotional_loops(memories, vectors, existing),
            *self._recurring_themes(memories, vectors, existing),
            *self._behavioral_patterns(memories, vectors, existing),
            *self._relationship_dynamics(memories, vectors, existing),
            *self._contradictions(memories, vectors, existing),
        ]

    def _candidate(
        self,
        pattern_type: PatternType,
        indices: Sequence[int],
        density: float,
        memories: Sequence[Memory],
        vectors: Sequence[Sequence[float]],
        existing: Sequence[Pattern],
        *,
        intensity: Callable[[list[float]], float] | None = None,
    ) -> ClusterCandidate | None:
        members = [memories[i] for i in indices]
        member_vectors = [list(vectors[i]) for i in indices]
        center = mean_vector(member_vectors)
        value = cluster_intensity(member_vectors) if intensity is None else intensity(center)
        if (
            value < self._config.min_intensity
            and self._find_similar(center, pattern_type, existing) is None
        ):
            return None
        return ClusterCandidate(
            type=pattern_type,
            members=members,
            vectors=member_vectors,
            centroid=center,
            intensity=value,
            density=density,
        )

    def _emotional_loops(self, memories, vectors, existing) -> list[ClusterCandidate]:
        cfg = self._config
        found = []
        for cluster in dbscan(project(vectors, (0, 5)), cfg.emotional_eps, cfg.dbscan_min_pts):
            if cluster.density < cfg.min_cluster_density:
                continue
            cand = self._candidate(
                PatternType.emotional_loop, cluster.points, cluster.density, memories, vectors, existing
            )
            if cand is None:
                continue
            cand.description = describe_emotional(cand.centroid[0])
            found.append(cand)
        return found

    def _recurring_themes(self, memories, vectors, existing) -> list[ClusterCandidate]:
        cfg = self._config
        found = []
        for cluster in dbscan(vectors, cfg.dbscan_eps, cfg.dbscan_min_pts):
            if cluster.density < cfg.min_cluster_density:
                continue
            score = coherence([vectors[i] for i in cluster.points])
            if score < cfg.theme_min_coherence:
                continue
            cand = self._candidate(
                PatternType.recurring_theme, cluster.points, cluster.density, memories, vectors, existing
            )
            if cand is None:
                continue
            cand.description = describe_theme(cand.centroid)
            cand.attributes = {
                "semantic_coherence": score,
                "stability_index": stability(cand.vectors),
            }
            found.append(cand)
        return found

    def _behavioral_patterns(self, memories, vectors, existing) -> list[ClusterCandidate]:
        cfg = self._config
        found = []
        for cluster in dbscan(project(vectors, (7, 1, 2)), cfg.behavioral_eps, cfg.dbscan_min_pts):
            if cluster.density < cfg.min_cluster_density:
                continue
            cand = self._candidate(
                PatternType.behavioral_pattern, cluster.points, cluster.density, memories, vectors, existing
            )
            if cand is None:
                continue
            cand.description = describe_behavior(cand.centroid)
            cand.attributes = {
                "behavior_type": categorize_behavior(cand.centroid),
                "action_likelihood": cand.centroid[7],
            }
            found.append(cand)
        return found

    def _relationship_dynamics(self, memories, vectors, existing) -> list[ClusterCandidate]:
        cfg = self._config
        keep = [i for i, v in enumerate(vectors) if v[6] > cfg.relationship_min_impact]
        if len(keep) < cfg.dbscan_min_pts:
            return []
        sub_memories = [memories[i] for i in keep]
        sub_vectors = [vectors[i] for i in keep]
        found = []
        for cluster in dbscan(project(sub_vectors, (6, 0, 4)), cfg.relationship_eps, cfg.dbscan_min_pts):
            if cluster.density < cfg.min_cluster_density:
                continue
            cand = self._candidate(
                PatternType.relationship_dynamic,
                cluster.points,
                cluster.density,
                sub_memories,
                sub_vectors,
                existing,
            )
            if cand is None:
                continue
            swing = volatility(cand.vectors)
            cand.description = describe_relationship(cand.centroid, swing)
            cand.attributes = {
                "tension_score": cand.centroid[4],
                "emotional_volatility": swing,
                "relationship_health": 1 - (cand.centroid[4] + swing) / 2,
            }
            found.append(cand)
        return found

    def _contradictions(self, memories, vectors, existing) -> list[ClusterCandidate]:
        cfg = self._config
        keep = [i for i, v in enumerate(vectors) if v[4] > cfg.contradiction_min_score]
        if len(keep) < cfg.contradiction_min_pts:
            return []
        sub_memories = [memories[i] for i in keep]
        sub_vectors = [vectors[i] for i in keep]
        found = []
        for cluster in dbscan(sub_vectors, cfg.contradiction_eps, cfg.contradiction_min_pts):
            cand = self._candidate(
                PatternType.contradiction_pattern,
                cluster.points,
                cluster.density,
                sub_memories,
                sub_vectors,
                existing,
                intensity=lambda c: c[4],
            )
            if cand is None:
                continue
            cand.description = describe_contradiction(cand.centroid)
            cand.attributes = {
                "contradiction_type": categorize_contradiction(cand.centroid),
                "cognitive_dissonance": cand.centroid[4] * cand.centroid[3],
            }
            found.append(cand)
        return found

    # -- pattern updates --

    def _status(self, strength: float) -> PatternStatus:
        if strength < self._config.dormant_threshold:
            return PatternStatus.dormant
        return PatternStatus.active

    def _find_similar(self, center, pattern_type, patterns) -> Pattern | None:
        for pattern in sorted(patterns, key=lambda p: (p.first_detected, p.id)):
            if pattern.type is not pattern_type:
                continue
            if cosine_similarity(center, pattern.centroid) > self._config.match_similarity:
                return pattern
        return None

    def _create(self, owner_id: str, candidate: ClusterCandidate, entry_count: int) -> Pattern:
        ids = [m.id for m in candidate.members]
        strength = self._config.initial_strength
        return Pattern(
            id=pattern_id(owner_id, candidate.type, ids),
            owner_id=owner_id,
            type=candidate.type,
            description=candidate.description,
            centroid=candidate.centroid,
            strength=strength,
            frequency=len(ids),
            intensity=candidate.intensity,
            density=candidate.density,
            resonance=resonance(candidate.centroid),
            status=self._status(strength),
            memory_ids=ids,
            attributes=candidate.attributes,
            last_reinforced_entry=entry_count,
            first_detected=min(m.created_at for m in candidate.members),
            last_observed=max(m.created_at for m in candidate.members),
        )

    def _reinforce(
        self,
        pattern: Pattern,
        candidate: ClusterCandidate,
        entry_count: int,
        *,
        bump: bool,
    ) -> Pattern:
        known = set(pattern.memory_ids)
        added = [m.id for m in candidate.members if m.id not in known]
        center = _weighted_centroid(pattern.centroid, pattern.frequency, candidate.centroid, len(added))
        strength = pattern.strength
        if bump:
            strength = min(1.0, strength + self._config.reinforce_rate)
        return pattern.model_copy(
            update={
                "description": candidate.description,
                "centroid": center,
                "strength": strength,
                "status": self._status(strength),
                "frequency": pattern.frequency + len(added),
                "intensity": candidate.intensity,
                "density": candidate.density,
                "resonance": resonance(center),
                "memory_ids": [*pattern.memory_ids, *added],
                "attributes": {**pattern.attributes, **candidate.attributes},
                "last_reinforced_entry": entry_count,
                "last_observed": max(
                    pattern.last_observed, *(m.created_at for m in candidate.members)
                ),
            }
        )

    def _merge_duplicates(self, patterns: list[Pattern]) -> tuple[list[Pattern], dict[str, str]]:
        kept: list[Pattern] = []
        absorbed: dict[str, str] = {}
        for pattern in sorted(patterns, key=lambda p: (p.first_detected, p.id)):
            for idx, anchor in enumerate(kept):
                if anchor.type is pattern.type and (
                    cosine_similarity(anchor.centroid, pattern.centroid)
                    > self._config.merge_similarity
                ):
                    kept[idx] = self._absorb(anchor, pattern)
                    absorbed[pattern.id] = anchor.id
                    break
            else:
                kept.append(pattern)
        return kept, absorbed

    def _absorb(self, anchor: Pattern, other: Pattern) -> Pattern:
        known = set(anchor.memory_ids)
        added = [mid for mid in other.memory_ids if mid not in known]
        center = _weighted_centroid(anchor.centroid, anchor.frequency, other.centroid, len(added))
        strength = max(anchor.strength, other.strength)
        return anchor.model_copy(
            update={
                "centroid": center,
                "strength": strength,
                "status": self._status(strength),
                "frequency": anchor.frequency + len(added),
                "resonance": resonance(center),
                "memory_ids": [*anchor.memory_ids, *added],
                "last_reinforced_entry": max(
                    anchor.last_reinforced_entry, other.last_reinforced_entry
                ),
                "last_observed": max(anchor.last_observed, other.last_observed),
            }
        )

    def _apply_history(
        self,
        pattern: Pattern,
        history: Sequence[PatternHistoryPoint],
        entry_count: int,
    ) -> tuple[Pattern, list[PatternHistoryPoint]]:
        # A rerun at the same entry count replaces that count's point.
        prior = [point for point in history if point.entry_count < entry_count]
        velocity = acceleration = 0.0
        trend = "new"
        if prior:
            last = prior[-1]
            elapsed = entry_count - last.entry_count
            velocity = (pattern.strength - last.strength) / elapsed
            acceleration = (velocity - last.velocity) / elapsed
            trend = "stable"
            if velocity > 0.01:
                trend = "strengthening"
            elif velocity < -0.01:
                trend = "weakening"
            if acceleration > 0.001:
                trend = "accelerating"
            elif acceleration < -0.001:
                trend = "decelerating"

        points = [
            *prior,
            PatternHistoryPoint(
                entry_count=entry_count, strength=pattern.strength, velocity=velocity
            ),
        ][-self._config.history_size :]
        updated = pattern.model_copy(
            update={
                "velocity": velocity,
                "acceleration": acceleration,
                "trend": trend,
                "attributes": {
                    **pattern.attributes,
                    "predictive_power": predictive_power(points),
                },
            }
        )
        return updated, points

    def _with_interference(self, patterns: list[Pattern]) -> list[Pattern]:
        links: dict[str, list[PatternInterference]] = {p.id: [] for p in patterns}
        active = [p for p in patterns if p.status is PatternStatus.active]
        for i, a in enumerate(active):
            for b in active[i + 1 :]:
                corr = self._correlation(a, b)
                if abs(corr) <= self._config.interference_threshold:
                    continue
                relationship = "amplifies" if corr > 0 else "suppresses"
                conflicting = a.centroid[0] * b.centroid[0] < 0
                links[a.id].append(
                    PatternInterference(
                        pattern_id=b.id,
                        pattern_type=b.type,
                        correlation=corr,
                        relationship=relationship,
                        conflicting=conflicting,
                    )
                )
                links[b.id].append(
                    PatternInterference(
                        pattern_id=a.id,
                        pattern_type=a.type,
                        correlation=corr,
                        relationship=relationship,
                        conflicting=conflicting,
                    )
                )
        return [p.model_copy(update={"interference": links[p.id]}) for p in patterns]

    @staticmethod
    def _correlation(a: Pattern, b: Pattern) -> float:
        smaller = min(len(a.memory_ids), len(b.memory_ids))
        overlap = len(set(a.memory_ids) & set(b.memory_ids)) / smaller if smaller else 0.0
        return 0.5 * overlap + 0.5 * cosine_similarity(a.centroid, b.centroid)

    def _predict_emerging(
        self, unclustered: Sequence[Sequence[float]], patterns: Sequence[Pattern]
    ) -> list[EmergingPattern]:
        cfg = self._config
        recent = [list(v) for v in unclustered[-cfg.emerging_window :]]
        if len(recent) < cfg.dbscan_min_pts:
            return []
        deltas = [np.subtract(cur, prev) for prev, cur in zip(recent, recent[1:])]
        direction = np.mean(deltas, axis=0)
        speed = float(np.linalg.norm(direction))
        if speed == 0:
            return []
        projected = np.asarray(recent[-1]) + direction * cfg.emerging_projection_steps

        signals = []
        for pattern in patterns:
            if pattern.status is not PatternStatus.active:
                continue
            distance = euclidean_distance(projected, pattern.centroid)
            if distance >= cfg.emerging_threshold:
                continue
            signals.append(
                EmergingPattern(
                    pattern_type=pattern.type,
                    near_pattern_id=pattern.id,
                    description=pattern.description,
                    probability=1 - distance / cfg.emerging_threshold,
                    entries_until_formation=max(1, round(distance / speed)),
                    early_intervention=intervention_for(pattern.type),
                    trajectory=direction.tolist(),
                )
            )
        signals.sort(key=lambda s: (-s.probability, s.near_pattern_id))
        return signals[: cfg.emerging_limit]

    # -- output --

    def _is_viable(self, pattern: Pattern) -> bool:
        cfg = self._config
        return (
            pattern.frequency >= cfg.min_frequency
            and pattern.intensity >= cfg.min_intensity
            and pattern.density >= cfg.min_cluster_density
            and pattern.strength >= cfg.dormant_threshold
        )

    @staticmethod
    def _confidence(ranked: Sequence[Pattern], processed: int) -> float:
        if not ranked:
            return 0.5
        mean_strength = sum(p.strength for p in ranked) / len(ranked)
        mean_density = sum(p.density for p in ranked) / len(ranked)
        return mean_strength * 0.4 + mean_density * 0.4 + min(1.0, processed / 10) * 0.2

    @staticmethod
    def _report(
        state: PatternState, entry_count: int, upcoming: int, *, from_cache: bool
    ) -> PatternReport:
        by_id = {p.id: p for p in state.patterns}
        return PatternReport(
            owner_id=state.owner_id,
            patterns=[by_id[pid] for pid in state.ranked_ids if pid in by_id],
            emerging=state.emerging,
            dynamics=state.dynamics,
            narrative=state.narrative,
            confidence=state.confidence,
            entry_count=entry_count,
            next_trigger=upcoming,
            memories_processed=0 if from_cache else state.memories_processed,
            from_cache=from_cache,
        )

