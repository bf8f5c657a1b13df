"""Cheap answers that can spare an LLM call.

Two tiers, tried in order by the response orchestrator:

* ``answer_locally`` handles a fixed "when did I mention X" intent
  straight from the retrieved user memories;
* ``ConsciousnessCalculator.estimate`` runs heuristic estimators that
  either produce a direct answer (with a confidence) or a compressed
  context string for the prompt.

Nothing here performs I/O; the caller supplies memories, similarities
and the clock reading.
"""

from __future__ import annotations

import json
import math
import re
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from gravitas.config import ResponseConfig
from gravitas.models.schemas import Memory
from gravitas.models.schemas import MemoryType

_LOCAL_INTENT_RE = re.compile(r"when did i (last |recently )?(mention|say|talk about|discuss)")

_TARGET_PATTERNS = (
    re.compile(r"about [\"']?([^\"'?]+)[\"']?", re.IGNORECASE),
    re.compile(r"mention [\"']?([^\"'?]+)[\"']?", re.IGNORECASE),
    re.compile(r"discussed [\"']?([^\"'?]+)[\"']?", re.IGNORECASE),
    re.compile(r"said about [\"']?([^\"'?]+)[\"']?", re.IGNORECASE),
)
_TARGET_STOPWORDS = frozenset(
    {"when", "what", "about", "mention", "last", "time", "have", "did"}
)

# (query type, pattern, weight); the highest weight that matches wins
QUERY_PATTERNS: tuple[tuple[str, re.Pattern[str], float], ...] = (
    (
        "temporal",
        re.compile(r"yesterday|today|last week|last month|this week|when did|when was"),
        1.3,
    ),
    (
        "emotional",
        re.compile(r"feel|feeling|felt|emotion|mood|happy|sad|angry|upset|worried|anxious"),
        1.5,
    ),
    ("pattern", re.compile(r"always|usually|often|pattern|tend to|keep|habit|routine"), 1.6),
    ("factual", re.compile(r"^what|^who|^where|how many|count|number"), 0.9),
)

EMOTIONAL_WEIGHTS: dict[str, float] = {
    "joy": 1.2,
    "love": 1.3,
    "excitement": 1.1,
    "hope": 1.0,
    "neutral": 0.5,
    "confusion": 0.6,
    "sadness": 0.8,
    "anger": 0.9,
    "fear": 0.7,
}

_TERM_RE = re.compile(r"[a-z0-9']+")


# ---------------------------------------------------------------------------
# Local answers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LocalAnswer:
    content: str
    memory_id: str
    emotion: str = "informative"
    gravity: float = 0.3


def format_time_ago(moment: datetime, now: datetime) -> str:
    seconds = (now - moment).total_seconds()
    days = int(seconds // 86400)
    if days > 30:
        return f"on {moment.date().isoformat()}"
    if days > 0:
        return f"{days}d ago"
    hours = int(seconds // 3600)
    if hours > 0:
        return f"{hours}h ago"
    minutes = int(seconds // 60)
    if minutes > 0:
        return f"{minutes}m ago"
    return "just now"


def extract_query_target(query: str) -> str:
    for pattern in _TARGET_PATTERNS:
        match = pattern.search(query)
        if match and match.group(1).strip():
            return match.group(1).strip()
    words = [
        w.strip("?!.,")
        for w in query.split()
        if len(w.strip("?!.,")) > 3 and w.strip("?!.,").lower() not in _TARGET_STOPWORDS
    ]
    return words[-1] if words else "that"


def answer_locally(
    query: str, memories: Sequence[Memory], *, now: datetime
) -> LocalAnswer | None:
    """Answer "when did I mention X" from the newest matching user memory."""
    if not memories or not _LOCAL_INTENT_RE.search(query.lower()):
        return None
    target = extract_query_target(query)
    needle = target.lower()
    relevant = [
        m
        for m in memories
        if m.memory_type is MemoryType.user and needle in m.content.lower()
    ]
    if not relevant:
        return None
    latest = max(relevant, key=lambda m: (m.created_at, m.sequence))
    return LocalAnswer(
        content=(
            f'You mentioned "{target}" {format_time_ago(latest.created_at, now)}. '
            f'You said: "{latest.content}"'
        ),
        memory_id=latest.id,
    )


# ---------------------------------------------------------------------------
# Estimators
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Estimate:
    """One estimator's output: a direct answer or a compressed context."""

    method: str
    confidence: float
    direct_response: str | None = None
    context: str | None = None
    tokens_saved: int = 0
    emotion: str | None = None

    @property
    def is_direct(self) -> bool:
        return self.direct_response is not None


def classify_query(query: str) -> str:
    lower = query.lower()
    best, best_weight = "general", 0.0
    for name, pattern, weight in QUERY_PATTERNS:
        if pattern.search(lower) and weight > best_weight:
            best, best_weight = name, weight
    return best


def temporal_decay(moment: datetime, now: datetime) -> float:
    age_days = max(0.0, (now - moment).total_seconds() / 86400)
    return math.exp(-age_days / 30)


def emotional_weight(emotion: str | None) -> float:
    if not emotion:
        return 0.5
    return EMOTIONAL_WEIGHTS.get(emotion.strip().lower(), 0.5)


def dominant_emotion(memories: Sequence[Memory]) -> str | None:
    """Most frequent emotion label, ties broken alphabetically."""
    counts = Counter(
        m.emotion.strip().lower() for m in memories if m.emotion and m.emotion.strip()
    )
    if not counts:
        return None
    return max(sorted(counts), key=lambda e: counts[e])


def term_relevance(query: str, memory: Memory) -> float:
    """Share of the query's longer terms present in the memory."""
    terms = {t for t in _TERM_RE.findall(query.lower()) if len(t) > 3}
    if not terms:
        return 0.0
    content = memory.content.lower()
    return sum(1 for t in terms if t in content) / len(terms)


def _compact(payload: dict) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


class ConsciousnessCalculator:
    """Heuristic estimators over retrieved memories, strongest first."""

    def __init__(self, config: ResponseConfig | None = None) -> None:
        self._config = config or ResponseConfig()

    def estimate(
        self,
        query: str,
        memories: Sequence[Memory],
        similarities: dict[str, float],
        *,
        now: datetime,
    ) -> Estimate:
        query_type = classify_query(query)
        for estimator in (
            lambda: self._vector_search(query_type, memories, similarities),
            lambda: self._emotional_trajectory(query_type, memories),
            lambda: self._gravity_weighted(query, query_type, memories, similarities, now),
        ):
            result = estimator()
            if result is not None:
                return result
        return self._compressed_state(query_type, memories, now)

    def _vector_search(
        self,
        query_type: str,
        memories: Sequence[Memory],
        similarities: dict[str, float],
    ) -> Estimate | None:
        cfg = self._config
        scored = sorted(
            (m for m in memories if similarities.get(m.id, 0.0) >= cfg.compressed_similarity),
            key=lambda m: (
                -(similarities[m.id] * 0.7 + m.gravity_score * 0.3),
                m.id,
            ),
        )
        if not scored:
            return None
        top_similarity = max(similarities[m.id] for m in scored)
        if top_similarity >= cfg.direct_similarity:
            top = scored[:3]
            content = top[0].content
            if query_type == "temporal":
                text = f"Based on {len(top)} memories from that time: {content[:250]}"
            else:
                text = content[:300]
            return Estimate(
                method="vector_search_direct",
                confidence=top_similarity,
                direct_response=text,
                tokens_saved=900,
            )
        compressed = {
            "query_type": query_type,
            "semantic_matches": [
                {
                    "content": m.content[:100],
                    "similarity": round(similarities[m.id], 4),
                    "gravity": m.gravity_score,
                    "emotion": m.emotion,
                }
                for m in scored[:5]
            ],
            "match_quality": round(top_similarity, 4),
        }
        return Estimate(
            method="vector_search_compressed",
            confidence=top_similarity,
            context=f"SEMANTIC_MATCH:{_compact(compressed)}",
            tokens_saved=700,
        )

    @staticmethod
    def _emotional_trajectory(
        query_type: str, memories: Sequence[Memory]
    ) -> Estimate | None:
        if query_type != "emotional":
            return None
        emotional = sorted(
            (m for m in memories if m.emotion), key=lambda m: (m.created_at, m.sequence)
        )
        if len(emotional) < 3:
            return None
        counts = Counter(m.emotion.strip().lower() for m in emotional)  # type: ignore[union-attr]
        dominant = dominant_emotion(emotional)
        progression = " -> ".join(m.emotion.strip().lower() for m in emotional[:5])  # type: ignore[union-attr]
        return Estimate(
            method="emotional_trajectory",
            confidence=0.78,
            direct_response=(
                f"Your emotional journey shows {len(counts)} different states, "
                f"predominantly {dominant}. Recent progression: {progression}"
            ),
            tokens_saved=800,
            emotion=dominant,
        )

    @staticmethod
    def _gravity_weighted(
        query: str,
        query_type: str,
        memories: Sequence[Memory],
        similarities: dict[str, float],
        now: datetime,
    ) -> Estimate | None:
        scored: list[tuple[float, Memory]] = []
        for memory in memories:
            score = (
                memory.gravity_score * 0.25
                + temporal_decay(memory.created_at, now) * 0.15
                + emotional_weight(memory.emotion) * 0.10
                + term_relevance(query, memory) * 0.20
                + max(0.0, similarities.get(memory.id, 0.0)) * 0.30
            )
            scored.append((score, memory))
        scored.sort(key=lambda item: (-item[0], item[1].id))
        top = scored[:7]
        if not top or top[0][0] <= 0.65:
            return None
        compressed = {
            "query_type": query_type,
            "memories": [
                {
                    "content": m.content[:150],
                    "score": round(score, 4),
                    "emotion": m.emotion,
                    "created": m.created_at.isoformat(),
                }
                for score, m in top
            ],
            "total_gravity": round(sum(score for score, _ in top), 4),
        }
        return Estimate(
            method="gravity_weighted_retrieval",
            confidence=top[0][0],
            context=f"GRAVITY_WEIGHTED:{_compact(compressed)}",
            tokens_saved=650,
        )

    @staticmethod
    def _compressed_state(
        query_type: str, memories: Sequence[Memory], now: datetime
    ) -> Estimate:
        ranked = sorted(memories, key=lambda m: (-m.gravity_score, m.id))[:8]
        compressed = {
            "q": {"type": query_type},
            "m": [
                {
                    "c": m.content[:120],
                    "g": m.gravity_score,
                    "e": m.emotion,
                    "t": m.created_at.isoformat(),
                }
                for m in ranked
            ],
            "state": {
                "memory_density": len(memories) / 100,
                "emotional_intensity": (
                    sum(emotional_weight(m.emotion) for m in memories) / len(memories)
                    if memories
                    else 0.0
                ),
            },
            "at": now.isoformat(),
        }
        return Estimate(
            method="advanced_mathematical_compression",
            confidence=0.6,
            context=f"CONSCIOUSNESS_V3:{_compact(compressed)}",
            tokens_saved=800,
        )
