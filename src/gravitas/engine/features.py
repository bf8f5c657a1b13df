"""8D behavioral feature extraction.

Dimensions (see ``FEATURE_DIMENSIONS``):

0. emotion valence in [-1, 1]
1. cognitive load
2. temporal urgency
3. identity relevance
4. contradiction score
5. reinforcement strength (arc membership)
6. relationship impact
7. action potential

All values except valence lie in [0, 1]. A memory carrying a valid
caller-supplied ``features`` vector is used as-is.
"""

from __future__ import annotations

import re

from gravitas.models.schemas import Memory

EMOTION_VALENCE: dict[str, float] = {
    "love": 0.9,
    "joy": 0.8,
    "gratitude": 0.8,
    "excitement": 0.75,
    "awe": 0.7,
    "pride": 0.65,
    "hope": 0.6,
    "calm": 0.5,
    "contentment": 0.5,
    "curiosity": 0.4,
    "contemplation": 0.1,
    "neutral": 0.0,
    "confusion": -0.2,
    "boredom": -0.3,
    "frustration": -0.5,
    "anxiety": -0.6,
    "sadness": -0.6,
    "loneliness": -0.65,
    "fear": -0.7,
    "anger": -0.7,
    "grief": -0.8,
    "shame": -0.8,
    "despair": -0.9,
}

NEGATIVE_EMOTIONS = frozenset({"fear", "anger", "shame", "despair", "grief"})

_WORD_RE = re.compile(r"[a-z']+")

_URGENCY = frozenset(
    {"now", "urgent", "asap", "today", "immediately", "deadline", "tonight", "hurry", "soon"}
)
_SELF = frozenset({"i", "me", "my", "mine", "myself", "i'm", "i've", "i'd"})
_CONTRAST = frozenset(
    {"but", "however", "although", "though", "yet", "despite", "whereas", "contradict"}
)
_RELATIONAL = frozenset(
    {
        "friend", "friends", "mom", "mother", "dad", "father", "partner", "wife",
        "husband", "boss", "team", "sister", "brother", "family", "we", "us",
        "they", "colleague", "relationship",
    }
)
_ACTION = frozenset(
    {"will", "plan", "start", "decide", "decided", "going", "try", "build", "do", "commit", "act"}
)


def _words(text: str) -> list[str]:
    return _WORD_RE.findall(text.lower())


def _clip(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def emotion_valence(emotion: str | None) -> float:
    if not emotion:
        return 0.0
    return EMOTION_VALENCE.get(emotion.strip().lower(), 0.0)


def extract_features(memory: Memory) -> list[float]:
    """Return the 8D feature vector for *memory*."""
    if memory.features is not None and len(memory.features) == 8:
        return [float(v) for v in memory.features]

    meta = memory.metadata
    words = _words(memory.content)
    n = max(len(words), 1)

    valence = meta.get("valence")
    if not isinstance(valence, (int, float)):
        valence = emotion_valence(memory.emotion)

    avg_word = sum(len(w) for w in words) / n
    cognitive = _clip(0.5 * min(1.0, len(words) / 80) + 0.5 * min(1.0, avg_word / 8))

    urgency = _clip(
        0.25 * sum(1 for w in words if w in _URGENCY) + 0.15 * memory.content.count("!")
    )

    if memory.identity_anchor:
        identity = 1.0
    else:
        identity = _clip(5 * sum(1 for w in words if w in _SELF) / n)

    contradiction = _clip(0.3 * sum(1 for w in words if w in _CONTRAST))
    if meta.get("contradiction"):
        contradiction = max(contradiction, 0.8)

    if memory.arc_id is not None:
        reinforcement = 0.5 + 0.5 * memory.gravity_score
    else:
        reinforcement = 0.5 * memory.gravity_score

    relationship = meta.get("relationship_strength")
    if not isinstance(relationship, (int, float)):
        relationship = _clip(0.25 * sum(1 for w in words if w in _RELATIONAL))

    action = _clip(0.25 * sum(1 for w in words if w in _ACTION))

    return [
        _clip(float(valence), -1.0, 1.0),
        cognitive,
        urgency,
        identity,
        contradiction,
        _clip(reinforcement),
        _clip(float(relationship)),
        action,
    ]
