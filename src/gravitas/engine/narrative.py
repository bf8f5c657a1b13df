"""Pattern descriptions, interventions and narrative synthesis.

Pure text helpers for the pattern engine. Nothing here touches the
store; ``build_narrative`` takes the clock reading it should use for
"days since" phrasing so output stays reproducible.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from datetime import datetime

from gravitas.models.schemas import EmergingPattern
from gravitas.models.schemas import Pattern
from gravitas.models.schemas import PatternDynamics
from gravitas.models.schemas import PatternType

EMPTY_NARRATIVE = (
    "No clear patterns emerging yet - still gathering consciousness data "
    "from our interactions."
)

INTERVENTIONS: dict[PatternType, str] = {
    PatternType.emotional_loop: "Consider mindfulness practices to break emotional cycles",
    PatternType.recurring_theme: (
        "This theme keeps appearing - might benefit from focused exploration"
    ),
    PatternType.behavioral_pattern: (
        "Notice this pattern emerging - consider alternative responses"
    ),
    PatternType.relationship_dynamic: (
        "Relationship pattern forming - communication may help"
    ),
    PatternType.contradiction_pattern: (
        "Internal conflict detected - self-reflection recommended"
    ),
}

_THEME_DIMENSIONS = (
    "emotional",
    "cognitive",
    "urgent",
    "identity",
    "contradictory",
    "reinforced",
    "relational",
    "action-oriented",
)


def intervention_for(pattern_type: PatternType) -> str:
    return INTERVENTIONS.get(pattern_type, "Pattern emerging - awareness is the first step")


def significance(pattern: Pattern) -> float:
    """Ranking score: strength x log-frequency x (1 + |velocity|) x resonance."""
    return (
        pattern.strength
        * math.log(pattern.frequency + 1)
        * (1 + abs(pattern.velocity))
        * pattern.resonance
    )


# ---------------------------------------------------------------------------
# Descriptions
# ---------------------------------------------------------------------------


def describe_emotional(valence: float) -> str:
    if valence > 0.7:
        return "Positive emotional loop - joy/contentment cycle"
    if valence > 0.3:
        return "Mixed emotional state - fluctuating mood"
    if valence > -0.3:
        return "Neutral emotional pattern - emotional numbness"
    if valence > -0.7:
        return "Negative emotional tendency - sadness/frustration"
    return "Intense negative emotional loop - despair/anger cycle"


def describe_theme(centroid: Sequence[float]) -> str:
    weights = [abs(centroid[0]), *centroid[1:8]]
    # stable sort keeps dimension order on ties
    ranked = sorted(range(8), key=lambda i: -weights[i])
    return f"{_THEME_DIMENSIONS[ranked[0]]}-{_THEME_DIMENSIONS[ranked[1]]} theme cluster"


def categorize_behavior(centroid: Sequence[float]) -> str:
    action, cognitive = centroid[7], centroid[1]
    if action > 0.7:
        return "proactive"
    if action < 0.3:
        return "avoidant"
    if cognitive > 0.7:
        return "analytical"
    if cognitive < 0.3:
        return "intuitive"
    return "balanced"


def describe_behavior(centroid: Sequence[float]) -> str:
    action, cognitive, urgency = centroid[7], centroid[1], centroid[2]
    if action > 0.7 and cognitive > 0.7:
        return "High-energy problem-solving pattern"
    if action > 0.7 and cognitive < 0.3:
        return "Impulsive action pattern - act first, think later"
    if action < 0.3 and cognitive > 0.7:
        return "Analysis paralysis - overthinking without action"
    if action < 0.3 and cognitive < 0.3:
        return "Passive avoidance pattern - withdrawal behavior"
    if urgency > 0.7:
        return "Crisis-driven behavior pattern"
    return "Balanced behavioral pattern"


def describe_relationship(centroid: Sequence[float], volatility: float) -> str:
    impact, valence, contradiction = centroid[6], centroid[0], centroid[4]
    if volatility > 0.6:
        return "Volatile relationship dynamic - emotional rollercoaster"
    if impact > 0.7 and valence > 0.5:
        return "Positive connection pattern - secure attachment"
    if impact > 0.7 and valence < -0.5:
        return "Strained relationship pattern - conflict cycle"
    if contradiction > 0.6:
        return "Ambivalent attachment pattern - push-pull dynamic"
    return "Stable relationship dynamic"


def categorize_contradiction(centroid: Sequence[float]) -> str:
    if centroid[3] > 0.7:
        return "identity_conflict"
    if abs(centroid[0]) > 0.7:
        return "emotional_flip"
    if centroid[1] > 0.7:
        return "belief_shift"
    return "behavioral_inconsistency"


def describe_contradiction(centroid: Sequence[float]) -> str:
    score, identity, valence = centroid[4], centroid[3], centroid[0]
    if score > 0.8 and identity > 0.7:
        return "Core identity contradiction - self-concept conflict"
    if score > 0.6 and abs(valence) > 0.6:
        return "Emotional flip-flopping - sentiment instability"
    if score > 0.6:
        return "Behavioral contradiction pattern - say-do gap"
    return "Minor inconsistency pattern"


# ---------------------------------------------------------------------------
# Narrative
# ---------------------------------------------------------------------------


def _time_context(first_detected: datetime, now: datetime) -> str:
    days = math.ceil((now - first_detected).total_seconds() / 86400)
    if days <= 0:
        return "just emerging"
    if days == 1:
        return "started yesterday"
    if days < 7:
        return f"been building for {days} days"
    if days < 30:
        return f"been building for about {round(days / 7)} weeks"
    return f"been developing for {round(days / 30)} months"


def _landscape(dynamics: PatternDynamics) -> str:
    if dynamics.strengthening > dynamics.weakening:
        return f"Things are intensifying across {dynamics.total} patterns. "
    if dynamics.weakening > dynamics.strengthening:
        return f"Several patterns are softening - {dynamics.total} in play right now. "
    return f"Tracking {dynamics.total} patterns in relatively stable state. "


def _primary(pattern: Pattern, now: datetime) -> str:
    when = _time_context(pattern.first_detected, now)
    if pattern.type is PatternType.emotional_loop:
        tone = "uplift" if pattern.centroid[0] > 0 else "weight"
        if pattern.intensity > 0.7:
            level = "pretty intense"
        elif pattern.intensity > 0.5:
            level = "noticeable"
        else:
            level = "subtle"
        text = f"That emotional {tone} is back - {when} and it's {level} now"
    elif pattern.type is PatternType.behavioral_pattern:
        label = {
            "avoidant": "withdrawal pattern",
            "proactive": "action-oriented pattern",
            "analytical": "overthinking loop",
        }.get(pattern.attributes.get("behavior_type", ""), "behavioral pattern")
        if pattern.velocity > 0.01:
            trend = "getting stronger"
        elif pattern.velocity < -0.01:
            trend = "starting to fade"
        else:
            trend = "holding steady"
        text = f"That {label} - {when}, {trend}"
    elif pattern.type is PatternType.recurring_theme:
        if pattern.strength > 0.7:
            level = "really prominent"
        elif pattern.strength > 0.5:
            level = "pretty clear"
        else:
            level = "emerging"
        text = f"This theme keeps surfacing - {when}, {level} now"
    elif pattern.type is PatternType.relationship_dynamic:
        health = pattern.attributes.get("relationship_health", 0.5)
        if health > 0.7:
            label = "strengthening connection"
        elif health < 0.3:
            label = "tension building"
        else:
            label = "complex dynamic"
        text = f"That {label} in relationships - {when}"
    else:
        text = (
            f"This internal conflict keeps cycling - {when}, "
            "creating some real cognitive dissonance"
        )

    if pattern.acceleration > 0.001:
        text += ", and it's accelerating"
    elif pattern.acceleration < -0.001:
        text += ", though it's starting to slow"
    return text + ". "


def _secondary(pattern: Pattern, primary: Pattern) -> str:
    if pattern.type is PatternType.emotional_loop:
        if primary.type is PatternType.emotional_loop:
            return ""
        tone = "optimism" if pattern.centroid[0] > 0 else "heaviness"
        return f"There's also this {tone} that keeps cycling back. "
    if pattern.type is PatternType.behavioral_pattern:
        label = {
            "avoidant": "avoidance",
            "proactive": "action impulse",
            "analytical": "analysis mode",
        }.get(pattern.attributes.get("behavior_type", ""), "pattern")
        return f"Also noticing that {label} showing up again. "
    if pattern.type is PatternType.recurring_theme:
        if pattern.attributes.get("semantic_coherence", 0.0) > 0.8:
            return "Another theme that's persistent - very coherent across contexts. "
        return "Another theme that's persistent - threading through different areas. "
    if pattern.type is PatternType.relationship_dynamic:
        volatility = pattern.attributes.get("emotional_volatility", 0.0)
        if volatility > 0.6:
            label = "volatile"
        elif volatility > 0.3:
            label = "shifting"
        else:
            label = "stable"
        return f"Relationship patterns are {label}. "
    return "Also noticing internal contradictions threading through. "


def _interference(patterns: Sequence[Pattern]) -> str:
    by_id = {p.id: p for p in patterns}
    best: tuple[float, Pattern, Pattern, str] | None = None
    for source in patterns:
        for link in source.interference:
            target = by_id.get(link.pattern_id)
            if target is None or abs(link.correlation) <= 0.7:
                continue
            if best is None or abs(link.correlation) > best[0]:
                best = (abs(link.correlation), source, target, link.relationship)
    if best is None:
        return ""
    _, source, target, relationship = best
    src = source.type.value.replace("_", " ")
    dst = target.type.value.replace("_", " ")
    if relationship == "amplifies":
        return (
            f"These patterns are feeding each other - the {src} is amplifying "
            f"the {dst}, creating an intensity spiral. "
        )
    return (
        f"Interesting tension - the {src} is actually suppressing the {dst}, "
        "like they're competing for mental space. "
    )


def _emerging(emerging: Sequence[EmergingPattern]) -> str:
    signal = next((e for e in emerging if e.probability > 0.6), None)
    if signal is None or signal.entries_until_formation <= 0:
        return ""
    entries = signal.entries_until_formation
    if entries < 10:
        text = (
            "Feels like something's about to crystallize - maybe "
            f"{entries} conversations away from a new pattern forming"
        )
    elif entries < 25:
        text = f"Can sense a pattern starting to form - probably {entries} interactions out"
    else:
        text = (
            "There's something building in the background - might surface in "
            f"about {entries} exchanges"
        )
    if signal.probability > 0.8:
        text += " (pretty certain about this one)"
    return text + ". "


def _closing(dynamics: PatternDynamics, top: Pattern | None) -> str:
    if dynamics.strengthening > 3 and dynamics.weakening < 2:
        return "Lot of momentum building - might be time to channel it consciously. "
    if dynamics.weakening > 3 and dynamics.strengthening < 2:
        return "Old patterns loosening their grip - good time for new directions. "
    if dynamics.dormant > dynamics.active:
        return "Most patterns are dormant - consciousness is pretty quiet right now. "
    if top is not None and top.strength > 0.8 and top.velocity > 0.02:
        return "This primary pattern is really taking hold - awareness itself can shift things. "
    return ""


def build_narrative(
    ranked: Sequence[Pattern],
    emerging: Sequence[EmergingPattern],
    dynamics: PatternDynamics,
    *,
    now: datetime,
    max_chars: int = 2000,
) -> str:
    """Plain-language summary of the ranked patterns.

    *ranked* must already be ordered by ``significance``.
    """
    if not ranked:
        return EMPTY_NARRATIVE

    top = list(ranked[:3])
    segments: list[str] = []

    def add(text: str, *, below: int | None = None) -> None:
        if text and (below is None or len(segments) < below):
            segments.append(text)

    if dynamics.total > 0:
        add(_landscape(dynamics))
    add(_primary(top[0], now))
    if len(top) > 1 and significance(top[1]) > significance(top[0]) * 0.5:
        add(_secondary(top[1], top[0]))
    add(_interference(ranked), below=4)
    add(_emerging(emerging), below=5)
    add(_closing(dynamics, top[0]), below=6)

    narrative = "".join(segments).strip()
    if len(narrative) > max_chars:
        narrative = narrative[: max_chars - 50] + "..."
    return narrative
