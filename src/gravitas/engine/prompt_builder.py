"""System prompt construction for the response orchestrator.

Builds the prompt from the integrity mode, the retrieved memory context
(or a calculator-compressed context when one is available) and the
owner's ranked patterns. Separate module because the persona text
evolves independently of the orchestration logic.
"""

from __future__ import annotations

from collections.abc import Sequence

from gravitas.models.schemas import Memory
from gravitas.models.schemas import MemoryType
from gravitas.models.schemas import Pattern

IDENTITY = (
    "You are a companion with living memory. You remember the user's "
    "experiences and speak from that continuity, warmly and directly."
)

MEMORY_INSTRUCTIONS = (
    "Use the memories below as your own recollection of past conversations."
)

# Integrity mode -> constraint paragraph placed before everything else
INTEGRITY_CONSTRAINTS = {
    "sentinel_lockdown": (
        "LOCKDOWN: Only verifiable facts from user memories. No speculation. "
        "No creative content."
    ),
    "assertive_truth": "TRUTH MODE: Direct, unfiltered truth. No comfort padding.",
    "guarded": "GUARDED: Careful, measured responses. Verify before stating.",
    "caution": "CAUTION: Add reflection and caveats where appropriate.",
    "nominal": "",
}

MAX_MEMORY_CHARS = 300


def integrity_mode(risk: float) -> str:
    if risk >= 0.9:
        return "sentinel_lockdown"
    if risk >= 0.75:
        return "assertive_truth"
    if risk >= 0.5:
        return "guarded"
    if risk >= 0.25:
        return "caution"
    return "nominal"


def generation_temperature(
    risk: float,
    *,
    default: float = 0.8,
    gravity: float | None = None,
    override: float | None = None,
) -> float:
    """Integrity-banded sampling temperature, clamped to [0.1, 0.9]."""
    temperature = override if override is not None else default
    if risk >= 0.9:
        temperature = 0.1
    elif risk >= 0.75:
        temperature = 0.3
    elif risk >= 0.5:
        temperature = 0.5
    elif risk >= 0.25:
        temperature = 0.7
    if risk < 0.5 and gravity is not None and gravity > 0.8:
        temperature = min(temperature, 0.7)
    return max(0.1, min(0.9, temperature))


def _format_memory(memory: Memory, index: int) -> str:
    content = memory.content
    if len(content) > MAX_MEMORY_CHARS:
        content = content[:MAX_MEMORY_CHARS] + "..."
    parts = [f"{index}. {content}"]
    if memory.emotion:
        parts.append(f"(felt: {memory.emotion})")
    parts.append(f"[gravity {memory.gravity_score:.2f}]")
    return " ".join(parts)


def build_memory_context(memories: Sequence[Memory]) -> str:
    """Format user memories first, then the system's own reflections."""
    if not memories:
        return "=== YOUR MEMORIES ===\nNo relevant memories yet.\n"
    user = [m for m in memories if m.memory_type is MemoryType.user]
    own = [m for m in memories if m.memory_type is MemoryType.system]
    lines = ["=== YOUR MEMORIES ==="]
    lines.extend(_format_memory(m, i) for i, m in enumerate(user, start=1))
    if own:
        lines.append("")
        lines.append("=== YOUR REFLECTIONS ===")
        lines.extend(_format_memory(m, i) for i, m in enumerate(own, start=1))
    return "\n".join(lines) + "\n"


def build_pattern_context(patterns: Sequence[Pattern]) -> str:
    if not patterns:
        return ""
    lines = ["", "=== RECOGNIZED PATTERNS ==="]
    lines.extend(
        f"- {p.type.value}: {p.description or 'Active pattern'}" for p in patterns[:5]
    )
    return "\n".join(lines) + "\n"


def build_system_prompt(
    *,
    risk: float,
    memories: Sequence[Memory],
    patterns: Sequence[Pattern] = (),
    compressed_context: str | None = None,
) -> str:
    """Assemble the full system prompt.

    Integrity constraints always come first; a compressed context
    replaces the per-memory listing when the calculator produced one.
    """
    mode = integrity_mode(risk)
    sections = [IDENTITY, ""]

    constraints = INTEGRITY_CONSTRAINTS[mode]
    if constraints:
        sections.extend(["=== INTEGRITY CONSTRAINTS ===", constraints, ""])

    if risk > 0.15:
        sections.extend(
            ["=== CORTEX STATE ===", f"Integrity Risk: {risk:.2f}", f"Mode: {mode}", ""]
        )

    if compressed_context:
        sections.extend(["=== COMPRESSED MEMORY CONTEXT ===", compressed_context, ""])
    else:
        user_count = sum(1 for m in memories if m.memory_type is MemoryType.user)
        if user_count:
            sections.extend(
                [
                    "=== MEMORY SOVEREIGNTY ===",
                    MEMORY_INSTRUCTIONS,
                    f"You have {user_count} USER memories (authoritative).",
                    "USER memories are FACTS. Your reflections are for continuity.",
                    "",
                ]
            )
        sections.append(build_memory_context(memories))

    pattern_context = build_pattern_context(patterns)
    if pattern_context:
        sections.append(pattern_context)

    sections.append("=== RESPONSE REQUIREMENTS ===")
    if risk >= 0.75:
        sections.extend(
            [
                "1. TRUTH ONLY: State only verifiable facts from user memories.",
                "2. NO SPECULATION: Do not elaborate beyond what is known.",
                "3. NATURAL MEMORY: Integrate memories naturally without citations.",
            ]
        )
    elif risk >= 0.5:
        sections.extend(
            [
                "1. BE CAREFUL: Distinguish between facts and interpretations.",
                "2. USER MEMORIES FIRST: Ground responses in user-provided facts.",
                "3. ACKNOWLEDGE UNCERTAINTY: Be clear about what you know vs think.",
            ]
        )
    else:
        sections.extend(
            [
                "1. NATURAL CONVERSATION: Speak like someone with perfect memory.",
                "2. SEAMLESS MEMORY: Integrate memories without citations or brackets.",
                "3. USER FACTS ARE TRUTH: What the user said about their life is authoritative.",
            ]
        )
    return "\n".join(sections)
