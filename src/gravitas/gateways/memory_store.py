"""In-process store gateway for tests and single-process deployments."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import Sequence
from datetime import datetime

from gravitas.models.schemas import Arc
from gravitas.models.schemas import Memory
from gravitas.models.schemas import PatternState
from gravitas.models.schemas import Snapshot
from gravitas.vectors import cosine_similarity


class InMemoryStore:
    """Dictionary-backed implementation of ``StoreGateway``.

    Records are deep-copied on the way in and out so callers never share
    mutable state with the store.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._memories: dict[str, Memory] = {}
        self._owner_memories: dict[str, list[str]] = defaultdict(list)
        self._arcs: dict[str, Arc] = {}
        self._pattern_states: dict[str, PatternState] = {}
        self._snapshots: dict[str, list[Snapshot]] = defaultdict(list)

    # -- memories --

    async def insert_memory(self, memory: Memory) -> Memory:
        async with self._lock:
            ids = self._owner_memories[memory.owner_id]
            stored = memory.model_copy(update={"sequence": len(ids) + 1}, deep=True)
            self._memories[stored.id] = stored
            ids.append(stored.id)
        return stored.model_copy(deep=True)

    async def get_memory(self, memory_id: str) -> Memory | None:
        memory = self._memories.get(memory_id)
        return memory.model_copy(deep=True) if memory else None

    async def get_memories(self, memory_ids: Sequence[str]) -> list[Memory]:
        return [
            self._memories[mid].model_copy(deep=True)
            for mid in memory_ids
            if mid in self._memories
        ]

    async def set_memory_arc(self, memory_id: str, arc_id: str) -> None:
        async with self._lock:
            memory = self._memories.get(memory_id)
            if memory is not None:
                self._memories[memory_id] = memory.model_copy(update={"arc_id": arc_id})

    async def count_memories(self, owner_id: str) -> int:
        return len(self._owner_memories.get(owner_id, []))

    async def list_memories(
        self,
        owner_id: str,
        *,
        since: datetime | None = None,
        after_id: str | None = None,
        limit: int | None = None,
        newest_first: bool = False,
    ) -> list[Memory]:
        memories = [self._memories[mid] for mid in self._owner_memories.get(owner_id, [])]
        if after_id is not None:
            anchor = self._memories.get(after_id)
            if anchor is not None:
                memories = [m for m in memories if m.sequence > anchor.sequence]
        if since is not None:
            memories = [m for m in memories if m.created_at >= since]
        if newest_first:
            memories = list(reversed(memories))
        if limit is not None:
            memories = memories[:limit]
        return [m.model_copy(deep=True) for m in memories]

    async def search_similar(
        self,
        owner_id: str,
        vector: Sequence[float],
        *,
        limit: int,
        min_similarity: float = 0.0,
    ) -> list[tuple[Memory, float]]:
        scored: list[tuple[Memory, float]] = []
        for mid in self._owner_memories.get(owner_id, []):
            memory = self._memories[mid]
            if memory.embedding is None:
                continue
            similarity = cosine_similarity(vector, memory.embedding)
            if similarity >= min_similarity:
                scored.append((memory.model_copy(deep=True), similarity))
        scored.sort(key=lambda item: item[1], reverse=True)
        return scored[:limit]

    # -- arcs --

    async def insert_arc(self, arc: Arc) -> None:
        async with self._lock:
            self._arcs[arc.id] = arc.model_copy(deep=True)

    async def update_arc(self, arc: Arc, *, expected_memory_count: int) -> bool:
        async with self._lock:
            current = self._arcs.get(arc.id)
            if current is None or current.memory_count != expected_memory_count:
                return False
            self._arcs[arc.id] = arc.model_copy(deep=True)
        return True

    async def get_arc(self, arc_id: str) -> Arc | None:
        arc = self._arcs.get(arc_id)
        return arc.model_copy(deep=True) if arc else None

    async def list_arcs(
        self, owner_id: str, *, active_since: datetime | None = None
    ) -> list[Arc]:
        arcs = [a for a in self._arcs.values() if a.owner_id == owner_id]
        if active_since is not None:
            arcs = [a for a in arcs if a.last_memory_at >= active_since]
        arcs.sort(key=lambda a: a.last_memory_at, reverse=True)
        return [a.model_copy(deep=True) for a in arcs]

    # -- pattern state --

    async def get_pattern_state(self, owner_id: str) -> PatternState | None:
        state = self._pattern_states.get(owner_id)
        return state.model_copy(deep=True) if state else None

    async def save_pattern_state(
        self, state: PatternState, *, expected_version: int | None
    ) -> bool:
        async with self._lock:
            current = self._pattern_states.get(state.owner_id)
            current_version = current.version if current else None
            if current_version != expected_version:
                return False
            self._pattern_states[state.owner_id] = state.model_copy(
                update={"version": (expected_version or 0) + 1}, deep=True
            )
        return True

    # -- snapshots --

    async def current_snapshot(self, owner_id: str) -> Snapshot | None:
        chain = self._snapshots.get(owner_id)
        return chain[-1].model_copy(deep=True) if chain else None

    async def append_snapshot(self, snapshot: Snapshot) -> bool:
        async with self._lock:
            chain = self._snapshots[snapshot.owner_id]
            head_id = chain[-1].id if chain else None
            if head_id != snapshot.previous_snapshot_id:
                return False
            chain.append(snapshot.model_copy(deep=True))
        return True

    async def list_snapshots(self, owner_id: str) -> list[Snapshot]:
        return [s.model_copy(deep=True) for s in self._snapshots.get(owner_id, [])]
