"""Store gateway protocol.

Typed access to the four owner-scoped collections (memories, arcs,
pattern state, snapshots). Two writes are conditional:

* ``save_pattern_state`` succeeds only when the stored version equals
  ``expected_version`` (``None`` means "no row yet").
* ``append_snapshot`` succeeds only when the owner's current head is
  the new snapshot's ``previous_snapshot_id``.

Both return ``False`` instead of raising when the condition fails.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Protocol
from typing import runtime_checkable

from gravitas.models.schemas import Arc
from gravitas.models.schemas import Memory
from gravitas.models.schemas import PatternState
from gravitas.models.schemas import Snapshot


@runtime_checkable
class StoreGateway(Protocol):
    # -- memories --

    async def insert_memory(self, memory: Memory) -> Memory:
        """Persist *memory* and return it with its ``sequence`` assigned."""
        ...

    async def get_memory(self, memory_id: str) -> Memory | None: ...

    async def get_memories(self, memory_ids: Sequence[str]) -> list[Memory]: ...

    async def set_memory_arc(self, memory_id: str, arc_id: str) -> None: ...

    async def count_memories(self, owner_id: str) -> int: ...

    async def list_memories(
        self,
        owner_id: str,
        *,
        since: datetime | None = None,
        after_id: str | None = None,
        limit: int | None = None,
        newest_first: bool = False,
    ) -> list[Memory]: ...

    async def search_similar(
        self,
        owner_id: str,
        vector: Sequence[float],
        *,
        limit: int,
        min_similarity: float = 0.0,
    ) -> list[tuple[Memory, float]]: ...

    # -- arcs --

    async def insert_arc(self, arc: Arc) -> None: ...

    async def update_arc(self, arc: Arc, *, expected_memory_count: int) -> bool: ...

    async def get_arc(self, arc_id: str) -> Arc | None: ...

    async def list_arcs(
        self, owner_id: str, *, active_since: datetime | None = None
    ) -> list[Arc]: ...

    # -- pattern state --

    async def get_pattern_state(self, owner_id: str) -> PatternState | None: ...

    async def save_pattern_state(
        self, state: PatternState, *, expected_version: int | None
    ) -> bool: ...

    # -- snapshots --

    async def current_snapshot(self, owner_id: str) -> Snapshot | None: ...

    async def append_snapshot(self, snapshot: Snapshot) -> bool: ...

    async def list_snapshots(self, owner_id: str) -> list[Snapshot]: ...
