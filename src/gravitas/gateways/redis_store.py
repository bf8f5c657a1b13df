"""Redis-backed store gateway.

Records are JSON strings keyed by ``gravitas:{kind}:{id}``. Per-owner
sorted sets index memories by insertion sequence and by creation time,
and arcs by their last-member timestamp. Pattern state and the snapshot
head are updated under ``WATCH`` so that the conditional writes of
``StoreGateway`` hold across worker processes.
"""

from __future__ import annotations

from collections.abc import Iterator
from collections.abc import Sequence
from contextlib import contextmanager
from datetime import datetime

from redis.asyncio import Redis  # type: ignore[import-untyped]
from redis.exceptions import RedisError  # type: ignore[import-untyped]
from redis.exceptions import WatchError  # type: ignore[import-untyped]

from gravitas.errors import StoreError
from gravitas.models.schemas import Arc
from gravitas.models.schemas import Memory
from gravitas.models.schemas import PatternState
from gravitas.models.schemas import Snapshot
from gravitas.vectors import cosine_similarity

# ---------------------------------------------------------------------------
# Key layout
# ---------------------------------------------------------------------------

_PREFIX = "gravitas"
_MEMORY_KEY = f"{_PREFIX}:memory"
_ARC_KEY = f"{_PREFIX}:arc"
_SNAPSHOT_KEY = f"{_PREFIX}:snapshot"
_OWNER_KEY = f"{_PREFIX}:owner"

_CLEAR_BATCH_SIZE = 100


def _owner(owner_id: str, suffix: str) -> str:
    return f"{_OWNER_KEY}:{owner_id}:{suffix}"


def _decode(raw: bytes | str) -> str:
    return raw.decode() if isinstance(raw, bytes) else raw


@contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except WatchError:
        raise
    except RedisError as exc:
        raise StoreError(f"redis {operation} failed: {exc}") from exc


class RedisStore:
    """``StoreGateway`` implementation on top of ``redis.asyncio``."""

    def __init__(self, redis: Redis) -> None:
        self._redis = redis

    @classmethod
    def from_url(cls, url: str) -> RedisStore:
        return cls(Redis.from_url(url))

    async def close(self) -> None:
        await self._redis.aclose()

    # -- memories --

    async def insert_memory(self, memory: Memory) -> Memory:
        with _store_errors("insert_memory"):
            sequence = await self._redis.incr(_owner(memory.owner_id, "seq"))
            stored = memory.model_copy(update={"sequence": int(sequence)})
            pipe = self._redis.pipeline()
            pipe.set(f"{_MEMORY_KEY}:{stored.id}", stored.model_dump_json())
            pipe.zadd(_owner(stored.owner_id, "memories"), {stored.id: stored.sequence})
            pipe.zadd(
                _owner(stored.owner_id, "timeline"),
                {stored.id: stored.created_at.timestamp()},
            )
            await pipe.execute()
        return stored

    async def get_memory(self, memory_id: str) -> Memory | None:
        with _store_errors("get_memory"):
            data = await self._redis.get(f"{_MEMORY_KEY}:{memory_id}")
        return Memory.model_validate_json(data) if data is not None else None

    async def get_memories(self, memory_ids: Sequence[str]) -> list[Memory]:
        if not memory_ids:
            return []
        with _store_errors("get_memories"):
            pipe = self._redis.pipeline()
            for mid in memory_ids:
                pipe.get(f"{_MEMORY_KEY}:{mid}")
            raw_results = await pipe.execute()
        return [Memory.model_validate_json(raw) for raw in raw_results if raw is not None]

    async def set_memory_arc(self, memory_id: str, arc_id: str) -> None:
        memory = await self.get_memory(memory_id)
        if memory is None:
            return
        with _store_errors("set_memory_arc"):
            await self._redis.set(
                f"{_MEMORY_KEY}:{memory_id}",
                memory.model_copy(update={"arc_id": arc_id}).model_dump_json(),
            )

    async def count_memories(self, owner_id: str) -> int:
        with _store_errors("count_memories"):
            return int(await self._redis.zcard(_owner(owner_id, "memories")))

    async def list_memories(
        self,
        owner_id: str,
        *,
        since: datetime | None = None,
        after_id: str | None = None,
        limit: int | None = None,
        newest_first: bool = False,
    ) -> list[Memory]:
        by_sequence = _owner(owner_id, "memories")
        with _store_errors("list_memories"):
            low: str | float = "-inf"
            if after_id is not None:
                anchor = await self._redis.zscore(by_sequence, after_id)
                if anchor is not None:
                    low = f"({int(anchor)}"
            ids = [_decode(r) for r in await self._redis.zrangebyscore(by_sequence, low, "+inf")]
            if since is not None:
                recent = await self._redis.zrangebyscore(
                    _owner(owner_id, "timeline"), since.timestamp(), "+inf"
                )
                allowed = {_decode(r) for r in recent}
                ids = [mid for mid in ids if mid in allowed]
        if newest_first:
            ids.reverse()
        if limit is not None:
            ids = ids[:limit]
        return await self.get_memories(ids)

    async def search_similar(
        self,
        owner_id: str,
        vector: Sequence[float],
        *,
        limit: int,
        min_similarity: float = 0.0,
    ) -> list[tuple[Memory, float]]:
        scored: list[tuple[Memory, float]] = []
        for memory in await self.list_memories(owner_id):
            if memory.embedding is None:
                continue
            similarity = cosine_similarity(vector, memory.embedding)
            if similarity >= min_similarity:
                scored.append((memory, similarity))
        scored.sort(key=lambda item: item[1], reverse=True)
        return scored[:limit]

    # -- arcs --

    async def insert_arc(self, arc: Arc) -> None:
        with _store_errors("insert_arc"):
            pipe = self._redis.pipeline()
            pipe.set(f"{_ARC_KEY}:{arc.id}", arc.model_dump_json())
            pipe.zadd(_owner(arc.owner_id, "arcs"), {arc.id: arc.last_memory_at.timestamp()})
            await pipe.execute()

    async def update_arc(self, arc: Arc, *, expected_memory_count: int) -> bool:
        key = f"{_ARC_KEY}:{arc.id}"
        with _store_errors("update_arc"):
            async with self._redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    if (
                        raw is None
                        or Arc.model_validate_json(raw).memory_count != expected_memory_count
                    ):
                        await pipe.unwatch()
                        return False
                    pipe.multi()
                    pipe.set(key, arc.model_dump_json())
                    pipe.zadd(
                        _owner(arc.owner_id, "arcs"), {arc.id: arc.last_memory_at.timestamp()}
                    )
                    await pipe.execute()
                except WatchError:
                    return False
        return True

    async def get_arc(self, arc_id: str) -> Arc | None:
        with _store_errors("get_arc"):
            data = await self._redis.get(f"{_ARC_KEY}:{arc_id}")
        return Arc.model_validate_json(data) if data is not None else None

    async def list_arcs(
        self, owner_id: str, *, active_since: datetime | None = None
    ) -> list[Arc]:
        low = active_since.timestamp() if active_since is not None else "-inf"
        with _store_errors("list_arcs"):
            ids = await self._redis.zrevrangebyscore(_owner(owner_id, "arcs"), "+inf", low)
            if not ids:
                return []
            pipe = self._redis.pipeline()
            for raw_id in ids:
                pipe.get(f"{_ARC_KEY}:{_decode(raw_id)}")
            raw_results = await pipe.execute()
        return [Arc.model_validate_json(raw) for raw in raw_results if raw is not None]

    # -- pattern state --

    async def get_pattern_state(self, owner_id: str) -> PatternState | None:
        with _store_errors("get_pattern_state"):
            data = await self._redis.get(_owner(owner_id, "pattern_state"))
        return PatternState.model_validate_json(data) if data is not None else None

    async def save_pattern_state(
        self, state: PatternState, *, expected_version: int | None
    ) -> bool:
        key = _owner(state.owner_id, "pattern_state")
        new_state = state.model_copy(update={"version": (expected_version or 0) + 1})
        with _store_errors("save_pattern_state"):
            async with self._redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    raw = await pipe.get(key)
                    current = (
                        PatternState.model_validate_json(raw).version
                        if raw is not None
                        else None
                    )
                    if current != expected_version:
                        await pipe.unwatch()
                        return False
                    pipe.multi()
                    pipe.set(key, new_state.model_dump_json())
                    await pipe.execute()
                except WatchError:
                    return False
        return True

    # -- snapshots --

    async def current_snapshot(self, owner_id: str) -> Snapshot | None:
        with _store_errors("current_snapshot"):
            head = await self._redis.get(_owner(owner_id, "snapshot_head"))
            if head is None:
                return None
            data = await self._redis.get(f"{_SNAPSHOT_KEY}:{_decode(head)}")
        return Snapshot.model_validate_json(data) if data is not None else None

    async def append_snapshot(self, snapshot: Snapshot) -> bool:
        head_key = _owner(snapshot.owner_id, "snapshot_head")
        with _store_errors("append_snapshot"):
            async with self._redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(head_key)
                    raw_head = await pipe.get(head_key)
                    head = _decode(raw_head) if raw_head is not None else None
                    if head != snapshot.previous_snapshot_id:
                        await pipe.unwatch()
                        return False
                    pipe.multi()
                    pipe.set(f"{_SNAPSHOT_KEY}:{snapshot.id}", snapshot.model_dump_json())
                    pipe.rpush(_owner(snapshot.owner_id, "snapshots"), snapshot.id)
                    pipe.set(head_key, snapshot.id)
                    await pipe.execute()
                except WatchError:
                    return False
        return True

    async def list_snapshots(self, owner_id: str) -> list[Snapshot]:
        with _store_errors("list_snapshots"):
            ids = await self._redis.lrange(_owner(owner_id, "snapshots"), 0, -1)
            if not ids:
                return []
            pipe = self._redis.pipeline()
            for raw_id in ids:
                pipe.get(f"{_SNAPSHOT_KEY}:{_decode(raw_id)}")
            raw_results = await pipe.execute()
        return [Snapshot.model_validate_json(raw) for raw in raw_results if raw is not None]

    # -- maintenance --

    async def clear(self) -> None:
        """Remove every ``gravitas:*`` key in batches."""
        batch: list = []
        async for key in self._redis.scan_iter(match=f"{_PREFIX}:*"):
            batch.append(key)
            if len(batch) >= _CLEAR_BATCH_SIZE:
                await self._redis.delete(*batch)
                batch.clear()
        if batch:
            await self._redis.delete(*batch)
