"""Async JSONL audit logger."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from pydantic import ValidationError

from gravitas.audit.schemas import AuditEvent
from gravitas.audit.schemas import AuditEventType
from gravitas.config import AuditConfig

logger = logging.getLogger(__name__)


class AuditLogger:
    """Append-only JSONL audit log.

    File I/O runs in a worker thread via ``asyncio.to_thread`` and is
    serialized by an ``asyncio.Lock``.
    """

    def __init__(self, config: AuditConfig | None = None) -> None:
        self.config = config or AuditConfig()
        self._lock = asyncio.Lock()

    async def record(
        self,
        event_type: AuditEventType,
        *,
        owner_id: str | None = None,
        **payload: object,
    ) -> None:
        """Build and append an event in one call."""
        await self.log(
            AuditEvent(event_type=event_type, owner_id=owner_id, payload=payload)
        )

    async def log(self, event: AuditEvent) -> None:
        """Append *event* as a single JSON line."""
        if not self.config.enabled:
            return
        line = event.model_dump_json() + "\n"
        async with self._lock:
            await asyncio.to_thread(self._append, Path(self.config.file_path), line)

    @staticmethod
    def _append(path: Path, line: str) -> None:
        with path.open("a", encoding="utf-8") as fh:
            fh.write(line)

    async def read_events(
        self,
        *,
        event_type: AuditEventType | None = None,
        owner_id: str | None = None,
        since: float | None = None,
    ) -> list[AuditEvent]:
        """Read events back, optionally filtered by type, owner and time."""
        path = Path(self.config.file_path)
        if not path.exists():
            return []

        async with self._lock:
            raw = await asyncio.to_thread(path.read_text, encoding="utf-8")

        events: list[AuditEvent] = []
        for line_no, line in enumerate(raw.splitlines(), start=1):
            if not line.strip():
                continue
            try:
                evt = AuditEvent.model_validate_json(line)
            except ValidationError:
                logger.warning("Skipping malformed audit line %d in %s", line_no, path)
                continue
            if event_type is not None and evt.event_type != event_type:
                continue
            if owner_id is not None and evt.owner_id != owner_id:
                continue
            if since is not None and evt.timestamp < since:
                continue
            events.append(evt)
        return events
