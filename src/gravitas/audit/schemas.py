"""Audit event types and data models."""

from __future__ import annotations

import time
from enum import Enum
from typing import Any

from pydantic import BaseModel
from pydantic import Field


class AuditEventType(str, Enum):
    """Pipeline events worth a durable trail."""

    MEMORY_DISPATCHED = "MEMORY_DISPATCHED"
    CASCADE_FAILED = "CASCADE_FAILED"
    ARC_CREATED = "ARC_CREATED"
    ARC_MERGED = "ARC_MERGED"
    PATTERN_RUN = "PATTERN_RUN"
    SNAPSHOT_CREATED = "SNAPSHOT_CREATED"
    SNAPSHOT_SKIPPED = "SNAPSHOT_SKIPPED"
    REGRESSION_DETECTED = "REGRESSION_DETECTED"
    RESPONSE_GENERATED = "RESPONSE_GENERATED"


class AuditEvent(BaseModel):
    """A single immutable audit log entry."""

    model_config = {"frozen": True}

    timestamp: float = Field(
        default_factory=time.time,
        description="Unix epoch when the event occurred.",
    )
    event_type: AuditEventType = Field(
        description="Category of the audited action.",
    )
    owner_id: str | None = Field(
        default=None,
        description="Owner whose data the event concerns.",
    )
    payload: dict[str, Any] = Field(
        default_factory=dict,
        description="Event-specific data.",
    )
