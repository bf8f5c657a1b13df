"""Audit subsystem: async JSONL event logging."""

from gravitas.audit.schemas import AuditEvent
from gravitas.audit.schemas import AuditEventType
from gravitas.audit.store import AuditLogger

__all__ = [
    "AuditEvent",
    "AuditEventType",
    "AuditLogger",
]
