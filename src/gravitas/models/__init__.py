"""Models domain: stored artifacts and entry-point envelopes."""

from gravitas.models.envelopes import CascadeResult
from gravitas.models.envelopes import DispatchInput
from gravitas.models.envelopes import DispatchResult
from gravitas.models.envelopes import ErrorEnvelope
from gravitas.models.envelopes import FusionDecision
from gravitas.models.envelopes import PatternOptions
from gravitas.models.envelopes import PatternReport
from gravitas.models.envelopes import ResponseEnvelope
from gravitas.models.envelopes import SnapshotOptions
from gravitas.models.envelopes import SnapshotResult
from gravitas.models.schemas import Arc
from gravitas.models.schemas import Memory
from gravitas.models.schemas import MemoryType
from gravitas.models.schemas import Pattern
from gravitas.models.schemas import PatternState
from gravitas.models.schemas import PatternStatus
from gravitas.models.schemas import PatternType
from gravitas.models.schemas import Snapshot

__all__ = [
    "Arc",
    "CascadeResult",
    "DispatchInput",
    "DispatchResult",
    "ErrorEnvelope",
    "FusionDecision",
    "Memory",
    "MemoryType",
    "Pattern",
    "PatternOptions",
    "PatternReport",
    "PatternState",
    "PatternStatus",
    "PatternType",
    "ResponseEnvelope",
    "Snapshot",
    "SnapshotOptions",
    "SnapshotResult",
]
