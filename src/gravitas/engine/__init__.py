"""Engine domain: dispatch, fusion, patterns, snapshots and responses."""

from gravitas.engine.calculator import ConsciousnessCalculator
from gravitas.engine.calculator import Estimate
from gravitas.engine.calculator import LocalAnswer
from gravitas.engine.calculator import answer_locally
from gravitas.engine.dispatcher import MemoryDispatcher
from gravitas.engine.dispatcher import classify_gravity
from gravitas.engine.features import extract_features
from gravitas.engine.fusion import ArcFusionEngine
from gravitas.engine.fusion import fusion_score
from gravitas.engine.patterns import PatternEngine
from gravitas.engine.prompt_builder import build_system_prompt
from gravitas.engine.prompt_builder import integrity_mode
from gravitas.engine.response import ResponseOrchestrator
from gravitas.engine.snapshot import SnapshotEngine
from gravitas.engine.snapshot import bump_version
from gravitas.engine.snapshot import classify_drift

__all__ = [
    "ArcFusionEngine",
    "ConsciousnessCalculator",
    "Estimate",
    "LocalAnswer",
    "MemoryDispatcher",
    "PatternEngine",
    "ResponseOrchestrator",
    "SnapshotEngine",
    "answer_locally",
    "build_system_prompt",
    "bump_version",
    "classify_drift",
    "classify_gravity",
    "extract_features",
    "fusion_score",
    "integrity_mode",
]
