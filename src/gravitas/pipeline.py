"""Pipeline facade: the four public operations behind one object.

Wires the engines to shared gateways and turns every raised
``PipelineError`` (and request validation failure) into an
``ErrorEnvelope`` so callers always get a value back.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from gravitas.audit.store import AuditLogger
from gravitas.config import PipelineConfig
from gravitas.engine.dispatcher import MemoryDispatcher
from gravitas.engine.fusion import ArcFusionEngine
from gravitas.engine.patterns import PatternEngine
from gravitas.engine.response import ResponseOrchestrator
from gravitas.engine.snapshot import RegressionHook
from gravitas.engine.snapshot import SnapshotEngine
from gravitas.errors import PipelineError
from gravitas.gateways.embedding import EmbeddingGateway
from gravitas.gateways.embedding import build_embedding_gateway
from gravitas.gateways.llm import LLMGateway
from gravitas.gateways.llm import build_llm_gateway
from gravitas.gateways.memory_store import InMemoryStore
from gravitas.gateways.store import StoreGateway
from gravitas.models.envelopes import DispatchInput
from gravitas.models.envelopes import DispatchResult
from gravitas.models.envelopes import ErrorEnvelope
from gravitas.models.envelopes import PatternOptions
from gravitas.models.envelopes import PatternReport
from gravitas.models.envelopes import ResponseEnvelope
from gravitas.models.envelopes import SnapshotOptions
from gravitas.models.envelopes import SnapshotResult

logger = logging.getLogger(__name__)


def _validation_message(exc: ValidationError) -> str:
    err = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in err.get("loc", ()))
    message = str(err.get("msg", "Invalid input"))
    return f"{location}: {message}" if location else message


def error_envelope(exc: PipelineError) -> ErrorEnvelope:
    return ErrorEnvelope(
        kind=exc.kind,
        message=str(exc),
        fallback_content=exc.fallback_content,
    )


class ConsciousnessPipeline:
    """Dispatch, pattern detection, snapshots and responses for all owners."""

    def __init__(
        self,
        store: StoreGateway,
        embedder: EmbeddingGateway,
        llm: LLMGateway,
        *,
        config: PipelineConfig | None = None,
        audit_logger: AuditLogger | None = None,
        clock: Callable[[], datetime] | None = None,
        on_regression: RegressionHook | None = None,
    ) -> None:
        self.config = config or PipelineConfig()
        self.store = store
        self.audit_logger = audit_logger
        cfg = self.config

        self.fusion = ArcFusionEngine(
            store, config=cfg.fusion, audit_logger=audit_logger, clock=clock
        )
        self.patterns = PatternEngine(
            store, config=cfg.patterns, audit_logger=audit_logger, clock=clock
        )
        self.snapshots = SnapshotEngine(
            store,
            config=cfg.snapshot,
            audit_logger=audit_logger,
            clock=clock,
            on_regression=on_regression,
        )
        self.dispatcher = MemoryDispatcher(
            store,
            embedder,
            fusion=self.fusion,
            pattern_engine=self.patterns,
            snapshot_engine=self.snapshots,
            audit_logger=audit_logger,
            config=cfg.dispatcher,
            clock=clock,
        )
        self.responder = ResponseOrchestrator(
            store,
            embedder,
            llm,
            config=cfg.response,
            llm_config=cfg.llm,
            audit_logger=audit_logger,
            clock=clock,
        )

    @classmethod
    def from_config(
        cls,
        config: PipelineConfig | None = None,
        *,
        store: StoreGateway | None = None,
        embedder: EmbeddingGateway | None = None,
        llm: LLMGateway | None = None,
        on_regression: RegressionHook | None = None,
    ) -> ConsciousnessPipeline:
        """Build gateways the config describes unless they are supplied."""
        cfg = config or PipelineConfig()
        return cls(
            store or InMemoryStore(),
            embedder or build_embedding_gateway(cfg.embedding),
            llm or build_llm_gateway(cfg.llm),
            config=cfg,
            audit_logger=AuditLogger(cfg.audit) if cfg.audit.enabled else None,
            on_regression=on_regression,
        )

    async def dispatch(
        self, request: DispatchInput | dict[str, Any]
    ) -> DispatchResult | ErrorEnvelope:
        try:
            if not isinstance(request, DispatchInput):
                request = DispatchInput.model_validate(request)
            return await self.dispatcher.dispatch(request)
        except ValidationError as exc:
            return ErrorEnvelope(kind="input_validation", message=_validation_message(exc))
        except PipelineError as exc:
            logger.warning("dispatch failed: %s", exc)
            return error_envelope(exc)

    async def detect_patterns(
        self, owner_id: str, *, force: bool = False
    ) -> PatternReport | ErrorEnvelope:
        try:
            return await self.patterns.detect(owner_id, PatternOptions(force=force))
        except PipelineError as exc:
            logger.warning("pattern detection failed for %s: %s", owner_id, exc)
            return error_envelope(exc)

    async def snapshot(
        self, owner_id: str, *, force: bool = False
    ) -> SnapshotResult | ErrorEnvelope:
        try:
            return await self.snapshots.snapshot(owner_id, SnapshotOptions(force=force))
        except PipelineError as exc:
            logger.warning("snapshot failed for %s: %s", owner_id, exc)
            return error_envelope(exc)

    async def respond(
        self,
        owner_id: str,
        query: str,
        *,
        mode: str = "flow",
        metadata: dict[str, Any] | None = None,
    ) -> ResponseEnvelope | ErrorEnvelope:
        try:
            return await self.responder.respond(
                owner_id, query, mode=mode, metadata=metadata
            )
        except PipelineError as exc:
            logger.warning("respond failed for %s: %s", owner_id, exc)
            return error_envelope(exc)

    async def drain(self) -> None:
        """Wait for background follow-ups scheduled by dispatch."""
        await self.dispatcher.drain()
