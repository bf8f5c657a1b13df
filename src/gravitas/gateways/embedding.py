"""Embedding gateway protocol and concrete adapters.

``embed`` never raises: oversized input is truncated and provider
failures are logged and reported as ``None`` so that ingestion can
store the memory without a vector.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import re
from typing import Protocol
from typing import runtime_checkable

import numpy as np

from gravitas.config import EmbeddingConfig
from gravitas.errors import EmbeddingError
from gravitas.gateways.http import post_json

logger = logging.getLogger(__name__)

MAX_EMBEDDING_CHARS = 8000


@runtime_checkable
class EmbeddingGateway(Protocol):
    """Turns text into a fixed-length dense vector."""

    async def embed(self, text: str) -> list[float] | None: ...


def truncate_for_embedding(text: str, limit: int = MAX_EMBEDDING_CHARS) -> str:
    return text if len(text) <= limit else text[:limit]


class HashingEmbeddingGateway:
    """Deterministic local embedder using signed token hashing."""

    _TOKEN_RE = re.compile(r"[a-z0-9_]+")

    def __init__(self, dims: int = 256, *, max_chars: int = MAX_EMBEDDING_CHARS) -> None:
        self.dims = max(32, int(dims))
        self._max_chars = max_chars

    def encode(self, text: str) -> np.ndarray:
        tokens = self._TOKEN_RE.findall(truncate_for_embedding(text, self._max_chars).lower())
        vec = np.zeros((self.dims,), dtype=np.float64)
        if not tokens:
            return vec
        bigrams = [f"{a}_{b}" for a, b in zip(tokens, tokens[1:])]
        for feat in tokens + bigrams:
            digest = hashlib.blake2b(feat.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little") % self.dims
            vec[idx] += 1.0 if digest[4] & 1 == 0 else -1.0
        norm = float(np.linalg.norm(vec))
        if norm > 0.0:
            vec /= norm
        return vec

    async def embed(self, text: str) -> list[float] | None:
        vec = self.encode(text)
        if not vec.any():
            return None
        return vec.tolist()


class OpenAICompatibleEmbeddingGateway:
    """OpenAI-compatible ``/embeddings`` adapter."""

    def __init__(
        self,
        *,
        model: str,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        timeout_seconds: float = 15.0,
        max_chars: int = MAX_EMBEDDING_CHARS,
    ) -> None:
        self._model = model
        self._api_key = api_key
        self._url = f"{base_url.rstrip('/')}/embeddings"
        self._timeout = timeout_seconds
        self._max_chars = max_chars

    async def embed(self, text: str) -> list[float] | None:
        if not text.strip():
            return None
        body = {"model": self._model, "input": truncate_for_embedding(text, self._max_chars)}
        try:
            data = await asyncio.to_thread(
                post_json,
                self._url,
                body,
                api_key=self._api_key,
                timeout=self._timeout,
                error=EmbeddingError,
            )
            return [float(v) for v in data["data"][0]["embedding"]]
        except EmbeddingError as exc:
            logger.warning("Embedding unavailable, storing without vector: %s", exc)
        except (KeyError, IndexError, TypeError, ValueError):
            logger.warning("Embedding response missing data[0].embedding; storing without vector")
        return None


def build_embedding_gateway(config: EmbeddingConfig) -> EmbeddingGateway:
    """Create a concrete embedding gateway from ``EmbeddingConfig``."""
    provider = config.provider.strip().lower()
    if provider == "openai":
        if not config.api_key:
            raise ValueError("embedding_config.api_key is required when provider='openai'")
        return OpenAICompatibleEmbeddingGateway(
            model=config.model,
            api_key=config.api_key,
            base_url=config.base_url,
            timeout_seconds=config.timeout_seconds,
        )
    if provider in {"hash", "hashing"}:
        return HashingEmbeddingGateway(config.dimensions)
    raise ValueError(
        f"Unsupported embedding_config.provider '{config.provider}'. "
        "Supported providers: openai, hashing."
    )
