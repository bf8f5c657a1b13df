"""Gateways domain: narrow contracts to embedding, LLM and storage services."""

from gravitas.gateways.embedding import build_embedding_gateway
from gravitas.gateways.embedding import EmbeddingGateway
from gravitas.gateways.embedding import HashingEmbeddingGateway
from gravitas.gateways.embedding import OpenAICompatibleEmbeddingGateway
from gravitas.gateways.llm import build_llm_gateway
from gravitas.gateways.llm import Completion
from gravitas.gateways.llm import LLMGateway
from gravitas.gateways.llm import NoopLLMGateway
from gravitas.gateways.llm import OpenAICompatibleLLMGateway
from gravitas.gateways.llm import TokenUsage
from gravitas.gateways.memory_store import InMemoryStore
from gravitas.gateways.redis_store import RedisStore
from gravitas.gateways.store import StoreGateway

__all__ = [
    "Completion",
    "EmbeddingGateway",
    "HashingEmbeddingGateway",
    "InMemoryStore",
    "LLMGateway",
    "NoopLLMGateway",
    "OpenAICompatibleEmbeddingGateway",
    "OpenAICompatibleLLMGateway",
    "RedisStore",
    "StoreGateway",
    "TokenUsage",
    "build_embedding_gateway",
    "build_llm_gateway",
]
