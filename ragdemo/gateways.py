"""Interfaces to the external collaborators and their Ollama bindings.

The core only depends on the three protocols below. ``OllamaEmbedder`` and
``OllamaChatModel`` satisfy the embedding and language-model contracts over
the Ollama HTTP API; the FAISS store in ``ragdemo.rag.store_faiss`` satisfies
the vector store contract.
"""
from typing import Any, Dict, List, Optional, Protocol, Sequence, TYPE_CHECKING

import httpx
import structlog

from ragdemo import config
from ragdemo.errors import EmbeddingUnavailable, LLMUnavailable
from ragdemo.llm_client import OllamaClient

if TYPE_CHECKING:
    from ragdemo.rag.retriever import RetrievalResult

logger = structlog.get_logger()


class EmbeddingGateway(Protocol):
    async def embed(self, text: str) -> List[float]:
        """Embed text; raises EmbeddingUnavailable on failure."""
        ...


class VectorStoreGateway(Protocol):
    async def insert(self, records: Sequence[Dict[str, Any]]) -> List[str]:
        """Persist ``{vector, text, metadata}`` records; raises StoreUnavailable."""
        ...

    async def query(self, vector: List[float], limit: int) -> List["RetrievalResult"]:
        """Nearest neighbours by descending score; raises StoreUnavailable."""
        ...


class LLMGateway(Protocol):
    async def complete(self, messages: List[Dict[str, str]], temperature: float) -> str:
        """Run a chat completion; raises LLMUnavailable on failure."""
        ...


class OllamaEmbedder:
    """Embedding gateway backed by Ollama's /api/embeddings endpoint."""

    def __init__(
        self,
        settings: Optional[config.Settings] = None,
        client: Optional[OllamaClient] = None,
    ):
        settings = settings or config.get_settings()
        self.model = settings.embedding_model
        self.client = client or OllamaClient(
            base_url=settings.ollama_base_url, timeout=settings.ollama_timeout
        )

    async def embed(self, text: str) -> List[float]:
        try:
            return await self.client.embed(text, model=self.model)
        except (httpx.HTTPError, ValueError) as e:
            logger.error("embedding_failed", model=self.model, error=str(e))
            raise EmbeddingUnavailable(f"Embedding request failed: {e}") from e


class OllamaChatModel:
    """LLM gateway backed by Ollama's /api/chat endpoint."""

    def __init__(
        self,
        settings: Optional[config.Settings] = None,
        client: Optional[OllamaClient] = None,
        model: str = None,
    ):
        settings = settings or config.get_settings()
        self.model = model or settings.chat_model
        self.client = client or OllamaClient(
            base_url=settings.ollama_base_url, timeout=settings.ollama_timeout
        )

    async def complete(self, messages: List[Dict[str, str]], temperature: float) -> str:
        try:
            return await self.client.chat(messages, model=self.model, temperature=temperature)
        except (httpx.HTTPError, ValueError) as e:
            logger.error("chat_failed", model=self.model, error=str(e))
            raise LLMUnavailable(f"Chat request failed: {e}") from e
