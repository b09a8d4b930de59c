"""End-to-end RAG pipeline: ingest a document, then answer prompts over it."""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
import structlog

from ragdemo import config
from ragdemo.cancellation import CancellationToken
from ragdemo.gateways import (
    EmbeddingGateway,
    LLMGateway,
    OllamaChatModel,
    OllamaEmbedder,
    VectorStoreGateway,
)
from ragdemo.llm_client import OllamaClient
from ragdemo.rag.chunker import TextChunker
from ragdemo.rag.context import assemble
from ragdemo.rag.generator import AnswerGenerator
from ragdemo.rag.ingest import IngestPipeline
from ragdemo.rag.retriever import RetrievalResult, Retriever
from ragdemo.rag.store_faiss import FAISSVectorStore

logger = structlog.get_logger()


@dataclass
class Answer:
    """An answer together with the chunks it was based on."""

    text: str
    sources: List[RetrievalResult] = field(default_factory=list)

    def sources_summary(self) -> List[Dict[str, Any]]:
        return [
            {
                "source": result.source,
                "content_preview": result.text[:200] + "..."
                if len(result.text) > 200
                else result.text,
                "relevance": round(result.score, 3),
            }
            for result in self.sources
        ]


class RagPipeline:
    """Wires chunking, storage, retrieval and generation together.

    Every step runs in sequence and the first error is raised unchanged.
    """

    def __init__(
        self,
        embedder: EmbeddingGateway,
        store: VectorStoreGateway,
        llm: LLMGateway,
        settings: Optional[config.Settings] = None,
        client: Optional[OllamaClient] = None,
    ):
        settings = settings or config.get_settings()
        self.settings = settings
        self.store = store
        self.client = client

        self.ingestor = IngestPipeline(
            embedder,
            store,
            chunker=TextChunker(settings.chunk_size, settings.chunk_overlap),
            concurrency=settings.embed_concurrency,
        )
        self.retriever = Retriever(
            embedder,
            store,
            top_k=settings.top_k,
            score_threshold=settings.score_threshold,
        )
        self.generator = AnswerGenerator(llm, strategy=settings.prompt_strategy)

    @classmethod
    def from_settings(cls, settings: Optional[config.Settings] = None) -> "RagPipeline":
        """Build a pipeline on Ollama and a FAISS store under settings.index_dir."""
        settings = settings or config.get_settings()
        client = OllamaClient(
            base_url=settings.ollama_base_url, timeout=settings.ollama_timeout
        )
        return cls(
            OllamaEmbedder(settings, client=client),
            FAISSVectorStore(settings=settings),
            OllamaChatModel(settings, client=client),
            settings=settings,
            client=client,
        )

    async def aclose(self) -> None:
        """Close the HTTP client shared by the Ollama gateways, if any."""
        if self.client is not None:
            await self.client.aclose()

    async def __aenter__(self) -> "RagPipeline":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def ingest(self, file_path: Path) -> Dict[str, Any]:
        return await self.ingestor.ingest_file(file_path)

    async def ask(
        self,
        prompt: str,
        top_k: Optional[int] = None,
        score_threshold: Optional[float] = None,
        temperature: Optional[float] = None,
        token: Optional[CancellationToken] = None,
        timeout: Optional[float] = None,
    ) -> Answer:
        """Retrieve context for ``prompt`` and generate an answer.

        Args:
            prompt: User prompt, also used as the retrieval query
            top_k: Maximum context chunks (default from settings)
            score_threshold: Minimum similarity (default from settings)
            temperature: Sampling temperature (default from settings)
            token: Optional cancellation token shared by both calls
            timeout: Optional deadline in seconds for each call

        Returns:
            Answer with the text and the chunks used as context
        """
        temperature = self.settings.temperature if temperature is None else temperature

        results = await self.retriever.retrieve(
            prompt,
            top_k=top_k,
            score_threshold=score_threshold,
            token=token,
            timeout=timeout,
        )
        if not results:
            logger.info("no_relevant_context_found")

        memory = assemble(results)
        text = await self.generator.generate(
            memory, prompt, temperature=temperature, token=token, timeout=timeout
        )

        logger.info(
            "answer_generated",
            sources=len(results),
            answer_length=len(text),
        )
        return Answer(text=text, sources=results)
