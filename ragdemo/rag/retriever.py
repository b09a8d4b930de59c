"""Retriever for semantic search over stored chunks.

Handles:
- Query embedding generation
- Nearest-neighbour search against the vector store
- Score threshold filtering and top-k truncation
"""
from typing import List, Dict, Any, Optional
from dataclasses import dataclass, field
import structlog

from ragdemo import config
from ragdemo.cancellation import CancellationToken, run_cancellable
from ragdemo.errors import (
    EmbeddingUnavailable,
    InvalidConfig,
    RetrievalUnavailable,
    StoreUnavailable,
)
from ragdemo.gateways import EmbeddingGateway, VectorStoreGateway

logger = structlog.get_logger()


@dataclass
class RetrievalResult:
    """A single retrieved chunk with its similarity score."""

    text: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def source(self) -> str:
        """Get a formatted source string for display."""
        source = self.metadata.get("source", "")
        index = self.metadata.get("sequence_index")
        if source and index is not None:
            return f"{source} #{index}"
        return source


def _validate(top_k: int, score_threshold: float) -> None:
    if not isinstance(top_k, int) or top_k <= 0:
        raise InvalidConfig(f"top_k must be a positive integer, got {top_k!r}")
    if not 0.0 <= score_threshold <= 1.0:
        raise InvalidConfig(f"score_threshold must be within [0, 1], got {score_threshold!r}")


class Retriever:
    """Semantic retriever with a score threshold and a result cap."""

    def __init__(
        self,
        embedder: EmbeddingGateway,
        store: VectorStoreGateway,
        top_k: int = None,
        score_threshold: float = None,
    ):
        """Initialize the retriever.

        Args:
            embedder: Embedding gateway used for queries
            store: Vector store gateway to search
            top_k: Default number of results (default from config)
            score_threshold: Default minimum score (default from config)
        """
        self.embedder = embedder
        self.store = store
        self.top_k = config.RETRIEVAL_TOP_K if top_k is None else top_k
        self.score_threshold = (
            config.SCORE_THRESHOLD if score_threshold is None else score_threshold
        )
        _validate(self.top_k, self.score_threshold)

        logger.info(
            "retriever_initialized",
            top_k=self.top_k,
            score_threshold=self.score_threshold,
        )

    async def _search(self, query: str, limit: int) -> List[RetrievalResult]:
        query_embedding = await self.embedder.embed(query)
        logger.debug("query_embedded", dimension=len(query_embedding))
        return await self.store.query(query_embedding, limit)

    async def retrieve(
        self,
        query: str,
        top_k: Optional[int] = None,
        score_threshold: Optional[float] = None,
        token: Optional[CancellationToken] = None,
        timeout: Optional[float] = None,
    ) -> List[RetrievalResult]:
        """Retrieve relevant chunks for a query.

        Args:
            query: User query text
            top_k: Maximum number of results (overrides default)
            score_threshold: Minimum score to keep a result (overrides default)
            token: Optional cancellation token
            timeout: Optional deadline in seconds

        Returns:
            List of RetrievalResult objects, best first. Equal scores keep
            the store's order.

        Raises:
            InvalidConfig: If top_k or score_threshold is out of range
            RetrievalUnavailable: If the embedding call or store query fails
            Cancelled: If the token fired or the deadline passed
        """
        top_k = self.top_k if top_k is None else top_k
        score_threshold = self.score_threshold if score_threshold is None else score_threshold
        _validate(top_k, score_threshold)

        if not query or not query.strip():
            logger.warning("empty_query_provided")
            return []

        logger.info(
            "retrieval_started",
            query_length=len(query),
            top_k=top_k,
            score_threshold=score_threshold,
        )

        try:
            candidates = await run_cancellable(
                self._search(query, top_k), token, timeout, operation="retrieval"
            )
        except EmbeddingUnavailable as e:
            logger.error("retrieval_failed", stage="embedding", error=str(e))
            raise RetrievalUnavailable(f"Query embedding failed: {e}") from e
        except StoreUnavailable as e:
            logger.error("retrieval_failed", stage="store_query", error=str(e))
            raise RetrievalUnavailable(f"Vector store query failed: {e}") from e

        results = [c for c in candidates if c.score >= score_threshold]
        results.sort(key=lambda r: r.score, reverse=True)
        results = results[:top_k]

        logger.info(
            "retrieval_completed",
            candidates_found=len(candidates),
            results_returned=len(results),
            top_score=results[0].score if results else None,
        )

        return results
