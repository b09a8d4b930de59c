"""Ingest pipeline for indexing a text document.

Orchestrates:
- Text chunking
- Concurrent embedding generation
- Vector and record storage
"""
from pathlib import Path
from typing import List, Dict, Any, Optional, Sequence
import asyncio
import structlog

from ragdemo import config
from ragdemo.errors import InvalidConfig
from ragdemo.gateways import EmbeddingGateway, VectorStoreGateway
from ragdemo.rag.chunker import Chunk, TextChunker

logger = structlog.get_logger()


class IngestPipeline:
    """Pipeline for chunking, embedding and storing one document."""

    def __init__(
        self,
        embedder: EmbeddingGateway,
        store: VectorStoreGateway,
        chunker: Optional[TextChunker] = None,
        concurrency: int = None,
    ):
        """Initialize the ingest pipeline.

        Args:
            embedder: Embedding gateway for chunk texts
            store: Vector store receiving the records
            chunker: Text chunker (default: sizes from config)
            concurrency: Maximum embedding requests in flight (default from config)
        """
        self.embedder = embedder
        self.store = store
        self.chunker = chunker or TextChunker()
        self.concurrency = concurrency or config.EMBED_CONCURRENCY

        self.stats = self._empty_stats()

        logger.info(
            "ingest_pipeline_initialized",
            chunk_size=self.chunker.chunk_size,
            chunk_overlap=self.chunker.chunk_overlap,
            concurrency=self.concurrency,
        )

    @staticmethod
    def _empty_stats() -> Dict[str, int]:
        return {
            "documents_processed": 0,
            "chunks_created": 0,
            "embeddings_generated": 0,
            "records_stored": 0,
        }

    async def generate_embeddings(self, texts: Sequence[str]) -> List[List[float]]:
        """Embed texts concurrently, keeping input order.

        Args:
            texts: Texts to embed

        Returns:
            One embedding per text

        Raises:
            EmbeddingUnavailable: On the first failed embedding; requests
                still in flight are cancelled
        """
        if not texts:
            return []

        semaphore = asyncio.Semaphore(self.concurrency)

        async def embed_one(text: str) -> List[float]:
            async with semaphore:
                embedding = await self.embedder.embed(text)
            self.stats["embeddings_generated"] += 1
            return embedding

        tasks = [asyncio.ensure_future(embed_one(text)) for text in texts]
        try:
            embeddings = await asyncio.gather(*tasks)
        except Exception as e:
            for task in tasks:
                task.cancel()
            logger.error("embedding_generation_failed", error=str(e), texts=len(texts))
            raise

        logger.debug("embeddings_generated", count=len(embeddings))
        return list(embeddings)

    async def store_chunks(self, chunks: Sequence[Chunk], source: str = "") -> List[str]:
        """Embed chunks and insert them into the store.

        Args:
            chunks: Chunks to store
            source: Source label recorded in each record's metadata

        Returns:
            Record ids in chunk order
        """
        if not chunks:
            return []

        embeddings = await self.generate_embeddings([chunk.text for chunk in chunks])

        records = [
            {
                "vector": embedding,
                "text": chunk.text,
                "metadata": {
                    "source": source,
                    "sequence_index": chunk.sequence_index,
                    "source_offset": chunk.source_offset,
                },
            }
            for chunk, embedding in zip(chunks, embeddings)
        ]

        ids = await self.store.insert(records)
        self.stats["records_stored"] += len(ids)
        return ids

    async def ingest_text(self, text: str, source: str = "") -> Dict[str, Any]:
        """Chunk, embed and store a document's text.

        Args:
            text: Document text
            source: Source label for the chunks

        Returns:
            Dictionary with ingestion results
        """
        logger.info("ingesting_text", source=source, text_length=len(text))

        chunks = self.chunker.chunk_text(text)

        if not chunks:
            logger.warning("no_chunks_created", source=source)
            return {"source": source, "chunks_created": 0, "record_ids": []}

        ids = await self.store_chunks(chunks, source=source)

        self.stats["chunks_created"] += len(chunks)
        self.stats["documents_processed"] += 1

        logger.info(
            "text_ingested",
            source=source,
            chunks_created=len(chunks),
        )

        return {
            "source": source,
            "chunks_created": len(chunks),
            "record_ids": ids,
        }

    async def ingest_file(self, file_path: Path) -> Dict[str, Any]:
        """Read a UTF-8 text file and ingest its contents.

        Args:
            file_path: Path to the document

        Returns:
            Dictionary with ingestion results

        Raises:
            OSError: If the file cannot be read
            InvalidConfig: If the file is not UTF-8 text
        """
        file_path = Path(file_path)
        try:
            text = file_path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            logger.error("document_not_text", path=str(file_path), error=str(e))
            raise InvalidConfig(f"{file_path.name} is not a UTF-8 text document") from e
        return await self.ingest_text(text, source=file_path.name)
