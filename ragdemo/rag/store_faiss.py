"""FAISS vector store for semantic search.

Handles:
- Cosine similarity search (inner product over L2-normalised vectors)
- Record insertion with opaque ids
- Index and record persistence
"""
import asyncio
import json
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Dict, Any, Sequence
import numpy as np
import faiss
import structlog

from ragdemo import config
from ragdemo.errors import StoreUnavailable
from ragdemo.rag.retriever import RetrievalResult

logger = structlog.get_logger()


@dataclass(frozen=True)
class StoredRecord:
    """A record held by the store. ``vector`` is the normalised indexed vector."""

    id: str
    vector: List[float]
    text: str
    metadata: Dict[str, Any] = field(default_factory=dict)


def _normalize(vectors: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return (vectors / norms).astype(np.float32)


class FAISSVectorStore:
    """FAISS-based vector store with records and metadata on disk."""

    def __init__(
        self,
        index_dir: Path = None,
        dimension: Optional[int] = None,
        settings: Optional[config.Settings] = None,
    ):
        """Initialize the FAISS vector store.

        Args:
            index_dir: Directory to store index and records (default: settings.index_dir)
            dimension: Embedding dimension (detected from the first insert if not provided)
            settings: Settings providing defaults
        """
        settings = settings or config.get_settings()
        self.index_dir = Path(index_dir) if index_dir else settings.index_dir
        self.embedding_model = settings.embedding_model

        self.index_path = self.index_dir / "vectors.index"
        self.records_path = self.index_dir / "records.json"

        self.index: Optional[faiss.Index] = None
        self.dimension: Optional[int] = dimension
        self.records: List[StoredRecord] = []
        self._lock = asyncio.Lock()

        logger.info(
            "faiss_store_initialized",
            index_dir=str(self.index_dir),
            dimension=dimension,
        )

    def init_new_index(self, dimension: int) -> None:
        """Initialize a new, empty FAISS index.

        Args:
            dimension: Embedding dimension
        """
        self.dimension = dimension
        # Exact search; fine for small collections
        self.index = faiss.IndexFlatIP(dimension)
        self.records = []

        logger.info(
            "faiss_index_initialized",
            dimension=dimension,
            index_type="IndexFlatIP",
        )

    def _as_matrix(self, vectors: Sequence[Sequence[float]]) -> np.ndarray:
        try:
            matrix = np.asarray(vectors, dtype=np.float32)
        except ValueError as e:
            raise StoreUnavailable(f"Vectors are not a uniform numeric matrix: {e}") from e

        if matrix.ndim != 2 or matrix.shape[1] == 0:
            raise StoreUnavailable(f"Expected a 2-d vector batch, got shape {matrix.shape}")

        if self.dimension is not None and matrix.shape[1] != self.dimension:
            raise StoreUnavailable(
                f"Embedding dimension mismatch: expected {self.dimension}, "
                f"got {matrix.shape[1]}"
            )
        return matrix

    async def insert(self, records: Sequence[Dict[str, Any]]) -> List[str]:
        """Add ``{vector, text, metadata}`` records to the index.

        Args:
            records: Records to add

        Returns:
            List of new record ids, in input order

        Raises:
            StoreUnavailable: If vectors are malformed or of the wrong dimension
        """
        if not records:
            return []

        try:
            vectors = [record["vector"] for record in records]
        except (KeyError, TypeError) as e:
            raise StoreUnavailable(f"Malformed record: {e}") from e

        async with self._lock:
            matrix = _normalize(self._as_matrix(vectors))

            if self.index is None:
                self.init_new_index(matrix.shape[1])

            try:
                self.index.add(matrix)
            except RuntimeError as e:
                logger.error("faiss_add_failed", error=str(e))
                raise StoreUnavailable(f"Failed to add vectors: {e}") from e

            ids = []
            for record, vector in zip(records, matrix):
                record_id = uuid.uuid4().hex
                self.records.append(
                    StoredRecord(
                        id=record_id,
                        vector=vector.tolist(),
                        text=record.get("text", ""),
                        metadata=dict(record.get("metadata") or {}),
                    )
                )
                ids.append(record_id)

        logger.info(
            "vectors_added",
            count=len(ids),
            total_vectors=self.index.ntotal,
        )

        return ids

    async def query(self, vector: List[float], limit: int) -> List[RetrievalResult]:
        """Search for the records most similar to ``vector``.

        Args:
            vector: Query vector
            limit: Maximum number of results

        Returns:
            Results ordered by descending score, insertion order on ties

        Raises:
            StoreUnavailable: If the query vector has the wrong dimension
        """
        if self.index is None or self.index.ntotal == 0:
            logger.info("empty_index_no_results")
            return []

        query_vector = _normalize(self._as_matrix([vector]))

        # Ensure we don't request more results than we have
        limit = min(limit, self.index.ntotal)
        if limit <= 0:
            return []

        async with self._lock:
            total = self.index.ntotal
            k = limit
            try:
                while True:
                    scores, positions = self.index.search(query_vector, k)
                    scores = np.clip(scores, 0.0, 1.0)
                    # Widen the search while ties at the cut could hide earlier records
                    if k >= total or scores[0][-1] < scores[0][limit - 1]:
                        break
                    k = min(k * 2, total)
            except RuntimeError as e:
                logger.error("faiss_search_failed", error=str(e))
                raise StoreUnavailable(f"FAISS search failed: {e}") from e

            hits = [
                (float(score), int(position))
                for score, position in zip(scores[0], positions[0])
                if position >= 0
            ]
            hits.sort(key=lambda hit: (-hit[0], hit[1]))
            hits = hits[:limit]

            results = [
                RetrievalResult(
                    text=self.records[position].text,
                    score=score,
                    metadata=dict(self.records[position].metadata),
                )
                for score, position in hits
            ]

        logger.info(
            "vector_search_completed",
            limit=limit,
            results_found=len(results),
        )

        return results

    async def save_index(self) -> None:
        """Save FAISS index and records to disk.

        Raises:
            StoreUnavailable: If there is nothing to save or the write fails
        """
        if self.index is None:
            raise StoreUnavailable("No index to save. Insert records or load an index first.")

        self.index_dir.mkdir(parents=True, exist_ok=True)

        async with self._lock:
            # Index and records are written from the same snapshot
            vector_count = self.index.ntotal
            payload = {
                "embedding_model": self.embedding_model,
                "embedding_dimension": self.dimension,
                "index_type": "IndexFlatIP",
                "vector_count": vector_count,
                "records": [
                    {"id": r.id, "text": r.text, "metadata": r.metadata}
                    for r in self.records
                ],
            }

            try:
                faiss.write_index(self.index, str(self.index_path))
                with open(self.records_path, "w", encoding="utf-8") as f:
                    json.dump(payload, f, ensure_ascii=False, indent=2)
            except (OSError, RuntimeError) as e:
                raise StoreUnavailable(f"Failed to save index: {e}") from e

        logger.info(
            "faiss_index_saved",
            index_path=str(self.index_path),
            vector_count=vector_count,
        )

    async def load_index(self) -> None:
        """Load an existing FAISS index and its records from disk.

        Raises:
            StoreUnavailable: If files are missing, unreadable or inconsistent
        """
        if not self.index_path.exists() or not self.records_path.exists():
            raise StoreUnavailable(f"Index not found in {self.index_dir}")

        try:
            with open(self.records_path, "r", encoding="utf-8") as f:
                payload = json.load(f)
            index = faiss.read_index(str(self.index_path))
        except (OSError, ValueError, RuntimeError) as e:
            raise StoreUnavailable(f"Failed to load index: {e}") from e

        stored_dim = payload.get("embedding_dimension")
        if self.dimension is not None and stored_dim != self.dimension:
            raise StoreUnavailable(
                f"Dimension mismatch: index was built with {payload.get('embedding_model')} "
                f"(dim={stored_dim}), but dim={self.dimension} was requested. "
                "Please rebuild the index."
            )

        entries = payload.get("records", [])
        if len(entries) != index.ntotal:
            raise StoreUnavailable(
                f"Index holds {index.ntotal} vectors but {len(entries)} records"
            )

        vectors = index.reconstruct_n(0, index.ntotal) if index.ntotal else []
        async with self._lock:
            self.index = index
            self.dimension = stored_dim
            self.records = [
                StoredRecord(
                    id=entry["id"],
                    vector=vector.tolist(),
                    text=entry["text"],
                    metadata=entry.get("metadata", {}),
                )
                for entry, vector in zip(entries, vectors)
            ]

        logger.info(
            "faiss_index_loaded",
            dimension=self.dimension,
            vector_count=index.ntotal,
            model=payload.get("embedding_model"),
        )

    async def init_or_load(self) -> None:
        """Load the index from disk if present; otherwise start empty."""
        if self.index_path.exists() and self.records_path.exists():
            logger.info("existing_index_detected", path=str(self.index_path))
            await self.load_index()
        elif self.dimension is not None:
            self.init_new_index(self.dimension)
        else:
            logger.info("no_index_found_waiting_for_first_insert")

    async def rebuild_index(self) -> None:
        """Clear the index on disk and in memory."""
        logger.warning("rebuilding_index", index_dir=str(self.index_dir))

        for path in (self.index_path, self.records_path):
            if path.exists():
                path.unlink()
                logger.info("deleted_existing_file", path=str(path))

        async with self._lock:
            self.index = None
            self.records = []
            if self.dimension is not None:
                self.init_new_index(self.dimension)

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics about the vector store.

        Returns:
            Dictionary with store statistics
        """
        if self.index is None:
            return {
                "initialized": False,
                "vector_count": 0,
                "dimension": self.dimension,
            }

        return {
            "initialized": True,
            "vector_count": self.index.ntotal,
            "dimension": self.dimension,
            "embedding_model": self.embedding_model,
            "index_exists_on_disk": self.index_path.exists(),
        }
