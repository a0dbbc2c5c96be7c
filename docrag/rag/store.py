"""FAISS vector store for semantic search.

Handles:
- Dimension adoption on first insertion and validation afterwards
- Exact cosine similarity search (inner product over normalised vectors)
- Atomic batch insertion under a reader/writer lock
- Persistence of chunk records and raw embeddings
"""
import json
import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, IO, List, Optional, Sequence, Tuple
from uuid import uuid4

import faiss
import numpy as np
import structlog

from docrag import config
from docrag.errors import DimensionMismatchError, FormatError, ValidationError
from docrag.models import Chunk, NewChunk, SearchResult
from docrag.rag.locks import ReadWriteLock

logger = structlog.get_logger()

FORMAT_NAME = "docrag-vector-store"
FORMAT_VERSION = 1


def _normalize(vectors: np.ndarray) -> np.ndarray:
    """L2-normalise rows as float32; zero rows stay zero so they score 0."""
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    normalized = np.divide(
        vectors, norms, out=np.zeros_like(vectors), where=norms > 0
    )
    return np.ascontiguousarray(normalized, dtype=np.float32)


def _as_matrix(embeddings: Sequence[Sequence[float]]) -> np.ndarray:
    try:
        matrix = np.asarray(embeddings, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Embeddings must be numeric vectors: {e}") from e
    if matrix.ndim != 2 or matrix.shape[1] == 0:
        raise ValidationError("Embeddings must be non-empty vectors")
    if not np.all(np.isfinite(matrix)):
        raise ValidationError("Embeddings must contain only finite values")
    return matrix


def _atomic_write(path: Path, write: Callable[[IO[bytes]], None]) -> None:
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "wb") as fh:
            write(fh)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class VectorStore:
    """In-process vector store backed by a flat FAISS inner-product index.

    The store exclusively owns its chunk records. Search results reference
    the immutable ``Chunk`` objects; nothing a caller receives can alter the
    collection.
    """

    CHUNKS_FILE = "chunks.json"
    EMBEDDINGS_FILE = "embeddings.npy"

    def __init__(self, index_dir: Optional[Path] = None):
        """Initialize an empty vector store.

        Args:
            index_dir: Directory for persisted state (None keeps it in memory only)
        """
        self.index_dir = Path(index_dir) if index_dir is not None else None

        self._lock = ReadWriteLock()
        self._persist_lock = threading.Lock()
        self._chunks: List[Chunk] = []
        self._index: Optional[faiss.Index] = None
        self._dimension: Optional[int] = None

        logger.debug(
            "vector_store_initialized",
            index_dir=str(self.index_dir) if self.index_dir else None,
        )

    @property
    def chunks_path(self) -> Optional[Path]:
        return self.index_dir / self.CHUNKS_FILE if self.index_dir else None

    @property
    def embeddings_path(self) -> Optional[Path]:
        return self.index_dir / self.EMBEDDINGS_FILE if self.index_dir else None

    @property
    def dimension(self) -> Optional[int]:
        """Embedding dimensionality, or None until the first insertion."""
        return self._dimension

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._chunks)

    def chunks(self) -> Tuple[Chunk, ...]:
        """Snapshot of every stored chunk in insertion order."""
        with self._lock.read_locked():
            return tuple(self._chunks)

    def insert(self, chunks: Sequence[NewChunk]) -> List[Chunk]:
        """Add a batch of embedded chunks.

        The batch is validated as a whole before anything is stored, and is
        published to searches in a single step.

        Args:
            chunks: Chunks with their embeddings

        Returns:
            The stored records, with ids assigned

        Raises:
            ValidationError: If a chunk has empty text or an unusable embedding
            DimensionMismatchError: If an embedding length disagrees with the store
        """
        if not chunks:
            return []

        for chunk in chunks:
            if not chunk.text or not chunk.text.strip():
                raise ValidationError(
                    f"Chunk {chunk.sequence} of {chunk.source_id!r} has empty text"
                )

        batch_dimension = len(chunks[0].embedding)
        for chunk in chunks:
            if len(chunk.embedding) != batch_dimension:
                raise DimensionMismatchError(batch_dimension, len(chunk.embedding))

        vectors = _as_matrix([chunk.embedding for chunk in chunks])

        with self._lock.write_locked():
            expected = self._dimension if self._dimension is not None else batch_dimension
            if batch_dimension != expected:
                raise DimensionMismatchError(expected, batch_dimension)

            records = [
                Chunk(
                    id=uuid4().hex,
                    text=chunk.text,
                    source_id=chunk.source_id,
                    sequence=chunk.sequence,
                    embedding=tuple(float(x) for x in row),
                )
                for chunk, row in zip(chunks, vectors)
            ]

            index = self._index if self._index is not None else faiss.IndexFlatIP(expected)
            index.add(_normalize(vectors))

            self._index = index
            self._dimension = expected
            self._chunks.extend(records)
            total = len(self._chunks)

        logger.info("vectors_added", count=len(records), total_vectors=total)
        return records

    def search(
        self,
        query_embedding: Sequence[float],
        top_k: int = config.RETRIEVAL_TOP_K,
        min_score: float = -1.0,
    ) -> List[SearchResult]:
        """Find the stored chunks most similar to a query vector.

        Args:
            query_embedding: Query vector
            top_k: Maximum number of results
            min_score: Minimum cosine similarity for a result to be kept

        Returns:
            Results ordered by descending similarity, ties in insertion order

        Raises:
            ValidationError: If top_k is not positive or the query is not a vector
            DimensionMismatchError: If the query length disagrees with the store
        """
        if top_k <= 0:
            raise ValidationError(f"top_k must be positive, got {top_k}")

        query = _as_matrix([query_embedding])

        with self._lock.read_locked():
            if not self._chunks:
                return []

            if query.shape[1] != self._dimension:
                raise DimensionMismatchError(self._dimension, query.shape[1], context="query")

            k = min(top_k, self._index.ntotal)
            scores, positions = self._index.search(_normalize(query), k)

            hits = sorted(
                (
                    (min(1.0, max(-1.0, float(score))), int(position))
                    for score, position in zip(scores[0], positions[0])
                    if position >= 0
                ),
                key=lambda hit: (-hit[0], hit[1]),
            )
            results = [
                SearchResult(chunk=self._chunks[position], score=score)
                for score, position in hits
                if score >= min_score
            ]

        logger.debug(
            "vector_search_completed",
            top_k=top_k,
            min_score=min_score,
            results_found=len(results),
        )
        return results

    def clear(self) -> int:
        """Remove every chunk and forget the adopted dimension.

        Returns:
            Number of chunks removed
        """
        with self._lock.write_locked():
            removed = len(self._chunks)
            self._chunks = []
            self._index = None
            self._dimension = None

        logger.warning("vector_store_cleared", removed=removed)
        return removed

    def persist(self) -> None:
        """Save chunk records and raw embeddings to ``index_dir``.

        Raises:
            ValidationError: If the store has no index_dir
        """
        if self.index_dir is None:
            raise ValidationError("Vector store has no index_dir to persist to")

        with self._lock.read_locked():
            chunks = list(self._chunks)
            dimension = self._dimension

        if chunks:
            matrix = np.array([c.embedding for c in chunks], dtype=np.float64)
        else:
            matrix = np.empty((0, dimension or 0), dtype=np.float64)

        metadata = {
            "format": FORMAT_NAME,
            "version": FORMAT_VERSION,
            "embedding_dimension": dimension,
            "vector_count": len(chunks),
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "chunks": [
                {
                    "id": c.id,
                    "text": c.text,
                    "source_id": c.source_id,
                    "sequence": c.sequence,
                }
                for c in chunks
            ],
        }
        payload = json.dumps(metadata, ensure_ascii=False, indent=2).encode("utf-8")

        with self._persist_lock:
            self.index_dir.mkdir(parents=True, exist_ok=True)
            _atomic_write(
                self.embeddings_path, lambda fh: np.save(fh, matrix, allow_pickle=False)
            )
            _atomic_write(self.chunks_path, lambda fh: fh.write(payload))

        logger.info(
            "vector_store_saved",
            index_dir=str(self.index_dir),
            vector_count=len(chunks),
        )

    def load(self) -> None:
        """Replace the in-memory collection with the persisted one.

        Raises:
            ValidationError: If the store has no index_dir
            FileNotFoundError: If the persisted files don't exist
            FormatError: If the persisted state is unreadable or inconsistent
        """
        if self.index_dir is None:
            raise ValidationError("Vector store has no index_dir to load from")
        if not self.chunks_path.exists():
            raise FileNotFoundError(f"Chunk metadata not found: {self.chunks_path}")
        if not self.embeddings_path.exists():
            raise FileNotFoundError(f"Embeddings not found: {self.embeddings_path}")

        try:
            metadata = json.loads(self.chunks_path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise FormatError(f"Unreadable chunk metadata: {e}") from e

        try:
            matrix = np.load(self.embeddings_path, allow_pickle=False)
        except (ValueError, OSError, EOFError) as e:
            raise FormatError(f"Unreadable embeddings file: {e}") from e

        chunks, dimension = self._decode(metadata, matrix)

        index = None
        if chunks:
            index = faiss.IndexFlatIP(dimension)
            index.add(_normalize(matrix))

        with self._lock.write_locked():
            self._chunks = chunks
            self._index = index
            self._dimension = dimension

        logger.info(
            "vector_store_loaded",
            index_dir=str(self.index_dir),
            vector_count=len(chunks),
            dimension=dimension,
        )

    def init_or_load(self) -> None:
        """Load persisted state if present, otherwise keep the empty store.

        Raises:
            FormatError: If only part of the persisted state exists or it is corrupt
        """
        if self.index_dir is None:
            return

        chunks_exists = self.chunks_path.exists()
        embeddings_exists = self.embeddings_path.exists()

        if chunks_exists and embeddings_exists:
            logger.info("existing_store_detected", path=str(self.index_dir))
            self.load()
        elif chunks_exists or embeddings_exists:
            raise FormatError(
                f"Incomplete vector store in {self.index_dir}: expected both "
                f"{self.CHUNKS_FILE} and {self.EMBEDDINGS_FILE}"
            )
        else:
            logger.info("no_store_found_starting_empty", path=str(self.index_dir))

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics about the vector store."""
        with self._lock.read_locked():
            sources = {c.source_id for c in self._chunks}
            return {
                "vector_count": len(self._chunks),
                "source_count": len(sources),
                "dimension": self._dimension,
                "index_dir": str(self.index_dir) if self.index_dir else None,
                "exists_on_disk": bool(self.chunks_path and self.chunks_path.exists()),
            }

    @staticmethod
    def _decode(metadata: Any, matrix: np.ndarray) -> Tuple[List[Chunk], Optional[int]]:
        """Validate persisted metadata against the embedding matrix."""
        if not isinstance(metadata, dict):
            raise FormatError("Chunk metadata must be a JSON object")
        if metadata.get("format") != FORMAT_NAME:
            raise FormatError(f"Unknown store format: {metadata.get('format')!r}")
        if metadata.get("version") != FORMAT_VERSION:
            raise FormatError(f"Unsupported store version: {metadata.get('version')!r}")

        entries = metadata.get("chunks")
        dimension = metadata.get("embedding_dimension")
        count = metadata.get("vector_count")

        if not isinstance(entries, list):
            raise FormatError("Chunk metadata is missing the 'chunks' list")
        if count != len(entries):
            raise FormatError(
                f"vector_count {count!r} disagrees with {len(entries)} chunk entries"
            )
        if dimension is not None and (
            isinstance(dimension, bool) or not isinstance(dimension, int) or dimension <= 0
        ):
            raise FormatError(f"Invalid embedding_dimension: {dimension!r}")
        if matrix.ndim != 2 or matrix.dtype.kind != "f":
            raise FormatError(f"Embeddings must be a 2-D float array, got {matrix.dtype} {matrix.shape}")
        if matrix.shape[0] != len(entries):
            raise FormatError(
                f"{matrix.shape[0]} embeddings stored for {len(entries)} chunks"
            )
        if entries and (dimension is None or matrix.shape[1] != dimension):
            raise FormatError(
                f"Embedding width {matrix.shape[1]} disagrees with dimension {dimension!r}"
            )
        if not np.all(np.isfinite(matrix)):
            raise FormatError("Embeddings contain non-finite values")

        chunks = []
        for position, (entry, row) in enumerate(zip(entries, matrix)):
            if not isinstance(entry, dict):
                raise FormatError(f"Chunk entry {position} is not an object")
            chunk_id = entry.get("id")
            text = entry.get("text")
            source_id = entry.get("source_id")
            sequence = entry.get("sequence")
            if not isinstance(chunk_id, str) or not chunk_id:
                raise FormatError(f"Chunk entry {position} has an invalid id")
            if not isinstance(text, str) or not text.strip():
                raise FormatError(f"Chunk entry {position} has empty text")
            if not isinstance(source_id, str):
                raise FormatError(f"Chunk entry {position} has an invalid source_id")
            if isinstance(sequence, bool) or not isinstance(sequence, int):
                raise FormatError(f"Chunk entry {position} has an invalid sequence")
            chunks.append(
                Chunk(
                    id=chunk_id,
                    text=text,
                    source_id=source_id,
                    sequence=sequence,
                    embedding=tuple(float(x) for x in row),
                )
            )

        if len({c.id for c in chunks}) != len(chunks):
            raise FormatError("Duplicate chunk ids in persisted store")

        return chunks, dimension
