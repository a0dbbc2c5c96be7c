"""Ingest pipeline for indexing a document directory.

Orchestrates:
- File discovery
- Document parsing
- Text chunking
- Embedding generation
- Vector storage and persistence
"""
import asyncio
import math
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import structlog

from docrag import config
from docrag.errors import EmbeddingFailure, ParseFailure
from docrag.models import NewChunk
from docrag.rag.chunker import ChunkerConfig, TextChunker
from docrag.rag.gateways import EmbeddingGateway
from docrag.rag.parsers import DocumentParser
from docrag.rag.store import VectorStore

logger = structlog.get_logger()

ProgressCallback = Callable[[int, int, Path], None]


class IngestPipeline:
    """Pipeline for ingesting documents into the vector store.

    Re-running over the same directory appends duplicate chunks; pass
    ``rebuild=True`` to :meth:`ingest` to start from an empty store.
    """

    def __init__(
        self,
        store: VectorStore,
        embedder: EmbeddingGateway,
        parser: Optional[DocumentParser] = None,
        chunker_config: Optional[ChunkerConfig] = None,
        batch_size: int = config.EMBED_BATCH_SIZE,
        persist: bool = True,
    ):
        """Initialize the ingest pipeline.

        Args:
            store: Vector store receiving the chunks
            embedder: Embedding gateway
            parser: Document parser (default handles txt, md and pdf)
            chunker_config: Chunk sizing (defaults from config)
            batch_size: Number of embeddings requested concurrently
            persist: Save the store after a completed run (if it has an index_dir)
        """
        self.store = store
        self.embedder = embedder
        self.parser = parser or DocumentParser()
        self.chunker = TextChunker(chunker_config)
        self.batch_size = max(1, batch_size)
        self.persist = persist

        self.stats = self._empty_stats()

    @staticmethod
    def _empty_stats() -> Dict[str, int]:
        return {
            "files_processed": 0,
            "files_failed": 0,
            "chunks_created": 0,
            "embeddings_generated": 0,
        }

    def discover_files(self, directory: Path) -> List[Path]:
        """Find every supported document under a directory, recursively.

        A missing directory is created so it can be populated later; it
        yields no files.

        Args:
            directory: Root directory to scan

        Returns:
            Sorted list of document paths
        """
        if not directory.exists():
            directory.mkdir(parents=True, exist_ok=True)
            logger.warning("documents_directory_created", path=str(directory))
            return []

        files = sorted(
            path
            for path in directory.rglob("*")
            if path.is_file() and self.parser.supports(path)
        )

        logger.info("documents_discovered", count=len(files), directory=str(directory))
        return files

    async def generate_embeddings_batch(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for texts, ``batch_size`` requests at a time.

        Args:
            texts: List of text strings to embed

        Returns:
            Embedding vectors in the same order as texts

        Raises:
            EmbeddingFailure: If any embedding request fails
        """
        embeddings: List[List[float]] = []

        for i in range(0, len(texts), self.batch_size):
            batch = texts[i : i + self.batch_size]
            outcomes = await asyncio.gather(
                *(self.embedder.embed(text) for text in batch),
                return_exceptions=True,
            )

            for text, outcome in zip(batch, outcomes):
                if isinstance(outcome, BaseException):
                    logger.error(
                        "embedding_generation_failed",
                        text_preview=text[:100],
                        error=str(outcome),
                        error_type=type(outcome).__name__,
                    )
                    if isinstance(outcome, EmbeddingFailure):
                        raise outcome
                    raise EmbeddingFailure(f"Failed to generate embedding: {outcome}") from outcome
                embeddings.append(self._check_embedding(outcome))
                self.stats["embeddings_generated"] += 1

            logger.debug(
                "embeddings_batch_generated",
                batch_size=len(batch),
                total_so_far=len(embeddings),
            )

        return embeddings

    @staticmethod
    def _check_embedding(embedding: Any) -> List[float]:
        """Reject vectors the store could not hold as an embedding failure."""
        if not embedding:
            raise EmbeddingFailure("Empty embedding returned for text")
        try:
            vector = [float(x) for x in embedding]
        except (TypeError, ValueError) as e:
            raise EmbeddingFailure("Embedding contains non-numeric values") from e
        if not all(math.isfinite(x) for x in vector):
            raise EmbeddingFailure("Embedding contains non-finite values")
        return vector

    async def ingest_file(self, file_path: Path) -> int:
        """Ingest a single document.

        Args:
            file_path: Path to the document

        Returns:
            Number of chunks stored

        Raises:
            ParseFailure: If the document can't be read
            EmbeddingFailure: If any chunk can't be embedded
            DimensionMismatchError: If the embeddings don't fit the store
        """
        logger.info("ingesting_file", path=str(file_path))

        text = await asyncio.to_thread(self.parser.parse, file_path)
        chunks = self.chunker.chunk_text(text)

        if not chunks:
            logger.warning("no_chunks_created", path=str(file_path))
            return 0

        embeddings = await self.generate_embeddings_batch([c.content for c in chunks])

        source_id = file_path.name
        stored = self.store.insert(
            [
                NewChunk(
                    text=chunk.content,
                    source_id=source_id,
                    sequence=chunk.chunk_index,
                    embedding=tuple(embedding),
                )
                for chunk, embedding in zip(chunks, embeddings)
            ]
        )

        logger.info(
            "file_ingested",
            path=str(file_path),
            chunks_created=len(stored),
            chunk_stats=self.chunker.get_chunk_stats(chunks),
        )
        return len(stored)

    async def ingest(
        self,
        source_directory: Optional[Path] = None,
        rebuild: bool = False,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> int:
        """Ingest every supported document in a directory.

        A file that fails to parse or embed is logged and skipped. A
        dimension mismatch aborts the run; chunks from earlier files stay
        stored.

        Args:
            source_directory: Directory to scan (default from config)
            rebuild: Clear the store before ingesting
            progress_callback: Optional callback(current, total, file_path)

        Returns:
            Number of chunks stored by this run
        """
        directory = Path(source_directory or config.DOCUMENTS_DIR)
        logger.info("starting_ingest", directory=str(directory), rebuild=rebuild)

        self.stats = self._empty_stats()

        if rebuild:
            self.store.clear()

        files = self.discover_files(directory)

        for idx, file_path in enumerate(files, 1):
            if progress_callback:
                progress_callback(idx, len(files), file_path)

            try:
                stored = await self.ingest_file(file_path)
            except (ParseFailure, EmbeddingFailure) as e:
                logger.error(
                    "file_ingestion_failed",
                    path=str(file_path),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                self.stats["files_failed"] += 1
                continue

            self.stats["files_processed"] += 1
            self.stats["chunks_created"] += stored

        if self.persist and self.store.index_dir is not None and (files or rebuild):
            await asyncio.to_thread(self.store.persist)

        logger.info("ingest_completed", stats=self.stats)
        return self.stats["chunks_created"]
