"""Token-window text chunking with overlap for the RAG pipeline.

Tokens are whitespace-delimited words carrying their trailing whitespace,
which avoids a tokenizer model dependency while keeping chunk sizes stable
across embedding models.
"""
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

import structlog

from docrag import config
from docrag.errors import ValidationError

logger = structlog.get_logger()

TOKEN_PATTERN = re.compile(r"\S+\s*")


@dataclass(frozen=True)
class ChunkerConfig:
    """Chunk sizing, all measured in tokens.

    Attributes:
        target_size: Tokens per chunk
        overlap: Tokens shared by consecutive chunks
        min_size: Chunks smaller than this are merged into their neighbour
        max_size: Hard cap on chunk length
    """

    target_size: int = config.CHUNK_TARGET_SIZE
    overlap: int = config.CHUNK_OVERLAP
    min_size: int = config.CHUNK_MIN_SIZE
    max_size: int = config.CHUNK_MAX_SIZE

    def validate(self) -> "ChunkerConfig":
        """Raise ValidationError unless the sizes are mutually consistent."""
        if self.target_size <= 0:
            raise ValidationError(f"target_size must be positive, got {self.target_size}")
        if not 0 <= self.overlap < self.target_size:
            raise ValidationError(
                f"Overlap ({self.overlap}) must be >= 0 and less than "
                f"target size ({self.target_size})"
            )
        if not 1 <= self.min_size <= self.target_size:
            raise ValidationError(
                f"min_size ({self.min_size}) must be between 1 and "
                f"target size ({self.target_size})"
            )
        if self.max_size < self.target_size:
            raise ValidationError(
                f"max_size ({self.max_size}) must be >= target size ({self.target_size})"
            )
        return self


@dataclass
class TextChunk:
    """Represents a chunk of text with its token span in the source."""

    content: str
    token_start: int
    token_end: int
    chunk_index: int

    @property
    def token_count(self) -> int:
        return self.token_end - self.token_start


def tokenize(text: str) -> List[str]:
    """Split text into word tokens, each keeping its trailing whitespace."""
    return TOKEN_PATTERN.findall(text)


def plan_windows(token_count: int, chunk_config: ChunkerConfig) -> List[Tuple[int, int]]:
    """Compute the ``[start, end)`` token span of every chunk.

    Args:
        token_count: Number of tokens in the document
        chunk_config: Validated chunk sizing

    Returns:
        Ordered list of spans; consecutive spans overlap and together cover
        every token exactly once outside the overlaps.
    """
    if token_count == 0:
        return []

    target = chunk_config.target_size
    if token_count <= target:
        return [(0, token_count)]

    step = target - chunk_config.overlap
    spans: List[Tuple[int, int]] = []
    start = 0

    while True:
        end = min(start + target, token_count)
        spans.append((start, end))
        if end == token_count:
            break

        uncovered = token_count - end
        if uncovered < chunk_config.min_size:
            prev_start, _ = spans[-1]
            if token_count - prev_start <= chunk_config.max_size:
                spans[-1] = (prev_start, token_count)
            else:
                # Merging would break the cap: close with a full-size window instead.
                spans.append((token_count - target, token_count))
            break

        start += step

    return spans


class TextChunker:
    """Token-window text chunker with overlap support."""

    def __init__(self, chunk_config: Optional[ChunkerConfig] = None):
        """Initialize the text chunker.

        Args:
            chunk_config: Chunk sizing (defaults from config)

        Raises:
            ValidationError: If the configuration is inconsistent
        """
        self.config = (chunk_config or ChunkerConfig()).validate()

        logger.debug(
            "chunker_initialized",
            target_size=self.config.target_size,
            overlap=self.config.overlap,
            min_size=self.config.min_size,
            max_size=self.config.max_size,
        )

    def chunk_text(self, text: str) -> List[TextChunk]:
        """Split text into overlapping chunks.

        Args:
            text: Text to chunk

        Returns:
            List of TextChunk objects, empty for blank text
        """
        tokens = tokenize(text or "")
        spans = plan_windows(len(tokens), self.config)

        chunks = [
            TextChunk(
                content="".join(tokens[start:end]).strip(),
                token_start=start,
                token_end=end,
                chunk_index=index,
            )
            for index, (start, end) in enumerate(spans)
        ]

        if chunks:
            logger.debug(
                "text_chunked",
                token_count=len(tokens),
                chunk_count=len(chunks),
            )

        return chunks

    def split(self, text: str) -> List[str]:
        """Split text and return only the chunk contents."""
        return [chunk.content for chunk in self.chunk_text(text)]

    def get_chunk_stats(self, chunks: List[TextChunk]) -> dict:
        """Get statistics about a set of chunks.

        Args:
            chunks: List of TextChunk objects

        Returns:
            Dictionary with chunk statistics (sizes in tokens)
        """
        if not chunks:
            return {
                "chunk_count": 0,
                "total_tokens": 0,
                "avg_chunk_size": 0,
                "min_chunk_size": 0,
                "max_chunk_size": 0,
            }

        chunk_sizes = [c.token_count for c in chunks]

        return {
            "chunk_count": len(chunks),
            "total_tokens": sum(chunk_sizes),
            "avg_chunk_size": sum(chunk_sizes) // len(chunks),
            "min_chunk_size": min(chunk_sizes),
            "max_chunk_size": max(chunk_sizes),
            "overlap": self.config.overlap,
        }


def split(text: str, chunk_config: Optional[ChunkerConfig] = None) -> List[str]:
    """Split text into chunk contents (convenience function).

    Args:
        text: Text to chunk
        chunk_config: Chunk sizing (defaults from config)

    Returns:
        Ordered chunk texts
    """
    return TextChunker(chunk_config).split(text)
