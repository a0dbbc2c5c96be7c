"""Shared data model: chunks as stored, chunks awaiting insertion, search hits."""
from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class NewChunk:
    """A chunk of text with its embedding, not yet assigned a store id."""

    text: str
    source_id: str
    sequence: int
    embedding: Tuple[float, ...]


@dataclass(frozen=True)
class Chunk:
    """A chunk record owned by the vector store.

    Instances are immutable, so search results can hand out the store's own
    records without exposing its state to mutation.
    """

    id: str
    text: str
    source_id: str
    sequence: int
    embedding: Tuple[float, ...]

    @property
    def dimension(self) -> int:
        return len(self.embedding)


@dataclass(frozen=True)
class SearchResult:
    """A matched chunk and its cosine similarity to the query.

    ``score`` lies in [-1, 1]; higher means more similar.
    """

    chunk: Chunk
    score: float

    @property
    def content(self) -> str:
        return self.chunk.text

    @property
    def source(self) -> str:
        return self.chunk.source_id

    def to_dict(self) -> dict:
        """Serialise for API responses (without the embedding)."""
        return {
            "id": self.chunk.id,
            "content": self.chunk.text,
            "source": self.chunk.source_id,
            "sequence": self.chunk.sequence,
            "similarity": self.score,
        }
