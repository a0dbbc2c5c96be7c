"""Exception hierarchy shared by the ingestion and retrieval pipelines.

Failures local to one unit of work (a file, a request) are raised as
``ParseFailure`` / ``GatewayError`` subclasses and contained by the caller.
Failures that would compromise the vector store (``DimensionMismatchError``,
``FormatError``) abort the operation that caused them.
"""
from pathlib import Path
from typing import Optional, Union


class DocRagError(Exception):
    """Base class for every error raised by docrag."""


class ValidationError(DocRagError, ValueError):
    """Rejected input or configuration. Raised before any side effect."""


class DimensionMismatchError(DocRagError, ValueError):
    """An embedding's length disagrees with the store's dimensionality."""

    def __init__(self, expected: int, actual: int, context: str = "embedding"):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"{context.capitalize()} dimension mismatch: expected {expected}, got {actual}"
        )


class FormatError(DocRagError):
    """Persisted vector store state is unreadable or inconsistent."""


class GatewayError(DocRagError):
    """An external AI service failed (unavailable, rejected input, timeout)."""


class EmbeddingFailure(GatewayError):
    """The embedding gateway could not produce a vector."""


class GenerationFailure(GatewayError):
    """The generation gateway could not produce an answer."""


class ParseFailure(DocRagError):
    """A document could not be turned into text."""

    def __init__(self, path: Union[str, Path], reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Failed to parse {self.path.name}: {reason}")


class RetrievalFailed(DocRagError):
    """Terminal failure of a retrieval request.

    Attributes:
        stage: The pipeline stage that failed (a ``RetrievalStage``)
        kind: Class name of the underlying failure, e.g. ``"EmbeddingFailure"``
    """

    def __init__(self, stage, cause: Optional[BaseException] = None):
        self.stage = stage
        self.kind = type(cause).__name__ if cause is not None else "Unknown"
        stage_name = getattr(stage, "value", stage)
        super().__init__(f"Retrieval failed while {stage_name}: {self.kind}")
