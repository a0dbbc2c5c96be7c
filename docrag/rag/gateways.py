"""Interfaces for the external AI services the pipelines depend on.

Implementations must surface every failure as ``EmbeddingFailure`` or
``GenerationFailure`` respectively. ``docrag.llm_client.OllamaClient``
implements both; tests use deterministic stand-ins.
"""
from typing import AsyncIterator, List, Protocol, runtime_checkable


@runtime_checkable
class EmbeddingGateway(Protocol):
    async def embed(self, text: str) -> List[float]:
        """Return the embedding vector for text."""
        ...


@runtime_checkable
class GenerationGateway(Protocol):
    async def generate(self, prompt: str) -> str:
        """Return the model's complete answer to prompt."""
        ...


@runtime_checkable
class StreamingGenerationGateway(GenerationGateway, Protocol):
    def generate_stream(self, prompt: str) -> AsyncIterator[str]:
        """Yield answer fragments whose concatenation equals ``generate(prompt)``."""
        ...
