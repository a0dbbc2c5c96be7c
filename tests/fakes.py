"""Deterministic stand-ins for the embedding and generation gateways."""
import asyncio
import re
from typing import AsyncIterator, Dict, List

from docrag.errors import EmbeddingFailure, GenerationFailure

STOPWORDS = frozenset(
    {"a", "an", "and", "are", "for", "in", "is", "it", "of", "on", "the", "to", "what", "which"}
)
WORD_PATTERN = re.compile(r"[a-z0-9]+")


class BagOfWordsEmbedder:
    """Embeds text as word counts over a vocabulary grown on first sight.

    Each distinct non-stopword gets its own dimension, so texts sharing
    words score high and unrelated texts score 0.
    """

    def __init__(self, dimension: int = 128):
        self.dimension = dimension
        self.vocabulary: Dict[str, int] = {}
        self.calls: List[str] = []

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        vector = [0.0] * self.dimension
        for word in WORD_PATTERN.findall(text.lower()):
            if word in STOPWORDS:
                continue
            if word not in self.vocabulary:
                if len(self.vocabulary) >= self.dimension:
                    raise EmbeddingFailure("Vocabulary exhausted")
                self.vocabulary[word] = len(self.vocabulary)
            vector[self.vocabulary[word]] += 1.0
        return vector


class RecordingGenerator:
    """Answers by echoing the prompt's context section; records every prompt."""

    def __init__(self, prefix: str = "Based on the documents: "):
        self.prefix = prefix
        self.prompts: List[str] = []

    def _answer(self, prompt: str) -> str:
        context = prompt.split("Context:\n", 1)[-1].split("\n\nQuestion:", 1)[0]
        return self.prefix + context.strip()

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self._answer(prompt)


class StreamingRecordingGenerator(RecordingGenerator):
    async def generate_stream(self, prompt: str) -> AsyncIterator[str]:
        self.prompts.append(prompt)
        answer = self._answer(prompt)
        for start in range(0, len(answer), 7):
            await asyncio.sleep(0)
            yield answer[start : start + 7]


class FailingEmbedder:
    """Fails for any text containing ``fail_on`` (every text by default)."""

    def __init__(self, fail_on: str = ""):
        self.fail_on = fail_on
        self.inner = BagOfWordsEmbedder()

    async def embed(self, text: str) -> List[float]:
        if self.fail_on in text:
            raise EmbeddingFailure("Embedding service unavailable")
        return await self.inner.embed(text)


class FailingGenerator:
    def __init__(self):
        self.prompts: List[str] = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        raise GenerationFailure("Generation service unavailable")


class SlowEmbedder:
    """Blocks until released, so tests can cancel mid-request."""

    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.inner = BagOfWordsEmbedder()

    async def embed(self, text: str) -> List[float]:
        self.started.set()
        await self.release.wait()
        return await self.inner.embed(text)


class KeywordEmbedder:
    """Embeds text as topic indicators: one dimension per keyword group.

    Texts on the same topic get identical vectors whatever their wording.
    """

    def __init__(self, topics: Dict[str, List[str]]):
        self.topics = topics
        self.calls: List[str] = []

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        words = set(WORD_PATTERN.findall(text.lower()))
        return [1.0 if words & set(keywords) else 0.0 for keywords in self.topics.values()]
