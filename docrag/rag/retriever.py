"""Retrieval pipeline answering questions from the indexed documents.

Handles:
- Question validation
- Query embedding generation
- Vector search with similarity threshold
- Context assembly and prompt rendering
- Answer generation (complete or streamed)
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, List, Optional

import structlog

from docrag import config
from docrag.errors import (
    DocRagError,
    EmbeddingFailure,
    GenerationFailure,
    RetrievalFailed,
    ValidationError,
)
from docrag.models import SearchResult
from docrag.rag.gateways import (
    EmbeddingGateway,
    GenerationGateway,
    StreamingGenerationGateway,
)
from docrag.rag.prompts import PromptTemplate
from docrag.rag.store import VectorStore

logger = structlog.get_logger()

NO_MATCH_RESPONSE = "No relevant information found in the knowledge base."

CONTEXT_SEPARATOR = "\n\n"


class RetrievalStage(str, Enum):
    VALIDATING = "validating"
    EMBEDDING = "embedding"
    SEARCHING = "searching"
    NO_MATCH = "no_match"
    CONTEXT_BUILDING = "context_building"
    GENERATING = "generating"
    DONE = "done"
    FAILED = "failed"


@dataclass
class Retrieval:
    """Everything gathered for a question short of generating the answer."""

    question: str
    results: List[SearchResult] = field(default_factory=list)
    context: str = ""
    prompt: Optional[str] = None
    stage: RetrievalStage = RetrievalStage.VALIDATING

    @property
    def matched(self) -> bool:
        return bool(self.results)


@dataclass
class Answer:
    question: str
    answer: str
    sources: List[SearchResult]
    stage: RetrievalStage


class RetrievalPipeline:
    """Question answering over a vector store.

    Each request is independent: the only shared state is the store, and
    nothing computed for one question is kept for the next.
    """

    def __init__(
        self,
        store: VectorStore,
        embedder: EmbeddingGateway,
        generator: GenerationGateway,
        top_k: int = config.RETRIEVAL_TOP_K,
        min_score: float = config.RETRIEVAL_MIN_SCORE,
        prompt_template: Optional[PromptTemplate] = None,
        no_match_response: str = NO_MATCH_RESPONSE,
    ):
        """Initialize the retrieval pipeline.

        Args:
            store: Vector store to search
            embedder: Embedding gateway for questions
            generator: Generation gateway for answers
            top_k: Maximum number of chunks placed in the context
            min_score: Minimum cosine similarity for a chunk to be used
            prompt_template: Answer prompt (default loaded from PROMPT_TEMPLATE_PATH)
            no_match_response: Fixed answer when nothing clears min_score

        Raises:
            ValidationError: If top_k is not positive
        """
        if top_k <= 0:
            raise ValidationError(f"top_k must be positive, got {top_k}")

        self.store = store
        self.embedder = embedder
        self.generator = generator
        self.top_k = top_k
        self.min_score = min_score
        self.prompt_template = prompt_template or PromptTemplate.from_file()
        self.no_match_response = no_match_response

        logger.info("retrieval_pipeline_initialized", top_k=top_k, min_score=min_score)

    @staticmethod
    def _validate(question: str) -> str:
        if not isinstance(question, str) or not question.strip():
            raise ValidationError("Question must not be empty")
        return question

    def _fail(self, stage: RetrievalStage, cause: BaseException, question: str) -> RetrievalFailed:
        logger.error(
            "retrieval_failed",
            stage=stage.value,
            error=str(cause),
            error_type=type(cause).__name__,
            question_preview=question[:100],
        )
        return RetrievalFailed(stage, cause)

    async def _embed(self, question: str) -> List[float]:
        try:
            query_embedding = await self.embedder.embed(question)
            if not query_embedding:
                raise EmbeddingFailure("Empty embedding returned for question")
        except EmbeddingFailure as e:
            raise self._fail(RetrievalStage.EMBEDDING, e, question) from e
        return query_embedding

    def _search(
        self, question: str, query_embedding: List[float], top_k: int, min_score: float
    ) -> List[SearchResult]:
        try:
            return self.store.search(query_embedding, top_k=top_k, min_score=min_score)
        except DocRagError as e:
            raise self._fail(RetrievalStage.SEARCHING, e, question) from e

    async def search(
        self,
        query: str,
        top_k: Optional[int] = None,
        min_score: float = -1.0,
    ) -> List[SearchResult]:
        """Rank stored chunks against a query without building a prompt.

        Unlike :meth:`retrieve`, no similarity threshold applies unless one
        is given.

        Args:
            query: Search text
            top_k: Maximum number of results (default: the pipeline's top_k)
            min_score: Minimum cosine similarity for a result to be kept

        Returns:
            Results ordered by descending similarity

        Raises:
            ValidationError: If the query is empty or top_k is out of range
            RetrievalFailed: If embedding or search fails
        """
        self._validate(query)
        top_k = self.top_k if top_k is None else top_k
        if not 0 < top_k <= config.MAX_SEARCH_TOP_K:
            raise ValidationError(
                f"top_k must be between 1 and {config.MAX_SEARCH_TOP_K}, got {top_k}"
            )

        logger.info("search_started", query_length=len(query), top_k=top_k)

        results = self._search(query, await self._embed(query), top_k, min_score)

        logger.info("search_completed", results_returned=len(results))
        return results

    async def retrieve(self, question: str) -> Retrieval:
        """Embed, search and assemble the prompt without calling the generator.

        Args:
            question: User question

        Returns:
            Retrieval with stage NO_MATCH (no results) or CONTEXT_BUILDING

        Raises:
            ValidationError: If the question is empty
            RetrievalFailed: If embedding or search fails
        """
        self._validate(question)
        retrieval = Retrieval(question=question)

        logger.info("retrieval_started", question_length=len(question), top_k=self.top_k)

        retrieval.stage = RetrievalStage.EMBEDDING
        query_embedding = await self._embed(question)

        retrieval.stage = RetrievalStage.SEARCHING
        retrieval.results = self._search(question, query_embedding, self.top_k, self.min_score)

        if not retrieval.results:
            retrieval.stage = RetrievalStage.NO_MATCH
            logger.info("no_relevant_chunks_found", min_score=self.min_score)
            return retrieval

        retrieval.stage = RetrievalStage.CONTEXT_BUILDING
        retrieval.context = CONTEXT_SEPARATOR.join(r.content for r in retrieval.results)
        retrieval.prompt = self.prompt_template.render(
            context=retrieval.context, question=question
        )

        logger.info(
            "retrieval_completed",
            results_returned=len(retrieval.results),
            top_score=retrieval.results[0].score,
            context_length=len(retrieval.context),
        )
        return retrieval

    async def answer(self, question: str) -> Answer:
        """Answer a question from the indexed documents.

        Args:
            question: User question

        Returns:
            Answer with the generated text and the chunks it was based on

        Raises:
            ValidationError: If the question is empty
            RetrievalFailed: If embedding, search or generation fails
        """
        retrieval = await self.retrieve(question)

        if not retrieval.matched:
            return Answer(
                question=question,
                answer=self.no_match_response,
                sources=[],
                stage=RetrievalStage.NO_MATCH,
            )

        try:
            text = await self.generator.generate(retrieval.prompt)
        except GenerationFailure as e:
            raise self._fail(RetrievalStage.GENERATING, e, question) from e

        logger.info("answer_generated", answer_length=len(text), sources=len(retrieval.results))
        return Answer(
            question=question,
            answer=text,
            sources=retrieval.results,
            stage=RetrievalStage.DONE,
        )

    async def answer_stream(self, question: str) -> AsyncIterator[str]:
        """Answer a question as a stream of text fragments.

        Uses the generator's ``generate_stream`` when it has one; otherwise
        the complete answer is yielded once. Validation and retrieval happen
        before the first fragment.

        Raises:
            ValidationError: If the question is empty
            RetrievalFailed: If embedding, search or generation fails
        """
        retrieval = await self.retrieve(question)

        if not retrieval.matched:
            yield self.no_match_response
            return

        try:
            if isinstance(self.generator, StreamingGenerationGateway):
                async for fragment in self.generator.generate_stream(retrieval.prompt):
                    yield fragment
            else:
                yield await self.generator.generate(retrieval.prompt)
        except GenerationFailure as e:
            raise self._fail(RetrievalStage.GENERATING, e, question) from e

        logger.info("answer_streamed", sources=len(retrieval.results))
