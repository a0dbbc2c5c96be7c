"""Tests for the retrieval pipeline."""
import asyncio

import pytest

from docrag.errors import RetrievalFailed, ValidationError
from docrag.models import NewChunk
from docrag.rag.gateways import StreamingGenerationGateway
from docrag.rag.prompts import PromptTemplate
from docrag.rag.retriever import NO_MATCH_RESPONSE, RetrievalPipeline, RetrievalStage
from fakes import (
    FailingEmbedder,
    FailingGenerator,
    SlowEmbedder,
    StreamingRecordingGenerator,
)

TEMPLATE = PromptTemplate("CTX[{context}] Q[{question}]")


async def index(store, embedder, texts, source_id="guide.txt"):
    chunks = []
    for sequence, text in enumerate(texts):
        embedding = await embedder.embed(text)
        chunks.append(
            NewChunk(text=text, source_id=source_id, sequence=sequence, embedding=tuple(embedding))
        )
    store.insert(chunks)


@pytest.fixture
async def indexed_store(store, embedder):
    await index(
        store,
        embedder,
        [
            "The TFSA contribution limit is $7,000.",
            "TFSA contribution room carries forward.",
            "Penguins live in Antarctica.",
        ],
    )
    return store


@pytest.mark.parametrize("question", ["", "   ", "\n\t"])
async def test_blank_question_is_rejected_before_any_work(store, embedder, generator, question):
    pipeline = RetrievalPipeline(store, embedder, generator)

    with pytest.raises(ValidationError):
        await pipeline.answer(question)

    assert embedder.calls == []
    assert generator.prompts == []


@pytest.mark.parametrize("top_k", [0, -1])
def test_non_positive_top_k_is_rejected(store, embedder, generator, top_k):
    with pytest.raises(ValidationError):
        RetrievalPipeline(store, embedder, generator, top_k=top_k)


async def test_no_match_returns_fixed_response_without_generating(store, embedder, generator):
    pipeline = RetrievalPipeline(store, embedder, generator)

    result = await pipeline.answer("What is the TFSA contribution limit?")

    assert result.answer == NO_MATCH_RESPONSE
    assert result.stage is RetrievalStage.NO_MATCH
    assert result.sources == []
    assert generator.prompts == []


async def test_unrelated_question_falls_below_threshold(indexed_store, embedder, generator):
    pipeline = RetrievalPipeline(indexed_store, embedder, generator, min_score=0.7)

    result = await pipeline.answer("How tall are giraffes?")

    assert result.stage is RetrievalStage.NO_MATCH
    assert generator.prompts == []


async def test_answer_uses_ranked_context(indexed_store, embedder, generator):
    pipeline = RetrievalPipeline(
        indexed_store, embedder, generator, min_score=0.5, prompt_template=TEMPLATE
    )

    result = await pipeline.answer("What is the TFSA contribution limit?")

    assert result.stage is RetrievalStage.DONE
    assert [s.content for s in result.sources] == [
        "The TFSA contribution limit is $7,000.",
        "TFSA contribution room carries forward.",
    ]
    assert generator.prompts == [
        "CTX[The TFSA contribution limit is $7,000.\n\n"
        "TFSA contribution room carries forward.] "
        "Q[What is the TFSA contribution limit?]"
    ]


async def test_answer_is_generator_output_verbatim(indexed_store, embedder, generator):
    pipeline = RetrievalPipeline(indexed_store, embedder, generator, min_score=0.7)

    result = await pipeline.answer("What is the TFSA contribution limit?")

    assert result.answer == "Based on the documents: The TFSA contribution limit is $7,000."
    assert [s.source for s in result.sources] == ["guide.txt"]
    assert result.sources[0].score > 0.7


async def test_retrieve_never_generates(indexed_store, embedder, generator):
    pipeline = RetrievalPipeline(indexed_store, embedder, generator, min_score=0.5)

    retrieval = await pipeline.retrieve("TFSA contribution limit")

    assert retrieval.stage is RetrievalStage.CONTEXT_BUILDING
    assert len(retrieval.results) == 2
    assert "The TFSA contribution limit is $7,000." in retrieval.prompt
    assert generator.prompts == []


async def test_top_k_bounds_the_context(indexed_store, embedder, generator):
    pipeline = RetrievalPipeline(indexed_store, embedder, generator, top_k=1, min_score=0.0)

    retrieval = await pipeline.retrieve("TFSA contribution limit")

    assert [r.content for r in retrieval.results] == ["The TFSA contribution limit is $7,000."]


async def test_embedding_failure_is_reported_with_stage(store, generator):
    pipeline = RetrievalPipeline(store, FailingEmbedder(), generator)

    with pytest.raises(RetrievalFailed) as exc_info:
        await pipeline.answer("anything")

    assert exc_info.value.stage is RetrievalStage.EMBEDDING
    assert exc_info.value.kind == "EmbeddingFailure"
    assert generator.prompts == []


async def test_search_failure_is_reported_with_stage(indexed_store, generator):
    class WrongDimensionEmbedder:
        async def embed(self, text):
            return [1.0, 0.0]

    pipeline = RetrievalPipeline(indexed_store, WrongDimensionEmbedder(), generator)

    with pytest.raises(RetrievalFailed) as exc_info:
        await pipeline.answer("TFSA")

    assert exc_info.value.stage is RetrievalStage.SEARCHING
    assert exc_info.value.kind == "DimensionMismatchError"


async def test_empty_embedding_is_an_embedding_failure(store, generator):
    class EmptyEmbedder:
        async def embed(self, text):
            return []

    pipeline = RetrievalPipeline(store, EmptyEmbedder(), generator)

    with pytest.raises(RetrievalFailed) as exc_info:
        await pipeline.answer("anything")

    assert exc_info.value.stage is RetrievalStage.EMBEDDING


async def test_generation_failure_is_reported_with_stage(indexed_store, embedder):
    generator = FailingGenerator()
    pipeline = RetrievalPipeline(indexed_store, embedder, generator, min_score=0.5)

    with pytest.raises(RetrievalFailed) as exc_info:
        await pipeline.answer("TFSA contribution limit")

    assert exc_info.value.stage is RetrievalStage.GENERATING
    assert exc_info.value.kind == "GenerationFailure"
    assert len(generator.prompts) == 1
    assert "unavailable" not in str(exc_info.value)


async def test_cancellation_abandons_the_request(store, generator):
    embedder = SlowEmbedder()
    pipeline = RetrievalPipeline(store, embedder, generator)

    task = asyncio.create_task(pipeline.answer("TFSA contribution limit"))
    await embedder.started.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert generator.prompts == []
    assert len(store) == 0


async def test_requests_do_not_share_context(indexed_store, embedder, generator):
    pipeline = RetrievalPipeline(
        indexed_store, embedder, generator, min_score=0.5, prompt_template=TEMPLATE
    )

    await pipeline.answer("TFSA contribution limit")
    await pipeline.answer("Where do penguins live?")

    assert "TFSA" not in generator.prompts[1]
    assert "Penguins live in Antarctica." in generator.prompts[1]


async def test_stream_concatenation_matches_answer(indexed_store, embedder):
    generator = StreamingRecordingGenerator()
    pipeline = RetrievalPipeline(indexed_store, embedder, generator, min_score=0.5)

    fragments = [f async for f in pipeline.answer_stream("TFSA contribution limit")]
    complete = await pipeline.answer("TFSA contribution limit")

    assert len(fragments) > 1
    assert "".join(fragments) == complete.answer


async def test_stream_falls_back_to_complete_answer(indexed_store, embedder, generator):
    pipeline = RetrievalPipeline(indexed_store, embedder, generator, min_score=0.5)

    fragments = [f async for f in pipeline.answer_stream("TFSA contribution limit")]

    assert len(fragments) == 1
    assert fragments[0].startswith("Based on the documents: ")


async def test_stream_no_match_yields_fixed_response(store, embedder, generator):
    pipeline = RetrievalPipeline(store, embedder, generator)

    fragments = [f async for f in pipeline.answer_stream("anything at all")]

    assert fragments == [NO_MATCH_RESPONSE]


async def test_search_ignores_the_answer_threshold(indexed_store, embedder, generator):
    pipeline = RetrievalPipeline(indexed_store, embedder, generator, min_score=0.7)

    results = await pipeline.search("TFSA contribution limit", top_k=3)

    assert [r.content for r in results] == [
        "The TFSA contribution limit is $7,000.",
        "TFSA contribution room carries forward.",
        "Penguins live in Antarctica.",
    ]
    assert generator.prompts == []


@pytest.mark.parametrize("top_k", [0, -1, 10_000])
async def test_search_rejects_top_k_out_of_range(indexed_store, embedder, generator, top_k):
    pipeline = RetrievalPipeline(indexed_store, embedder, generator)
    calls = len(embedder.calls)

    with pytest.raises(ValidationError):
        await pipeline.search("TFSA", top_k=top_k)

    assert len(embedder.calls) == calls


def test_streaming_generators_match_the_streaming_gateway():
    assert isinstance(StreamingRecordingGenerator(), StreamingGenerationGateway)
    assert not isinstance(FailingGenerator(), StreamingGenerationGateway)
