"""Tests for token-window chunking."""
import pytest

from docrag.errors import ValidationError
from docrag.rag.chunker import ChunkerConfig, TextChunker, plan_windows, split, tokenize


def words(count: int) -> str:
    return " ".join(f"w{i}" for i in range(count))


SMALL = ChunkerConfig(target_size=10, overlap=2, min_size=3, max_size=20)


def test_tokenize_keeps_trailing_whitespace():
    assert tokenize("one  two\nthree") == ["one  ", "two\n", "three"]
    assert "".join(tokenize("  leading is dropped ")) == "leading is dropped "


def test_plan_windows_advances_by_target_minus_overlap():
    assert plan_windows(25, SMALL) == [(0, 10), (8, 18), (16, 25)]


def test_short_tail_is_merged_into_previous_chunk():
    assert plan_windows(19, SMALL) == [(0, 10), (8, 19)]


def test_tail_merge_never_exceeds_max_size():
    capped = ChunkerConfig(target_size=10, overlap=2, min_size=3, max_size=10)

    spans = plan_windows(19, capped)

    assert spans == [(0, 10), (8, 18), (9, 19)]
    assert all(end - start <= capped.max_size for start, end in spans)


def test_text_shorter_than_target_is_one_chunk():
    chunks = TextChunker(SMALL).chunk_text("just a few words")

    assert len(chunks) == 1
    assert chunks[0].content == "just a few words"
    assert chunks[0].chunk_index == 0


@pytest.mark.parametrize("text", ["", "   \n\t  ", None])
def test_blank_text_produces_no_chunks(text):
    assert TextChunker(SMALL).chunk_text(text) == []


@pytest.mark.parametrize("count", [1, 9, 10, 11, 19, 25, 57, 100])
def test_chunks_reconstruct_the_document(count):
    chunker = TextChunker(SMALL)
    text = words(count)

    chunks = chunker.chunk_text(text)

    rebuilt = []
    for chunk in chunks:
        rebuilt[chunk.token_start:] = chunk.content.split()
    assert rebuilt == text.split()
    assert [c.chunk_index for c in chunks] == list(range(len(chunks)))


def test_consecutive_chunks_share_overlap_tokens():
    chunks = TextChunker(SMALL).chunk_text(words(25))

    first, second = chunks[0].content.split(), chunks[1].content.split()
    assert first[-2:] == second[:2]


def test_chunk_sizes_respect_bounds():
    chunker = TextChunker(SMALL)

    chunks = chunker.chunk_text(words(203))

    assert all(c.token_count <= SMALL.max_size for c in chunks)
    assert all(c.token_count >= SMALL.min_size for c in chunks)


def test_chunking_is_deterministic():
    text = words(77)

    assert split(text, SMALL) == split(text, SMALL)


def test_get_chunk_stats():
    chunker = TextChunker(SMALL)
    stats = chunker.get_chunk_stats(chunker.chunk_text(words(25)))

    assert stats["chunk_count"] == 3
    assert stats["max_chunk_size"] == 10
    assert stats["min_chunk_size"] == 9
    assert chunker.get_chunk_stats([])["chunk_count"] == 0


@pytest.mark.parametrize(
    "kwargs",
    [
        {"target_size": 0},
        {"target_size": 10, "overlap": 10},
        {"target_size": 10, "overlap": -1},
        {"target_size": 10, "overlap": 2, "min_size": 0},
        {"target_size": 10, "overlap": 2, "min_size": 11},
        {"target_size": 10, "overlap": 2, "min_size": 3, "max_size": 9},
    ],
)
def test_inconsistent_config_is_rejected(kwargs):
    with pytest.raises(ValidationError):
        TextChunker(ChunkerConfig(**kwargs))


def test_default_config_is_valid():
    assert TextChunker().config == ChunkerConfig()
