"""Pytest configuration and shared fixtures."""
from pathlib import Path

import pytest

from docrag.rag.store import VectorStore
from fakes import BagOfWordsEmbedder, RecordingGenerator


@pytest.fixture
def embedder() -> BagOfWordsEmbedder:
    return BagOfWordsEmbedder()


@pytest.fixture
def generator() -> RecordingGenerator:
    return RecordingGenerator()


@pytest.fixture
def store(tmp_path: Path) -> VectorStore:
    """Empty store persisting under a temporary directory."""
    return VectorStore(tmp_path / "store")


@pytest.fixture
def documents_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "documents"
    directory.mkdir()
    return directory
