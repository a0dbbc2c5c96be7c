"""End-to-end tests: documents on disk to answers over HTTP, across restarts."""
import pytest

from docrag.errors import FormatError
from docrag.main import create_app
from docrag.rag.chunker import ChunkerConfig
from docrag.rag.store import VectorStore
from fakes import BagOfWordsEmbedder, KeywordEmbedder, RecordingGenerator

QUESTION = "What is the TFSA contribution limit?"


@pytest.fixture
def documents(documents_dir):
    (documents_dir / "tfsa.md").write_text(
        "---\ntitle: TFSA basics\n---\nThe TFSA contribution limit is $7,000.",
        encoding="utf-8",
    )
    (documents_dir / "wildlife.txt").write_text(
        "Penguins live in Antarctica and eat fish.", encoding="utf-8"
    )
    return documents_dir


async def test_ingest_restart_and_answer(documents, tmp_path):
    store_dir = tmp_path / "store"
    embedder = BagOfWordsEmbedder()

    first = create_app(
        store=VectorStore(store_dir),
        embedder=embedder,
        generator=RecordingGenerator(),
        documents_dir=documents,
    )
    async with first.test_app() as test_app:
        response = await test_app.test_client().post("/ingest")
        assert (await response.get_json())["documentsIngested"] == 2

    generator = RecordingGenerator()
    restarted = create_app(
        store=VectorStore(store_dir),
        embedder=embedder,
        generator=generator,
        documents_dir=documents,
    )
    async with restarted.test_app() as test_app:
        client = test_app.test_client()
        response = await client.post("/ask", json={"question": QUESTION})
        data = await response.get_json()

    assert response.status_code == 200
    assert data["answer"] == "Based on the documents: The TFSA contribution limit is $7,000."
    assert [s["source"] for s in data["sources"]] == ["tfsa.md"]
    assert "The TFSA contribution limit is $7,000." in generator.prompts[0]
    assert "Penguins" not in generator.prompts[0]


async def test_corrupt_store_aborts_startup(tmp_path, documents):
    store = VectorStore(tmp_path / "store")
    store.index_dir.mkdir()
    (store.index_dir / VectorStore.CHUNKS_FILE).write_text("{}", encoding="utf-8")
    (store.index_dir / VectorStore.EMBEDDINGS_FILE).write_bytes(b"garbage")

    app = create_app(
        store=store,
        embedder=BagOfWordsEmbedder(),
        generator=RecordingGenerator(),
        documents_dir=documents,
    )

    with pytest.raises(FormatError):
        await app.startup()


async def test_small_document_answers_a_paraphrased_question(tmp_path, documents_dir):
    (documents_dir / "limits.txt").write_text("The limit is $7,000.", encoding="utf-8")
    embedder = KeywordEmbedder(
        {"limits": ["limit", "limits", "maximum"], "wildlife": ["penguin", "penguins"]}
    )
    app = create_app(
        store=VectorStore(tmp_path / "store"),
        embedder=embedder,
        generator=RecordingGenerator(),
        documents_dir=documents_dir,
        chunker_config=ChunkerConfig(target_size=50, overlap=5),
    )

    async with app.test_app() as test_app:
        client = test_app.test_client()
        ingested = await (await client.post("/ingest")).get_json()
        response = await client.post("/ask", json={"question": "What is the limit?"})
        data = await response.get_json()

    assert ingested["documentsIngested"] == 1
    assert response.status_code == 200
    assert data["sources"][0]["similarity"] > 0.7
    assert "$7,000" in data["answer"]
