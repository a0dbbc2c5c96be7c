"""Quart application exposing ingestion and question answering over HTTP."""
import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError
from quart import Blueprint, Quart, Response, current_app, jsonify, request
from quart_cors import cors

from docrag import config
from docrag.errors import RetrievalFailed, ValidationError
from docrag.llm_client import OllamaClient
from docrag.rag.chunker import ChunkerConfig
from docrag.rag.gateways import EmbeddingGateway, GenerationGateway
from docrag.rag.ingest import IngestPipeline
from docrag.rag.parsers import DocumentParser
from docrag.rag.retriever import RetrievalPipeline
from docrag.rag.store import VectorStore
from docrag.schemas import (
    AskRequest,
    AskResponse,
    IngestResponse,
    RetrievedDocument,
    RetrieveResponse,
    SearchRequest,
    SearchResponse,
    Source,
)

logger = structlog.get_logger()

RETRIEVAL_FAILED_MESSAGE = "The answer service is temporarily unavailable. Please try again."


def configure_logging(level: Optional[str] = None) -> None:
    """Configure structured JSON logging on top of the stdlib logger."""
    logging.basicConfig(format="%(message)s", level=(level or config.LOG_LEVEL).upper())
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


@dataclass
class Services:
    """Collaborators shared by every request of one app instance."""
    store: VectorStore
    embedder: EmbeddingGateway
    generator: GenerationGateway
    ingest_pipeline: IngestPipeline
    retrieval_pipeline: RetrievalPipeline
    documents_dir: Path
    ingest_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


def _services() -> Services:
    return current_app.extensions["docrag"]


async def _ask_request() -> AskRequest:
    data = await request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return AskRequest.model_validate(data)


def _model_available(name: str, models: List[str]) -> bool:
    return name in models or f"{name}:latest" in models


api = cors(Blueprint("api", __name__), allow_origin=config.CORS_ALLOW_ORIGIN)


@api.route("/ingest", methods=["POST"])
async def ingest():
    """Ingest every document in the documents directory.

    Query parameters:
        rebuild: "true" to clear the store first

    Returns JSON:
    {
        "message": "Successfully ingested 42 document chunks",
        "documentsIngested": 42
    }
    """
    services = _services()
    rebuild = request.args.get("rebuild", "false").lower() in ("1", "true", "yes")

    logger.info("ingest_request_received", rebuild=rebuild)

    async with services.ingest_lock:
        count = await services.ingest_pipeline.ingest(services.documents_dir, rebuild=rebuild)

    response = IngestResponse(
        message=f"Successfully ingested {count} document chunks",
        documents_ingested=count,
    )
    return jsonify(response.model_dump(by_alias=True))


@api.route("/ask", methods=["POST"])
async def ask():
    """Answer a question from the indexed documents.

    Expects JSON body:
    {
        "question": "What is the contribution limit?"
    }

    Returns JSON:
    {
        "question": "...",
        "answer": "...",
        "sources": [{"id": ..., "content": ..., "source": ..., "sequence": ..., "similarity": ...}]
    }
    """
    body = await _ask_request()

    logger.info(
        "ask_request_received",
        question_length=len(body.question),
        question_preview=body.question[:100],
    )

    result = await _services().retrieval_pipeline.answer(body.question)

    response = AskResponse(
        question=result.question,
        answer=result.answer,
        sources=[Source.from_result(r) for r in result.sources],
    )
    return jsonify(response.model_dump())


@api.route("/ask/stream", methods=["POST"])
async def ask_stream():
    """Answer a question as a plain-text stream."""
    body = await _ask_request()

    logger.info("ask_stream_request_received", question_length=len(body.question))

    stream = _services().retrieval_pipeline.answer_stream(body.question)
    # Retrieval errors surface here, before the response has started
    first = await anext(stream, "")

    async def generate():
        yield first
        try:
            async for fragment in stream:
                yield fragment
        except RetrievalFailed as e:
            logger.error("answer_stream_aborted", stage=e.stage.value, error_type=e.kind)

    return Response(generate(), mimetype="text/plain")


@api.route("/retrieve", methods=["GET"])
async def retrieve():
    """Show the chunks that would be used to answer a question.

    Usage:
        GET /retrieve?question=contribution+limit
    """
    body = AskRequest.model_validate({"question": request.args.get("question", "")})

    retrieval = await _services().retrieval_pipeline.retrieve(body.question)

    response = RetrieveResponse(
        question=body.question,
        documents=[
            RetrievedDocument(content=r.content, source=r.source, similarity=r.score)
            for r in retrieval.results
        ],
    )
    return jsonify(response.model_dump())


@api.route("/search", methods=["GET"])
async def search():
    """Rank indexed chunks against a query, without a similarity threshold.

    Usage:
        GET /search?query=contribution+limit&topK=5

    Returns JSON:
    {
        "query": "...",
        "results": [{"content": ..., "source": ..., "similarity": ...}],
        "count": 1
    }
    """
    params = SearchRequest.model_validate(
        {"query": request.args.get("query", ""), "topK": request.args.get("topK")}
    )

    logger.info("search_request_received", query_length=len(params.query), top_k=params.top_k)

    results = await _services().retrieval_pipeline.search(params.query, top_k=params.top_k)

    response = SearchResponse(
        query=params.query,
        results=[
            RetrievedDocument(content=r.content, source=r.source, similarity=r.score)
            for r in results
        ],
        count=len(results),
    )
    return jsonify(response.model_dump())


@api.route("/health")
async def health():
    """Service descriptor."""
    return jsonify({"status": "UP", "service": config.SERVICE_NAME})


async def health_live():
    """Liveness probe - check if app is running."""
    return jsonify({"status": "alive"}), 200


async def health_ready():
    """Readiness probe - check if app can serve requests.

    Checks:
    - Ollama service is reachable
    - Required models are available
    - Vector store statistics
    """
    services = _services()
    checks = {
        "status": "healthy",
        "ollama": False,
        "models": False,
        "store": services.store.get_stats(),
    }

    list_models = getattr(services.generator, "list_models", None)
    if list_models is None:
        checks["ollama"] = None
        checks["models"] = None
        return jsonify(checks), 200

    try:
        models = await list_models()
    except Exception as e:
        logger.error("health_check_failed", error=str(e), error_type=type(e).__name__)
        checks["status"] = "unhealthy"
        checks["error"] = "Ollama is unreachable"
        return jsonify(checks), 503

    checks["ollama"] = True
    missing = [
        name
        for name in (config.CHAT_MODEL, config.EMBEDDING_MODEL)
        if not _model_available(name, models)
    ]
    if missing:
        checks["status"] = "unhealthy"
        checks["error"] = f"Missing models: {', '.join(missing)}"
    else:
        checks["models"] = True

    status_code = 200 if checks["status"] == "healthy" else 503
    return jsonify(checks), status_code


async def handle_validation_error(error: ValidationError):
    logger.warning("request_rejected", error=str(error))
    return jsonify({"error": str(error)}), 400


async def handle_request_model_error(error: PydanticValidationError):
    message = "; ".join(err["msg"] for err in error.errors())
    logger.warning("request_rejected", error=message)
    return jsonify({"error": message}), 400


async def handle_retrieval_failed(error: RetrievalFailed):
    logger.error("retrieval_request_failed", stage=error.stage.value, error_type=error.kind)
    return jsonify({"error": RETRIEVAL_FAILED_MESSAGE}), 502


async def not_found(error):
    """Handle 404 errors."""
    return jsonify({"error": "Not found"}), 404


async def internal_error(error):
    """Handle 500 errors."""
    original = getattr(error, "original_exception", None) or error
    logger.error(
        "internal_server_error",
        error=str(original),
        error_type=type(original).__name__,
    )
    return jsonify({"error": "An error occurred processing your request. Please try again."}), 500


def create_app(
    store: Optional[VectorStore] = None,
    embedder: Optional[EmbeddingGateway] = None,
    generator: Optional[GenerationGateway] = None,
    parser: Optional[DocumentParser] = None,
    documents_dir: Optional[Path] = None,
    chunker_config: Optional[ChunkerConfig] = None,
    top_k: int = config.RETRIEVAL_TOP_K,
    min_score: float = config.RETRIEVAL_MIN_SCORE,
    api_prefix: Optional[str] = None,
) -> Quart:
    """Build the application and its pipelines.

    Args:
        store: Vector store (default persists under config.STORE_DIR)
        embedder: Embedding gateway (default OllamaClient)
        generator: Generation gateway (default OllamaClient)
        parser: Document parser
        documents_dir: Directory scanned by POST /ingest
        chunker_config: Chunk sizing for ingestion
        top_k: Maximum chunks per answer
        min_score: Minimum similarity for a chunk to be used
        api_prefix: URL prefix for the API routes (default config.API_PREFIX)

    Returns:
        Configured Quart app
    """
    if embedder is None or generator is None:
        ollama = OllamaClient()
        embedder = embedder or ollama
        generator = generator or ollama

    store = store if store is not None else VectorStore(config.STORE_DIR)

    app = Quart(__name__)
    app.extensions["docrag"] = Services(
        store=store,
        embedder=embedder,
        generator=generator,
        ingest_pipeline=IngestPipeline(
            store, embedder, parser=parser, chunker_config=chunker_config
        ),
        retrieval_pipeline=RetrievalPipeline(
            store, embedder, generator, top_k=top_k, min_score=min_score
        ),
        documents_dir=Path(documents_dir or config.DOCUMENTS_DIR),
    )

    prefix = config.API_PREFIX if api_prefix is None else api_prefix
    app.register_blueprint(api, url_prefix=prefix.rstrip("/") or None)
    app.add_url_rule("/health/live", view_func=health_live)
    app.add_url_rule("/health/ready", view_func=health_ready)

    app.register_error_handler(ValidationError, handle_validation_error)
    app.register_error_handler(PydanticValidationError, handle_request_model_error)
    app.register_error_handler(RetrievalFailed, handle_retrieval_failed)
    app.register_error_handler(404, not_found)
    app.register_error_handler(500, internal_error)

    @app.before_serving
    async def load_store():
        # A corrupt store aborts startup
        await asyncio.to_thread(store.init_or_load)

    logger.info(
        "app_created",
        api_prefix=prefix,
        documents_dir=str(app.extensions["docrag"].documents_dir),
        index_dir=str(store.index_dir) if store.index_dir else None,
    )
    return app


configure_logging()
app = create_app()


if __name__ == "__main__":
    # For development - serve with `hypercorn docrag.main:app` in production
    app.run(host="0.0.0.0", port=5000, debug=True)
