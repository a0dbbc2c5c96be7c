"""Ollama client implementing the embedding and generation gateways."""
import json
from typing import AsyncIterator, Dict, List, Optional

import httpx
import structlog

from docrag import config
from docrag.errors import EmbeddingFailure, GenerationFailure

logger = structlog.get_logger()


class OllamaClient:
    """Async client for the Ollama embeddings and chat APIs."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        chat_model: Optional[str] = None,
        embedding_model: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Ollama client.

        Args:
            base_url: Ollama API base URL (defaults to config.OLLAMA_BASE_URL)
            chat_model: Model used for answers (defaults to config.CHAT_MODEL)
            embedding_model: Model used for embeddings (defaults to config.EMBEDDING_MODEL)
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = (base_url or config.OLLAMA_BASE_URL).rstrip("/")
        self.chat_model = chat_model or config.CHAT_MODEL
        self.embedding_model = embedding_model or config.EMBEDDING_MODEL
        self.timeout = timeout if timeout is not None else config.OLLAMA_TIMEOUT
        self._transport = transport

    def _client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout if timeout is not None else self.timeout,
            transport=self._transport,
        )

    def _chat_payload(self, prompt: str, stream: bool) -> Dict:
        return {
            "model": self.chat_model,
            "messages": [{"role": "user", "content": prompt}],
            "stream": stream,
        }

    async def embed(self, text: str) -> List[float]:
        """Generate the embedding for a text.

        Args:
            text: Text to embed

        Returns:
            Embedding vector

        Raises:
            EmbeddingFailure: On transport errors, error statuses or malformed replies
        """
        payload = {"model": self.embedding_model, "prompt": text}

        try:
            async with self._client() as client:
                logger.debug(
                    "ollama_embedding_request",
                    model=self.embedding_model,
                    prompt_length=len(text),
                )
                response = await client.post("/api/embeddings", json=payload)
                response.raise_for_status()
                data = response.json()

        except httpx.HTTPError as e:
            logger.error("ollama_embedding_error", error=str(e), error_type=type(e).__name__)
            raise EmbeddingFailure(f"Embedding request failed: {type(e).__name__}") from e
        except ValueError as e:
            logger.error("ollama_embedding_bad_response", error=str(e))
            raise EmbeddingFailure("Embedding response was not valid JSON") from e

        embedding = data.get("embedding") if isinstance(data, dict) else None
        if not embedding or not isinstance(embedding, list):
            raise EmbeddingFailure("Empty embedding returned from Ollama")

        logger.debug(
            "ollama_embedding_response",
            model=self.embedding_model,
            dimension=len(embedding),
        )
        return embedding

    async def generate(self, prompt: str) -> str:
        """Send a single-message chat completion request.

        Args:
            prompt: Fully assembled prompt

        Returns:
            The assistant's answer text

        Raises:
            GenerationFailure: On transport errors, error statuses or empty replies
        """
        try:
            async with self._client() as client:
                logger.info(
                    "ollama_chat_request",
                    model=self.chat_model,
                    prompt_length=len(prompt),
                    stream=False,
                )
                response = await client.post(
                    "/api/chat", json=self._chat_payload(prompt, stream=False)
                )
                response.raise_for_status()
                data = response.json()

        except httpx.HTTPError as e:
            logger.error("ollama_chat_error", error=str(e), error_type=type(e).__name__)
            raise GenerationFailure(f"Chat request failed: {type(e).__name__}") from e
        except ValueError as e:
            logger.error("ollama_chat_bad_response", error=str(e))
            raise GenerationFailure("Chat response was not valid JSON") from e

        message = data.get("message") if isinstance(data, dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not content:
            raise GenerationFailure("Empty response from Ollama")

        logger.info(
            "ollama_chat_response",
            model=self.chat_model,
            response_length=len(content),
        )
        return content

    async def generate_stream(self, prompt: str) -> AsyncIterator[str]:
        """Stream a chat completion as text fragments.

        Ollama replies with one JSON object per line; each carries a
        ``message.content`` fragment until ``done`` is true.

        Raises:
            GenerationFailure: On transport errors, error statuses or malformed lines
        """
        try:
            async with self._client() as client:
                async with client.stream(
                    "POST", "/api/chat", json=self._chat_payload(prompt, stream=True)
                ) as response:
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        if not line.strip():
                            continue
                        try:
                            data = json.loads(line)
                        except json.JSONDecodeError as e:
                            raise GenerationFailure("Malformed streaming chunk from Ollama") from e
                        if data.get("error"):
                            raise GenerationFailure("Ollama reported a streaming error")
                        fragment = (data.get("message") or {}).get("content", "")
                        if fragment:
                            yield fragment
                        if data.get("done"):
                            break

        except httpx.HTTPError as e:
            logger.error("ollama_stream_error", error=str(e), error_type=type(e).__name__)
            raise GenerationFailure(f"Streaming chat request failed: {type(e).__name__}") from e

    async def list_models(self) -> List[str]:
        """List all available Ollama models.

        Raises:
            httpx.HTTPError: On API errors
        """
        try:
            async with self._client(timeout=5.0) as client:
                response = await client.get("/api/tags")
                response.raise_for_status()
                data = response.json()
                return [m["name"] for m in data.get("models", [])]
        except httpx.HTTPError as e:
            logger.error("ollama_list_models_error", error=str(e))
            raise
