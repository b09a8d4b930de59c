"""Shared async connection to the Ollama HTTP API.

One ``OllamaClient`` is created per pipeline and reused by the embedder and
the chat model, so concurrent embedding calls share a single connection pool.
Close it with ``aclose()`` or use it as an async context manager.
"""
from typing import Any, Dict, List, Optional
import httpx
import structlog

from ragdemo import config

logger = structlog.get_logger()


class OllamaResponseError(ValueError):
    """Ollama answered, but not with a usable body."""


class OllamaClient:
    """Async client for the Ollama chat and embedding endpoints."""

    def __init__(
        self,
        base_url: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Ollama client.

        Args:
            base_url: Ollama API base URL (defaults to config.OLLAMA_BASE_URL)
            timeout: Request timeout in seconds (defaults to config.OLLAMA_TIMEOUT)
            transport: Optional httpx transport, used to stub the server in tests
        """
        self.base_url = (base_url or config.OLLAMA_BASE_URL).rstrip("/")
        self.timeout = timeout or config.OLLAMA_TIMEOUT
        self.transport = transport
        self._http: Optional[httpx.AsyncClient] = None

    @property
    def http(self) -> httpx.AsyncClient:
        """The underlying httpx client, opened on first use."""
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self.transport,
            )
        return self._http

    async def aclose(self) -> None:
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()
            logger.debug("ollama_client_closed", base_url=self.base_url)

    async def __aenter__(self) -> "OllamaClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self.http.post(path, json=payload)
            response.raise_for_status()
        except httpx.ConnectError as e:
            logger.error("ollama_connection_error", error=str(e), base_url=self.base_url)
            raise
        except httpx.HTTPStatusError as e:
            logger.error("ollama_http_error", path=path, status_code=e.response.status_code)
            raise

        data = response.json()
        if not isinstance(data, dict):
            raise OllamaResponseError(f"Expected a JSON object from {path}, got {type(data).__name__}")
        if "error" in data:
            raise OllamaResponseError(f"Ollama rejected request: {data['error']}")
        return data

    async def embed(self, text: str, model: str = None) -> List[float]:
        """Embed ``text`` with /api/embeddings.

        Raises:
            httpx.HTTPError: On transport or status errors
            OllamaResponseError: If the body holds no embedding
        """
        model = model or config.EMBEDDING_MODEL
        logger.debug("ollama_embedding_request", model=model, prompt_length=len(text))

        data = await self._post("/api/embeddings", {"model": model, "prompt": text})

        embedding = data.get("embedding")
        if not isinstance(embedding, list) or not embedding:
            raise OllamaResponseError("Empty embedding returned from Ollama")
        return embedding

    async def chat(
        self,
        messages: List[Dict[str, str]],
        model: str = None,
        temperature: Optional[float] = None,
    ) -> str:
        """Run a non-streaming chat completion and return the reply text.

        An empty reply is returned as "".

        Raises:
            httpx.HTTPError: On transport or status errors
            OllamaResponseError: If the body has no assistant message
        """
        model = model or config.CHAT_MODEL
        payload: Dict[str, Any] = {"model": model, "messages": messages, "stream": False}
        if temperature is not None:
            payload["options"] = {"temperature": temperature}

        logger.info(
            "ollama_chat_request",
            model=model,
            message_count=len(messages),
            temperature=temperature,
        )
        data = await self._post("/api/chat", payload)

        message = data.get("message")
        content = message.get("content", "") if isinstance(message, dict) else None
        if not isinstance(content, str):
            raise OllamaResponseError("Chat response has no message content")

        logger.info("ollama_chat_response", model=model, response_length=len(content))
        return content
