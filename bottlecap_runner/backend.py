"""Client for the local Ollama server.

Only two endpoints are used:
- GET  /api/tags  lists installed models (also used as a reachability probe)
- POST /api/chat  runs a one-shot chat completion

Requests are always sent with ``stream: false``; callers asking for a
streamed completion still get the whole answer in one response.
"""

import logging
from typing import Any, Optional, Sequence

import httpx

from .config import DEFAULT_OLLAMA_URL
from .protocol import ChatMessage, ChatOptions, Usage

logger = logging.getLogger(__name__)


class BackendError(Exception):
    """A backend call failed.

    ``status_code`` is set when the server answered with a non-2xx status.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class OllamaClient:
    """
    Thin async wrapper around the Ollama HTTP API.

    One ``httpx.AsyncClient`` is shared by all calls; close it with
    ``close()`` or by using the client as an async context manager.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_OLLAMA_URL,
        timeout: float = 300.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not base_url:
            raise ValueError("Ollama base URL is required")
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            limits=httpx.Limits(
                max_keepalive_connections=5,
                max_connections=10,
                keepalive_expiry=30.0,
            ),
        )

    async def close(self):
        """Close the HTTP client. Call on shutdown."""
        await self.client.aclose()

    async def __aenter__(self) -> "OllamaClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def probe(self) -> bool:
        """Check if the Ollama server is reachable. Never raises."""
        try:
            response = await self.client.get("/api/tags")
            return response.is_success
        except Exception as e:
            logger.debug(f"Ollama probe failed: {e}")
            return False

    async def list_models(self) -> list[str]:
        """List the names of installed models.

        Raises:
            BackendError: on transport failure, non-2xx status or a body
                that is not a model list.
        """
        try:
            response = await self.client.get("/api/tags")
        except httpx.HTTPError as e:
            raise BackendError(f"Ollama request failed: {e}") from e

        if not response.is_success:
            raise BackendError(
                f"Ollama error: {response.status_code}", status_code=response.status_code
            )

        try:
            data = response.json()
            return [str(m["name"]) for m in data["models"]]
        except (ValueError, KeyError, TypeError) as e:
            raise BackendError(f"Invalid model list from Ollama: {e}") from e

    async def chat_completion(
        self,
        model: str,
        messages: Sequence[ChatMessage],
        options: Optional[ChatOptions] = None,
    ) -> tuple[str, Usage]:
        """Run a non-streaming chat completion.

        Returns:
            Tuple of (content, usage). Content is empty when the response
            carries no message; missing token counters count as 0.

        Raises:
            BackendError: on transport failure, non-2xx status or an
                undecodable body.
        """
        options = options or ChatOptions()
        payload = self._build_chat_payload(model, messages, options)

        logger.debug(f"Ollama chat request: model={model}, {len(messages)} messages")

        try:
            response = await self.client.post("/api/chat", json=payload)
        except httpx.HTTPError as e:
            raise BackendError(f"Ollama request failed: {e}") from e

        if not response.is_success:
            raise BackendError(
                f"Ollama error: {response.status_code} {response.reason_phrase}".rstrip(),
                status_code=response.status_code,
            )

        try:
            data = response.json()
            message = data.get("message") or {}
            content = message.get("content") or ""
            usage = Usage(
                input_tokens=data.get("prompt_eval_count") or 0,
                output_tokens=data.get("eval_count") or 0,
            )
        except (ValueError, AttributeError, TypeError) as e:
            raise BackendError(f"Invalid chat response from Ollama: {e}") from e

        if not isinstance(content, str):
            raise BackendError(
                f"Invalid chat response from Ollama: content is {type(content).__name__}, not str"
            )

        return content, usage

    def _build_chat_payload(
        self,
        model: str,
        messages: Sequence[ChatMessage],
        options: ChatOptions,
    ) -> dict[str, Any]:
        """Map a chat request onto Ollama's /api/chat body."""
        ollama_options: dict[str, Any] = {}
        if options.temperature is not None:
            ollama_options["temperature"] = options.temperature
        if options.max_tokens is not None:
            ollama_options["num_predict"] = options.max_tokens

        return {
            "model": model,
            "messages": [m.model_dump() for m in messages],
            "stream": False,
            "options": ollama_options,
        }
