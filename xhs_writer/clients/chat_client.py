"""
Chat-completion API client for xhs-writer.

Asynchronous client for an OpenAI-compatible ``/chat/completions``
endpoint. One client serves every backend; the backend is the model
name passed per call. Timeouts are supplied per call by the request
orchestrator.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

import aiohttp
import orjson

from ..config import AIConfig
from ..utils.exceptions import (
    APIError,
    AuthError,
    ConfigurationError,
    ParsingError,
    RateLimitError,
    ServerError,
    TransportError,
)


logger = logging.getLogger(__name__)

SSE_DATA_PREFIX = "data:"
SSE_DONE = "[DONE]"


@dataclass
class ChatClientConfig:
    """Configuration for the chat-completion client.

    Attributes:
        base_url: API base URL (``/chat/completions`` is appended)
        api_key: Bearer token
        temperature: Sampling temperature
        connect_timeout: Connection establishment timeout in seconds
    """

    base_url: str
    api_key: str
    temperature: float = 0.4
    connect_timeout: float = 10.0

    @classmethod
    def from_env(cls) -> "ChatClientConfig":
        """Create configuration from environment variables."""
        return cls(
            base_url=AIConfig.API_URL,
            api_key=AIConfig.API_KEY,
            temperature=AIConfig.TEMPERATURE,
        )

    @property
    def endpoint(self) -> str:
        return f"{self.base_url.rstrip('/')}/chat/completions"


class ChatClient:
    """Asynchronous OpenAI-compatible chat client.

    Features:
    - JSON-mode completions (``complete``)
    - Server-sent-event streaming (``stream``)
    - Status classification shared with the search client

    Example:
        ```python
        async with ChatClient(ChatClientConfig.from_env()) as client:
            text = await client.complete(prompt, model="gemini-2.5-flash", timeout=45)
            async for piece in client.stream(prompt, model="gemini-2.5-flash", timeout=120):
                print(piece, end="")
        ```
    """

    def __init__(self, config: Optional[ChatClientConfig] = None):
        self.config = config or ChatClientConfig.from_env()
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> "ChatClient":
        """Enter async context manager."""
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context manager."""
        await self.close()

    async def _ensure_session(self) -> None:
        """Ensure aiohttp session is initialized."""
        if not self.config.base_url or not self.config.api_key:
            raise ConfigurationError(
                "Chat API is not configured",
                {"hint": "set THIRD_PARTY_API_URL and THIRD_PARTY_API_KEY"},
            )
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=None, sock_connect=self.config.connect_timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
            logger.debug("Created new aiohttp session")

    async def close(self) -> None:
        """Close aiohttp session and cleanup resources."""
        if self._session and not self._session.closed:
            await self._session.close()
            logger.debug("Closed aiohttp session")

    def _build_payload(self, prompt: str, model: str, stream: bool, json_mode: bool) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self.config.temperature,
            "stream": stream,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}
        return payload

    async def _raise_for_status(self, response: aiohttp.ClientResponse, model: str) -> None:
        """Map error statuses onto the exception hierarchy.

        Raises:
            AuthError: 401/403
            RateLimitError: 429
            ServerError: 5xx
            APIError: Other 4xx
        """
        status = response.status
        if status < 400:
            return

        body = await response.text()
        params = {"model": model}
        if status in (401, 403):
            raise AuthError(
                f"Authentication failed: {status}",
                endpoint=self.config.endpoint,
                status_code=status,
                response_body=body,
                request_params=params,
            )
        if status == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitError(
                "Rate limit exceeded",
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
                endpoint=self.config.endpoint,
                status_code=status,
                response_body=body,
                request_params=params,
            )
        if status >= 500:
            raise ServerError(
                f"Server error: {status}",
                endpoint=self.config.endpoint,
                status_code=status,
                response_body=body,
                request_params=params,
            )
        raise APIError(
            f"Request failed: {status}",
            endpoint=self.config.endpoint,
            status_code=status,
            response_body=body,
            request_params=params,
        )

    async def complete(
        self,
        prompt: str,
        model: str,
        timeout: Optional[float] = None,
        json_mode: bool = True,
    ) -> str:
        """Request a single non-streamed completion.

        Args:
            prompt: User prompt
            model: Backend (model) identifier
            timeout: Total timeout for this call in seconds
            json_mode: Request a JSON object response

        Returns:
            The message content of the first choice ("" when absent)

        Raises:
            TransportError: Timeout or connection failure
            AuthError / RateLimitError / ServerError / APIError: HTTP errors
            ParsingError: Response body is not a completion object
        """
        await self._ensure_session()
        payload = self._build_payload(prompt, model, stream=False, json_mode=json_mode)

        logger.debug(f"POST {self.config.endpoint} model={model}", extra={"stream": False})

        try:
            async with self._session.post(
                self.config.endpoint,
                headers=self._headers(),
                data=orjson.dumps(payload),
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as response:
                await self._raise_for_status(response, model)
                body = await response.read()
        except asyncio.TimeoutError as e:
            raise TransportError(
                f"Request timed out after {timeout}s",
                endpoint=self.config.endpoint,
                request_params={"model": model},
            ) from e
        except aiohttp.ClientError as e:
            raise TransportError(
                f"HTTP client error: {str(e)}",
                endpoint=self.config.endpoint,
                request_params={"model": model},
            ) from e

        try:
            data = orjson.loads(body)
            return data["choices"][0]["message"].get("content") or ""
        except (orjson.JSONDecodeError, KeyError, IndexError, TypeError, AttributeError) as e:
            raise ParsingError(
                "Malformed completion response",
                source=model,
                parser="json",
                raw_data=body.decode("utf-8", errors="replace"),
            ) from e

    async def stream(
        self,
        prompt: str,
        model: str,
        timeout: Optional[float] = None,
    ) -> AsyncIterator[str]:
        """Stream completion text deltas as they arrive.

        Args:
            prompt: User prompt
            model: Backend (model) identifier
            timeout: Total timeout for the whole stream in seconds

        Yields:
            Non-empty content deltas

        Raises:
            TransportError: Timeout or connection failure
            AuthError / RateLimitError / ServerError / APIError: HTTP errors
        """
        await self._ensure_session()
        payload = self._build_payload(prompt, model, stream=True, json_mode=False)

        logger.debug(f"POST {self.config.endpoint} model={model}", extra={"stream": True})

        try:
            async with self._session.post(
                self.config.endpoint,
                headers=self._headers(),
                data=orjson.dumps(payload),
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as response:
                await self._raise_for_status(response, model)
                async for raw_line in response.content:
                    line = raw_line.decode("utf-8", errors="replace").strip()
                    if not line.startswith(SSE_DATA_PREFIX):
                        continue
                    data = line[len(SSE_DATA_PREFIX):].strip()
                    if data == SSE_DONE:
                        break
                    delta = self._parse_delta(data)
                    if delta:
                        yield delta
        except asyncio.TimeoutError as e:
            raise TransportError(
                f"Stream timed out after {timeout}s",
                endpoint=self.config.endpoint,
                request_params={"model": model},
            ) from e
        except aiohttp.ClientError as e:
            raise TransportError(
                f"HTTP client error: {str(e)}",
                endpoint=self.config.endpoint,
                request_params={"model": model},
            ) from e

    @staticmethod
    def _parse_delta(data: str) -> str:
        """Extract ``choices[0].delta.content`` from one SSE event; malformed events yield ""."""
        try:
            event = orjson.loads(data)
            choices = event.get("choices") or []
            if not choices:
                return ""
            return (choices[0].get("delta") or {}).get("content") or ""
        except (orjson.JSONDecodeError, AttributeError, TypeError):
            logger.debug("Skipping malformed stream event", extra={"preview": data[:100]})
            return ""

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json, text/event-stream",
        }
