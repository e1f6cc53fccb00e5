"""
Content search API client for xhs-writer.

Asynchronous HTTP client for the paginated, cookie-authenticated note
search endpoint. The client classifies responses into the exception
hierarchy but never touches the credential pool; callers decide what a
rejection means for the credential they used.
"""

import asyncio
import logging
import secrets
from dataclasses import dataclass
from typing import Any, Optional

import aiohttp
import orjson

from ..config import SearchConfig
from ..utils.exceptions import (
    APIError,
    AuthError,
    ParsingError,
    RateLimitError,
    ServerError,
    TransportError,
)


logger = logging.getLogger(__name__)

# Message fragments that mark a success=false payload as a credential rejection
AUTH_MESSAGE_MARKERS = ("登录", "认证", "权限", "token", "login", "unauthorized", "auth")

PROBE_KEYWORD = "测试"


def generate_trace_id(length: int = 16) -> str:
    """Random lowercase hex identifier used for trace and search ids."""
    return secrets.token_hex((length + 1) // 2)[:length]


def is_auth_rejection(status: Optional[int], payload: Optional[dict[str, Any]]) -> bool:
    """
    Decide whether a search API response rejects the credential.

    Args:
        status: HTTP status code
        payload: Decoded JSON body (None when the body was not JSON)

    Returns:
        True for 401/403, or ``success=false`` with an auth-related message
    """
    if status in (401, 403):
        return True
    if not isinstance(payload, dict) or payload.get("success") is not False:
        return False
    message = str(payload.get("msg") or "").lower()
    return any(marker in message for marker in AUTH_MESSAGE_MARKERS)


@dataclass
class SearchClientConfig:
    """Configuration for the search API client.

    Attributes:
        endpoint: Search endpoint URL
        timeout: Request timeout in seconds
        probe_timeout: Timeout for credential probes in seconds
        page_size: Notes requested per page
        user_agent: Browser user agent sent with every request
    """

    endpoint: str = "https://edith.xiaohongshu.com/api/sns/web/v1/search/notes"
    timeout: float = 15.0
    probe_timeout: float = 10.0
    page_size: int = 20
    user_agent: str = SearchConfig.USER_AGENT

    @classmethod
    def from_env(cls) -> "SearchClientConfig":
        """Create configuration from environment variables."""
        return cls(
            endpoint=SearchConfig.SEARCH_URL,
            timeout=SearchConfig.REQUEST_TIMEOUT,
            probe_timeout=SearchConfig.PROBE_TIMEOUT,
            page_size=SearchConfig.PAGE_SIZE,
            user_agent=SearchConfig.USER_AGENT,
        )


class SearchClient:
    """Asynchronous client for the note search API.

    Features:
    - Async HTTP with aiohttp and per-request timeouts
    - Status classification into AuthError / RateLimitError / ServerError
    - Credential probing for the pool (``probe``)
    - Request statistics

    Example:
        ```python
        async with SearchClient(SearchClientConfig.from_env()) as client:
            payload = await client.search_notes("防晒", page=1, cookie=cookie)
            print(len(payload["data"]["items"]))
        ```
    """

    def __init__(self, config: Optional[SearchClientConfig] = None):
        self.config = config or SearchClientConfig.from_env()
        self._session: Optional[aiohttp.ClientSession] = None
        self._stats = {
            "requests_made": 0,
            "probes": 0,
            "auth_rejections": 0,
            "errors": 0,
        }

    async def __aenter__(self) -> "SearchClient":
        """Enter async context manager."""
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context manager."""
        await self.close()

    async def _ensure_session(self) -> None:
        """Ensure aiohttp session is initialized."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
            logger.debug("Created new aiohttp session")

    async def close(self) -> None:
        """Close aiohttp session and cleanup resources."""
        if self._session and not self._session.closed:
            await self._session.close()
            logger.debug("Closed aiohttp session")

    def _build_headers(self, cookie: str) -> dict[str, str]:
        return {
            "authority": "edith.xiaohongshu.com",
            "accept": "application/json, text/plain, */*",
            "accept-language": "zh-CN,zh;q=0.9,en;q=0.8",
            "cache-control": "no-cache",
            "content-type": "application/json;charset=UTF-8",
            "origin": SearchConfig.ORIGIN,
            "pragma": "no-cache",
            "referer": SearchConfig.REFERER,
            "user-agent": self.config.user_agent,
            "x-b3-traceid": generate_trace_id(),
            "cookie": cookie,
        }

    def _build_body(self, keyword: str, page: int, page_size: int) -> dict[str, Any]:
        return {
            "keyword": keyword,
            "page": page,
            "page_size": page_size,
            "search_id": generate_trace_id(21),
            "sort": "popularity_descending",
            "note_type": 0,
            "ext_flags": [],
            "filters": [
                {"tags": ["popularity_descending"], "type": "sort_type"},
                {"tags": ["不限"], "type": "filter_note_type"},
                {"tags": ["不限"], "type": "filter_note_time"},
                {"tags": ["不限"], "type": "filter_note_range"},
                {"tags": ["不限"], "type": "filter_pos_distance"},
            ],
            "geo": "",
            "image_formats": ["jpg", "webp", "avif"],
        }

    async def _post(
        self, body: dict[str, Any], cookie: str, timeout: float
    ) -> tuple[int, Optional[dict[str, Any]], str]:
        """Send one search request.

        Returns:
            Tuple of (status, decoded JSON object or None, raw body text)

        Raises:
            TransportError: Timeout or connection failure
        """
        await self._ensure_session()
        self._stats["requests_made"] += 1

        try:
            async with self._session.post(
                self.config.endpoint,
                headers=self._build_headers(cookie),
                data=orjson.dumps(body),
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as response:
                text = await response.text()
                status = response.status
        except asyncio.TimeoutError as e:
            self._stats["errors"] += 1
            logger.warning("Search request timed out", extra={"timeout": timeout})
            raise TransportError(
                f"Request timed out after {timeout}s",
                endpoint=self.config.endpoint,
            ) from e
        except aiohttp.ClientError as e:
            self._stats["errors"] += 1
            logger.warning("HTTP client error", extra={"error": str(e)})
            raise TransportError(
                f"HTTP client error: {str(e)}",
                endpoint=self.config.endpoint,
            ) from e

        try:
            payload = orjson.loads(text) if text else None
        except orjson.JSONDecodeError:
            payload = None
        if not isinstance(payload, dict):
            payload = None

        return status, payload, text

    async def search_notes(
        self,
        keyword: str,
        page: int,
        cookie: str,
        page_size: Optional[int] = None,
    ) -> dict[str, Any]:
        """Fetch one page of search results.

        Args:
            keyword: Search keyword
            page: 1-based page number
            cookie: Credential secret sent as the cookie header
            page_size: Notes per page (defaults to config)

        Returns:
            The ``data`` object of the response (``items``, ``has_more``)

        Raises:
            AuthError: Credential rejected (401/403 or auth message)
            RateLimitError: Rate limit exceeded (429)
            ServerError: Server error (5xx)
            TransportError: Timeout or connection failure
            APIError: Other HTTP errors or ``success=false``
            ParsingError: Body is not the expected JSON structure
        """
        body = self._build_body(keyword, page, page_size or self.config.page_size)
        params = {"keyword": keyword, "page": page}

        status, payload, text = await self._post(body, cookie, self.config.timeout)

        logger.debug(
            f"Search page {page} for '{keyword}' - Status: {status}",
            extra={"status": status, "success": payload.get("success") if payload else None},
        )

        if is_auth_rejection(status, payload):
            self._stats["auth_rejections"] += 1
            message = payload.get("msg") if payload else None
            raise AuthError(
                f"Credential rejected: {message or f'HTTP {status}'}",
                endpoint=self.config.endpoint,
                status_code=status,
                response_body=text,
                request_params=params,
            )

        if status == 429:
            raise RateLimitError(
                "Rate limit exceeded",
                endpoint=self.config.endpoint,
                status_code=status,
                response_body=text,
                request_params=params,
            )

        if status >= 500:
            raise ServerError(
                f"Server error: {status}",
                endpoint=self.config.endpoint,
                status_code=status,
                response_body=text,
                request_params=params,
            )

        if status >= 400:
            raise APIError(
                f"Request failed: {status}",
                endpoint=self.config.endpoint,
                status_code=status,
                response_body=text,
                request_params=params,
            )

        if payload is None:
            raise ParsingError(
                "Search response is not a JSON object",
                source="search",
                parser="json",
                raw_data=text,
            )

        if payload.get("success") is False:
            raise APIError(
                f"Search API error: {payload.get('msg') or 'unknown error'}",
                endpoint=self.config.endpoint,
                status_code=status,
                request_params=params,
            )

        data = payload.get("data")
        if not isinstance(data, dict) or not isinstance(data.get("items"), list):
            raise ParsingError(
                "Search response has no data.items list",
                source="search",
                parser="json",
                raw_data=text,
            )

        return data

    async def probe(self, cookie: str) -> tuple[int, Optional[dict[str, Any]]]:
        """Send a minimal search to test whether a credential is accepted.

        Args:
            cookie: Credential secret

        Returns:
            Tuple of (HTTP status, decoded JSON body or None)

        Raises:
            TransportError: Timeout or connection failure (inconclusive)
        """
        self._stats["probes"] += 1
        body = {
            "keyword": PROBE_KEYWORD,
            "page": 1,
            "page_size": 1,
            "search_id": generate_trace_id(21),
            "sort": "popularity_descending",
        }
        status, payload, _ = await self._post(body, cookie, self.config.probe_timeout)
        return status, payload

    def get_stats(self) -> dict[str, Any]:
        """Get client statistics.

        Returns:
            Dictionary with request metrics
        """
        return dict(self._stats)
