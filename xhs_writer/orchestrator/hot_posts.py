"""
Hot-post acquisition pipeline.

Priority-based retrieval of the hot-post summary for a keyword:

    1. Fresh cache entry
    2. Live fetch through the search API using the credential pool
    3. Same-category fallback entry from the cache

The result feeds the analysis and generation prompts run through the
request orchestrator.
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional

from ..clients.search_client import SearchClient
from ..config import FeatureConfig, SearchConfig
from ..normalizer.schemas import (
    FetchResult,
    HotPostsResult,
    ProcessedNote,
    ResultSource,
    StreamResult,
    StructuredResult,
)
from ..normalizer.transformer import NoteTransformer
from ..parsers.response_parser import ANALYSIS_SCHEMA
from ..parsers.stream_filter import StartMarkerFilter
from ..prompts import build_analysis_prompt, build_generation_prompt, prepare_scraped_content
from ..utils.exceptions import (
    AuthError,
    CacheError,
    DataUnavailableError,
    NoCredentialError,
    RateLimitError,
    ServerError,
    TransportError,
    XhsWriterError,
)
from .cache_manager import CacheManager, keyword_category
from .credential_pool import CredentialPool
from .request_orchestrator import ChunkCallback, ErrorCallback, RequestOrchestrator

logger = logging.getLogger(__name__)


class HotPostFetcher:
    """
    Live fetch of hot posts for a keyword.

    Pages through the search API with one credential from the pool.
    Credential rejections are reported to the pool and the fetch moves on
    to another credential; transport problems are retried with backoff
    without penalizing the credential.

    Attributes:
        pool: Credential pool the cookies come from
        client: Search API client
        target_count: Notes wanted per keyword
        max_pages: Upper bound on pages requested
        max_attempts: Credential/transport attempts per fetch
    """

    def __init__(
        self,
        pool: CredentialPool,
        client: SearchClient,
        target_count: int = 40,
        max_pages: int = 3,
        page_size: int = 20,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.pool = pool
        self.client = client
        self.target_count = target_count
        self.max_pages = max_pages
        self.page_size = page_size
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self._sleep = sleep

    @classmethod
    def from_env(cls, pool: CredentialPool, client: SearchClient) -> "HotPostFetcher":
        """Create a fetcher configured from environment variables."""
        return cls(
            pool,
            client,
            target_count=SearchConfig.TARGET_NOTES_COUNT,
            max_pages=SearchConfig.MAX_PAGES,
            page_size=SearchConfig.PAGE_SIZE,
            max_attempts=SearchConfig.FETCH_MAX_ATTEMPTS,
            base_delay=SearchConfig.FETCH_BASE_DELAY,
        )

    def _take_credential(self, rejected: set[str]) -> Optional[str]:
        """
        Draw a credential not rejected earlier in this fetch.

        Returns:
            A secret, or None when only already-rejected credentials remain
        """
        for _ in range(max(1, self.pool.size)):
            secret = self.pool.next_valid()
            if secret is None:
                break
            if secret not in rejected:
                return secret
        else:
            return None

        if rejected:
            return None
        if self.pool.size == 0:
            raise NoCredentialError("No credentials configured", pool=self.pool.name, configured=0)
        raise NoCredentialError(
            "No valid credentials available, all are cooling down",
            pool=self.pool.name,
            configured=self.pool.size,
        )

    async def _collect(self, keyword: str, secret: str) -> tuple[list[ProcessedNote], int]:
        """Page through results with one credential; returns (notes, pages fetched)."""
        items: list[dict[str, Any]] = []
        page = 1
        while len(items) < self.target_count and page <= self.max_pages:
            data = await self.client.search_notes(keyword, page, secret, page_size=self.page_size)
            self.pool.mark_valid(secret)

            page_items = [item for item in data["items"] if NoteTransformer.is_note(item)]
            logger.debug(f"Page {page} for '{keyword}': {len(page_items)} notes")
            if not page_items:
                break

            items.extend(page_items)
            page += 1
            if not data.get("has_more"):
                break

        notes = [NoteTransformer.from_search_item(item) for item in items[: self.target_count]]
        return notes, page - 1

    async def fetch(self, keyword: str) -> FetchResult:
        """
        Fetch and normalize hot posts for ``keyword``.

        Returns:
            FetchResult with the summary text and normalized notes

        Raises:
            NoCredentialError: If the pool has no usable credential
            DataUnavailableError: If the search returned no notes
            AuthError / TransportError / ServerError / RateLimitError: When attempts run out
            APIError / ParsingError: Non-retryable upstream failures
        """
        last_error: Optional[XhsWriterError] = None
        rejected: set[str] = set()

        for attempt in range(self.max_attempts):
            secret = self._take_credential(rejected)
            if secret is None:
                logger.error(f"Every usable credential was rejected while fetching '{keyword}'")
                raise last_error
            credential_id = self.pool.record_id(secret)

            try:
                notes, pages = await self._collect(keyword, secret)
            except AuthError as e:
                self.pool.mark_invalid(secret, str(e))
                rejected.add(secret)
                last_error = e
                logger.warning(
                    f"Credential {credential_id} rejected for '{keyword}', switching credential",
                    extra={"attempt": attempt + 1},
                )
                continue
            except (TransportError, ServerError, RateLimitError) as e:
                last_error = e
                logger.warning(
                    f"Fetch attempt {attempt + 1}/{self.max_attempts} for '{keyword}' failed: {e}"
                )
                if attempt < self.max_attempts - 1:
                    await self._sleep(self.base_delay * (2 ** attempt))
                continue

            if not notes:
                raise DataUnavailableError(
                    "Search returned no notes",
                    keyword=keyword,
                    cause="empty result",
                )

            logger.info(
                f"Fetched {len(notes)} notes for '{keyword}' in {pages} pages",
                extra={"credential": credential_id},
            )
            return FetchResult(
                keyword=keyword,
                summary=NoteTransformer.format_summary(keyword, notes, self.target_count),
                notes=notes,
                pages=pages,
                credential_id=credential_id,
            )

        logger.error(f"Fetch for '{keyword}' failed after {self.max_attempts} attempts")
        raise last_error


class HotPostSource:
    """
    Cache → fetch → fallback pipeline plus the analysis/generation flows.

    Features:
        - Fresh cache entries short-circuit the live fetch
        - Successful fetches are cached; cache write failures are logged only
        - Failed fetches fall back to a fresh same-category entry
        - Analysis (structured) and generation (streamed) through the orchestrator

    Example:
        >>> source = HotPostSource(cache, fetcher, orchestrator)
        >>> result = await source.get_hot_posts("防晒")
        >>> print(result.source, len(result.text))
    """

    def __init__(
        self,
        cache: CacheManager,
        fetcher: HotPostFetcher,
        orchestrator: Optional[RequestOrchestrator] = None,
        scraping_enabled: Optional[bool] = None,
        analysis_prompt: Callable[[str], str] = build_analysis_prompt,
        generation_prompt: Callable[[dict, str, str], str] = build_generation_prompt,
    ):
        self.cache = cache
        self.fetcher = fetcher
        self.orchestrator = orchestrator
        self.scraping_enabled = (
            FeatureConfig.ENABLE_SCRAPING if scraping_enabled is None else scraping_enabled
        )
        self.analysis_prompt = analysis_prompt
        self.generation_prompt = generation_prompt

        self._stats = {
            "total_requests": 0,
            "cache_hits": 0,
            "fetches": 0,
            "fetch_failures": 0,
            "fallbacks": 0,
            "unavailable": 0,
        }

    async def get_hot_posts(self, keyword: str) -> Optional[HotPostsResult]:
        """
        Get the hot-post summary for ``keyword``.

        Returns:
            HotPostsResult, or None when scraping is disabled

        Raises:
            DataUnavailableError: If the fetch failed and no fallback exists
        """
        if not self.scraping_enabled:
            logger.info("Scraping disabled, skipping hot-post acquisition")
            return None

        self._stats["total_requests"] += 1

        entry = self.cache.get(keyword)
        if entry is not None:
            self._stats["cache_hits"] += 1
            return HotPostsResult(
                keyword=keyword,
                text=entry.payload,
                source=ResultSource.CACHE,
                notes=entry.records,
            )

        try:
            fetched = await self.fetcher.fetch(keyword)
        except XhsWriterError as e:
            self._stats["fetch_failures"] += 1
            logger.warning(f"Live fetch for '{keyword}' failed: {e}")
            return self._fallback(keyword, e)

        self._stats["fetches"] += 1
        try:
            self.cache.put(keyword, fetched.summary, fetched.notes)
        except CacheError as e:
            logger.warning(f"Failed to cache result for '{keyword}': {e}")

        return HotPostsResult(
            keyword=keyword,
            text=fetched.summary,
            source=ResultSource.FETCHED,
            notes=fetched.notes,
        )

    def _fallback(self, keyword: str, cause: XhsWriterError) -> HotPostsResult:
        entry = self.cache.get_fallback(keyword)
        if entry is None:
            self._stats["unavailable"] += 1
            raise DataUnavailableError(
                "No fresh data and no fallback available",
                keyword=keyword,
                category=keyword_category(keyword),
                cause=str(cause),
            ) from cause

        self._stats["fallbacks"] += 1
        return HotPostsResult(
            keyword=keyword,
            text=entry.payload,
            source=ResultSource.FALLBACK,
            notes=entry.records,
            fallback_from=entry.fallback_from,
        )

    def _require_orchestrator(self) -> RequestOrchestrator:
        if self.orchestrator is None:
            raise RuntimeError("HotPostSource was built without a request orchestrator")
        return self.orchestrator

    async def analyze(self, keyword: str, overall_deadline: Optional[float] = None) -> StructuredResult:
        """
        Produce the structured hot-post analysis for ``keyword``.

        Args:
            keyword: Topic keyword
            overall_deadline: Time budget in seconds (orchestrator default when None)

        Raises:
            DataUnavailableError: If no hot-post text could be obtained
            OrchestrationExhaustedError: If no backend returned a valid report
        """
        orchestrator = self._require_orchestrator()
        hot = await self.get_hot_posts(keyword)
        if hot is None:
            error = DataUnavailableError("Scraping is disabled", keyword=keyword)
            error.retryable = False
            raise error

        logger.info(f"Analyzing '{keyword}' from {hot.source.value} data")
        prompt = self.analysis_prompt(prepare_scraped_content(hot.text))
        return await orchestrator.request_structured(prompt, ANALYSIS_SCHEMA, overall_deadline)

    async def generate(
        self,
        keyword: str,
        user_info: str,
        on_chunk: ChunkCallback,
        on_error: Optional[ErrorCallback] = None,
        analysis: Optional[dict] = None,
        post_process: Optional[Callable[[str], str]] = None,
        overall_deadline: Optional[float] = None,
    ) -> Optional[StreamResult]:
        """
        Stream a generated post for ``keyword``.

        Output is cleaned by a ``StartMarkerFilter`` before it reaches
        ``on_chunk``; heartbeats are passed through.

        Args:
            keyword: Topic keyword
            user_info: User-provided material
            on_chunk: Receives cleaned chunks and heartbeats
            on_error: Receives the exhaustion error once
            analysis: Pre-computed analysis report (computed when omitted)
            post_process: Extra filter applied to forwarded text
            overall_deadline: Time budget in seconds for the streamed request

        Returns:
            StreamResult, or None after ``on_error`` was invoked
        """
        orchestrator = self._require_orchestrator()
        if analysis is None:
            analysis = (await self.analyze(keyword, overall_deadline)).data

        prompt = self.generation_prompt(analysis, user_info, keyword)
        marker_filter = StartMarkerFilter(post_process=post_process)

        async def forward(chunk: str) -> None:
            text = marker_filter.feed(chunk)
            if text or chunk == "":
                result = on_chunk(text)
                if inspect.isawaitable(result):
                    await result

        return await orchestrator.request_stream(prompt, forward, on_error, overall_deadline)

    def get_statistics(self) -> dict[str, Any]:
        """
        Get pipeline statistics.

        Returns:
            Dictionary with request counters, hit rate and cache statistics
        """
        total = self._stats["total_requests"]
        hit_rate = (self._stats["cache_hits"] / total * 100) if total > 0 else 0
        return {
            **self._stats,
            "cache_hit_rate_pct": round(hit_rate, 2),
            "cache": self.cache.get_statistics(),
        }
