"""
Multi-backend request orchestration.

Runs one logical generation request against an ordered list of backends
with per-backend retries, exponential backoff and a single wall-clock
deadline shared by every attempt. Structured (JSON) responses are
validated before they are accepted; streamed responses are forwarded
chunk by chunk with heartbeats during silence.
"""

import asyncio
import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Iterable, Optional, Protocol, Union

from ..config import AIConfig
from ..normalizer.schemas import (
    AttemptOutcome,
    AttemptRecord,
    StreamResult,
    StructuredResult,
)
from ..parsers.response_parser import ResponseSchema, parse_structured_response
from ..utils.exceptions import (
    APIError,
    OrchestrationExhaustedError,
    ParsingError,
    TransportError,
)

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[str], Union[None, Awaitable[None]]]
ErrorCallback = Callable[[OrchestrationExhaustedError], Union[None, Awaitable[None]]]


class GenerationClient(Protocol):
    """Backend transport used by the orchestrator (see ``ChatClient``)."""

    async def complete(self, prompt: str, model: str, timeout: Optional[float] = None,
                       json_mode: bool = True) -> str:
        ...

    def stream(self, prompt: str, model: str, timeout: Optional[float] = None) -> Any:
        ...


class EmptyStreamError(Exception):
    """A stream finished without producing any content."""


async def _maybe_await(result: Any) -> None:
    if inspect.isawaitable(result):
        await result


class RequestOrchestrator:
    """
    Retry and failover controller for generation backends.

    For each backend in priority order, up to ``max_retries + 1`` attempts
    are made. Before every attempt the remaining budget is recomputed; once
    it is no larger than the safety margin the request stops. Each attempt
    is capped at ``min(per-call cap, remaining - safety_margin)``.

    Attributes:
        backends: Backend identifiers, highest priority first
        max_retries: Retries per backend after the first attempt
        request_timeout: Cap for one structured attempt in seconds
        stream_timeout: Cap for one streaming attempt in seconds
        overall_deadline: Default shared budget per logical request in seconds
        safety_margin: Budget kept in reserve; attempts never eat into it
        heartbeat_interval: Silence after which an empty chunk is emitted

    Example:
        >>> orchestrator = RequestOrchestrator(chat_client, ["modelA", "modelB"])
        >>> result = await orchestrator.request_structured(prompt, ["title", "body"])
        >>> result.backend, result.data["title"]
    """

    def __init__(
        self,
        client: GenerationClient,
        backends: Iterable[str],
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 10.0,
        backoff_multiplier: float = 2.0,
        request_timeout: float = 45.0,
        stream_timeout: float = 120.0,
        overall_deadline: float = 170.0,
        safety_margin: float = 5.0,
        heartbeat_interval: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        self.client = client
        self.backends = list(backends)
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.backoff_multiplier = backoff_multiplier
        self.request_timeout = request_timeout
        self.stream_timeout = stream_timeout
        self.overall_deadline = overall_deadline
        self.safety_margin = safety_margin
        self.heartbeat_interval = heartbeat_interval
        self._clock = clock
        self._sleep = sleep

        logger.info(
            f"RequestOrchestrator initialized: backends={self.backends}, "
            f"max_retries={max_retries}, deadline={overall_deadline}s"
        )

    @classmethod
    def from_env(cls, client: GenerationClient, **kwargs) -> "RequestOrchestrator":
        """Create an orchestrator configured from environment variables."""
        settings = {
            "backends": AIConfig.get_backends(),
            "max_retries": AIConfig.MAX_RETRIES,
            "base_delay": AIConfig.BASE_DELAY,
            "max_delay": AIConfig.MAX_DELAY,
            "backoff_multiplier": AIConfig.BACKOFF_MULTIPLIER,
            "request_timeout": AIConfig.REQUEST_TIMEOUT,
            "stream_timeout": AIConfig.STREAM_TIMEOUT,
            "overall_deadline": AIConfig.DEADLINE_SECONDS,
            "safety_margin": AIConfig.SAFETY_MARGIN,
            "heartbeat_interval": AIConfig.HEARTBEAT_SECONDS,
        }
        settings.update(kwargs)
        return cls(client, **settings)

    def backoff(self, attempt: int) -> float:
        """Delay before retry number ``attempt + 1`` (0-based ``attempt``)."""
        return min(self.base_delay * (self.backoff_multiplier ** attempt), self.max_delay)

    async def _sleep_before_retry(self, attempt: int, deadline_at: float) -> None:
        """Back off, never sleeping into the safety margin."""
        available = deadline_at - self._clock() - self.safety_margin
        delay = min(self.backoff(attempt), max(0.0, available))
        if delay > 0:
            logger.debug(f"Backing off {delay:.2f}s before retry")
            await self._sleep(delay)

    @staticmethod
    def _classify(error: BaseException) -> AttemptOutcome:
        if isinstance(error, asyncio.TimeoutError):
            return AttemptOutcome.TIMEOUT
        if isinstance(error, EmptyStreamError):
            return AttemptOutcome.EMPTY_STREAM
        if isinstance(error, ParsingError):
            return AttemptOutcome.VALIDATION
        if isinstance(error, TransportError):
            if isinstance(error.__cause__, asyncio.TimeoutError):
                return AttemptOutcome.TIMEOUT
            return AttemptOutcome.TRANSPORT
        return AttemptOutcome.HTTP

    @staticmethod
    def _describe(error: BaseException) -> str:
        if isinstance(error, asyncio.TimeoutError):
            return "attempt timed out"
        return str(error) or type(error).__name__

    def _exhausted(
        self,
        attempts: list[AttemptRecord],
        last_error: Optional[str],
        deadline_exhausted: bool,
    ) -> OrchestrationExhaustedError:
        if deadline_exhausted:
            message = "Request deadline exhausted before a backend succeeded"
        else:
            message = "All backends failed"
        error = OrchestrationExhaustedError(
            message,
            attempts=attempts,
            last_error=last_error,
            deadline_exhausted=deadline_exhausted,
        )
        logger.error(
            f"{message}: {len(attempts)} attempts across {error.backends_tried}",
            extra={"last_error": last_error},
        )
        return error

    async def _run(
        self,
        call: Callable[[str, float], Awaitable[Any]],
        per_attempt_cap: float,
        overall_deadline: Optional[float],
        kind: str,
    ) -> tuple[Any, str, list[AttemptRecord]]:
        """
        Core retry loop shared by structured and streaming requests.

        Args:
            call: Coroutine factory ``call(backend, timeout)`` performing one attempt
            per_attempt_cap: Upper bound on one attempt's timeout
            overall_deadline: Budget for this request (defaults to configured value)
            kind: Label used in log messages

        Returns:
            Tuple of (attempt result, backend, attempt records)

        Raises:
            OrchestrationExhaustedError: When backends, retries or the deadline run out
        """
        if not self.backends:
            raise OrchestrationExhaustedError(
                "No generation backends configured",
                retryable=False,
            )

        budget = self.overall_deadline if overall_deadline is None else overall_deadline
        deadline_at = self._clock() + budget
        attempts: list[AttemptRecord] = []
        last_error: Optional[str] = None

        for backend in self.backends:
            for attempt in range(self.max_retries + 1):
                remaining = deadline_at - self._clock()
                if remaining <= self.safety_margin:
                    raise self._exhausted(attempts, last_error, deadline_exhausted=True)

                timeout = min(per_attempt_cap, remaining - self.safety_margin)
                started_at = self._clock()
                logger.debug(
                    f"{kind} attempt {attempt + 1}/{self.max_retries + 1} on {backend} "
                    f"(timeout={timeout:.1f}s, remaining={remaining:.1f}s)"
                )

                try:
                    result = await call(backend, timeout)
                except (asyncio.TimeoutError, APIError, ParsingError, EmptyStreamError) as e:
                    outcome = self._classify(e)
                    last_error = self._describe(e)
                    attempts.append(
                        AttemptRecord(
                            backend=backend,
                            attempt=attempt,
                            timeout=timeout,
                            started_at=started_at,
                            elapsed=max(0.0, self._clock() - started_at),
                            outcome=outcome,
                            error=last_error,
                        )
                    )
                    logger.warning(
                        f"{kind} attempt {attempt + 1} on {backend} failed ({outcome.value}): {last_error}"
                    )
                    if attempt < self.max_retries:
                        await self._sleep_before_retry(attempt, deadline_at)
                    continue

                attempts.append(
                    AttemptRecord(
                        backend=backend,
                        attempt=attempt,
                        timeout=timeout,
                        started_at=started_at,
                        elapsed=max(0.0, self._clock() - started_at),
                        outcome=AttemptOutcome.SUCCESS,
                    )
                )
                logger.info(f"{kind} request succeeded on {backend} (attempt {attempt + 1})")
                return result, backend, attempts

            logger.warning(f"Backend {backend} exhausted, moving to next backend")

        raise self._exhausted(attempts, last_error, deadline_exhausted=False)

    async def request_structured(
        self,
        prompt: str,
        required_fields: Union[ResponseSchema, Iterable[str], None] = None,
        overall_deadline: Optional[float] = None,
    ) -> StructuredResult:
        """
        Request a JSON response and validate its shape.

        Args:
            prompt: Prompt text
            required_fields: ResponseSchema or list of required top-level fields
            overall_deadline: Budget in seconds for this request

        Returns:
            StructuredResult with the validated data and attempt history

        Raises:
            OrchestrationExhaustedError: If no backend produced a valid response
        """
        schema = ResponseSchema.coerce(required_fields)

        async def call(backend: str, timeout: float) -> dict[str, Any]:
            text = await asyncio.wait_for(
                self.client.complete(prompt, backend, timeout=timeout, json_mode=True),
                timeout,
            )
            return parse_structured_response(text, schema, source=backend)

        data, backend, attempts = await self._run(
            call, self.request_timeout, overall_deadline, "Structured"
        )
        return StructuredResult(data=data, backend=backend, attempts=attempts)

    async def _stream_attempt(
        self,
        prompt: str,
        backend: str,
        timeout: float,
        on_chunk: ChunkCallback,
    ) -> tuple[str, int]:
        """
        Consume one backend stream, forwarding chunks and heartbeats.

        Returns:
            Tuple of (full text, number of non-empty chunks)

        Raises:
            asyncio.TimeoutError: If the attempt outlives its timeout
            EmptyStreamError: If the stream ends without content
        """
        stream = self.client.stream(prompt, backend, timeout=timeout)
        iterator = stream.__aiter__()
        loop = asyncio.get_running_loop()
        attempt_deadline = loop.time() + timeout
        pending: Optional[asyncio.Future] = None
        parts: list[str] = []

        try:
            while True:
                left = attempt_deadline - loop.time()
                if left <= 0:
                    raise asyncio.TimeoutError()

                if pending is None:
                    pending = asyncio.ensure_future(iterator.__anext__())

                done, _ = await asyncio.wait({pending}, timeout=min(self.heartbeat_interval, left))
                if not done:
                    await _maybe_await(on_chunk(""))
                    continue

                finished, pending = pending, None
                try:
                    chunk = finished.result()
                except StopAsyncIteration:
                    break

                if chunk:
                    parts.append(chunk)
                    await _maybe_await(on_chunk(chunk))
        finally:
            if pending is not None:
                pending.cancel()
                await asyncio.gather(pending, return_exceptions=True)
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        if not parts:
            raise EmptyStreamError(f"{backend} returned an empty stream")
        return "".join(parts), len(parts)

    async def request_stream(
        self,
        prompt: str,
        on_chunk: ChunkCallback,
        on_error: Optional[ErrorCallback] = None,
        overall_deadline: Optional[float] = None,
    ) -> Optional[StreamResult]:
        """
        Stream a response, failing over between backends.

        Chunks are forwarded to ``on_chunk`` as they arrive; after
        ``heartbeat_interval`` seconds of silence an empty string is sent.
        Chunks already forwarded by a failed attempt are not retracted.

        Args:
            prompt: Prompt text
            on_chunk: Sync or async callback receiving each chunk
            on_error: Sync or async callback invoked once on exhaustion
            overall_deadline: Budget in seconds for this request

        Returns:
            StreamResult on success; None after ``on_error`` was invoked

        Raises:
            OrchestrationExhaustedError: On exhaustion when no ``on_error`` is given
        """
        async def call(backend: str, timeout: float) -> tuple[str, int]:
            return await self._stream_attempt(prompt, backend, timeout, on_chunk)

        try:
            (text, count), backend, attempts = await self._run(
                call, self.stream_timeout, overall_deadline, "Stream"
            )
        except OrchestrationExhaustedError as e:
            if on_error is None:
                raise
            await _maybe_await(on_error(e))
            return None

        return StreamResult(backend=backend, text=text, chunk_count=count, attempts=attempts)
