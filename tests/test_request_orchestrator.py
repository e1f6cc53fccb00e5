"""
Unit tests for RequestOrchestrator.

Tests cover:
    - Backend failover and the per-backend retry bound
    - Validation failures counted as attempts
    - Shared deadline: early stop, per-attempt timeout, clamped backoff
    - Streaming: forwarding, heartbeats, empty streams, mid-stream failures
    - Exhaustion reporting through on_error or the raised error
"""

import asyncio
from unittest.mock import AsyncMock, Mock, patch

import orjson
import pytest

from tests.fixtures import FakeClock
from xhs_writer.config import AIConfig
from xhs_writer.normalizer.schemas import AttemptOutcome
from xhs_writer.orchestrator.request_orchestrator import RequestOrchestrator
from xhs_writer.utils.exceptions import (
    ConfigurationError,
    OrchestrationExhaustedError,
    ServerError,
    TransportError,
)


class SlowFailingClient:
    """Client whose every call fails after advancing a fake clock."""

    def __init__(self, clock: FakeClock, cost: float):
        self.clock = clock
        self.cost = cost
        self.timeouts = []

    async def complete(self, prompt, model, timeout=None, json_mode=True):
        self.timeouts.append(timeout)
        self.clock.advance(self.cost)
        raise TransportError("connection reset")

    def stream(self, prompt, model, timeout=None):
        raise NotImplementedError


def make_orchestrator(client, backends, **kwargs) -> RequestOrchestrator:
    return RequestOrchestrator(client, backends, **kwargs)


class TestStructuredFailover:
    """Test retry and failover for structured requests."""

    @pytest.mark.asyncio
    async def test_second_backend_succeeds_after_first_fails(self, scripted_client, valid_analysis, no_sleep):
        """Test modelA failing twice and modelB succeeding: exactly 3 calls."""
        client = scripted_client(
            complete_script={
                "modelA": [TransportError("connection reset"), "not json at all"],
                "modelB": [orjson.dumps(valid_analysis).decode()],
            }
        )
        orchestrator = make_orchestrator(client, ["modelA", "modelB"], max_retries=1, sleep=no_sleep)

        result = await orchestrator.request_structured("prompt", ["titleFormulas"])

        assert len(client.calls) == 3
        assert result.backend == "modelB"
        assert result.data == valid_analysis
        assert [a.outcome for a in result.attempts] == [
            AttemptOutcome.TRANSPORT,
            AttemptOutcome.VALIDATION,
            AttemptOutcome.SUCCESS,
        ]
        assert no_sleep.delays == [1.0]

    @pytest.mark.asyncio
    async def test_attempt_bound_is_backends_times_retries(self, scripted_client, no_sleep):
        """Test that M backends with R retries make at most M*(R+1) calls."""
        failures = {name: [ServerError("Server error: 502")] * 3 for name in ("a", "b", "c")}
        client = scripted_client(complete_script=failures)
        orchestrator = make_orchestrator(client, ["a", "b", "c"], max_retries=2, sleep=no_sleep)

        with pytest.raises(OrchestrationExhaustedError) as exc_info:
            await orchestrator.request_structured("prompt")

        error = exc_info.value
        assert len(client.calls) == 9
        assert error.backends_tried == ["a", "b", "c"]
        assert error.attempts_per_backend == {"a": 3, "b": 3, "c": 3}
        assert error.deadline_exhausted is False
        assert error.retryable is True
        assert "502" in error.last_error

    @pytest.mark.asyncio
    async def test_missing_required_field_is_retried(self, scripted_client, no_sleep):
        """Test that a shape violation counts as a failed attempt."""
        client = scripted_client(
            complete_script={"m": ['{"title": ""}', '```json\n{"title": "ok", "body": "b",}\n```']}
        )
        orchestrator = make_orchestrator(client, ["m"], max_retries=1, sleep=no_sleep)

        result = await orchestrator.request_structured("prompt", ["title", "body"])

        assert result.data == {"title": "ok", "body": "b"}
        assert result.attempts[0].outcome == AttemptOutcome.VALIDATION
        assert "empty field: title" in result.attempts[0].error

    @pytest.mark.asyncio
    async def test_attempt_timeout_moves_on(self, scripted_client, no_sleep):
        """Test that a slow backend is cut off at the per-attempt cap."""
        client = scripted_client(complete_script={"slow": [1.0], "fast": ['{"ok": true}']})
        orchestrator = make_orchestrator(
            client, ["slow", "fast"], max_retries=0, request_timeout=0.05, sleep=no_sleep
        )

        result = await orchestrator.request_structured("prompt", ["ok"])

        assert result.backend == "fast"
        assert result.attempts[0].outcome == AttemptOutcome.TIMEOUT

    @pytest.mark.asyncio
    async def test_configuration_error_propagates(self, scripted_client, no_sleep):
        """Test that a misconfigured client is not retried."""
        client = scripted_client(
            complete_script={"m": [ConfigurationError("Chat API is not configured")] * 4}
        )
        orchestrator = make_orchestrator(client, ["m"], max_retries=3, sleep=no_sleep)

        with pytest.raises(ConfigurationError):
            await orchestrator.request_structured("prompt")
        assert len(client.calls) == 1

    @pytest.mark.asyncio
    async def test_no_backends_is_not_retryable(self, scripted_client):
        """Test that an empty backend list fails immediately and permanently."""
        orchestrator = make_orchestrator(scripted_client(), [])

        with pytest.raises(OrchestrationExhaustedError) as exc_info:
            await orchestrator.request_structured("prompt")

        assert exc_info.value.retryable is False
        assert exc_info.value.attempts == []

    def test_negative_retries_rejected(self, scripted_client):
        """Test constructor validation."""
        with pytest.raises(ValueError):
            make_orchestrator(scripted_client(), ["m"], max_retries=-1)


class TestDeadline:
    """Test the shared wall-clock budget."""

    @pytest.mark.asyncio
    async def test_deadline_stops_before_attempts_run_out(self, no_sleep):
        """Test early stop and shrinking per-attempt timeouts."""
        clock = FakeClock(start=0.0)
        client = SlowFailingClient(clock, cost=30)
        orchestrator = make_orchestrator(
            client,
            ["m"],
            max_retries=10,
            request_timeout=45,
            overall_deadline=100,
            safety_margin=5,
            clock=clock,
            sleep=no_sleep,
        )

        with pytest.raises(OrchestrationExhaustedError) as exc_info:
            await orchestrator.request_structured("prompt")

        assert client.timeouts == [45, 45, 35, 5]
        assert exc_info.value.deadline_exhausted is True
        assert len(exc_info.value.attempts) == 4

    @pytest.mark.asyncio
    async def test_per_call_deadline_override(self, no_sleep):
        """Test that a request-level budget replaces the default."""
        clock = FakeClock(start=0.0)
        client = SlowFailingClient(clock, cost=10)
        orchestrator = make_orchestrator(
            client, ["m"], max_retries=10, overall_deadline=170, safety_margin=5,
            clock=clock, sleep=no_sleep,
        )

        with pytest.raises(OrchestrationExhaustedError):
            await orchestrator.request_structured("prompt", overall_deadline=20)

        assert client.timeouts == [15, 5]

    @pytest.mark.asyncio
    async def test_exhausted_budget_makes_no_call(self, no_sleep):
        """Test that a budget within the safety margin makes no attempt at all."""
        clock = FakeClock(start=0.0)
        client = SlowFailingClient(clock, cost=1)
        orchestrator = make_orchestrator(client, ["m"], safety_margin=5, clock=clock, sleep=no_sleep)

        with pytest.raises(OrchestrationExhaustedError) as exc_info:
            await orchestrator.request_structured("prompt", overall_deadline=5)

        assert client.timeouts == []
        assert exc_info.value.deadline_exhausted is True

    @pytest.mark.asyncio
    async def test_backoff_clamped_to_remaining_budget(self):
        """Test that backoff never sleeps into the safety margin."""
        clock = FakeClock(start=0.0)
        delays = []

        async def sleep(delay):
            delays.append(delay)
            clock.advance(delay)

        client = SlowFailingClient(clock, cost=8)
        orchestrator = make_orchestrator(
            client, ["m"], max_retries=5, base_delay=10, max_delay=10,
            overall_deadline=20, safety_margin=5, clock=clock, sleep=sleep,
        )

        with pytest.raises(OrchestrationExhaustedError) as exc_info:
            await orchestrator.request_structured("prompt")

        assert delays == [7.0]
        assert len(client.timeouts) == 1
        assert exc_info.value.deadline_exhausted is True

    def test_backoff_schedule(self, scripted_client):
        """Test exponential growth capped at max_delay."""
        orchestrator = make_orchestrator(
            scripted_client(), ["m"], base_delay=1, backoff_multiplier=2, max_delay=10
        )
        assert [orchestrator.backoff(i) for i in range(5)] == [1, 2, 4, 8, 10]


class TestStreaming:
    """Test streamed requests."""

    @pytest.mark.asyncio
    async def test_stream_forwards_chunks(self, scripted_client, no_sleep):
        """Test chunks arrive in order and the result carries the full text."""
        client = scripted_client(stream_script={"m": [["## 1. ", "标题", "正文"]]})
        orchestrator = make_orchestrator(client, ["m"], sleep=no_sleep)
        received = []

        result = await orchestrator.request_stream("prompt", received.append)

        assert [c for c in received if c] == ["## 1. ", "标题", "正文"]
        assert result.text == "## 1. 标题正文"
        assert result.chunk_count == 3
        assert result.backend == "m"

    @pytest.mark.asyncio
    async def test_heartbeat_during_silence(self, scripted_client, no_sleep):
        """Test that empty chunks are emitted while the backend is silent."""
        client = scripted_client(stream_script={"m": [["a", 0.3, "b"]]})
        orchestrator = make_orchestrator(client, ["m"], heartbeat_interval=0.05, sleep=no_sleep)
        received = []

        result = await orchestrator.request_stream("prompt", received.append)

        assert result.text == "ab"
        first, last = received.index("a"), received.index("b")
        assert "" in received[first:last]

    @pytest.mark.asyncio
    async def test_async_chunk_callback(self, scripted_client, no_sleep):
        """Test that coroutine callbacks are awaited."""
        client = scripted_client(stream_script={"m": [["x", "y"]]})
        orchestrator = make_orchestrator(client, ["m"], sleep=no_sleep)
        on_chunk = AsyncMock()

        await orchestrator.request_stream("prompt", on_chunk)

        on_chunk.assert_any_await("x")
        on_chunk.assert_any_await("y")

    @pytest.mark.asyncio
    async def test_empty_stream_is_retryable_failure(self, scripted_client, no_sleep):
        """Test that a stream without content moves on to the next attempt."""
        client = scripted_client(stream_script={"a": [[]], "b": [["ok"]]})
        orchestrator = make_orchestrator(client, ["a", "b"], max_retries=0, sleep=no_sleep)

        result = await orchestrator.request_stream("prompt", lambda chunk: None)

        assert result.backend == "b"
        assert result.attempts[0].outcome == AttemptOutcome.EMPTY_STREAM

    @pytest.mark.asyncio
    async def test_mid_stream_failure_fails_over(self, scripted_client, no_sleep):
        """Test that chunks already forwarded are kept and the next backend completes."""
        client = scripted_client(
            stream_script={
                "a": [["partial", TransportError("connection reset")]],
                "b": [["full"]],
            }
        )
        orchestrator = make_orchestrator(client, ["a", "b"], max_retries=0, sleep=no_sleep)
        received = []

        result = await orchestrator.request_stream("prompt", received.append)

        assert [c for c in received if c] == ["partial", "full"]
        assert result.text == "full"
        assert result.attempts[0].outcome == AttemptOutcome.TRANSPORT

    @pytest.mark.asyncio
    async def test_stream_attempt_timeout(self, scripted_client, no_sleep):
        """Test that a stalled stream is abandoned at its cap."""
        client = scripted_client(stream_script={"slow": [[1.0, "late"]], "fast": [["ok"]]})
        orchestrator = make_orchestrator(
            client, ["slow", "fast"], max_retries=0, stream_timeout=0.1,
            heartbeat_interval=0.02, sleep=no_sleep,
        )

        result = await orchestrator.request_stream("prompt", lambda chunk: None)

        assert result.backend == "fast"
        assert result.attempts[0].outcome == AttemptOutcome.TIMEOUT

    @pytest.mark.asyncio
    async def test_on_error_called_once(self, scripted_client, no_sleep):
        """Test that exhaustion is reported once through on_error."""
        client = scripted_client(stream_script={"a": [[], []], "b": [[], []]})
        orchestrator = make_orchestrator(client, ["a", "b"], max_retries=1, sleep=no_sleep)
        on_error = Mock()

        result = await orchestrator.request_stream("prompt", lambda chunk: None, on_error)

        assert result is None
        on_error.assert_called_once()
        error = on_error.call_args.args[0]
        assert isinstance(error, OrchestrationExhaustedError)
        assert error.attempts_per_backend == {"a": 2, "b": 2}

    @pytest.mark.asyncio
    async def test_async_on_error(self, scripted_client, no_sleep):
        """Test that a coroutine on_error is awaited."""
        client = scripted_client(stream_script={"a": [[]]})
        orchestrator = make_orchestrator(client, ["a"], max_retries=0, sleep=no_sleep)
        on_error = AsyncMock()

        await orchestrator.request_stream("prompt", lambda chunk: None, on_error)

        on_error.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_exhaustion_raises_without_on_error(self, scripted_client, no_sleep):
        """Test that exhaustion propagates when no on_error is given."""
        client = scripted_client(stream_script={"a": [TransportError("refused")]})
        orchestrator = make_orchestrator(client, ["a"], max_retries=0, sleep=no_sleep)

        with pytest.raises(OrchestrationExhaustedError) as exc_info:
            await orchestrator.request_stream("prompt", lambda chunk: None)

        assert exc_info.value.to_dict()["attempts_per_backend"] == {"a": 1}


class TestFromEnv:
    """Test environment-driven construction."""

    def test_from_env_reads_ai_config(self, scripted_client):
        """Test backend list parsing and overrides."""
        with patch.object(AIConfig, "MODEL_NAMES", "modelA, modelB,"), \
             patch.object(AIConfig, "MAX_RETRIES", 2):
            orchestrator = RequestOrchestrator.from_env(scripted_client(), safety_margin=1)

        assert orchestrator.backends == ["modelA", "modelB"]
        assert orchestrator.max_retries == 2
        assert orchestrator.safety_margin == 1


def test_event_loop_left_clean(scripted_client):
    """Test that a finished stream leaves no pending tasks behind."""
    client = scripted_client(stream_script={"m": [["a", 0.05, "b"]]})
    orchestrator = make_orchestrator(client, ["m"], heartbeat_interval=0.01)

    async def run():
        await orchestrator.request_stream("prompt", lambda chunk: None)
        current = asyncio.current_task()
        return [t for t in asyncio.all_tasks() if t is not current]

    assert asyncio.run(run()) == []
