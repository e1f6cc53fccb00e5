"""
RequestOrchestrator and CredentialPool Demo.

Demonstrates multi-backend failover under a shared deadline and
round-robin credential rotation with invalidation, using in-process
fake backends so no network or API key is needed.

Usage:
    python examples/failover_demo.py
"""

import asyncio
import logging

from xhs_writer.orchestrator.credential_pool import CredentialPool
from xhs_writer.orchestrator.request_orchestrator import RequestOrchestrator
from xhs_writer.utils.exceptions import OrchestrationExhaustedError, ServerError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()],
)
logger = logging.getLogger(__name__)


def print_separator(title: str = ""):
    """Print a formatted separator line."""
    if title:
        print(f"\n{'=' * 80}")
        print(f"  {title}")
        print(f"{'=' * 80}\n")
    else:
        print(f"{'=' * 80}\n")


class FlakyBackends:
    """Fake chat client: 'primary' always fails, 'secondary' answers."""

    async def complete(self, prompt, model, timeout=None, json_mode=True):
        await asyncio.sleep(0.05)
        if model == "primary":
            raise ServerError(f"Server error: 503 from {model}", status_code=503)
        return '{"title": "夏日防晒清单", "body": "油皮也能放心用"}'

    async def _chunks(self, model):
        if model == "primary":
            raise ServerError("Server error: 502", status_code=502)
        for piece in ["好的，", "以下是正文：\n", "## 1. 爆款标题", "\n正文……"]:
            await asyncio.sleep(0.3)
            yield piece

    def stream(self, prompt, model, timeout=None):
        return self._chunks(model)


async def demo_structured_failover():
    """Fail over from a broken backend to a healthy one."""
    print_separator("Structured Request Failover")

    orchestrator = RequestOrchestrator(
        FlakyBackends(),
        ["primary", "secondary"],
        max_retries=1,
        base_delay=0.1,
        overall_deadline=10,
        safety_margin=1,
    )

    result = await orchestrator.request_structured("写一篇防晒笔记", ["title", "body"])

    print(f"Backend used: {result.backend}")
    print(f"Data:         {result.data}")
    print("Attempts:")
    for record in result.attempts:
        print(f"  {record!r}")


async def demo_streaming_heartbeats():
    """Stream with heartbeats while the backend is slow."""
    print_separator("Streaming with Heartbeats")

    orchestrator = RequestOrchestrator(
        FlakyBackends(),
        ["primary", "secondary"],
        max_retries=0,
        heartbeat_interval=0.2,
    )

    def on_chunk(chunk: str) -> None:
        print("  [heartbeat]" if chunk == "" else f"  chunk: {chunk!r}")

    result = await orchestrator.request_stream("写一篇防晒笔记", on_chunk)
    print(f"\nStreamed {result.chunk_count} chunks from {result.backend}")


async def demo_exhaustion():
    """Report exhaustion through the error callback."""
    print_separator("Exhaustion Report")

    orchestrator = RequestOrchestrator(FlakyBackends(), ["primary"], max_retries=2, base_delay=0.1)

    def on_error(error: OrchestrationExhaustedError) -> None:
        print(f"Exhausted after {len(error.attempts)} attempts on {error.backends_tried}")
        print(f"Last error: {error.last_error}")

    result = await orchestrator.request_stream("写一篇防晒笔记", lambda chunk: None, on_error)
    print(f"Result: {result}")


def demo_credential_rotation():
    """Rotate cookies and quarantine a rejected one."""
    print_separator("Credential Rotation")

    pool = CredentialPool("search", max_failures=3, cooldown=600)
    pool.load(["cookie-aaaaaaaaaaaa", "cookie-bbbbbbbbbbbb", "cookie-cccccccccccc"])

    print("Round robin:", [pool.record_id(pool.next_valid()) for _ in range(4)])

    for _ in range(3):
        pool.mark_invalid("cookie-aaaaaaaaaaaa", "HTTP 401")
    print("After 3 rejections of search_1:", [pool.record_id(pool.next_valid()) for _ in range(4)])

    print("\nPool state:")
    for info in pool.records_info():
        print(f"  {info['id']:10} valid={info['valid']!s:5} {info['masked']}")


async def main():
    """Run all demos."""
    await demo_structured_failover()
    await demo_streaming_heartbeats()
    await demo_exhaustion()
    demo_credential_rotation()
    print_separator()


if __name__ == "__main__":
    asyncio.run(main())
