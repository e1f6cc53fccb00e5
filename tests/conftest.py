"""
Pytest configuration and shared fixtures for xhs-writer tests.

Provides:
    - Controllable clock
    - Raw search API items and normalized notes
    - Cache managers and credential pools on temporary directories
    - Scripted chat client factory and a recording sleep
"""

import copy
from pathlib import Path
from typing import Any, Dict, List
from unittest.mock import AsyncMock

import pytest

from tests.fixtures import VALID_ANALYSIS, FakeClock, ScriptedChatClient, make_search_item
from xhs_writer.normalizer.schemas import ProcessedNote
from xhs_writer.normalizer.transformer import NoteTransformer
from xhs_writer.orchestrator.cache_manager import CacheManager
from xhs_writer.orchestrator.credential_pool import CredentialPool


# ========== Clock Fixtures ==========


@pytest.fixture
def clock() -> FakeClock:
    """Fresh fake clock."""
    return FakeClock()


@pytest.fixture
def no_sleep():
    """
    Async sleep replacement that records requested delays.

    Returns:
        Coroutine function with a ``delays`` list attribute
    """
    delays: List[float] = []

    async def sleep(delay: float) -> None:
        delays.append(delay)

    sleep.delays = delays
    return sleep


# ========== Directory and Path Fixtures ==========


@pytest.fixture
def temp_cache_dir(tmp_path: Path) -> Path:
    """Preferred cache directory (created lazily by the cache manager)."""
    return tmp_path / "cache"


@pytest.fixture
def temp_fallback_dir(tmp_path: Path) -> Path:
    """Fallback cache directory."""
    return tmp_path / "fallback"


# ========== Search API Fixtures ==========


@pytest.fixture
def sample_search_items() -> List[Dict[str, Any]]:
    """
    Raw items for one search page.

    Returns:
        Two notes around one non-note item
    """
    return [
        make_search_item("n1", "夏日防晒清单", liked="1.2万", nickname="小美"),
        {"id": "ad1", "model_type": "hot_query", "hot_query": {"queries": []}},
        make_search_item("n2", "油皮防晒测评", liked=320, comments="10+", nickname="阿杰"),
    ]


@pytest.fixture
def sample_notes(sample_search_items) -> List[ProcessedNote]:
    """Normalized notes built from ``sample_search_items``."""
    return NoteTransformer.from_search_items(sample_search_items)


# ========== Cache Manager Fixtures ==========


@pytest.fixture
def cache_manager(temp_cache_dir, temp_fallback_dir, clock) -> CacheManager:
    """
    Enabled cache manager with a 6 hour TTL on temporary directories.

    Returns:
        CacheManager driven by the fake clock
    """
    return CacheManager(
        cache_dir=temp_cache_dir,
        fallback_dir=temp_fallback_dir,
        ttl_seconds=6 * 3600,
        max_entries=100,
        enabled=True,
        clock=clock,
    )


# ========== Credential Pool Fixtures ==========


@pytest.fixture
def mock_prober():
    """Prober whose probe() result is set per test."""
    prober = AsyncMock()
    prober.probe = AsyncMock(return_value=(200, {"success": True, "data": {"items": []}}))
    return prober


@pytest.fixture
def credential_pool(clock, mock_prober) -> CredentialPool:
    """
    Search pool holding cookies A, B and C.

    Returns:
        CredentialPool with max_failures=3 and a 10 minute cooldown
    """
    pool = CredentialPool("search", max_failures=3, cooldown=600, prober=mock_prober, clock=clock)
    pool.load(["cookie-A", "cookie-B", "cookie-C"])
    return pool


# ========== Chat Client Fixtures ==========


@pytest.fixture
def scripted_client():
    """Factory building ScriptedChatClient instances."""
    return ScriptedChatClient


@pytest.fixture
def valid_analysis() -> Dict[str, Any]:
    """Analysis report that satisfies ANALYSIS_SCHEMA."""
    return copy.deepcopy(VALID_ANALYSIS)
