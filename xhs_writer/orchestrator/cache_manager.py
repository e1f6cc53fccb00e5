"""
File-based cache management for xhs-writer.

One JSON file per keyword with implicit TTL expiry, same-category
fallback for keywords that have no fresh entry, and a sweep that
enforces the TTL and an upper bound on the number of files.
"""

import logging
import os
import re
import time
import uuid
from pathlib import Path
from typing import Any, Callable, Optional

import orjson
from pydantic import ValidationError

from ..config import CacheConfig, FeatureConfig
from ..normalizer.schemas import (
    CacheEntry,
    CacheMetadata,
    CacheSource,
    ProcessedNote,
    SweepReport,
)
from ..utils.exceptions import CacheError

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "skincare"

CATEGORIES = (
    "skincare",
    "makeup",
    "fashion",
    "food",
    "travel",
    "fitness",
    "digital",
    "home",
    "pets",
    "reading",
)

# Keyword → category. Exact matches win; otherwise the first keyword
# contained in the (lower-cased) key decides.
CATEGORY_KEYWORDS: dict[str, str] = {
    "护肤": "skincare",
    "面膜": "skincare",
    "精华": "skincare",
    "防晒": "skincare",
    "洁面": "skincare",
    "skincare": "skincare",
    "sunscreen": "skincare",
    "serum": "skincare",
    "美妆": "makeup",
    "口红": "makeup",
    "粉底": "makeup",
    "眼影": "makeup",
    "化妆": "makeup",
    "makeup": "makeup",
    "lipstick": "makeup",
    "穿搭": "fashion",
    "服装": "fashion",
    "搭配": "fashion",
    "时尚": "fashion",
    "outfit": "fashion",
    "fashion": "fashion",
    "美食": "food",
    "料理": "food",
    "烘焙": "food",
    "餐厅": "food",
    "recipe": "food",
    "food": "food",
    "旅行": "travel",
    "旅游": "travel",
    "景点": "travel",
    "攻略": "travel",
    "travel": "travel",
    "健身": "fitness",
    "运动": "fitness",
    "瑜伽": "fitness",
    "减肥": "fitness",
    "fitness": "fitness",
    "workout": "fitness",
    "yoga": "fitness",
    "数码": "digital",
    "手机": "digital",
    "电脑": "digital",
    "耳机": "digital",
    "phone": "digital",
    "家居": "home",
    "装修": "home",
    "收纳": "home",
    "宠物": "pets",
    "猫": "pets",
    "狗": "pets",
    "pet": "pets",
    "读书": "reading",
    "书单": "reading",
    "阅读": "reading",
    "book": "reading",
}

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9\u4e00-\u9fa5]")


def keyword_category(key: str) -> str:
    """
    Map a keyword to its category.

    Args:
        key: Topic keyword

    Returns:
        Category name; ``skincare`` when nothing matches
    """
    normalized = key.strip().lower()
    if normalized in CATEGORY_KEYWORDS:
        return CATEGORY_KEYWORDS[normalized]
    for keyword, category in CATEGORY_KEYWORDS.items():
        if keyword in normalized:
            return category
    return DEFAULT_CATEGORY


def safe_filename(key: str) -> str:
    """Filesystem-safe file name for a key (non-alphanumeric, non-CJK chars become '_')."""
    return f"{_UNSAFE_CHARS.sub('_', key)}.json"


class CacheManager:
    """
    File cache with TTL, category fallback and bounded size.

    Features:
    - 6-hour TTL measured from the write time
    - Preferred directory with writable temp-directory fallback
    - Same-category fallback with keyword substitution
    - Sweep of expired and corrupt files plus oldest-first trimming
    - Last-writer-wins writes through atomic file replacement

    Attributes:
        cache_dir: Preferred cache directory
        fallback_dir: Directory used when the preferred one is not writable
        ttl_seconds: Entry time-to-live
        max_entries: File count kept after a sweep
        enabled: Cache switch; a disabled cache behaves as always empty

    Example:
        >>> cache = CacheManager(cache_dir=Path("data/cache"))
        >>> cache.put("防晒", summary_text, notes)
        >>> entry = cache.get("防晒")
    """

    def __init__(
        self,
        cache_dir: Optional[Path] = None,
        fallback_dir: Optional[Path] = None,
        ttl_seconds: Optional[float] = None,
        max_entries: Optional[int] = None,
        enabled: Optional[bool] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.cache_dir = Path(cache_dir) if cache_dir else CacheConfig.CACHE_DIR
        self.fallback_dir = Path(fallback_dir) if fallback_dir else CacheConfig.FALLBACK_CACHE_DIR
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else CacheConfig.TTL_SECONDS
        self.max_entries = max_entries if max_entries is not None else CacheConfig.MAX_ENTRIES
        self.enabled = FeatureConfig.ENABLE_CACHE if enabled is None else enabled
        self._clock = clock

        # Resolved once per instance: a directory, or the error that prevented one
        self._active_dir: Optional[Path] = None
        self._resolve_error: Optional[CacheError] = None

        logger.info(
            f"CacheManager initialized: dir={self.cache_dir}, ttl={self.ttl_seconds}s, "
            f"enabled={self.enabled}"
        )

    @property
    def active_dir(self) -> Optional[Path]:
        """Directory currently in use (None until resolved or when unavailable)."""
        return self._active_dir

    def _resolve_dir(self) -> Path:
        """
        Pick the cache directory on first use.

        Raises:
            CacheError: If neither the preferred nor the fallback directory is writable
        """
        if self._active_dir is not None:
            return self._active_dir
        if self._resolve_error is not None:
            raise self._resolve_error

        last_error: Optional[Exception] = None
        for candidate in (self.cache_dir, self.fallback_dir):
            try:
                candidate.mkdir(parents=True, exist_ok=True)
                if not os.access(candidate, os.W_OK):
                    raise PermissionError(f"{candidate} is not writable")
            except OSError as e:
                last_error = e
                logger.warning(f"Cache directory unavailable, trying next: {candidate} -> {e}")
                continue
            self._active_dir = candidate
            logger.debug(f"Cache directory ready: {candidate}")
            return candidate

        self._resolve_error = CacheError(
            f"No writable cache directory: {last_error}",
            operation="resolve",
            preferred=str(self.cache_dir),
            fallback=str(self.fallback_dir),
        )
        raise self._resolve_error

    def _path_for(self, key: str) -> Path:
        return self._resolve_dir() / safe_filename(key)

    def _read_entry(self, path: Path) -> Optional[CacheEntry]:
        """Load one file; None when missing or unreadable."""
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Failed to read cache file {path.name}: {e}")
            return None
        try:
            return CacheEntry.model_validate(orjson.loads(raw))
        except (orjson.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Corrupt cache file {path.name}: {e}")
            return None

    def _entry_files(self) -> list[Path]:
        return sorted(self._resolve_dir().glob("*.json"))

    def get(self, key: str) -> Optional[CacheEntry]:
        """
        Retrieve the fresh entry for ``key``.

        Args:
            key: Topic keyword

        Returns:
            The entry, or None when absent, unreadable, stored for a
            different key, or at least TTL old. Expired files are left on disk.
        """
        if not self.enabled:
            return None
        try:
            path = self._path_for(key)
        except CacheError as e:
            logger.warning(f"Cache read skipped: {e}")
            return None

        entry = self._read_entry(path)
        if entry is None:
            logger.debug(f"Cache miss: {key}")
            return None

        if entry.key != key:
            logger.debug(f"Cache miss: {key} (file holds '{entry.key}')")
            return None

        if not entry.is_fresh(self._clock(), self.ttl_seconds):
            logger.debug(f"Cache expired: {key}")
            return None

        logger.info(f"Cache hit: {key}")
        return entry

    def put(
        self,
        key: str,
        payload: str,
        records: Optional[list[ProcessedNote]] = None,
        source: CacheSource = CacheSource.FETCHED,
    ) -> Optional[CacheEntry]:
        """
        Store ``payload`` and ``records`` under ``key``.

        Args:
            key: Topic keyword
            payload: Summary text
            records: Normalized notes behind the summary
            source: Origin of the payload

        Returns:
            The written entry, or None when the cache is disabled

        Raises:
            CacheError: If no directory is available or the write fails
        """
        if not self.enabled:
            return None

        records = list(records or [])
        entry = CacheEntry(
            key=key,
            category=keyword_category(key),
            payload=payload,
            records=records,
            timestamp=self._clock(),
            source=source,
            metadata=CacheMetadata.from_notes(records),
        )

        path = self._path_for(key)
        tmp_path = path.with_name(f".{path.stem}.{uuid.uuid4().hex}.tmp")
        try:
            tmp_path.write_bytes(orjson.dumps(entry.to_storage(), option=orjson.OPT_INDENT_2))
            os.replace(tmp_path, path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise CacheError(
                f"Failed to write cache entry: {e}",
                operation="write",
                cache_key=key,
            ) from e

        logger.info(f"Cached: {key} (category={entry.category}, notes={len(records)})")
        return entry

    def get_fallback(self, key: str) -> Optional[CacheEntry]:
        """
        Find a fresh entry of the same category to stand in for ``key``.

        Files are scanned in name order; the first fresh match wins. Every
        literal occurrence of the matched entry's key in its payload is
        replaced by ``key``.

        Returns:
            A copy with ``source=fallback`` and ``fallback_from`` set, or None
        """
        if not self.enabled:
            return None

        category = keyword_category(key)
        now = self._clock()
        try:
            files = self._entry_files()
        except CacheError as e:
            logger.warning(f"Cache fallback skipped: {e}")
            return None

        for path in files:
            entry = self._read_entry(path)
            if entry is None:
                continue
            if entry.category != category or not entry.is_fresh(now, self.ttl_seconds):
                continue

            logger.info(f"Cache fallback for '{key}': using '{entry.key}' (category={category})")
            return entry.model_copy(
                update={
                    "key": key,
                    "payload": entry.payload.replace(entry.key, key),
                    "source": CacheSource.FALLBACK,
                    "fallback_from": entry.key,
                }
            )

        logger.debug(f"No fallback entry for '{key}' (category={category})")
        return None

    def invalidate(self, key: str) -> bool:
        """
        Delete the entry stored for ``key``.

        Returns:
            True if a file was deleted, False if none existed

        Raises:
            CacheError: If the delete fails
        """
        path = self._path_for(key)
        try:
            path.unlink()
        except FileNotFoundError:
            logger.debug(f"Cache entry not found: {key}")
            return False
        except OSError as e:
            raise CacheError(
                f"Failed to invalidate cache: {e}",
                operation="delete",
                cache_key=key,
            ) from e
        logger.info(f"Invalidated cache: {key}")
        return True

    def list_entries(self) -> list[CacheEntry]:
        """All readable entries, fresh and expired, in file name order."""
        entries = []
        for path in self._entry_files():
            entry = self._read_entry(path)
            if entry is not None:
                entries.append(entry)
        return entries

    def expires_at(self, entry: CacheEntry) -> float:
        return entry.timestamp + self.ttl_seconds

    def sweep(self) -> SweepReport:
        """
        Remove expired and corrupt files, then trim to ``max_entries``.

        Returns:
            SweepReport with the number of files removed and scanned

        Raises:
            CacheError: If no cache directory is available
        """
        if not self.enabled:
            return SweepReport(cleaned=0, total_files=0, cache_enabled=False)

        now = self._clock()
        files = self._entry_files()
        cleaned = 0
        survivors: list[tuple[float, Path]] = []

        for path in files:
            entry = self._read_entry(path)
            if entry is not None and entry.is_fresh(now, self.ttl_seconds):
                survivors.append((entry.timestamp, path))
                continue
            if self._remove(path):
                cleaned += 1

        stale_temp = self._stale_temp_files(now)
        for path in stale_temp:
            if self._remove(path):
                cleaned += 1

        overflow = len(survivors) - self.max_entries
        if overflow > 0:
            survivors.sort(key=lambda item: item[0])
            for _, path in survivors[:overflow]:
                if self._remove(path):
                    cleaned += 1

        total = len(files) + len(stale_temp)
        if cleaned:
            logger.info(f"Cache sweep removed {cleaned} of {total} files")
        else:
            logger.debug(f"Cache sweep found nothing to remove ({total} files)")

        return SweepReport(cleaned=cleaned, total_files=total, cache_enabled=True)

    def _stale_temp_files(self, now: float) -> list[Path]:
        """Temporary files left by interrupted writes that are at least TTL old."""
        stale = []
        for path in sorted(self._resolve_dir().glob(".*.tmp")):
            try:
                if now - path.stat().st_mtime >= self.ttl_seconds:
                    stale.append(path)
            except FileNotFoundError:
                continue
        return stale

    def _remove(self, path: Path) -> bool:
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"Failed to remove cache file {path.name}: {e}")
            return False

    def get_statistics(self) -> dict[str, Any]:
        """
        Get cache statistics.

        Returns:
            Dictionary containing:
            - enabled: Cache switch
            - cache_dir: Directory in use (None when unavailable)
            - total_files: Number of entry files
            - fresh_entries / expired_entries / corrupt_files
            - categories: Fresh entry count per category
            - ttl_seconds / max_entries: Configured bounds
        """
        stats: dict[str, Any] = {
            "enabled": self.enabled,
            "cache_dir": None,
            "total_files": 0,
            "fresh_entries": 0,
            "expired_entries": 0,
            "corrupt_files": 0,
            "categories": {},
            "ttl_seconds": self.ttl_seconds,
            "max_entries": self.max_entries,
        }
        try:
            files = self._entry_files()
        except CacheError as e:
            logger.warning(f"Cache statistics unavailable: {e}")
            return stats

        now = self._clock()
        stats["cache_dir"] = str(self._active_dir)
        stats["total_files"] = len(files)
        for path in files:
            entry = self._read_entry(path)
            if entry is None:
                stats["corrupt_files"] += 1
            elif entry.is_fresh(now, self.ttl_seconds):
                stats["fresh_entries"] += 1
                stats["categories"][entry.category] = stats["categories"].get(entry.category, 0) + 1
            else:
                stats["expired_entries"] += 1
        return stats

    def clear_all(self, confirm: bool = True) -> int:
        """
        Delete all cache files (use with caution).

        Args:
            confirm: Safety flag requiring explicit confirmation

        Returns:
            Number of files deleted

        Raises:
            CacheError: If not confirmed or no directory is available
        """
        if not confirm:
            raise CacheError(
                "clear_all requires explicit confirmation (confirm=True)",
                operation="clear_all"
            )

        deleted = sum(1 for path in self._entry_files() if self._remove(path))
        logger.warning(f"Cleared ALL {deleted} cache entries")
        return deleted

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"CacheManager(cache_dir={self._active_dir or self.cache_dir}, "
            f"ttl_seconds={self.ttl_seconds}, enabled={self.enabled})"
        )
