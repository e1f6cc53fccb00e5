"""
CacheManager usage examples.

Demonstrates the file-per-key hot-post cache: storing summaries,
freshness, same-category fallback and sweeping, using a temporary
directory so nothing touches the configured cache.
"""

import tempfile
from pathlib import Path

from xhs_writer.normalizer.transformer import NoteTransformer
from xhs_writer.orchestrator.cache_manager import CacheManager, keyword_category


class ManualClock:
    """Clock the examples advance by hand instead of waiting hours."""

    def __init__(self):
        self.now = 1_700_000_000.0

    def __call__(self) -> float:
        return self.now


SAMPLE_ITEMS = [
    {
        "id": "64f1a2b3000000001e03a1c2",
        "model_type": "note",
        "note_card": {
            "display_title": "油皮夏天防晒清单",
            "desc": "通勤党必备，不闷痘",
            "interact_info": {"liked_count": "1.2万", "comment_count": "356", "collected_count": "8千"},
            "user": {"nickname": "小美"},
        },
    },
    {
        "id": "64f1a2b3000000001e03a1c3",
        "model_type": "note",
        "note_card": {
            "display_title": "平价防晒测评",
            "desc": "五款百元内防晒实测",
            "interact_info": {"liked_count": 980, "comment_count": "10+", "collected_count": 410},
            "user": {"nickname": "阿杰"},
        },
    },
]


def example_basic_operations(cache: CacheManager, clock: ManualClock):
    """Store and read back a hot-post summary."""
    print("=== Basic Cache Operations ===\n")

    notes = NoteTransformer.from_search_items(SAMPLE_ITEMS)
    summary = NoteTransformer.format_summary("防晒", notes, target_count=40)

    print("1. Caching summary for 防晒...")
    entry = cache.put("防晒", summary, notes)
    print(f"   ✓ Stored in category '{entry.category}' with {entry.metadata.total_notes} notes\n")

    print("2. Reading it back...")
    cached = cache.get("防晒")
    print(f"   ✓ Cache hit, top authors: {', '.join(cached.metadata.top_authors)}\n")

    print("3. Six hours later...")
    clock.now += cache.ttl_seconds
    print(f"   ✓ Expired: {cache.get('防晒') is None}\n")
    clock.now -= cache.ttl_seconds


def example_category_fallback(cache: CacheManager):
    """Serve a related keyword's entry when nothing fresh exists."""
    print("=== Same-Category Fallback ===\n")

    cache.put("skincare", "Top skincare posts: skincare routines for oily skin")

    for keyword in ("sunscreen", "口红"):
        print(f"Keyword '{keyword}' (category: {keyword_category(keyword)})")
        entry = cache.get_fallback(keyword)
        if entry is None:
            print("   ✗ No fallback in this category\n")
        else:
            print(f"   ✓ From '{entry.fallback_from}': {entry.payload}\n")


def example_statistics_and_sweep(cache: CacheManager, clock: ManualClock):
    """Inspect the cache and clean it up."""
    print("=== Statistics and Sweep ===\n")

    clock.now += 7 * 3600
    cache.put("周末旅行攻略", "travel summary")

    stats = cache.get_statistics()
    print(f"  Directory:       {stats['cache_dir']}")
    print(f"  Files:           {stats['total_files']}")
    print(f"  Fresh / expired: {stats['fresh_entries']} / {stats['expired_entries']}")
    print(f"  Categories:      {stats['categories']}\n")

    report = cache.sweep()
    print(f"  Sweep removed {report.cleaned} of {report.total_files} files\n")


def main():
    """Run all examples."""
    print("\n" + "=" * 60)
    print("CacheManager Usage Examples")
    print("=" * 60 + "\n")

    with tempfile.TemporaryDirectory() as tmp:
        clock = ManualClock()
        cache = CacheManager(
            cache_dir=Path(tmp) / "cache",
            fallback_dir=Path(tmp) / "fallback",
            ttl_seconds=6 * 3600,
            enabled=True,
            clock=clock,
        )

        example_basic_operations(cache, clock)
        example_category_fallback(cache)
        example_statistics_and_sweep(cache, clock)

    print("=" * 60)
    print("All examples completed!")
    print("=" * 60 + "\n")


if __name__ == "__main__":
    main()
