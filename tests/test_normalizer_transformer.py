"""
Tests for normalizer transformer module.

Test normalization of raw search items and summary rendering.
"""

import pytest

from tests.fixtures import make_search_item
from xhs_writer.normalizer.transformer import NoteTransformer


class TestNoteTransformer:
    """Test NoteTransformer class."""

    def test_from_search_item_note_card(self):
        """Test transforming a typical note_card item."""
        item = make_search_item("n1", "夏日防晒清单", liked="1.2万", comments="10+", collected="1,024")

        note = NoteTransformer.from_search_item(item)

        assert note.note_id == "n1"
        assert note.title == "夏日防晒清单"
        assert note.desc == "通勤党必备"
        assert note.interact_info.liked_count == 12000
        assert note.interact_info.comment_count == 10
        assert note.interact_info.collected_count == 1024
        assert note.user_info.nickname == "小美"

    def test_note_card_wins_over_item_fields(self):
        """Test that note_card values take priority over top-level ones."""
        item = {
            "id": "n2",
            "model_type": "note",
            "title": "outer title",
            "desc": "outer desc",
            "note_card": {"display_title": "inner title"},
        }

        note = NoteTransformer.from_search_item(item)

        assert note.title == "inner title"
        assert note.desc == "outer desc"

    def test_camel_case_counters(self):
        """Test camelCase counter aliases and nickName."""
        item = {
            "id": "n3",
            "model_type": "note",
            "interact_info": {"likedCount": "3k", "commentCount": 7},
            "user": {"nickName": "Lily"},
        }

        note = NoteTransformer.from_search_item(item)

        assert note.interact_info.liked_count == 3000
        assert note.interact_info.comment_count == 7
        assert note.interact_info.collected_count == 0
        assert note.user_info.nickname == "Lily"

    def test_defaults_for_missing_fields(self):
        """Test placeholder values for an empty item."""
        note = NoteTransformer.from_search_item({"model_type": "note"})

        assert note.title == "无标题"
        assert note.desc == "无描述"
        assert note.user_info.nickname == "未知用户"
        assert note.interact_info.total == 0

    def test_from_search_items_skips_non_notes(self, sample_search_items):
        """Test that only note-typed items are kept."""
        notes = NoteTransformer.from_search_items(sample_search_items + ["junk", None])
        assert [n.note_id for n in notes] == ["n1", "n2"]

    @pytest.mark.parametrize(
        "value, expected",
        [
            (42, 42),
            (3.7, 3),
            (-5, 0),
            ("1.5w", 15000),
            ("2千", 2000),
            ("10+", 10),
            ("1,234", 1234),
            ("", 0),
            ("abc", 0),
            (None, 0),
            (True, 0),
            ({"n": 1}, 0),
        ],
    )
    def test_normalize_count(self, value, expected):
        """Test counter parsing across the formats the API returns."""
        assert NoteTransformer.normalize_count(value) == expected

    def test_format_summary(self, sample_notes):
        """Test summary header and per-note blocks."""
        text = NoteTransformer.format_summary("防晒", sample_notes, 40)

        assert text.startswith('关键词"防晒"的热门笔记分析（目标40篇，实际获取2篇）：\n\n')
        assert "1. 标题：夏日防晒清单\n" in text
        assert "   互动：点赞12000 评论10 收藏50\n" in text
        assert "2. 标题：油皮防晒测评\n" in text
        assert "   作者：阿杰\n\n" in text

    def test_format_summary_truncates_long_desc(self):
        """Test that descriptions over 100 characters are cut with an ellipsis."""
        long_note = NoteTransformer.from_search_item(make_search_item("n", "t", desc="字" * 150))
        exact_note = NoteTransformer.from_search_item(make_search_item("m", "t", desc="字" * 100))

        text = NoteTransformer.format_summary("k", [long_note, exact_note], 2)

        assert f"   描述：{'字' * 100}...\n" in text
        assert f"   描述：{'字' * 100}\n" in text
