"""
Transformation of raw search API items into normalized notes.

Turns the loosely-shaped items returned by the content search API into
``ProcessedNote`` records and renders them as the summary text that is
cached and handed to prompt construction.
"""

import re
from typing import Any, Optional

from .schemas import InteractInfo, ProcessedNote, UserInfo


DEFAULT_TITLE = "无标题"
DEFAULT_DESC = "无描述"
DEFAULT_NICKNAME = "未知用户"

# Characters of the description shown per note in the summary
DESC_PREVIEW_LENGTH = 100


class NoteTransformer:
    """
    Normalize search API items.

    Items carry their data either inside ``note_card`` or directly on the
    item; ``note_card`` wins where both exist.
    """

    FIELD_MAP = {
        "title": ["display_title", "title"],
        "desc": ["desc"],
        "interact_info": ["interact_info"],
        "user": ["user"],
    }

    COUNT_FIELDS = {
        "liked_count": ["liked_count", "likedCount"],
        "comment_count": ["comment_count", "commentCount"],
        "collected_count": ["collected_count", "collectedCount"],
    }

    # Suffix multipliers seen in engagement counters ("1.2万", "3k")
    COUNT_MULTIPLIERS = {"万": 10_000, "w": 10_000, "千": 1_000, "k": 1_000}

    @staticmethod
    def is_note(item: Any) -> bool:
        return isinstance(item, dict) and item.get("model_type") == "note"

    @staticmethod
    def from_search_item(item: dict[str, Any]) -> ProcessedNote:
        """
        Transform one raw search item to a ProcessedNote.

        Args:
            item: Raw item from ``data.items``

        Returns:
            ProcessedNote with defaults for anything missing
        """
        card = item.get("note_card") or {}
        sources = [card, item] if isinstance(card, dict) else [item]

        title = NoteTransformer._first(sources, NoteTransformer.FIELD_MAP["title"]) or DEFAULT_TITLE
        desc = NoteTransformer._first(sources, NoteTransformer.FIELD_MAP["desc"]) or DEFAULT_DESC

        raw_interact = NoteTransformer._first(sources, NoteTransformer.FIELD_MAP["interact_info"]) or {}
        counts = {
            name: NoteTransformer.normalize_count(NoteTransformer._extract_field(raw_interact, aliases))
            for name, aliases in NoteTransformer.COUNT_FIELDS.items()
        } if isinstance(raw_interact, dict) else {}

        raw_user = NoteTransformer._first(sources, NoteTransformer.FIELD_MAP["user"]) or {}
        nickname = None
        if isinstance(raw_user, dict):
            nickname = NoteTransformer._extract_field(raw_user, ["nickname", "nick_name", "nickName"])

        return ProcessedNote(
            title=str(title),
            desc=str(desc),
            interact_info=InteractInfo(**counts),
            note_id=str(item.get("id") or item.get("note_id") or ""),
            user_info=UserInfo(nickname=str(nickname or DEFAULT_NICKNAME)),
        )

    @staticmethod
    def from_search_items(items: list[Any]) -> list[ProcessedNote]:
        """Normalize every note-typed item, skipping anything else."""
        return [NoteTransformer.from_search_item(item) for item in items if NoteTransformer.is_note(item)]

    @staticmethod
    def normalize_count(value: Any) -> int:
        """
        Normalize an engagement counter to a non-negative int.

        Accepts ints, floats and strings such as "1,024", "10+", "1.2万" or
        "3k". Anything unparseable counts as 0.
        """
        if value is None or isinstance(value, bool):
            return 0

        if isinstance(value, (int, float)):
            return max(int(value), 0)

        if not isinstance(value, str):
            return 0

        cleaned = value.strip().lower().replace(",", "").replace("+", "").replace(" ", "")
        if not cleaned:
            return 0

        multiplier = 1
        suffix = cleaned[-1]
        if suffix in NoteTransformer.COUNT_MULTIPLIERS:
            multiplier = NoteTransformer.COUNT_MULTIPLIERS[suffix]
            cleaned = cleaned[:-1]

        try:
            return max(int(float(cleaned) * multiplier), 0)
        except ValueError:
            digits = re.sub(r"[^0-9]", "", cleaned)
            return int(digits) if digits else 0

    @staticmethod
    def format_summary(keyword: str, notes: list[ProcessedNote], target_count: int) -> str:
        """
        Render notes as the analysis text used in prompts.

        Args:
            keyword: Topic keyword
            notes: Normalized notes
            target_count: Number of notes that was requested

        Returns:
            Multi-line summary text
        """
        lines = [f'关键词"{keyword}"的热门笔记分析（目标{target_count}篇，实际获取{len(notes)}篇）：\n\n']
        for index, note in enumerate(notes, start=1):
            desc = note.desc[:DESC_PREVIEW_LENGTH]
            if len(note.desc) > DESC_PREVIEW_LENGTH:
                desc += "..."
            info = note.interact_info
            lines.append(f"{index}. 标题：{note.title}\n")
            lines.append(f"   描述：{desc}\n")
            lines.append(
                f"   互动：点赞{info.liked_count} 评论{info.comment_count} 收藏{info.collected_count}\n"
            )
            lines.append(f"   作者：{note.user_info.nickname}\n\n")
        return "".join(lines)

    @staticmethod
    def _first(sources: list[dict[str, Any]], field_names: list[str]) -> Optional[Any]:
        for source in sources:
            value = NoteTransformer._extract_field(source, field_names)
            if value:
                return value
        return None

    @staticmethod
    def _extract_field(data: dict[str, Any], field_names: list[str]) -> Optional[Any]:
        """
        Extract field from data dictionary trying multiple field names.

        Args:
            data: Source data dictionary
            field_names: List of possible field names to try

        Returns:
            Optional[Any]: Field value or None if not found
        """
        for field_name in field_names:
            if field_name in data and data[field_name] is not None:
                return data[field_name]
        return None
