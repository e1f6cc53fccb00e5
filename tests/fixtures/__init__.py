"""
Test Fixtures

Fakes and sample data shared across test modules.

Components:
    - FakeClock: Manually advanced clock
    - make_search_item / search_page: Raw search API payloads
    - ScriptedChatClient: Generation client driven by per-backend scripts
    - VALID_ANALYSIS: Analysis report satisfying ANALYSIS_SCHEMA
"""

__all__ = [
    "FakeClock",
    "make_search_item",
    "search_page",
    "ScriptedChatClient",
    "VALID_ANALYSIS",
]

import asyncio
from typing import Any, Dict, List, Optional


class FakeClock:
    """Manually advanced clock usable wherever ``time.time`` is injected."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_search_item(
    note_id: str,
    title: str,
    desc: str = "通勤党必备",
    liked: Any = 100,
    comments: Any = 10,
    collected: Any = 50,
    nickname: str = "小美",
) -> Dict[str, Any]:
    """Raw search item in the shape returned by the search API."""
    return {
        "id": note_id,
        "model_type": "note",
        "note_card": {
            "display_title": title,
            "desc": desc,
            "interact_info": {
                "liked_count": liked,
                "comment_count": comments,
                "collected_count": collected,
            },
            "user": {"nickname": nickname},
        },
    }


def search_page(items: List[Dict[str, Any]], has_more: bool = False) -> Dict[str, Any]:
    """``data`` object of a successful search response."""
    return {"items": items, "has_more": has_more}


class ScriptedChatClient:
    """
    Fake generation client driven by per-backend scripts.

    Each script entry is either a value (returned / streamed) or an
    exception instance (raised). Stream entries are lists of chunks; a
    float chunk means "sleep this long before the next chunk" and an
    exception chunk is raised mid-stream.
    """

    def __init__(
        self,
        complete_script: Optional[Dict[str, List[Any]]] = None,
        stream_script: Optional[Dict[str, List[Any]]] = None,
    ):
        self.complete_script = {k: list(v) for k, v in (complete_script or {}).items()}
        self.stream_script = {k: list(v) for k, v in (stream_script or {}).items()}
        self.calls: List[tuple] = []

    async def complete(self, prompt: str, model: str, timeout: Optional[float] = None,
                       json_mode: bool = True) -> str:
        self.calls.append(("complete", model, timeout))
        step = self.complete_script[model].pop(0)
        if isinstance(step, BaseException):
            raise step
        if isinstance(step, float):
            await asyncio.sleep(step)
            return ""
        return step

    def stream(self, prompt: str, model: str, timeout: Optional[float] = None):
        self.calls.append(("stream", model, timeout))
        step = self.stream_script[model].pop(0)

        async def generate():
            if isinstance(step, BaseException):
                raise step
            for chunk in step:
                if isinstance(chunk, BaseException):
                    raise chunk
                if isinstance(chunk, float):
                    await asyncio.sleep(chunk)
                    continue
                yield chunk

        return generate()


VALID_ANALYSIS: Dict[str, Any] = {
    "titleFormulas": {
        "analysis": "数字+痛点",
        "suggestedFormulas": ["3个技巧让你XX"],
        "commonKeywords": ["防晒", "油皮"],
        "avoidWords": [],
    },
    "contentStructure": {
        "openingHooks": ["你是不是也..."],
        "bodyTemplate": "痛点-方案-效果",
        "endingHooks": ["评论区告诉我"],
        "emotionalTone": "亲切",
    },
    "tagStrategy": {"strategy": "大词+长尾", "commonTags": ["#防晒"]},
    "coverStyleAnalysis": {
        "commonStyles": ["对比图"],
        "suggestion": "高饱和",
        "colorTone": "暖色",
    },
}
