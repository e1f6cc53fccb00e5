"""
Default prompt builders.

Minimal analysis and generation prompts so the command line flows are
runnable end to end. Deployments with their own prompt templates pass
replacement builders to ``HotPostSource``.
"""

import orjson

# Scraped text longer than this is cut before it enters a prompt
MAX_CONTENT_LENGTH = 8000
TRUNCATION_NOTE = "\n\n[内容因长度限制被截断...]"


def prepare_scraped_content(text: str, max_length: int = MAX_CONTENT_LENGTH) -> str:
    """
    Make scraped text safe to embed in a prompt.

    Code fences are neutralized, surrounding whitespace removed and the
    result truncated with a note when longer than ``max_length``.
    """
    safe = text.replace("```", "´´´").strip()
    if len(safe) > max_length:
        safe = safe[:max_length] + TRUNCATION_NOTE
    return safe


def build_analysis_prompt(content: str) -> str:
    """Prompt asking for the JSON analysis report of hot posts."""
    return (
        "你是小红书内容分析师，分析以下热门笔记，提取爆款规律。\n\n"
        f"**热门笔记数据：**\n{content}\n\n"
        "**输出要求：**严格按JSON格式输出，不要任何额外文字。包含以下字段：\n"
        "- titleFormulas: {analysis, suggestedFormulas[], commonKeywords[], avoidWords[]}\n"
        "- contentStructure: {openingHooks[], bodyTemplate, endingHooks[], emotionalTone}\n"
        "- tagStrategy: {strategy, commonTags[]}\n"
        "- coverStyleAnalysis: {commonStyles[], suggestion, colorTone}\n\n"
        "不确定的信息返回空值，禁止编造信息。"
    )


def build_generation_prompt(analysis: dict, user_info: str, keyword: str) -> str:
    """Prompt asking for the finished post; output starts at the '## 1.' heading."""
    rules = orjson.dumps(analysis, option=orjson.OPT_INDENT_2).decode("utf-8")
    return (
        "你是小红书爆款博主，基于用户素材创作一篇高质量笔记。\n\n"
        f"**爆款规律（内化后使用，不要输出）：**\n{rules}\n\n"
        f"**用户素材：**\n{user_info}\n\n"
        f"**关键词：** {keyword}\n\n"
        "**核心要求：**内容必须基于用户素材，语言自然口语化，标题≤20字，正文450-750字，标签10-15个。\n\n"
        "**直接输出以下格式，不要任何前导文字：**\n\n"
        "## 1. 爆款标题创作（3个）\n\n"
        "## 2. 正文内容\n\n"
        "## 3. 关键词标签（10-15个）\n\n"
        "## 4. 首评关键词引导\n\n"
        "## 5. 发布策略建议\n"
    )
