"""
Model response parsing and shape validation.

Parsing Strategies (Priority Order):
    1. Direct JSON decode of the response text
    2. Repaired decode: markdown fences stripped, trailing commas removed

A decoded object is then checked against a ``ResponseSchema``. Nothing
is defaulted: a missing or empty field is a validation failure that the
orchestrator treats as retryable.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Union

import orjson

from ..utils.exceptions import ResponseValidationError

logger = logging.getLogger(__name__)

_FENCE_OPEN = re.compile(r"```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"```\s*$")
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")

_MISSING = object()


@dataclass(frozen=True)
class ResponseSchema:
    """
    Declared shape of a structured response.

    All paths are dotted (``"contentStructure.openingHooks"``).

    Attributes:
        required: Paths that must be present and truthy
        non_empty_lists: Paths that must hold a list with at least one element
        lists: Paths that, when present, must hold a list
        strings: Paths that, when present, must hold a string
    """

    required: tuple[str, ...] = ()
    non_empty_lists: tuple[str, ...] = ()
    lists: tuple[str, ...] = ()
    strings: tuple[str, ...] = ()

    @classmethod
    def coerce(cls, spec: Union["ResponseSchema", Iterable[str], None]) -> "ResponseSchema":
        """Accept either a schema or a plain list of required top-level names."""
        if spec is None:
            return cls()
        if isinstance(spec, ResponseSchema):
            return spec
        return cls(required=tuple(spec))


# Shape of the hot-post analysis report
ANALYSIS_SCHEMA = ResponseSchema(
    required=(
        "titleFormulas",
        "contentStructure",
        "tagStrategy",
        "coverStyleAnalysis",
    ),
    non_empty_lists=(
        "titleFormulas.suggestedFormulas",
        "contentStructure.openingHooks",
        "contentStructure.endingHooks",
        "coverStyleAnalysis.commonStyles",
    ),
    lists=(
        "titleFormulas.commonKeywords",
        "tagStrategy.commonTags",
    ),
    strings=(
        "contentStructure.bodyTemplate",
    ),
)


def repair_json_text(text: str) -> str:
    """Strip markdown fences and trailing commas from model output."""
    fixed = _FENCE_OPEN.sub("", text.strip())
    fixed = _FENCE_CLOSE.sub("", fixed)
    fixed = _TRAILING_COMMA.sub(r"\1", fixed)
    return fixed.strip()


def parse_json_object(text: str, source: str = "model") -> dict[str, Any]:
    """
    Decode response text into a JSON object.

    Args:
        text: Raw response text
        source: Label used in error details

    Returns:
        Decoded dictionary

    Raises:
        ResponseValidationError: If the text is empty, not JSON, or not an object
    """
    if not text or not text.strip():
        raise ResponseValidationError("Empty response content", errors=["empty"], source=source)

    try:
        parsed = orjson.loads(text)
    except orjson.JSONDecodeError:
        logger.debug("Direct JSON decode failed, trying repaired text", extra={"source": source})
        try:
            parsed = orjson.loads(repair_json_text(text))
        except orjson.JSONDecodeError as e:
            raise ResponseValidationError(
                f"Response is not valid JSON: {e}",
                errors=["invalid_json"],
                source=source,
                raw_data=text,
            ) from e

    if not isinstance(parsed, dict):
        raise ResponseValidationError(
            f"Response is a JSON {type(parsed).__name__}, expected an object",
            errors=["not_an_object"],
            source=source,
            raw_data=text,
        )
    return parsed


def resolve_path(data: Any, path: str) -> Any:
    """Follow a dotted path through nested dictionaries; returns a sentinel when absent."""
    current = data
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def find_problems(data: dict[str, Any], schema: ResponseSchema) -> list[str]:
    """
    List everything in ``data`` that violates ``schema``.

    Returns:
        Human-readable problems, empty when the shape is acceptable
    """
    problems = []

    for path in schema.required:
        value = resolve_path(data, path)
        if value is _MISSING or value is None:
            problems.append(f"missing field: {path}")
        elif not value and value != 0 and value is not False:
            problems.append(f"empty field: {path}")

    for path in schema.non_empty_lists:
        value = resolve_path(data, path)
        if not isinstance(value, list):
            problems.append(f"not a list: {path}")
        elif not value:
            problems.append(f"empty list: {path}")

    for path in schema.lists:
        value = resolve_path(data, path)
        if value is not _MISSING and not isinstance(value, list):
            problems.append(f"not a list: {path}")

    for path in schema.strings:
        value = resolve_path(data, path)
        if value is not _MISSING and not isinstance(value, str):
            problems.append(f"not a string: {path}")

    return problems


def parse_structured_response(
    text: str,
    schema: Union[ResponseSchema, Iterable[str], None] = None,
    source: str = "model",
) -> dict[str, Any]:
    """
    Decode and validate a structured model response.

    Args:
        text: Raw response text
        schema: ResponseSchema or list of required top-level field names
        source: Label used in error details (typically the backend name)

    Returns:
        The validated dictionary, unchanged

    Raises:
        ResponseValidationError: On any decode or shape problem
    """
    data = parse_json_object(text, source=source)
    problems = find_problems(data, ResponseSchema.coerce(schema))
    if problems:
        raise ResponseValidationError(
            f"Response failed validation: {'; '.join(problems)}",
            errors=problems,
            source=source,
        )
    return data
