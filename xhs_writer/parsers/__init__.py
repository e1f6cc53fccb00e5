"""
Parsers Module

Validation of model responses and cleanup of streamed output.

Components:
    - ResponseSchema: Required shape of a structured response
    - parse_structured_response: Extract, repair and validate a JSON object
    - StartMarkerFilter: Drops streamed preamble before the start marker
"""

from .response_parser import ANALYSIS_SCHEMA, ResponseSchema, parse_structured_response
from .stream_filter import StartMarkerFilter, sanitize_text

__all__ = [
    "ANALYSIS_SCHEMA",
    "ResponseSchema",
    "parse_structured_response",
    "StartMarkerFilter",
    "sanitize_text",
]
