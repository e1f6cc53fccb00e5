"""
Normalizer Module

Data models and normalization of raw search items.

Components:
    - ProcessedNote: Normalized hot post
    - CacheEntry: Persisted cache file content
    - CredentialRecord: Pool-internal credential state
    - AttemptRecord: One orchestrator attempt
    - NoteTransformer: Raw search items -> notes -> summary text
"""

from .schemas import (
    AttemptOutcome,
    AttemptRecord,
    CacheEntry,
    CacheSource,
    CredentialRecord,
    ProcessedNote,
    ResultSource,
)
from .transformer import NoteTransformer

__all__ = [
    "ProcessedNote",
    "CacheEntry",
    "CacheSource",
    "CredentialRecord",
    "AttemptRecord",
    "AttemptOutcome",
    "ResultSource",
    "NoteTransformer",
]
