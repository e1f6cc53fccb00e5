"""
Data schemas for notes, cache entries and orchestration results.

Pydantic models providing type safety, validation, and serialization
for everything the resilience core stores or reports.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class CacheSource(str, Enum):
    """Origin of a cache entry's payload."""

    FETCHED = "fetched"
    FALLBACK = "fallback"


class ResultSource(str, Enum):
    """Where a hot-post result came from in the cache/fetch/fallback flow."""

    CACHE = "cache"
    FETCHED = "fetched"
    FALLBACK = "fallback"


class AttemptOutcome(str, Enum):
    """Classification of a single backend attempt."""

    SUCCESS = "success"
    TRANSPORT = "transport"
    TIMEOUT = "timeout"
    HTTP = "http"
    VALIDATION = "validation"
    EMPTY_STREAM = "empty_stream"


class InteractInfo(BaseModel):
    """Engagement counters of a note."""

    liked_count: int = Field(0, description="Likes", ge=0)
    comment_count: int = Field(0, description="Comments", ge=0)
    collected_count: int = Field(0, description="Collects (bookmarks)", ge=0)

    @property
    def total(self) -> int:
        return self.liked_count + self.comment_count + self.collected_count


class UserInfo(BaseModel):
    nickname: str = Field("未知用户", description="Author display name")


class ProcessedNote(BaseModel):
    """
    Normalized search result record.

    Produced from raw search API items by ``NoteTransformer`` and stored as
    the structured part of a cache entry.
    """

    title: str = Field("无标题", description="Note title")
    desc: str = Field("无描述", description="Note description")
    interact_info: InteractInfo = Field(default_factory=InteractInfo)
    note_id: str = Field("", description="Upstream note identifier")
    user_info: UserInfo = Field(default_factory=UserInfo)

    model_config = {
        "json_schema_extra": {
            "example": {
                "title": "夏日防晒清单",
                "desc": "通勤党必备的三款防晒",
                "interact_info": {"liked_count": 2847, "comment_count": 156, "collected_count": 1203},
                "note_id": "64f1a2b3000000001e03a1c2",
                "user_info": {"nickname": "小美"},
            }
        }
    }


class CacheMetadata(BaseModel):
    """Summary statistics computed when an entry is written."""

    total_notes: int = Field(0, ge=0)
    avg_interaction: int = Field(0, ge=0)
    top_authors: list[str] = Field(default_factory=list)

    @classmethod
    def from_notes(cls, notes: list[ProcessedNote]) -> "CacheMetadata":
        """
        Compute metadata for a list of notes.

        The average interaction is the rounded mean of likes + comments +
        collects; top authors are the first five nicknames in order.
        """
        if not notes:
            return cls()
        total = sum(note.interact_info.total for note in notes)
        return cls(
            total_notes=len(notes),
            avg_interaction=round(total / len(notes)),
            top_authors=[note.user_info.nickname for note in notes[:5]],
        )


class CacheEntry(BaseModel):
    """
    One cached keyword result.

    Attributes:
        key: Topic keyword the entry belongs to
        category: Category derived from the key
        payload: Summary text handed to prompt construction
        records: Normalized notes behind the summary
        timestamp: Epoch seconds at write time
        source: fetched or fallback
        metadata: Summary statistics
        fallback_from: Key of the entry that was repurposed (fallback results only)
    """

    key: str = Field(..., min_length=1)
    category: str
    payload: str
    records: list[ProcessedNote] = Field(default_factory=list)
    timestamp: float = Field(..., ge=0)
    source: CacheSource = CacheSource.FETCHED
    metadata: CacheMetadata = Field(default_factory=CacheMetadata)
    fallback_from: Optional[str] = None

    def age(self, now: float) -> float:
        return now - self.timestamp

    def is_fresh(self, now: float, ttl: float) -> bool:
        """An entry is fresh while its age is strictly below the TTL."""
        return self.age(now) < ttl

    def to_storage(self) -> dict[str, Any]:
        """Dictionary written to disk (fallback_from is never persisted)."""
        return self.model_dump(mode="json", exclude={"fallback_from"})


class CredentialRecord(BaseModel):
    """
    State of one pooled credential.

    Timestamps are epoch seconds; 0.0 means "never".
    """

    id: str
    secret: str = Field(..., min_length=1)
    valid: bool = True
    last_used: float = 0.0
    failure_count: int = Field(0, ge=0)
    consecutive_failures: int = Field(0, ge=0)
    last_validated: float = 0.0

    @field_validator("secret")
    @classmethod
    def strip_secret(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Credential secret cannot be blank")
        return v


class AttemptRecord(BaseModel):
    """One backend call made by the request orchestrator."""

    backend: str
    attempt: int = Field(..., ge=0)
    timeout: float = Field(..., ge=0)
    started_at: float
    elapsed: float = Field(0.0, ge=0)
    outcome: AttemptOutcome
    error: Optional[str] = None

    def __repr__(self) -> str:
        return (
            f"AttemptRecord(backend={self.backend!r}, attempt={self.attempt}, "
            f"outcome={self.outcome.value}, elapsed={self.elapsed:.2f})"
        )


class StructuredResult(BaseModel):
    """Validated structured response plus the attempt history behind it."""

    data: dict[str, Any]
    backend: str
    attempts: list[AttemptRecord] = Field(default_factory=list)


class StreamResult(BaseModel):
    """Outcome of a successful streaming request."""

    backend: str
    text: str = ""
    chunk_count: int = Field(0, ge=0)
    attempts: list[AttemptRecord] = Field(default_factory=list)


class FetchResult(BaseModel):
    """Summary text and normalized notes produced by one live fetch."""

    keyword: str
    summary: str
    notes: list[ProcessedNote] = Field(default_factory=list)
    pages: int = Field(0, ge=0)
    credential_id: Optional[str] = None


class HotPostsResult(BaseModel):
    """Text handed to prompt construction together with its provenance."""

    keyword: str
    text: str
    source: ResultSource
    notes: list[ProcessedNote] = Field(default_factory=list)
    fallback_from: Optional[str] = None

    @model_validator(mode="after")
    def check_fallback_origin(self) -> "HotPostsResult":
        if self.source != ResultSource.FALLBACK:
            self.fallback_from = None
        return self


class SweepReport(BaseModel):
    """Result of a cache sweep."""

    cleaned: int = Field(0, ge=0)
    total_files: int = Field(0, ge=0)
    cache_enabled: bool = True
