"""Search request, intermediate, and response models.

Caller-facing models are frozen pydantic models; the values passed between
the fuser, the filter engine and the orchestrator are frozen dataclasses.
All of them are built fresh for one search call and never mutated.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ContentType(str, Enum):
    """Kind of captured content."""

    TEXT = "text"
    IMAGE = "image"
    PDF = "pdf"
    AUDIO = "audio"


class SourceMethod(str, Enum):
    """Which backend produced a candidate."""

    VECTOR = "vector"
    LEXICAL = "lexical"
    COMBINED = "combined"


class SearchMethod(str, Enum):
    """Which backends contributed to a response."""

    VECTOR = "vector"
    FTS = "fts"
    COMBINED = "combined"


def as_utc(value: datetime) -> datetime:
    """Return value as an aware UTC datetime, treating naive values as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Filters(BaseModel):
    """Structural filters applied on top of relevance ranking."""

    model_config = ConfigDict(frozen=True)

    content_types: frozenset[ContentType] = Field(
        default_factory=frozenset,
        description="Allowed content types (empty means any)",
    )
    tags: frozenset[str] = Field(
        default_factory=frozenset,
        description="Tags every result must carry",
    )
    date_from: Optional[datetime] = Field(None, description="Inclusive lower bound on created_at")
    date_to: Optional[datetime] = Field(None, description="Inclusive upper bound on created_at")

    @field_validator("date_from", "date_to")
    @classmethod
    def _normalize_dates(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value) if value is not None else None

    @field_validator("tags")
    @classmethod
    def _strip_tags(cls, value: frozenset[str]) -> frozenset[str]:
        return frozenset(tag.strip() for tag in value if tag.strip())

    def is_empty(self) -> bool:
        """True when no filter restricts the result set."""
        return not (self.content_types or self.tags or self.date_from or self.date_to)


class SearchQuery(BaseModel):
    """A validated search request."""

    model_config = ConfigDict(frozen=True)

    query: str = Field(..., min_length=1, description="Trimmed query text")
    limit: int = Field(..., ge=1, description="Maximum results to return")
    filters: Filters = Field(default_factory=Filters)
    owner_id: str = Field(..., min_length=1, description="Owner scoping every read")


@dataclass(frozen=True)
class VectorMatch:
    """A vector index answer: document id and its cosine distance."""

    id: str
    distance: float


@dataclass(frozen=True)
class LexicalMatch:
    """A lexical index answer: document id and its engine-specific rank."""

    id: str
    rank: float


@dataclass(frozen=True)
class RawHit:
    """Backend hit on the backend's native scale, not yet comparable across sources."""

    id: str
    raw_score: float
    source_method: SourceMethod


@dataclass(frozen=True)
class ScoredResult:
    """Candidate after normalization, scored in [0, 1]."""

    id: str
    relevance_score: float
    source_method: SourceMethod


@dataclass(frozen=True)
class DocumentAttributes:
    """Structural columns used for filtering and tie-breaking."""

    id: str
    content_type: ContentType
    tags: frozenset[str]
    created_at: datetime
    owner_id: str


@dataclass(frozen=True)
class ContentRecord:
    """Display metadata for one stored item."""

    id: str
    title: Optional[str]
    content_type: ContentType
    tags: tuple[str, ...]
    created_at: datetime
    excerpt_source: str
    owner_id: str
    excerpt_is_annotation: bool = False


@dataclass(frozen=True)
class CandidatePool:
    """Ranked candidates with their attributes.

    exhausted is True when no contributing backend was cut off at the
    requested k, or k already reached the pool ceiling, so asking for more
    cannot surface new documents.
    """

    results: list[ScoredResult] = field(default_factory=list)
    attributes: dict[str, DocumentAttributes] = field(default_factory=dict)
    exhausted: bool = True


class SearchResult(BaseModel):
    """Hydrated search result returned to callers."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: Optional[str] = None
    excerpt: str
    content_type: ContentType
    relevance_score: float = Field(..., ge=0.0, le=1.0)
    tags: list[str] = Field(default_factory=list)
    created_at: datetime
    owner_id: str


class SearchResponse(BaseModel):
    """Search response with ordered results."""

    model_config = ConfigDict(frozen=True)

    results: list[SearchResult]
    total_results: int
    search_method_used: SearchMethod
    applied_filters: Filters
