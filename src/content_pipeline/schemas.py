"""Pydantic schemas for the lecture content pipeline."""

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

JobStatus = Literal["queued", "processing", "completed", "failed"]
VectorType = Literal["transcript", "summary"]
CaptionFormat = Literal["vtt", "srt", "json"]
QueueAction = Literal["process_video", "recaption"]


def utc_now() -> datetime:
    return datetime.now(UTC)


class StoredModel(BaseModel):
    """Base for records persisted in the job store or vector metadata.

    Stored documents use camelCase keys (``contentId``, ``createdAt``) so they
    stay readable by the chat and status consumers that share the store.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_record(self) -> dict[str, Any]:
        """Serialize to a JSON-safe dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class JobOptions(StoredModel):
    """Immutable processing options chosen at submission time."""

    format: CaptionFormat = "vtt"
    timestamps: bool = True
    word_timestamps: bool = False


class JobProgress(StoredModel):
    """The frequently-updated progress sub-record of a job."""

    stage: str
    percentage: int = Field(ge=0, le=100)
    message: str


class JobError(StoredModel):
    """Failure details; present only when a job has status ``failed``."""

    message: str
    timestamp: datetime = Field(default_factory=utc_now)


class ContentJob(StoredModel):
    """One processing request, keyed by its content-addressed id.

    ``created_at`` survives forced reprocessing; ``updated_at`` moves on
    every mutation.
    """

    content_id: str
    video_url: str
    language: str
    options: JobOptions = Field(default_factory=JobOptions)
    status: JobStatus = "queued"
    progress: JobProgress = Field(
        default_factory=lambda: JobProgress(
            stage="queued", percentage=0, message="Job queued for processing"
        )
    )
    error: JobError | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    stream_id: str | None = None
    duration: float | None = None
    source: str | None = None


class TranscriptSegment(BaseModel):
    """Single caption cue with start/end in seconds."""

    start: float
    end: float
    text: str


class Chunk(BaseModel):
    """A merged run of consecutive transcript segments sized for embedding."""

    text: str
    start_time: float
    end_time: float
    segment_count: int


class VectorMetadata(StoredModel):
    """Metadata stored next to every vector.

    ``content_id`` is always a string so equality filters behave the same for
    hex ids that happen to look numeric.
    """

    content_id: str
    type: VectorType
    text: str
    chunk_index: int
    start_time: float = 0.0
    end_time: float = 0.0
    language: str = "ko"
    created_at: str = Field(default_factory=lambda: utc_now().isoformat())
    duration: float | None = None
    video_url: str | None = None
    source: str | None = None

    @field_validator("content_id", mode="before")
    @classmethod
    def _coerce_content_id(cls, value: Any) -> str:
        return str(value)


class VectorRecord(BaseModel):
    """Embedding plus metadata, as written to the vector index."""

    id: str
    embedding: list[float]
    metadata: VectorMetadata


class ScoredMatch(BaseModel):
    """Raw similarity match returned by the vector index."""

    id: str
    score: float
    metadata: dict[str, Any] = Field(default_factory=dict)


class SearchResult(StoredModel):
    """Flattened search hit handed to chat/search callers."""

    id: str
    score: float
    content_id: str | None = None
    type: str | None = None
    text: str | None = None
    chunk_index: int | None = None
    start_time: float | None = None
    end_time: float | None = None
    language: str | None = None
    created_at: str | None = None


class SearchResponse(BaseModel):
    """Search results plus whether the content filter had to fall back.

    ``used_fallback`` is True when no match survived the local ``contentId``
    check and the unfiltered candidates were returned instead.
    """

    query: str
    results: list[SearchResult] = Field(default_factory=list)
    total: int = 0
    used_fallback: bool = False


class ContextSource(StoredModel):
    content_id: str | None = None
    type: str | None = None
    score: float
    start_time: float | None = None
    end_time: float | None = None


class ContentContext(BaseModel):
    """Grounding material for one chat turn."""

    has_context: bool
    context: str = ""
    sources: list[ContextSource] = Field(default_factory=list)
    relevant_chunks: int = 0
    max_score: float = 0.0
    avg_score: float = 0.0
    gap: float = 0.0
    error: str | None = None


class IndexResult(BaseModel):
    content_id: str
    chunks_indexed: int
    summary_indexed: int
    total_vectors: int
    deleted: int = 0


class QuizQuestion(StoredModel):
    question: str
    options: list[str]
    answer: int
    explanation: str = ""


class EducationalContent(StoredModel):
    """Write-once artifact derived from a transcript by the language model."""

    summary: str
    objectives: list[str] = Field(default_factory=list)
    recommended_questions: list[str] = Field(default_factory=list)
    quiz: list[QuizQuestion] = Field(default_factory=list)


class VideoStatus(BaseModel):
    uid: str
    state: str
    error_reason: str | None = None
    duration: float | None = None


class CaptionStatus(BaseModel):
    language: str
    state: str  # pending, ready, error, not-started
    label: str | None = None


class CaptionTrack(BaseModel):
    language: str
    label: str | None = None
    content: str


class QueueMessage(StoredModel):
    """Body of a job-start message on the work queue."""

    content_id: str
    action: QueueAction = "process_video"
    stream_id: str | None = None
    language: str | None = None
    timestamp: datetime = Field(default_factory=utc_now)


class SubmitResult(StoredModel):
    """Outcome of a submission, returned to the caller."""

    content_id: str
    status: JobStatus
    status_url: str
    result_url: str
    is_existing: bool
    message: str
