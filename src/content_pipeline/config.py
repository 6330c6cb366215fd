"""Configuration module for the lecture content pipeline."""

import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Load environment variables from .env file
load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


class ContentPipelineConfig(BaseModel):
    """Configuration for the content pipeline.

    Covers the captioning service, the language-model and embedding
    endpoints, the vector index, the job store and work queue, chunk sizes,
    polling bounds and the relevance gate. All settings can be overridden via
    environment variables.
    """

    # Language-model settings
    llm_base_url: str = Field(
        default_factory=lambda: os.getenv("LLM_BASE_URL", "https://api.openai.com/v1")
    )
    llm_api_key: str = Field(default_factory=lambda: os.getenv("LLM_API_KEY", ""))
    llm_model: str = Field(default_factory=lambda: os.getenv("LLM_CHOICE", "gpt-4o-mini"))
    llm_max_tokens: int = Field(
        default_factory=lambda: int(os.getenv("LLM_MAX_TOKENS", "4000"))
    )
    llm_temperature: float = Field(
        default_factory=lambda: float(os.getenv("LLM_TEMPERATURE", "0.3"))
    )

    # Embedding settings
    embedding_provider: str = Field(
        default_factory=lambda: os.getenv("EMBEDDING_PROVIDER", "openai")
    )
    embedding_base_url: str = Field(
        default_factory=lambda: os.getenv(
            "EMBEDDING_BASE_URL", "https://api.openai.com/v1"
        )
    )
    embedding_api_key: str = Field(
        default_factory=lambda: os.getenv("EMBEDDING_API_KEY", "")
    )
    embedding_model: str = Field(
        default_factory=lambda: os.getenv(
            "EMBEDDING_MODEL_CHOICE", "text-embedding-3-small"
        )
    )
    embedding_dimensions: int = Field(
        default_factory=lambda: int(os.getenv("EMBEDDING_DIMENSIONS", "1536"))
    )

    # Video/caption service settings
    cloudflare_account_id: str = Field(
        default_factory=lambda: os.getenv("CLOUDFLARE_ACCOUNT_ID", "")
    )
    stream_api_token: str = Field(
        default_factory=lambda: os.getenv("STREAM_API_TOKEN", "")
    )
    stream_base_url: str = Field(
        default_factory=lambda: os.getenv(
            "STREAM_BASE_URL", "https://api.cloudflare.com/client/v4"
        )
    )
    video_cleanup: bool = Field(
        default_factory=lambda: _env_bool("VIDEO_CLEANUP", "true")
    )

    # Vector index settings (Supabase pgvector)
    supabase_url: str = Field(default_factory=lambda: os.getenv("SUPABASE_URL", ""))
    supabase_key: str = Field(
        default_factory=lambda: os.getenv("SUPABASE_SERVICE_KEY", "")
    )
    vector_table: str = Field(
        default_factory=lambda: os.getenv("VECTOR_TABLE", "content_vectors")
    )
    vector_match_function: str = Field(
        default_factory=lambda: os.getenv("VECTOR_MATCH_FUNCTION", "match_content_vectors")
    )

    # Job store and work queue settings (Redis)
    redis_url: str = Field(
        default_factory=lambda: os.getenv("REDIS_URL", "redis://localhost:6379/0")
    )
    queue_name: str = Field(
        default_factory=lambda: os.getenv("WORK_QUEUE_NAME", "transcribe")
    )
    queue_max_attempts: int = Field(
        default_factory=lambda: int(os.getenv("QUEUE_MAX_ATTEMPTS", "3"))
    )
    # Received messages older than this go back to the queue; must exceed the
    # longest job (processing + caption waits + summary + indexing).
    queue_visibility_timeout: float = Field(
        default_factory=lambda: float(os.getenv("QUEUE_VISIBILITY_TIMEOUT_SECONDS", "1800"))
    )
    worker_batch_size: int = Field(
        default_factory=lambda: int(os.getenv("WORKER_BATCH_SIZE", "10"))
    )
    worker_max_concurrency: int = Field(
        default_factory=lambda: int(os.getenv("WORKER_MAX_CONCURRENCY", "5"))
    )

    # Chunking settings (character-based)
    min_chunk_chars: int = Field(
        default_factory=lambda: int(os.getenv("MIN_CHUNK_CHARS", "20"))
    )
    max_chunk_chars: int = Field(
        default_factory=lambda: int(os.getenv("MAX_CHUNK_CHARS", "500"))
    )

    # Polling settings (seconds)
    processing_max_wait: float = Field(
        default_factory=lambda: float(os.getenv("PROCESSING_MAX_WAIT_SECONDS", "300"))
    )
    processing_poll_interval: float = Field(
        default_factory=lambda: float(os.getenv("PROCESSING_POLL_INTERVAL_SECONDS", "5"))
    )
    caption_max_wait: float = Field(
        default_factory=lambda: float(os.getenv("CAPTION_MAX_WAIT_SECONDS", "600"))
    )
    caption_poll_interval: float = Field(
        default_factory=lambda: float(os.getenv("CAPTION_POLL_INTERVAL_SECONDS", "10"))
    )

    # Relevance gate. Empirically tuned; kept configurable for future tuning.
    relevance_min_gap: float = Field(
        default_factory=lambda: float(os.getenv("RELEVANCE_MIN_GAP", "0.015"))
    )
    relevance_min_max_score: float = Field(
        default_factory=lambda: float(os.getenv("RELEVANCE_MIN_MAX_SCORE", "0.3"))
    )
    relevance_selection_floor: float = Field(
        default_factory=lambda: float(os.getenv("RELEVANCE_SELECTION_FLOOR", "0.1"))
    )
    relevance_candidates: int = Field(
        default_factory=lambda: int(os.getenv("RELEVANCE_CANDIDATES", "5"))
    )


def get_config() -> ContentPipelineConfig:
    """Get validated configuration instance.

    Returns:
        ContentPipelineConfig: Validated configuration object with all settings.

    Raises:
        pydantic.ValidationError: If an environment variable has an invalid value.
    """
    return ContentPipelineConfig()
