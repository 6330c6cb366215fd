"""Client initialization utilities.

Provides functions for initializing external service clients
(Supabase, OpenAI, Redis, Stream HTTP) and wiring the pipeline services
used by the worker and CLI.
"""

from dataclasses import dataclass

import httpx
from openai import AsyncOpenAI
from redis.asyncio import Redis
from supabase import AsyncClient, acreate_client

from src.content_pipeline.config import ContentPipelineConfig
from src.content_pipeline.content_service import ContentService
from src.content_pipeline.embedding_service import EmbeddingService
from src.content_pipeline.job_store import RedisJobStore
from src.content_pipeline.llm_service import LLMService
from src.content_pipeline.pipeline import ContentJobPipeline
from src.content_pipeline.retrieval_service import RetrievalService
from src.content_pipeline.vector_index import SupabaseVectorIndex
from src.content_pipeline.video_service import StreamVideoService
from src.content_pipeline.work_queue import RedisWorkQueue

STREAM_TIMEOUT_SECONDS = 30.0


@dataclass
class PipelineClients:
    """Raw transport clients shared by all services in one process."""

    redis: Redis
    supabase: AsyncClient
    http: httpx.AsyncClient
    embedding: AsyncOpenAI
    llm: AsyncOpenAI

    async def aclose(self) -> None:
        await self.http.aclose()
        await self.redis.aclose()
        await self.embedding.close()
        await self.llm.close()


@dataclass
class PipelineServices:
    """Service graph built on top of ``PipelineClients``."""

    content: ContentService
    retrieval: RetrievalService
    pipeline: ContentJobPipeline


async def create_clients(config: ContentPipelineConfig) -> PipelineClients:
    """Initialize and return all transport clients.

    Raises:
        ValueError: If required settings are missing.

    Examples:
        >>> clients = await create_clients(get_config())
        >>> # Build services with build_services(config, clients)
    """
    if not config.supabase_url or not config.supabase_key:
        raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY environment variables are required")
    if not config.cloudflare_account_id or not config.stream_api_token:
        raise ValueError(
            "CLOUDFLARE_ACCOUNT_ID and STREAM_API_TOKEN environment variables are required"
        )

    embedding_key = config.embedding_api_key
    if config.embedding_provider == "ollama":
        embedding_key = "ollama"
    elif not embedding_key:
        raise ValueError("EMBEDDING_API_KEY environment variable is required")

    supabase = await acreate_client(config.supabase_url, config.supabase_key)
    redis = Redis.from_url(config.redis_url, decode_responses=True)
    http = httpx.AsyncClient(timeout=STREAM_TIMEOUT_SECONDS)
    embedding = AsyncOpenAI(base_url=config.embedding_base_url, api_key=embedding_key)
    llm = AsyncOpenAI(base_url=config.llm_base_url, api_key=config.llm_api_key or "ollama")

    return PipelineClients(
        redis=redis, supabase=supabase, http=http, embedding=embedding, llm=llm
    )


def build_services(
    config: ContentPipelineConfig, clients: PipelineClients
) -> PipelineServices:
    """Wire the pipeline services over already created clients."""
    store = RedisJobStore(clients.redis)
    queue = RedisWorkQueue(
        clients.redis, name=config.queue_name, max_attempts=config.queue_max_attempts
    )
    retrieval = RetrievalService(
        config,
        EmbeddingService(config, client=clients.embedding),
        SupabaseVectorIndex(config, clients.supabase),
    )
    content = ContentService(store, queue, retrieval)
    pipeline = ContentJobPipeline(
        config,
        content,
        StreamVideoService(config, clients.http),
        LLMService(config, client=clients.llm),
        retrieval,
        queue,
    )
    return PipelineServices(content=content, retrieval=retrieval, pipeline=pipeline)
