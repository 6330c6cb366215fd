"""Shared fixtures and in-memory collaborators for the content pipeline tests."""

import json
import math
from typing import Any

import pytest

from src.content_pipeline.config import ContentPipelineConfig
from src.content_pipeline.schemas import QueueMessage, ScoredMatch, VectorRecord
from src.content_pipeline.work_queue import Delivery


class InMemoryJobStore:
    """JobStore keeping JSON round-tripped copies, like the Redis store."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}

    async def get(self, key: str) -> dict[str, Any] | None:
        raw = self.data.get(key)
        return json.loads(raw) if raw else None

    async def set(self, key: str, value: dict[str, Any]) -> None:
        self.data[key] = json.dumps(value)

    async def delete(self, key: str) -> None:
        self.data.pop(key, None)

    async def list(self, prefix: str, limit: int = 100) -> list[str]:
        return sorted(k for k in self.data if k.startswith(prefix))[:limit]


class InMemoryWorkQueue:
    """WorkQueue recording sends, acks, retries and reclaim passes."""

    name = "test"

    def __init__(self) -> None:
        self.pending: list[Delivery] = []
        self.sent: list[QueueMessage] = []
        self.acked: list[Delivery] = []
        self.retried: list[Delivery] = []
        self.reclaim_calls: list[float] = []

    async def send(self, message: QueueMessage) -> None:
        self.sent.append(message)
        self.pending.append(
            Delivery(id=f"msg-{len(self.sent)}", body=message.to_record())
        )

    async def receive(self, max_messages: int = 10, timeout: float = 5) -> list[Delivery]:
        batch, self.pending = self.pending[:max_messages], self.pending[max_messages:]
        return batch

    async def ack(self, delivery: Delivery) -> None:
        self.acked.append(delivery)

    async def retry(self, delivery: Delivery) -> None:
        self.retried.append(delivery)

    async def reclaim_stale(self, visibility_timeout: float) -> int:
        self.reclaim_calls.append(visibility_timeout)
        return 0


class InMemoryVectorIndex:
    """VectorIndex scoring by cosine similarity.

    ``lagging_filter`` makes ``query`` ignore the metadata filter, like a
    remote index whose filter has not caught up with fresh inserts.
    """

    def __init__(self, lagging_filter: bool = False) -> None:
        self.records: dict[str, VectorRecord] = {}
        self.lagging_filter = lagging_filter
        self.insert_calls = 0

    async def insert(self, records: list[VectorRecord]) -> None:
        self.insert_calls += 1
        for record in records:
            self.records[record.id] = record

    async def query(
        self,
        vector: list[float],
        top_k: int,
        filter: dict[str, Any] | None = None,
        include_metadata: bool = True,
    ) -> list[ScoredMatch]:
        matches = []
        for record in self.records.values():
            metadata = record.metadata.to_record()
            if filter and not self.lagging_filter:
                if any(metadata.get(k) != v for k, v in filter.items()):
                    continue
            matches.append(
                ScoredMatch(
                    id=record.id,
                    score=_cosine(vector, record.embedding),
                    metadata=metadata if include_metadata else {},
                )
            )
        matches.sort(key=lambda m: m.score, reverse=True)
        return matches[:top_k]

    async def delete_by_ids(self, ids: list[str]) -> None:
        for record_id in ids:
            self.records.pop(record_id, None)

    async def list_ids(self, content_id: str) -> list[str]:
        return [
            r.id for r in self.records.values() if r.metadata.content_id == str(content_id)
        ]


def _cosine(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b, strict=False))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


@pytest.fixture
def config() -> ContentPipelineConfig:
    """Configuration with small dimensions and fast polling."""
    return ContentPipelineConfig(
        llm_api_key="test_llm_key",
        llm_model="gpt-4o-mini",
        embedding_provider="openai",
        embedding_api_key="test_embedding_key",
        embedding_model="text-embedding-3-small",
        embedding_dimensions=3,
        cloudflare_account_id="acc123",
        stream_api_token="stream_token",
        stream_base_url="https://api.cloudflare.com/client/v4",
        video_cleanup=True,
        supabase_url="https://test.supabase.co",
        supabase_key="test_key",
        min_chunk_chars=20,
        max_chunk_chars=500,
        processing_max_wait=300,
        processing_poll_interval=5,
        caption_max_wait=600,
        caption_poll_interval=10,
        worker_batch_size=10,
        worker_max_concurrency=5,
        queue_max_attempts=3,
        queue_visibility_timeout=1800,
        relevance_min_gap=0.015,
        relevance_min_max_score=0.3,
        relevance_selection_floor=0.1,
        relevance_candidates=5,
    )


@pytest.fixture
def job_store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def work_queue() -> InMemoryWorkQueue:
    return InMemoryWorkQueue()


@pytest.fixture
def vector_index() -> InMemoryVectorIndex:
    return InMemoryVectorIndex()


@pytest.fixture
def lagging_vector_index() -> InMemoryVectorIndex:
    return InMemoryVectorIndex(lagging_filter=True)
