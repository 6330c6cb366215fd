"""Semantic indexing and retrieval over lecture transcripts and summaries."""

from typing import Any

from src.utils.logging import get_logger

from .chunking_service import ChunkingService
from .config import ContentPipelineConfig
from .embedding_service import EmbeddingService
from .errors import ContentPipelineError, IndexingError
from .schemas import (
    ContentContext,
    ContextSource,
    IndexResult,
    SearchResponse,
    SearchResult,
    TranscriptSegment,
    VectorMetadata,
    VectorRecord,
    utc_now,
)
from .vector_index import VectorIndex, apply_content_filter

logger = get_logger(__name__)


def format_time(seconds: float) -> str:
    """Format seconds as ``m:ss``.

    Examples:
        >>> format_time(125)
        '2:05'
    """
    total = int(seconds)
    return f"{total // 60}:{total % 60:02d}"


def evaluate_relevance(
    scores: list[float], min_gap: float, min_max_score: float
) -> tuple[bool, float, float, float]:
    """Decide whether a candidate score distribution has a clear winner.

    The set is relevant only when the best score stands out from the mean by
    more than ``min_gap`` and itself exceeds ``min_max_score``. A flat or
    low-confidence distribution means the question is off-topic for the
    indexed material.

    Args:
        scores: Candidate similarity scores.
        min_gap: Required ``max - mean`` separation (strictly greater).
        min_max_score: Required top score (strictly greater).

    Returns:
        Tuple of (relevant, max_score, avg_score, gap).
    """
    if not scores:
        return False, 0.0, 0.0, 0.0
    max_score = max(scores)
    avg_score = sum(scores) / len(scores)
    gap = max_score - avg_score
    return gap > min_gap and max_score > min_max_score, max_score, avg_score, gap


class RetrievalService:
    """Indexes content into the vector index and serves ranked retrieval.

    Owns the lifecycle of vector records: a content id is re-indexed by
    deleting all of its vectors and inserting the new set.
    """

    def __init__(
        self,
        config: ContentPipelineConfig,
        embedding_service: EmbeddingService,
        vector_index: VectorIndex,
        chunking_service: ChunkingService | None = None,
    ):
        self.config = config
        self.embedding_service = embedding_service
        self.vector_index = vector_index
        self.chunking_service = chunking_service or ChunkingService(config)

    async def index_content(
        self,
        content_id: str,
        summary: str,
        segments: list[TranscriptSegment],
        metadata: dict[str, Any] | None = None,
    ) -> IndexResult:
        """Chunk, embed and index a transcript plus its summary.

        Existing vectors for ``content_id`` are deleted before the new records
        are inserted, so indexing the same content twice leaves only the
        second run's vectors.

        Args:
            content_id: Content the vectors belong to.
            summary: Summary text, indexed as one record with ``chunkIndex=-1``.
            segments: Parsed transcript segments.
            metadata: Extra metadata (language, duration, videoUrl, source).

        Returns:
            IndexResult with counts.

        Raises:
            IndexingError: If chunking, embedding or any index call fails.
        """
        metadata = metadata or {}
        language = metadata.get("language") or "ko"
        created_at = utc_now().isoformat()
        extra = {
            "duration": metadata.get("duration"),
            "video_url": metadata.get("videoUrl"),
            "source": metadata.get("source"),
        }

        logger.info("indexing_started", content_id=content_id, segments=len(segments))

        try:
            chunks = self.chunking_service.chunk(segments)
            records: list[VectorRecord] = []

            if chunks:
                embeddings = await self.embedding_service.embed_batch(
                    [chunk.text for chunk in chunks]
                )
                for i, (chunk, embedding) in enumerate(
                    zip(chunks, embeddings, strict=True)
                ):
                    records.append(
                        VectorRecord(
                            id=f"{content_id}-transcript-{i}",
                            embedding=embedding,
                            metadata=VectorMetadata(
                                content_id=content_id,
                                type="transcript",
                                text=chunk.text,
                                chunk_index=i,
                                start_time=chunk.start_time,
                                end_time=chunk.end_time,
                                language=language,
                                created_at=created_at,
                                **extra,
                            ),
                        )
                    )

            summary_indexed = 0
            if summary and summary.strip():
                summary_embedding = await self.embedding_service.embed_text(summary)
                records.append(
                    VectorRecord(
                        id=f"{content_id}-summary",
                        embedding=summary_embedding,
                        metadata=VectorMetadata(
                            content_id=content_id,
                            type="summary",
                            text=summary,
                            chunk_index=-1,
                            start_time=0.0,
                            end_time=float(metadata.get("duration") or 0.0),
                            language=language,
                            created_at=created_at,
                            **extra,
                        ),
                    )
                )
                summary_indexed = 1

            deleted = await self.delete_content(content_id)
            await self.vector_index.insert(records)

        except Exception as e:
            logger.exception("indexing_failed", content_id=content_id)
            raise IndexingError(f"Indexing failed for {content_id}: {e}") from e

        result = IndexResult(
            content_id=content_id,
            chunks_indexed=len(chunks),
            summary_indexed=summary_indexed,
            total_vectors=len(records),
            deleted=deleted,
        )
        logger.info("indexing_completed", **result.model_dump())
        return result

    async def delete_content(self, content_id: str) -> int:
        """Delete every vector stored for ``content_id``.

        Returns:
            Number of vectors deleted.
        """
        ids = await self.vector_index.list_ids(content_id)
        if ids:
            await self.vector_index.delete_by_ids(ids)
            logger.info("content_vectors_deleted", content_id=content_id, count=len(ids))
        return len(ids)

    async def search(
        self,
        query: str,
        top_k: int = 10,
        content_id: str | None = None,
        type: str | None = None,
        language: str | None = None,
    ) -> SearchResponse:
        """Embed ``query`` and return normalized, filtered similarity matches.

        Args:
            query: Free-text query.
            top_k: Maximum number of results.
            content_id: Restrict to one content id.
            type: Restrict to ``transcript`` or ``summary`` records.
            language: Restrict to one caption language.

        Returns:
            SearchResponse; ``used_fallback`` is set when the content filter
            matched nothing locally and unfiltered results were returned.
        """
        vector = await self.embedding_service.embed_text(query)

        filter: dict[str, Any] = {}
        if content_id:
            filter["contentId"] = str(content_id)
        if type:
            filter["type"] = type
        if language:
            filter["language"] = language

        matches = await self.vector_index.query(
            vector, top_k=top_k, filter=filter or None, include_metadata=True
        )
        matches, used_fallback = apply_content_filter(
            matches, str(content_id) if content_id else None
        )

        results = [
            SearchResult(
                id=match.id,
                score=match.score,
                content_id=(
                    str(match.metadata["contentId"])
                    if match.metadata.get("contentId") is not None
                    else None
                ),
                type=match.metadata.get("type"),
                text=match.metadata.get("text"),
                chunk_index=match.metadata.get("chunkIndex"),
                start_time=match.metadata.get("startTime"),
                end_time=match.metadata.get("endTime"),
                language=match.metadata.get("language"),
                created_at=match.metadata.get("createdAt"),
            )
            for match in matches
        ]

        logger.info(
            "search_completed",
            results=len(results),
            top_k=top_k,
            filters=sorted(filter),
            used_fallback=used_fallback,
        )
        return SearchResponse(
            query=query, results=results, total=len(results), used_fallback=used_fallback
        )

    async def get_context(self, query: str, max_chunks: int = 5) -> ContentContext:
        """Build grounding context for a chat turn, or report that none fits.

        Fetches unfiltered candidates, applies the relevance gate, then keeps
        candidates above the selection floor up to ``max_chunks`` and joins
        them into one context string tagged with time ranges. Retrieval
        failures are logged and reported as ``has_context=False`` so the chat
        layer can still answer without grounding.
        """
        try:
            response = await self.search(query, top_k=self.config.relevance_candidates)
        except ContentPipelineError as e:
            logger.exception("context_retrieval_failed", error_type=type(e).__name__)
            return ContentContext(has_context=False, error=str(e))

        candidates = response.results
        relevant, max_score, avg_score, gap = evaluate_relevance(
            [c.score for c in candidates],
            min_gap=self.config.relevance_min_gap,
            min_max_score=self.config.relevance_min_max_score,
        )

        logger.info(
            "relevance_evaluated",
            candidates=len(candidates),
            max_score=round(max_score, 4),
            avg_score=round(avg_score, 4),
            gap=round(gap, 4),
            relevant=relevant,
        )

        if not relevant:
            return ContentContext(
                has_context=False, max_score=max_score, avg_score=avg_score, gap=gap
            )

        selected = [
            c for c in candidates if c.score > self.config.relevance_selection_floor
        ][:max_chunks]

        parts = []
        for index, chunk in enumerate(selected, 1):
            time_info = ""
            if (
                chunk.type != "summary"
                and chunk.start_time is not None
                and chunk.end_time is not None
            ):
                time_info = f" ({format_time(chunk.start_time)}-{format_time(chunk.end_time)})"
            parts.append(f"[Lecture material {index}{time_info}]\n{chunk.text or ''}")

        return ContentContext(
            has_context=bool(selected),
            context="\n\n".join(parts),
            sources=[
                ContextSource(
                    content_id=chunk.content_id,
                    type=chunk.type,
                    score=chunk.score,
                    start_time=chunk.start_time,
                    end_time=chunk.end_time,
                )
                for chunk in selected
            ],
            relevant_chunks=len(selected),
            max_score=max_score,
            avg_score=avg_score,
            gap=gap,
        )
