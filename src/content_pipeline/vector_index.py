"""Vector index adapter backed by a Supabase pgvector table."""

from typing import Any, Protocol

from supabase import AsyncClient

from src.utils.logging import get_logger

from .config import ContentPipelineConfig
from .errors import ExternalServiceError, short_reason
from .schemas import ScoredMatch, VectorRecord

logger = get_logger(__name__)

# Remote payload limit per insert call
MAX_INSERT_BATCH = 50


class VectorIndex(Protocol):
    """Operations the retrieval engine needs from a vector index."""

    async def insert(self, records: list[VectorRecord]) -> None: ...

    async def query(
        self,
        vector: list[float],
        top_k: int,
        filter: dict[str, Any] | None = None,
        include_metadata: bool = True,
    ) -> list[ScoredMatch]: ...

    async def delete_by_ids(self, ids: list[str]) -> None: ...

    async def list_ids(self, content_id: str) -> list[str]: ...


def apply_content_filter(
    matches: list[ScoredMatch], content_id: str | None
) -> tuple[list[ScoredMatch], bool]:
    """Re-check ``contentId`` equality locally after a filtered query.

    The server-side metadata filter can lag behind freshly inserted vectors.
    When nothing survives the local check, the unfiltered matches are
    returned and the second element of the tuple is True so callers can tell
    a confident filtered match from a possibly off-target fallback.

    Args:
        matches: Matches returned by the index.
        content_id: Expected content id, or None when no filter was requested.

    Returns:
        Tuple of (matches, used_fallback).
    """
    if content_id is None:
        return matches, False

    expected = str(content_id)
    kept = [m for m in matches if str(m.metadata.get("contentId")) == expected]
    if kept or not matches:
        return kept, False

    logger.warning(
        "content_filter_fallback",
        content_id=expected,
        unfiltered_matches=len(matches),
    )
    return matches, True


class SupabaseVectorIndex:
    """Stores vectors in a pgvector table and queries through an RPC function.

    The table holds ``id``, ``embedding`` and a JSONB ``metadata`` column. The
    match function takes ``query_embedding``, ``match_count`` and a JSONB
    ``filter`` and returns rows with ``id``, ``metadata`` and ``similarity``.
    """

    def __init__(self, config: ContentPipelineConfig, client: AsyncClient):
        """Initialize the index adapter.

        Args:
            config: Configuration with table and match function names.
            client: Async Supabase client.
        """
        self.config = config
        self.client = client
        self.table = config.vector_table
        self.match_function = config.vector_match_function
        logger.info(
            "vector_index_initialized",
            table=self.table,
            match_function=self.match_function,
        )

    async def insert(self, records: list[VectorRecord]) -> None:
        """Write records in batches of at most ``MAX_INSERT_BATCH``.

        Rows are upserted by id so a redelivered job rewrites the same rows.

        Raises:
            ExternalServiceError: If any batch fails.
        """
        for i in range(0, len(records), MAX_INSERT_BATCH):
            batch = records[i : i + MAX_INSERT_BATCH]
            rows = [
                {
                    "id": record.id,
                    "embedding": record.embedding,
                    "metadata": record.metadata.to_record(),
                }
                for record in batch
            ]
            try:
                await self.client.table(self.table).upsert(rows).execute()
            except Exception as e:
                logger.exception(
                    "vector_insert_failed",
                    batch_num=i // MAX_INSERT_BATCH + 1,
                    error_type=type(e).__name__,
                )
                raise ExternalServiceError(
                    f"Vector insert failed: {short_reason(str(e))}"
                ) from e

        logger.info("vectors_inserted", count=len(records))

    async def query(
        self,
        vector: list[float],
        top_k: int,
        filter: dict[str, Any] | None = None,
        include_metadata: bool = True,
    ) -> list[ScoredMatch]:
        """Run a similarity query with an optional metadata equality filter.

        Args:
            vector: Query embedding.
            top_k: Maximum number of matches.
            filter: Equality map over metadata fields (camelCase keys).
            include_metadata: Whether to keep metadata on the matches.

        Returns:
            Matches ordered by descending similarity.
        """
        try:
            response = await self.client.rpc(
                self.match_function,
                {
                    "query_embedding": vector,
                    "match_count": top_k,
                    "filter": filter or {},
                },
            ).execute()
        except Exception as e:
            logger.exception("vector_query_failed", error_type=type(e).__name__)
            raise ExternalServiceError(
                f"Vector query failed: {short_reason(str(e))}"
            ) from e

        rows: list[dict[str, Any]] = response.data or []
        matches = [
            ScoredMatch(
                id=str(row["id"]),
                score=float(row.get("similarity", 0.0)),
                metadata=(row.get("metadata") or {}) if include_metadata else {},
            )
            for row in rows
        ]
        matches.sort(key=lambda m: m.score, reverse=True)
        logger.debug(
            "vector_query_completed",
            results=len(matches),
            top_k=top_k,
            filtered=bool(filter),
        )
        return matches

    async def delete_by_ids(self, ids: list[str]) -> None:
        for i in range(0, len(ids), MAX_INSERT_BATCH):
            batch = ids[i : i + MAX_INSERT_BATCH]
            try:
                await self.client.table(self.table).delete().in_("id", batch).execute()
            except Exception as e:
                logger.exception("vector_delete_failed", error_type=type(e).__name__)
                raise ExternalServiceError(
                    f"Vector delete failed: {short_reason(str(e))}"
                ) from e
        logger.info("vectors_deleted", count=len(ids))

    async def list_ids(self, content_id: str) -> list[str]:
        """Ids of every vector stored for ``content_id``."""
        try:
            response = await (
                self.client.table(self.table)
                .select("id")
                .eq("metadata->>contentId", str(content_id))
                .execute()
            )
        except Exception as e:
            logger.exception("vector_list_failed", error_type=type(e).__name__)
            raise ExternalServiceError(
                f"Vector listing failed: {short_reason(str(e))}"
            ) from e
        return [str(row["id"]) for row in response.data or []]
