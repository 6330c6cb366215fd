"""Durable key-value store for job records and derived artifacts."""

import json
from typing import Any, Protocol

from redis.asyncio import Redis
from redis.exceptions import RedisError

from src.utils.logging import get_logger

from .errors import ExternalServiceError, short_reason

logger = get_logger(__name__)

CONTENT_KINDS = ("info", "subtitle", "summary", "quiz")


def content_key(kind: str, content_id: str) -> str:
    """Namespaced store key, e.g. ``content:info:{id}``."""
    return f"content:{kind}:{content_id}"


class JobStore(Protocol):
    """JSON document store keyed by namespaced strings.

    Writes are last-writer-wins; no optimistic concurrency is offered.
    """

    async def get(self, key: str) -> dict[str, Any] | None: ...

    async def set(self, key: str, value: dict[str, Any]) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def list(self, prefix: str, limit: int = 100) -> list[str]: ...


class RedisJobStore:
    """JobStore over Redis string keys holding JSON documents."""

    def __init__(self, redis: Redis):
        """Initialize the store.

        Args:
            redis: Async Redis client created with ``decode_responses=True``.
        """
        self.redis = redis

    async def get(self, key: str) -> dict[str, Any] | None:
        try:
            raw = await self.redis.get(key)
        except RedisError as e:
            logger.exception("store_get_failed", key=key)
            raise ExternalServiceError(f"Job store read failed: {short_reason(str(e))}") from e
        return json.loads(raw) if raw else None

    async def set(self, key: str, value: dict[str, Any]) -> None:
        try:
            await self.redis.set(key, json.dumps(value, ensure_ascii=False))
        except RedisError as e:
            logger.exception("store_set_failed", key=key)
            raise ExternalServiceError(f"Job store write failed: {short_reason(str(e))}") from e

    async def delete(self, key: str) -> None:
        try:
            await self.redis.delete(key)
        except RedisError as e:
            logger.exception("store_delete_failed", key=key)
            raise ExternalServiceError(f"Job store delete failed: {short_reason(str(e))}") from e

    async def list(self, prefix: str, limit: int = 100) -> list[str]:
        """The first ``limit`` keys starting with ``prefix`` in sorted order.

        SCAN order is arbitrary, so every matching key is collected before
        sorting and slicing.
        """
        keys: list[str] = []
        try:
            async for key in self.redis.scan_iter(match=f"{prefix}*", count=max(limit, 100)):
                keys.append(key)
        except RedisError as e:
            logger.exception("store_list_failed", prefix=prefix)
            raise ExternalServiceError(f"Job store listing failed: {short_reason(str(e))}") from e
        return sorted(keys)[:limit]
