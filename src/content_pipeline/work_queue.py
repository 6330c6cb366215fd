"""At-least-once work queue for job-start messages."""

import json
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from redis.asyncio import Redis
from redis.exceptions import RedisError

from src.utils.logging import get_logger

from .errors import ExternalServiceError, short_reason
from .schemas import QueueMessage

logger = get_logger(__name__)


@dataclass(frozen=True)
class Ack:
    """Handler outcome: the message is done and must not be redelivered."""


@dataclass(frozen=True)
class Retry:
    """Handler outcome: redeliver the message later."""

    error: str


MessageOutcome = Ack | Retry


@dataclass
class Delivery:
    """One received message plus the bookkeeping needed to ack or retry it."""

    id: str
    body: dict[str, Any]
    attempts: int = 0
    raw: str = field(default="", repr=False)


class WorkQueue(Protocol):
    async def send(self, message: QueueMessage) -> None: ...

    async def receive(self, max_messages: int = 10, timeout: float = 5) -> list[Delivery]: ...

    async def ack(self, delivery: Delivery) -> None: ...

    async def retry(self, delivery: Delivery) -> None: ...

    async def reclaim_stale(self, visibility_timeout: float) -> int: ...


class RedisWorkQueue:
    """Reliable Redis list queue.

    Received messages move atomically to a processing list and get a lease
    timestamp in a hash. They stay there until acked or retried.
    ``reclaim_stale`` hands back messages whose lease is older than the
    visibility timeout, which covers a worker that died mid-job or failed to
    settle a delivery. A reclaimed message counts as a failed attempt.

    ``retry`` requeues a message with its attempt count bumped; once
    ``max_attempts`` is reached the message goes to a dead-letter list
    instead of looping forever. Envelopes that cannot be decoded go straight
    to the dead-letter list.
    """

    def __init__(
        self,
        redis: Redis,
        name: str = "transcribe",
        max_attempts: int = 3,
        clock: Callable[[], float] = time.time,
    ):
        self.redis = redis
        self.name = name
        self.max_attempts = max_attempts
        self._clock = clock
        self.pending_key = f"queue:{name}"
        self.processing_key = f"queue:{name}:processing"
        self.dead_letter_key = f"queue:{name}:dead"
        self.lease_key = f"queue:{name}:leases"

    @staticmethod
    def _encode(message_id: str, body: dict[str, Any], attempts: int) -> str:
        return json.dumps(
            {"id": message_id, "body": body, "attempts": attempts}, ensure_ascii=False
        )

    @staticmethod
    def _decode(raw: str) -> Delivery | None:
        try:
            envelope = json.loads(raw)
            return Delivery(
                id=str(envelope["id"]),
                body=envelope.get("body") or {},
                attempts=int(envelope.get("attempts", 0)),
                raw=raw,
            )
        except (ValueError, TypeError, KeyError, AttributeError):
            return None

    async def send(self, message: QueueMessage) -> None:
        raw = self._encode(uuid.uuid4().hex, message.to_record(), 0)
        try:
            await self.redis.lpush(self.pending_key, raw)
        except RedisError as e:
            logger.exception("queue_send_failed", queue=self.name)
            raise ExternalServiceError(f"Queue send failed: {short_reason(str(e))}") from e
        logger.info(
            "queue_message_sent",
            queue=self.name,
            content_id=message.content_id,
            action=message.action,
        )

    async def receive(self, max_messages: int = 10, timeout: float = 5) -> list[Delivery]:
        """Receive up to ``max_messages``, blocking at most ``timeout`` for the first."""
        raws: list[str] = []
        try:
            first = await self.redis.blmove(
                self.pending_key, self.processing_key, timeout, "RIGHT", "LEFT"
            )
            if first is None:
                return []
            raws.append(first)
            while len(raws) < max_messages:
                raw = await self.redis.lmove(
                    self.pending_key, self.processing_key, "RIGHT", "LEFT"
                )
                if raw is None:
                    break
                raws.append(raw)

            deliveries = []
            for raw in raws:
                delivery = self._decode(raw)
                if delivery is None:
                    await self._dead_letter_malformed(raw)
                    continue
                deliveries.append(delivery)

            if deliveries:
                now = self._clock()
                await self.redis.hset(
                    self.lease_key, mapping={d.id: now for d in deliveries}
                )
        except RedisError as e:
            logger.exception("queue_receive_failed", queue=self.name)
            raise ExternalServiceError(f"Queue receive failed: {short_reason(str(e))}") from e

        return deliveries

    async def _dead_letter_malformed(self, raw: str) -> None:
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.lrem(self.processing_key, 1, raw)
            pipe.lpush(self.dead_letter_key, raw)
            await pipe.execute()
        logger.error("queue_message_malformed", queue=self.name, raw=short_reason(raw))

    async def ack(self, delivery: Delivery) -> None:
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.lrem(self.processing_key, 1, delivery.raw)
            pipe.hdel(self.lease_key, delivery.id)
            await pipe.execute()

    async def retry(self, delivery: Delivery) -> None:
        attempts = delivery.attempts + 1
        raw = self._encode(delivery.id, delivery.body, attempts)
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.lrem(self.processing_key, 1, delivery.raw)
            pipe.hdel(self.lease_key, delivery.id)
            if attempts >= self.max_attempts:
                pipe.lpush(self.dead_letter_key, raw)
            else:
                pipe.lpush(self.pending_key, raw)
            await pipe.execute()

        if attempts >= self.max_attempts:
            logger.error(
                "queue_message_dead_lettered",
                queue=self.name,
                message_id=delivery.id,
                attempts=attempts,
            )
        else:
            logger.warning(
                "queue_message_requeued",
                queue=self.name,
                message_id=delivery.id,
                attempts=attempts,
            )

    async def reclaim_stale(self, visibility_timeout: float) -> int:
        """Requeue processing entries whose lease is older than ``visibility_timeout``.

        An entry without a lease was moved by a receive that has not recorded
        it yet; it gets a fresh lease instead of being reclaimed.

        Returns:
            Number of messages requeued or dead-lettered.
        """
        try:
            raws = await self.redis.lrange(self.processing_key, 0, -1)
            leases = await self.redis.hgetall(self.lease_key)
            now = self._clock()
            reclaimed = 0

            for raw in raws:
                delivery = self._decode(raw)
                if delivery is None:
                    await self._dead_letter_malformed(raw)
                    reclaimed += 1
                    continue

                leased_at = leases.get(delivery.id)
                if leased_at is None:
                    await self.redis.hsetnx(self.lease_key, delivery.id, now)
                    continue
                if now - float(leased_at) < visibility_timeout:
                    continue

                logger.warning(
                    "queue_lease_expired",
                    queue=self.name,
                    message_id=delivery.id,
                    leased_for=round(now - float(leased_at), 1),
                )
                await self.retry(delivery)
                reclaimed += 1
        except RedisError as e:
            logger.exception("queue_reclaim_failed", queue=self.name)
            raise ExternalServiceError(f"Queue reclaim failed: {short_reason(str(e))}") from e

        if reclaimed:
            logger.info("queue_stale_reclaimed", queue=self.name, count=reclaimed)
        return reclaimed
