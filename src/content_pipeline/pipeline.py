"""Job pipeline orchestrator for lecture video processing."""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import ValidationError as SchemaValidationError

from src.utils.logging import get_logger

from .caption_parser import (
    convert_caption_format,
    extract_duration,
    extract_plain_text,
    map_language_code,
    parse_vtt_segments,
)
from .caption_polling import CaptionPoller
from .config import ContentPipelineConfig
from .content_service import ContentService
from .errors import IndexingError, NotFoundError, ValidationError, is_retryable
from .llm_service import LLMService
from .retrieval_service import RetrievalService
from .schemas import ContentJob, JobProgress, QueueMessage, utc_now
from .video_service import StreamVideoService
from .work_queue import Ack, Delivery, MessageOutcome, Retry, WorkQueue

logger = get_logger(__name__)

CAPTION_SOURCE = "cloudflare-stream-ai"
RECEIVE_BACKOFF_SECONDS = 5
RECLAIM_INTERVAL_SECONDS = 60


class ContentJobPipeline:
    """Drives one queued job from source URL to captions, summary and vectors.

    Stages run strictly in order and each one persists its progress before
    the next starts. Stage helpers only raise; ``handle_message`` is the one
    place that records ``failed`` and decides between acknowledging and
    redelivering the queue message. Indexing is the only non-fatal stage.
    """

    def __init__(
        self,
        config: ContentPipelineConfig,
        content_service: ContentService,
        video_service: StreamVideoService,
        llm_service: LLMService,
        retrieval_service: RetrievalService,
        queue: WorkQueue,
        poller: CaptionPoller | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the orchestrator with its collaborators.

        Args:
            config: Pipeline configuration.
            content_service: Owner of job records and artifacts.
            video_service: Video/caption service client.
            llm_service: Language-model client for educational content.
            retrieval_service: Indexing path for transcript and summary vectors.
            queue: Work queue the worker consumes.
            poller: Caption poller. Built from ``video_service`` if None.
            sleep: Awaitable sleep used for receive backoff.
            clock: Monotonic clock for the stale-message reclaim interval.
        """
        self.config = config
        self.content_service = content_service
        self.video_service = video_service
        self.llm_service = llm_service
        self.retrieval_service = retrieval_service
        self.queue = queue
        self.poller = poller or CaptionPoller(video_service)
        self._sleep = sleep
        self._clock = clock

        logger.info(
            "pipeline_initialized",
            queue=getattr(queue, "name", None),
            max_concurrency=config.worker_max_concurrency,
            video_cleanup=config.video_cleanup,
        )

    # ------------------------------------------------------------------
    # Message handling
    # ------------------------------------------------------------------

    async def handle_message(self, body: dict[str, Any]) -> MessageOutcome:
        """Process one queue message and classify the outcome.

        Returns:
            ``Ack()`` on success and on non-retryable failures (missing job,
            malformed message); ``Retry(error)`` on transient failures. Every
            failure with an existing job record is persisted as ``failed``
            first.
        """
        try:
            message = QueueMessage.model_validate(body)
        except SchemaValidationError:
            logger.error("queue_message_invalid", body_keys=sorted(body or {}))
            return Ack()

        content_id = message.content_id
        logger.info("job_processing_started", content_id=content_id, action=message.action)

        try:
            if message.action == "recaption":
                if not message.stream_id or not message.language:
                    raise ValidationError("Recaption message requires streamId and language")
                await self.recaption_video(content_id, message.stream_id, message.language)
            else:
                await self.process_video(content_id)

        except Exception as e:
            error_message = str(e) or type(e).__name__
            retryable = is_retryable(e)
            logger.exception(
                "job_processing_failed",
                content_id=content_id,
                error_type=type(e).__name__,
                retryable=retryable,
            )
            await self._persist_failure(content_id, error_message)
            return Retry(error_message) if retryable else Ack()

        logger.info("job_processing_completed", content_id=content_id)
        return Ack()

    async def _persist_failure(self, content_id: str, error_message: str) -> None:
        try:
            await self.content_service.set_error(content_id, error_message)
        except NotFoundError:
            logger.warning("failed_status_not_persisted", content_id=content_id, reason="missing")
        except Exception:
            logger.exception("failed_status_not_persisted", content_id=content_id)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def process_video(self, content_id: str) -> None:
        """Run the full pipeline for a queued job.

        The temporary Stream video created here is deleted afterwards when
        ``video_cleanup`` is on, whether or not the job succeeded. Cleanup
        failures are logged and never replace the original error.

        Raises:
            NotFoundError: If the job record does not exist.
        """
        job = await self.content_service.require_job(content_id)
        await self.content_service.update_status(content_id, "processing")
        await self._progress(content_id, "uploading", 10, "Uploading video to Stream")

        stream_id = None
        try:
            stream_id = await self.video_service.upload_from_url(
                job.video_url, {"name": f"Content {content_id}", "contentId": content_id}
            )
            await self.content_service.update_job(content_id, stream_id=stream_id)
            await self._progress(
                content_id, "transcoding", 30, "Video uploaded, waiting for processing"
            )

            await self.poller.wait_for_processing(
                stream_id,
                max_wait_time=self.config.processing_max_wait,
                poll_interval=self.config.processing_poll_interval,
            )
            await self._progress(
                content_id, "generating-captions", 50, "Generating AI captions"
            )

            await self._caption_and_finish(job, stream_id, job.language)

        finally:
            if stream_id and self.config.video_cleanup:
                await self._cleanup_video(content_id, stream_id)

    async def recaption_video(self, content_id: str, stream_id: str, language: str) -> None:
        """Regenerate captions in ``language`` on an already uploaded video.

        Upload and transcoding are skipped. The video is left in place since
        this job did not create it.
        """
        job = await self.content_service.require_job(content_id)
        await self.content_service.update_status(content_id, "processing")
        await self._progress(
            content_id, "generating-captions", 50, f"Regenerating captions in {language}"
        )
        await self._caption_and_finish(job, stream_id, language)

    async def _caption_and_finish(
        self, job: ContentJob, stream_id: str, language: str
    ) -> None:
        content_id = job.content_id
        caption_language = map_language_code(language)

        await self._progress(
            content_id,
            "generating-captions",
            60,
            f"Starting AI caption generation in {caption_language}",
        )
        await self.video_service.generate_captions(stream_id, caption_language)

        async def report(stage: str, percentage: int, message: str) -> None:
            await self._progress(content_id, stage, percentage, message)

        await self.poller.wait_for_captions(
            stream_id,
            caption_language,
            max_wait_time=self.config.caption_max_wait,
            poll_interval=self.config.caption_poll_interval,
            on_progress=report,
        )

        await self._progress(
            content_id, "downloading-captions", 85, "Downloading generated captions"
        )
        track = await self.video_service.get_caption_track(stream_id, caption_language)
        vtt = track.content
        segments = parse_vtt_segments(vtt)
        plain_text = extract_plain_text(vtt)
        duration = extract_duration(vtt)
        caption_format = job.options.format
        final_content = convert_caption_format(vtt, caption_format)

        await self._progress(content_id, "summarizing", 90, "Generating AI content summary")
        educational = await self.llm_service.generate_educational_content(
            plain_text, caption_language
        )

        created_at = utc_now().isoformat()
        await self.content_service.set_subtitle(
            content_id,
            {
                "contentId": content_id,
                "streamUid": stream_id,
                "segments": [s.model_dump() for s in segments],
                "language": caption_language,
                "duration": duration,
                "format": caption_format,
                "content": final_content,
                "source": CAPTION_SOURCE,
                "videoUrl": job.video_url,
                "createdAt": created_at,
            },
        )
        await self.content_service.set_summary_data(
            content_id,
            {
                "contentId": content_id,
                "streamUid": stream_id,
                "originalText": plain_text,
                "summary": educational.summary,
                "objectives": educational.objectives,
                "recommendedQuestions": educational.recommended_questions,
                "language": caption_language,
                "duration": duration,
                "videoUrl": job.video_url,
                "createdAt": created_at,
            },
        )
        if educational.quiz:
            await self.content_service.set_quiz(
                content_id,
                {
                    "contentId": content_id,
                    "questions": [q.to_record() for q in educational.quiz],
                    "language": caption_language,
                    "createdAt": created_at,
                },
            )
        await self.content_service.set_info(
            content_id,
            language=caption_language,
            duration=duration,
            source=CAPTION_SOURCE,
        )

        await self._progress(content_id, "indexing", 95, "Indexing content for search")
        try:
            await self.retrieval_service.index_content(
                content_id,
                educational.summary,
                segments,
                {
                    "language": caption_language,
                    "duration": duration,
                    "videoUrl": job.video_url,
                    "source": CAPTION_SOURCE,
                },
            )
        except IndexingError as e:
            logger.warning("indexing_skipped", content_id=content_id, error=str(e))

        await self.content_service.update_job(
            content_id,
            status="completed",
            error=None,
            progress=JobProgress(
                stage="completed", percentage=100, message="Processing completed"
            ),
        )
        logger.info(
            "job_completed",
            content_id=content_id,
            segments=len(segments),
            duration=duration,
            quiz_questions=len(educational.quiz),
        )

    async def _progress(
        self, content_id: str, stage: str, percentage: int, message: str
    ) -> None:
        await self.content_service.update_progress(content_id, stage, percentage, message)

    async def _cleanup_video(self, content_id: str, stream_id: str) -> None:
        try:
            await self.video_service.delete_video(stream_id)
        except Exception as e:
            logger.error(
                "video_cleanup_failed",
                content_id=content_id,
                stream_uid=stream_id,
                error_type=type(e).__name__,
                error=str(e),
            )

    # ------------------------------------------------------------------
    # Worker loop
    # ------------------------------------------------------------------

    async def consume_batch(self, deliveries: list[Delivery]) -> list[MessageOutcome]:
        """Handle a batch concurrently, then ack or retry each delivery.

        Concurrency is bounded by ``worker_max_concurrency``; each delivery
        runs an independent job.
        """
        semaphore = asyncio.Semaphore(self.config.worker_max_concurrency)

        async def run(delivery: Delivery) -> MessageOutcome:
            async with semaphore:
                outcome = await self.handle_message(delivery.body)
            try:
                if isinstance(outcome, Retry):
                    await self.queue.retry(delivery)
                else:
                    await self.queue.ack(delivery)
            except Exception:
                # Unsettled deliveries stay on the processing list for recovery.
                logger.exception("delivery_settle_failed", message_id=delivery.id)
            return outcome

        outcomes = await asyncio.gather(*(run(d) for d in deliveries))

        retried = sum(1 for o in outcomes if isinstance(o, Retry))
        logger.info(
            "batch_processed",
            total=len(outcomes),
            acked=len(outcomes) - retried,
            retried=retried,
        )
        return list(outcomes)

    async def run_worker(self, stop_event: asyncio.Event | None = None) -> None:
        """Receive and consume batches until ``stop_event`` is set.

        Messages whose lease outlived ``queue_visibility_timeout`` are handed
        back to the queue at startup and every ``RECLAIM_INTERVAL_SECONDS``.
        """
        stop_event = stop_event or asyncio.Event()
        logger.info("worker_started", batch_size=self.config.worker_batch_size)
        last_reclaim: float | None = None

        while not stop_event.is_set():
            now = self._clock()
            if last_reclaim is None or now - last_reclaim >= RECLAIM_INTERVAL_SECONDS:
                last_reclaim = now
                await self._reclaim_stale()

            try:
                deliveries = await self.queue.receive(
                    max_messages=self.config.worker_batch_size
                )
            except Exception:
                logger.exception("worker_receive_failed")
                await self._sleep(RECEIVE_BACKOFF_SECONDS)
                continue

            if deliveries:
                await self.consume_batch(deliveries)

        logger.info("worker_stopped")

    async def _reclaim_stale(self) -> None:
        try:
            await self.queue.reclaim_stale(self.config.queue_visibility_timeout)
        except Exception:
            logger.exception("worker_reclaim_failed")
