"""Bounded polling of the video service until transcoding and captions finish."""

import asyncio
import time
from collections.abc import Awaitable, Callable

from src.utils.logging import get_logger

from .errors import ExternalServiceError, PollingTimeoutError, RemoteNotFoundError
from .schemas import CaptionStatus, VideoStatus
from .video_service import StreamVideoService

logger = get_logger(__name__)

ProgressCallback = Callable[[str, int, str], Awaitable[None]]

CAPTION_PROGRESS_START = 70
CAPTION_PROGRESS_END = 84


def caption_progress(
    elapsed: float,
    max_wait_time: float,
    lower: int = CAPTION_PROGRESS_START,
    upper: int = CAPTION_PROGRESS_END,
) -> int:
    """Linear progress between ``lower`` and ``upper`` by elapsed share of the wait.

    Remote caption progress is opaque, so this gives callers a bounded,
    monotonically increasing signal instead.

    Examples:
        >>> caption_progress(300, 600)
        77
    """
    if max_wait_time <= 0:
        return upper
    fraction = min(max(elapsed / max_wait_time, 0.0), 1.0)
    return int(lower + (upper - lower) * fraction)


class CaptionPoller:
    """Drives a remote video through transcoding and caption generation.

    Both waits suspend the calling task between polls, so many jobs can wait
    concurrently on one event loop.
    """

    def __init__(
        self,
        video_service: StreamVideoService,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.video_service = video_service
        self._sleep = sleep
        self._clock = clock

    async def wait_for_processing(
        self, video_id: str, max_wait_time: float = 300, poll_interval: float = 5
    ) -> VideoStatus:
        """Poll until the uploaded video is ready to caption.

        A video that Stream does not list yet counts as pending; a copy
        upload can take a moment to become visible.

        Args:
            video_id: Stream video uid.
            max_wait_time: Wait bound in seconds.
            poll_interval: Delay between polls in seconds.

        Returns:
            The ready VideoStatus.

        Raises:
            ExternalServiceError: If the service reports a processing error.
            PollingTimeoutError: If the video is not ready within the bound.
        """
        start = self._clock()
        polls = 0

        while self._clock() - start < max_wait_time:
            try:
                status = await self.video_service.get_status(video_id)
            except RemoteNotFoundError:
                status = VideoStatus(uid=video_id, state="not-started")
            polls += 1

            if status.state == "ready":
                logger.info("video_processing_ready", stream_uid=video_id, polls=polls)
                return status

            if status.state == "error":
                reason = status.error_reason or "Unknown error"
                logger.error("video_processing_error", stream_uid=video_id, reason=reason)
                raise ExternalServiceError(f"Video processing failed: {reason}")

            logger.debug("video_processing_poll", stream_uid=video_id, state=status.state)
            await self._sleep(poll_interval)

        logger.error("video_processing_timeout", stream_uid=video_id, polls=polls)
        raise PollingTimeoutError("Video processing timeout")

    async def wait_for_captions(
        self,
        video_id: str,
        language: str,
        max_wait_time: float = 600,
        poll_interval: float = 10,
        on_progress: ProgressCallback | None = None,
    ) -> CaptionStatus:
        """Poll until the caption track for ``language`` is ready.

        A track that has not appeared yet counts as pending. Each pending
        cycle reports interpolated progress through ``on_progress`` before
        sleeping.

        Args:
            video_id: Stream video uid.
            language: Caption language code.
            max_wait_time: Wait bound in seconds.
            poll_interval: Delay between polls in seconds.
            on_progress: Awaited with ``(stage, percentage, message)``.

        Returns:
            The ready CaptionStatus.

        Raises:
            ExternalServiceError: As soon as the track reports an error.
            PollingTimeoutError: If the track is not ready within the bound.
        """
        start = self._clock()
        polls = 0

        while self._clock() - start < max_wait_time:
            try:
                status = await self.video_service.get_caption_status(video_id, language)
            except RemoteNotFoundError:
                status = CaptionStatus(language=language, state="not-started")
            polls += 1

            if status.state == "ready":
                logger.info(
                    "captions_ready", stream_uid=video_id, language=language, polls=polls
                )
                return status

            if status.state == "error":
                logger.error("caption_generation_error", stream_uid=video_id, language=language)
                raise ExternalServiceError(
                    f"Caption generation failed for language {language}"
                )

            elapsed = self._clock() - start
            percentage = caption_progress(elapsed, max_wait_time)
            logger.debug(
                "caption_poll",
                stream_uid=video_id,
                state=status.state,
                percentage=percentage,
            )
            if on_progress is not None:
                await on_progress(
                    "generating-captions",
                    percentage,
                    f"Generating AI captions ({int(elapsed)}s elapsed)",
                )

            await self._sleep(poll_interval)

        logger.error("caption_generation_timeout", stream_uid=video_id, polls=polls)
        raise PollingTimeoutError(f"Caption generation timeout for language {language}")
