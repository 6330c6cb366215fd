"""Unit tests for bounded caption and processing polling."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.content_pipeline.caption_polling import CaptionPoller, caption_progress
from src.content_pipeline.errors import (
    ExternalServiceError,
    PollingTimeoutError,
    RemoteNotFoundError,
)
from src.content_pipeline.schemas import CaptionStatus, VideoStatus


class FakeClock:
    """Monotonic clock advanced only by the fake sleep."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def caption(state: str) -> CaptionStatus:
    return CaptionStatus(language="ko", state=state)


@pytest.mark.unit
class TestCaptionProgress:
    """Test suite for progress interpolation."""

    def test_bounds(self) -> None:
        """Test that progress starts at 70 and never exceeds 84."""
        assert caption_progress(0, 600) == 70
        assert caption_progress(600, 600) == 84
        assert caption_progress(9999, 600) == 84

    def test_midpoint(self) -> None:
        assert caption_progress(300, 600) == 77

    def test_monotonic(self) -> None:
        """Test that progress never decreases as time passes."""
        values = [caption_progress(t, 600) for t in range(0, 700, 10)]
        assert values == sorted(values)


@pytest.mark.unit
class TestWaitForCaptions:
    """Test suite for CaptionPoller.wait_for_captions."""

    @pytest.fixture
    def clock(self) -> FakeClock:
        return FakeClock()

    @pytest.fixture
    def video_service(self) -> MagicMock:
        return MagicMock()

    @pytest.fixture
    def poller(self, video_service: MagicMock, clock: FakeClock) -> CaptionPoller:
        return CaptionPoller(video_service, sleep=clock.sleep, clock=clock)

    @pytest.mark.asyncio
    async def test_ready_after_pending(
        self, poller: CaptionPoller, video_service: MagicMock, clock: FakeClock
    ) -> None:
        """Test progress reports while pending and return on ready."""
        video_service.get_caption_status = AsyncMock(
            side_effect=[caption("pending"), caption("pending"), caption("ready")]
        )
        on_progress = AsyncMock()

        status = await poller.wait_for_captions(
            "vid1", "ko", max_wait_time=600, poll_interval=10, on_progress=on_progress
        )

        assert status.state == "ready"
        assert clock.sleeps == [10, 10]
        assert on_progress.await_count == 2
        first, second = on_progress.await_args_list
        assert first.args[0] == "generating-captions"
        assert first.args[1] == 70
        assert 70 <= second.args[1] <= 84
        assert second.args[1] >= first.args[1]

    @pytest.mark.asyncio
    async def test_error_on_third_poll_raises_immediately(
        self, poller: CaptionPoller, video_service: MagicMock, clock: FakeClock
    ) -> None:
        """Test that an error state fails without waiting out the budget."""
        video_service.get_caption_status = AsyncMock(
            side_effect=[caption("pending"), caption("pending"), caption("error")]
        )

        with pytest.raises(ExternalServiceError, match="Caption generation failed"):
            await poller.wait_for_captions("vid1", "ko", max_wait_time=600, poll_interval=10)

        assert video_service.get_caption_status.await_count == 3
        assert clock.sleeps == [10, 10]

    @pytest.mark.asyncio
    async def test_not_started_counts_as_pending(
        self, poller: CaptionPoller, video_service: MagicMock, clock: FakeClock
    ) -> None:
        """Test that a missing track right after generation keeps polling."""
        video_service.get_caption_status = AsyncMock(
            side_effect=[
                RemoteNotFoundError("no captions yet"),
                caption("not-started"),
                caption("ready"),
            ]
        )

        status = await poller.wait_for_captions("vid1", "ko", max_wait_time=600, poll_interval=10)

        assert status.state == "ready"
        assert len(clock.sleeps) == 2

    @pytest.mark.asyncio
    async def test_timeout(
        self, poller: CaptionPoller, video_service: MagicMock, clock: FakeClock
    ) -> None:
        """Test that exceeding the wait bound raises a timeout."""
        video_service.get_caption_status = AsyncMock(return_value=caption("pending"))

        with pytest.raises(PollingTimeoutError, match="Caption generation timeout"):
            await poller.wait_for_captions("vid1", "ko", max_wait_time=30, poll_interval=10)

        assert video_service.get_caption_status.await_count == 3
        assert clock.now == 30


@pytest.mark.unit
class TestWaitForProcessing:
    """Test suite for CaptionPoller.wait_for_processing."""

    @pytest.mark.asyncio
    async def test_ready(self) -> None:
        clock = FakeClock()
        video_service = MagicMock()
        video_service.get_status = AsyncMock(
            side_effect=[
                VideoStatus(uid="vid1", state="queued"),
                VideoStatus(uid="vid1", state="inprogress"),
                VideoStatus(uid="vid1", state="ready", duration=120.0),
            ]
        )
        poller = CaptionPoller(video_service, sleep=clock.sleep, clock=clock)

        status = await poller.wait_for_processing("vid1", max_wait_time=300, poll_interval=5)

        assert status.duration == 120.0
        assert clock.sleeps == [5, 5]

    @pytest.mark.asyncio
    async def test_error_state(self) -> None:
        """Test that a processing error carries the service's reason."""
        clock = FakeClock()
        video_service = MagicMock()
        video_service.get_status = AsyncMock(
            return_value=VideoStatus(uid="vid1", state="error", error_reason="Unsupported codec")
        )
        poller = CaptionPoller(video_service, sleep=clock.sleep, clock=clock)

        with pytest.raises(ExternalServiceError, match="Video processing failed: Unsupported codec"):
            await poller.wait_for_processing("vid1")

        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        clock = FakeClock()
        video_service = MagicMock()
        video_service.get_status = AsyncMock(return_value=VideoStatus(uid="vid1", state="queued"))
        poller = CaptionPoller(video_service, sleep=clock.sleep, clock=clock)

        with pytest.raises(PollingTimeoutError, match="Video processing timeout"):
            await poller.wait_for_processing("vid1", max_wait_time=20, poll_interval=5)

        assert video_service.get_status.await_count == 4

    @pytest.mark.asyncio
    async def test_unlisted_video_counts_as_pending(self) -> None:
        """Test that a 404 right after the copy upload keeps polling."""
        clock = FakeClock()
        video_service = MagicMock()
        video_service.get_status = AsyncMock(
            side_effect=[
                RemoteNotFoundError("Stream resource not found: Not found"),
                VideoStatus(uid="vid1", state="ready", duration=42.0),
            ]
        )
        poller = CaptionPoller(video_service, sleep=clock.sleep, clock=clock)

        status = await poller.wait_for_processing("vid1", max_wait_time=300, poll_interval=5)

        assert status.state == "ready"
        assert clock.sleeps == [5]
