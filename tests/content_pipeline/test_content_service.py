"""Unit tests for job submission and job record handling."""

import hashlib
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from src.content_pipeline.content_service import ContentService, compute_content_id
from src.content_pipeline.errors import NotFoundError, ValidationError
from src.content_pipeline.job_store import content_key
from src.content_pipeline.schemas import IndexResult

VIDEO_URL = "https://example.com/lectures/intro.mp4"


@pytest.mark.unit
class TestComputeContentId:
    """Test suite for content-addressed ids."""

    def test_is_sha256_prefix(self) -> None:
        expected = hashlib.sha256(VIDEO_URL.encode()).hexdigest()[:32]

        assert compute_content_id(VIDEO_URL) == expected
        assert len(compute_content_id(VIDEO_URL)) == 32

    def test_distinct_urls_give_distinct_ids(self) -> None:
        assert compute_content_id(VIDEO_URL) != compute_content_id(VIDEO_URL + "?v=2")


@pytest.mark.unit
class TestCreateUploadJob:
    """Test suite for ContentService.create_upload_job."""

    @pytest.fixture
    def service(self, job_store, work_queue) -> ContentService:
        return ContentService(job_store, work_queue)

    @pytest.mark.asyncio
    async def test_new_job_is_stored_and_enqueued(
        self, service: ContentService, job_store, work_queue
    ) -> None:
        """Test a fresh submission."""
        result = await service.create_upload_job(VIDEO_URL, options={"format": "srt"})

        content_id = compute_content_id(VIDEO_URL)
        assert result.content_id == content_id
        assert result.status == "queued"
        assert result.is_existing is False
        assert result.status_url == f"/v1/content/status/{content_id}"

        record = await job_store.get(content_key("info", content_id))
        assert record["status"] == "queued"
        assert record["language"] == "ko-KR"
        assert record["options"]["format"] == "srt"
        assert record["progress"] == {
            "stage": "queued",
            "percentage": 0,
            "message": "Job queued for processing",
        }
        assert [m.content_id for m in work_queue.sent] == [content_id]
        assert work_queue.sent[0].action == "process_video"

    @pytest.mark.asyncio
    async def test_duplicate_submission_is_not_reenqueued(
        self, service: ContentService, work_queue
    ) -> None:
        """Test content-addressed dedup without force."""
        first = await service.create_upload_job(VIDEO_URL)
        second = await service.create_upload_job(VIDEO_URL)

        assert second.content_id == first.content_id
        assert second.is_existing is True
        assert len(work_queue.sent) == 1

    @pytest.mark.asyncio
    async def test_force_requeues_and_keeps_created_at(
        self, service: ContentService, job_store, work_queue
    ) -> None:
        """Test forced reprocessing of an existing job."""
        first = await service.create_upload_job(VIDEO_URL)
        key = content_key("info", first.content_id)
        original = await job_store.get(key)
        await service.set_error(first.content_id, "Video processing timeout")

        result = await service.create_upload_job(VIDEO_URL, force=True)

        record = await job_store.get(key)
        assert result.is_existing is True
        assert result.status == "queued"
        assert record["createdAt"] == original["createdAt"]
        assert record["status"] == "queued"
        assert "error" not in record
        assert len(work_queue.sent) == 2

    @pytest.mark.parametrize("url", ["", "not a url", "ftp://example.com/v.mp4", "https://"])
    @pytest.mark.asyncio
    async def test_invalid_url_is_rejected(
        self, service: ContentService, work_queue, url: str
    ) -> None:
        with pytest.raises(ValidationError):
            await service.create_upload_job(url)

        assert work_queue.sent == []

    @pytest.mark.asyncio
    async def test_invalid_format_is_rejected(self, service: ContentService) -> None:
        with pytest.raises(ValidationError, match="Invalid options"):
            await service.create_upload_job(VIDEO_URL, options={"format": "mp3"})


@pytest.mark.unit
class TestJobRecord:
    """Test suite for job record mutations and lookups."""

    @pytest_asyncio.fixture
    async def service_with_job(self, job_store, work_queue) -> tuple[ContentService, str]:
        service = ContentService(job_store, work_queue)
        result = await service.create_upload_job(VIDEO_URL)
        return service, result.content_id

    @pytest.mark.asyncio
    async def test_update_progress_bumps_updated_at(self, service_with_job) -> None:
        service, content_id = service_with_job
        before = await service.require_job(content_id)

        job = await service.update_progress(content_id, "uploading", 10, "Uploading")

        assert job.progress.stage == "uploading"
        assert job.progress.percentage == 10
        assert job.updated_at >= before.updated_at
        assert job.created_at == before.created_at

    @pytest.mark.asyncio
    async def test_set_error_and_status_view(self, service_with_job) -> None:
        """Test that failed jobs expose their error in the status view."""
        service, content_id = service_with_job

        await service.set_error(content_id, "Caption generation failed for language ko")
        status = await service.get_status(content_id)

        assert status["status"] == "failed"
        assert status["error"]["message"] == "Caption generation failed for language ko"
        assert "timestamp" in status["error"]

    @pytest.mark.asyncio
    async def test_leaving_failed_clears_error(self, service_with_job) -> None:
        """Test that a redelivered job does not keep its previous error."""
        service, content_id = service_with_job
        await service.set_error(content_id, "Video processing timeout")

        job = await service.update_status(content_id, "processing")

        assert job.status == "processing"
        assert job.error is None
        status = await service.get_status(content_id)
        assert "error" not in status

    @pytest.mark.asyncio
    async def test_status_view_hides_error_when_not_failed(self, service_with_job) -> None:
        service, content_id = service_with_job

        status = await service.get_status(content_id)

        assert status["status"] == "queued"
        assert "error" not in status

    @pytest.mark.asyncio
    async def test_missing_job_raises_not_found(self, job_store, work_queue) -> None:
        service = ContentService(job_store, work_queue)

        with pytest.raises(NotFoundError):
            await service.get_status("0" * 32)
        with pytest.raises(NotFoundError):
            await service.update_status("0" * 32, "processing")

    @pytest.mark.asyncio
    async def test_get_result_requires_completed(self, service_with_job) -> None:
        service, content_id = service_with_job

        with pytest.raises(ValidationError, match="not completed"):
            await service.get_result(content_id)

    @pytest.mark.asyncio
    async def test_get_result_for_completed_job(self, service_with_job) -> None:
        service, content_id = service_with_job
        await service.set_subtitle(
            content_id,
            {"language": "ko", "duration": 12.0, "segments": [], "format": "vtt", "content": "WEBVTT"},
        )
        await service.update_status(content_id, "completed")

        result = await service.get_result(content_id)

        assert result["result"]["language"] == "ko"
        assert result["metadata"]["videoUrl"] == VIDEO_URL

    @pytest.mark.asyncio
    async def test_missing_artifacts_raise_not_found(self, service_with_job) -> None:
        service, content_id = service_with_job

        with pytest.raises(NotFoundError):
            await service.get_quiz(content_id)

    @pytest.mark.asyncio
    async def test_list_contents_with_summary_preview(self, service_with_job) -> None:
        """Test listing with a 200 character summary preview."""
        service, content_id = service_with_job
        await service.set_summary_data(content_id, {"summary": "s" * 250})

        contents = await service.list_contents()

        assert len(contents) == 1
        assert contents[0]["contentId"] == content_id
        assert contents[0]["summaryPreview"] == "s" * 200 + "..."

    @pytest.mark.asyncio
    async def test_request_recaption_requires_stored_video(self, service_with_job) -> None:
        service, content_id = service_with_job

        with pytest.raises(ValidationError, match="no stored video"):
            await service.request_recaption(content_id, "en")

    @pytest.mark.asyncio
    async def test_request_recaption_enqueues(self, service_with_job, work_queue) -> None:
        service, content_id = service_with_job
        await service.update_job(content_id, stream_id="vid1")

        await service.request_recaption(content_id, "en")

        message = work_queue.sent[-1]
        assert message.action == "recaption"
        assert message.stream_id == "vid1"
        assert message.language == "en"


@pytest.mark.unit
class TestReindexContent:
    """Test suite for ContentService.reindex_content."""

    @pytest.mark.asyncio
    async def test_reindex_uses_stored_artifacts(self, job_store, work_queue) -> None:
        retrieval = MagicMock()
        retrieval.index_content = AsyncMock(
            return_value=IndexResult(
                content_id="abc", chunks_indexed=1, summary_indexed=1, total_vectors=2
            )
        )
        service = ContentService(job_store, work_queue, retrieval)
        await service.set_summary_data(
            "abc", {"summary": "Summary text", "videoUrl": VIDEO_URL}
        )
        await service.set_subtitle(
            "abc",
            {
                "language": "ko",
                "duration": 10.0,
                "segments": [{"start": 0.0, "end": 10.0, "text": "Caption text here."}],
            },
        )

        result = await service.reindex_content("abc")

        assert result.total_vectors == 2
        args = retrieval.index_content.call_args.args
        assert args[0] == "abc"
        assert args[1] == "Summary text"
        assert args[2][0].text == "Caption text here."
        assert args[3]["videoUrl"] == VIDEO_URL

    @pytest.mark.asyncio
    async def test_reindex_falls_back_to_original_text(self, job_store, work_queue) -> None:
        """Test sentence segments when no timed segments were stored."""
        retrieval = MagicMock()
        retrieval.index_content = AsyncMock()
        service = ContentService(job_store, work_queue, retrieval)
        await service.set_summary_data(
            "abc", {"summary": "S", "originalText": "One sentence. Two sentences."}
        )
        await service.set_subtitle("abc", {"language": "ko", "segments": []})

        await service.reindex_content("abc")

        segments = retrieval.index_content.call_args.args[2]
        assert [s.text for s in segments] == ["One sentence.", "Two sentences."]

    @pytest.mark.asyncio
    async def test_reindex_missing_artifacts(self, job_store, work_queue) -> None:
        service = ContentService(job_store, work_queue, MagicMock())

        with pytest.raises(NotFoundError):
            await service.reindex_content("abc")
