"""Content service: job submission, job record mutations and artifact lookup."""

import hashlib
from typing import Any
from urllib.parse import urlparse

from pydantic import ValidationError as SchemaValidationError

from src.utils.logging import get_logger

from .chunking_service import segments_from_text
from .errors import NotFoundError, ValidationError
from .job_store import JobStore, content_key
from .retrieval_service import RetrievalService
from .schemas import (
    ContentJob,
    IndexResult,
    JobError,
    JobOptions,
    JobProgress,
    JobStatus,
    QueueMessage,
    SubmitResult,
    TranscriptSegment,
    utc_now,
)
from .work_queue import WorkQueue

logger = get_logger(__name__)

SUMMARY_PREVIEW_CHARS = 200


def compute_content_id(video_url: str) -> str:
    """Content-addressed id: first 32 hex chars of SHA-256 over the URL.

    Examples:
        >>> len(compute_content_id("https://example.com/lecture.mp4"))
        32
    """
    return hashlib.sha256(video_url.encode("utf-8")).hexdigest()[:32]


def _validate_video_url(video_url: str) -> None:
    parsed = urlparse(video_url or "")
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError("videoUrl must be an absolute http(s) URL")


class ContentService:
    """Owns job records and derived artifacts in the job store.

    The orchestrator is the only writer of a job record during processing;
    every mutation is a read-modify-write that bumps ``updatedAt``.
    """

    def __init__(
        self,
        store: JobStore,
        queue: WorkQueue,
        retrieval_service: RetrievalService | None = None,
    ):
        self.store = store
        self.queue = queue
        self.retrieval_service = retrieval_service

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def create_upload_job(
        self,
        video_url: str,
        language: str = "ko-KR",
        force: bool = False,
        options: dict[str, Any] | None = None,
    ) -> SubmitResult:
        """Create and enqueue a processing job for ``video_url``.

        Repeated submissions of the same URL map to the same content id and
        are not re-enqueued unless ``force`` is set. A forced resubmission
        starts a new processing cycle on the same record and keeps its
        ``createdAt``.

        Raises:
            ValidationError: If the URL or options are invalid.
        """
        _validate_video_url(video_url)
        try:
            job_options = JobOptions.model_validate(options or {})
        except SchemaValidationError as e:
            raise ValidationError(f"Invalid options: {e.errors()[0]['msg']}") from e

        content_id = compute_content_id(video_url)
        existing = await self.get_job(content_id)

        if existing and not force:
            logger.info("job_already_exists", content_id=content_id, status=existing.status)
            return SubmitResult(
                content_id=content_id,
                status=existing.status,
                status_url=f"/v1/content/status/{content_id}",
                result_url=f"/v1/content/result/{content_id}",
                is_existing=True,
                message="Found existing transcription job. Use force=true to reprocess.",
            )

        now = utc_now()
        job = ContentJob(
            content_id=content_id,
            video_url=video_url,
            language=language,
            options=job_options,
            status="queued",
            progress=JobProgress(
                stage="queued",
                percentage=0,
                message="Job requeued for reprocessing" if force else "Job queued for processing",
            ),
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        await self.save_job(job)
        await self.queue.send(QueueMessage(content_id=content_id, action="process_video"))

        logger.info("job_enqueued", content_id=content_id, force=force, language=language)
        return SubmitResult(
            content_id=content_id,
            status="queued",
            status_url=f"/v1/content/status/{content_id}",
            result_url=f"/v1/content/result/{content_id}",
            is_existing=existing is not None,
            message="Video requeued for reprocessing" if force else "Video queued for processing",
        )

    async def request_recaption(self, content_id: str, language: str) -> None:
        """Enqueue caption regeneration in another language on the stored video."""
        job = await self.require_job(content_id)
        if not job.stream_id:
            raise ValidationError(
                f"Content {content_id} has no stored video to recaption"
            )
        await self.queue.send(
            QueueMessage(
                content_id=content_id,
                action="recaption",
                stream_id=job.stream_id,
                language=language,
            )
        )

    # ------------------------------------------------------------------
    # Job record
    # ------------------------------------------------------------------

    async def get_job(self, content_id: str) -> ContentJob | None:
        data = await self.store.get(content_key("info", content_id))
        return ContentJob.model_validate(data) if data else None

    async def require_job(self, content_id: str) -> ContentJob:
        job = await self.get_job(content_id)
        if job is None:
            raise NotFoundError(f"Content {content_id} not found")
        return job

    async def save_job(self, job: ContentJob) -> None:
        await self.store.set(content_key("info", job.content_id), job.to_record())

    async def update_job(self, content_id: str, **changes: Any) -> ContentJob:
        """Apply ``changes`` to the stored job and bump ``updatedAt``.

        Raises:
            NotFoundError: If the job record does not exist.
        """
        job = await self.require_job(content_id)
        updated = job.model_copy(update={**changes, "updated_at": utc_now()})
        await self.save_job(updated)
        return updated

    async def update_status(self, content_id: str, status: JobStatus) -> ContentJob:
        """Set ``status``; ``error`` is dropped for any status but failed."""
        if status == "failed":
            return await self.update_job(content_id, status=status)
        return await self.update_job(content_id, status=status, error=None)

    async def update_progress(
        self, content_id: str, stage: str, percentage: int, message: str
    ) -> ContentJob:
        job = await self.update_job(
            content_id,
            progress=JobProgress(stage=stage, percentage=percentage, message=message),
        )
        logger.info(
            "job_progress", content_id=content_id, stage=stage, percentage=percentage
        )
        return job

    async def set_error(self, content_id: str, message: str) -> ContentJob:
        return await self.update_job(
            content_id,
            status="failed",
            error=JobError(message=message),
            progress=JobProgress(stage="failed", percentage=0, message=f"Error: {message}"),
        )

    async def set_info(
        self,
        content_id: str,
        language: str | None = None,
        duration: float | None = None,
        source: str | None = None,
    ) -> ContentJob:
        """Record caption metadata on the job once captions are downloaded."""
        changes: dict[str, Any] = {}
        if language:
            changes["language"] = language
        if duration is not None:
            changes["duration"] = duration
        if source:
            changes["source"] = source
        return await self.update_job(content_id, **changes)

    async def set_subtitle(self, content_id: str, data: dict[str, Any]) -> None:
        await self.store.set(content_key("subtitle", content_id), data)

    async def set_summary_data(self, content_id: str, data: dict[str, Any]) -> None:
        await self.store.set(content_key("summary", content_id), data)

    async def set_quiz(self, content_id: str, data: dict[str, Any]) -> None:
        await self.store.set(content_key("quiz", content_id), data)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get_status(self, content_id: str) -> dict[str, Any]:
        """Status view of a job; ``error`` is included only for failed jobs."""
        job = await self.require_job(content_id)
        view = {
            "contentId": job.content_id,
            "status": job.status,
            "progress": job.progress.to_record(),
            "createdAt": job.created_at.isoformat(),
            "updatedAt": job.updated_at.isoformat(),
        }
        if job.status == "failed" and job.error:
            view["error"] = job.error.to_record()
        return view

    async def get_result(self, content_id: str) -> dict[str, Any]:
        job = await self.require_job(content_id)
        if job.status != "completed":
            raise ValidationError(
                f"Content is not completed. Current status: {job.status}"
            )
        subtitle = await self._require_artifact("subtitle", content_id)
        return {
            "contentId": content_id,
            "status": job.status,
            "result": {
                "language": subtitle.get("language"),
                "duration": subtitle.get("duration"),
                "segments": subtitle.get("segments", []),
                "format": subtitle.get("format"),
                "content": subtitle.get("content"),
                "source": subtitle.get("source"),
            },
            "metadata": {
                "language": job.language,
                "duration": job.duration,
                "videoUrl": job.video_url,
                "source": job.source,
                "createdAt": job.created_at.isoformat(),
                "updatedAt": job.updated_at.isoformat(),
            },
        }

    async def get_summary(self, content_id: str) -> dict[str, Any]:
        return await self._require_artifact("summary", content_id)

    async def get_subtitle(self, content_id: str) -> dict[str, Any]:
        return await self._require_artifact("subtitle", content_id)

    async def get_quiz(self, content_id: str) -> dict[str, Any]:
        return await self._require_artifact("quiz", content_id)

    async def _require_artifact(self, kind: str, content_id: str) -> dict[str, Any]:
        data = await self.store.get(content_key(kind, content_id))
        if data is None:
            raise NotFoundError(f"Content {kind} not found for {content_id}")
        return data

    async def list_contents(self, limit: int = 100) -> list[dict[str, Any]]:
        """List stored jobs with a short summary preview."""
        prefix = "content:info:"
        contents = []
        for key in await self.store.list(prefix, limit):
            info = await self.store.get(key)
            if not info:
                continue
            content_id = key[len(prefix):]
            summary = await self.store.get(content_key("summary", content_id))
            preview = None
            if summary and summary.get("summary"):
                text = summary["summary"]
                preview = text[:SUMMARY_PREVIEW_CHARS] + (
                    "..." if len(text) > SUMMARY_PREVIEW_CHARS else ""
                )
            contents.append(
                {
                    "contentId": content_id,
                    "status": info.get("status"),
                    "language": info.get("language"),
                    "duration": info.get("duration"),
                    "videoUrl": info.get("videoUrl"),
                    "source": info.get("source"),
                    "createdAt": info.get("createdAt"),
                    "updatedAt": info.get("updatedAt"),
                    "summaryPreview": preview,
                }
            )
        return contents

    async def reindex_content(self, content_id: str) -> IndexResult:
        """Rebuild the vectors of a completed job from its stored artifacts.

        Raises:
            NotFoundError: If subtitle or summary records are missing.
        """
        if self.retrieval_service is None:
            raise ValidationError("Re-indexing requires a retrieval service")
        summary = await self._require_artifact("summary", content_id)
        subtitle = await self._require_artifact("subtitle", content_id)
        segments = [
            TranscriptSegment.model_validate(s) for s in subtitle.get("segments", [])
        ]
        if not segments and summary.get("originalText"):
            segments = segments_from_text(summary["originalText"])
        return await self.retrieval_service.index_content(
            content_id,
            summary.get("summary", ""),
            segments,
            {
                "language": subtitle.get("language"),
                "duration": subtitle.get("duration"),
                "videoUrl": summary.get("videoUrl"),
                "source": subtitle.get("source"),
            },
        )
