"""Video and caption service client for Cloudflare Stream."""

from typing import Any

import httpx

from src.utils.logging import get_logger

from .config import ContentPipelineConfig
from .errors import ExternalServiceError, RemoteNotFoundError, short_reason
from .schemas import CaptionStatus, CaptionTrack, VideoStatus

logger = get_logger(__name__)

_CAPTION_STATES = {
    "ready": "ready",
    "error": "error",
    "inprogress": "pending",
    "queued": "pending",
    "pending": "pending",
}


def _envelope_error(response: httpx.Response) -> str | None:
    """First error message of a Stream API error envelope, if the body has one."""
    try:
        body = response.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    errors = body.get("errors") or []
    if errors and isinstance(errors[0], dict):
        return errors[0].get("message")
    return None


class StreamVideoService:
    """Thin async wrapper over the Stream REST API.

    Uploads a source video by URL, reports transcoding state, triggers AI
    caption generation and downloads caption tracks. Non-2xx responses are
    raised as ``ExternalServiceError`` with the first error message from the
    response envelope.
    """

    def __init__(self, config: ContentPipelineConfig, http_client: httpx.AsyncClient):
        self.config = config
        self.http_client = http_client
        self.base_url = (
            f"{config.stream_base_url.rstrip('/')}/accounts/{config.cloudflare_account_id}/stream"
        )
        self.headers = {"Authorization": f"Bearer {config.stream_api_token}"}

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            response = await self.http_client.request(
                method, url, headers=self.headers, **kwargs
            )
        except httpx.HTTPError as e:
            logger.exception("stream_request_failed", method=method, path=path)
            raise ExternalServiceError(
                f"Stream API request failed: {short_reason(str(e)) or type(e).__name__}"
            ) from e

        if response.is_success:
            return response

        reason = _envelope_error(response) or response.reason_phrase
        logger.warning(
            "stream_request_rejected",
            method=method,
            path=path,
            status_code=response.status_code,
        )
        if response.status_code == 404:
            raise RemoteNotFoundError(f"Stream resource not found: {short_reason(reason)}")
        raise ExternalServiceError(f"Stream API error: {short_reason(reason)}")

    async def upload_from_url(self, url: str, meta: dict[str, Any] | None = None) -> str:
        """Copy a remote video into Stream.

        Returns:
            The Stream video uid.
        """
        meta = {"name": "Transcription Video", **(meta or {})}
        response = await self._request(
            "POST",
            "/copy",
            json={
                "url": url,
                "meta": meta,
                "allowedOrigins": ["*"],
                "requireSignedURLs": False,
            },
        )
        uid = response.json()["result"]["uid"]
        logger.info("stream_upload_started", stream_uid=uid)
        return uid

    async def get_status(self, video_id: str) -> VideoStatus:
        result = (await self._request("GET", f"/{video_id}")).json()["result"]
        status = result.get("status") or {}
        return VideoStatus(
            uid=video_id,
            state=status.get("state", "pending"),
            error_reason=status.get("errorReasonText"),
            duration=result.get("duration"),
        )

    async def generate_captions(self, video_id: str, language: str) -> dict[str, Any]:
        response = await self._request("POST", f"/{video_id}/captions/{language}/generate")
        logger.info("caption_generation_requested", stream_uid=video_id, language=language)
        return response.json().get("result") or {}

    async def get_caption_status(self, video_id: str, language: str) -> CaptionStatus:
        """State of the caption track for ``language``.

        A track that is not listed yet is reported as ``not-started``; the
        listing can lag right after generation is requested.
        """
        tracks = (await self._request("GET", f"/{video_id}/captions")).json().get(
            "result"
        ) or []
        for track in tracks:
            if track.get("language") == language:
                raw_state = str(track.get("status", "ready")).lower()
                return CaptionStatus(
                    language=language,
                    state=_CAPTION_STATES.get(raw_state, "pending"),
                    label=track.get("label"),
                )
        return CaptionStatus(language=language, state="not-started")

    async def get_caption_track(self, video_id: str, language: str) -> CaptionTrack:
        response = await self._request("GET", f"/{video_id}/captions/{language}/vtt")
        return CaptionTrack(language=language, label=None, content=response.text)

    async def delete_video(self, video_id: str) -> None:
        await self._request("DELETE", f"/{video_id}")
        logger.info("stream_video_deleted", stream_uid=video_id)
