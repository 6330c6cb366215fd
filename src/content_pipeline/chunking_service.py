"""Chunking service for timestamp-aware transcript segmentation."""

import re

from src.utils.logging import get_logger

from .config import ContentPipelineConfig
from .schemas import Chunk, TranscriptSegment

logger = get_logger(__name__)

_SENTENCE_BOUNDARY = re.compile(r"[.!?]+")


def chunk_segments(
    segments: list[TranscriptSegment], min_size: int, max_size: int
) -> list[Chunk]:
    """Greedily merge consecutive segments into size-bounded chunks.

    Segments are appended to a running buffer while the merged text stays
    within ``max_size``. When the next segment would overflow, the buffer is
    emitted if it has at least ``min_size`` characters and discarded
    otherwise; the next segment then starts a fresh buffer. The trailing
    buffer follows the same ``min_size`` rule, so very short tail content is
    dropped.

    A single segment longer than ``max_size`` is never split and becomes a
    chunk on its own.

    Args:
        segments: Transcript segments ordered by start time.
        min_size: Minimum chunk length in characters.
        max_size: Maximum merged length in characters.

    Returns:
        Chunks in time order. The function is pure: identical input always
        yields identical boundaries.
    """
    chunks: list[Chunk] = []
    buffer = ""
    start_time = 0.0
    end_time = 0.0
    count = 0

    def flush() -> None:
        if len(buffer) >= min_size:
            chunks.append(
                Chunk(
                    text=buffer,
                    start_time=start_time,
                    end_time=end_time,
                    segment_count=count,
                )
            )

    for segment in segments:
        text = segment.text.strip()
        if not text:
            continue

        if not buffer:
            buffer, start_time, end_time, count = text, segment.start, segment.end, 1
            continue

        candidate = f"{buffer} {text}"
        if len(candidate) <= max_size:
            buffer = candidate
            end_time = segment.end
            count += 1
            continue

        flush()
        buffer, start_time, end_time, count = text, segment.start, segment.end, 1

    if buffer:
        flush()

    return chunks


def segments_from_text(text: str) -> list[TranscriptSegment]:
    """Split untimed text into sentence segments with zero timestamps.

    Used when only plain text is available, e.g. content indexed before
    caption timing was stored.
    """
    sentences = [s.strip() for s in _SENTENCE_BOUNDARY.split(text)]
    return [
        TranscriptSegment(start=0.0, end=0.0, text=f"{sentence}.")
        for sentence in sentences
        if sentence
    ]


class ChunkingService:
    """Chunks transcripts with the configured character bounds."""

    def __init__(self, config: ContentPipelineConfig):
        """Initialize chunking service with configuration.

        Args:
            config: Configuration object with chunk size limits.
        """
        self.config = config
        logger.info(
            "chunking_service_initialized",
            min_chars=config.min_chunk_chars,
            max_chars=config.max_chunk_chars,
        )

    def chunk(self, segments: list[TranscriptSegment]) -> list[Chunk]:
        """Chunk transcript segments using configured bounds.

        Args:
            segments: Parsed caption segments.

        Returns:
            List of Chunk objects ready for embedding.
        """
        chunks = chunk_segments(
            segments,
            min_size=self.config.min_chunk_chars,
            max_size=self.config.max_chunk_chars,
        )
        logger.info(
            "chunking_completed",
            segments=len(segments),
            chunks_created=len(chunks),
        )
        return chunks
