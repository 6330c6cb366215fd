"""Stateless helpers for WebVTT caption tracks.

Parses cues into transcript segments, derives plain text and duration, and
converts between the caption formats a job can request.
"""

import json
import re

from .schemas import TranscriptSegment

_TIMESTAMP = r"\d{2}:\d{2}:\d{2}\.\d{3}"
_CUE_TIMING = re.compile(rf"^({_TIMESTAMP}) --> ({_TIMESTAMP})")
_ANY_TIMESTAMP = re.compile(rf"({_TIMESTAMP})")
_CUE_NUMBER = re.compile(r"^\d+$")

LANGUAGE_CODES = {
    "ko-KR": "ko",
    "en-US": "en",
    "ja-JP": "ja",
    "zh-CN": "zh",
    "es-ES": "es",
    "fr-FR": "fr",
    "de-DE": "de",
    "it-IT": "it",
    "pt-PT": "pt",
    "ru-RU": "ru",
}
SUPPORTED_LANGUAGES = frozenset(
    {"ko", "en", "ja", "zh", "es", "fr", "de", "it", "pt", "ru", "pl", "cs", "nl"}
)


def map_language_code(language: str | None) -> str:
    """Map a locale such as ``ko-KR`` to the captioning service's code.

    Examples:
        >>> map_language_code("ko-KR")
        'ko'
        >>> map_language_code("sv-SE")
        'sv'
        >>> map_language_code("")
        'en'
    """
    if not language:
        return "en"
    if language in LANGUAGE_CODES:
        return LANGUAGE_CODES[language]
    if language in SUPPORTED_LANGUAGES:
        return language
    return language.split("-")[0] or "en"


def time_string_to_seconds(value: str) -> float:
    hours, minutes, seconds = value.split(":")
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def seconds_to_srt_time(seconds: float) -> str:
    """Format seconds as ``HH:MM:SS,mmm``."""
    total_ms = int(round(seconds * 1000))
    hours, rest = divmod(total_ms, 3_600_000)
    minutes, rest = divmod(rest, 60_000)
    secs, ms = divmod(rest, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d},{ms:03d}"


def parse_vtt_segments(vtt_content: str) -> list[TranscriptSegment]:
    """Parse cues into ordered segments; multi-line cue text is space-joined."""
    segments: list[TranscriptSegment] = []
    current: dict | None = None

    for line in vtt_content.splitlines():
        trimmed = line.strip()
        timing = _CUE_TIMING.match(trimmed)
        if timing:
            if current is not None:
                segments.append(TranscriptSegment(**current))
            current = {
                "start": time_string_to_seconds(timing.group(1)),
                "end": time_string_to_seconds(timing.group(2)),
                "text": "",
            }
        elif current is not None and trimmed and not _CUE_NUMBER.match(trimmed):
            current["text"] = f"{current['text']} {trimmed}" if current["text"] else trimmed

    if current is not None:
        segments.append(TranscriptSegment(**current))

    return segments


def extract_plain_text(vtt_content: str) -> str:
    """Drop headers, notes, timings and cue numbers; join the rest with spaces."""
    lines = []
    for line in vtt_content.splitlines():
        trimmed = line.strip()
        if (
            trimmed
            and not trimmed.startswith("WEBVTT")
            and not trimmed.startswith("NOTE")
            and "-->" not in trimmed
            and not _CUE_NUMBER.match(trimmed)
        ):
            lines.append(trimmed)
    return " ".join(lines)


def extract_duration(vtt_content: str) -> float:
    """Total duration in seconds, taken from the last timestamp in the track."""
    timestamps = _ANY_TIMESTAMP.findall(vtt_content)
    if not timestamps:
        return 0.0
    return time_string_to_seconds(timestamps[-1])


def vtt_to_srt(vtt_content: str) -> str:
    blocks = []
    for index, segment in enumerate(parse_vtt_segments(vtt_content), 1):
        blocks.append(
            f"{index}\n"
            f"{seconds_to_srt_time(segment.start)} --> {seconds_to_srt_time(segment.end)}\n"
            f"{segment.text}"
        )
    return "\n\n".join(blocks)


def convert_caption_format(vtt_content: str, target_format: str) -> str:
    """Convert a VTT track to ``vtt``, ``srt`` or ``json``.

    Unknown formats fall back to the original VTT text.
    """
    fmt = (target_format or "vtt").lower()
    if fmt == "srt":
        return vtt_to_srt(vtt_content)
    if fmt == "json":
        return json.dumps(
            [s.model_dump() for s in parse_vtt_segments(vtt_content)],
            indent=2,
            ensure_ascii=False,
        )
    return vtt_content
