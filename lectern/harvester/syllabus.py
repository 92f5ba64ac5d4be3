# lectern/harvester/syllabus.py

"""
Echo360 section syllabus: parsing, readiness filtering and a TTL cache.

The syllabus endpoint returns one entry per lesson. Depending on the tenant
and API version the lesson may be wrapped (``entry.lesson`` or
``entry.lesson.lesson``) and its media may sit on the entry, the wrapper or
the lesson itself. The parser flattens all of that into one
``DetectedVideo`` per playable media item.
"""

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from lectern.harvester.echo360_urls import (
    UUID_REGEX,
    build_lesson_page_url,
    build_syllabus_url,
    extract_section_id,
    origin_of,
)
from lectern.shared import config
from lectern.shared.errors import ErrorCode
from lectern.shared.models import DetectedVideo, VideoProvider
from lectern.shared.network import fetch_json_with_retry
from lectern.shared.observability import log_event

UNSUPPORTED_MEDIA_TYPE = "UNSUPPORTED_MEDIA_TYPE"

_BRACED_ID = re.compile(r"^\{?([0-9a-fA-F-]{36})\}?$")


# --- Record helpers ---

def as_record(value: Any) -> Optional[Dict[str, Any]]:
    return value if isinstance(value, dict) else None


def read_string(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def read_boolean(value: Any) -> Optional[bool]:
    return value if isinstance(value, bool) else None


def _first_present(record: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if record.get(key) is not None:
            return record[key]
    return None


def _first_non_empty(*values: Optional[str]) -> Optional[str]:
    for value in values:
        if value:
            return value
    return None


def normalize_media_id(value: Any) -> Optional[str]:
    """Brace-wrapped or bare UUIDs are lowercased; anything else is trimmed."""
    raw = read_string(value)
    if not raw:
        return None
    braced = _BRACED_ID.match(raw)
    if braced and UUID_REGEX.match(braced.group(1)):
        return braced.group(1).lower()
    if UUID_REGEX.match(raw):
        return raw.lower()
    return raw


def extract_lesson_id(record: Optional[Dict[str, Any]]) -> Optional[str]:
    if not record:
        return None
    return read_string(_first_present(record, "id", "lessonId", "lesson_id"))


def extract_lesson_name(record: Optional[Dict[str, Any]]) -> str:
    if not record:
        return ""
    return read_string(record.get("displayName")) or read_string(record.get("name")) or read_string(record.get("title")) or ""


def extract_timing_start(record: Optional[Dict[str, Any]]) -> Optional[str]:
    if not record:
        return None
    timing = as_record(record.get("timing"))
    if timing is None:
        return None
    return read_string(timing.get("start")) or read_string(timing.get("startTime")) or read_string(timing.get("startsAt"))


def extract_media_id(record: Optional[Dict[str, Any]]) -> Optional[str]:
    if not record:
        return None
    return normalize_media_id(_first_present(record, "mediaId", "media_id", "id"))


def extract_media_title(record: Optional[Dict[str, Any]]) -> Optional[str]:
    if not record:
        return None
    return read_string(record.get("title")) or read_string(record.get("name")) or read_string(record.get("displayName"))


def extract_media_type_raw(record: Optional[Dict[str, Any]]) -> Optional[str]:
    if not record:
        return None
    return read_string(_first_present(record, "mediaType", "media_type", "type", "kind"))


def get_unique_key(media_id: Optional[str], lesson_id: Optional[str]) -> Optional[str]:
    if media_id:
        return f"media:{media_id}"
    if lesson_id:
        return f"lesson:{lesson_id}"
    return None


# --- Media type and readiness ---

@dataclass(frozen=True)
class MediaTypeInfo:
    media_type_raw: Optional[str]
    media_type: Optional[str]
    is_audio_only: bool
    is_audio_type: bool
    is_supported: bool


def get_media_type_info(record: Dict[str, Any]) -> MediaTypeInfo:
    """Video and audio are supported; media with no type at all is assumed playable."""
    raw = extract_media_type_raw(record)
    normalized = raw.lower() if raw else None
    is_audio_only = read_boolean(record.get("isAudioOnly")) is True
    is_video_type = raw == "Video" or normalized == "video" or bool(normalized and normalized.startswith("video/"))
    is_audio_type = raw == "Audio" or normalized == "audio" or bool(normalized and normalized.startswith("audio/"))
    is_supported = is_video_type or is_audio_type or is_audio_only or (raw is None and normalized is None)
    return MediaTypeInfo(raw, normalized, is_audio_only, is_audio_type, is_supported)


# Checked in order; the first matching flag decides the skip reason
_STATUS_CHECKS = (
    ("isAvailable", False, ErrorCode.NOT_AVAILABLE, "Media is not available"),
    ("isProcessing", True, ErrorCode.MEDIA_PROCESSING, "Media is still processing"),
    ("isFailed", True, ErrorCode.MEDIA_FAILED, "Media processing failed"),
    ("isPreliminary", True, ErrorCode.MEDIA_PRELIMINARY, "Media is preliminary"),
    ("isHiddenDueToCaptions", True, ErrorCode.MEDIA_HIDDEN, "Media hidden due to captions"),
)


def get_media_status_skip_reason(record: Dict[str, Any]) -> Optional[Tuple[str, str]]:
    """``(error_code, reason)`` when the media should not be listed, else None."""
    for key, skip_value, code, reason in _STATUS_CHECKS:
        if read_boolean(record.get(key)) is skip_value:
            return code, reason
    return None


def append_audio_suffix(title: str, is_audio: bool) -> str:
    if not is_audio:
        return title
    if not title:
        return "Echo360 audio"
    return f"{title} (Audio)"


# --- Parsing ---

@dataclass(frozen=True)
class MediaSkip:
    media_id: str
    code: str
    reason: str


@dataclass
class SyllabusParseReport:
    videos: List[DetectedVideo] = field(default_factory=list)
    skipped: List[MediaSkip] = field(default_factory=list)
    entries_processed: int = 0


@dataclass(frozen=True)
class LessonContext:
    lesson_record: Optional[Dict[str, Any]]
    lesson_wrapper: Optional[Dict[str, Any]]
    lesson_id: Optional[str]
    lesson_name: str
    timing_start: Optional[str]
    is_folder_lesson: bool


def extract_lesson_context(entry: Dict[str, Any]) -> LessonContext:
    wrapper = as_record(entry.get("lesson"))
    nested = as_record(wrapper.get("lesson")) if wrapper is not None else None
    lesson_record = nested if nested is not None else (wrapper if wrapper is not None else entry)
    lesson_id = _first_non_empty(extract_lesson_id(nested), extract_lesson_id(wrapper), extract_lesson_id(entry))
    is_folder = (lesson_record or {}).get("isFolderLesson") is True or (wrapper or {}).get("isFolderLesson") is True
    return LessonContext(
        lesson_record=lesson_record,
        lesson_wrapper=wrapper,
        lesson_id=lesson_id,
        lesson_name=extract_lesson_name(lesson_record),
        timing_start=_first_non_empty(extract_timing_start(lesson_record), extract_timing_start(wrapper)),
        is_folder_lesson=is_folder,
    )


def _syllabus_entries(response: Any) -> Optional[List[Any]]:
    payload = as_record(response)
    if payload is None:
        return None
    if isinstance(payload.get("data"), list):
        return payload["data"]
    if isinstance(payload.get("lessons"), list):
        return payload["lessons"]
    data = as_record(payload.get("data"))
    if data is not None and isinstance(data.get("lessons"), list):
        return data["lessons"]
    return None


def validate_syllabus_response(response: Any) -> bool:
    entries = _syllabus_entries(response)
    if entries is None:
        return False
    if entries and not any(isinstance(entry, dict) for entry in entries):
        return False
    return True


def _collect_media_records(*candidates: Any) -> List[Dict[str, Any]]:
    records: List[Dict[str, Any]] = []
    for candidate in candidates:
        if isinstance(candidate, list):
            records.extend(item for item in candidate if isinstance(item, dict))
        elif isinstance(candidate, dict):
            records.append(candidate)
    return records


def _build_video_entry(
    media_id: str,
    lesson_id: str,
    base_url: str,
    lesson: LessonContext,
    media: Dict[str, Any],
    is_audio: bool,
) -> DetectedVideo:
    title = _first_non_empty(lesson.lesson_name, extract_media_title(media)) or "Echo360 video"
    return DetectedVideo(
        id=media_id,
        provider=VideoProvider.ECHO360,
        title=append_audio_suffix(title, is_audio),
        embed_url=build_lesson_page_url(base_url, lesson_id),
        recorded_at=lesson.timing_start,
        echo_lesson_id=lesson_id,
        echo_media_id=media_id,
        echo_base_url=base_url,
    )


class _SyllabusParser:
    def __init__(self, base_url: str, request_id: str):
        self.base_url = base_url
        self.request_id = request_id
        self.report = SyllabusParseReport()
        self.seen: Set[str] = set()

    def _skip(self, media_id: str, code: str, reason: str, media: Dict[str, Any]) -> None:
        log_event(
            logging.INFO,
            self.request_id,
            "Skipping Echo360 media",
            media_id=media_id,
            error_code=code,
            reason=reason,
            media_type=extract_media_type_raw(media),
        )
        self.report.skipped.append(MediaSkip(media_id=media_id, code=code, reason=reason))

    def handle_media(self, media: Dict[str, Any], lesson: LessonContext) -> Tuple[bool, bool]:
        """Returns ``(added, has_media_id)``."""
        media_id = extract_media_id(media)
        if media_id is None:
            return False, False

        type_info = get_media_type_info(media)
        if not type_info.is_supported:
            self._skip(media_id, UNSUPPORTED_MEDIA_TYPE, "Media is not video or audio", media)
            return False, True

        status_skip = get_media_status_skip_reason(media)
        if status_skip is not None:
            self._skip(media_id, status_skip[0], status_skip[1], media)
            return False, True

        lesson_id = lesson.lesson_id or extract_lesson_id(media)
        if lesson_id is None:
            log_event(logging.WARNING, self.request_id, "Media entry missing lessonId", media_id=media_id)
            return False, True

        key = get_unique_key(media_id, lesson_id)
        if key in self.seen:
            return False, True
        self.seen.add(key)

        is_audio = type_info.is_audio_only or type_info.is_audio_type
        self.report.videos.append(_build_video_entry(media_id, lesson_id, self.base_url, lesson, media, is_audio))
        return True, True

    def add_lesson_fallback(self, lesson: LessonContext) -> None:
        if lesson.lesson_id is None or lesson.is_folder_lesson:
            return
        key = get_unique_key(None, lesson.lesson_id)
        if key in self.seen:
            return
        self.seen.add(key)
        self.report.videos.append(
            DetectedVideo(
                id=lesson.lesson_id,
                provider=VideoProvider.ECHO360,
                title=lesson.lesson_name or "Echo360 lesson",
                embed_url=build_lesson_page_url(self.base_url, lesson.lesson_id),
                recorded_at=lesson.timing_start,
                echo_lesson_id=lesson.lesson_id,
                echo_base_url=self.base_url,
            )
        )

    def handle_entry(self, entry: Any) -> None:
        if not isinstance(entry, dict):
            return
        lesson = extract_lesson_context(entry)
        wrapper = lesson.lesson_wrapper or {}
        record = lesson.lesson_record or {}
        media_records = _collect_media_records(
            entry.get("medias"),
            entry.get("media"),
            wrapper.get("medias"),
            wrapper.get("media"),
            record.get("medias"),
            record.get("media"),
        )

        any_added = False
        any_media_id = False
        for media in media_records:
            added, has_media_id = self.handle_media(media, lesson)
            any_added = any_added or added
            any_media_id = any_media_id or has_media_id

        if not any_added and not any_media_id:
            self.add_lesson_fallback(lesson)


def parse_syllabus_report(response: Any, base_url: str, request_id: str) -> SyllabusParseReport:
    """Parse a syllabus payload, keeping the skipped-media diagnostics."""
    parser = _SyllabusParser(base_url, request_id)

    if not validate_syllabus_response(response):
        log_event(
            logging.WARNING,
            request_id,
            "Invalid syllabus response",
            response_type=type(response).__name__,
            response_keys=sorted(response.keys()) if isinstance(response, dict) else None,
        )
        return parser.report

    status = response.get("status")
    if isinstance(status, str) and status != "ok":
        log_event(logging.WARNING, request_id, "Syllabus response status not ok", status=status)

    entries = _syllabus_entries(response) or []
    if not entries:
        log_event(logging.WARNING, request_id, "Syllabus response has no entries")
        return parser.report

    # Entries may share media across lessons; the first occurrence wins
    for entry in entries:
        parser.handle_entry(entry)
    parser.report.entries_processed = len(entries)

    log_event(
        logging.INFO,
        request_id,
        "Parsed syllabus videos",
        count=len(parser.report.videos),
        entries_processed=len(entries),
        skipped=len(parser.report.skipped),
    )
    return parser.report


def parse_syllabus_response(response: Any, base_url: str, request_id: str) -> List[DetectedVideo]:
    return parse_syllabus_report(response, base_url, request_id).videos


# --- Cache and fetch ---

class SyllabusCache:
    """In-memory ``(base_url, section_id) -> videos`` cache with lazy expiry."""

    def __init__(self, ttl_seconds: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = config.SYLLABUS_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self.clock = clock
        self._entries: Dict[str, Tuple[float, List[DetectedVideo]]] = {}

    @staticmethod
    def key(base_url: str, section_id: str) -> str:
        return f"{base_url}|{section_id}"

    def get(self, base_url: str, section_id: str) -> Optional[List[DetectedVideo]]:
        cache_key = self.key(base_url, section_id)
        entry = self._entries.get(cache_key)
        if entry is None:
            return None
        stored_at, videos = entry
        if self.clock() - stored_at < self.ttl_seconds:
            return list(videos)
        del self._entries[cache_key]
        return None

    def set(self, base_url: str, section_id: str, videos: List[DetectedVideo]) -> None:
        self._entries[self.key(base_url, section_id)] = (self.clock(), list(videos))

    def invalidate(self, base_url: str, section_id: str) -> None:
        self._entries.pop(self.key(base_url, section_id), None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class SyllabusFetcher:
    def __init__(self, cache: Optional[SyllabusCache] = None, **retry_options: Any):
        self.cache = cache if cache is not None else SyllabusCache(config.get_settings().syllabus_cache_ttl_seconds)
        self.retry_options = retry_options

    async def fetch_videos_from_syllabus(self, page_url: str, fetcher: Any, request_id: str) -> List[DetectedVideo]:
        """Videos listed on the section syllabus for ``page_url`` ([] when not a section page)."""
        section_id = extract_section_id(page_url)
        if section_id is None:
            log_event(logging.INFO, request_id, "Not a section page, skipping syllabus fetch")
            return []

        base_url = origin_of(page_url)
        if base_url is None:
            log_event(logging.WARNING, request_id, "Invalid page URL for syllabus fetch", page_url=page_url)
            return []

        cached = self.cache.get(base_url, section_id)
        if cached is not None:
            log_event(logging.DEBUG, request_id, "Syllabus cache hit", section_id=section_id, base_url=base_url)
            return cached

        syllabus_url = build_syllabus_url(base_url, section_id)
        try:
            log_event(logging.INFO, request_id, "Fetching syllabus API", syllabus_url=syllabus_url)
            payload = await fetch_json_with_retry(fetcher, syllabus_url, request_id, "syllabus", **self.retry_options)
            videos = parse_syllabus_response(payload, base_url, request_id)
            if validate_syllabus_response(payload):
                self.cache.set(base_url, section_id, videos)
            return videos
        except Exception as e:
            log_event(logging.WARNING, request_id, "Failed to fetch syllabus", error=str(e))
            self.cache.invalidate(base_url, section_id)
            return []
