# lectern/harvester/echo360.py

"""
Echo360 provider: detection on lesson and section pages, identifier
resolution and the transcript fallback chain.

Every Echo360 operation runs under a request id so the log lines of one
detection or extraction can be followed across retries.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from lectern.harvester.echo360_urls import (
    UUID_PATTERN,
    build_lesson_info_url,
    build_lesson_page_url,
    build_transcript_file_url,
    build_transcript_url,
    extract_echo360_info,
    extract_section_id,
    is_echo360_section_page,
    is_echo360_url,
    origin_of,
)
from lectern.harvester.syllabus import SyllabusFetcher, get_unique_key
from lectern.refinery.transcript import build_plain_text_result, normalize_echo360_transcript_json
from lectern.refinery.webvtt import parse_webvtt
from lectern.shared.errors import ErrorCode, is_auth_error, is_timeout_error
from lectern.shared.models import (
    DetectedVideo,
    DetectionContext,
    TranscriptExtractionResult,
    VideoProvider,
)
from lectern.shared.network import fetch_html_with_redirect, fetch_json_with_retry, fetch_text_with_retry
from lectern.shared.observability import hash_string, log_event, new_request_id

EMPTY_DETECTION_HINT = "Echo360 tip: open a lesson page or the syllabus list to load videos."

MEDIA_ID_JSON_PATTERNS = (
    re.compile(r'"mediaId"\s*:\s*"([0-9a-f-]{36})"', re.IGNORECASE),
    re.compile(r'"media_id"\s*:\s*"([0-9a-f-]{36})"', re.IGNORECASE),
    re.compile(r'"mediaID"\s*:\s*"([0-9a-f-]{36})"', re.IGNORECASE),
    re.compile(r'"media"\s*:\s*\{\s*"id"\s*:\s*"([0-9a-f-]{36})"', re.IGNORECASE),
    re.compile(r"mediaId\s*=\s*[\"']([0-9a-f-]{36})[\"']", re.IGNORECASE),
    re.compile(r"media_id\s*=\s*[\"']([0-9a-f-]{36})[\"']", re.IGNORECASE),
    re.compile(r"mediaID\s*=\s*[\"']([0-9a-f-]{36})[\"']", re.IGNORECASE),
)
MEDIA_ID_URL_PATTERNS = (
    re.compile(rf"/medias?/({UUID_PATTERN})", re.IGNORECASE),
    re.compile(rf"/interactive-media/media/({UUID_PATTERN})", re.IGNORECASE),
    re.compile(rf"captions-({UUID_PATTERN})", re.IGNORECASE),
)
MEDIA_ID_DATA_ATTRIBUTE = re.compile(r"data-media-id\s*=\s*[\"']([0-9a-f-]{36})[\"']", re.IGNORECASE)

_NESTED_LESSON_KEYS = ("video", "media", "content", "sections")


# --- HTML / API parsing ---

def extract_media_id_from_html(html: str) -> Optional[str]:
    """Media UUID from classroom markup: JSON fields, then URLs, then data attributes."""
    for pattern in MEDIA_ID_JSON_PATTERNS + MEDIA_ID_URL_PATTERNS + (MEDIA_ID_DATA_ATTRIBUTE,):
        match = pattern.search(html or "")
        if match:
            return match.group(1).lower()
    return None


def _first_media_id(medias: Any, keys=("id", "mediaId")) -> Optional[str]:
    if not isinstance(medias, list) or not medias or not isinstance(medias[0], dict):
        return None
    for key in keys:
        value = medias[0].get(key)
        if isinstance(value, str):
            return value.lower()
    return None


def extract_media_id_from_lesson_info(payload: Any) -> Optional[str]:
    if not isinstance(payload, dict):
        return None

    media_id = _first_media_id(payload.get("medias"))
    if media_id:
        return media_id
    if isinstance(payload.get("data"), dict):
        return extract_media_id_from_lesson_info(payload["data"])
    if isinstance(payload.get("lesson"), dict):
        return extract_media_id_from_lesson_info(payload["lesson"])

    for key in _NESTED_LESSON_KEYS:
        nested = payload.get(key)
        if isinstance(nested, dict):
            media_id = _first_media_id(nested.get("medias"), keys=("id",))
            if media_id:
                return media_id
    return None


def parse_echo360_info_from_html(html: str, page_url: str) -> Optional[Dict[str, str]]:
    base_info = extract_echo360_info(page_url)
    media_id = extract_media_id_from_html(html)
    if base_info:
        return {**base_info, "mediaId": media_id} if media_id else base_info
    if media_id:
        origin = origin_of(page_url)
        return {"mediaId": media_id, "baseUrl": origin} if origin else None
    return None


async def resolve_echo360_info(embed_url: str, fetcher: Any, request_id: str) -> Optional[Dict[str, str]]:
    """Resolve ``lessonId`` and ``mediaId`` for an Echo360 URL.

    Tries the URL itself, then the lesson classroom page, then the lesson
    info API, then the embed URL's own HTML. Falls back to whatever the URL
    alone yielded.
    """
    log_event(logging.INFO, request_id, "Resolving Echo360 info", embed_url=embed_url)
    direct = extract_echo360_info(embed_url)
    if direct and direct.get("lessonId") and direct.get("mediaId"):
        log_event(logging.INFO, request_id, "Resolved from direct URL")
        return direct

    if direct and direct.get("lessonId") and direct.get("baseUrl"):
        lesson_id, base_url = direct["lessonId"], direct["baseUrl"]
        try:
            classroom_url = build_lesson_page_url(base_url, lesson_id)
            html, final_url = await fetch_html_with_redirect(fetcher, classroom_url)
            html_info = parse_echo360_info_from_html(html, final_url)
            if html_info and html_info.get("mediaId"):
                log_event(logging.INFO, request_id, "Resolved mediaId from classroom HTML", media_id=html_info["mediaId"])
                return {"lessonId": lesson_id, "mediaId": html_info["mediaId"], "baseUrl": base_url}
            log_event(logging.WARNING, request_id, "No mediaId found in classroom HTML")
        except Exception as e:
            log_event(logging.WARNING, request_id, "Classroom fetch failed", error=str(e))

        try:
            lesson_data = await fetcher.fetch_json(build_lesson_info_url(base_url, lesson_id))
            media_id = extract_media_id_from_lesson_info(lesson_data)
            if media_id:
                log_event(logging.INFO, request_id, "Resolved mediaId from lesson API", media_id=media_id)
                return {"lessonId": lesson_id, "mediaId": media_id, "baseUrl": base_url}
            log_event(logging.WARNING, request_id, "No mediaId found in lesson API response")
        except Exception as e:
            log_event(logging.WARNING, request_id, "Lesson info API fetch failed", error=str(e))

    try:
        html, final_url = await fetch_html_with_redirect(fetcher, embed_url)
        url_info = extract_echo360_info(final_url) or {}
        html_info = parse_echo360_info_from_html(html, final_url) or {}
        direct_info = direct or {}
        lesson_id = url_info.get("lessonId") or html_info.get("lessonId") or direct_info.get("lessonId")
        media_id = url_info.get("mediaId") or html_info.get("mediaId")
        base_url = url_info.get("baseUrl") or html_info.get("baseUrl") or direct_info.get("baseUrl")
        if lesson_id and media_id and base_url:
            log_event(logging.INFO, request_id, "Resolved from embed URL fetch", lesson_id=lesson_id, media_id=media_id)
            return {"lessonId": lesson_id, "mediaId": media_id, "baseUrl": base_url}
    except Exception as e:
        log_event(logging.WARNING, request_id, "Embed URL fetch failed", error=str(e))

    log_event(logging.WARNING, request_id, "Could not resolve complete Echo360 info")
    return direct


# --- Detection ---

def _document_title(document: Any) -> str:
    if document is None or getattr(document, "title", None) is None:
        return ""
    return document.title.get_text(strip=True)


def detect_echo360_videos(context: DetectionContext) -> List[DetectedVideo]:
    """Echo360 videos identifiable from the page URL and iframe URLs alone."""
    videos: List[DetectedVideo] = []
    seen: set = set()

    def add(url: str, title: str) -> None:
        info = extract_echo360_info(url)
        if not info or not (info.get("lessonId") or info.get("mediaId")):
            return
        video_id = info.get("mediaId") or info.get("lessonId") or f"echo_{hash_string(url)}"
        if video_id in seen:
            return
        seen.add(video_id)
        videos.append(
            DetectedVideo(
                id=video_id,
                provider=VideoProvider.ECHO360,
                title=title or f"Echo360 video {len(videos) + 1}",
                embed_url=url,
                echo_lesson_id=info.get("lessonId"),
                echo_media_id=info.get("mediaId"),
                echo_base_url=info.get("baseUrl"),
            )
        )

    if is_echo360_url(context.page_url):
        add(context.page_url, _document_title(context.document))
    for iframe in context.iframes:
        if iframe.src and is_echo360_url(iframe.src):
            add(iframe.src, iframe.title or "")
    return videos


def merge_syllabus_metadata(sync_video: DetectedVideo, syllabus_video: DetectedVideo) -> DetectedVideo:
    updates: Dict[str, Any] = {
        "id": syllabus_video.id or sync_video.id,
        "title": syllabus_video.title or sync_video.title,
    }
    for field_name in ("echo_lesson_id", "echo_media_id", "echo_base_url"):
        value = getattr(syllabus_video, field_name)
        if value:
            updates[field_name] = value
    return sync_video.model_copy(update=updates)


def find_matching_syllabus_video(
    sync_video: DetectedVideo, syllabus_videos: List[DetectedVideo], request_id: str
) -> Optional[DetectedVideo]:
    """Match by media id, then lesson id, then either id appearing in the embed URL."""
    if not syllabus_videos:
        return None
    info = extract_echo360_info(sync_video.embed_url) or {}
    media_id = sync_video.echo_media_id or info.get("mediaId")
    lesson_id = sync_video.echo_lesson_id or info.get("lessonId")

    if media_id:
        for video in syllabus_videos:
            if video.echo_media_id == media_id or video.id == media_id:
                return video
    if lesson_id:
        for video in syllabus_videos:
            if video.echo_lesson_id == lesson_id or video.id == lesson_id:
                return video

    lowered = sync_video.embed_url.lower()
    for video in syllabus_videos:
        if (video.echo_media_id and video.echo_media_id.lower() in lowered) or (
            video.echo_lesson_id and video.echo_lesson_id.lower() in lowered
        ):
            return video

    log_event(logging.DEBUG, request_id, "No syllabus match for video", sync_video_id=sync_video.id)
    return None


async def _enhance_with_media_ids(videos: List[DetectedVideo], fetcher: Any, request_id: str) -> List[DetectedVideo]:
    enhanced: List[DetectedVideo] = []
    seen_keys: set = set()
    for video in videos:
        updated = video
        if not video.echo_media_id:
            resolved = await resolve_echo360_info(video.embed_url, fetcher, request_id)
            if resolved and resolved.get("mediaId"):
                updates = {"echo_media_id": resolved["mediaId"]}
                if resolved.get("lessonId"):
                    updates["echo_lesson_id"] = resolved["lessonId"]
                if resolved.get("baseUrl"):
                    updates["echo_base_url"] = resolved["baseUrl"]
                updated = video.model_copy(update=updates)

        key = get_unique_key(updated.echo_media_id, updated.echo_lesson_id) or updated.id
        if key in seen_keys:
            continue
        seen_keys.add(key)
        enhanced.append(updated)
    return enhanced


# --- Transcript extraction ---

@dataclass
class _AttemptState:
    had_timeout: bool = False
    invalid_responses: int = 0
    non_empty_responses: int = 0

    def mark_invalid(self) -> None:
        self.non_empty_responses += 1
        self.invalid_responses += 1


def _failure(message: str, code: str) -> TranscriptExtractionResult:
    return TranscriptExtractionResult.failure(message, code, True)


AUTH_REQUIRED_MESSAGE = "Authentication required. Please log in to Echo360."
TIMEOUT_MESSAGE = "Request timeout. The server took too long to respond."


class Echo360Provider:
    provider = VideoProvider.ECHO360

    def __init__(self, syllabus: Optional[SyllabusFetcher] = None, **retry_options: Any):
        self.syllabus = syllabus or SyllabusFetcher(**retry_options)
        self.retry_options = retry_options

    def can_handle(self, url: str) -> bool:
        return is_echo360_url(url)

    def requires_async_detection(self, context: DetectionContext) -> bool:
        # Lesson pages still need media ids resolved over the network
        return True

    def detect_videos_sync(self, context: DetectionContext) -> List[DetectedVideo]:
        return detect_echo360_videos(context)

    def get_empty_detection_hint(self, context: DetectionContext) -> Optional[str]:
        return EMPTY_DETECTION_HINT if is_echo360_url(context.page_url) else None

    async def detect_videos_async(self, context: DetectionContext, fetcher: Any) -> List[DetectedVideo]:
        request_id = new_request_id()
        log_event(logging.INFO, request_id, "Starting async detection", page_url=context.page_url)

        syllabus_videos: List[DetectedVideo] = []
        if extract_section_id(context.page_url):
            syllabus_videos = await self.syllabus.fetch_videos_from_syllabus(context.page_url, fetcher, request_id)

        if is_echo360_section_page(context.page_url):
            if syllabus_videos:
                log_event(logging.INFO, request_id, "Syllabus detection complete", count=len(syllabus_videos))
                return syllabus_videos
            log_event(logging.INFO, request_id, "No videos from syllabus, falling back to page detection")

        sync_videos = detect_echo360_videos(context)
        if not sync_videos:
            log_event(logging.INFO, request_id, "No videos found in page detection")
            return []

        merged = []
        for video in sync_videos:
            match = find_matching_syllabus_video(video, syllabus_videos, request_id)
            merged.append(merge_syllabus_metadata(video, match) if match else video)

        videos = await _enhance_with_media_ids(merged, fetcher, request_id)
        log_event(
            logging.INFO,
            request_id,
            "Async detection complete",
            count=len(videos),
            with_media_id=sum(1 for video in videos if video.echo_media_id),
        )
        return videos

    async def extract_transcript(self, video: DetectedVideo, fetcher: Any) -> TranscriptExtractionResult:
        request_id = new_request_id()
        log_event(
            logging.INFO,
            request_id,
            "Starting transcript extraction",
            video_id=video.id,
            lesson_id=video.echo_lesson_id,
            media_id=video.echo_media_id,
        )
        try:
            lesson_id, media_id, base_url = await self._resolve_identifiers(video, fetcher, request_id)
            if not (lesson_id and media_id and base_url):
                log_event(logging.WARNING, request_id, "Missing required IDs", lesson_id=lesson_id, media_id=media_id)
                return _failure("Could not resolve Echo360 video identifiers.", ErrorCode.INVALID_VIDEO)
            return await self._attempt_extraction(fetcher, request_id, lesson_id, media_id, base_url)
        except Exception as e:
            log_event(logging.ERROR, request_id, "Extraction failed", error=str(e))
            if is_auth_error(e):
                return _failure(AUTH_REQUIRED_MESSAGE, ErrorCode.AUTH_REQUIRED)
            if is_timeout_error(e):
                return _failure(TIMEOUT_MESSAGE, ErrorCode.TIMEOUT)
            return _failure(f"Failed to extract transcript: {e}", ErrorCode.PARSE_ERROR)

    async def _resolve_identifiers(self, video: DetectedVideo, fetcher: Any, request_id: str):
        lesson_id = video.echo_lesson_id
        media_id = video.echo_media_id
        base_url = video.echo_base_url or origin_of(video.embed_url) or ""
        if not lesson_id or not media_id:
            log_event(logging.INFO, request_id, "Resolving missing IDs")
            resolved = await resolve_echo360_info(video.embed_url, fetcher, request_id) or {}
            lesson_id = lesson_id or resolved.get("lessonId")
            media_id = media_id or resolved.get("mediaId")
            base_url = base_url or resolved.get("baseUrl") or ""
        return lesson_id, media_id, base_url

    async def _attempt_extraction(
        self, fetcher: Any, request_id: str, lesson_id: str, media_id: str, base_url: str
    ) -> TranscriptExtractionResult:
        state = _AttemptState()

        json_url = build_transcript_url(base_url, lesson_id, media_id)
        log_event(logging.INFO, request_id, "Trying JSON endpoint", url=json_url)
        try:
            payload = await fetch_json_with_retry(fetcher, json_url, request_id, "transcript-json", **self.retry_options)
            transcript = normalize_echo360_transcript_json(payload)
            if transcript is not None and transcript.segments:
                log_event(logging.INFO, request_id, "JSON transcript extracted", segments=len(transcript.segments))
                return TranscriptExtractionResult.ok(transcript)
            if isinstance(payload, dict) and ("cues" in payload or "contentJson" in payload):
                state.mark_invalid()
                log_event(logging.WARNING, request_id, "JSON transcript response invalid", url=json_url)
        except Exception as e:
            log_event(logging.WARNING, request_id, "JSON endpoint failed", error=str(e))
            if is_auth_error(e):
                return _failure(AUTH_REQUIRED_MESSAGE, ErrorCode.AUTH_REQUIRED)
            state.had_timeout = state.had_timeout or is_timeout_error(e)

        for file_format, parse in (("vtt", parse_webvtt), ("text", build_plain_text_result)):
            url = build_transcript_file_url(base_url, lesson_id, media_id, file_format)
            log_event(logging.INFO, request_id, f"Trying {file_format} endpoint", url=url)
            try:
                content = await fetch_text_with_retry(
                    fetcher, url, request_id, f"transcript-{file_format}", **self.retry_options
                )
            except Exception as e:
                log_event(logging.WARNING, request_id, f"{file_format} endpoint failed", error=str(e))
                state.had_timeout = state.had_timeout or is_timeout_error(e)
                continue
            transcript = parse(content or "")
            if transcript is not None and transcript.segments:
                log_event(logging.INFO, request_id, f"{file_format} transcript extracted", segments=len(transcript.segments))
                return TranscriptExtractionResult.ok(transcript)
            if (content or "").strip():
                state.mark_invalid()
                log_event(logging.WARNING, request_id, f"{file_format} transcript response invalid", url=url)

        log_event(logging.WARNING, request_id, "No transcript available")
        if state.had_timeout:
            return _failure(TIMEOUT_MESSAGE, ErrorCode.TIMEOUT)
        if state.non_empty_responses > 0 and state.invalid_responses == state.non_empty_responses:
            return _failure("Transcript response was invalid or empty.", ErrorCode.INVALID_RESPONSE)
        return _failure("No captions available for this video.", ErrorCode.NO_CAPTIONS)
