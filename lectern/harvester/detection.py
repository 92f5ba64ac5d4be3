# lectern/harvester/detection.py

"""
Unified synchronous detection: no network access, first provider with a
result wins (Panopto, then Echo360, then HTML5).
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional
from urllib.parse import parse_qsl, unquote, urlparse

from lectern.harvester.echo360_urls import is_echo360_domain
from lectern.harvester.html5_detection import detect_html5_videos
from lectern.harvester.panopto import (
    PANOPTO_URL_PATTERNS,
    build_panopto_embed_url,
    extract_panopto_info,
    is_panopto_url,
)
from lectern.shared.models import (
    DetectedVideo,
    DetectionContext,
    Echo360Context,
    IframeInfo,
    VideoProvider,
)

__all__ = [
    "PANOPTO_URL_PATTERNS",
    "VideoDetectionResult",
    "detect_panopto_videos_from_iframes",
    "detect_videos_sync",
    "extract_echo360_context",
    "extract_panopto_info",
    "get_echo360_page_type",
    "is_panopto_url",
]

_SECTION_SEGMENT = re.compile(r"/section/([^/]+)", re.IGNORECASE)
_LESSON_SEGMENT = re.compile(r"/lesson/([^/]+)", re.IGNORECASE)
_HASH_LESSON = re.compile(r"lesson[=/]([^&/#]+)", re.IGNORECASE)


@dataclass
class VideoDetectionResult:
    videos: List[DetectedVideo] = field(default_factory=list)
    provider: Optional[VideoProvider] = None
    requires_api_call: bool = False
    echo360_context: Optional[Echo360Context] = None


def _first_param(params: dict, *names: str) -> Optional[str]:
    for name in names:
        if params.get(name):
            return params[name]
    return None


def extract_echo360_context(url: str) -> Optional[Echo360Context]:
    """Section, lesson and media identifiers derivable from an Echo360 URL alone."""
    parsed = urlparse(url or "")
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return None
    if not is_echo360_domain(parsed.hostname):
        return None

    params: dict = {}
    for key, value in parse_qsl(parsed.query):
        params.setdefault(key, value)

    section_match = _SECTION_SEGMENT.search(parsed.path)
    section_id = unquote(section_match.group(1)) if section_match else None
    lesson_match = _LESSON_SEGMENT.search(parsed.path)
    lesson_id = unquote(lesson_match.group(1)) if lesson_match else None

    media_id = _first_param(params, "mediaId", "media", "mid")
    lesson_id = lesson_id or _first_param(params, "lessonId", "lesson", "lid")
    if not lesson_id and not section_id and parsed.fragment:
        hash_match = _HASH_LESSON.search(parsed.fragment)
        if hash_match:
            lesson_id = unquote(hash_match.group(1))
    section_id = section_id or _first_param(params, "sectionId", "section", "sid")

    return Echo360Context(
        echo_origin=f"{parsed.scheme}://{parsed.netloc}",
        section_id=section_id,
        lesson_id=lesson_id,
        media_id=media_id,
    )


def get_echo360_page_type(context: Optional[Echo360Context]) -> str:
    if context is None:
        return "unknown"
    if context.lesson_id:
        return "lesson"
    if context.section_id:
        return "section"
    return "unknown"


def detect_panopto_videos_from_iframes(
    iframes: List[IframeInfo], page_url: Optional[str] = None
) -> List[DetectedVideo]:
    videos: List[DetectedVideo] = []
    seen: set = set()

    def add(url: str, title: Optional[str]) -> None:
        info = extract_panopto_info(url)
        if info is None or info.delivery_id in seen:
            return
        seen.add(info.delivery_id)
        videos.append(
            DetectedVideo(
                id=info.delivery_id,
                provider=VideoProvider.PANOPTO,
                title=title or f"Panopto video {len(videos) + 1}",
                embed_url=build_panopto_embed_url(info.tenant, info.delivery_id),
                panopto_tenant=info.tenant,
            )
        )

    if page_url:
        add(page_url, None)
    for iframe in iframes:
        if iframe.src:
            add(iframe.src, iframe.title)
    return videos


def _echo360_lesson_video(context: DetectionContext, echo: Echo360Context) -> DetectedVideo:
    document = context.document
    title = document.title.get_text(strip=True) if document is not None and document.title else ""
    return DetectedVideo(
        id=echo.lesson_id,
        provider=VideoProvider.ECHO360,
        title=title or "Echo360 lesson",
        embed_url=context.page_url,
        echo_lesson_id=echo.lesson_id,
        echo_media_id=echo.media_id,
        echo_base_url=echo.echo_origin,
    )


def detect_videos_sync(context: DetectionContext) -> VideoDetectionResult:
    panopto_videos = detect_panopto_videos_from_iframes(context.iframes, context.page_url)
    if panopto_videos:
        logging.info(f"   Detected {len(panopto_videos)} Panopto video(s) on {context.page_url}")
        return VideoDetectionResult(videos=panopto_videos, provider=VideoProvider.PANOPTO)

    echo_context = extract_echo360_context(context.page_url)
    page_type = get_echo360_page_type(echo_context)
    if page_type == "lesson":
        return VideoDetectionResult(
            videos=[_echo360_lesson_video(context, echo_context)],
            provider=VideoProvider.ECHO360,
            echo360_context=echo_context,
        )
    if page_type == "section":
        logging.info(f"   Echo360 section page, syllabus lookup required: {context.page_url}")
        return VideoDetectionResult(
            provider=VideoProvider.ECHO360,
            requires_api_call=True,
            echo360_context=echo_context,
        )

    html5_videos = detect_html5_videos(context)
    if html5_videos:
        logging.info(f"   Detected {len(html5_videos)} HTML5 video(s) on {context.page_url}")
        return VideoDetectionResult(videos=html5_videos, provider=VideoProvider.HTML5)

    logging.info(f"   No videos detected on {context.page_url}")
    return VideoDetectionResult()
