# lectern/harvester/html5_detection.py

"""
Native ``<video>`` detection on a parsed page.

Works on the static markup, so layout-dependent signals are approximated:
visibility comes from ``hidden``/``aria-hidden``, closed ``<details>`` and
inline styles, and duration from ``data-duration``/``duration`` attributes.
"""

import logging
import math
import re
from typing import Any, List, Optional
from urllib.parse import unquote, urljoin, urlparse

from bs4 import BeautifulSoup, Tag

from lectern.shared.models import DetectedVideo, DetectionContext, TrackUrl, VideoProvider
from lectern.shared.observability import hash_string

MAX_TITLE_DEPTH = 4
MAX_SELECTOR_DEPTH = 4
CAPTION_TRACK_KINDS = ("captions", "subtitles")
HEADING_TAGS = ["h1", "h2", "h3", "h4", "h5", "h6"]
VIDEOJS_CONTAINER_CLASSES = ["video-js", "mediaplugin_videojs"]

_STYLE_HIDDEN = (
    re.compile(r"(?:^|;)\s*display\s*:\s*none\b", re.IGNORECASE),
    re.compile(r"(?:^|;)\s*visibility\s*:\s*hidden\b", re.IGNORECASE),
    re.compile(r"(?:^|;)\s*opacity\s*:\s*0(?:\.0*)?\s*(?:;|$|!)", re.IGNORECASE),
)
_FILE_EXTENSION = re.compile(r"\.[a-z0-9]+$", re.IGNORECASE)


def _element_parent(tag: Tag) -> Optional[Tag]:
    parent = tag.parent
    if parent is None or isinstance(parent, BeautifulSoup):
        return None
    return parent


def _resolve_url(candidate: Optional[str], base_url: str) -> Optional[str]:
    if not candidate:
        return None
    try:
        return urljoin(base_url, candidate.strip())
    except ValueError:
        return None


def document_base_url(document: Any, page_url: str) -> str:
    base = document.find("base", href=True) if document is not None else None
    if base is not None:
        resolved = _resolve_url(base.get("href"), page_url)
        if resolved:
            return resolved
    return page_url


# --- Visibility ---

def _hidden_by_style(tag: Tag) -> bool:
    style = tag.get("style") or ""
    return any(pattern.search(style) for pattern in _STYLE_HIDDEN)


def is_element_visible(element: Tag) -> bool:
    child: Optional[Tag] = None
    current: Optional[Tag] = element
    while current is not None:
        if current.has_attr("hidden") or current.get("aria-hidden") == "true":
            return False
        if _hidden_by_style(current):
            return False
        if current.name == "details" and child is not None and not current.has_attr("open"):
            if child.name != "summary":
                return False
        child = current
        current = _element_parent(current)
    return True


# --- Per-element extraction ---

def _element_label(tag: Optional[Tag]) -> Optional[str]:
    if tag is None:
        return None
    for attribute in ("data-title", "aria-label", "title"):
        value = tag.get(attribute)
        if value is not None:
            return value.strip() or None
    return None


def _container_title(video: Tag) -> Optional[str]:
    current = _element_parent(video)
    depth = 0
    while current is not None and depth < MAX_TITLE_DEPTH:
        label = _element_label(current)
        if label:
            return label
        for found in (current.find("figcaption"), current.find(HEADING_TAGS)):
            if found is not None:
                text = found.get_text().strip()
                if text:
                    return text
        current = _element_parent(current)
        depth += 1
    return None


def _filename_title(media_url: Optional[str]) -> Optional[str]:
    if not media_url:
        return None
    filename = urlparse(media_url).path.split("/")[-1]
    if not filename:
        return None
    title = _FILE_EXTENSION.sub("", unquote(filename)).strip()
    return title or None


def get_video_title(video: Tag, media_url: Optional[str], index: int) -> str:
    return (
        _element_label(video)
        or _container_title(video)
        or _filename_title(media_url)
        or f"HTML5 video {index + 1}"
    )


def get_media_url(video: Tag, base_url: str) -> Optional[str]:
    for attribute in ("currentsrc", "data-current-src", "src"):
        resolved = _resolve_url(video.get(attribute), base_url)
        if resolved:
            return resolved

    source = video.find("source", src=True)
    if source is not None:
        resolved = _resolve_url(source.get("src"), base_url)
        if resolved:
            return resolved

    # video.js / Moodle lazy players keep the <source> on the wrapper
    if video.has_attr("data-setup-lazy"):
        container = video.find_parent(class_=VIDEOJS_CONTAINER_CLASSES)
        lazy_source = container.find("source", src=True) if container is not None else None
        if lazy_source is not None:
            return _resolve_url(lazy_source.get("src"), base_url)
    return None


def get_track_urls(video: Tag, base_url: str) -> List[TrackUrl]:
    tracks: List[TrackUrl] = []
    for track in video.find_all("track", src=True):
        kind = (track.get("kind") or "subtitles").strip().lower()
        if kind not in CAPTION_TRACK_KINDS:
            continue
        src = _resolve_url(track.get("src"), base_url)
        if not src:
            continue
        tracks.append(
            TrackUrl(kind=kind, label=track.get("label") or None, srclang=track.get("srclang") or None, src=src)
        )
    return tracks


def get_video_duration_ms(video: Tag) -> Optional[int]:
    for attribute in ("data-duration", "duration"):
        raw = video.get(attribute)
        if raw is None:
            continue
        try:
            seconds = float(raw)
        except ValueError:
            continue
        if math.isfinite(seconds) and seconds > 0:
            return int(round(seconds * 1000))
    return None


def get_drm_reason(video: Tag) -> Optional[str]:
    if video.has_attr("data-drm") or video.has_attr("data-protected"):
        return "data-attribute"
    if video.get("data-lockin-encrypted") == "true":
        return "encrypted-event"
    for source in video.find_all("source"):
        source_type = source.get("type") or ""
        if "application/dash+xml" in source_type:
            return "dash-manifest"
        if "application/vnd.apple.mpegurl" in source_type:
            return "hls-manifest"
    return None


def build_dom_selector(element: Tag) -> Optional[str]:
    """``#id`` when available, otherwise a short ``tag:nth-of-type(n) > ...`` path."""
    if element.get("id"):
        return f"#{element['id']}"

    segments: List[str] = []
    current: Optional[Tag] = element
    depth = 0
    while current is not None and depth < MAX_SELECTOR_DEPTH:
        parent = _element_parent(current)
        if parent is None:
            segments.insert(0, current.name)
            break
        same_tag = parent.find_all(current.name, recursive=False)
        position = next(i for i, sibling in enumerate(same_tag) if sibling is current)
        suffix = f":nth-of-type({position + 1})" if len(same_tag) > 1 else ""
        segments.insert(0, f"{current.name}{suffix}")
        current = parent
        depth += 1
    return " > ".join(segments) if segments else None


def _build_video(video: Tag, index: int, base_url: str, page_url: str) -> DetectedVideo:
    media_url = get_media_url(video, base_url)
    dom_id = video.get("id") or None
    drm_reason = get_drm_reason(video)
    tracks = get_track_urls(video, base_url)
    id_source = f"{media_url}_{index}" if media_url else f"video_{index}"
    return DetectedVideo(
        id=dom_id or f"html5_{hash_string(id_source)}",
        provider=VideoProvider.HTML5,
        title=get_video_title(video, media_url, index),
        embed_url=media_url or page_url,
        media_url=media_url,
        dom_id=dom_id,
        dom_selector=build_dom_selector(video),
        duration_ms=get_video_duration_ms(video),
        track_urls=tracks or None,
        drm_detected=True if drm_reason else None,
        drm_reason=drm_reason,
    )


def detect_html5_videos(context: DetectionContext) -> List[DetectedVideo]:
    document = context.document
    if document is None:
        return []
    base_url = document_base_url(document, context.page_url)
    elements = [video for video in document.find_all("video") if is_element_visible(video)]
    logging.debug(f"   Found {len(elements)} visible <video> elements on {context.page_url}")
    return [_build_video(video, index, base_url, context.page_url) for index, video in enumerate(elements)]
