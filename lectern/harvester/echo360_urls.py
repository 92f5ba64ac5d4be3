# lectern/harvester/echo360_urls.py

"""
Echo360 hosts, identifiers and endpoint URLs.

Lesson ids are opaque (``G_<uuid>_<uuid>_<ts>_<ts>`` is common) and are kept
verbatim apart from URL decoding. Media and section ids are UUIDs and are
lowercased.
"""

import re
from typing import Dict, Optional
from urllib.parse import parse_qsl, quote, unquote, urlparse

ECHO360_DOMAIN_SUFFIXES = (
    "echo360.org",
    "echo360.org.au",
    "echo360.net.au",
    "echo360.ca",
    "echo360.org.uk",
    "echo360qa.org",
    "echo360qa.dev",
)

UUID_PATTERN = r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}"
UUID_REGEX = re.compile(rf"^{UUID_PATTERN}$", re.IGNORECASE)

_SECTION_UUID_PATH = re.compile(rf"/section/({UUID_PATTERN})", re.IGNORECASE)
_LESSON_PATH = re.compile(r"/lessons?/([^/]+)", re.IGNORECASE)
_MEDIA_PATH = re.compile(rf"/medias?/({UUID_PATTERN})", re.IGNORECASE)

ECHO360_API_LESSONS = "/api/ui/echoplayer/lessons"


def is_echo360_domain(hostname: str) -> bool:
    normalized = (hostname or "").lower()
    return any(normalized == suffix or normalized.endswith(f".{suffix}") for suffix in ECHO360_DOMAIN_SUFFIXES)


def _parse(url: str):
    parsed = urlparse(url or "")
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return None
    return parsed


def origin_of(url: str) -> Optional[str]:
    parsed = _parse(url)
    if parsed is None:
        return None
    return f"{parsed.scheme}://{parsed.netloc}"


def is_echo360_url(url: str) -> bool:
    parsed = _parse(url)
    if parsed is None:
        return "echo360" in (url or "").lower()
    return is_echo360_domain(parsed.hostname)


def extract_section_id(url: str) -> Optional[str]:
    """Section UUID from ``/section/<uuid>``, lowercased."""
    parsed = _parse(url)
    if parsed is None:
        return None
    match = _SECTION_UUID_PATH.search(parsed.path)
    return match.group(1).lower() if match else None


def is_echo360_section_page(url: str) -> bool:
    """A course/section listing rather than a single lesson view."""
    if not is_echo360_url(url) or not extract_section_id(url):
        return False
    parsed = _parse(url)
    if parsed is None:
        return False
    return not re.search(r"/lessons?/[^/]+", parsed.path.lower())


def _query(parsed) -> Dict[str, str]:
    params: Dict[str, str] = {}
    for key, value in parse_qsl(parsed.query, keep_blank_values=True):
        params.setdefault(key, value)
    return params


def extract_echo360_info(url: str) -> Optional[Dict[str, str]]:
    """``{"baseUrl", "lessonId"?, "mediaId"?}`` for an Echo360 URL.

    LTI launch URLs that carry the Echo360 URL in a query parameter are
    unwrapped first.
    """
    decoded = unquote(url or "")
    outer = _parse(decoded)
    if outer is None:
        return None

    for value in _query(outer).values():
        inner_url = unquote(value)
        if "echo360" in inner_url:
            inner = extract_echo360_info(inner_url)
            if inner and (inner.get("lessonId") or inner.get("mediaId")):
                return inner

    if not is_echo360_domain(outer.hostname):
        return None

    info = {"baseUrl": f"{outer.scheme}://{outer.netloc}"}
    params = _query(outer)

    lesson_match = _LESSON_PATH.search(outer.path)
    lesson_id = unquote(lesson_match.group(1)) if lesson_match else None
    lesson_id = lesson_id or params.get("lessonId") or params.get("lesson_id")

    media_match = _MEDIA_PATH.search(outer.path)
    media_id = media_match.group(1).lower() if media_match else None
    if not media_id:
        param_media = params.get("mediaId") or params.get("media_id")
        media_id = param_media.lower() if param_media else None

    if lesson_id:
        info["lessonId"] = lesson_id
    if media_id:
        info["mediaId"] = media_id
    return info


# --- Endpoint builders ---

def build_syllabus_url(base_url: str, section_id: str) -> str:
    return f"{base_url}/section/{quote(section_id, safe='')}/syllabus"


def build_lesson_page_url(base_url: str, lesson_id: str) -> str:
    return f"{base_url}/lesson/{quote(lesson_id, safe='')}/classroom"


def build_lesson_info_url(base_url: str, lesson_id: str) -> str:
    return f"{base_url}{ECHO360_API_LESSONS}/{quote(lesson_id, safe='')}"


def build_transcript_url(base_url: str, lesson_id: str, media_id: str) -> str:
    return (
        f"{base_url}{ECHO360_API_LESSONS}/{quote(lesson_id, safe='')}"
        f"/medias/{quote(media_id, safe='')}/transcript"
    )


def build_transcript_file_url(base_url: str, lesson_id: str, media_id: str, file_format: str = "vtt") -> str:
    return (
        f"{base_url}{ECHO360_API_LESSONS}/{quote(lesson_id, safe='')}"
        f"/medias/{quote(media_id, safe='')}/transcript-file?format={file_format}"
    )
