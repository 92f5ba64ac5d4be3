# lectern/harvester/panopto.py

"""
Panopto support: URL recognition, caption discovery in embed pages and the
Panopto transcript provider.

Panopto embed/viewer pages ship their player bootstrap data inline. Caption
and media URLs are scraped out of that markup with ordered pattern chains;
the first pattern that matches wins.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, quote, unquote, urljoin, urlparse

from lectern.refinery.webvtt import parse_webvtt
from lectern.shared.errors import ErrorCode, classify_exception, is_auth_error
from lectern.shared.models import (
    DetectedVideo,
    DetectionContext,
    PanoptoInfo,
    TranscriptExtractionResult,
    VideoProvider,
)
from lectern.shared.network import fetch_html_with_redirect

# Captures: [1] tenant host, [2] delivery id
PANOPTO_EMBED_REGEX = re.compile(
    r"https?://([^/]+\.panopto\.com)/Panopto/Pages/Embed\.aspx\?.*\bid=([a-f0-9-]+)", re.IGNORECASE
)
PANOPTO_VIEWER_REGEX = re.compile(
    r"https?://([^/]+\.panopto\.com)/Panopto/Pages/Viewer\.aspx\?.*\bid=([a-f0-9-]+)", re.IGNORECASE
)
PANOPTO_URL_PATTERNS = (PANOPTO_EMBED_REGEX, PANOPTO_VIEWER_REGEX)

# Moodle-style pages that redirect or link out to a Panopto session
LMS_REDIRECT_PATTERNS = (
    re.compile(r"mod/url/view\.php", re.IGNORECASE),
    re.compile(r"mod/lti/view\.php", re.IGNORECASE),
    re.compile(r"mod/page/view\.php", re.IGNORECASE),
)

_PERMISSIVE_ID = re.compile(r"^[a-f0-9-]+$", re.IGNORECASE)

# Priority order matters: first match wins
CAPTION_URL_PATTERNS = (
    re.compile(r'"CaptionUrl"\s*:\s*\[\s*"([^"]+)"', re.IGNORECASE),
    re.compile(r'"CaptionUrl"\s*:\s*"([^"]+)"', re.IGNORECASE),
    re.compile(r'"Captions"\s*:\s*\[\s*\{[^}]*"Url"\s*:\s*"([^"]+)"', re.IGNORECASE),
    re.compile(r'"Captions"\s*:\s*\[\s*\{[^}]*"VttUrl"\s*:\s*"([^"]+)"', re.IGNORECASE),
    re.compile(r'"Captions"\s*:\s*\[\s*\{[^}]*"CaptionUrl"\s*:\s*"([^"]+)"', re.IGNORECASE),
    re.compile(r"((?:https?:)?//[^\"'\s]+GetCaptionVTT\.ashx\?[^\"'\s]+)", re.IGNORECASE),
    re.compile(r"((?:/)?Panopto/Pages/Transcription/GetCaptionVTT\.ashx\?[^\"'\s]+)", re.IGNORECASE),
    re.compile(r'"TranscriptUrl"\s*:\s*"([^"]+)"', re.IGNORECASE),
)

MEDIA_URL_PATTERNS = (
    re.compile(r'"PodcastUrl"\s*:\s*"([^"]+)"', re.IGNORECASE),
    re.compile(r'"StreamUrl"\s*:\s*"([^"]+)"', re.IGNORECASE),
    re.compile(r'"IosStreamUrl"\s*:\s*"([^"]+)"', re.IGNORECASE),
    re.compile(r'"Streams"\s*:\s*\[\s*\{[^}]*"Url"\s*:\s*"([^"]+)"', re.IGNORECASE),
    re.compile(r'"DeliveryInfo"[^}]*"StreamUrl"\s*:\s*"([^"]+)"', re.IGNORECASE),
    re.compile(r'"(?:Url|url|URL)"\s*:\s*"(https?://[^"]*(?:mp4|stream|podcast|delivery|video)[^"]*)"', re.IGNORECASE),
    re.compile(r'"(?:Url|url|URL)"\s*:\s*"(https?://[^"]*panopto[^"]*/(?:Podcast|Stream|Delivery)[^"]*)"', re.IGNORECASE),
)
_ANY_VIDEO_URL = re.compile(r"https?://[^\"'\s]+(?:\.mp4|\.m3u8|/stream/|/podcast/)", re.IGNORECASE)

_HTML_URL = re.compile(r"(?:https?:)?//[^\s\"'<>]+", re.IGNORECASE)
_ESCAPED_HTML_URL = re.compile(r"https?:\\/\\/[^\s\"'<>]+", re.IGNORECASE)
_ENCODED_HTML_URL = re.compile(r"https?%3A%2F%2F[^\s\"'<>]+", re.IGNORECASE)
_BODY_PANOPTO_URL = re.compile(r"https?://[a-z0-9.-]+\.panopto\.com/[^\s<>\"']*", re.IGNORECASE)
_SCRIPT_REDIRECT = re.compile(
    r"(?:window\.)?location(?:\.href)?\s*=\s*['\"]([^'\"]*panopto[^'\"]*)['\"]", re.IGNORECASE
)
_META_REFRESH_URL = re.compile(r"url=(.+)", re.IGNORECASE)

_UNICODE_ESCAPE = re.compile(r"\\u([0-9a-fA-F]{4})")


# --- URL utilities ---

def is_panopto_url(url: str) -> bool:
    return any(pattern.search(url or "") for pattern in PANOPTO_URL_PATTERNS)


def is_lms_redirect_page(url: str) -> bool:
    return any(pattern.search(url or "") for pattern in LMS_REDIRECT_PATTERNS)


def is_panopto_domain(hostname: str) -> bool:
    return "panopto.com" in hostname or "panopto." in hostname


def extract_panopto_info(url: str) -> Optional[PanoptoInfo]:
    """Derive ``(tenant, delivery id)`` from an embed, viewer or id-bearing Panopto URL."""
    if not url:
        return None
    for pattern in PANOPTO_URL_PATTERNS:
        match = pattern.search(url)
        if match and match.group(1) and match.group(2):
            return PanoptoInfo(tenant=match.group(1), delivery_id=match.group(2))

    parsed = urlparse(url)
    hostname = parsed.hostname or ""
    if parsed.scheme in ("http", "https") and hostname and is_panopto_domain(hostname):
        ids = parse_qs(parsed.query).get("id")
        candidate = ids[0] if ids else ""
        if len(candidate) >= 8 and _PERMISSIVE_ID.match(candidate):
            return PanoptoInfo(tenant=hostname, delivery_id=candidate)

    decoded = unquote(url)
    if decoded != url:
        return extract_panopto_info(decoded)
    return None


def build_panopto_embed_url(tenant: str, delivery_id: str) -> str:
    return f"https://{tenant}/Panopto/Pages/Embed.aspx?id={quote(delivery_id, safe='')}"


def build_panopto_viewer_url(tenant: str, delivery_id: str) -> str:
    return f"https://{tenant}/Panopto/Pages/Viewer.aspx?id={quote(delivery_id, safe='')}"


def normalize_panopto_embed_url(url: str) -> Optional[str]:
    info = extract_panopto_info(url)
    return build_panopto_embed_url(info.tenant, info.delivery_id) if info else None


def decode_escaped_url(value: str) -> str:
    """Undo JSON and HTML escaping found in inline player bootstrap data."""
    result = _UNICODE_ESCAPE.sub(lambda m: chr(int(m.group(1), 16)), value)
    result = result.replace("\\/", "/").replace("\\\\", "\\").replace('\\"', '"')
    result = result.replace("&amp;", "&").replace("&quot;", '"')
    result = re.sub(r"&#x2F;", "/", result, flags=re.IGNORECASE)
    result = re.sub(r"&#x3D;", "=", result, flags=re.IGNORECASE)
    result = result.replace("&#39;", "'")
    return result.strip()


def _panopto_video(info: PanoptoInfo, title: str) -> DetectedVideo:
    return DetectedVideo(
        id=info.delivery_id,
        provider=VideoProvider.PANOPTO,
        title=title,
        embed_url=build_panopto_embed_url(info.tenant, info.delivery_id),
        panopto_tenant=info.tenant,
    )


# --- HTML scraping ---

def extract_caption_vtt_url(html: str) -> Optional[str]:
    """Return the first caption URL found in Panopto embed HTML, or None."""
    for index, pattern in enumerate(CAPTION_URL_PATTERNS, start=1):
        match = pattern.search(html or "")
        if match and match.group(1):
            url = decode_escaped_url(match.group(1))
            logging.info(f"   Panopto caption URL found with pattern {index}: {url[:100]}")
            return url
    logging.warning(f"   No Panopto caption URL found in embed HTML (length {len(html or '')})")
    return None


def _looks_like_media_url(url: str) -> bool:
    if not url or len(url) < 10:
        return False
    lower = url.lower()
    markers = (".mp4", ".m3u8", "stream", "podcast", "delivery", "/video/")
    return any(marker in lower for marker in markers) or (lower.startswith("http") and "panopto" in lower)


def extract_panopto_media_url(html: str) -> Optional[str]:
    """Find a playable stream/podcast URL for the AI transcription fallback."""
    for pattern in MEDIA_URL_PATTERNS:
        match = pattern.search(html or "")
        if match and match.group(1):
            url = decode_escaped_url(match.group(1))
            if _looks_like_media_url(url):
                return url
            logging.debug(f"      Media pattern matched but URL rejected: {url[:50]}")

    any_video = _ANY_VIDEO_URL.search(html or "")
    if any_video:
        return any_video.group(0)
    logging.warning("   No Panopto media URL found for AI transcription")
    return None


def _normalize_candidate_url(candidate: str, base_url: str) -> Optional[str]:
    decoded = decode_escaped_url(candidate)
    if not decoded or decoded.startswith("javascript:"):
        return None
    with_protocol = f"https:{decoded}" if decoded.startswith("//") else decoded
    return urljoin(base_url, with_protocol) if base_url else with_protocol


def extract_panopto_info_from_html(html: str, base_url: str) -> Optional[Tuple[PanoptoInfo, str]]:
    """Scan plain, JSON-escaped and percent-encoded URLs in HTML for a Panopto session."""
    candidates: Dict[str, None] = {}
    for pattern in (_HTML_URL, _ESCAPED_HTML_URL, _ENCODED_HTML_URL):
        for match in pattern.findall(html or ""):
            if "panopto" in match.lower():
                candidates.setdefault(match, None)

    for candidate in candidates:
        normalized = _normalize_candidate_url(candidate, base_url)
        if not normalized:
            continue
        info = extract_panopto_info(normalized)
        if info:
            return info, normalized
    return None


def resolve_caption_url(caption_url: str, base_url: str) -> str:
    decoded = decode_escaped_url(caption_url)
    if decoded.startswith("//"):
        decoded = f"https:{decoded}"
    return urljoin(base_url, decoded) if base_url else decoded


@dataclass(frozen=True)
class WrapperResolution:
    info: Optional[PanoptoInfo]
    auth_required: bool = False
    final_url: Optional[str] = None


async def resolve_panopto_info_from_wrapper_url(url: str, fetcher: Any) -> WrapperResolution:
    """Follow an LMS wrapper page to the Panopto session it points at."""
    try:
        html, final_url = await fetch_html_with_redirect(fetcher, url)
    except Exception as e:
        if is_auth_error(e):
            return WrapperResolution(info=None, auth_required=True)
        logging.warning(f"   Could not resolve Panopto wrapper {url}: {e}")
        return WrapperResolution(info=None)

    direct = extract_panopto_info(final_url)
    if direct:
        return WrapperResolution(info=direct, final_url=final_url)

    from_html = extract_panopto_info_from_html(html, final_url or url)
    if from_html:
        info, found_url = from_html
        return WrapperResolution(info=info, final_url=found_url)
    return WrapperResolution(info=None, final_url=final_url)


# --- Document-level link and redirect detection ---

def _anchor_title(anchor) -> str:
    for value in (
        anchor.get_text(strip=True),
        anchor.get("title"),
        anchor.get("aria-label"),
        anchor.get("data-title"),
    ):
        if value:
            return value.strip()
    return ""


def _resolve_link(candidate: Optional[str], base_url: str) -> Optional[str]:
    trimmed = (candidate or "").strip()
    if not trimmed or trimmed.startswith(("#", "javascript:", "mailto:")):
        return None
    return urljoin(base_url, trimmed)


def detect_panopto_from_links(document, base_url: str) -> List[DetectedVideo]:
    """Panopto sessions linked (not embedded) from anchors or onclick handlers."""
    videos: List[DetectedVideo] = []
    seen: set = set()

    def add(info: PanoptoInfo, title: str) -> None:
        if info.delivery_id in seen:
            return
        seen.add(info.delivery_id)
        videos.append(_panopto_video(info, title or f"Panopto video {len(videos) + 1}"))

    for anchor in document.find_all("a", href=True):
        href = _resolve_link(anchor.get("href"), base_url) or anchor.get("href")
        info = extract_panopto_info(href)
        if info is None:
            data_href = anchor.get("data-href") or anchor.get("data-url") or anchor.get("data-src")
            if data_href:
                info = extract_panopto_info(_resolve_link(data_href, base_url) or data_href)
        if info:
            add(info, _anchor_title(anchor))

    for element in document.find_all(onclick=re.compile("panopto", re.IGNORECASE)):
        info = extract_panopto_info(element.get("onclick") or "")
        if info:
            add(info, element.get_text(strip=True))

    return videos


def detect_panopto_from_redirect(document) -> List[DetectedVideo]:
    """Panopto sessions behind a meta refresh, a script redirect or a bare URL in the body."""
    urls: Dict[str, None] = {}
    meta = document.find("meta", attrs={"http-equiv": re.compile("^refresh$", re.IGNORECASE)})
    if meta is not None:
        match = _META_REFRESH_URL.search(meta.get("content") or "")
        if match and match.group(1):
            urls.setdefault(match.group(1).strip().strip("'\""), None)
    for script in document.find_all("script", src=False):
        match = _SCRIPT_REDIRECT.search(script.string or "")
        if match:
            urls.setdefault(match.group(1), None)
    body = document.body or document
    for url in _BODY_PANOPTO_URL.findall(body.get_text(" ")):
        urls.setdefault(url, None)

    page_title = document.title.get_text(strip=True) if document.title else ""
    videos: List[DetectedVideo] = []
    seen: set = set()
    for url in urls:
        info = extract_panopto_info(url)
        if info and info.delivery_id not in seen:
            seen.add(info.delivery_id)
            videos.append(_panopto_video(info, page_title or "Panopto video"))
    return videos


# --- Provider ---

class PanoptoProvider:
    provider = VideoProvider.PANOPTO

    def can_handle(self, url: str) -> bool:
        return is_panopto_url(url)

    def requires_async_detection(self, context: DetectionContext) -> bool:
        return False

    def detect_videos_sync(self, context: DetectionContext) -> List[DetectedVideo]:
        """Page URL first, then iframes, then links/redirects in the document."""
        seen: set = set()
        videos: List[DetectedVideo] = []

        def add(video: DetectedVideo) -> None:
            if video.id not in seen:
                seen.add(video.id)
                videos.append(video)

        page_info = extract_panopto_info(context.page_url)
        if page_info:
            add(_panopto_video(page_info, f"Panopto video {len(videos) + 1}"))

        for iframe in context.iframes:
            if not iframe.src:
                continue
            info = extract_panopto_info(iframe.src)
            if info and info.delivery_id not in seen:
                add(_panopto_video(info, iframe.title or f"Panopto video {len(videos) + 1}"))

        if context.document is not None:
            for video in detect_panopto_from_links(context.document, context.page_url):
                add(video)
            for video in detect_panopto_from_redirect(context.document):
                add(video)

        return videos

    def _candidate_urls(self, video: DetectedVideo) -> List[str]:
        candidates: List[str] = []
        if video.panopto_tenant and video.id:
            candidates.append(build_panopto_embed_url(video.panopto_tenant, video.id))
            candidates.append(build_panopto_viewer_url(video.panopto_tenant, video.id))
        info = extract_panopto_info(video.embed_url)
        if info:
            candidates.append(build_panopto_embed_url(info.tenant, info.delivery_id))
            candidates.append(build_panopto_viewer_url(info.tenant, info.delivery_id))
        candidates.append(video.embed_url)
        return list(dict.fromkeys(url for url in candidates if url))

    async def _extract_from_url(
        self, url: str, fetcher: Any, enqueue, fetched: List[str]
    ) -> Optional[TranscriptExtractionResult]:
        html, final_url = await fetch_html_with_redirect(fetcher, url)
        fetched.append(url)
        caption_url = extract_caption_vtt_url(html)

        if not caption_url:
            info = extract_panopto_info(final_url)
            from_html = extract_panopto_info_from_html(html, final_url or url)
            if from_html:
                enqueue(from_html[1])
                info = info or from_html[0]
            if info:
                enqueue(build_panopto_embed_url(info.tenant, info.delivery_id))
                enqueue(build_panopto_viewer_url(info.tenant, info.delivery_id))
            return None

        vtt_content = await fetcher.fetch_with_credentials(resolve_caption_url(caption_url, final_url))
        transcript = parse_webvtt(vtt_content)
        if not transcript.segments:
            return TranscriptExtractionResult.failure(
                "Caption file is empty or could not be parsed", ErrorCode.PARSE_ERROR, True
            )
        logging.info(f"   Panopto transcript extracted: {len(transcript.segments)} segments")
        return TranscriptExtractionResult.ok(transcript)

    async def extract_transcript(self, video: DetectedVideo, fetcher: Any) -> TranscriptExtractionResult:
        if not video.embed_url:
            return TranscriptExtractionResult.failure("No video URL provided", ErrorCode.INVALID_VIDEO, True)
        try:
            return await self._extract(video, fetcher)
        except Exception as e:
            return self._failure_for(e)

    async def _extract(self, video: DetectedVideo, fetcher: Any) -> TranscriptExtractionResult:
        pending = self._candidate_urls(video)
        visited: set = set()

        def enqueue(candidate: Optional[str]) -> None:
            if candidate and candidate not in visited and candidate not in pending:
                pending.append(candidate)

        if extract_panopto_info(video.embed_url) is None and is_lms_redirect_page(video.embed_url):
            resolution = await resolve_panopto_info_from_wrapper_url(video.embed_url, fetcher)
            if resolution.auth_required:
                return self._auth_required()
            if resolution.info:
                info = resolution.info
                pending.insert(0, build_panopto_viewer_url(info.tenant, info.delivery_id))
                pending.insert(0, build_panopto_embed_url(info.tenant, info.delivery_id))

        fetched: List[str] = []
        primary_error: Optional[Exception] = None
        while pending:
            url = pending.pop(0)
            if url in visited:
                continue
            visited.add(url)
            try:
                result = await self._extract_from_url(url, fetcher, enqueue, fetched)
            except Exception as e:
                if is_auth_error(e):
                    raise
                logging.warning(f"   Panopto candidate {url} failed: {e}")
                primary_error = primary_error or e
                continue
            if result is not None:
                return result

        if not fetched and primary_error is not None:
            raise primary_error

        return TranscriptExtractionResult.failure(
            "No captions available for this video", ErrorCode.NO_CAPTIONS, True
        )

    def _auth_required(self) -> TranscriptExtractionResult:
        return TranscriptExtractionResult.failure(
            "Authentication required. Please log in to Panopto.", ErrorCode.AUTH_REQUIRED, True
        )

    def _failure_for(self, error: Exception) -> TranscriptExtractionResult:
        code = classify_exception(error)
        if code == ErrorCode.AUTH_REQUIRED:
            return self._auth_required()
        if code == ErrorCode.TIMEOUT:
            return TranscriptExtractionResult.failure(
                "Request timeout. The server took too long to respond.", ErrorCode.TIMEOUT, True
            )
        if code == ErrorCode.NETWORK_ERROR:
            return TranscriptExtractionResult.failure(
                "Network error. Please check your internet connection and ensure you're logged into Panopto.",
                ErrorCode.NETWORK_ERROR,
                True,
            )
        logging.error(f"   Panopto transcript extraction failed: {error}")
        return TranscriptExtractionResult.failure(
            f"Failed to extract transcript: {error}", ErrorCode.PARSE_ERROR, True
        )

    async def resolve_media_url(self, video: DetectedVideo, fetcher: Any) -> Optional[str]:
        """Best-effort stream URL for hosts that fall back to AI transcription."""
        for url in self._candidate_urls(video):
            try:
                html = await fetcher.fetch_with_credentials(url)
            except Exception as e:
                logging.warning(f"   Could not fetch {url} for media URL lookup: {e}")
                continue
            media_url = extract_panopto_media_url(html)
            if media_url:
                return media_url
        return None
