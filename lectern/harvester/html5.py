# lectern/harvester/html5.py

import logging
from typing import Any, List, Optional

from lectern.harvester.html5_detection import detect_html5_videos
from lectern.refinery.webvtt import parse_webvtt
from lectern.shared.errors import ErrorCode, is_auth_error, is_network_error
from lectern.shared.models import DetectedVideo, DetectionContext, TranscriptExtractionResult, VideoProvider


class Html5Provider:
    """Captions from ``<track>`` files of native ``<video>`` elements.

    Never claims a page URL; HTML5 videos are only reached through unified
    detection once the hosted providers found nothing.
    """

    provider = VideoProvider.HTML5

    def can_handle(self, url: str) -> bool:
        return False

    def requires_async_detection(self, context: DetectionContext) -> bool:
        return False

    def detect_videos_sync(self, context: DetectionContext) -> List[DetectedVideo]:
        return detect_html5_videos(context)

    async def extract_transcript(self, video: DetectedVideo, fetcher: Any) -> TranscriptExtractionResult:
        tracks = video.track_urls or []
        ai_available = bool(video.media_url)
        if not tracks:
            return TranscriptExtractionResult.failure("No captions found", ErrorCode.NO_CAPTIONS, ai_available)

        last_error: Optional[TranscriptExtractionResult] = None
        for track in tracks:
            if not track.src:
                continue
            try:
                vtt_content = await fetcher.fetch_with_credentials(track.src)
            except Exception as e:
                if is_auth_error(e):
                    return TranscriptExtractionResult.failure(
                        "Authentication required to access captions.", ErrorCode.AUTH_REQUIRED, ai_available
                    )
                logging.warning(f"   Caption track {track.src} could not be fetched: {e}")
                message = (
                    "Captions could not be fetched due to browser restrictions or network errors."
                    if is_network_error(e)
                    else f"Failed to fetch captions: {e}"
                )
                last_error = TranscriptExtractionResult.failure(message, ErrorCode.NOT_AVAILABLE, ai_available)
                continue

            transcript = parse_webvtt(vtt_content)
            if transcript.segments:
                return TranscriptExtractionResult.ok(transcript)
            last_error = TranscriptExtractionResult.failure(
                "Caption file is empty or could not be parsed", ErrorCode.PARSE_ERROR, ai_available
            )

        return last_error or TranscriptExtractionResult.failure("No captions found", ErrorCode.NO_CAPTIONS, ai_available)
