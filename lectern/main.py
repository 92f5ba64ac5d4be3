# lectern/main.py

"""
Command-line entry point.

    python -m lectern.main detect <url>
    python -m lectern.main extract <url> [--video-id ID] [--format text|vtt|json]

Credentials come from a persisted auth state file (``--auth-state``) holding
the cookies of a logged-in browser session.
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, List, Optional

from dotenv import load_dotenv

from lectern.harvester.context import build_detection_context
from lectern.harvester.detection import detect_videos_sync
from lectern.harvester.registry import (
    ProviderRegistry,
    detect_videos_async,
    extract_transcript,
    get_provider_registry,
)
from lectern.refinery.webvtt import format_as_vtt
from lectern.shared.errors import ErrorCode
from lectern.shared.fetchers import RequestsFetcher
from lectern.shared.models import DetectedVideo, TranscriptExtractionResult
from lectern.shared.network import fetch_html_with_redirect
from lectern.shared.observability import configure_logging, init_sentry

OUTPUT_FORMATS = ("json", "text", "vtt")


def _session_frame_loader(fetcher: RequestsFetcher):
    """Load iframe documents through the credentialed session."""

    def load(src: str) -> Optional[str]:
        response = fetcher.session.get(src, timeout=10)
        return response.text if response.ok else None

    return load


async def detect_page(url: str, fetcher: RequestsFetcher, registry: Optional[ProviderRegistry] = None) -> List[DetectedVideo]:
    registry = registry or get_provider_registry()
    html, final_url = await fetch_html_with_redirect(fetcher, url)
    # Frame loading uses the blocking session, keep it off the event loop
    context = await asyncio.to_thread(
        build_detection_context, html, final_url, _session_frame_loader(fetcher)
    )

    result = registry.detect_videos_sync(context)
    if result.requires_async:
        return await detect_videos_async(context, fetcher, registry)
    if result.videos:
        return result.videos

    unified = detect_videos_sync(context)
    if unified.requires_api_call:
        return await detect_videos_async(context, fetcher, registry)
    if not unified.videos and result.provider is not None:
        hint = getattr(result.provider, "get_empty_detection_hint", None)
        message = hint(context) if hint else None
        if message:
            logging.info(f"   {message}")
    return unified.videos


def _select_video(videos: List[DetectedVideo], video_id: Optional[str]) -> Optional[DetectedVideo]:
    if not videos:
        return None
    if video_id is None:
        return videos[0]
    return next((video for video in videos if video.id == video_id), None)


async def extract_page(
    url: str,
    fetcher: RequestsFetcher,
    video_id: Optional[str] = None,
    registry: Optional[ProviderRegistry] = None,
) -> TranscriptExtractionResult:
    registry = registry or get_provider_registry()
    videos = await detect_page(url, fetcher, registry)
    video = _select_video(videos, video_id)
    if video is None:
        message = f"Video {video_id} not found on page" if video_id else "No videos detected on page"
        return TranscriptExtractionResult.failure(message, ErrorCode.INVALID_VIDEO, False)
    logging.info(f"   Extracting transcript for {video.provider.value} video '{video.title}' ({video.id})")
    return await extract_transcript(video, fetcher, registry)


def render_result(result: TranscriptExtractionResult, output_format: str) -> str:
    if output_format == "json" or not result.success or result.transcript is None:
        return json.dumps(result.to_dict(), indent=2)
    if output_format == "vtt":
        return format_as_vtt(result.transcript.segments)
    return result.transcript.plain_text


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Lecture video detection and transcript extraction")
    parser.add_argument("--auth-state", default=None, help="JSON file with saved browser cookies ({\"cookies\": [...]})")
    parser.add_argument("--log-level", default=None, help="Override LECTERN_LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command", required=True)

    detect_parser = subparsers.add_parser("detect", help="List the lecture videos found on a page")
    detect_parser.add_argument("url")

    extract_parser = subparsers.add_parser("extract", help="Extract the transcript of a video on a page")
    extract_parser.add_argument("url")
    extract_parser.add_argument("--video-id", default=None, help="Video id from `detect` (default: first video)")
    extract_parser.add_argument("--format", dest="output_format", choices=OUTPUT_FORMATS, default="text")
    return parser


async def run(args: Any) -> int:
    fetcher = RequestsFetcher()
    if args.auth_state:
        fetcher.load_cookies_from_state_file(args.auth_state)

    if args.command == "detect":
        videos = await detect_page(args.url, fetcher)
        print(json.dumps([video.to_dict() for video in videos], indent=2))
        return 0 if videos else 1

    result = await extract_page(args.url, fetcher, args.video_id)
    print(render_result(result, args.output_format))
    if not result.success:
        logging.error(f"   Extraction failed [{result.error_code}]: {result.error}")
    return 0 if result.success else 1


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    init_sentry()
    try:
        return asyncio.run(run(args))
    except Exception as e:
        logging.error(f"❌ {args.command} failed for {args.url}: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
