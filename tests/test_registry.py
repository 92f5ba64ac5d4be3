import asyncio

from conftest import FakeFetcher
from lectern.harvester.context import build_detection_context
from lectern.harvester.echo360 import Echo360Provider
from lectern.harvester.html5 import Html5Provider
from lectern.harvester.panopto import PanoptoProvider
from lectern.harvester.registry import (
    ProviderRegistry,
    create_default_registry,
    detect_videos_async,
    extract_transcript,
    get_provider_registry,
)
from lectern.shared.errors import ErrorCode, NetworkError
from lectern.shared.models import DetectedVideo, DetectionContext, VideoProvider

PANOPTO_EMBED = "https://uni.hosted.panopto.com/Panopto/Pages/Embed.aspx?id=0f9e8d7c-1111-2222-3333-444455556666"
ECHO_LESSON = "https://echo360.org/lesson/G_abc123/classroom"
SECTION_ID = "8a9b0c1d-2e3f-4a5b-8c6d-7e8f9a0b1c2d"
ECHO_SECTION = f"https://echo360.org/section/{SECTION_ID}/home"


def test_default_registry_order():
    registry = create_default_registry()
    assert [p.provider for p in registry.get_all()] == [
        VideoProvider.PANOPTO,
        VideoProvider.ECHO360,
        VideoProvider.HTML5,
    ]


def test_provider_selection_by_url():
    registry = create_default_registry()

    assert registry.get_provider_for_url(PANOPTO_EMBED).provider == VideoProvider.PANOPTO
    assert registry.get_provider_for_url(ECHO_LESSON).provider == VideoProvider.ECHO360
    assert registry.get_provider_for_url("https://example.com/lecture") is None


def test_register_ignores_duplicate_provider():
    registry = ProviderRegistry()
    first = PanoptoProvider()
    registry.register(first)
    registry.register(PanoptoProvider())

    assert registry.get_all() == [first]


def test_clear_and_independent_instances():
    registry = create_default_registry()
    registry.clear()

    assert registry.get_all() == []
    assert len(create_default_registry().get_all()) == 3


def test_global_registry_is_shared():
    assert get_provider_registry() is get_provider_registry()


def test_detect_sync_returns_panopto_videos():
    registry = create_default_registry()
    context = DetectionContext(page_url=PANOPTO_EMBED)

    detection = registry.detect_videos_sync(context)

    assert detection.requires_async is False
    assert detection.provider.provider == VideoProvider.PANOPTO
    assert [v.id for v in detection.videos] == ["0f9e8d7c-1111-2222-3333-444455556666"]
    assert [v.title for v in detection.videos] == ["Panopto video 1"]


def test_detect_sync_defers_echo360_to_async():
    detection = create_default_registry().detect_videos_sync(DetectionContext(page_url=ECHO_SECTION))

    assert detection.requires_async is True
    assert detection.videos == []


def test_detect_sync_without_owner():
    detection = create_default_registry().detect_videos_sync(DetectionContext(page_url="https://example.com"))
    assert detection.provider is None
    assert detection.videos == []


def test_detect_async_runs_echo360_syllabus(no_sleep):
    syllabus_url = f"https://echo360.org/section/{SECTION_ID}/syllabus"
    fetcher = FakeFetcher({
        syllabus_url: {
            "status": "ok",
            "data": [{"lesson": {"lesson": {"id": "G_lesson1", "name": "Week 1"}, "medias": [{"id": "M1"}]}}],
        }
    })
    registry = ProviderRegistry([PanoptoProvider(), Echo360Provider(sleep=no_sleep), Html5Provider()])

    videos = asyncio.run(detect_videos_async(DetectionContext(page_url=ECHO_SECTION), fetcher, registry))

    assert [(v.id, v.title, v.echo_lesson_id) for v in videos] == [("M1", "Week 1", "G_lesson1")]


def test_detect_async_without_async_provider_is_empty():
    registry = create_default_registry()
    videos = asyncio.run(detect_videos_async(DetectionContext(page_url=PANOPTO_EMBED), FakeFetcher(), registry))
    assert videos == []


def test_extract_transcript_unsupported_provider():
    video = DetectedVideo(id="yt1", provider=VideoProvider.YOUTUBE, title="t", embed_url="https://youtube.com/watch?v=1")

    result = asyncio.run(extract_transcript(video, FakeFetcher(), create_default_registry()))

    assert result.success is False
    assert result.error_code == ErrorCode.NOT_AVAILABLE


def test_extract_transcript_dispatches_to_html5():
    context = build_detection_context(
        '<video src="/v.mp4"><track kind="captions" src="/v.vtt"></video>', "https://lms.example.edu/page"
    )
    video = create_default_registry().get_all()[2].detect_videos_sync(context)[0]
    fetcher = FakeFetcher({"https://lms.example.edu/v.vtt": "WEBVTT\n\n00:00.000 --> 00:01.000\nHello class\n"})

    result = asyncio.run(extract_transcript(video, fetcher, create_default_registry()))

    assert result.success is True
    assert result.transcript.plain_text == "Hello class"


def test_extract_transcript_converts_provider_exceptions():
    class ExplodingProvider:
        provider = VideoProvider.HTML5

        def can_handle(self, url):
            return False

        def detect_videos_sync(self, context):
            return []

        def requires_async_detection(self, context):
            return False

        async def extract_transcript(self, video, fetcher):
            raise NetworkError("ECONNRESET")

    registry = ProviderRegistry([ExplodingProvider()])
    video = DetectedVideo(id="v", provider=VideoProvider.HTML5, title="t", embed_url="https://x/v.mp4")

    result = asyncio.run(extract_transcript(video, FakeFetcher(), registry))

    assert result.success is False
    assert result.error_code == ErrorCode.NETWORK_ERROR
