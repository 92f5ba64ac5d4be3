import pytest

from lectern.harvester.context import build_detection_context
from lectern.harvester.detection import (
    detect_panopto_videos_from_iframes,
    detect_videos_sync,
    extract_echo360_context,
    extract_panopto_info,
    get_echo360_page_type,
    is_panopto_url,
)
from lectern.shared.models import DetectionContext, IframeInfo, VideoProvider

DELIVERY_ID = "0f9e8d7c-1111-2222-3333-444455556666"
TENANT = "uni.hosted.panopto.com"


class TestPanoptoUrls:
    def test_embed_url(self):
        info = extract_panopto_info(f"https://{TENANT}/Panopto/Pages/Embed.aspx?id={DELIVERY_ID}&autoplay=false")
        assert info.tenant == TENANT
        assert info.delivery_id == DELIVERY_ID

    def test_viewer_url(self):
        assert is_panopto_url(f"https://{TENANT}/Panopto/Pages/Viewer.aspx?id={DELIVERY_ID}")

    def test_permissive_id_on_panopto_host(self):
        info = extract_panopto_info(f"https://{TENANT}/Panopto/Pages/Sessions/List.aspx?id=abcdef12")
        assert info.delivery_id == "abcdef12"

    def test_percent_encoded_url(self):
        encoded = "https%3A%2F%2Funi.hosted.panopto.com%2FPanopto%2FPages%2FEmbed.aspx%3Fid%3D" + DELIVERY_ID
        assert extract_panopto_info(encoded).delivery_id == DELIVERY_ID

    @pytest.mark.parametrize("url", ["", "https://example.com/?id=abcdef12", "not a url"])
    def test_non_panopto(self, url):
        assert extract_panopto_info(url) is None


class TestEcho360Context:
    def test_lesson_path(self):
        context = extract_echo360_context("https://echo360.org/lesson/G_a%2Fb_123/classroom")
        assert context.echo_origin == "https://echo360.org"
        assert context.lesson_id == "G_a/b_123"
        assert get_echo360_page_type(context) == "lesson"

    def test_section_path(self):
        context = extract_echo360_context("https://echo360.org.au/section/sec-1/home")
        assert context.section_id == "sec-1"
        assert context.lesson_id is None
        assert get_echo360_page_type(context) == "section"

    def test_query_fallbacks(self):
        context = extract_echo360_context("https://echo360.ca/player?lid=L9&mid=M9&sid=S9")
        assert (context.lesson_id, context.media_id, context.section_id) == ("L9", "M9", "S9")

    def test_hash_fragment_lesson(self):
        context = extract_echo360_context("https://echo360.org/home#lesson=L42")
        assert context.lesson_id == "L42"

    def test_hash_ignored_on_section_pages(self):
        context = extract_echo360_context("https://echo360.org/section/S1/home#lesson=L42")
        assert context.lesson_id is None

    def test_unknown_page(self):
        assert get_echo360_page_type(extract_echo360_context("https://echo360.org/courses")) == "unknown"
        assert get_echo360_page_type(None) == "unknown"

    @pytest.mark.parametrize("url", ["https://example.com/lesson/1", "ftp://echo360.org/lesson/1", ""])
    def test_non_echo360(self, url):
        assert extract_echo360_context(url) is None


def test_panopto_from_iframes_dedupes_and_titles():
    iframes = [
        IframeInfo(src=f"https://{TENANT}/Panopto/Pages/Embed.aspx?id={DELIVERY_ID}", title="Lecture 1"),
        IframeInfo(src=f"https://{TENANT}/Panopto/Pages/Viewer.aspx?id={DELIVERY_ID}", title="Duplicate"),
        IframeInfo(src=f"https://{TENANT}/Panopto/Pages/Embed.aspx?id=aaaa1111-2222-3333-4444-555566667777"),
        IframeInfo(src="https://www.youtube.com/embed/xyz"),
    ]

    videos = detect_panopto_videos_from_iframes(iframes)

    assert [v.title for v in videos] == ["Lecture 1", "Panopto video 2"]
    assert videos[0].embed_url == f"https://{TENANT}/Panopto/Pages/Embed.aspx?id={DELIVERY_ID}"
    assert videos[0].panopto_tenant == TENANT


class TestDetectVideosSync:
    def test_panopto_wins_over_html5(self):
        html = (
            f'<iframe src="https://{TENANT}/Panopto/Pages/Embed.aspx?id={DELIVERY_ID}"></iframe>'
            '<video src="/intro.mp4"></video>'
        )
        result = detect_videos_sync(build_detection_context(html, "https://lms.example.edu/course"))

        assert result.provider == VideoProvider.PANOPTO
        assert len(result.videos) == 1

    def test_echo360_lesson_page_yields_one_video(self):
        context = build_detection_context(
            "<html><head><title>Week 3 Lecture</title></head></html>",
            "https://echo360.org/lesson/G_xyz/classroom?mediaId=M1",
        )

        result = detect_videos_sync(context)

        assert result.provider == VideoProvider.ECHO360
        assert result.requires_api_call is False
        video = result.videos[0]
        assert (video.id, video.title, video.echo_media_id) == ("G_xyz", "Week 3 Lecture", "M1")

    def test_echo360_section_page_requires_api_call(self):
        result = detect_videos_sync(DetectionContext(page_url="https://echo360.org/section/S1/home"))

        assert result.requires_api_call is True
        assert result.videos == []
        assert result.echo360_context.section_id == "S1"

    def test_html5_fallback(self):
        context = build_detection_context('<video id="lec" src="lecture.mp4"></video>', "https://lms.example.edu/a/")

        result = detect_videos_sync(context)

        assert result.provider == VideoProvider.HTML5
        assert result.videos[0].media_url == "https://lms.example.edu/a/lecture.mp4"

    def test_nothing_found(self):
        result = detect_videos_sync(build_detection_context("<p>No media</p>", "https://lms.example.edu/"))
        assert result.provider is None
        assert result.videos == []
