"""
Unit tests for lectern/harvester/html5_detection.py

Fixtures are hand-built markup; no browser involved.
"""

from lectern.harvester.context import build_detection_context, parse_html
from lectern.harvester.html5_detection import (
    build_dom_selector,
    detect_html5_videos,
    get_drm_reason,
    get_media_url,
    get_track_urls,
    get_video_duration_ms,
    get_video_title,
    is_element_visible,
)
from lectern.shared.models import VideoProvider
from lectern.shared.observability import hash_string

PAGE = "https://lms.example.edu/course/view.php?id=7"


def _video(html: str):
    return parse_html(html).find("video")


def _detect(html: str, page_url: str = PAGE):
    return detect_html5_videos(build_detection_context(html, page_url))


class TestVisibility:
    def test_plain_video_is_visible(self):
        assert is_element_visible(_video("<div><video src='a.mp4'></video></div>"))

    def test_hidden_attribute_on_ancestor(self):
        assert not is_element_visible(_video("<div hidden><video src='a.mp4'></video></div>"))

    def test_inline_styles(self):
        assert not is_element_visible(_video("<video style='display: none' src='a.mp4'></video>"))
        assert not is_element_visible(_video("<div style='visibility:hidden'><video></video></div>"))
        assert not is_element_visible(_video("<video style='opacity: 0;'></video>"))
        assert is_element_visible(_video("<video style='opacity: 0.5'></video>"))

    def test_aria_hidden(self):
        assert not is_element_visible(_video("<section aria-hidden='true'><video></video></section>"))

    def test_closed_details(self):
        assert not is_element_visible(_video("<details><summary>Lecture</summary><div><video></video></div></details>"))
        assert is_element_visible(_video("<details open><summary>Lecture</summary><video></video></details>"))
        assert is_element_visible(_video("<details><summary><video></video></summary></details>"))


class TestTitle:
    def test_own_attributes_first(self):
        video = _video("<figure><figcaption>Caption</figcaption><video aria-label='Own label'></video></figure>")
        assert get_video_title(video, None, 0) == "Own label"

    def test_container_figcaption(self):
        video = _video("<figure><video></video><figcaption> Week 2 recording </figcaption></figure>")
        assert get_video_title(video, None, 0) == "Week 2 recording"

    def test_container_heading(self):
        video = _video("<section><h3>Intro to Caching</h3><div><video></video></div></section>")
        assert get_video_title(video, None, 0) == "Intro to Caching"

    def test_filename_then_index(self):
        video = _video("<video></video>")
        assert get_video_title(video, "https://cdn.example.edu/media/lecture%2001.mp4", 0) == "lecture 01"
        assert get_video_title(video, None, 2) == "HTML5 video 3"


class TestMediaUrl:
    def test_src_attribute_resolved_against_base(self):
        assert get_media_url(_video("<video src='../v/a.mp4'></video>"), "https://x.edu/c/d/") == "https://x.edu/c/v/a.mp4"

    def test_source_child(self):
        video = _video("<video><source src='https://cdn.x.edu/b.webm' type='video/webm'></video>")
        assert get_media_url(video, PAGE) == "https://cdn.x.edu/b.webm"

    def test_videojs_lazy_container(self):
        html = (
            "<div class='mediaplugin mediaplugin_videojs'>"
            "<video data-setup-lazy='{}'></video>"
            "<source src='/pluginfile.php/lecture.mp4'>"
            "</div>"
        )
        assert get_media_url(_video(html), PAGE) == "https://lms.example.edu/pluginfile.php/lecture.mp4"

    def test_no_source(self):
        assert get_media_url(_video("<video></video>"), PAGE) is None


def test_tracks_filter_kinds_and_default_to_subtitles():
    video = _video(
        "<video>"
        "<track kind='captions' src='en.vtt' srclang='en' label='English'>"
        "<track src='fr.vtt' srclang='fr'>"
        "<track kind='chapters' src='chapters.vtt'>"
        "<track kind='descriptions' src='desc.vtt'>"
        "</video>"
    )

    tracks = get_track_urls(video, "https://lms.example.edu/media/")

    assert [(t.kind, t.srclang, t.src) for t in tracks] == [
        ("captions", "en", "https://lms.example.edu/media/en.vtt"),
        ("subtitles", "fr", "https://lms.example.edu/media/fr.vtt"),
    ]
    assert tracks[0].label == "English"


def test_duration_attributes():
    assert get_video_duration_ms(_video("<video data-duration='62.5'></video>")) == 62500
    assert get_video_duration_ms(_video("<video duration='nan'></video>")) is None
    assert get_video_duration_ms(_video("<video></video>")) is None


def test_drm_reasons():
    assert get_drm_reason(_video("<video data-drm></video>")) == "data-attribute"
    assert get_drm_reason(_video("<video data-lockin-encrypted='true'></video>")) == "encrypted-event"
    assert get_drm_reason(_video("<video><source src='m.mpd' type='application/dash+xml'></video>")) == "dash-manifest"
    assert get_drm_reason(_video("<video><source src='m.m3u8' type='application/vnd.apple.mpegurl'></video>")) == "hls-manifest"
    assert get_drm_reason(_video("<video src='a.mp4'></video>")) is None


def test_dom_selector():
    assert build_dom_selector(_video("<video id='main-player'></video>")) == "#main-player"
    selector = build_dom_selector(parse_html("<div><video></video><video></video></div>").find_all("video")[1])
    assert selector.endswith("div > video:nth-of-type(2)")


class TestDetectHtml5Videos:
    def test_builds_detected_videos(self):
        videos = _detect(
            "<base href='https://cdn.example.edu/course/'>"
            "<video id='lec1' src='week1.mp4' data-duration='90'>"
            "<track kind='captions' src='week1.vtt'></video>"
            "<video src='week2.mp4'></video>"
            "<div style='display:none'><video src='hidden.mp4'></video></div>"
        )

        assert len(videos) == 2
        first, second = videos
        assert first.provider == VideoProvider.HTML5
        assert first.id == "lec1"
        assert first.dom_id == "lec1"
        assert first.media_url == "https://cdn.example.edu/course/week1.mp4"
        assert first.embed_url == first.media_url
        assert first.duration_ms == 90000
        assert first.track_urls[0].src == "https://cdn.example.edu/course/week1.vtt"
        assert second.id == "html5_" + hash_string("https://cdn.example.edu/course/week2.mp4_1")
        assert second.title == "week2"
        assert second.track_urls is None

    def test_video_without_source_uses_page_url(self):
        video = _detect("<video></video>")[0]
        assert video.embed_url == PAGE
        assert video.id == "html5_" + hash_string("video_0")

    def test_no_document(self):
        from lectern.shared.models import DetectionContext

        assert detect_html5_videos(DetectionContext(page_url=PAGE)) == []
