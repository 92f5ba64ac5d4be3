import asyncio

from conftest import FakeFetcher
from lectern.harvester.html5 import Html5Provider
from lectern.shared.errors import AuthRequiredError, ErrorCode, NetworkError
from lectern.shared.models import DetectedVideo, TrackUrl, VideoProvider

MEDIA = "https://cdn.example.edu/lectures/week1.mp4"
EN = "https://cdn.example.edu/lectures/week1.en.vtt"
FR = "https://cdn.example.edu/lectures/week1.fr.vtt"
VTT = "WEBVTT\n\n00:00:00.000 --> 00:00:02.000\nBonjour\n"


def _video(tracks, media_url=MEDIA) -> DetectedVideo:
    return DetectedVideo(
        id="html5-1",
        provider=VideoProvider.HTML5,
        title="Week 1",
        embed_url=MEDIA,
        media_url=media_url,
        track_urls=[TrackUrl(src=src, srclang=lang) for src, lang in tracks],
    )


def _extract(video, fetcher):
    return asyncio.run(Html5Provider().extract_transcript(video, fetcher))


def test_never_claims_urls():
    assert not Html5Provider().can_handle(MEDIA)


def test_first_parsable_track_wins():
    fetcher = FakeFetcher({EN: "WEBVTT\n\n", FR: VTT})

    result = _extract(_video([(EN, "en"), (FR, "fr")]), fetcher)

    assert result.success
    assert result.transcript.plain_text == "Bonjour"
    assert fetcher.urls() == [EN, FR]


def test_no_tracks():
    result = _extract(_video([], media_url=None), FakeFetcher())

    assert result.error_code == ErrorCode.NO_CAPTIONS
    assert result.ai_transcription_available is False


def test_auth_failure_stops():
    fetcher = FakeFetcher({EN: AuthRequiredError(EN, 403), FR: VTT})

    result = _extract(_video([(EN, "en"), (FR, "fr")]), fetcher)

    assert result.error_code == ErrorCode.AUTH_REQUIRED
    assert fetcher.urls() == [EN]


def test_network_failure_message():
    result = _extract(_video([(EN, "en")]), FakeFetcher({EN: NetworkError("Failed to fetch")}))

    assert result.error_code == ErrorCode.NOT_AVAILABLE
    assert "browser restrictions" in result.error
    assert result.ai_transcription_available is True


def test_empty_track_is_parse_error():
    result = _extract(_video([(EN, "en")]), FakeFetcher({EN: "WEBVTT\n\n"}))
    assert result.error_code == ErrorCode.PARSE_ERROR
