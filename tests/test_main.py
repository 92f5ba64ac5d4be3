import asyncio
import json

from conftest import FakeFetcher
from lectern.main import build_parser, extract_page, render_result
from lectern.shared.errors import ErrorCode
from lectern.shared.models import TranscriptExtractionResult, TranscriptResult, TranscriptSegment


def _result() -> TranscriptExtractionResult:
    segments = [TranscriptSegment(start_ms=0, end_ms=1500, text="Good morning")]
    return TranscriptExtractionResult.ok(TranscriptResult.from_segments(segments))


def test_parser_extract_options():
    args = build_parser().parse_args(["--auth-state", "state.json", "extract", "https://x/page", "--format", "vtt"])

    assert (args.command, args.url, args.output_format, args.auth_state) == ("extract", "https://x/page", "vtt", "state.json")
    assert args.video_id is None


def test_parser_defaults_to_text():
    assert build_parser().parse_args(["extract", "https://x/page"]).output_format == "text"


class TestRenderResult:
    def test_text(self):
        assert render_result(_result(), "text") == "Good morning"

    def test_vtt(self):
        rendered = render_result(_result(), "vtt")
        assert rendered.startswith("WEBVTT")
        assert "Good morning" in rendered

    def test_json_uses_wire_names(self):
        payload = json.loads(render_result(_result(), "json"))
        assert payload["transcript"]["plainText"] == "Good morning"

    def test_failure_is_always_json(self):
        failure = TranscriptExtractionResult.failure("No captions found", ErrorCode.NO_CAPTIONS, True)
        payload = json.loads(render_result(failure, "text"))
        assert payload == {
            "success": False,
            "error": "No captions found",
            "errorCode": "NO_CAPTIONS",
            "aiTranscriptionAvailable": True,
        }


def test_extract_page_without_videos():
    page = "https://lms.example.edu/course/view.php?id=7"
    fetcher = FakeFetcher({page: "<html><body>Reading list</body></html>"})

    result = asyncio.run(extract_page(page, fetcher))

    assert result.success is False
    assert result.error_code == ErrorCode.INVALID_VIDEO
