import logging
import re

from lectern.shared import observability
from lectern.shared.config import TranscriptSettings
from lectern.shared.observability import hash_string, log_event, new_request_id, sanitize_event, to_base36


def test_to_base36():
    assert to_base36(0) == "0"
    assert to_base36(35) == "z"
    assert to_base36(36) == "10"
    assert to_base36(-36) == "-10"


def test_hash_string_is_stable():
    assert hash_string("abc") == "22ci"
    assert hash_string("") == "0"
    assert hash_string("https://x/a.mp4") == hash_string("https://x/a.mp4")
    assert hash_string("https://x/a.mp4") != hash_string("https://x/b.mp4")


def test_new_request_id_format():
    assert re.fullmatch(r"echo360-[0-9a-z]+-[0-9a-z]{5}", new_request_id())
    assert new_request_id("panopto").startswith("panopto-")


def test_log_event_renders_fields(caplog):
    caplog.set_level(logging.INFO)

    log_event(logging.INFO, "req-1", "Syllabus fetched", count=3, section=None)

    assert caplog.records[-1].getMessage() == "[req-1] Syllabus fetched count=3"


def test_sanitize_event_redacts_secrets_and_content():
    event = {
        "request": {"headers": {"Cookie": "a=b", "Accept": "text/html"}},
        "extra": {"transcript": "welcome back", "note": "Bearer TOKEN xyz", "url": "https://x"},
        "breadcrumbs": ["session=1", "ok"],
    }

    sanitized = sanitize_event(event, None)

    assert sanitized["request"]["headers"] == {"Cookie": "[REDACTED]", "Accept": "text/html"}
    assert sanitized["extra"] == {"transcript": "[REDACTED]", "note": "[REDACTED]", "url": "https://x"}
    assert sanitized["breadcrumbs"] == ["[REDACTED]", "ok"]


class TestInitSentry:
    def test_disabled_without_dsn(self, monkeypatch):
        monkeypatch.delenv("SENTRY_DSN", raising=False)
        monkeypatch.setenv("LECTERN_SENTRY_DSN", "")
        settings = TranscriptSettings()
        monkeypatch.setattr(observability, "get_settings", lambda: settings)
        calls = []
        monkeypatch.setattr(observability.sentry_sdk, "init", lambda **kwargs: calls.append(kwargs))

        assert observability.init_sentry() is False
        assert calls == []

    def test_enabled_with_dsn(self, monkeypatch):
        monkeypatch.setenv("LECTERN_SENTRY_DSN", "https://key@o1.ingest.sentry.io/1")
        monkeypatch.setenv("LECTERN_SENTRY_ENVIRONMENT", "staging")
        settings = TranscriptSettings()
        monkeypatch.setattr(observability, "get_settings", lambda: settings)
        calls = []
        monkeypatch.setattr(observability.sentry_sdk, "init", lambda **kwargs: calls.append(kwargs))

        assert observability.init_sentry() is True
        assert calls[0]["environment"] == "staging"
        assert calls[0]["before_send"] is sanitize_event
