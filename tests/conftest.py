import os
from typing import Any, Dict, List, Optional

import pytest

# Settings are read once at import time, so the environment is pinned first
os.environ["LECTERN_SENTRY_DSN"] = ""
os.environ["LECTERN_LOG_LEVEL"] = "WARNING"

from lectern.shared.fetchers import RedirectResult  # noqa: E402


class FakeFetcher:
    """In-memory ``AsyncFetcher``.

    ``responses`` maps URL to a str (text), dict/list (JSON), an Exception
    (raised) or a ``Sequence`` of those consumed one per call. Every call is recorded
    in ``calls`` as ``(method, url)``.
    """

    def __init__(self, responses: Optional[Dict[str, Any]] = None, redirects: Optional[Dict[str, str]] = None):
        self.responses: Dict[str, Any] = dict(responses or {})
        self.redirects: Dict[str, str] = dict(redirects or {})
        self.calls: List[tuple] = []

    def _next(self, url: str) -> Any:
        if url not in self.responses:
            raise Exception(f"HTTP 404 for {url}")
        value = self.responses[url]
        if isinstance(value, Sequence):
            value = value.pop(0) if len(value) > 1 else value[0]
        if isinstance(value, Exception):
            raise value
        return value

    async def fetch_with_credentials(self, url: str) -> str:
        self.calls.append(("text", url))
        value = self._next(url)
        return value if isinstance(value, str) else str(value)

    async def fetch_json(self, url: str) -> Any:
        self.calls.append(("json", url))
        return self._next(url)

    def urls(self, method: Optional[str] = None) -> List[str]:
        return [url for kind, url in self.calls if method is None or kind == method]


class RedirectingFetcher(FakeFetcher):
    """``FakeFetcher`` that also reports the final URL after redirects."""

    async def fetch_html_with_redirect_info(self, url: str) -> RedirectResult:
        self.calls.append(("redirect", url))
        html = self._next(url)
        final_url = self.redirects.get(url, url)
        return RedirectResult(html=html, final_url=final_url, redirected=final_url != url, status=200)


class Sequence(list):
    """Responses consumed one per call; the last one repeats."""


class FakeResponse:
    """Minimal stand-in for ``requests.Response``."""

    def __init__(self, status_code: int = 200, text: str = "", headers: Optional[dict] = None,
                 json_data: Any = None, url: str = "", history: Optional[list] = None):
        self.status_code = status_code
        self.text = text
        self.headers = headers or {}
        self._json = json_data
        self.url = url
        self.history = history or []
        self.ok = 200 <= status_code < 300

    def json(self) -> Any:
        if self._json is None:
            raise ValueError("No JSON object could be decoded")
        return self._json


class FakeSession:
    def __init__(self, responses: List[FakeResponse]):
        self._responses = list(responses)
        self.headers: Dict[str, str] = {}
        self.cookies = _FakeCookieJar()
        self.get_calls: List[str] = []

    def get(self, url: str, timeout: Any = None, allow_redirects: bool = True) -> FakeResponse:
        self.get_calls.append(url)
        response = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        if isinstance(response, Exception):
            raise response
        if not response.url:
            response.url = url
        return response


class _FakeCookieJar:
    def __init__(self):
        self.cookies: List[dict] = []

    def set(self, name: str, value: str, domain: str = "", path: str = "/") -> None:
        self.cookies.append({"name": name, "value": value, "domain": domain, "path": path})


class _FakeElement:
    def __init__(self, frame: "_FakeFrame"):
        self.frame = frame


class _FakeFrame:
    def __init__(self, url: str, html: str, children: Optional[List["_FakeFrame"]] = None):
        self.url = url
        self.html = html
        self.children = children or []
        self.parent: Optional["_FakeFrame"] = None
        for child in self.children:
            child.parent = self


class _FakeSwitchTo:
    def __init__(self, driver: "_FakeDriver"):
        self._driver = driver

    def frame(self, element: _FakeElement) -> None:
        self._driver._switch_calls.append(("frame", element.frame.url))
        self._driver._current = element.frame

    def parent_frame(self) -> None:
        self._driver._switch_calls.append(("parent", None))
        if self._driver._current.parent is not None:
            self._driver._current = self._driver._current.parent

    def default_content(self) -> None:
        self._driver._switch_calls.append(("default", None))
        self._driver._current = self._driver._root


class _FakeDriver:
    """Selenium-like driver over a fixed frame tree.

    ``page_source`` and ``find_elements`` answer for the frame currently
    switched to; iframe elements are returned in document order.
    """

    def __init__(self, root: _FakeFrame, cookies: Optional[List[dict]] = None):
        self._root = root
        self._current = root
        self._switch_calls: List[tuple] = []
        self._cookies = cookies or []
        self.switch_to = _FakeSwitchTo(self)
        self.current_url: str = root.url

    @property
    def page_source(self) -> str:
        return self._current.html

    def find_elements(self, by: Any = None, selector: str = "") -> List[_FakeElement]:
        return [_FakeElement(child) for child in self._current.children]

    def get_cookies(self) -> List[dict]:
        return list(self._cookies)


@pytest.fixture()
def fake_fetcher():
    return FakeFetcher()


@pytest.fixture()
def no_sleep():
    """Async sleep replacement that records requested delays (seconds)."""
    delays: List[float] = []

    async def sleep(seconds: float) -> None:
        delays.append(seconds)

    sleep.delays = delays
    return sleep


@pytest.fixture()
def make_driver():
    """Build a ``_FakeDriver`` from ``(url, html, children)`` frame specs."""

    def build(root: _FakeFrame, cookies: Optional[List[dict]] = None) -> _FakeDriver:
        return _FakeDriver(root, cookies)

    return build
