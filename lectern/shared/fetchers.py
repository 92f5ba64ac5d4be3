"""
Fetcher seam between the extraction core and the host's HTTP stack.

Providers only ever talk to an ``AsyncFetcher``. ``RequestsFetcher`` is the
reference implementation: a ``requests.Session`` whose cookie jar carries the
user's platform credentials, driven from asyncio via ``asyncio.to_thread``.
"""

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Protocol, runtime_checkable

import requests

from .config import get_settings
from .errors import AuthRequiredError, ErrorCode, HttpStatusError, TranscriptError
from .network import RetryConfig, fetch_with_retry

AUTH_FAILURE_STATUSES = (401, 403)


@dataclass(frozen=True)
class RedirectResult:
    html: str
    final_url: str
    redirected: bool = False
    status: Optional[int] = None


@runtime_checkable
class AsyncFetcher(Protocol):
    async def fetch_with_credentials(self, url: str) -> str:
        ...

    async def fetch_json(self, url: str) -> Any:
        ...


def has_redirect_support(fetcher: Any) -> bool:
    return callable(getattr(fetcher, "fetch_html_with_redirect_info", None))


class RequestsFetcher:
    """Credentialed fetcher backed by a ``requests.Session``."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        retry_config: Optional[RetryConfig] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ):
        settings = get_settings()
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", settings.user_agent)
        self.retry_config = retry_config or RetryConfig.from_settings(settings)
        self.cancel_event = cancel_event
        self._timeout_seconds = max(1.0, self.retry_config.timeout_ms / 1000)

    # --- Credentials ---

    def add_cookies(self, cookies: Iterable[Dict[str, Any]]) -> int:
        """Copy Selenium-style cookie dicts into the session jar."""
        added = 0
        for cookie in cookies:
            name = cookie.get("name")
            value = cookie.get("value")
            if not name or value is None:
                continue
            self.session.cookies.set(
                name,
                value,
                domain=cookie.get("domain") or "",
                path=cookie.get("path") or "/",
            )
            added += 1
        return added

    def load_cookies_from_driver(self, driver: Any) -> int:
        added = self.add_cookies(driver.get_cookies())
        logging.info(f"Loaded {added} cookies from WebDriver session.")
        return added

    def load_cookies_from_state_file(self, path: str) -> int:
        """Load cookies from a persisted auth state file (``{"cookies": [...]}``)."""
        if not os.path.exists(path):
            logging.warning(f"Auth state file not found: {path}")
            return 0
        with open(path, "r", encoding="utf-8") as f:
            state: Dict[str, Any] = json.load(f)
        added = self.add_cookies(state.get("cookies", []))
        logging.info(f"Loaded {added} cookies from {path}.")
        return added

    # --- HTTP ---

    async def _send(self, url: str) -> requests.Response:
        return await asyncio.to_thread(
            self.session.get, url, timeout=self._timeout_seconds, allow_redirects=True
        )

    async def _get(self, url: str) -> requests.Response:
        response = await fetch_with_retry(url, self._send, self.retry_config, self.cancel_event)
        if response.status_code in AUTH_FAILURE_STATUSES:
            logging.warning(f"   Authentication required ({response.status_code}) for {url}")
            raise AuthRequiredError(url, response.status_code)
        if not 200 <= response.status_code < 300:
            raise HttpStatusError(response.status_code, url)
        return response

    async def fetch_with_credentials(self, url: str) -> str:
        response = await self._get(url)
        return response.text

    async def fetch_json(self, url: str) -> Any:
        response = await self._get(url)
        try:
            return response.json()
        except ValueError as e:
            raise TranscriptError(ErrorCode.PARSE_ERROR, f"Invalid JSON from {url}: {e}") from e

    async def fetch_html_with_redirect_info(self, url: str) -> RedirectResult:
        response = await self._get(url)
        final_url = response.url or url
        return RedirectResult(
            html=response.text,
            final_url=final_url,
            redirected=bool(response.history) or final_url != url,
            status=response.status_code,
        )
