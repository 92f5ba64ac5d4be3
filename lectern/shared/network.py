"""
Resilient fetch layer: retries with exponential backoff, per-attempt timeouts
and caller cancellation.

Two entry points are provided:

* ``fetch_with_retry`` wraps a raw HTTP ``send`` coroutine and returns the
  response object. Non-2xx responses that are not retryable are returned as-is
  so the caller can inspect the status.
* ``fetch_text_with_retry`` / ``fetch_json_with_retry`` wrap the credentialed
  ``AsyncFetcher`` seam used by providers and retry only transient failures.

Both are built on tenacity's ``AsyncRetrying``.
"""

from __future__ import annotations

import asyncio
import email.utils
import logging
import math
import random
import re
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, FrozenSet, Optional, Tuple

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from . import config as settings_module
from .errors import (
    FetchTimeoutError,
    RequestAbortedError,
    is_auth_error,
    is_network_error,
    is_timeout_error,
)
from .observability import log_event

HTTP_UNAUTHORIZED = 401
HTTP_FORBIDDEN = 403
HTTP_NOT_FOUND = 404
HTTP_SERVER_ERROR = 500
NEVER_RETRY_STATUSES = frozenset({HTTP_UNAUTHORIZED, HTTP_FORBIDDEN, HTTP_NOT_FOUND})

_HTTP_STATUS_IN_MESSAGE = re.compile(r"\bHTTP\s+(\d{3})\b", re.IGNORECASE)


@dataclass(frozen=True)
class RetryEvent:
    attempt: int
    max_retries: int
    delay_ms: int
    status: Optional[int] = None
    error: Optional[BaseException] = None


@dataclass
class RetryConfig:
    max_retries: int = settings_module.DEFAULT_MAX_RETRIES
    base_delay_ms: int = settings_module.DEFAULT_BASE_DELAY_MS
    max_delay_ms: int = settings_module.DEFAULT_MAX_DELAY_MS
    timeout_ms: int = settings_module.DEFAULT_TIMEOUT_MS
    retryable_statuses: FrozenSet[int] = field(default_factory=lambda: settings_module.DEFAULT_RETRYABLE_STATUSES)
    retry_on_server_error: bool = True
    retry_on_network_error: bool = True
    retry_on_timeout: bool = True
    jitter_ratio: float = settings_module.DEFAULT_JITTER_RATIO
    on_retry: Optional[Callable[[RetryEvent], None]] = None
    context: Optional[str] = None
    # Injectable for tests; receives seconds like asyncio.sleep
    sleep: Optional[Callable[[float], Awaitable[None]]] = None

    @classmethod
    def from_settings(cls, settings: Optional[settings_module.TranscriptSettings] = None, **overrides: Any) -> "RetryConfig":
        settings = settings or settings_module.get_settings()
        values = dict(
            max_retries=settings.max_retries,
            base_delay_ms=settings.base_delay_ms,
            max_delay_ms=settings.max_delay_ms,
            timeout_ms=settings.timeout_ms,
            retry_on_server_error=settings.retry_on_server_error,
            retry_on_network_error=settings.retry_on_network_error,
            retry_on_timeout=settings.retry_on_timeout,
            jitter_ratio=settings.jitter_ratio,
        )
        values.update(overrides)
        return cls(**values)


# --- Backoff / classification helpers ---

def calculate_backoff_delay(
    base_delay_ms: float,
    max_delay_ms: float,
    attempt: int,
    jitter_ratio: float = settings_module.DEFAULT_JITTER_RATIO,
) -> int:
    """Exponential backoff capped at ``max_delay_ms`` plus up to ``jitter_ratio`` extra."""
    exponential_delay = base_delay_ms * math.pow(2, attempt)
    capped_delay = min(exponential_delay, max_delay_ms)
    jitter = capped_delay * random.random() * jitter_ratio
    return int(math.floor(capped_delay + jitter))


def calculate_retry_delay(attempt: int, config: RetryConfig) -> int:
    return calculate_backoff_delay(config.base_delay_ms, config.max_delay_ms, attempt, config.jitter_ratio)


def parse_retry_after_ms(headers: Any, now: Optional[float] = None) -> Optional[int]:
    """Parse a Retry-After header (delta-seconds or HTTP-date) into milliseconds."""
    if headers is None:
        return None
    value = headers.get("retry-after") if hasattr(headers, "get") else None
    if value is None and hasattr(headers, "get"):
        value = headers.get("Retry-After")
    if value is None:
        return None
    value = str(value).strip()
    if not value:
        return None

    try:
        seconds = float(value)
    except ValueError:
        seconds = None
    if seconds is not None and not math.isnan(seconds):
        return int(max(0.0, seconds * 1000))

    try:
        retry_at = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if retry_at is None:
        return None
    current = time.time() if now is None else now
    return int(max(0.0, (retry_at.timestamp() - current) * 1000))


def is_retryable_status(status: int, config: RetryConfig) -> bool:
    if status == 0:
        return False
    if status in NEVER_RETRY_STATUSES:
        return False
    if status in config.retryable_statuses:
        return True
    if config.retry_on_server_error and status >= HTTP_SERVER_ERROR:
        return True
    return False


def should_retry_error(error: BaseException, config: RetryConfig) -> bool:
    if isinstance(error, RequestAbortedError):
        return False
    if is_auth_error(error):
        return False
    if is_timeout_error(error):
        return config.retry_on_timeout
    if is_network_error(error):
        return config.retry_on_network_error
    return False


def _status_of(response: Any) -> int:
    status = getattr(response, "status_code", None)
    if status is None:
        status = getattr(response, "status", 0)
    return int(status or 0)


def _is_success(response: Any) -> bool:
    return 200 <= _status_of(response) < 300


# --- Generic fetch wrapper ---

async def _run_attempt(
    send: Callable[[str], Awaitable[Any]],
    url: str,
    config: RetryConfig,
    cancel_event: Optional[asyncio.Event],
) -> Any:
    """Race one ``send`` call against the attempt timeout and the caller's cancel event."""
    if cancel_event is not None and cancel_event.is_set():
        raise RequestAbortedError()

    request = asyncio.ensure_future(send(url))
    waiters = {request}
    cancel_waiter = None
    if cancel_event is not None:
        cancel_waiter = asyncio.ensure_future(cancel_event.wait())
        waiters.add(cancel_waiter)

    timeout = config.timeout_ms / 1000 if config.timeout_ms and config.timeout_ms > 0 else None
    try:
        done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
    finally:
        if cancel_waiter is not None:
            cancel_waiter.cancel()
        if not request.done():
            request.cancel()

    if request in done:
        return request.result()

    if cancel_waiter is not None and cancel_waiter in done:
        raise RequestAbortedError()
    raise FetchTimeoutError(config.context or "network request", config.timeout_ms)


def _wait_for(config: RetryConfig) -> Callable[[RetryCallState], float]:
    def wait(retry_state: RetryCallState) -> float:
        outcome = retry_state.outcome
        if outcome is not None and not outcome.failed:
            retry_after_ms = parse_retry_after_ms(getattr(outcome.result(), "headers", None))
            if retry_after_ms is not None:
                return retry_after_ms / 1000
        return calculate_retry_delay(retry_state.attempt_number - 1, config) / 1000

    return wait


def _notify_retry(config: RetryConfig) -> Callable[[RetryCallState], None]:
    def before_sleep(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        delay_ms = int(round(retry_state.next_action.sleep * 1000)) if retry_state.next_action else 0
        status = None
        error = None
        if outcome is not None and outcome.failed:
            error = outcome.exception()
        elif outcome is not None:
            status = _status_of(outcome.result())
        logging.info(
            f"   Retrying {config.context or 'request'} (attempt {retry_state.attempt_number}/{config.max_retries}) "
            f"in {delay_ms}ms; status={status} error={error}"
        )
        if config.on_retry is not None:
            config.on_retry(
                RetryEvent(
                    attempt=retry_state.attempt_number,
                    max_retries=config.max_retries,
                    delay_ms=delay_ms,
                    status=status,
                    error=error,
                )
            )

    return before_sleep


def _last_outcome(retry_state: RetryCallState) -> Any:
    # Attempts exhausted: hand back the last response, or re-raise the last error
    outcome = retry_state.outcome
    if outcome.failed:
        raise outcome.exception()
    return outcome.result()


async def fetch_with_retry(
    url: str,
    send: Callable[[str], Awaitable[Any]],
    config: Optional[RetryConfig] = None,
    cancel_event: Optional[asyncio.Event] = None,
) -> Any:
    """Call ``send(url)`` with retries, returning the final response object.

    Responses must expose ``status_code`` (or ``status``) and ``headers``.
    401/403/404 are never retried. A set ``cancel_event`` aborts immediately
    with ``RequestAbortedError``; an attempt timeout raises
    ``FetchTimeoutError`` internally and is retried when configured.
    """
    config = config or RetryConfig()
    if cancel_event is not None and cancel_event.is_set():
        raise RequestAbortedError()

    def retryable_response(response: Any) -> bool:
        return not _is_success(response) and is_retryable_status(_status_of(response), config)

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(0, config.max_retries) + 1),
        retry=retry_if_exception(lambda error: should_retry_error(error, config)) | retry_if_result(retryable_response),
        wait=_wait_for(config),
        before_sleep=_notify_retry(config),
        retry_error_callback=_last_outcome,
        sleep=config.sleep or asyncio.sleep,
    )
    return await retrying(_run_attempt, send, url, config, cancel_event)


# --- Provider-level retry around the AsyncFetcher seam ---

def _error_status(error: BaseException) -> Optional[int]:
    status = getattr(error, "status", None)
    if isinstance(status, int):
        return status
    match = _HTTP_STATUS_IN_MESSAGE.search(str(error))
    return int(match.group(1)) if match else None


def is_retryable_provider_error(error: BaseException) -> bool:
    """Transient failures only: never auth failures or other 4xx responses."""
    if isinstance(error, RequestAbortedError) or is_auth_error(error):
        return False
    status = _error_status(error)
    if status is not None and 400 <= status < 500:
        return False
    if is_timeout_error(error):
        return True
    return is_network_error(error)


async def _fetch_via_fetcher(
    fetcher: Any,
    url: str,
    *,
    response_type: str,
    request_id: str,
    context: str,
    max_retries: Optional[int] = None,
    retry_delay_ms: Optional[int] = None,
    timeout_ms: Optional[int] = None,
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
) -> Any:
    settings = settings_module.get_settings()
    max_retries = settings_module.PROVIDER_MAX_RETRIES if max_retries is None else max_retries
    retry_delay_ms = settings.provider_retry_delay_ms if retry_delay_ms is None else retry_delay_ms
    timeout_ms = settings.provider_timeout_ms if timeout_ms is None else timeout_ms

    async def attempt() -> Any:
        call = fetcher.fetch_json(url) if response_type == "json" else fetcher.fetch_with_credentials(url)
        try:
            return await asyncio.wait_for(call, timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            log_event(logging.WARNING, request_id, "Request timed out", url=url, context=context, timeout_ms=timeout_ms)
            raise FetchTimeoutError(f"{context}", timeout_ms)

    def before_sleep(retry_state: RetryCallState) -> None:
        log_event(
            logging.INFO,
            request_id,
            "Retrying request",
            url=url,
            context=context,
            attempt=retry_state.attempt_number,
            max_retries=max_retries,
            delay_ms=int(round(retry_state.next_action.sleep * 1000)),
            error=str(retry_state.outcome.exception()),
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_retries + 1),
        retry=retry_if_exception(is_retryable_provider_error),
        wait=wait_exponential(multiplier=retry_delay_ms / 1000, exp_base=2),
        before_sleep=before_sleep,
        sleep=sleep or asyncio.sleep,
        reraise=True,
    )
    try:
        return await retrying(attempt)
    except Exception as error:
        if is_retryable_provider_error(error):
            log_event(
                logging.WARNING,
                request_id,
                "Retry limit reached",
                url=url,
                context=context,
                max_retries=max_retries,
                error=str(error),
            )
        raise


async def fetch_text_with_retry(fetcher: Any, url: str, request_id: str, context: str = "request", **options: Any) -> str:
    return await _fetch_via_fetcher(fetcher, url, response_type="text", request_id=request_id, context=context, **options)


async def fetch_json_with_retry(fetcher: Any, url: str, request_id: str, context: str = "request", **options: Any) -> Any:
    return await _fetch_via_fetcher(fetcher, url, response_type="json", request_id=request_id, context=context, **options)


async def fetch_html_with_redirect(fetcher: Any, url: str) -> Tuple[str, str]:
    """Fetch HTML and report the final URL when the fetcher can track redirects."""
    redirect_fetch = getattr(fetcher, "fetch_html_with_redirect_info", None)
    if callable(redirect_fetch):
        result = await redirect_fetch(url)
        return result.html, result.final_url or url
    html = await fetcher.fetch_with_credentials(url)
    return html, url
