"""
Runtime configuration for lecture video detection and transcript extraction.

Retry, timeout and cache knobs live here so provider code keeps only the
scraping logic. Values are read from the environment (and a local .env file).
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, AliasChoices
from pydantic_settings import BaseSettings, SettingsConfigDict

# Use a browser-like User-Agent; some lecture platforms reject bare clients with 403s
BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)

# --- Fetch layer defaults ---
DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY_MS = 500
DEFAULT_MAX_DELAY_MS = 5000
DEFAULT_TIMEOUT_MS = 30000
DEFAULT_JITTER_RATIO = 0.3
DEFAULT_RETRYABLE_STATUSES = frozenset({429})

# --- Provider-level fetch defaults (Echo360 API calls) ---
PROVIDER_MAX_RETRIES = 3
PROVIDER_RETRY_DELAY_MS = 1000
PROVIDER_TIMEOUT_MS = 10000

# --- Detection ---
MAX_IFRAME_DEPTH = 3
SYLLABUS_CACHE_TTL_SECONDS = 5 * 60


class TranscriptSettings(BaseSettings):
    """Typed settings for fetch behaviour, detection and observability.

    Prefer the LECTERN_* variants; common legacy names are accepted where noted.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # --- Resilient fetch layer ---
    max_retries: int = Field(
        default=DEFAULT_MAX_RETRIES,
        validation_alias=AliasChoices("LECTERN_MAX_RETRIES", "FETCH_MAX_RETRIES"),
    )
    base_delay_ms: int = Field(
        default=DEFAULT_BASE_DELAY_MS,
        validation_alias=AliasChoices("LECTERN_BASE_DELAY_MS"),
    )
    max_delay_ms: int = Field(
        default=DEFAULT_MAX_DELAY_MS,
        validation_alias=AliasChoices("LECTERN_MAX_DELAY_MS"),
    )
    timeout_ms: int = Field(
        default=DEFAULT_TIMEOUT_MS,
        validation_alias=AliasChoices("LECTERN_TIMEOUT_MS", "FETCH_TIMEOUT_MS"),
    )
    jitter_ratio: float = Field(
        default=DEFAULT_JITTER_RATIO,
        validation_alias=AliasChoices("LECTERN_JITTER_RATIO"),
    )
    retry_on_server_error: bool = Field(
        default=True,
        validation_alias=AliasChoices("LECTERN_RETRY_ON_SERVER_ERROR"),
    )
    retry_on_network_error: bool = Field(
        default=True,
        validation_alias=AliasChoices("LECTERN_RETRY_ON_NETWORK_ERROR"),
    )
    retry_on_timeout: bool = Field(
        default=True,
        validation_alias=AliasChoices("LECTERN_RETRY_ON_TIMEOUT"),
    )

    # --- Provider API calls ---
    provider_timeout_ms: int = Field(
        default=PROVIDER_TIMEOUT_MS,
        validation_alias=AliasChoices("LECTERN_PROVIDER_TIMEOUT_MS"),
    )
    provider_retry_delay_ms: int = Field(
        default=PROVIDER_RETRY_DELAY_MS,
        validation_alias=AliasChoices("LECTERN_PROVIDER_RETRY_DELAY_MS"),
    )

    # --- Detection / caching ---
    syllabus_cache_ttl_seconds: float = Field(
        default=SYLLABUS_CACHE_TTL_SECONDS,
        validation_alias=AliasChoices("LECTERN_SYLLABUS_CACHE_TTL_SECONDS"),
    )
    max_iframe_depth: int = Field(
        default=MAX_IFRAME_DEPTH,
        validation_alias=AliasChoices("LECTERN_MAX_IFRAME_DEPTH"),
    )
    user_agent: str = Field(
        default=BROWSER_USER_AGENT,
        validation_alias=AliasChoices("LECTERN_USER_AGENT"),
    )

    # --- Observability ---
    log_level: str = Field(
        default="INFO",
        validation_alias=AliasChoices("LECTERN_LOG_LEVEL", "LOG_LEVEL"),
    )
    sentry_dsn: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("LECTERN_SENTRY_DSN", "SENTRY_DSN"),
    )
    sentry_environment: str = Field(
        default="production",
        validation_alias=AliasChoices("LECTERN_SENTRY_ENVIRONMENT", "SENTRY_ENVIRONMENT"),
    )
    sentry_traces_sample_rate: float = Field(
        default=0.1,
        validation_alias=AliasChoices("LECTERN_SENTRY_TRACES_SAMPLE_RATE", "SENTRY_TRACES_SAMPLE_RATE"),
    )


@lru_cache(maxsize=1)
def get_settings() -> TranscriptSettings:
    return TranscriptSettings()


# Instantiate settings once for module-level access
SETTINGS = get_settings()
