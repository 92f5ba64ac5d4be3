"""
Typed data model shared by detection, extraction and the CLI.

Models are immutable pydantic objects. Field names are snake_case in Python
and serialised with camelCase keys (``embedUrl``, ``errorCode`` ...) so the
output contract matches what browser hosts already consume.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class VideoProvider(str, Enum):
    PANOPTO = "panopto"
    ECHO360 = "echo360"
    YOUTUBE = "youtube"
    HTML5 = "html5"
    UNKNOWN = "unknown"


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def to_dict(self) -> Dict[str, Any]:
        """Serialise with camelCase keys, omitting unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class TrackUrl(_WireModel):
    kind: str = "subtitles"
    label: Optional[str] = None
    srclang: Optional[str] = None
    src: str


class DetectedVideo(_WireModel):
    id: str
    provider: VideoProvider
    title: str
    embed_url: str
    thumbnail_url: Optional[str] = None
    duration_ms: Optional[int] = None
    recorded_at: Optional[str] = None

    # HTML5 <video> elements
    media_url: Optional[str] = None
    dom_id: Optional[str] = None
    dom_selector: Optional[str] = None
    track_urls: Optional[List[TrackUrl]] = None
    drm_detected: Optional[bool] = None
    drm_reason: Optional[str] = None

    # Panopto
    panopto_tenant: Optional[str] = None

    # Echo360
    echo_lesson_id: Optional[str] = None
    echo_media_id: Optional[str] = None
    echo_base_url: Optional[str] = None

    @property
    def key(self) -> tuple:
        return (self.provider, self.id)


class TranscriptSegment(_WireModel):
    start_ms: int = Field(ge=0)
    end_ms: Optional[int] = None
    text: str
    speaker: Optional[str] = None
    confidence: Optional[float] = None

    @model_validator(mode="after")
    def _end_not_before_start(self) -> "TranscriptSegment":
        if self.end_ms is not None and self.end_ms < self.start_ms:
            raise ValueError(f"end_ms ({self.end_ms}) is before start_ms ({self.start_ms})")
        return self


class TranscriptResult(_WireModel):
    plain_text: str
    segments: List[TranscriptSegment] = Field(default_factory=list)
    duration_ms: Optional[int] = None

    @classmethod
    def from_segments(cls, segments: List[TranscriptSegment]) -> "TranscriptResult":
        """Build a result whose plain text and duration are derived from the segments."""
        plain_text = " ".join(segment.text for segment in segments)
        duration_ms = 0
        if segments:
            last = segments[-1]
            duration_ms = last.end_ms if last.end_ms is not None else last.start_ms
        return cls(plain_text=plain_text, segments=list(segments), duration_ms=duration_ms)


class TranscriptExtractionResult(_WireModel):
    success: bool
    transcript: Optional[TranscriptResult] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    ai_transcription_available: Optional[bool] = None

    @classmethod
    def ok(cls, transcript: TranscriptResult) -> "TranscriptExtractionResult":
        return cls(success=True, transcript=transcript)

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str,
        ai_transcription_available: Optional[bool] = None,
    ) -> "TranscriptExtractionResult":
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            ai_transcription_available=ai_transcription_available,
        )


class Echo360Context(_WireModel):
    echo_origin: str
    section_id: Optional[str] = None
    lesson_id: Optional[str] = None
    media_id: Optional[str] = None


class PanoptoInfo(_WireModel):
    tenant: str
    delivery_id: str


class IframeInfo(_WireModel):
    src: str
    title: Optional[str] = None


class DetectionContext(BaseModel):
    """Page URL, collected iframes and (optionally) the parsed page document.

    ``document`` is a BeautifulSoup tree when the page markup is available.
    Detectors must treat it as optional.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    page_url: str
    iframes: List[IframeInfo] = Field(default_factory=list)
    document: Optional[Any] = None
