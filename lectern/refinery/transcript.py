# lectern/refinery/transcript.py

import json
import logging
import math
import re
from typing import Any, Dict, List, Optional

from lectern.shared.models import TranscriptResult, TranscriptSegment

_SPEAKER_INDEX = re.compile(r"^speaker\s*(\d+)$", re.IGNORECASE)


def clean_text(value: str) -> str:
    """Collapse runs of whitespace and trim."""
    if not value:
        return ""
    return " ".join(str(value).split())


def build_transcript_result(segments: List[TranscriptSegment]) -> TranscriptResult:
    return TranscriptResult.from_segments(segments)


def build_plain_text_result(text: str) -> Optional[TranscriptResult]:
    """Wrap an untimed transcript as a single segment starting at 0."""
    plain_text = clean_text(text)
    if not plain_text:
        return None
    return build_transcript_result([TranscriptSegment(start_ms=0, end_ms=None, text=plain_text)])


def normalize_speaker(raw: Any) -> Optional[str]:
    """``speaker 0`` becomes ``Speaker``, ``speaker 3`` becomes ``Speaker 3``."""
    if not isinstance(raw, str) or not raw.strip():
        return None
    trimmed = raw.strip()
    match = _SPEAKER_INDEX.match(trimmed)
    if match:
        index = int(match.group(1))
        return "Speaker" if index == 0 else f"Speaker {index}"
    return trimmed


def _scale_confidence(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return None
    if 0 <= value <= 1:
        return float(value)
    if 1 < value <= 100:
        return value / 100
    return None


def normalize_confidence(raw: Any) -> Optional[float]:
    """Return a confidence in 0..1, accepting percentages and summary dicts."""
    if isinstance(raw, dict):
        for key in ("average", "avg", "raw", "score"):
            if raw.get(key) is not None:
                return _scale_confidence(raw.get(key))
        return None
    return _scale_confidence(raw)


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def extract_echo360_cues(payload: Any) -> Optional[List[Dict[str, Any]]]:
    """Find the cue list in an Echo360 transcript payload (``cues`` or ``contentJson.cues``)."""
    if not isinstance(payload, dict):
        return None

    cues_value = payload.get("cues")
    if not isinstance(cues_value, list) and payload.get("contentJson"):
        content_json = payload["contentJson"]
        if isinstance(content_json, str):
            try:
                content_json = json.loads(content_json)
            except ValueError as e:
                logging.debug(f"      contentJson is not valid JSON: {e}")
                return None
        cues_value = content_json.get("cues") if isinstance(content_json, dict) else None

    if not isinstance(cues_value, list):
        return None
    cues = [cue for cue in cues_value if isinstance(cue, dict)]
    if not cues and cues_value:
        return None
    return cues


def normalize_echo360_transcript_json(payload: Any) -> Optional[TranscriptResult]:
    """Convert an Echo360 JSON transcript into a ``TranscriptResult`` (None if unusable)."""
    cues = extract_echo360_cues(payload)
    if not cues:
        return None

    segments: List[TranscriptSegment] = []
    for record in cues:
        start = _number(record.get("startMs"))
        if start is None:
            start = _number(record.get("start")) or 0
        start_ms = max(0, _round_half_up(start))

        end = _number(record.get("endMs"))
        if end is None:
            end = _number(record.get("end"))
        end_ms = max(start_ms, _round_half_up(end)) if end is not None else start_ms

        content = record.get("content")
        if content is None:
            content = record.get("text")
        text = clean_text("" if content is None else str(content))
        if not text:
            continue

        segments.append(
            TranscriptSegment(
                start_ms=start_ms,
                end_ms=end_ms,
                text=text,
                speaker=normalize_speaker(record.get("speaker")),
                confidence=normalize_confidence(record.get("confidence")),
            )
        )

    return build_transcript_result(segments) if segments else None
