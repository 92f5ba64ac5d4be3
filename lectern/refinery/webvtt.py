# lectern/refinery/webvtt.py

"""
WebVTT caption parsing and formatting.

Pure text transformations: ``parse_webvtt`` turns caption files into
``TranscriptResult`` objects and ``format_as_vtt`` writes segments back out.
"""

import math
import re
from typing import List, Optional, Tuple

from lectern.shared.models import TranscriptResult, TranscriptSegment

TIMESTAMP_LINE_REGEX = re.compile(
    r"^(\d{1,2}:\d{2}(?::\d{2})?(?:\.\d{1,3})?)\s*-->\s*(\d{1,2}:\d{2}(?::\d{2})?(?:\.\d{1,3})?)"
)

# Entities commonly found in caption text; applied before the generic numeric forms
HTML_ENTITIES = {
    "&#39;": "'",
    "&#x27;": "'",
    "&apos;": "'",
    "&#34;": '"',
    "&#x22;": '"',
    "&quot;": '"',
    "&amp;": "&",
    "&#38;": "&",
    "&lt;": "<",
    "&#60;": "<",
    "&gt;": ">",
    "&#62;": ">",
    "&nbsp;": " ",
    "&#160;": " ",
    "&#8217;": "’",
    "&#8216;": "‘",
    "&#8220;": "“",
    "&#8221;": "”",
    "&#8211;": "–",
    "&#8212;": "—",
    "&#8230;": "…",
}

_DECIMAL_ENTITY = re.compile(r"&#(\d+);")
_HEX_ENTITY = re.compile(r"&#x([0-9a-fA-F]+);")
_LEADING_INT = re.compile(r"^\s*[+-]?\d+")
_LEADING_FLOAT = re.compile(r"^\s*[+-]?(?:\d+\.?\d*|\.\d+)")

_VOICE_OPEN = re.compile(r"<v[^>]*>", re.IGNORECASE)
_VOICE_CLOSE = re.compile(r"</v>", re.IGNORECASE)
_CLASS_OPEN = re.compile(r"<c[^>]*>", re.IGNORECASE)
_CLASS_CLOSE = re.compile(r"</c>", re.IGNORECASE)
_INLINE_TAGS = re.compile(r"</?(?:b|i|u|ruby|rt|lang)[^>]*>", re.IGNORECASE)

_SKIPPED_BLOCKS = ("NOTE", "STYLE")


def _char_from_code(code: int, original: str) -> str:
    try:
        return chr(code)
    except (ValueError, OverflowError):
        return original


def decode_html_entities(text: str) -> str:
    """Decode the caption entity table plus generic ``&#NNN;`` / ``&#xHHH;`` forms."""
    result = text
    for entity, char in HTML_ENTITIES.items():
        result = result.replace(entity, char)
    result = _DECIMAL_ENTITY.sub(lambda m: _char_from_code(int(m.group(1)), m.group(0)), result)
    result = _HEX_ENTITY.sub(lambda m: _char_from_code(int(m.group(1), 16), m.group(0)), result)
    return result


def _int_or_zero(value: str) -> int:
    match = _LEADING_INT.match(value)
    return int(match.group(0)) if match else 0


def _float_or_zero(value: str) -> float:
    match = _LEADING_FLOAT.match(value)
    return float(match.group(0)) if match else 0.0


def parse_vtt_timestamp(timestamp: str) -> int:
    """Parse ``HH:MM:SS.mmm`` or ``MM:SS.mmm`` into milliseconds; malformed input gives 0."""
    parts = timestamp.strip().split(":")
    if len(parts) < 2 or len(parts) > 3:
        return 0

    hours = 0
    if len(parts) == 3:
        hours = _int_or_zero(parts[0])
        minutes = _int_or_zero(parts[1])
        seconds = _float_or_zero(parts[2])
    else:
        minutes = _int_or_zero(parts[0])
        seconds = _float_or_zero(parts[1])

    total_ms = (hours * 3600 + minutes * 60 + seconds) * 1000
    return int(math.floor(total_ms + 0.5))


def strip_vtt_tags(text: str) -> str:
    """Remove voice, class and inline formatting tags, in that order."""
    result = _VOICE_CLOSE.sub("", _VOICE_OPEN.sub("", text))
    result = _CLASS_CLOSE.sub("", _CLASS_OPEN.sub("", result))
    result = _INLINE_TAGS.sub("", result)
    return result.strip()


def _skip_header_lines(lines: List[str]) -> int:
    index = 0
    while index < len(lines):
        line = lines[index].strip()
        if line == "" or line.startswith("WEBVTT") or line.startswith(_SKIPPED_BLOCKS):
            index += 1
            if line.startswith(_SKIPPED_BLOCKS):
                while index < len(lines) and lines[index].strip() != "":
                    index += 1
            continue
        break
    return index


def _parse_timestamp_line(line: str) -> Optional[Tuple[int, int]]:
    match = TIMESTAMP_LINE_REGEX.match(line)
    if not match:
        return None
    return parse_vtt_timestamp(match.group(1)), parse_vtt_timestamp(match.group(2))


def _collect_cue_text(lines: List[str], start_index: int) -> Tuple[str, int]:
    text_lines = []
    index = start_index
    while index < len(lines) and lines[index].strip() != "":
        text_lines.append(lines[index])
        index += 1
    return " ".join(text_lines), index


def _normalize_cue_text(raw_text: str) -> str:
    if not raw_text:
        return ""
    text = decode_html_entities(strip_vtt_tags(raw_text))
    return " ".join(text.split())


def _parse_segments(lines: List[str]) -> List[TranscriptSegment]:
    segments: List[TranscriptSegment] = []
    i = _skip_header_lines(lines)

    while i < len(lines):
        line = lines[i].strip()
        if not line:
            i += 1
            continue

        # Cue identifiers and stray lines are not timing lines; skip them
        timestamps = _parse_timestamp_line(line)
        if timestamps is None:
            i += 1
            continue

        start_ms, end_ms = timestamps
        raw_text, i = _collect_cue_text(lines, i + 1)
        text = _normalize_cue_text(raw_text)
        if text:
            segments.append(TranscriptSegment(start_ms=start_ms, end_ms=max(end_ms, start_ms), text=text))

    return segments


def parse_webvtt(vtt_content: str) -> TranscriptResult:
    """Parse WebVTT content into timed segments plus a plain-text rendition."""
    lines = re.split(r"\r?\n", vtt_content or "")
    return TranscriptResult.from_segments(_parse_segments(lines))


def format_vtt_timestamp(ms: int) -> str:
    ms = int(ms)
    total_seconds = ms // 1000
    hours = total_seconds // 3600
    minutes = (total_seconds % 3600) // 60
    seconds = total_seconds % 60
    millis = ms % 1000
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}.{millis:03d}"


def format_as_vtt(segments: List[TranscriptSegment]) -> str:
    """Write segments as a WebVTT document with sequential numeric cue ids."""
    lines = ["WEBVTT", ""]
    for index, segment in enumerate(segments):
        end_ms = segment.end_ms if segment.end_ms is not None else segment.start_ms
        lines.append(str(index + 1))
        lines.append(f"{format_vtt_timestamp(segment.start_ms)} --> {format_vtt_timestamp(end_ms)}")
        lines.append(segment.text)
        lines.append("")
    return "\n".join(lines)
