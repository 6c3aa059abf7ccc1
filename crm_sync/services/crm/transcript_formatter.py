"""
Render meeting transcripts as text for AI prompts.

Transcripts arrive as a list of segments, optionally wrapped in
{"data": [...]}:

    {"speaker": "John", "words": [{"text": "Hello", "start_timestamp": 5.0}]}

and are rendered one line per segment as "[MM:SS] Speaker: text".
"""

from typing import Any

UNKNOWN_SPEAKER = "Unknown Speaker"


def _segments(transcript: Any) -> list[dict]:
    if isinstance(transcript, dict):
        transcript = transcript.get("data")
    if not isinstance(transcript, list):
        return []
    return [segment for segment in transcript if isinstance(segment, dict)]


def extract_seconds(word: Any) -> float:
    """Seconds offset of a word: relative, start_timestamp, or a bare number."""
    if isinstance(word, bool):
        return 0
    if isinstance(word, int | float):
        return word
    if isinstance(word, dict):
        for key in ("relative", "start_timestamp"):
            value = word.get(key)
            if isinstance(value, int | float) and not isinstance(value, bool):
                return value
    return 0


def seconds_to_timestamp(seconds: float) -> str:
    """
    >>> seconds_to_timestamp(125)
    '02:05'
    """
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes:02d}:{secs:02d}"


def segment_to_text(segment: dict) -> str:
    words = segment.get("words") or []
    return " ".join(str(word.get("text") or "") for word in words if isinstance(word, dict))


def format_for_prompt(transcript: Any) -> str:
    lines = []
    for segment in _segments(transcript):
        speaker = segment.get("speaker") or UNKNOWN_SPEAKER
        words = segment.get("words") or []
        timestamp = seconds_to_timestamp(extract_seconds(words[0])) if words else "00:00"
        lines.append(f"[{timestamp}] {speaker}: {segment_to_text(segment)}")
    return "\n".join(lines)
