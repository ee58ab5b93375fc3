"""Server-Sent Events (SSE) frame splitting.

Splits a growing text buffer into complete ``event:`` / ``data:`` frames. The
parser is a pure function: the session controller owns the buffer and feeds
back the returned remainder together with the next network chunk.

Wire format::

    event: content_delta
    data: {"content": "Hel"}

    event: done
    data: {}

Frames are separated by a blank line. Anything after the last blank line is
kept as the remainder because the delimiter itself may be split across two
network chunks.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ..core.timing_logger import timed

FRAME_DELIMITER = "\n\n"
_EVENT_PREFIX = "event:"
_DATA_PREFIX = "data:"


@dataclass(frozen=True, slots=True)
class Frame:
    """One complete event-name + raw data record."""

    event_name: str
    raw_data: str


@dataclass(frozen=True, slots=True)
class ParseResult:
    """Frames extracted from a buffer plus the text still waiting for a delimiter.

    ``dropped`` counts complete, non-blank segments that were discarded because
    they lacked an event name or a data payload (comments, keep-alive padding).
    """

    frames: list[Frame] = field(default_factory=list)
    remainder: str = ""
    dropped: int = 0


def _parse_segment(segment: str) -> Frame | None:
    event_name = ""
    raw_data = ""
    for line in segment.split("\n"):
        if line.startswith(_EVENT_PREFIX):
            event_name = line[len(_EVENT_PREFIX) :].strip()
        elif line.startswith(_DATA_PREFIX):
            raw_data = line[len(_DATA_PREFIX) :]
            # Only the single conventional separator space is removed.
            if raw_data.startswith(" "):
                raw_data = raw_data[1:]
    if event_name and raw_data:
        return Frame(event_name=event_name, raw_data=raw_data)
    return None


@timed
def parse_frames(buffer: str) -> ParseResult:
    """Split ``buffer`` into complete frames and the trailing remainder.

    The last delimiter-separated segment is never treated as complete, even
    when it is empty. Complete segments missing either an ``event:`` or a
    ``data:`` line are dropped and counted in ``ParseResult.dropped``.
    """
    if not buffer:
        return ParseResult()

    segments = buffer.split(FRAME_DELIMITER)
    remainder = segments.pop()

    frames: list[Frame] = []
    dropped = 0
    for segment in segments:
        if not segment.strip():
            continue
        frame = _parse_segment(segment)
        if frame is None:
            dropped += 1
            continue
        frames.append(frame)

    return ParseResult(frames=frames, remainder=remainder, dropped=dropped)
