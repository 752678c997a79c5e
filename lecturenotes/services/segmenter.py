"""
Transcript segmenter.

Splits a (normalized) transcript into segments that are sent to the LLM
independently for chapter proposal.

Timestamped transcripts are cut on a fixed time grid; transcripts without
any timestamp are packed paragraph by paragraph into a character budget.
Segments are in-memory only and are never persisted.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass

# First timestamp on a line: [MM:SS], MM:SS, [HH:MM:SS], H:MM:SS ...
LINE_TIME_RE = re.compile(r"\[?(\d{1,2}:\d{2}(?::\d{2})?)\]?")

# Lines of context kept before the first line of a window.
CONTEXT_LINES = 2
# Extra time after the last observed timestamp.
BUFFER_SECONDS = 60


@dataclass
class Segment:
    index: int
    text: str
    start_line: int  # inclusive line offsets into the source transcript
    end_line: int
    start_time: str = ""  # empty for character-budget segments
    end_time: str = ""
    start_seconds: int = 0
    end_seconds: int = 0

    @property
    def has_timestamps(self) -> bool:
        return bool(self.start_time and self.end_time)


# ----------------------------
# Time helpers
# ----------------------------

def parse_time(time_str: str | None) -> int:
    """``MM:SS`` / ``HH:MM:SS`` (1 or 2 digit parts, optional brackets) to seconds.

    Anything unparseable is 0.
    """
    if not time_str:
        return 0
    parts = time_str.strip().strip("[]").split(":")
    try:
        nums = [int(p) for p in parts]
    except ValueError:
        return 0
    if len(nums) == 3:
        return nums[0] * 3600 + nums[1] * 60 + nums[2]
    if len(nums) == 2:
        return nums[0] * 60 + nums[1]
    return 0


def format_time(total_seconds: float) -> str:
    """Seconds to ``M:SS`` or ``H:MM:SS``."""
    total = max(0, int(total_seconds))
    hours, rem = divmod(total, 3600)
    minutes, seconds = divmod(rem, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"


def find_timestamps(lines: list[str]) -> list[tuple[int, int]]:
    """Return ``(line_index, seconds)`` for every line carrying a timestamp."""
    found = []
    for i, line in enumerate(lines):
        match = LINE_TIME_RE.search(line)
        if match:
            found.append((i, parse_time(match.group(1))))
    return found


def has_timestamps(text: str) -> bool:
    return LINE_TIME_RE.search(text) is not None


# ----------------------------
# Segmentation
# ----------------------------

def split_by_time(
    lines: list[str],
    timestamps: list[tuple[int, int]],
    window_minutes: int = 30,
) -> list[Segment]:
    window = window_minutes * 60
    last_time = max(t for _, t in timestamps)
    count = math.ceil(last_time / window)

    segments: list[Segment] = []
    for n in range(count):
        win_start = n * window
        win_end = min((n + 1) * window, last_time + BUFFER_SECONDS)

        if n == 0:
            start_line = 0
        else:
            first = next((i for i, t in timestamps if t >= win_start), 0)
            start_line = max(0, first - CONTEXT_LINES)
        # The first line at or past the window end closes the segment.
        end_line = next((i for i, t in timestamps if t >= win_end), len(lines) - 1)
        if end_line < start_line:
            end_line = start_line

        text = "\n".join(lines[start_line:end_line + 1])
        if not text.strip():
            continue
        segments.append(
            Segment(
                index=len(segments),
                text=text,
                start_line=start_line,
                end_line=end_line,
                start_time=format_time(win_start),
                end_time=format_time(win_end),
                start_seconds=win_start,
                end_seconds=win_end,
            )
        )
    return segments


def _paragraphs(lines: list[str]) -> list[tuple[int, int, str]]:
    """Blank-line delimited paragraphs as ``(first_line, last_line, text)``."""
    paras = []
    start = None
    for i, line in enumerate(lines + [""]):
        if line.strip():
            if start is None:
                start = i
        elif start is not None:
            paras.append((start, i - 1, "\n".join(lines[start:i]).strip()))
            start = None
    return paras


def split_by_char_count(lines: list[str], char_budget: int = 10000) -> list[Segment]:
    """Greedy paragraph packer.

    A segment only exceeds *char_budget* when a single paragraph does.
    """
    segments: list[Segment] = []
    current: list[str] = []
    current_len = 0
    first_line = last_line = 0

    def _flush() -> None:
        segments.append(
            Segment(
                index=len(segments),
                text="\n\n".join(current),
                start_line=first_line,
                end_line=last_line,
            )
        )

    for p_start, p_end, para in _paragraphs(lines):
        if current and current_len + len(para) + 2 > char_budget:
            _flush()
            current, current_len = [], 0
        if not current:
            first_line = p_start
            current_len = len(para)
        else:
            current_len += len(para) + 2
        current.append(para)
        last_line = p_end

    if current:
        _flush()
    return segments


def segment_transcript(
    transcript: str,
    window_minutes: int = 30,
    char_budget: int = 10000,
) -> list[Segment]:
    """Split *transcript* into time windows, or paragraphs when untimed.

    Always returns at least one segment; when neither method produces
    anything the whole text becomes a single segment.
    """
    lines = transcript.split("\n")
    timestamps = find_timestamps(lines)

    if timestamps:
        segments = split_by_time(lines, timestamps, window_minutes)
    else:
        segments = split_by_char_count(lines, char_budget)

    if not segments:
        return [Segment(index=0, text=transcript, start_line=0, end_line=len(lines) - 1)]
    return segments
