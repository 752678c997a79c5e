"""Per-chapter analysis text: time-range slices with a proportional fallback."""

from __future__ import annotations

import logging

from lecturenotes.services.segmenter import find_timestamps, parse_time

logger = logging.getLogger(__name__)

# Window used when the resolved range is inverted.
FALLBACK_WINDOW_LINES = 100


def extract_slice(full_text: str, start_str: str, end_str: str) -> str:
    """Return the transcript lines covering ``start_str``..``end_str``.

    - start: the latest timestamped line at or before the start time, or
      the beginning of the document when there is none.
    - end: the first timestamped line at or after the end time (included),
      or the end of the document when there is none.
    - inverted ranges fall back to ``FALLBACK_WINDOW_LINES`` lines from the
      start.

    Returns an empty string when the range cannot be located at all
    (no times given, or no timestamps in the document); callers then use
    ``proportional_slice``.
    """
    if not full_text or not (start_str or end_str):
        return ""

    lines = full_text.split("\n")
    timestamps = find_timestamps(lines)
    if not timestamps:
        return ""

    start_sec = parse_time(start_str)
    end_sec = parse_time(end_str)

    start_line = 0
    for line_idx, t in timestamps:
        if t <= start_sec:
            start_line = line_idx
        else:
            break

    end_line = len(lines) - 1
    if end_sec > 0:
        end_line = next((i for i, t in timestamps if t >= end_sec), end_line)

    if start_line > end_line:
        end_line = min(len(lines) - 1, start_line + FALLBACK_WINDOW_LINES - 1)

    return "\n".join(lines[start_line:end_line + 1])


def proportional_slice(full_text: str, index: int, total: int, overlap: int = 500) -> str:
    """The *index*-th (0-based) of *total* equal character chunks, widened by *overlap*."""
    if not full_text or total <= 0:
        return ""
    chunk = len(full_text) / total
    start = max(0, int(index * chunk) - overlap)
    end = min(len(full_text), int((index + 1) * chunk) + overlap)
    return full_text[start:end]


def resolve_analysis_text(
    full_text: str,
    start_str: str,
    end_str: str,
    index: int,
    total: int,
    min_chars: int = 100,
    overlap: int = 500,
) -> tuple[str, bool]:
    """Slice for one chapter, falling back to a proportional chunk when short.

    Returns ``(text, used_fallback)``.  ``text`` is empty only when the
    fallback also produced nothing.
    """
    text = extract_slice(full_text, start_str, end_str)
    if len(text.strip()) >= min_chars:
        return text, False

    logger.info(
        "Slice %s-%s too short (%d chars); using proportional chunk %d/%d",
        start_str or "?", end_str or "?", len(text.strip()), index + 1, total,
    )
    return proportional_slice(full_text, index, total, overlap), True
