import re
from dataclasses import dataclass

_CUE_RE = re.compile(r"((?:\d{2}:)?\d{2}:\d{2})\.\d{3} --> ((?:\d{2}:)?\d{2}:\d{2})\.\d{3}")
_PARAGRAPH_SPLIT_RE = re.compile(r"\n\s*\n")


@dataclass
class CaptionLine:
    start: str  # HH:MM:SS or MM:SS, empty for raw text
    end: str
    text: str


def parse_vtt(content: str) -> list[CaptionLine]:
    """Parse WebVTT captions into one line per cue.

    Content without a ``WEBVTT`` header and without any ``-->`` arrow is
    treated as raw text (see ``parse_raw_text``), as is VTT that yields
    no cues.
    """
    lines = content.replace("\r\n", "\n").split("\n")
    is_vtt = bool(lines) and "WEBVTT" in lines[0]
    if not is_vtt and "-->" not in content:
        return parse_raw_text(content)

    result: list[CaptionLine] = []
    start = end = None
    text_parts: list[str] = []

    for i, raw in enumerate(lines):
        line = raw.strip()
        if not line or line == "WEBVTT":
            continue

        match = _CUE_RE.search(line)
        if match:
            start, end = match.group(1), match.group(2)
            text_parts = []
            continue
        if start is None:
            continue  # header metadata, NOTE blocks before the first cue
        if line.isdigit() and not text_parts:
            continue  # numeric cue identifier

        text_parts.append(line)
        next_line = lines[i + 1].strip() if i + 1 < len(lines) else ""
        if not next_line or _CUE_RE.search(next_line):
            result.append(CaptionLine(start=start, end=end, text=" ".join(text_parts)))
            start = end = None
            text_parts = []

    return result or parse_raw_text(content)


def parse_raw_text(content: str) -> list[CaptionLine]:
    """One line per blank-line separated paragraph, without times."""
    return [
        CaptionLine(start="", end="", text=p.strip())
        for p in _PARAGRAPH_SPLIT_RE.split(content)
        if p.strip()
    ]


def captions_to_text(lines: list[CaptionLine]) -> str:
    """Render caption lines as ``[HH:MM:SS] text`` transcript lines."""
    return "\n".join(f"[{l.start}] {l.text}" if l.start else l.text for l in lines)


def looks_like_vtt(content: str) -> bool:
    return content.lstrip("\ufeff").startswith("WEBVTT") or "-->" in content


def transcript_from_upload(content: str) -> str:
    """Transcript text for an uploaded file: VTT cues become ``[start] text``
    lines, anything else is used as is."""
    if looks_like_vtt(content):
        return captions_to_text(parse_vtt(content))
    return content
