"""
Deterministic cleanup of raw transcript text.

Steps run in a fixed order so later steps see already-cleaned input:

    line endings -> BOM -> protect timestamps -> NFC -> control chars
    -> U+FFFD -> whitespace -> trim lines -> blank lines
    -> restore timestamps -> final trim

Running ``normalize_text`` on its own output with the same config is a no-op.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field

# [00:00:00], [00:00], 00:00:00, 00:00
TIMESTAMP_RE = re.compile(r"\[?\d{1,2}:\d{2}(?::\d{2})?\]?")

# Private-use delimiters: untouched by every other step.
_PH_OPEN = "\uE000"
_PH_CLOSE = "\uE001"
_PLACEHOLDER_RE = re.compile(f"{_PH_OPEN}(\\d+){_PH_CLOSE}")
# Timestamps, plus any delimiter already in the input so it cannot pose as a placeholder.
_PROTECTED_RE = re.compile(f"{TIMESTAMP_RE.pattern}|[{_PH_OPEN}{_PH_CLOSE}]")

_BOM_RE = re.compile(r"^\ufeff+")
# C0 controls except \t \n \r
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")
# Horizontal whitespace.  U+FEFF is treated as whitespace outside position 0.
_HSPACE_RE = re.compile(r"(?:[^\S\n]|\ufeff)+")
_EDGE_SPACE_RE = re.compile(r"^[\s\ufeff]+|[\s\ufeff]+$")


@dataclass
class NormalizerConfig:
    preserve_timestamps: bool = True
    normalize_whitespace: bool = True
    remove_control_chars: bool = True
    remove_bom: bool = True
    handle_replacement_char: bool = True
    replacement: str = ""
    trim_lines: bool = True
    collapse_blank_lines: bool = True
    max_blank_lines: int = 2


@dataclass
class NormalizationResult:
    text: str
    change_log: dict[str, int] = field(default_factory=dict)
    original_length: int = 0
    normalized_length: int = 0


# ----------------------------
# Individual steps
# ----------------------------

def normalize_line_endings(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def remove_bom(text: str) -> tuple[str, int]:
    match = _BOM_RE.match(text)
    if not match:
        return text, 0
    return text[match.end():], match.end()


def protect_timestamps(text: str) -> tuple[str, list[str]]:
    """Swap every timestamp for an indexed placeholder.

    Returns the protected text and the list of originals, indexed by
    placeholder number.  Stray delimiter characters are swapped as well and
    come back unchanged on restore.
    """
    originals: list[str] = []

    def _swap(match: re.Match) -> str:
        originals.append(match.group(0))
        return f"{_PH_OPEN}{len(originals) - 1}{_PH_CLOSE}"

    return _PROTECTED_RE.sub(_swap, text), originals


def restore_timestamps(text: str, originals: list[str]) -> str:
    return _PLACEHOLDER_RE.sub(lambda m: originals[int(m.group(1))], text)


def normalize_nfc(text: str) -> str:
    return unicodedata.normalize("NFC", text)


def remove_control_characters(text: str) -> tuple[str, int]:
    return _CONTROL_RE.subn("", text)


def handle_replacement_character(text: str, replacement: str = "") -> tuple[str, int]:
    count = text.count("\ufffd")
    if not count:
        return text, 0
    return text.replace("\ufffd", replacement), count


def normalize_whitespace(text: str) -> tuple[str, int]:
    """Collapse runs of spaces/tabs to one space.  Newlines are untouched."""
    count = 0

    def _collapse(match: re.Match) -> str:
        nonlocal count
        if match.group(0) != " ":
            count += 1
        return " "

    return _HSPACE_RE.sub(_collapse, text), count


def trim_lines(text: str) -> tuple[str, int]:
    lines = text.split("\n")
    trimmed = [_EDGE_SPACE_RE.sub("", line) for line in lines]
    count = sum(1 for a, b in zip(lines, trimmed) if a != b)
    return "\n".join(trimmed), count


def collapse_blank_lines(text: str, max_blank_lines: int = 2) -> tuple[str, int]:
    max_newlines = max_blank_lines + 1
    pattern = re.compile(f"\n{{{max_newlines + 1},}}")
    count = 0

    def _collapse(match: re.Match) -> str:
        nonlocal count
        count += len(match.group(0)) - max_newlines
        return "\n" * max_newlines

    return pattern.sub(_collapse, text), count


# ----------------------------
# Entry points
# ----------------------------

def normalize_text(text: str | None, config: NormalizerConfig | None = None) -> NormalizationResult:
    """Apply every enabled step to *text* and report per-step change counts.

    Never raises on empty or ``None`` input.
    """
    if not text or not isinstance(text, str):
        return NormalizationResult(text="")

    cfg = config or NormalizerConfig()
    log = {
        "bom_removed": 0,
        "timestamps_protected": 0,
        "control_chars_removed": 0,
        "replacement_chars_handled": 0,
        "whitespace_normalized": 0,
        "lines_trimmed": 0,
        "blank_lines_collapsed": 0,
    }
    original_length = len(text)

    result = normalize_line_endings(text)

    if cfg.remove_bom:
        result, log["bom_removed"] = remove_bom(result)

    originals: list[str] | None = None
    if cfg.preserve_timestamps:
        result, originals = protect_timestamps(result)
        log["timestamps_protected"] = sum(o not in (_PH_OPEN, _PH_CLOSE) for o in originals)

    result = normalize_nfc(result)

    if cfg.remove_control_chars:
        result, log["control_chars_removed"] = remove_control_characters(result)

    if cfg.handle_replacement_char:
        result, log["replacement_chars_handled"] = handle_replacement_character(
            result, cfg.replacement
        )

    # Removing a character can bring a base letter next to a combining mark.
    if log["control_chars_removed"] or log["replacement_chars_handled"]:
        result = normalize_nfc(result)

    if cfg.normalize_whitespace:
        result, log["whitespace_normalized"] = normalize_whitespace(result)

    if cfg.trim_lines:
        result, log["lines_trimmed"] = trim_lines(result)

    if cfg.collapse_blank_lines:
        result, log["blank_lines_collapsed"] = collapse_blank_lines(
            result, cfg.max_blank_lines
        )

    if originals is not None:
        result = restore_timestamps(result, originals)

    result = _EDGE_SPACE_RE.sub("", result)

    return NormalizationResult(
        text=result,
        change_log=log,
        original_length=original_length,
        normalized_length=len(result),
    )


def normalize_batch(texts: list[str], config: NormalizerConfig | None = None) -> list[NormalizationResult]:
    return [normalize_text(t, config) for t in texts]


def quick_normalize(text: str | None) -> str:
    return normalize_text(text).text
