"""
LLM-assisted transcript correction.

The model is asked for a list of minimal edits ``{original, corrected,
reason}`` instead of a rewritten text.  An edit is applied only when its
``original`` occurs verbatim in the segment, so a hallucinated anchor can
never change the text.  On any failure the segment passes through
unchanged.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field

from lecturenotes.clients import LLMGateway
from lecturenotes.services.normalizer import TIMESTAMP_RE

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# JSON Schema
# ---------------------------------------------------------------------------

CORRECTION_SCHEMA = {
    "type": "object",
    "properties": {
        "corrections": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "original": {"type": "string", "description": "Exact text to replace (only the part that changes)"},
                    "corrected": {"type": "string", "description": "Replacement text"},
                    "reason": {"type": "string", "description": "Why: typo, mishearing, terminology, fact check ..."},
                },
                "required": ["original", "corrected", "reason"],
            },
        },
        "confidence": {"type": "number", "description": "0-1 confidence in the edits"},
    },
    "required": ["corrections"],
}

CORRECTION_SYSTEM_PROMPT = (
    "You are an expert editor and fact checker for lecture transcripts produced "
    "by speech recognition. Fix recognition errors and factual slips with the "
    "smallest possible edits.\n"
    "Rules:\n"
    "1. Never modify timestamps such as [HH:MM:SS] or [MM:SS].\n"
    "2. Use the surrounding context to fix misheard words.\n"
    "3. Spell technical terms consistently and correctly.\n"
    "4. Fact check: fix statements that are plainly wrong (wrong year, wrong "
    "name of a technology, inverted statements). Never change the speaker's "
    "opinions or subjective claims.\n"
    "5. Remove stutters and accidental repetitions.\n"
    "6. Keep the sentence structure; only smooth out broken sentences."
)

# reason substring -> stats category, first match wins
_CATEGORY_KEYWORDS = (
    ("typo", ("typo", "spelling")),
    ("mishearing", ("mishear", "misheard", "speech recognition", "transcription")),
    ("terminology", ("terminology", "term")),
    ("fact_check", ("fact",)),
)

_REPEATED_WORD_RE = re.compile(r"\b(\w+)\s+\1\b", re.IGNORECASE)
_LOWERCASE_ACRONYM_RE = re.compile(r"\b(gpt|llm|ai|api)\b")


@dataclass
class CorrectionConfig:
    enabled: bool = True
    batch_size: int = 8
    batch_delay_ms: int = 100
    max_segment_length: int = 2500
    preserve_timestamps: bool = True
    correct_technical_terms: bool = True
    correct_mishearings: bool = True
    semantic_fact_check: bool = True
    language: str = "en"


@dataclass
class CorrectionEntry:
    original: str
    corrected: str
    reason: str = ""


@dataclass
class CorrectionResult:
    original_text: str
    corrected_text: str
    # Only edits that were actually applied.
    corrections: list[CorrectionEntry] = field(default_factory=list)
    success: bool = True
    skipped: bool = False
    rejected: int = 0
    confidence: float | None = None
    error: str | None = None


def build_correction_prompt(text: str, config: CorrectionConfig) -> str:
    rules = []
    if config.preserve_timestamps:
        rules.append("- Do not touch timestamps ([HH:MM:SS] and similar).")
    if config.correct_mishearings:
        rules.append("- Fix words that were misheard by speech recognition.")
    if config.correct_technical_terms:
        rules.append("- Make technical terminology consistent.")
    if config.semantic_fact_check:
        rules.append("- Correct clear factual errors; leave opinions alone.")
    rules.append("- Each 'original' must be a phrase that occurs exactly once in the text.")

    return (
        f"Correct the following {config.language} lecture transcript excerpt.\n"
        "Do NOT return the full text. Return only the places that need a change "
        "as a JSON list. Return an empty list when nothing needs fixing.\n\n"
        "## Rules\n" + "\n".join(rules) + "\n\n"
        f"## Text\n{text}\n\n"
        '## Response format\nJSON: {"corrections": [{"original": "...", '
        '"corrected": "...", "reason": "..."}], "confidence": 0.0-1.0}'
    )


def _changes_timestamps(entry: CorrectionEntry) -> bool:
    return TIMESTAMP_RE.findall(entry.original) != TIMESTAMP_RE.findall(entry.corrected)


def apply_edits(
    text: str,
    edits: list[dict],
    preserve_timestamps: bool = True,
) -> tuple[str, list[CorrectionEntry], int]:
    """Apply each edit whose ``original`` occurs verbatim in *text*.

    Returns ``(new_text, applied, rejected_count)``.
    """
    applied: list[CorrectionEntry] = []
    rejected = 0
    for raw in edits:
        if not isinstance(raw, dict):
            rejected += 1
            continue
        entry = CorrectionEntry(
            original=raw.get("original") or "",
            corrected=raw.get("corrected") or "",
            reason=raw.get("reason") or "",
        )
        if (
            not entry.original
            or not entry.corrected
            or entry.original == entry.corrected
            or entry.original not in text
            or (preserve_timestamps and _changes_timestamps(entry))
        ):
            rejected += 1
            continue
        text = text.replace(entry.original, entry.corrected, 1)
        applied.append(entry)
    return text, applied, rejected


async def correct_segment(
    segment: str,
    gateway: LLMGateway,
    config: CorrectionConfig | None = None,
) -> CorrectionResult:
    """Correct one segment.  Never raises."""
    cfg = config or CorrectionConfig()

    if not cfg.enabled:
        return CorrectionResult(segment, segment, skipped=True)
    if not segment or not segment.strip():
        return CorrectionResult(segment or "", segment or "", skipped=True)

    head = segment[:cfg.max_segment_length]
    tail = segment[cfg.max_segment_length:]

    try:
        response = await gateway.generate_content(
            build_correction_prompt(head, cfg),
            CORRECTION_SCHEMA,
            system_prompt=CORRECTION_SYSTEM_PROMPT,
            temperature=0.3,
        )
    except Exception as exc:  # noqa: BLE001 - the segment must pass through
        response = None
        error = f"{type(exc).__name__}: {exc}"
    else:
        error = response.error

    if response is None or not response.success:
        logger.warning("Correction failed, keeping original segment: %s", error)
        return CorrectionResult(segment, segment, success=False, error=error)

    data = response.data if isinstance(response.data, dict) else {}
    corrected, applied, rejected = apply_edits(
        head, data.get("corrections") or [], cfg.preserve_timestamps
    )
    confidence = data.get("confidence")
    if not isinstance(confidence, (int, float)):
        confidence = 1.0

    return CorrectionResult(
        original_text=segment,
        corrected_text=corrected + tail,
        corrections=applied,
        rejected=rejected,
        confidence=float(confidence),
    )


async def correct_segments(
    segments: list,
    gateway: LLMGateway,
    config: CorrectionConfig | None = None,
) -> list[CorrectionResult]:
    """Correct *segments* (strings or objects with ``.text``) in parallel batches.

    Results are returned in input order.
    """
    cfg = config or CorrectionConfig()
    texts = [s if isinstance(s, str) else s.text for s in segments]
    if not cfg.enabled:
        return [CorrectionResult(t, t, skipped=True) for t in texts]

    results: list[CorrectionResult] = []
    batch_size = max(1, cfg.batch_size)
    total_batches = -(-len(texts) // batch_size)
    for start in range(0, len(texts), batch_size):
        batch = texts[start:start + batch_size]
        logger.info("Correcting batch %d/%d", start // batch_size + 1, total_batches)
        results.extend(
            await asyncio.gather(*(correct_segment(t, gateway, cfg) for t in batch))
        )
        if start + batch_size < len(texts):
            await asyncio.sleep(cfg.batch_delay_ms / 1000)
    return results


def apply_corrections(segments: list[str], results: list[CorrectionResult]) -> list[str]:
    """Corrected texts in segment order; originals when the counts disagree."""
    if len(results) != len(segments):
        logger.warning(
            "Correction count mismatch (%d results for %d segments); keeping originals",
            len(results), len(segments),
        )
        return list(segments)
    return [
        r.corrected_text if r.success else s
        for s, r in zip(segments, results)
    ]


def categorize(reason: str) -> str:
    reason = (reason or "").lower()
    for category, keywords in _CATEGORY_KEYWORDS:
        if any(k in reason for k in keywords):
            return category
    return "other"


def correction_stats(results: list[CorrectionResult] | None) -> dict:
    """Summary counts for a batch of results.  Tolerates empty input."""
    stats = {
        "total_segments": 0,
        "successful": 0,
        "failed": 0,
        "skipped": 0,
        "total_corrections": 0,
        "by_type": {"typo": 0, "mishearing": 0, "terminology": 0, "fact_check": 0, "other": 0},
        "average_confidence": 0.0,
    }
    confidences = []
    for result in results or []:
        stats["total_segments"] += 1
        if result.skipped:
            stats["skipped"] += 1
        elif not result.success:
            stats["failed"] += 1
        else:
            stats["successful"] += 1
            stats["total_corrections"] += len(result.corrections or [])
            for entry in result.corrections or []:
                stats["by_type"][categorize(entry.reason)] += 1
            if result.confidence is not None:
                confidences.append(result.confidence)
    if confidences:
        stats["average_confidence"] = sum(confidences) / len(confidences)
    return stats


def needs_correction(text: str | None) -> bool:
    """Cheap heuristic for transcripts likely to contain recognition errors."""
    if not text or len(text) < 50:
        return False
    return bool(_REPEATED_WORD_RE.search(text) or _LOWERCASE_ACRONYM_RE.search(text))


def chunk_for_correction(text: str, max_length: int = 2500) -> list[str]:
    """Pack whole lines into chunks of at most *max_length* characters.

    Joining the chunks with ``"\\n"`` gives back *text*.  A single line
    longer than *max_length* becomes its own chunk.
    """
    chunks: list[str] = []
    current: list[str] = []
    size = 0
    for line in text.split("\n"):
        extra = len(line) + (1 if current else 0)
        if current and size + extra > max_length:
            chunks.append("\n".join(current))
            current, size = [], 0
            extra = len(line)
        current.append(line)
        size += extra
    if current:
        chunks.append("\n".join(current))
    return chunks


async def correct_transcript(
    text: str,
    gateway: LLMGateway,
    config: CorrectionConfig | None = None,
) -> tuple[str, list[CorrectionResult]]:
    """Correct a whole transcript chunk by chunk; returns ``(text, results)``."""
    cfg = config or CorrectionConfig()
    chunks = chunk_for_correction(text, cfg.max_segment_length)
    results = await correct_segments(chunks, gateway, cfg)
    return "\n".join(apply_corrections(chunks, results)), results


async def quick_correct(text: str, gateway: LLMGateway, config: CorrectionConfig | None = None) -> str:
    return (await correct_segment(text, gateway, config)).corrected_text
