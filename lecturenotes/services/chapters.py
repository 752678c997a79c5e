"""
Chapter orchestration: transcript -> chapters -> deep dives -> final summary.

Two concurrency regimes:

- chapter proposal runs segments in bounded parallel batches
  (``chapter_batch_size`` calls at once, ``chapter_batch_delay_ms`` between
  batches);
- deep dives run strictly one chapter at a time, because each prompt is
  seeded with a short context from the previous completed chapter.

Background entry points (``process_chapters``, ``continue_processing``)
never raise.  Every failure ends up as a chapter ``error`` status or an
``error`` notification; the store is the source of truth.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from lecturenotes.clients import LLMGateway
from lecturenotes.config import Settings
from lecturenotes.database import LectureStore, chapter_id_for, new_lecture_id
from lecturenotes.errors import LectureBusyError, LectureNotesError, PreconditionError
from lecturenotes.models import (
    Chapter,
    ChapterEvent,
    ChapterStatus,
    DeepDiveResult,
    FinalSummary,
    KeyTerm,
    Lecture,
    LectureMetadata,
    transition,
)
from lecturenotes.services import prompts
from lecturenotes.services.corrector import (
    CorrectionConfig,
    correct_transcript,
    correction_stats,
)
from lecturenotes.services.normalizer import normalize_text
from lecturenotes.services.notifications import NotificationHub
from lecturenotes.services.segmenter import Segment, has_timestamps, parse_time, segment_transcript
from lecturenotes.services.slicer import resolve_analysis_text

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Untitled lecture"


@dataclass
class ChapterProposal:
    title: str
    start_time: str = ""
    end_time: str = ""
    summary: str = ""
    key_topics: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "ChapterProposal":
        return cls(
            title=str(data.get("title", "")).strip(),
            start_time=str(data.get("startTime") or "").strip(),
            end_time=str(data.get("endTime") or "").strip(),
            summary=data.get("summary") or "",
            key_topics=[str(t) for t in data.get("keyTopics") or []],
        )

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "summary": self.summary,
            "keyTopics": self.key_topics,
        }


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def merge_chapter_proposals(
    proposals: list[list[ChapterProposal]],
    timestamped: bool,
    window_seconds: int = 120,
) -> list[ChapterProposal]:
    """Flatten per-segment proposals (in segment order) into one chapter list.

    Timestamped transcripts: a proposal whose start lies strictly within
    *window_seconds* of an already accepted start is dropped, then the
    result is sorted by start time.  Untimed transcripts keep submission
    order with no de-duplication.
    """
    flat = [p for segment in proposals for p in segment]
    if not timestamped:
        return flat

    accepted: list[ChapterProposal] = []
    starts: list[int] = []
    for proposal in flat:
        start = parse_time(proposal.start_time)
        if any(abs(start - s) < window_seconds for s in starts):
            continue
        accepted.append(proposal)
        starts.append(start)
    accepted.sort(key=lambda p: parse_time(p.start_time))
    return accepted


def fallback_proposals(segments: list[Segment]) -> list[ChapterProposal]:
    """One chapter per segment, used when no segment produced any chapter."""
    return [
        ChapterProposal(
            title=f"Part {seg.index + 1}",
            start_time=seg.start_time,
            end_time=seg.end_time,
        )
        for seg in segments
    ]


def context_summary(chapter: Chapter, result: DeepDiveResult, limit: int = 600) -> str:
    """Short carry-forward context for the next chapter's prompt."""
    text = f"Chapter {chapter.chapter_number} ({chapter.title}): {result.key_message}"
    if result.key_takeaways:
        text += " Takeaways: " + "; ".join(result.key_takeaways)
    return text[:limit]


def collect_glossary(results: list[DeepDiveResult]) -> list[KeyTerm]:
    """Key terms across chapters, keyed case-insensitively; first one wins."""
    seen: dict[str, KeyTerm] = {}
    for result in results:
        for term in result.key_terms:
            key = term.term.strip().lower()
            if key and key not in seen:
                seen[key] = term
    return list(seen.values())


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class ChapterOrchestrator:
    """Drives one lecture through the pipeline.

    All collaborators are passed in; nothing here is module-global.
    """

    def __init__(
        self,
        store: LectureStore,
        gateway: LLMGateway,
        hub: NotificationHub,
        settings: Settings,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.hub = hub
        self.settings = settings
        self._sleep = sleep
        self._active: set[str] = set()

    def is_processing(self, lecture_id: str) -> bool:
        return lecture_id in self._active

    def _notify(self, lecture_id: str, event: str, **payload) -> None:
        self.hub.publish(lecture_id, event, payload)

    # ------------------------------------------------------------------
    # Ingestion (steps 1-6)
    # ------------------------------------------------------------------

    async def create_lecture(
        self,
        transcript: str,
        *,
        title: str | None = None,
        metadata: LectureMetadata | None = None,
    ) -> tuple[Lecture, list[Chapter]]:
        """Normalize, segment, propose and merge chapters, then persist.

        Returns the stored lecture and its ``pending`` chapters; the deep
        dives are left to ``process_chapters``.
        """
        text = normalize_text(transcript).text
        if not text:
            raise PreconditionError("Transcript is empty")

        lecture_id = new_lecture_id()
        logger.info("[%s] Starting analysis (%d chars)", lecture_id, len(text))

        original_text = None
        ledger: list[dict] = []
        stats = None
        if self.settings.correction_enabled:
            original_text = text
            text, results = await correct_transcript(text, self.gateway, self._correction_config())
            ledger = [
                {"segment": i, "original": e.original, "corrected": e.corrected, "reason": e.reason}
                for i, r in enumerate(results)
                for e in r.corrections
            ]
            stats = correction_stats(results)
            logger.info(
                "[%s] Correction applied %d edit(s), %d segment(s) failed",
                lecture_id, stats["total_corrections"], stats["failed"],
            )

        segments = segment_transcript(
            text, self.settings.segment_minutes, self.settings.segment_char_budget
        )
        logger.info("[%s] Split into %d segment(s)", lecture_id, len(segments))

        proposals = await self.propose_chapters(lecture_id, segments)
        merged = merge_chapter_proposals(
            proposals, has_timestamps(text), self.settings.duplicate_window_seconds
        )
        if not merged:
            logger.warning("[%s] No chapters proposed; using one chapter per segment", lecture_id)
            merged = fallback_proposals(segments)
        logger.info("[%s] Total chapters after merge: %d", lecture_id, len(merged))

        generated = await self.generate_title(lecture_id, merged, text)
        meta = metadata or LectureMetadata()
        lecture = await self.store.create_lecture(
            Lecture(
                id=lecture_id,
                title=title or generated["title"],
                raw_text=text,
                overview=generated["overview"],
                original_text=original_text,
                corrections=ledger,
                correction_stats=stats,
                metadata=LectureMetadata(
                    author=meta.author or generated["author"],
                    source_url=meta.source_url,
                    tags=meta.tags or generated["tags"],
                    memo=meta.memo,
                ),
            )
        )

        await self.store.create_chapters(
            [
                Chapter(
                    id=chapter_id_for(lecture_id, n),
                    lecture_id=lecture_id,
                    chapter_number=n,
                    title=p.title or f"Chapter {n}",
                    start_time=p.start_time,
                    end_time=p.end_time,
                    summary=p.summary,
                    key_topics=p.key_topics,
                )
                for n, p in enumerate(merged, start=1)
            ]
        )
        chapters = await self.store.list_chapters(lecture_id)
        self._notify(lecture_id, "status", message=f"{len(chapters)} chapters created")
        return lecture, chapters

    def _correction_config(self) -> CorrectionConfig:
        return CorrectionConfig(
            enabled=True,
            batch_size=self.settings.correction_batch_size,
            batch_delay_ms=self.settings.correction_batch_delay_ms,
            max_segment_length=self.settings.correction_max_segment_length,
        )

    async def propose_chapters(
        self, lecture_id: str, segments: list[Segment]
    ) -> list[list[ChapterProposal]]:
        """Chapter proposals per segment, in segment order."""
        size = max(1, self.settings.chapter_batch_size)
        total_batches = -(-len(segments) // size)
        results: list[list[ChapterProposal]] = []
        for start in range(0, len(segments), size):
            batch = segments[start:start + size]
            logger.info(
                "[%s] Processing batch %d/%d (segments %d-%d)",
                lecture_id, start // size + 1, total_batches, start, start + len(batch) - 1,
            )
            results.extend(
                await asyncio.gather(
                    *(self._propose_segment(lecture_id, seg, len(segments)) for seg in batch)
                )
            )
            if start + size < len(segments):
                await self._sleep(self.settings.chapter_batch_delay_ms / 1000)
        return results

    async def _propose_segment(
        self, lecture_id: str, segment: Segment, total: int
    ) -> list[ChapterProposal]:
        prompt = prompts.segment_chapter_prompt(
            segment.text, segment.index, total, segment.start_time, segment.end_time
        )
        try:
            response = await self.gateway.generate_content(
                prompt,
                prompts.SEGMENT_CHAPTER_SCHEMA,
                system_prompt=prompts.CHAPTER_SYSTEM_MESSAGE,
            )
        except Exception as exc:  # noqa: BLE001 - a segment contributes zero chapters
            logger.warning("[%s] Segment %d error: %s", lecture_id, segment.index, exc)
            return []
        if not response.success or not isinstance(response.data, dict):
            logger.warning("[%s] Segment %d error: %s", lecture_id, segment.index, response.error)
            return []

        chapters = [
            ChapterProposal.from_dict(c)
            for c in response.data.get("chapters") or []
            if isinstance(c, dict) and c.get("title")
        ]
        logger.info("[%s] Segment %d: %d chapters found", lecture_id, segment.index, len(chapters))
        return chapters

    async def generate_title(
        self, lecture_id: str, chapters: list[ChapterProposal], text: str
    ) -> dict:
        """Best-effort title/overview/author/tags; placeholders on failure."""
        generated = {"title": DEFAULT_TITLE, "overview": "", "author": "", "tags": []}
        prompt = prompts.title_prompt(
            [c.to_dict() for c in chapters], text[:self.settings.title_excerpt_chars]
        )
        try:
            response = await self.gateway.generate_content(prompt, prompts.TITLE_SCHEMA)
        except Exception as exc:  # noqa: BLE001
            logger.warning("[%s] Title generation error: %s", lecture_id, exc)
            return generated
        if not response.success or not isinstance(response.data, dict):
            logger.warning("[%s] Title generation error: %s", lecture_id, response.error)
            return generated

        data = response.data
        generated["title"] = str(data.get("title") or DEFAULT_TITLE)
        generated["overview"] = str(data.get("overview") or "")
        generated["author"] = str(data.get("author") or "")
        generated["tags"] = [str(t) for t in data.get("tags") or []]
        return generated

    # ------------------------------------------------------------------
    # Deep dive (step 7)
    # ------------------------------------------------------------------

    async def process_chapters(self, lecture_id: str) -> None:
        """Sequential deep dive over every non-completed chapter, then the
        final summary when at least one chapter is completed."""
        if lecture_id in self._active:
            logger.warning("[%s] Already processing; ignoring request", lecture_id)
            return
        self._active.add(lecture_id)
        try:
            await self._process(lecture_id)
        except Exception as exc:  # noqa: BLE001 - background entry point
            logger.exception("[%s] Processing aborted", lecture_id)
            self._notify(lecture_id, "error", message=str(exc))
        finally:
            self._active.discard(lecture_id)

    async def _process(self, lecture_id: str) -> None:
        lecture = await self.store.get_lecture(lecture_id)
        chapters = await self.store.list_chapters(lecture_id)
        total = len(chapters)
        logger.info("[%s] Background analysis started (%d chapters)", lecture_id, total)

        context = ""
        for index, chapter in enumerate(chapters):
            if chapter.status == ChapterStatus.COMPLETED:
                if chapter.result:
                    context = context_summary(
                        chapter, chapter.result, self.settings.context_summary_chars
                    )
                continue

            self._notify(
                lecture_id, "progress",
                message=f"Analyzing chapter {index + 1}/{total}",
                chapterId=chapter.id, title=chapter.title, current=index + 1, total=total,
            )
            result = await self._deep_dive(lecture, chapter, index, total, context, ChapterEvent.START)
            if result is not None:
                context = context_summary(chapter, result, self.settings.context_summary_chars)

        chapters = await self.store.list_chapters(lecture_id)
        completed = sum(c.status == ChapterStatus.COMPLETED for c in chapters)
        failed = sum(c.status == ChapterStatus.ERROR for c in chapters)

        if completed:
            try:
                await self.generate_final_summary(lecture_id)
            except Exception as exc:  # noqa: BLE001
                logger.warning("[%s] Final summary failed: %s", lecture_id, exc)
                self._notify(lecture_id, "error", message=f"Final summary failed: {exc}")

        logger.info("[%s] Analysis finished: %d completed, %d failed", lecture_id, completed, failed)
        self._notify(
            lecture_id, "complete",
            message="Analysis finished", completed=completed, failed=failed,
        )

    async def _deep_dive(
        self,
        lecture: Lecture,
        chapter: Chapter,
        index: int,
        total: int,
        context: str,
        event: ChapterEvent,
        feedback: str = "",
    ) -> DeepDiveResult | None:
        """Run one chapter through processing to completed/error.  Never raises."""
        lecture_id = lecture.id
        try:
            await self.store.transition_chapter(chapter.id, event, error=None)
        except LectureNotesError as exc:
            logger.warning("[%s] Skipping chapter %s: %s", lecture_id, chapter.id, exc)
            return None

        logger.info("[%s] Analyzing Ch %d: %s", lecture_id, chapter.chapter_number, chapter.title)
        try:
            text, _ = resolve_analysis_text(
                lecture.raw_text,
                chapter.start_time,
                chapter.end_time,
                index,
                total,
                self.settings.min_slice_chars,
                self.settings.proportional_overlap_chars,
            )
            if not text.strip():
                raise PreconditionError("No transcript text for this chapter")

            response = await self.gateway.generate_content(
                prompts.deep_dive_prompt(
                    chapter.title, chapter.start_time, chapter.end_time, text, context, feedback
                ),
                prompts.DEEP_DIVE_SCHEMA,
                system_prompt=prompts.DEEP_DIVE_SYSTEM_MESSAGE,
            )
            if not response.success:
                raise LectureNotesError(response.error or "Generation failed")
            if not isinstance(response.data, dict):
                raise LectureNotesError("Deep dive response is not a JSON object")

            result = DeepDiveResult.from_dict(response.data)
            await self.store.transition_chapter(
                chapter.id, ChapterEvent.SUCCEED, result=result, error=None
            )
        except Exception as exc:  # noqa: BLE001 - one chapter must not stop the loop
            message = str(exc) or type(exc).__name__
            logger.error("[%s] Chapter %s failed: %s", lecture_id, chapter.id, message)
            try:
                await self.store.transition_chapter(chapter.id, ChapterEvent.FAIL, error=message)
            except Exception:  # noqa: BLE001
                logger.exception("[%s] Could not record failure of chapter %s", lecture_id, chapter.id)
            self._notify(
                lecture_id, "chapter_error",
                chapterId=chapter.id, title=chapter.title, message=message,
            )
            return None

        self._notify(lecture_id, "chapter_complete", chapterId=chapter.id, title=chapter.title)
        return result

    # ------------------------------------------------------------------
    # Re-entry
    # ------------------------------------------------------------------

    async def continue_processing(self, lecture_id: str) -> None:
        """Re-run the loop; completed chapters are skipped."""
        await self.process_chapters(lecture_id)

    async def retry_chapter(self, chapter_id: str) -> DeepDiveResult | None:
        """Deep dive one ``pending`` or ``error`` chapter again.

        Raises ``NotFoundError``, ``InvalidTransitionError`` or
        ``LectureBusyError`` (a deep dive is running for the lecture) before
        any work is done; generation failures end up in the chapter status.
        """
        return await self._rerun(chapter_id, ChapterEvent.START)

    async def regenerate_chapter(self, chapter_id: str, feedback: str = "") -> DeepDiveResult | None:
        """Deep dive any non-processing chapter again with reader *feedback*."""
        return await self._rerun(chapter_id, ChapterEvent.REGENERATE, feedback)

    async def _rerun(
        self, chapter_id: str, event: ChapterEvent, feedback: str = ""
    ) -> DeepDiveResult | None:
        chapter = await self.store.get_chapter(chapter_id)
        transition(chapter.status, event)
        lecture = await self.store.get_lecture(chapter.lecture_id)
        chapters = await self.store.list_chapters(lecture.id)

        index = next(i for i, c in enumerate(chapters) if c.id == chapter_id)
        context = ""
        for previous in reversed(chapters[:index]):
            if previous.status == ChapterStatus.COMPLETED and previous.result:
                context = context_summary(previous, previous.result, self.settings.context_summary_chars)
                break

        # No await between the check and the add.
        if lecture.id in self._active:
            raise LectureBusyError(f"Lecture {lecture.id} is already being processed")
        self._active.add(lecture.id)
        try:
            return await self._deep_dive(
                lecture, chapter, index, len(chapters), context, event, feedback
            )
        finally:
            self._active.discard(lecture.id)

    # ------------------------------------------------------------------
    # Final summary (step 8)
    # ------------------------------------------------------------------

    async def generate_final_summary(self, lecture_id: str) -> FinalSummary:
        """Synthesize and store the lecture summary.

        Raises ``PreconditionError`` when no chapter is completed and
        ``LectureNotesError`` when generation fails.
        """
        lecture = await self.store.get_lecture(lecture_id)
        completed = [
            c for c in await self.store.list_chapters(lecture_id)
            if c.status == ChapterStatus.COMPLETED and c.result
        ]
        if not completed:
            raise PreconditionError("No completed chapters to summarize")

        results = [c.result for c in completed]
        glossary = collect_glossary(results)
        contexts = [
            context_summary(c, c.result, self.settings.context_summary_chars) for c in completed
        ]

        logger.info("[%s] Generating final summary from %d chapters", lecture_id, len(completed))
        response = await self.gateway.generate_content(
            prompts.final_summary_prompt(
                lecture.title,
                contexts,
                [{"term": t.term, "definition": t.definition} for t in glossary],
            ),
            prompts.FINAL_SUMMARY_SCHEMA,
            system_prompt=prompts.FINAL_SUMMARY_SYSTEM_MESSAGE,
        )
        if not response.success or not isinstance(response.data, dict):
            raise LectureNotesError(f"Final summary generation failed: {response.error}")

        summary = FinalSummary.from_dict(response.data)
        summary.glossary = glossary
        await self.store.update_lecture(lecture_id, final_summary=summary)
        self._notify(lecture_id, "final_summary_complete", message="Final summary ready")
        return summary

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def delete_lecture(self, lecture_id: str) -> None:
        await self.store.delete_lecture(lecture_id)
        self.hub.close(lecture_id)
