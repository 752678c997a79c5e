from typing import NoReturn

from fastapi import HTTPException, Request

from lecturenotes.database import LectureStore
from lecturenotes.errors import (
    InvalidTransitionError,
    LectureBusyError,
    LectureNotesError,
    NotFoundError,
    PreconditionError,
)
from lecturenotes.models import Chapter, Lecture
from lecturenotes.services.chapters import ChapterOrchestrator
from lecturenotes.services.storage import StorageService

# ------------------------------------------------------------------
# Dependencies (objects built in the lifespan, kept on app.state)
# ------------------------------------------------------------------


def get_store(request: Request) -> LectureStore:
    return request.app.state.store


def get_orchestrator(request: Request) -> ChapterOrchestrator:
    return request.app.state.orchestrator


def get_storage(request: Request) -> StorageService:
    return request.app.state.storage


def raise_http(exc: LectureNotesError) -> NoReturn:
    """Translate a domain error into the matching HTTP status."""
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if isinstance(exc, PreconditionError):
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if isinstance(exc, (InvalidTransitionError, LectureBusyError)):
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    raise HTTPException(status_code=502, detail=str(exc)) from exc


# ------------------------------------------------------------------
# Serialization
# ------------------------------------------------------------------


def chapter_to_dict(chapter: Chapter) -> dict:
    return {
        "id": chapter.id,
        "lectureId": chapter.lecture_id,
        "chapterNumber": chapter.chapter_number,
        "title": chapter.title,
        "startTime": chapter.start_time,
        "endTime": chapter.end_time,
        "summary": chapter.summary,
        "keyTopics": chapter.key_topics,
        "status": chapter.status.value,
        "result": chapter.result.to_dict() if chapter.result else None,
        "error": chapter.error,
    }


def lecture_to_dict(lecture: Lecture, chapters: list[Chapter] | None = None) -> dict:
    data = {
        "id": lecture.id,
        "title": lecture.title,
        "overview": lecture.overview,
        "author": lecture.metadata.author,
        "sourceUrl": lecture.metadata.source_url,
        "tags": lecture.metadata.tags,
        "memo": lecture.metadata.memo,
        "createdAt": lecture.created_at,
        "correctionStats": lecture.correction_stats,
        "finalSummary": lecture.final_summary.to_dict() if lecture.final_summary else None,
    }
    if chapters is not None:
        data["rawText"] = lecture.raw_text
        data["originalText"] = lecture.original_text
        data["corrections"] = lecture.corrections
        data["chapters"] = [chapter_to_dict(c) for c in chapters]
    return data
