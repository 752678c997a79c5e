from fastapi import APIRouter, BackgroundTasks, Depends
from pydantic import BaseModel

from lecturenotes.database import LectureStore
from lecturenotes.errors import LectureBusyError, LectureNotesError
from lecturenotes.models import ChapterEvent, transition
from lecturenotes.routes.common import chapter_to_dict, get_orchestrator, get_store, raise_http
from lecturenotes.services.chapters import ChapterOrchestrator

router = APIRouter(prefix="/api", tags=["chapters"])


class RegenerateRequest(BaseModel):
    feedback: str = ""


async def _check(
    store: LectureStore,
    orchestrator: ChapterOrchestrator,
    chapter_id: str,
    event: ChapterEvent,
) -> dict:
    """404 for an unknown chapter, 409 when *event* is not allowed now or a
    deep dive is already running for the chapter's lecture."""
    try:
        chapter = await store.get_chapter(chapter_id)
        transition(chapter.status, event)
        if orchestrator.is_processing(chapter.lecture_id):
            raise LectureBusyError(f"Lecture {chapter.lecture_id} is already being processed")
    except LectureNotesError as e:
        raise_http(e)
    return chapter_to_dict(chapter)


@router.get("/chapters/{chapter_id}")
async def get_chapter(chapter_id: str, store: LectureStore = Depends(get_store)) -> dict:
    try:
        return chapter_to_dict(await store.get_chapter(chapter_id))
    except LectureNotesError as e:
        raise_http(e)


@router.post("/chapters/{chapter_id}/retry")
async def retry_chapter(
    chapter_id: str,
    background_tasks: BackgroundTasks,
    store: LectureStore = Depends(get_store),
    orchestrator: ChapterOrchestrator = Depends(get_orchestrator),
) -> dict:
    """Re-run the deep dive of a pending or failed chapter."""
    await _check(store, orchestrator, chapter_id, ChapterEvent.START)
    background_tasks.add_task(orchestrator.retry_chapter, chapter_id)
    return {"id": chapter_id, "status": "processing", "message": "Retry started"}


@router.post("/chapters/{chapter_id}/regenerate")
async def regenerate_chapter(
    chapter_id: str,
    body: RegenerateRequest,
    background_tasks: BackgroundTasks,
    store: LectureStore = Depends(get_store),
    orchestrator: ChapterOrchestrator = Depends(get_orchestrator),
) -> dict:
    """Re-run the deep dive with reader feedback folded into the prompt."""
    await _check(store, orchestrator, chapter_id, ChapterEvent.REGENERATE)
    background_tasks.add_task(orchestrator.regenerate_chapter, chapter_id, body.feedback)
    return {"id": chapter_id, "status": "processing", "message": "Regeneration started"}
