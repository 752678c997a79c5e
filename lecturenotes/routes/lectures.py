import os

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from lecturenotes.database import LectureStore
from lecturenotes.errors import LectureNotesError
from lecturenotes.models import ChapterStatus, LectureMetadata
from lecturenotes.routes.common import (
    get_orchestrator,
    get_storage,
    get_store,
    lecture_to_dict,
    raise_http,
)
from lecturenotes.services.chapters import ChapterOrchestrator
from lecturenotes.services.storage import StorageService
from lecturenotes.services.vtt import transcript_from_upload

router = APIRouter(prefix="/api", tags=["lectures"])

UPLOAD_EXTENSIONS = (".vtt", ".txt", ".md")


# ------------------------------------------------------------------
# Request bodies
# ------------------------------------------------------------------


class LectureCreate(BaseModel):
    transcript: str
    title: str | None = None
    author: str = ""
    source_url: str = ""
    tags: list[str] = []
    memo: str = ""


class LectureUpdate(BaseModel):
    title: str | None = None
    author: str | None = None
    source_url: str | None = None
    tags: list[str] | None = None
    memo: str | None = None


# ------------------------------------------------------------------
# Creation
# ------------------------------------------------------------------


async def _start_lecture(
    orchestrator: ChapterOrchestrator,
    background_tasks: BackgroundTasks,
    transcript: str,
    title: str | None,
    metadata: LectureMetadata,
) -> dict:
    if not transcript or not transcript.strip():
        raise HTTPException(status_code=400, detail="Transcript required")
    try:
        lecture, chapters = await orchestrator.create_lecture(
            transcript, title=title, metadata=metadata
        )
    except LectureNotesError as e:
        raise_http(e)
    background_tasks.add_task(orchestrator.process_chapters, lecture.id)
    return {"id": lecture.id, "title": lecture.title, "totalChapters": len(chapters)}


@router.post("/lectures")
async def create_lecture(
    body: LectureCreate,
    background_tasks: BackgroundTasks,
    orchestrator: ChapterOrchestrator = Depends(get_orchestrator),
) -> dict:
    """Analyze a transcript; deep dives continue after the response."""
    metadata = LectureMetadata(
        author=body.author, source_url=body.source_url, tags=body.tags, memo=body.memo
    )
    return await _start_lecture(
        orchestrator, background_tasks, body.transcript, body.title, metadata
    )


@router.post("/lectures/upload")
async def upload_lecture(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    title: str | None = Form(None),
    orchestrator: ChapterOrchestrator = Depends(get_orchestrator),
    storage: StorageService = Depends(get_storage),
) -> dict:
    """Upload a VTT caption file or a plain-text transcript."""
    filename = file.filename or "upload.txt"
    ext = os.path.splitext(filename)[1].lower()
    if ext not in UPLOAD_EXTENSIONS:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file type: {ext}. Use .vtt, .txt or .md",
        )

    content = await file.read()
    await storage.save_upload(filename, content)
    transcript = transcript_from_upload(content.decode("utf-8-sig", errors="replace"))
    return await _start_lecture(
        orchestrator, background_tasks, transcript, title, LectureMetadata()
    )


# ------------------------------------------------------------------
# Read / update / delete
# ------------------------------------------------------------------


@router.get("/lectures")
async def list_lectures(store: LectureStore = Depends(get_store)) -> list[dict]:
    return [lecture_to_dict(lecture) for lecture in await store.list_lectures()]


@router.get("/lectures/{lecture_id}")
async def get_lecture(lecture_id: str, store: LectureStore = Depends(get_store)) -> dict:
    try:
        lecture = await store.get_lecture(lecture_id)
    except LectureNotesError as e:
        raise_http(e)
    return lecture_to_dict(lecture, await store.list_chapters(lecture_id))


@router.patch("/lectures/{lecture_id}")
async def update_lecture(
    lecture_id: str, body: LectureUpdate, store: LectureStore = Depends(get_store)
) -> dict:
    fields = body.model_dump(exclude_none=True)
    try:
        lecture = await store.update_lecture(lecture_id, **fields)
    except LectureNotesError as e:
        raise_http(e)
    return lecture_to_dict(lecture)


@router.delete("/lectures/{lecture_id}")
async def delete_lecture(
    lecture_id: str, orchestrator: ChapterOrchestrator = Depends(get_orchestrator)
) -> dict:
    try:
        await orchestrator.delete_lecture(lecture_id)
    except LectureNotesError as e:
        raise_http(e)
    return {"id": lecture_id, "deleted": True}


# ------------------------------------------------------------------
# Processing
# ------------------------------------------------------------------


@router.post("/lectures/{lecture_id}/continue")
async def continue_processing(
    lecture_id: str,
    background_tasks: BackgroundTasks,
    orchestrator: ChapterOrchestrator = Depends(get_orchestrator),
    store: LectureStore = Depends(get_store),
) -> dict:
    """Reprocess every chapter that is not completed."""
    try:
        await store.get_lecture(lecture_id)
    except LectureNotesError as e:
        raise_http(e)
    if orchestrator.is_processing(lecture_id):
        raise HTTPException(status_code=409, detail="Lecture is already being processed")

    chapters = await store.list_chapters(lecture_id)
    background_tasks.add_task(orchestrator.continue_processing, lecture_id)
    return {
        "id": lecture_id,
        "status": "processing",
        "chapters": sum(c.status != ChapterStatus.COMPLETED for c in chapters),
    }


@router.post("/lectures/{lecture_id}/final-summary")
async def final_summary(
    lecture_id: str, orchestrator: ChapterOrchestrator = Depends(get_orchestrator)
) -> dict:
    try:
        summary = await orchestrator.generate_final_summary(lecture_id)
    except LectureNotesError as e:
        raise_http(e)
    return summary.to_dict()


@router.get("/lectures/{lecture_id}/export", response_class=PlainTextResponse)
async def export_lecture(
    lecture_id: str,
    store: LectureStore = Depends(get_store),
    storage: StorageService = Depends(get_storage),
) -> PlainTextResponse:
    """Markdown of the completed chapters and the final summary."""
    try:
        lecture = await store.get_lecture(lecture_id)
        _, markdown = await storage.export_markdown(
            lecture, await store.list_chapters(lecture_id)
        )
    except LectureNotesError as e:
        raise_http(e)
    return PlainTextResponse(
        markdown,
        media_type="text/markdown; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{lecture_id}.md"'},
    )
