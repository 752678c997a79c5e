import json
import logging
import uuid

import aiosqlite

from lecturenotes.errors import InvalidTransitionError, NotFoundError
from lecturenotes.models import (
    Chapter,
    ChapterEvent,
    ChapterStatus,
    DeepDiveResult,
    FinalSummary,
    Lecture,
    LectureMetadata,
    transition,
)

logger = logging.getLogger(__name__)

CREATE_LECTURES = """
CREATE TABLE IF NOT EXISTS lectures (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    raw_text TEXT NOT NULL,
    overview TEXT NOT NULL DEFAULT '',
    original_text TEXT,
    corrections_json TEXT NOT NULL DEFAULT '[]',
    correction_stats_json TEXT,
    author TEXT NOT NULL DEFAULT '',
    source_url TEXT NOT NULL DEFAULT '',
    tags_json TEXT NOT NULL DEFAULT '[]',
    memo TEXT NOT NULL DEFAULT '',
    final_summary_json TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
)
"""

CREATE_CHAPTERS = """
CREATE TABLE IF NOT EXISTS chapters (
    id TEXT PRIMARY KEY,
    lecture_id TEXT NOT NULL,
    chapter_number INTEGER NOT NULL,
    title TEXT NOT NULL,
    start_time TEXT NOT NULL DEFAULT '',
    end_time TEXT NOT NULL DEFAULT '',
    summary TEXT NOT NULL DEFAULT '',
    key_topics_json TEXT NOT NULL DEFAULT '[]',
    status TEXT NOT NULL DEFAULT 'pending',
    result_json TEXT,
    error TEXT,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (lecture_id) REFERENCES lectures(id) ON DELETE CASCADE,
    UNIQUE(lecture_id, chapter_number)
)
"""

_DDL = [CREATE_LECTURES, CREATE_CHAPTERS]

# Python field -> (column, encoder)
_LECTURE_COLUMNS = {
    "title": ("title", str),
    "raw_text": ("raw_text", str),
    "overview": ("overview", str),
    "original_text": ("original_text", lambda v: v),
    "corrections": ("corrections_json", lambda v: _dumps(v or [])),
    "correction_stats": ("correction_stats_json", lambda v: _dumps(v) if v is not None else None),
    "author": ("author", str),
    "source_url": ("source_url", str),
    "tags": ("tags_json", lambda v: _dumps(list(v or []))),
    "memo": ("memo", str),
    "final_summary": (
        "final_summary_json",
        lambda v: _dumps(v.to_dict()) if v is not None else None,
    ),
}

_CHAPTER_COLUMNS = {
    "title": ("title", str),
    "start_time": ("start_time", str),
    "end_time": ("end_time", str),
    "summary": ("summary", str),
    "key_topics": ("key_topics_json", lambda v: _dumps(list(v or []))),
    "status": ("status", lambda v: ChapterStatus(v).value),
    "result": ("result_json", lambda v: _dumps(v.to_dict()) if v is not None else None),
    "error": ("error", lambda v: v),
}


def _dumps(value) -> str:
    return json.dumps(value, ensure_ascii=False)


def new_lecture_id() -> str:
    return f"lec_{uuid.uuid4().hex[:12]}"


def chapter_id_for(lecture_id: str, chapter_number: int) -> str:
    return f"{lecture_id}_{chapter_number}"


async def init_db(db_path: str) -> None:
    """Create all tables. Called once at server startup via FastAPI lifespan."""
    async with aiosqlite.connect(db_path) as db:
        for stmt in _DDL:
            await db.execute(stmt)
        await db.commit()


async def get_async_conn(db_path: str) -> aiosqlite.Connection:
    """Async connection with row access by name and cascading deletes."""
    conn = await aiosqlite.connect(db_path)
    await conn.execute("PRAGMA busy_timeout = 5000")
    await conn.execute("PRAGMA foreign_keys = ON")
    conn.row_factory = aiosqlite.Row
    return conn


# ------------------------------------------------------------------
# Row mapping
# ------------------------------------------------------------------


def _lecture_from_row(row) -> Lecture:
    summary = row["final_summary_json"]
    stats = row["correction_stats_json"]
    return Lecture(
        id=row["id"],
        title=row["title"],
        raw_text=row["raw_text"],
        overview=row["overview"],
        original_text=row["original_text"],
        corrections=json.loads(row["corrections_json"] or "[]"),
        correction_stats=json.loads(stats) if stats else None,
        metadata=LectureMetadata(
            author=row["author"],
            source_url=row["source_url"],
            tags=json.loads(row["tags_json"] or "[]"),
            memo=row["memo"],
        ),
        final_summary=FinalSummary.from_dict(json.loads(summary)) if summary else None,
        created_at=str(row["created_at"] or ""),
    )


def _chapter_from_row(row) -> Chapter:
    result = row["result_json"]
    return Chapter(
        id=row["id"],
        lecture_id=row["lecture_id"],
        chapter_number=row["chapter_number"],
        title=row["title"],
        start_time=row["start_time"],
        end_time=row["end_time"],
        summary=row["summary"],
        key_topics=json.loads(row["key_topics_json"] or "[]"),
        status=ChapterStatus(row["status"]),
        result=DeepDiveResult.from_dict(json.loads(result)) if result else None,
        error=row["error"],
    )


def _assignments(fields: dict, columns: dict) -> tuple[str, list]:
    unknown = set(fields) - set(columns)
    if unknown:
        raise ValueError(f"Unknown fields: {', '.join(sorted(unknown))}")
    sets, values = [], []
    for name, value in fields.items():
        column, encode = columns[name]
        sets.append(f"{column} = ?")
        values.append(encode(value))
    return ", ".join(sets), values


# ------------------------------------------------------------------
# Store
# ------------------------------------------------------------------


class LectureStore:
    """CRUD over the lectures/chapters tables.

    Every method opens its own connection; the store holds no connection
    state, so one instance is safely shared by routes and background tasks.
    Chapters are always ordered by ``chapter_number``.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path

    async def init(self) -> None:
        await init_db(self.db_path)

    # -- lectures ------------------------------------------------------

    async def create_lecture(self, lecture: Lecture) -> Lecture:
        conn = await get_async_conn(self.db_path)
        try:
            await conn.execute(
                "INSERT INTO lectures (id, title, raw_text, overview, original_text, "
                "corrections_json, correction_stats_json, author, source_url, tags_json, memo) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    lecture.id,
                    lecture.title,
                    lecture.raw_text,
                    lecture.overview,
                    lecture.original_text,
                    _dumps(lecture.corrections or []),
                    _dumps(lecture.correction_stats) if lecture.correction_stats is not None else None,
                    lecture.metadata.author,
                    lecture.metadata.source_url,
                    _dumps(lecture.metadata.tags),
                    lecture.metadata.memo,
                ),
            )
            await conn.commit()
        finally:
            await conn.close()
        return await self.get_lecture(lecture.id)

    async def get_lecture(self, lecture_id: str) -> Lecture:
        conn = await get_async_conn(self.db_path)
        try:
            row = await conn.execute("SELECT * FROM lectures WHERE id = ?", (lecture_id,))
            lecture = await row.fetchone()
        finally:
            await conn.close()
        if not lecture:
            raise NotFoundError(f"Lecture {lecture_id} not found")
        return _lecture_from_row(lecture)

    async def list_lectures(self) -> list[Lecture]:
        conn = await get_async_conn(self.db_path)
        try:
            rows = await conn.execute(
                "SELECT * FROM lectures ORDER BY created_at DESC, rowid DESC"
            )
            return [_lecture_from_row(row) for row in await rows.fetchall()]
        finally:
            await conn.close()

    async def update_lecture(self, lecture_id: str, **fields) -> Lecture:
        if fields:
            sets, values = _assignments(fields, _LECTURE_COLUMNS)
            conn = await get_async_conn(self.db_path)
            try:
                cursor = await conn.execute(
                    f"UPDATE lectures SET {sets} WHERE id = ?", (*values, lecture_id)
                )
                await conn.commit()
                if cursor.rowcount == 0:
                    raise NotFoundError(f"Lecture {lecture_id} not found")
            finally:
                await conn.close()
        return await self.get_lecture(lecture_id)

    async def delete_lecture(self, lecture_id: str) -> None:
        """Delete a lecture and, through the foreign key, its chapters."""
        conn = await get_async_conn(self.db_path)
        try:
            cursor = await conn.execute("DELETE FROM lectures WHERE id = ?", (lecture_id,))
            await conn.commit()
            if cursor.rowcount == 0:
                raise NotFoundError(f"Lecture {lecture_id} not found")
        finally:
            await conn.close()

    # -- chapters ------------------------------------------------------

    async def create_chapter(self, chapter: Chapter) -> Chapter:
        await self.create_chapters([chapter])
        return await self.get_chapter(chapter.id)

    async def create_chapters(self, chapters: list[Chapter]) -> None:
        conn = await get_async_conn(self.db_path)
        try:
            await conn.executemany(
                "INSERT INTO chapters (id, lecture_id, chapter_number, title, start_time, "
                "end_time, summary, key_topics_json, status) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        c.id,
                        c.lecture_id,
                        c.chapter_number,
                        c.title,
                        c.start_time,
                        c.end_time,
                        c.summary,
                        _dumps(c.key_topics),
                        ChapterStatus(c.status).value,
                    )
                    for c in chapters
                ],
            )
            await conn.commit()
        finally:
            await conn.close()

    async def get_chapter(self, chapter_id: str) -> Chapter:
        conn = await get_async_conn(self.db_path)
        try:
            row = await conn.execute("SELECT * FROM chapters WHERE id = ?", (chapter_id,))
            chapter = await row.fetchone()
        finally:
            await conn.close()
        if not chapter:
            raise NotFoundError(f"Chapter {chapter_id} not found")
        return _chapter_from_row(chapter)

    async def list_chapters(self, lecture_id: str) -> list[Chapter]:
        conn = await get_async_conn(self.db_path)
        try:
            rows = await conn.execute(
                "SELECT * FROM chapters WHERE lecture_id = ? ORDER BY chapter_number",
                (lecture_id,),
            )
            return [_chapter_from_row(row) for row in await rows.fetchall()]
        finally:
            await conn.close()

    async def update_chapter(self, chapter_id: str, **fields) -> Chapter:
        """Write *fields* as given.  Status changes should go through
        ``transition_chapter`` so the state machine is enforced."""
        if fields:
            sets, values = _assignments(fields, _CHAPTER_COLUMNS)
            conn = await get_async_conn(self.db_path)
            try:
                cursor = await conn.execute(
                    f"UPDATE chapters SET {sets}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                    (*values, chapter_id),
                )
                await conn.commit()
                if cursor.rowcount == 0:
                    raise NotFoundError(f"Chapter {chapter_id} not found")
            finally:
                await conn.close()
        return await self.get_chapter(chapter_id)

    async def transition_chapter(
        self, chapter_id: str, event: ChapterEvent, **fields
    ) -> Chapter:
        """Apply *event* to the stored status and write it with *fields*.

        Raises ``InvalidTransitionError`` (nothing is written) when the
        state machine rejects the event, or when another writer changed
        the status after it was read.
        """
        chapter = await self.get_chapter(chapter_id)
        status = transition(chapter.status, event)
        sets, values = _assignments({**fields, "status": status}, _CHAPTER_COLUMNS)
        conn = await get_async_conn(self.db_path)
        try:
            cursor = await conn.execute(
                f"UPDATE chapters SET {sets}, updated_at = CURRENT_TIMESTAMP "
                "WHERE id = ? AND status = ?",
                (*values, chapter_id, chapter.status.value),
            )
            await conn.commit()
            changed = cursor.rowcount
        finally:
            await conn.close()
        if not changed:
            raise InvalidTransitionError(chapter.status.value, event.value)
        return await self.get_chapter(chapter_id)

    async def recover_stuck_chapters(self) -> int:
        """Reset every ``processing`` chapter to ``pending``.

        Must run once at process start, before any new work is scheduled.
        Returns the number of chapters reset.
        """
        target = transition(ChapterStatus.PROCESSING, ChapterEvent.RECOVER)
        conn = await get_async_conn(self.db_path)
        try:
            cursor = await conn.execute(
                "UPDATE chapters SET status = ?, updated_at = CURRENT_TIMESTAMP "
                "WHERE status = ?",
                (target.value, ChapterStatus.PROCESSING.value),
            )
            await conn.commit()
            count = cursor.rowcount
        finally:
            await conn.close()
        if count:
            logger.warning("Recovered %d chapter(s) stuck in processing", count)
        return count
