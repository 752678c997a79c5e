import os

import aiofiles

from lecturenotes.errors import PreconditionError
from lecturenotes.models import Chapter, ChapterStatus, Lecture


def render_markdown(lecture: Lecture, chapters: list[Chapter]) -> str:
    """Markdown study note: table of contents, completed chapters, final summary."""
    done = [c for c in chapters if c.status == ChapterStatus.COMPLETED and c.result]

    md = [f"# {lecture.title}", ""]
    if lecture.overview:
        md += [f"> {lecture.overview}", ""]

    md += ["---", "", "## Contents", ""]
    md += [f"{i}. **{c.title}**" for i, c in enumerate(done, start=1)]
    md += ["", "---", ""]

    for i, chapter in enumerate(done, start=1):
        result = chapter.result
        md += [f"# Chapter {i}: {chapter.title}", ""]
        if chapter.start_time:
            md += [f"**Time**: {chapter.start_time} ~ {chapter.end_time}", ""]
        if result.key_message:
            md += [f"**Key message**: {result.key_message}", ""]
        if result.narrative:
            md += ["## Notes", "", result.narrative, ""]
        if result.key_takeaways:
            md += ["## Key takeaways"] + [f"- {p}" for p in result.key_takeaways] + [""]
        if result.key_terms:
            md.append("## Key terms")
            for t in result.key_terms:
                line = f"- **{t.term}**: {t.definition}"
                if t.example:
                    line += f" _(e.g. {t.example})_"
                md.append(line)
            md.append("")
        if result.action_items:
            md += ["## Action items"] + [f"- {a}" for a in result.action_items] + [""]

    summary = lecture.final_summary
    if summary:
        md += ["---", "", "# Summary", "", summary.one_sentence_summary, ""]
        if summary.core_insights:
            md.append("## Core insights")
            for insight in summary.core_insights:
                suffix = f" ({insight.related_chapters})" if insight.related_chapters else ""
                md.append(f"- {insight.insight}{suffix}")
            md.append("")
        if summary.action_checklist:
            md.append("## Action checklist")
            for item in summary.action_checklist:
                extra = ", ".join(x for x in (item.priority, item.timeline) if x)
                md.append(f"- [ ] {item.action}" + (f" ({extra})" if extra else ""))
            md.append("")
        if summary.review_questions:
            md += ["## Review questions"] + [f"- {q}" for q in summary.review_questions] + [""]
        if summary.further_learning:
            md += ["## Further learning"] + [f"- {f}" for f in summary.further_learning] + [""]
        if summary.glossary:
            md += ["## Glossary"] + [f"- **{t.term}**: {t.definition}" for t in summary.glossary] + [""]

    return "\n".join(md).rstrip() + "\n"


class StorageService:
    def __init__(self, exports_root: str) -> None:
        self.exports_root = exports_root

    def export_path(self, lecture_id: str) -> str:
        return os.path.join(self.exports_root, f"{lecture_id}.md")

    async def write_text(self, path: str, text: str) -> None:
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        async with aiofiles.open(path, "w", encoding="utf-8") as f:
            await f.write(text)

    async def export_markdown(self, lecture: Lecture, chapters: list[Chapter]) -> tuple[str, str]:
        """Render and write the lecture's markdown.  Returns ``(path, markdown)``.

        Raises ``PreconditionError`` when no chapter is completed yet.
        """
        if not any(c.status == ChapterStatus.COMPLETED and c.result for c in chapters):
            raise PreconditionError(
                "No completed chapters to export. Please wait for analysis to finish."
            )
        markdown = render_markdown(lecture, chapters)
        path = self.export_path(lecture.id)
        await self.write_text(path, markdown)
        return path, markdown

    async def save_upload(self, filename: str, content: bytes) -> str:
        """Keep a copy of an uploaded transcript under ``uploads/``."""
        path = os.path.join(self.exports_root, "uploads", os.path.basename(filename) or "upload")
        os.makedirs(os.path.dirname(path), exist_ok=True)
        async with aiofiles.open(path, "wb") as f:
            await f.write(content)
        return path
