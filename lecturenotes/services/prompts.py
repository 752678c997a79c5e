"""
LLM prompts and JSON schemas for the chapter pipeline.

Schemas list every field the pipeline reads.  The gateway only checks the
top-level ``required`` keys, so a missing optional field degrades a
chapter instead of failing it.
"""

# ============================================================================
# JSON Schemas
# ============================================================================

SEGMENT_CHAPTER_SCHEMA = {
    "type": "object",
    "properties": {
        "chapters": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "title": {"type": "string", "description": "Specific chapter title"},
                    "startTime": {"type": "string", "description": "MM:SS or HH:MM:SS"},
                    "endTime": {"type": "string", "description": "MM:SS or HH:MM:SS"},
                    "summary": {"type": "string", "description": "2-3 sentence summary"},
                    "keyTopics": {"type": "array", "items": {"type": "string"}},
                },
                "required": ["title", "startTime", "endTime", "summary"],
            },
        },
    },
    "required": ["chapters"],
}

TITLE_SCHEMA = {
    "type": "object",
    "properties": {
        "title": {"type": "string"},
        "overview": {"type": "string", "description": "2-3 sentence overview"},
        "author": {"type": "string", "description": "Lecturer name if stated, else empty"},
        "tags": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["title", "overview"],
}

DEEP_DIVE_SCHEMA = {
    "type": "object",
    "properties": {
        "keyMessage": {"type": "string", "description": "The chapter's core message in 1-2 sentences"},
        "narrative": {
            "type": "string",
            "description": (
                "Markdown study note in storytelling form: 3-5 '##' sections, "
                'direct quotes as > "quote" [HH:MM:SS] followed by interpretation, '
                "**bold** key words."
            ),
        },
        "quotes": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "timestamp": {"type": "string"},
                    "quote": {"type": "string", "description": "Verbatim, spoken register"},
                    "context": {"type": "string"},
                },
                "required": ["timestamp", "quote", "context"],
            },
        },
        "keyTerms": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "term": {"type": "string"},
                    "definition": {"type": "string"},
                    "example": {"type": "string"},
                },
                "required": ["term", "definition"],
            },
        },
        "keyTakeaways": {"type": "array", "items": {"type": "string"}},
        "actionItems": {"type": "array", "items": {"type": "string"}},
        "visualStructure": {
            "type": "object",
            "properties": {
                "type": {"type": "string", "enum": ["process", "comparison", "hierarchy", "timeline"]},
                "title": {"type": "string"},
                "items": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "label": {"type": "string"},
                            "description": {"type": "string"},
                            "subItems": {"type": "array", "items": {"type": "string"}},
                        },
                        "required": ["label"],
                    },
                },
            },
        },
    },
    "required": ["keyMessage", "narrative", "quotes", "keyTerms", "keyTakeaways", "actionItems"],
}

FINAL_SUMMARY_SCHEMA = {
    "type": "object",
    "properties": {
        "oneSentenceSummary": {"type": "string"},
        "coreInsights": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "insight": {"type": "string"},
                    "relatedChapters": {"type": "string", "description": "e.g. 'Ch. 1, 3'"},
                },
                "required": ["insight"],
            },
        },
        "actionChecklist": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "action": {"type": "string"},
                    "priority": {"type": "string", "enum": ["high", "medium", "low"]},
                    "timeline": {"type": "string"},
                },
                "required": ["action"],
            },
        },
        "reviewQuestions": {"type": "array", "items": {"type": "string"}},
        "furtherLearning": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["oneSentenceSummary", "coreInsights", "actionChecklist"],
}

# ============================================================================
# System messages
# ============================================================================

CHAPTER_SYSTEM_MESSAGE = (
    "You are an editor who structures lecture transcripts into chapters. "
    "Return only valid JSON."
)

DEEP_DIVE_SYSTEM_MESSAGE = """You are an editor who turns lecture transcripts into vivid study notes that read as if the reader attended the lecture.

Must:
1. Weave the lecturer's own words into the narrative: at least one or two quotes per section, each with its timestamp.
2. Keep the spoken register of quotes as said.
3. After each quote, explain why it matters and what it means.
4. Follow the order in which the lecture unfolded.

Must not:
- Write generic statements that are not grounded in the transcript.
- Write sections without any quote from the lecturer.
- List facts like a dry textbook.

Return only valid JSON."""

FINAL_SUMMARY_SYSTEM_MESSAGE = (
    "You synthesize chapter notes of one lecture into a single study summary. "
    "Connect ideas across chapters and reference chapter numbers. Return only valid JSON."
)

# ============================================================================
# Prompt builders
# ============================================================================


def segment_chapter_prompt(text: str, index: int, total: int, start_time: str = "", end_time: str = "") -> str:
    if start_time and end_time:
        header = f"Extract chapters from this segment ({start_time} - {end_time})."
        time_rule = "- Use the actual timestamps that appear in the segment for startTime/endTime."
    else:
        header = f"Extract chapters from segment {index + 1}/{total}."
        time_rule = '- The text has no timestamps: return startTime and endTime as empty strings ("").'
    return f"""{header}

## Rules
- Aim for 10-15 minutes per chapter (8-20 is acceptable).
- Split where the topic changes.
- Use specific titles (e.g. "Configuring the retrieval index" rather than "Setup").
{time_rule}

## Segment text
{text}"""


def title_prompt(chapters: list[dict], excerpt: str) -> str:
    listing = "\n".join(
        f"{i + 1}. {ch.get('title', '')}"
        + (f" ({ch.get('startTime')}~{ch.get('endTime')})" if ch.get("startTime") else "")
        for i, ch in enumerate(chapters)
    )
    return f"""Write the overall title and a short overview for this lecture.

Chapters:
{listing or '(none)'}

Beginning of the transcript:
{excerpt}

Return JSON with:
- title: lecture title
- overview: 2-3 sentence overview
- author: the lecturer's name if it is stated, otherwise ""
- tags: 3-5 topic tags"""


def deep_dive_prompt(
    title: str,
    start_time: str,
    end_time: str,
    text: str,
    previous_context: str = "",
    feedback: str = "",
) -> str:
    parts = [
        "Write the study note for this chapter.",
        "",
        "## Chapter",
        f"- Title: {title}",
    ]
    if start_time or end_time:
        parts.append(f"- Time: {start_time} ~ {end_time}")
    if previous_context:
        parts += [
            "",
            "## Previous chapter (keep terminology and voice consistent; do not repeat it)",
            previous_context,
        ]
    if feedback:
        parts += ["", "## Reader feedback (must be addressed)", feedback]
    parts += [
        "",
        "## Output",
        "- narrative: markdown, '##' section headings, quotes inline with timestamps.",
        "- quotes: the quotes used in the narrative, listed again (at least 6 when the text allows).",
        "- keyTerms, keyTakeaways, actionItems: only what the lecture actually covers.",
        "- visualStructure: optional; a process, comparison, hierarchy or timeline that "
        "summarizes the chapter.",
        "",
        "## Text to analyze",
        text,
    ]
    return "\n".join(parts)


def final_summary_prompt(lecture_title: str, chapter_contexts: list[str], glossary: list[dict]) -> str:
    terms = "\n".join(f"- {t['term']}: {t['definition']}" for t in glossary)
    return f"""Synthesize the lecture "{lecture_title}" from its chapter notes.

## Chapters
{chr(10).join(chapter_contexts)}

## Terms already collected (do not redefine them)
{terms or '(none)'}

Return JSON with:
- oneSentenceSummary: the whole lecture in one sentence
- coreInsights: 3-5 insights that connect chapters, each with relatedChapters
- actionChecklist: concrete actions with priority (high|medium|low) and timeline
- reviewQuestions: 3-5 questions to check understanding
- furtherLearning: topics or resources to study next"""
