from dataclasses import dataclass, field
from enum import Enum

from lecturenotes.errors import InvalidTransitionError

# ---------------------------------------------------------------------------
# Chapter state machine
# ---------------------------------------------------------------------------


class ChapterStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class ChapterEvent(str, Enum):
    START = "start"  # scheduled deep dive picks the chapter up
    REGENERATE = "regenerate"  # explicit user request, any terminal state
    SUCCEED = "succeed"
    FAIL = "fail"
    RECOVER = "recover"  # process restarted while the chapter was in flight


_TRANSITIONS: dict[tuple[ChapterStatus, ChapterEvent], ChapterStatus] = {
    (ChapterStatus.PENDING, ChapterEvent.START): ChapterStatus.PROCESSING,
    (ChapterStatus.ERROR, ChapterEvent.START): ChapterStatus.PROCESSING,
    (ChapterStatus.PENDING, ChapterEvent.REGENERATE): ChapterStatus.PROCESSING,
    (ChapterStatus.ERROR, ChapterEvent.REGENERATE): ChapterStatus.PROCESSING,
    (ChapterStatus.COMPLETED, ChapterEvent.REGENERATE): ChapterStatus.PROCESSING,
    (ChapterStatus.PROCESSING, ChapterEvent.SUCCEED): ChapterStatus.COMPLETED,
    (ChapterStatus.PROCESSING, ChapterEvent.FAIL): ChapterStatus.ERROR,
    (ChapterStatus.PROCESSING, ChapterEvent.RECOVER): ChapterStatus.PENDING,
}


def transition(status: ChapterStatus | str, event: ChapterEvent | str) -> ChapterStatus:
    """Return the status reached by applying *event* to *status*.

    Raises ``InvalidTransitionError`` for any pair not in the table.
    Completed chapters can only be re-entered through ``REGENERATE``;
    the default resume path uses ``START`` and therefore skips them.
    """
    status = ChapterStatus(status)
    event = ChapterEvent(event)
    try:
        return _TRANSITIONS[(status, event)]
    except KeyError:
        raise InvalidTransitionError(status.value, event.value) from None


# ---------------------------------------------------------------------------
# Deep-dive result (versioned)
# ---------------------------------------------------------------------------

RESULT_VERSION = 2

# New key -> deprecated aliases, checked in order.
_RESULT_ALIASES = {
    "keyTakeaways": ("keyPoints",),
    "actionItems": ("practicalTips",),
    "quotes": ("quotesWithTimeline",),
}


def _pick(data: dict, key: str):
    """Prefer *key*; fall back to its deprecated aliases."""
    value = data.get(key)
    if value:
        return value
    for alias in _RESULT_ALIASES.get(key, ()):
        if data.get(alias):
            return data[alias]
    return value


@dataclass
class Quote:
    timestamp: str
    quote: str
    context: str = ""


@dataclass
class KeyTerm:
    term: str
    definition: str
    example: str = ""


@dataclass
class VisualItem:
    label: str
    description: str = ""
    sub_items: list[str] = field(default_factory=list)


@dataclass
class VisualStructure:
    type: str  # process | comparison | hierarchy | timeline
    title: str
    items: list[VisualItem] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict | None) -> "VisualStructure | None":
        if not data or not data.get("items"):
            return None
        return cls(
            type=data.get("type", "process"),
            title=data.get("title", ""),
            items=[
                VisualItem(
                    label=i.get("label", ""),
                    description=i.get("description", ""),
                    sub_items=list(i.get("subItems") or []),
                )
                for i in data["items"]
                if isinstance(i, dict)
            ],
        )

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "title": self.title,
            "items": [
                {"label": i.label, "description": i.description, "subItems": i.sub_items}
                for i in self.items
            ],
        }


@dataclass
class DeepDiveResult:
    """Structured output of one chapter deep dive.

    Serialized with the same camelCase keys the model is asked to produce,
    plus a ``version`` field.  ``from_dict`` is the only place that knows
    about the deprecated aliases (``keyPoints``, ``practicalTips``,
    ``quotesWithTimeline``) emitted by older prompts and stored rows.
    """

    narrative: str
    key_message: str = ""
    quotes: list[Quote] = field(default_factory=list)
    key_terms: list[KeyTerm] = field(default_factory=list)
    key_takeaways: list[str] = field(default_factory=list)
    action_items: list[str] = field(default_factory=list)
    visual_structure: VisualStructure | None = None
    version: int = RESULT_VERSION

    @classmethod
    def from_dict(cls, data: dict) -> "DeepDiveResult":
        quotes = [
            Quote(
                timestamp=str(q.get("timestamp", "")),
                quote=q.get("quote", ""),
                context=q.get("context", ""),
            )
            for q in (_pick(data, "quotes") or [])
            if isinstance(q, dict) and q.get("quote")
        ]
        terms = [
            KeyTerm(
                term=t.get("term", ""),
                definition=t.get("definition", ""),
                example=t.get("example", ""),
            )
            for t in (data.get("keyTerms") or [])
            if isinstance(t, dict) and t.get("term")
        ]
        return cls(
            narrative=data.get("narrative", ""),
            key_message=data.get("keyMessage", ""),
            quotes=quotes,
            key_terms=terms,
            key_takeaways=list(_pick(data, "keyTakeaways") or []),
            action_items=list(_pick(data, "actionItems") or []),
            visual_structure=VisualStructure.from_dict(data.get("visualStructure")),
        )

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "keyMessage": self.key_message,
            "narrative": self.narrative,
            "quotes": [
                {"timestamp": q.timestamp, "quote": q.quote, "context": q.context}
                for q in self.quotes
            ],
            "keyTerms": [
                {"term": t.term, "definition": t.definition, "example": t.example}
                for t in self.key_terms
            ],
            "keyTakeaways": self.key_takeaways,
            "actionItems": self.action_items,
            "visualStructure": (
                self.visual_structure.to_dict() if self.visual_structure else None
            ),
        }


# ---------------------------------------------------------------------------
# Final summary
# ---------------------------------------------------------------------------


@dataclass
class CoreInsight:
    insight: str
    related_chapters: str = ""


@dataclass
class ActionItem:
    action: str
    priority: str = ""
    timeline: str = ""


@dataclass
class FinalSummary:
    one_sentence_summary: str
    core_insights: list[CoreInsight] = field(default_factory=list)
    action_checklist: list[ActionItem] = field(default_factory=list)
    review_questions: list[str] = field(default_factory=list)
    further_learning: list[str] = field(default_factory=list)
    glossary: list[KeyTerm] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "FinalSummary":
        return cls(
            one_sentence_summary=data.get("oneSentenceSummary", ""),
            core_insights=[
                CoreInsight(i.get("insight", ""), i.get("relatedChapters", ""))
                for i in data.get("coreInsights") or []
                if isinstance(i, dict)
            ],
            action_checklist=[
                ActionItem(a.get("action", ""), a.get("priority", ""), a.get("timeline", ""))
                for a in data.get("actionChecklist") or []
                if isinstance(a, dict)
            ],
            review_questions=list(data.get("reviewQuestions") or []),
            further_learning=list(data.get("furtherLearning") or []),
            glossary=[
                KeyTerm(t.get("term", ""), t.get("definition", ""), t.get("example", ""))
                for t in data.get("glossary") or []
                if isinstance(t, dict)
            ],
        )

    def to_dict(self) -> dict:
        return {
            "oneSentenceSummary": self.one_sentence_summary,
            "coreInsights": [
                {"insight": i.insight, "relatedChapters": i.related_chapters}
                for i in self.core_insights
            ],
            "actionChecklist": [
                {"action": a.action, "priority": a.priority, "timeline": a.timeline}
                for a in self.action_checklist
            ],
            "reviewQuestions": self.review_questions,
            "furtherLearning": self.further_learning,
            "glossary": [
                {"term": t.term, "definition": t.definition, "example": t.example}
                for t in self.glossary
            ],
        }


# ---------------------------------------------------------------------------
# Persisted rows
# ---------------------------------------------------------------------------


@dataclass
class LectureMetadata:
    author: str = ""
    source_url: str = ""
    tags: list[str] = field(default_factory=list)
    memo: str = ""


@dataclass
class Lecture:
    id: str
    title: str
    raw_text: str
    overview: str = ""
    original_text: str | None = None  # pre-correction transcript
    corrections: list[dict] = field(default_factory=list)  # correction ledger
    correction_stats: dict | None = None
    metadata: LectureMetadata = field(default_factory=LectureMetadata)
    final_summary: FinalSummary | None = None
    created_at: str = ""


@dataclass
class Chapter:
    id: str
    lecture_id: str
    chapter_number: int  # 1-based ordinal; ordering key
    title: str
    start_time: str = ""  # MM:SS or HH:MM:SS, empty without timestamps
    end_time: str = ""
    summary: str = ""
    key_topics: list[str] = field(default_factory=list)
    status: ChapterStatus = ChapterStatus.PENDING
    result: DeepDiveResult | None = None
    error: str | None = None
