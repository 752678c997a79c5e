"""Shared fixtures: a scripted LLM gateway, settings and a temporary store."""

import asyncio
import json
import re

import pytest

from lecturenotes.clients.gateway import LLMGateway
from lecturenotes.config import Settings
from lecturenotes.database import LectureStore
from lecturenotes.services import prompts
from lecturenotes.services.corrector import CORRECTION_SCHEMA


async def no_sleep(_seconds):
    return None


class FakeGateway(LLMGateway):
    """Gateway whose backend is a plain function ``handler(prompt, schema)``.

    The handler returns a dict/list (sent as JSON), a string (sent as is)
    or an exception instance (raised).
    """

    provider = "fake"

    def __init__(self, handler, **kwargs):
        kwargs.setdefault("sleep", no_sleep)
        super().__init__("fake-model", **kwargs)
        self.handler = handler
        self.calls = []

    async def _generate(self, prompt, schema, system_prompt, temperature, max_tokens):
        self.calls.append(
            {
                "prompt": prompt,
                "schema": schema,
                "system_prompt": system_prompt,
                "temperature": temperature,
            }
        )
        reply = self.handler(prompt, schema)
        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, (dict, list)):
            return json.dumps(reply)
        return reply


_TITLE_RE = re.compile(r"- Title: (.+)")


def deep_dive_title(prompt: str) -> str:
    """Chapter title a deep-dive prompt was built for."""
    return _TITLE_RE.search(prompt).group(1).strip()


def lecture_backend(fail_chapters=(), terms=None):
    """Scripted answers for a 40-minute lecture.

    Segment 1 proposes chapters A and B, segment 2 proposes a near
    duplicate of B (dropped by the merge) and chapter C.  Deep dives for
    titles in *fail_chapters* fail with a non-retryable error.
    """
    terms = terms or {
        "Chapter A": [{"term": "Graph", "definition": "Nodes joined by edges"}],
        "Chapter C": [
            {"term": "graph", "definition": "A different definition"},
            {"term": "Edge", "definition": "A link between two nodes"},
        ],
    }

    def handler(prompt, schema):
        if schema is prompts.SEGMENT_CHAPTER_SCHEMA:
            if "(0:00 - 30:00)" in prompt:
                return {
                    "chapters": [
                        {"title": "Chapter A", "startTime": "00:00", "endTime": "15:00", "summary": "a"},
                        {"title": "Chapter B", "startTime": "15:00", "endTime": "29:00", "summary": "b"},
                    ]
                }
            return {
                "chapters": [
                    {"title": "Chapter B again", "startTime": "16:00", "endTime": "29:00", "summary": "b"},
                    {"title": "Chapter C", "startTime": "30:00", "endTime": "39:00", "summary": "c"},
                ]
            }
        if schema is prompts.TITLE_SCHEMA:
            return {"title": "Graph Theory 101", "overview": "Graphs from scratch.", "tags": ["graphs"]}
        if schema is prompts.DEEP_DIVE_SCHEMA:
            title = deep_dive_title(prompt)
            if title in fail_chapters:
                return ValueError("invalid request")
            return {
                "keyMessage": f"Core of {title}",
                "narrative": f"## {title}\n\n> \"Look at this.\" [00:01:00]",
                "quotes": [{"timestamp": "00:01:00", "quote": "Look at this.", "context": "intro"}],
                "keyTerms": terms.get(title, []),
                "keyTakeaways": [f"Takeaway of {title}"],
                "actionItems": ["Practice"],
            }
        if schema is prompts.FINAL_SUMMARY_SCHEMA:
            return {
                "oneSentenceSummary": "Graphs model relationships.",
                "coreInsights": [{"insight": "Edges matter", "relatedChapters": "Ch. 1, 3"}],
                "actionChecklist": [{"action": "Draw a graph", "priority": "high", "timeline": "today"}],
                "reviewQuestions": ["What is an edge?"],
                "furtherLearning": ["Trees"],
            }
        if schema is CORRECTION_SCHEMA:
            return {"corrections": [{"original": "grafs", "corrected": "graphs", "reason": "typo"}]}
        raise AssertionError(f"unexpected request: {prompt[:80]}")

    return handler


def lecture_transcript(minutes: int = 40) -> str:
    return "\n".join(
        f"[{m:02d}:00] In minute {m} we keep talking about grafs, nodes and their edges."
        for m in range(minutes)
    )


@pytest.fixture
def make_gateway():
    return FakeGateway


@pytest.fixture
def backend():
    return lecture_backend


@pytest.fixture
def transcript():
    return lecture_transcript()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        groq_api_key="test-key",
        db_path=str(tmp_path / "lectures.db"),
        exports_root=str(tmp_path / "exports"),
        chapter_batch_delay_ms=0,
        correction_batch_delay_ms=0,
    )


@pytest.fixture
def store(settings):
    lecture_store = LectureStore(settings.db_path)
    asyncio.run(lecture_store.init())
    return lecture_store
