"""HTTP and WebSocket tests against the assembled application."""

import asyncio
import os

import pytest
from fastapi.testclient import TestClient

from lecturenotes.database import LectureStore, chapter_id_for
from lecturenotes.main import create_app
from lecturenotes.models import Chapter, ChapterStatus, Lecture

ALL_CHAPTERS = ("Chapter A", "Chapter B", "Chapter C")


@pytest.fixture
def make_client(settings, make_gateway, backend):
    clients = []

    def factory(fail_chapters=("Chapter B",)):
        gateway = make_gateway(backend(fail_chapters=fail_chapters))
        client = TestClient(create_app(settings, gateway=gateway))
        client.__enter__()
        client.gateway = gateway
        clients.append(client)
        return client

    yield factory
    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client):
    return make_client()


def create(client, transcript, **extra):
    response = client.post("/api/lectures", json={"transcript": transcript, **extra})
    assert response.status_code == 200, response.text
    return response.json()


# --- creation ---

class TestCreate:
    def test_create_and_process(self, client, transcript):
        created = create(client, transcript, author="Ada", tags=["cs"])
        assert created["title"] == "Graph Theory 101"
        assert created["totalChapters"] == 3

        # Background deep dives have run by the time the response returns.
        lecture = client.get(f"/api/lectures/{created['id']}").json()
        assert lecture["author"] == "Ada"
        assert lecture["tags"] == ["cs"]
        assert [c["status"] for c in lecture["chapters"]] == ["completed", "error", "completed"]
        assert lecture["chapters"][0]["result"]["keyMessage"] == "Core of Chapter A"
        assert lecture["chapters"][0]["result"]["version"] == 2
        assert lecture["finalSummary"]["oneSentenceSummary"] == "Graphs model relationships."
        assert lecture["rawText"].startswith("[00:00]")

    def test_blank_transcript(self, client):
        response = client.post("/api/lectures", json={"transcript": "   "})
        assert response.status_code == 400
        assert response.json()["detail"] == "Transcript required"

    def test_transcript_empty_after_normalization(self, client):
        response = client.post("/api/lectures", json={"transcript": "\x00\x01"})
        assert response.status_code == 400

    def test_list(self, client, transcript):
        first = create(client, transcript)
        second = create(client, transcript, title="Second")
        ids = [l["id"] for l in client.get("/api/lectures").json()]
        assert ids == [second["id"], first["id"]]
        assert "chapters" not in client.get("/api/lectures").json()[0]


class TestUpload:
    def test_text_file(self, client, transcript, settings):
        response = client.post(
            "/api/lectures/upload",
            files={"file": ("week1.txt", transcript.encode("utf-8"), "text/plain")},
            data={"title": "Week 1"},
        )
        assert response.status_code == 200, response.text
        assert response.json()["title"] == "Week 1"
        assert os.path.exists(os.path.join(settings.exports_root, "uploads", "week1.txt"))

    def test_vtt_file(self, client):
        cues = "\n".join(
            f"{m:02d}:00.000 --> {m:02d}:30.000\nMinute {m} of the graph lecture.\n"
            for m in range(40)
        )
        response = client.post(
            "/api/lectures/upload",
            files={"file": ("week1.vtt", ("WEBVTT\n\n" + cues).encode("utf-8"), "text/vtt")},
        )
        assert response.status_code == 200, response.text

        lecture = client.get(f"/api/lectures/{response.json()['id']}").json()
        assert lecture["rawText"].startswith("[00:00] Minute 0 of the graph lecture.")
        assert len(lecture["chapters"]) == 3

    def test_unsupported_extension(self, client):
        response = client.post(
            "/api/lectures/upload", files={"file": ("slides.pdf", b"%PDF", "application/pdf")}
        )
        assert response.status_code == 400


# --- read / update / delete ---

class TestLectureResource:
    def test_unknown_lecture(self, client):
        assert client.get("/api/lectures/lec_missing").status_code == 404
        assert client.patch("/api/lectures/lec_missing", json={"title": "x"}).status_code == 404
        assert client.delete("/api/lectures/lec_missing").status_code == 404

    def test_patch(self, client, transcript):
        lecture_id = create(client, transcript)["id"]
        response = client.patch(
            f"/api/lectures/{lecture_id}", json={"title": "Renamed", "memo": "exam"}
        )
        assert response.status_code == 200
        body = response.json()
        assert body["title"] == "Renamed"
        assert body["memo"] == "exam"
        assert body["tags"] == ["graphs"]

    def test_delete(self, client, transcript):
        lecture_id = create(client, transcript)["id"]
        response = client.delete(f"/api/lectures/{lecture_id}")

        assert response.json() == {"id": lecture_id, "deleted": True}
        assert client.get(f"/api/lectures/{lecture_id}").status_code == 404
        assert client.get(f"/api/chapters/{lecture_id}_1").status_code == 404


# --- chapters ---

class TestChapterEndpoints:
    def test_get_chapter(self, client, transcript):
        lecture_id = create(client, transcript)["id"]
        chapter = client.get(f"/api/chapters/{lecture_id}_2").json()
        assert chapter["title"] == "Chapter B"
        assert chapter["status"] == "error"
        assert "invalid request" in chapter["error"]
        assert client.get("/api/chapters/nope").status_code == 404

    def test_retry_completed_chapter_conflicts(self, client, transcript):
        lecture_id = create(client, transcript)["id"]
        assert client.post(f"/api/chapters/{lecture_id}_1/retry").status_code == 409
        assert client.post("/api/chapters/nope/retry").status_code == 404

    def test_retry_failed_chapter(self, client, transcript, backend):
        lecture_id = create(client, transcript)["id"]
        client.gateway.handler = backend()

        response = client.post(f"/api/chapters/{lecture_id}_2/retry")
        assert response.status_code == 200
        assert response.json()["status"] == "processing"
        assert client.get(f"/api/chapters/{lecture_id}_2").json()["status"] == "completed"

    def test_rerun_conflicts_while_lecture_is_processing(self, client, transcript):
        lecture_id = create(client, transcript)["id"]
        client.app.state.orchestrator._active.add(lecture_id)
        client.gateway.calls.clear()

        retry = client.post(f"/api/chapters/{lecture_id}_2/retry")
        regenerate = client.post(f"/api/chapters/{lecture_id}_1/regenerate", json={})

        assert retry.status_code == 409
        assert "already being processed" in retry.json()["detail"]
        assert regenerate.status_code == 409
        assert client.gateway.calls == []
        assert client.get(f"/api/chapters/{lecture_id}_2").json()["status"] == "error"

    def test_regenerate_with_feedback(self, client, transcript):
        lecture_id = create(client, transcript)["id"]
        client.gateway.calls.clear()

        response = client.post(
            f"/api/chapters/{lecture_id}_1/regenerate", json={"feedback": "Shorter please"}
        )
        assert response.status_code == 200
        assert "Shorter please" in client.gateway.calls[0]["prompt"]
        assert client.get(f"/api/chapters/{lecture_id}_1").json()["status"] == "completed"


# --- processing, summary, export ---

class TestProcessing:
    def test_continue_reports_unfinished_chapters(self, client, transcript):
        lecture_id = create(client, transcript)["id"]
        response = client.post(f"/api/lectures/{lecture_id}/continue")
        assert response.status_code == 200
        assert response.json()["chapters"] == 1
        assert client.post("/api/lectures/lec_missing/continue").status_code == 404

    def test_final_summary(self, client, transcript):
        lecture_id = create(client, transcript)["id"]
        response = client.post(f"/api/lectures/{lecture_id}/final-summary")
        assert response.status_code == 200
        terms = [t["term"] for t in response.json()["glossary"]]
        assert terms == ["Graph", "Edge"]

    def test_summary_and_export_need_a_completed_chapter(self, make_client, transcript):
        client = make_client(fail_chapters=ALL_CHAPTERS)
        lecture_id = create(client, transcript)["id"]

        assert client.post(f"/api/lectures/{lecture_id}/final-summary").status_code == 400
        assert client.get(f"/api/lectures/{lecture_id}/export").status_code == 400
        assert client.get(f"/api/lectures/{lecture_id}").json()["finalSummary"] is None

    def test_export(self, client, transcript, settings):
        lecture_id = create(client, transcript)["id"]
        response = client.get(f"/api/lectures/{lecture_id}/export")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/markdown")
        text = response.text
        assert text.startswith("# Graph Theory 101")
        assert "# Chapter 1: Chapter A" in text
        assert "# Chapter 2: Chapter C" in text
        assert "Chapter B" not in text
        assert "## Glossary" in text
        assert os.path.exists(os.path.join(settings.exports_root, f"{lecture_id}.md"))


# --- startup ---

class TestStartup:
    def test_processing_chapters_are_recovered(self, settings, make_gateway, backend):
        async def seed():
            store = LectureStore(settings.db_path)
            await store.init()
            await store.create_lecture(Lecture(id="lec_old", title="Old", raw_text="[00:00] hi"))
            await store.create_chapters(
                [
                    Chapter(
                        id=chapter_id_for("lec_old", 1),
                        lecture_id="lec_old",
                        chapter_number=1,
                        title="Stuck",
                        status=ChapterStatus.PROCESSING,
                    )
                ]
            )

        asyncio.run(seed())
        with TestClient(create_app(settings, gateway=make_gateway(backend()))) as client:
            assert client.get("/api/chapters/lec_old_1").json()["status"] == "pending"


# --- websocket ---

class TestEvents:
    def test_snapshot_first(self, client, transcript):
        lecture_id = create(client, transcript)["id"]
        with client.websocket_connect(f"/ws/lectures/{lecture_id}") as ws:
            message = ws.receive_json()

        assert message["type"] == "snapshot"
        assert message["lecture"]["id"] == lecture_id
        assert [c["status"] for c in message["lecture"]["chapters"]] == [
            "completed", "error", "completed",
        ]

    def test_unknown_lecture(self, client):
        with client.websocket_connect("/ws/lectures/lec_missing") as ws:
            message = ws.receive_json()
        assert message["type"] == "error"
