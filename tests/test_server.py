"""
Tests for the session HTTP API.
"""

import pytest
from fastapi.testclient import TestClient

from conftest import FakeQueue
from pipeline.jobs import ChunkInfo, ChunkVideoOutput, VideoUploadedOutput, completed
from pipeline.repository import InMemorySessionRepository
from server.app import create_app


@pytest.fixture
def queue():
    return FakeQueue()


@pytest.fixture
def client(config, queue):
    with TestClient(create_app(config, InMemorySessionRepository(), queue)) as test_client:
        yield test_client


def deliver(client, result):
    """Apply a job result on the app's event loop, as the bus listener would."""
    client.portal.call(client.app.state.coordinator.handle_result, result)


def start_chunked_session(client, queue):
    response = client.post("/sessions", json={"videoUrl": "https://cdn.example.com/talk.mp4"})
    session_id = response.json()["sessionId"]
    deliver(client, completed(queue.of_type("VIDEO_UPLOADED")[-1], VideoUploadedOutput(
        video_url="https://cdn.example.com/talk.mp4", video_duration=30.0, video_size=100,
        stored_url=f"sessions/{session_id}/original/video.mp4",
    )))
    deliver(client, completed(queue.of_type("CHUNK_VIDEO")[-1], ChunkVideoOutput(total_chunks=2, chunks=[
        ChunkInfo(chunk_id="c0", chunk_index=0, chunk_url="c0.mp4", start_time=0.0, end_time=20.0),
        ChunkInfo(chunk_id="c1", chunk_index=1, chunk_url="c1.mp4", start_time=20.0, end_time=30.0),
    ])))
    return session_id


class TestBasics:
    def test_health(self, client, queue):
        assert client.get("/health").json() == {"status": "ok"}
        assert queue.connected
        assert len(queue.callbacks) == 1

    def test_health_reports_a_lost_bus(self, client, queue):
        queue.connected = False
        response = client.get("/health")
        assert response.status_code == 503
        assert response.json()["status"] == "degraded"

    def test_styles_are_numbered(self, client):
        styles = client.get("/styles").json()
        assert [s["number"] for s in styles] == [1, 2, 3, 4, 5]
        assert styles[1]["styleId"] == "style_bold_yellow"


class TestSessions:
    def test_start_session(self, client, queue):
        response = client.post("/sessions", json={"videoUrl": "https://cdn.example.com/talk.mp4",
                                                  "mimeType": "video/quicktime"})

        assert response.status_code == 202
        body = response.json()
        assert body["status"] == "PENDING"
        assert body["readyForRender"] is False
        job = queue.of_type("VIDEO_UPLOADED")[0]
        assert job.session_id == body["sessionId"]
        assert job.data.mime_type == "video/quicktime"

    def test_blank_video_url_is_rejected(self, client):
        assert client.post("/sessions", json={"videoUrl": "  "}).status_code == 422

    def test_unknown_session(self, client):
        response = client.get("/sessions/missing")
        assert response.status_code == 404
        assert response.json()["error"] == "SESSION_NOT_FOUND"

    def test_style_before_chunking_conflicts(self, client):
        session_id = client.post("/sessions", json={"videoUrl": "https://cdn.example.com/a.mp4"}).json()["sessionId"]
        response = client.post(f"/sessions/{session_id}/style", json={"style": "1"})
        assert response.status_code == 409
        assert response.json()["error"] == "INVALID_TRANSITION"

    def test_combined_style_choice(self, client, queue):
        session_id = start_chunked_session(client, queue)

        response = client.post(f"/sessions/{session_id}/style", json={"style": "2A"})

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "TRANSCRIBING"
        assert body["selectedStyleId"] == "style_bold_yellow"
        assert body["captionMode"] == "word"
        assert [c["status"] for c in body["chunks"]] == ["TRANSCRIBING", "PENDING"]
        assert queue.of_type("TRANSCRIBE_CHUNK")[0].data.granularity == "word"

    def test_explicit_mode(self, client, queue):
        session_id = start_chunked_session(client, queue)
        body = client.post(f"/sessions/{session_id}/style", json={"style": "neon", "mode": "sentence"}).json()
        assert (body["selectedStyleId"], body["captionMode"]) == ("style_neon_green", "sentence")

    @pytest.mark.parametrize("payload", [{"style": "plaid"}, {"style": "1", "mode": "karaoke"}])
    def test_bad_style_requests(self, client, queue, payload):
        session_id = start_chunked_session(client, queue)
        response = client.post(f"/sessions/{session_id}/style", json=payload)
        assert response.status_code == 400
        assert client.get(f"/sessions/{session_id}").json()["status"] == "STYLE_SELECTION"

    def test_render_requires_review_to_finish(self, client, queue):
        session_id = start_chunked_session(client, queue)
        assert client.post(f"/sessions/{session_id}/render").status_code == 409

    def test_cancel(self, client, queue):
        session_id = start_chunked_session(client, queue)
        response = client.post(f"/sessions/{session_id}/cancel")
        assert response.json()["status"] == "CANCELLED"
        assert client.post(f"/sessions/{session_id}/cancel").status_code == 200


def test_unreachable_bus_is_reported(config):
    with TestClient(create_app(config, InMemorySessionRepository(), FakeQueue(fail=True))) as client:
        response = client.post("/sessions", json={"videoUrl": "https://cdn.example.com/talk.mp4"})
    assert response.status_code == 503
    assert response.json()["error"] == "QUEUE_CONNECTION_ERROR"
