"""FastAPI server exposing the captioning session API.

Run with:
uvicorn server.app:create_app --factory --host 0.0.0.0 --port 8000

A session is driven by user signals:
POST /sessions                      {"videoUrl": "...", "mimeType": "video/mp4"}
POST /sessions/{id}/style           {"style": "2", "mode": "word"} or {"style": "1A"}
POST /sessions/{id}/approve | /reject | /render | /cancel
POST /sessions/{id}/correct         {"text": "corrected words"}
GET  /sessions/{id}

Job results arrive over the message bus and are applied by the coordinator.
When STORAGE_PUBLIC_URL points at this server, stored artifacts are served
under /files so URL-only transcription providers can fetch chunk audio.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import field_validator

from pipeline.config import PipelineConfig
from pipeline.coordinator import PipelineCoordinator
from pipeline.errors import CoordinatorError, QueueConnectionError, SessionNotFoundError
from pipeline.jobs import CamelModel
from pipeline.queue import JobQueue
from pipeline.repository import Chunk, InMemorySessionRepository, Session, SessionRepository
from subtitles import TranscriptSegment, UnknownStyleError, list_styles, parse_style_choice

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------
class StartSessionRequest(CamelModel):
    video_url: str
    mime_type: str = "video/mp4"
    session_id: Optional[str] = None

    @field_validator("video_url")
    @classmethod
    def _strip(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("videoUrl must not be empty")
        return v


class SelectStyleRequest(CamelModel):
    style: str
    mode: Optional[str] = None  # word, sentence; may also be folded into style as "1A"/"2B"


class CorrectTranscriptRequest(CamelModel):
    text: str


class ChunkView(CamelModel):
    chunk_id: str
    chunk_index: int
    status: str
    start_time: float
    end_time: float
    approved: bool
    reprocess_count: int
    preview_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    transcript: Optional[List[TranscriptSegment]] = None

    @classmethod
    def from_record(cls, chunk: Chunk) -> "ChunkView":
        return cls(
            chunk_id=chunk.chunk_id,
            chunk_index=chunk.chunk_index,
            status=chunk.status.value,
            start_time=chunk.start_time,
            end_time=chunk.end_time,
            approved=chunk.approved,
            reprocess_count=chunk.reprocess_count,
            preview_url=chunk.preview_url,
            thumbnail_url=chunk.thumbnail_url,
            transcript=chunk.transcript,
        )


class SessionView(CamelModel):
    session_id: str
    status: str
    video_url: Optional[str] = None
    original_video_url: Optional[str] = None
    original_video_duration: Optional[float] = None
    selected_style_id: Optional[str] = None
    caption_mode: str
    current_chunk_index: int
    total_chunks: int
    ready_for_render: bool
    final_video_url: Optional[str] = None
    subtitles_url: Optional[str] = None
    error_message: Optional[str] = None
    updated_at: datetime
    chunks: List[ChunkView] = []

    @classmethod
    def from_record(cls, session: Session, chunks: Optional[List[Chunk]] = None) -> "SessionView":
        return cls(
            session_id=session.session_id,
            status=session.status.value,
            video_url=session.video_url,
            original_video_url=session.original_video_url,
            original_video_duration=session.original_video_duration,
            selected_style_id=session.selected_style_id,
            caption_mode=session.caption_mode,
            current_chunk_index=session.current_chunk_index,
            total_chunks=session.total_chunks,
            ready_for_render=session.ready_for_render,
            final_video_url=session.final_video_url,
            subtitles_url=session.subtitles_url,
            error_message=session.error_message,
            updated_at=session.updated_at,
            chunks=[ChunkView.from_record(c) for c in chunks or []],
        )


class StyleView(CamelModel):
    number: int
    style_id: str
    name: str
    description: str


class JobAccepted(CamelModel):
    session_id: str
    job_id: str
    status: str


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------
def create_app(config: Optional[PipelineConfig] = None,
               repository: Optional[SessionRepository] = None,
               queue=None) -> FastAPI:
    """
    Build the API application.

    Args:
        config: Pipeline configuration (read from the environment when omitted)
        repository: Session/chunk persistence (in-memory when omitted)
        queue: Job queue producer (Redis-backed when omitted)
    """
    config = config or PipelineConfig.from_env()
    repository = repository or InMemorySessionRepository()
    queue = queue or JobQueue.from_config(config)
    coordinator = PipelineCoordinator(repository, queue, config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await queue.connect()
        queue.on_result(coordinator.handle_result)
        logger.info("Caption API ready")
        yield
        await queue.close()

    app = FastAPI(title="Video Captioning Pipeline API", lifespan=lifespan)
    app.state.coordinator = coordinator
    app.state.repository = repository

    if config.storage_public_url:
        app.mount("/files", StaticFiles(directory=config.storage_root, check_dir=False), name="files")

    @app.exception_handler(SessionNotFoundError)
    async def _session_not_found(request: Request, exc: SessionNotFoundError):
        return JSONResponse(status_code=404, content=exc.to_dict())

    @app.exception_handler(CoordinatorError)
    async def _conflict(request: Request, exc: CoordinatorError):
        return JSONResponse(status_code=409, content=exc.to_dict())

    @app.exception_handler(QueueConnectionError)
    async def _bus_unavailable(request: Request, exc: QueueConnectionError):
        logger.error(f"Message bus unavailable: {exc}")
        return JSONResponse(status_code=503, content=exc.to_dict())

    @app.exception_handler(UnknownStyleError)
    async def _unknown_style(request: Request, exc: UnknownStyleError):
        return JSONResponse(status_code=400, content={"error": exc.error_code, "message": str(exc)})

    @app.exception_handler(ValueError)
    async def _bad_value(request: Request, exc: ValueError):
        return JSONResponse(status_code=400, content={"error": "INVALID_REQUEST", "message": str(exc)})

    async def _view(session_id: str) -> SessionView:
        session = await repository.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found", {"sessionId": session_id})
        return SessionView.from_record(session, await repository.list_chunks(session_id))

    # -----------------------------------------------------------------------
    # Routes
    # -----------------------------------------------------------------------
    @app.get("/health")
    async def health():
        if not queue.connected:
            return JSONResponse(status_code=503, content={"status": "degraded",
                                                          "message": "Message bus subscription lost"})
        return {"status": "ok"}

    @app.get("/styles", response_model=List[StyleView])
    async def styles():
        return [
            StyleView(number=i, style_id=s.style_id, name=s.name, description=s.description)
            for i, s in enumerate(list_styles(), start=1)
        ]

    @app.post("/sessions", response_model=SessionView, status_code=202)
    async def start_session(request: StartSessionRequest):
        session = await coordinator.start_session(request.video_url, request.mime_type, request.session_id)
        return await _view(session.session_id)

    @app.get("/sessions/{session_id}", response_model=SessionView)
    async def get_session(session_id: str):
        return await _view(session_id)

    @app.post("/sessions/{session_id}/style", response_model=SessionView)
    async def select_style(session_id: str, request: SelectStyleRequest):
        if request.mode:
            style_token, mode = request.style, request.mode
        else:
            style, mode = parse_style_choice(request.style)
            style_token = style.style_id
        await coordinator.select_style(session_id, style_token, mode)
        return await _view(session_id)

    @app.post("/sessions/{session_id}/approve", response_model=SessionView)
    async def approve(session_id: str):
        await coordinator.approve_chunk(session_id)
        return await _view(session_id)

    @app.post("/sessions/{session_id}/reject", response_model=SessionView)
    async def reject(session_id: str):
        await coordinator.reject_chunk(session_id)
        return await _view(session_id)

    @app.post("/sessions/{session_id}/correct", response_model=SessionView)
    async def correct(session_id: str, request: CorrectTranscriptRequest):
        await coordinator.correct_transcript(session_id, request.text)
        return await _view(session_id)

    @app.post("/sessions/{session_id}/render", response_model=JobAccepted, status_code=202)
    async def render(session_id: str):
        job_id = await coordinator.start_render(session_id)
        return JobAccepted(session_id=session_id, job_id=job_id, status="RENDERING")

    @app.post("/sessions/{session_id}/cancel", response_model=SessionView)
    async def cancel(session_id: str):
        await coordinator.cancel_session(session_id)
        return await _view(session_id)

    return app


def main():
    import uvicorn

    config = PipelineConfig.from_env()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    uvicorn.run(create_app(config), host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
