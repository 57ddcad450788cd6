"""
Pipeline coordinator: the per-session state machine.

Transitions are driven only by job results and user signals. Each stage is
enqueued only after the previous stage's result arrived, and at most one
chunk per session has a job in flight, which is what makes the
last-writer-wins updates to session and chunk records safe.

State is written before the job that depends on it is published, so a fast
result always finds the state it expects. When the publish fails, the
records are put back as they were and the signal can be retried.
"""

import logging
import uuid
from dataclasses import fields
from typing import Any, Dict, List, Optional, Sequence

from subtitles import redistribute_words, resolve_style
from subtitles.captions import CAPTION_MODES

from .config import PipelineConfig
from .errors import CoordinatorError, InvalidTransitionError, QueueConnectionError, SessionNotFoundError
from .jobs import (
    ChunkVideoData,
    ChunkVideoJob,
    GeneratePreviewData,
    GeneratePreviewJob,
    JobPriority,
    RenderChunk,
    RenderFinalData,
    RenderFinalJob,
    TranscribeChunkData,
    TranscribeChunkJob,
    VideoUploadedData,
    VideoUploadedJob,
)
from .repository import (
    IN_FLIGHT_CHUNK_STATUSES,
    TERMINAL_STATUSES,
    Chunk,
    ChunkStatus,
    Session,
    SessionRepository,
    SessionStatus,
)

logger = logging.getLogger(__name__)

# Bookkeeping fields that are never rolled back
_FIXED_SESSION_FIELDS = ("session_id", "created_at", "updated_at")


def _restorable(session: Session) -> Dict[str, Any]:
    return {f.name: getattr(session, f.name) for f in fields(session) if f.name not in _FIXED_SESSION_FIELDS}


class PipelineCoordinator:
    """Reacts to job results and user signals, and decides the next job."""

    def __init__(self, repository: SessionRepository, queue, config: Optional[PipelineConfig] = None):
        self.repository = repository
        self.queue = queue
        self.config = config or PipelineConfig()
        self._result_handlers = {
            "VIDEO_UPLOADED": self._on_video_uploaded,
            "CHUNK_VIDEO": self._on_chunk_video,
            "TRANSCRIBE_CHUNK": self._on_transcribe_chunk,
            "GENERATE_PREVIEW": self._on_generate_preview,
            "RENDER_FINAL": self._on_render_final,
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _job(self, job_cls, session_id: str, data, priority: JobPriority = JobPriority.NORMAL):
        return job_cls(session_id=session_id, data=data, priority=priority,
                       max_attempts=self.config.job_max_attempts)

    async def _require_session(self, session_id: str) -> Session:
        session = await self.repository.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found", {"sessionId": session_id})
        return session

    async def _require_chunk(self, session_id: str, chunk_index: int) -> Chunk:
        chunk = await self.repository.get_chunk(session_id, chunk_index)
        if chunk is None:
            raise CoordinatorError(f"Chunk {chunk_index} of session {session_id} not found",
                                   {"sessionId": session_id, "chunkIndex": chunk_index})
        return chunk

    def _expect_status(self, session: Session, *allowed: SessionStatus):
        if session.status not in allowed:
            raise InvalidTransitionError(
                f"Session {session.session_id} is {session.status.value}, expected "
                f"{' or '.join(s.value for s in allowed)}",
                {"sessionId": session.session_id, "status": session.status.value},
            )

    async def _review_chunk(self, session: Session) -> Chunk:
        """The current chunk, which must have a preview waiting for a decision."""
        self._expect_status(session, SessionStatus.REVIEWING)
        if session.current_chunk_index >= session.total_chunks:
            raise InvalidTransitionError(f"All chunks of session {session.session_id} are already approved",
                                         {"sessionId": session.session_id})
        chunk = await self._require_chunk(session.session_id, session.current_chunk_index)
        if chunk.status != ChunkStatus.PREVIEW_READY:
            raise InvalidTransitionError(
                f"Chunk {chunk.chunk_index} is {chunk.status.value}, no preview to review",
                {"sessionId": session.session_id, "chunkIndex": chunk.chunk_index},
            )
        return chunk

    async def _ensure_nothing_in_flight(self, session_id: str, chunk_index: int):
        for chunk in await self.repository.list_chunks(session_id):
            if chunk.chunk_index != chunk_index and chunk.status in IN_FLIGHT_CHUNK_STATUSES:
                raise InvalidTransitionError(
                    f"Chunk {chunk.chunk_index} of session {session_id} is still {chunk.status.value}",
                    {"sessionId": session_id, "chunkIndex": chunk.chunk_index},
                )

    def _transcription_job(self, session: Session, chunk: Chunk,
                           priority: JobPriority = JobPriority.NORMAL) -> TranscribeChunkJob:
        return self._job(TranscribeChunkJob, session.session_id, TranscribeChunkData(
            chunk_id=chunk.chunk_id,
            chunk_url=chunk.chunk_url,
            chunk_index=chunk.chunk_index,
            start_time=chunk.start_time,
            end_time=chunk.end_time,
            granularity="word" if session.caption_mode == "word" else "segment",
        ), priority)

    def _preview_job(self, session: Session, chunk: Chunk, transcript,
                     priority: JobPriority = JobPriority.NORMAL) -> GeneratePreviewJob:
        return self._job(GeneratePreviewJob, session.session_id, GeneratePreviewData(
            chunk_id=chunk.chunk_id,
            chunk_url=chunk.chunk_url,
            chunk_index=chunk.chunk_index,
            transcript=transcript,
            style_id=session.selected_style_id,
            caption_mode=session.caption_mode,
        ), priority)

    async def _publish(self, job, before: Session, chunks_before: Sequence[Chunk] = ()) -> str:
        """
        Publish a job whose state changes have already been written.

        If the bus rejects the job, the session and the given chunks are
        written back exactly as they were read before the change, so nothing
        is left waiting on a job that was never sent.

        Raises:
            QueueConnectionError: The job was not published
        """
        try:
            return await self.queue.publish(job)
        except QueueConnectionError:
            logger.warning(f"Session {before.session_id}: {job.job_type} job not published, "
                           f"restoring {before.status.value}")
            await self.repository.update_session(before.session_id, **_restorable(before))
            for chunk in chunks_before:
                await self.repository.save_chunk(chunk)
            raise

    async def _fail(self, session: Session, message: str):
        await self.repository.update_session(session.session_id, status=SessionStatus.FAILED, error_message=message)
        logger.error(f"Session {session.session_id} failed: {message}")

    # ------------------------------------------------------------------
    # Job results
    # ------------------------------------------------------------------
    async def handle_result(self, result):
        """
        Apply one job result to the session it belongs to.

        Results for unknown or finished sessions, and results that no longer
        match the session's state, are logged and dropped. If the next stage
        cannot be enqueued the session fails, since the result is consumed.
        """
        session = await self.repository.get_session(result.session_id)
        if session is None:
            logger.warning(f"Dropping {result.job_type} result {result.job_id}: session {result.session_id} not found")
            return
        if session.status in TERMINAL_STATUSES:
            logger.info(f"Ignoring {result.job_type} result for {session.status.value} session {session.session_id}")
            return

        if not result.ok:
            await self._fail(session, result.error or f"{result.job_type} failed")
            return

        try:
            await self._result_handlers[result.job_type](session, result.data)
        except CoordinatorError as e:
            logger.error(f"Dropping {result.job_type} result {result.job_id}: {e}")
        except QueueConnectionError as e:
            await self._fail(session, f"Could not enqueue the next stage after {result.job_type}: {e}")

    async def _on_video_uploaded(self, session: Session, data):
        self._expect_status(session, SessionStatus.PENDING)
        await self.repository.update_session(
            session.session_id,
            status=SessionStatus.CHUNKING,
            original_video_url=data.stored_url,
            original_video_duration=data.video_duration,
            original_video_size=data.video_size,
        )
        logger.info(f"Session {session.session_id}: PENDING -> CHUNKING ({data.video_duration:.2f}s video)")
        await self._publish(self._job(ChunkVideoJob, session.session_id, ChunkVideoData(
            video_url=data.stored_url,
            video_duration=data.video_duration,
            chunk_duration=self.config.chunk_duration_seconds,
        )), session)

    async def _on_chunk_video(self, session: Session, data):
        self._expect_status(session, SessionStatus.CHUNKING)
        for info in data.chunks:
            await self.repository.save_chunk(Chunk(
                session_id=session.session_id,
                chunk_index=info.chunk_index,
                chunk_id=info.chunk_id,
                chunk_url=info.chunk_url,
                start_time=info.start_time,
                end_time=info.end_time,
            ))
        await self.repository.update_session(
            session.session_id,
            status=SessionStatus.STYLE_SELECTION,
            total_chunks=data.total_chunks,
            current_chunk_index=0,
        )
        logger.info(f"Session {session.session_id}: CHUNKING -> STYLE_SELECTION ({data.total_chunks} chunks)")

    async def _on_transcribe_chunk(self, session: Session, data):
        self._expect_status(session, SessionStatus.TRANSCRIBING)
        if data.chunk_index != session.current_chunk_index:
            raise CoordinatorError(f"Transcript for chunk {data.chunk_index} but current chunk is "
                                   f"{session.current_chunk_index}")
        chunk = await self._require_chunk(session.session_id, data.chunk_index)
        if chunk.status not in (ChunkStatus.TRANSCRIBING, ChunkStatus.REPROCESSING):
            raise CoordinatorError(f"Chunk {chunk.chunk_index} is {chunk.status.value}, not awaiting a transcript")

        transcribed = await self.repository.update_chunk(session.session_id, chunk.chunk_index,
                                                         transcript=list(data.transcript),
                                                         status=ChunkStatus.TRANSCRIBED)
        logger.info(f"Session {session.session_id}: chunk {chunk.chunk_index} transcribed "
                    f"({len(data.transcript)} segments), generating preview")
        await self.repository.update_chunk(session.session_id, chunk.chunk_index,
                                           status=ChunkStatus.GENERATING_PREVIEW)
        await self._publish(self._preview_job(session, transcribed, data.transcript), session, [transcribed])

    async def _on_generate_preview(self, session: Session, data):
        self._expect_status(session, SessionStatus.TRANSCRIBING)
        chunk = await self._require_chunk(session.session_id, data.chunk_index)
        if data.chunk_index != session.current_chunk_index or chunk.status != ChunkStatus.GENERATING_PREVIEW:
            raise CoordinatorError(f"Preview for chunk {data.chunk_index} does not match session state")

        await self.repository.update_chunk(session.session_id, chunk.chunk_index, status=ChunkStatus.PREVIEW_READY,
                                           preview_url=data.preview_url, thumbnail_url=data.thumbnail_url)
        await self.repository.update_session(session.session_id, status=SessionStatus.REVIEWING)
        logger.info(f"Session {session.session_id}: chunk {chunk.chunk_index} preview ready -> REVIEWING")

    async def _on_render_final(self, session: Session, data):
        self._expect_status(session, SessionStatus.RENDERING)
        await self.repository.update_session(session.session_id, status=SessionStatus.COMPLETED,
                                             final_video_url=data.final_video_url, subtitles_url=data.subtitles_url)
        logger.info(f"Session {session.session_id}: RENDERING -> COMPLETED ({data.file_size} bytes)")

    # ------------------------------------------------------------------
    # User signals
    # ------------------------------------------------------------------
    async def start_session(self, video_url: str, mime_type: str = "video/mp4",
                            session_id: Optional[str] = None) -> Session:
        """Create a session for an uploaded video and enqueue its ingestion."""
        session = await self.repository.create_session(Session(
            session_id=session_id or uuid.uuid4().hex,
            video_url=video_url,
            mime_type=mime_type,
        ))
        try:
            await self.queue.publish(self._job(VideoUploadedJob, session.session_id,
                                               VideoUploadedData(video_url=video_url, mime_type=mime_type)))
        except QueueConnectionError:
            await self.repository.delete_session(session.session_id)
            raise
        logger.info(f"Session {session.session_id} created for {video_url}")
        return session

    async def select_style(self, session_id: str, style: str, mode: str = "sentence") -> Session:
        """Record the style and caption mode, then start transcribing chunk 0 only."""
        before = await self._require_session(session_id)
        self._expect_status(before, SessionStatus.STYLE_SELECTION)
        if mode not in CAPTION_MODES:
            raise ValueError(f"Unknown caption mode: {mode}")
        caption_style = resolve_style(style)
        first_chunk = await self._require_chunk(session_id, 0)
        await self._ensure_nothing_in_flight(session_id, 0)

        session = await self.repository.update_session(
            session_id,
            selected_style_id=caption_style.style_id,
            caption_mode=mode,
            status=SessionStatus.TRANSCRIBING,
            current_chunk_index=0,
        )
        await self.repository.update_chunk(session_id, 0, status=ChunkStatus.TRANSCRIBING)
        logger.info(f"Session {session_id}: STYLE_SELECTION -> TRANSCRIBING "
                    f"(style {caption_style.style_id}, {mode} mode)")
        await self._publish(self._transcription_job(session, first_chunk), before, [first_chunk])
        return session

    async def approve_chunk(self, session_id: str) -> Session:
        """
        Approve the current chunk and move on.

        Approving the last chunk leaves the session ready for render
        (REVIEWING with current_chunk_index == total_chunks) without
        enqueueing anything.
        """
        before = await self._require_session(session_id)
        chunk = await self._review_chunk(before)

        next_index = chunk.chunk_index + 1
        if next_index >= before.total_chunks:
            await self.repository.update_chunk(session_id, chunk.chunk_index, approved=True,
                                               status=ChunkStatus.APPROVED)
            session = await self.repository.update_session(session_id, current_chunk_index=before.total_chunks)
            logger.info(f"Session {session_id}: all {session.total_chunks} chunks approved, ready for render")
            return session

        next_chunk = await self._require_chunk(session_id, next_index)
        await self._ensure_nothing_in_flight(session_id, next_index)
        await self.repository.update_chunk(session_id, chunk.chunk_index, approved=True, status=ChunkStatus.APPROVED)
        session = await self.repository.update_session(session_id, current_chunk_index=next_index,
                                                       status=SessionStatus.TRANSCRIBING)
        await self.repository.update_chunk(session_id, next_index, status=ChunkStatus.TRANSCRIBING)
        logger.info(f"Session {session_id}: chunk {chunk.chunk_index} approved, transcribing chunk {next_index}")
        await self._publish(self._transcription_job(session, next_chunk), before, [chunk, next_chunk])
        return session

    async def reject_chunk(self, session_id: str) -> Chunk:
        """Throw away the current chunk's transcript and preview and transcribe it again."""
        before = await self._require_session(session_id)
        chunk = await self._review_chunk(before)
        rejected = await self.repository.update_chunk(
            session_id, chunk.chunk_index,
            status=ChunkStatus.REJECTED,
            reprocess_count=chunk.reprocess_count + 1,
            transcript=None,
            preview_url=None,
            thumbnail_url=None,
            approved=False,
        )
        session = await self.repository.update_session(session_id, status=SessionStatus.TRANSCRIBING)
        logger.info(f"Session {session_id}: chunk {chunk.chunk_index} rejected "
                    f"(reprocess #{rejected.reprocess_count}), transcribing again")
        await self.repository.update_chunk(session_id, chunk.chunk_index, status=ChunkStatus.REPROCESSING)
        await self._publish(self._transcription_job(session, rejected, JobPriority.HIGH), before, [chunk])
        return await self._require_chunk(session_id, chunk.chunk_index)

    async def correct_transcript(self, session_id: str, text: str) -> Chunk:
        """
        Replace the current chunk's transcript with user-corrected text.

        The corrected words are spread evenly over the time span of the old
        transcript and a new preview is generated directly, skipping
        transcription.
        """
        before = await self._require_session(session_id)
        chunk = await self._review_chunk(before)
        if not chunk.transcript:
            raise InvalidTransitionError(f"Chunk {chunk.chunk_index} has no transcript to align the correction with",
                                         {"sessionId": session_id, "chunkIndex": chunk.chunk_index})
        start = min(s.start for s in chunk.transcript)
        end = max(s.end for s in chunk.transcript)
        corrected = redistribute_words(text, start, end)
        if not corrected:
            raise ValueError("Corrected text is empty")

        updated = await self.repository.update_chunk(
            session_id, chunk.chunk_index,
            transcript=corrected,
            status=ChunkStatus.GENERATING_PREVIEW,
            reprocess_count=chunk.reprocess_count + 1,
            preview_url=None,
            thumbnail_url=None,
        )
        session = await self.repository.update_session(session_id, status=SessionStatus.TRANSCRIBING)
        logger.info(f"Session {session_id}: chunk {chunk.chunk_index} transcript corrected "
                    f"({len(corrected)} words), regenerating preview")
        await self._publish(self._preview_job(session, updated, corrected, JobPriority.HIGH), before, [chunk])
        return updated

    async def start_render(self, session_id: str) -> str:
        """Enqueue the final render once every chunk is approved. Returns the job id."""
        session = await self._require_session(session_id)
        if not session.ready_for_render:
            raise InvalidTransitionError(f"Session {session_id} is not ready for render",
                                         {"sessionId": session_id, "status": session.status.value})
        chunks: List[Chunk] = await self.repository.list_chunks(session_id)
        pending = [c.chunk_index for c in chunks if not c.approved]
        if len(chunks) != session.total_chunks or pending:
            raise InvalidTransitionError(f"Session {session_id} has unapproved chunks: {pending}",
                                         {"sessionId": session_id})

        await self.repository.update_session(session_id, status=SessionStatus.RENDERING)
        logger.info(f"Session {session_id}: REVIEWING -> RENDERING")
        job = self._job(RenderFinalJob, session_id, RenderFinalData(
            original_video_url=session.original_video_url,
            chunks=[
                RenderChunk(chunk_id=c.chunk_id, chunk_index=c.chunk_index, start_time=c.start_time,
                            end_time=c.end_time, transcript=c.transcript or [])
                for c in chunks
            ],
            style_id=session.selected_style_id,
            caption_mode=session.caption_mode,
            output_format=self.config.output_format,
        ))
        return await self._publish(job, session)

    async def cancel_session(self, session_id: str) -> Session:
        session = await self._require_session(session_id)
        if session.status == SessionStatus.CANCELLED:
            return session
        if session.status in TERMINAL_STATUSES:
            raise InvalidTransitionError(f"Session {session_id} already {session.status.value}",
                                         {"sessionId": session_id})
        session = await self.repository.update_session(session_id, status=SessionStatus.CANCELLED)
        logger.info(f"Session {session_id} cancelled")
        return session
