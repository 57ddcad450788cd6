"""
Session and chunk records plus the narrow persistence interface the
coordinator uses to read and update them.

The records live outside the pipeline core; InMemorySessionRepository is the
stand-in used by the bundled server and the tests.
"""

import asyncio
import copy
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from subtitles.timeline import TranscriptSegment


class SessionStatus(str, Enum):
    PENDING = "PENDING"
    CHUNKING = "CHUNKING"
    STYLE_SELECTION = "STYLE_SELECTION"
    TRANSCRIBING = "TRANSCRIBING"
    REVIEWING = "REVIEWING"
    RENDERING = "RENDERING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES = frozenset({SessionStatus.COMPLETED, SessionStatus.FAILED, SessionStatus.CANCELLED})


class ChunkStatus(str, Enum):
    PENDING = "PENDING"
    TRANSCRIBING = "TRANSCRIBING"
    TRANSCRIBED = "TRANSCRIBED"
    GENERATING_PREVIEW = "GENERATING_PREVIEW"
    PREVIEW_READY = "PREVIEW_READY"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    REPROCESSING = "REPROCESSING"


# A chunk in one of these states has a job in flight
IN_FLIGHT_CHUNK_STATUSES = frozenset({
    ChunkStatus.TRANSCRIBING,
    ChunkStatus.REPROCESSING,
    ChunkStatus.GENERATING_PREVIEW,
})


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Session:
    session_id: str
    status: SessionStatus = SessionStatus.PENDING
    video_url: Optional[str] = None
    mime_type: str = "video/mp4"
    original_video_url: Optional[str] = None
    original_video_duration: Optional[float] = None
    original_video_size: Optional[int] = None
    selected_style_id: Optional[str] = None
    caption_mode: str = "sentence"
    current_chunk_index: int = 0
    total_chunks: int = 0
    final_video_url: Optional[str] = None
    subtitles_url: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    @property
    def ready_for_render(self) -> bool:
        return (self.status == SessionStatus.REVIEWING and self.total_chunks > 0
                and self.current_chunk_index >= self.total_chunks)


@dataclass
class Chunk:
    session_id: str
    chunk_index: int
    chunk_id: str
    chunk_url: str
    start_time: float
    end_time: float
    status: ChunkStatus = ChunkStatus.PENDING
    transcript: Optional[List[TranscriptSegment]] = None
    preview_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    approved: bool = False
    reprocess_count: int = 0

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


def _apply(record, changes: Dict[str, Any]):
    names = {f.name for f in fields(record)}
    unknown = set(changes) - names
    if unknown:
        raise AttributeError(f"Unknown {type(record).__name__} fields: {sorted(unknown)}")
    for name, value in changes.items():
        setattr(record, name, value)


class SessionRepository:
    """Lookup by id and field updates; nothing else is required of a backend."""

    async def create_session(self, session: Session) -> Session:
        raise NotImplementedError

    async def get_session(self, session_id: str) -> Optional[Session]:
        raise NotImplementedError

    async def update_session(self, session_id: str, **changes) -> Optional[Session]:
        raise NotImplementedError

    async def delete_session(self, session_id: str) -> None:
        raise NotImplementedError

    async def save_chunk(self, chunk: Chunk) -> Chunk:
        """Create the chunk, replacing any existing one at the same index."""
        raise NotImplementedError

    async def get_chunk(self, session_id: str, chunk_index: int) -> Optional[Chunk]:
        raise NotImplementedError

    async def update_chunk(self, session_id: str, chunk_index: int, **changes) -> Optional[Chunk]:
        raise NotImplementedError

    async def list_chunks(self, session_id: str) -> List[Chunk]:
        raise NotImplementedError


class InMemorySessionRepository(SessionRepository):
    """Dictionary-backed repository. Reads return copies, like a real store would."""

    def __init__(self):
        self._sessions: Dict[str, Session] = {}
        self._chunks: Dict[str, Dict[int, Chunk]] = {}
        self._lock = asyncio.Lock()

    async def create_session(self, session: Session) -> Session:
        async with self._lock:
            if session.session_id in self._sessions:
                raise ValueError(f"Session {session.session_id} already exists")
            self._sessions[session.session_id] = copy.deepcopy(session)
            self._chunks.setdefault(session.session_id, {})
            return copy.deepcopy(session)

    async def get_session(self, session_id: str) -> Optional[Session]:
        session = self._sessions.get(session_id)
        return copy.deepcopy(session) if session else None

    async def update_session(self, session_id: str, **changes) -> Optional[Session]:
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            _apply(session, changes)
            session.updated_at = _now()
            return copy.deepcopy(session)

    async def delete_session(self, session_id: str) -> None:
        async with self._lock:
            self._sessions.pop(session_id, None)
            self._chunks.pop(session_id, None)

    async def save_chunk(self, chunk: Chunk) -> Chunk:
        async with self._lock:
            self._chunks.setdefault(chunk.session_id, {})[chunk.chunk_index] = copy.deepcopy(chunk)
            return copy.deepcopy(chunk)

    async def get_chunk(self, session_id: str, chunk_index: int) -> Optional[Chunk]:
        chunk = self._chunks.get(session_id, {}).get(chunk_index)
        return copy.deepcopy(chunk) if chunk else None

    async def update_chunk(self, session_id: str, chunk_index: int, **changes) -> Optional[Chunk]:
        async with self._lock:
            chunk = self._chunks.get(session_id, {}).get(chunk_index)
            if chunk is None:
                return None
            _apply(chunk, changes)
            return copy.deepcopy(chunk)

    async def list_chunks(self, session_id: str) -> List[Chunk]:
        chunks = self._chunks.get(session_id, {})
        return [copy.deepcopy(chunks[i]) for i in sorted(chunks)]
