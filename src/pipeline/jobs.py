"""
Job request and job result messages exchanged over the bus.

Messages are camelCase JSON tagged by a ``jobType`` discriminator. Models are
frozen: a job is never mutated once built.
"""

import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from subtitles.timeline import TranscriptSegment

from .errors import JobValidationError


class JobType(str, Enum):
    VIDEO_UPLOADED = "VIDEO_UPLOADED"
    CHUNK_VIDEO = "CHUNK_VIDEO"
    TRANSCRIBE_CHUNK = "TRANSCRIBE_CHUNK"
    GENERATE_PREVIEW = "GENERATE_PREVIEW"
    RENDER_FINAL = "RENDER_FINAL"


class JobPriority(str, Enum):
    """Carried on every job for observability; never used for scheduling."""
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"


class JobStatus(str, Enum):
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


CaptionMode = Literal["word", "sentence"]
Granularity = Literal["segment", "word"]


def new_job_id() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# Job payloads

class VideoUploadedData(CamelModel):
    video_url: str
    mime_type: str = "video/mp4"


class ChunkVideoData(CamelModel):
    video_url: str
    video_duration: float
    chunk_duration: float = 20.0


class TranscribeChunkData(CamelModel):
    chunk_id: str
    chunk_url: str
    chunk_index: int
    start_time: float
    end_time: float
    language: Optional[str] = None
    granularity: Granularity = "segment"


class GeneratePreviewData(CamelModel):
    chunk_id: str
    chunk_url: str
    chunk_index: int
    transcript: List[TranscriptSegment]
    style_id: str
    caption_mode: CaptionMode = "sentence"


class RenderChunk(CamelModel):
    chunk_id: str
    chunk_index: int
    start_time: float
    end_time: float
    transcript: List[TranscriptSegment]


class RenderFinalData(CamelModel):
    original_video_url: str
    chunks: List[RenderChunk]
    style_id: str
    caption_mode: CaptionMode = "sentence"
    output_format: Literal["mp4", "mov"] = "mp4"


# Job requests

class JobBase(CamelModel):
    job_id: str = Field(default_factory=new_job_id)
    session_id: str
    priority: JobPriority = JobPriority.NORMAL
    attempt: int = 1
    max_attempts: int = 1
    created_at: datetime = Field(default_factory=utc_now)


class VideoUploadedJob(JobBase):
    job_type: Literal["VIDEO_UPLOADED"] = "VIDEO_UPLOADED"
    data: VideoUploadedData


class ChunkVideoJob(JobBase):
    job_type: Literal["CHUNK_VIDEO"] = "CHUNK_VIDEO"
    data: ChunkVideoData


class TranscribeChunkJob(JobBase):
    job_type: Literal["TRANSCRIBE_CHUNK"] = "TRANSCRIBE_CHUNK"
    data: TranscribeChunkData


class GeneratePreviewJob(JobBase):
    job_type: Literal["GENERATE_PREVIEW"] = "GENERATE_PREVIEW"
    data: GeneratePreviewData


class RenderFinalJob(JobBase):
    job_type: Literal["RENDER_FINAL"] = "RENDER_FINAL"
    data: RenderFinalData


JobRequest = Annotated[
    Union[VideoUploadedJob, ChunkVideoJob, TranscribeChunkJob, GeneratePreviewJob, RenderFinalJob],
    Field(discriminator="job_type"),
]


# Result payloads

class VideoUploadedOutput(CamelModel):
    video_url: str
    video_duration: float
    video_size: int
    stored_url: str
    width: Optional[int] = None
    height: Optional[int] = None


class ChunkInfo(CamelModel):
    chunk_id: str
    chunk_index: int
    chunk_url: str
    start_time: float
    end_time: float


class ChunkVideoOutput(CamelModel):
    total_chunks: int
    chunks: List[ChunkInfo]


class TranscribeChunkOutput(CamelModel):
    chunk_id: str
    chunk_index: int
    transcript: List[TranscriptSegment]
    language: str
    duration: float
    provider: str


class GeneratePreviewOutput(CamelModel):
    chunk_id: str
    chunk_index: int
    preview_url: str
    thumbnail_url: Optional[str] = None


class RenderFinalOutput(CamelModel):
    final_video_url: str
    subtitles_url: Optional[str] = None
    duration: float
    file_size: int


# Job results

class ResultBase(CamelModel):
    job_id: str
    session_id: str
    status: JobStatus
    processed_at: datetime = Field(default_factory=utc_now)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == JobStatus.COMPLETED


class VideoUploadedResult(ResultBase):
    job_type: Literal["VIDEO_UPLOADED"] = "VIDEO_UPLOADED"
    data: Optional[VideoUploadedOutput] = None


class ChunkVideoResult(ResultBase):
    job_type: Literal["CHUNK_VIDEO"] = "CHUNK_VIDEO"
    data: Optional[ChunkVideoOutput] = None


class TranscribeChunkResult(ResultBase):
    job_type: Literal["TRANSCRIBE_CHUNK"] = "TRANSCRIBE_CHUNK"
    data: Optional[TranscribeChunkOutput] = None


class GeneratePreviewResult(ResultBase):
    job_type: Literal["GENERATE_PREVIEW"] = "GENERATE_PREVIEW"
    data: Optional[GeneratePreviewOutput] = None


class RenderFinalResult(ResultBase):
    job_type: Literal["RENDER_FINAL"] = "RENDER_FINAL"
    data: Optional[RenderFinalOutput] = None


JobResult = Annotated[
    Union[VideoUploadedResult, ChunkVideoResult, TranscribeChunkResult, GeneratePreviewResult, RenderFinalResult],
    Field(discriminator="job_type"),
]

RESULT_TYPES = {
    "VIDEO_UPLOADED": VideoUploadedResult,
    "CHUNK_VIDEO": ChunkVideoResult,
    "TRANSCRIBE_CHUNK": TranscribeChunkResult,
    "GENERATE_PREVIEW": GeneratePreviewResult,
    "RENDER_FINAL": RenderFinalResult,
}

JOB_ADAPTER = TypeAdapter(JobRequest)
RESULT_ADAPTER = TypeAdapter(JobResult)


def job_type_of(kind: Union[str, JobType]) -> str:
    """Normalize a job kind to its wire literal, rejecting unknown kinds."""
    return JobType(kind).value


def _load(raw: Union[str, bytes, Dict[str, Any]], what: str) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    try:
        message = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise JobValidationError(f"Malformed {what} message: {e}") from e
    if not isinstance(message, dict):
        raise JobValidationError(f"Malformed {what} message: expected a JSON object")
    return message


def parse_job(raw: Union[str, bytes, Dict[str, Any]]) -> JobRequest:
    """Deserialize a job message, requiring an explicit jobId."""
    message = _load(raw, "job")
    if not message.get("jobId"):
        raise JobValidationError("Job message is missing jobId", {"jobType": message.get("jobType")})
    try:
        return JOB_ADAPTER.validate_python(message)
    except ValidationError as e:
        raise JobValidationError(f"Invalid job message: {e}", {"jobId": message.get("jobId")}) from e


def parse_result(raw: Union[str, bytes, Dict[str, Any]]) -> JobResult:
    message = _load(raw, "result")
    try:
        return RESULT_ADAPTER.validate_python(message)
    except ValidationError as e:
        raise JobValidationError(f"Invalid result message: {e}", {"jobId": message.get("jobId")}) from e


def dump_message(message: BaseModel) -> str:
    """Serialize a job or result to its camelCase wire form."""
    return message.model_dump_json(by_alias=True)


def completed(job: JobBase, data: BaseModel) -> ResultBase:
    result_type = RESULT_TYPES[job.job_type]
    return result_type(job_id=job.job_id, session_id=job.session_id, status=JobStatus.COMPLETED, data=data)


def failed(job: JobBase, error: str) -> ResultBase:
    result_type = RESULT_TYPES[job.job_type]
    return result_type(job_id=job.job_id, session_id=job.session_id, status=JobStatus.FAILED, error=error)
