"""
Stage processors: one coroutine per job kind.

Each processor takes the worker context and a job, drives the media toolkit,
the transcription providers and the object store, and always returns a
COMPLETED or FAILED result. Outputs are written to deterministic store paths,
so re-running a job overwrites instead of duplicating.
"""

import contextlib
import functools
import json
import logging
import os
import shutil
import tempfile
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, List

import aiohttp

from storage import ObjectStore, blob_path
from subtitles import SRTGenerator, TranscriptSegment, generate_ass, get_style, merge_transcripts
from subtitles.timeline import quantize, shift_segments, to_chunk_relative
from transcription import ProviderSet, TranscriptionOptions
from video import FFmpegToolkit, MediaToolError, clamp_chunk_duration, plan_chunks
from video.ffmpeg_toolkit import FINAL_PROFILE, PREVIEW_PROFILE

from .config import PipelineConfig
from .errors import DownloadError
from .jobs import (
    ChunkInfo,
    ChunkVideoOutput,
    GeneratePreviewOutput,
    JobType,
    RenderFinalOutput,
    TranscribeChunkOutput,
    VideoUploadedOutput,
    completed,
    failed,
)

logger = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT = 600  # seconds
DOWNLOAD_CHUNK_SIZE = 1 << 20

MIME_EXTENSIONS = {
    "video/mp4": "mp4",
    "video/quicktime": "mov",
    "video/webm": "webm",
    "video/x-matroska": "mkv",
    "video/x-msvideo": "avi",
    "video/3gpp": "3gp",
}

OUTPUT_CONTENT_TYPES = {"mp4": "video/mp4", "mov": "video/quicktime"}


@dataclass
class WorkerContext:
    """Handles shared by every processor in a worker process."""
    store: ObjectStore
    toolkit: FFmpegToolkit
    providers: ProviderSet
    config: PipelineConfig
    http_session_factory: Callable[..., aiohttp.ClientSession] = aiohttp.ClientSession


@contextlib.contextmanager
def scratch_dir(config: PipelineConfig, session_id: str, stage: str):
    """
    Create a private temporary directory for one job.

    The directory is namespaced by session and stage and removed on exit,
    whether the job succeeded or not.
    """
    session_root = os.path.join(config.temp_dir, session_id)
    os.makedirs(session_root, exist_ok=True)
    path = tempfile.mkdtemp(prefix=f"{stage}_", dir=session_root)
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)
        with contextlib.suppress(OSError):
            os.rmdir(session_root)  # only succeeds once no other job uses it


def describe_error(error: Exception) -> str:
    return str(error) or type(error).__name__


def _extension(reference: str, default: str = "mp4") -> str:
    ext = os.path.splitext(reference.split("?", 1)[0])[1].lstrip(".").lower()
    return ext or default


async def download(ctx: WorkerContext, url: str, local_file: str) -> str:
    """Stream a remote file to disk."""
    timeout = aiohttp.ClientTimeout(total=DOWNLOAD_TIMEOUT)
    async with ctx.http_session_factory(timeout=timeout) as client:
        async with client.get(url) as response:
            if response.status >= 400:
                raise DownloadError(f"Failed to download video: HTTP {response.status} {response.reason or ''}".strip(),
                                    {"url": url, "status": response.status})
            with open(local_file, "wb") as f:
                async for block in response.content.iter_chunked(DOWNLOAD_CHUNK_SIZE):
                    f.write(block)
    logger.debug(f"Downloaded {url} to {local_file} ({os.path.getsize(local_file)} bytes)")
    return local_file


async def fetch_input(ctx: WorkerContext, reference: str, local_file: str) -> str:
    """Materialize a store path, store URL or external URL as a local file."""
    if ctx.store.is_store_reference(reference):
        return await ctx.store.get(reference, local_file)
    return await download(ctx, reference, local_file)


def stage_processor(func):
    """Turn any exception raised by a processor into a FAILED result."""

    @functools.wraps(func)
    async def wrapper(ctx: WorkerContext, job):
        started = time.monotonic()
        try:
            result = await func(ctx, job)
        except Exception as e:
            message = describe_error(e)
            if isinstance(e, MediaToolError):
                logger.error(f"{job.job_type} failed for session {job.session_id}: {message}\n{e.stderr}")
            else:
                logger.exception(f"{job.job_type} failed for session {job.session_id}: {message}")
            return failed(job, message)
        elapsed = time.monotonic() - started
        logger.info(f"{job.job_type} completed for session {job.session_id} in {elapsed:.1f}s")
        return result

    return wrapper


@stage_processor
async def process_video_uploaded(ctx: WorkerContext, job):
    """Fetch the source video, read its metadata and keep a copy in the store."""
    data = job.data
    extension = MIME_EXTENSIONS.get(data.mime_type)
    if extension is None:
        logger.warning(f"Unknown MIME type {data.mime_type} for session {job.session_id}, storing as .mp4")
        extension = "mp4"

    with scratch_dir(ctx.config, job.session_id, "upload") as tmp:
        local_video = os.path.join(tmp, f"original.{extension}")
        await fetch_input(ctx, data.video_url, local_video)
        video_size = os.path.getsize(local_video)
        metadata = await ctx.toolkit.read_metadata(local_video)
        logger.info(f"Source video for session {job.session_id}: {metadata.duration:.2f}s, "
                    f"{metadata.width}x{metadata.height}, {video_size} bytes")

        stored_url = await ctx.store.put_file(
            local_video, blob_path(job.session_id, "original", f"video.{extension}"), data.mime_type
        )

    return completed(job, VideoUploadedOutput(
        video_url=data.video_url,
        video_duration=metadata.duration,
        video_size=video_size,
        stored_url=stored_url,
        width=metadata.width,
        height=metadata.height,
    ))


@stage_processor
async def process_chunk_video(ctx: WorkerContext, job):
    """Split the stored video into fixed-length chunks and upload each one."""
    data = job.data
    chunk_duration = clamp_chunk_duration(data.chunk_duration)

    with scratch_dir(ctx.config, job.session_id, "chunk") as tmp:
        local_video = os.path.join(tmp, f"original.{_extension(data.video_url)}")
        await fetch_input(ctx, data.video_url, local_video)

        total_duration = data.video_duration
        if total_duration <= 0:
            total_duration = (await ctx.toolkit.read_metadata(local_video)).duration
        intervals = plan_chunks(total_duration, chunk_duration)
        if not intervals:
            raise ValueError(f"Video has no duration to split ({total_duration}s)")

        chunk_paths = await ctx.toolkit.split_by_duration(local_video, tmp, chunk_duration, total_duration)
        logger.info(f"Split session {job.session_id} into {len(chunk_paths)} chunks of {chunk_duration}s")

        chunks: List[ChunkInfo] = []
        for index, (chunk_path, (start, end)) in enumerate(zip(chunk_paths, intervals)):
            chunk_url = await ctx.store.put_file(
                chunk_path, blob_path(job.session_id, "chunks", f"chunk_{index}.mp4"), "video/mp4"
            )
            chunks.append(ChunkInfo(
                chunk_id=str(uuid.uuid5(uuid.NAMESPACE_URL, f"{job.session_id}/chunks/{index}")),
                chunk_index=index,
                chunk_url=chunk_url,
                start_time=quantize(start),
                end_time=quantize(end),
            ))

    return completed(job, ChunkVideoOutput(total_chunks=len(chunks), chunks=chunks))


def segments_from_transcription(result, granularity: str) -> List[TranscriptSegment]:
    """
    Convert provider output to transcript segments on the audio's timeline.

    For word granularity, word timings nested inside segments are flattened
    so each word becomes its own segment.
    """
    entries = []
    for segment in result.segments:
        if granularity == "word" and segment.words:
            entries.extend((w.start, w.end, w.text) for w in segment.words)
        else:
            entries.append((segment.start, segment.end, segment.text))

    segments = []
    for start, end, text in entries:
        text = (text or "").strip()
        if not text:
            continue
        segments.append(TranscriptSegment(id=len(segments), start=start, end=max(start, end), text=text))
    return segments


@stage_processor
async def process_transcribe_chunk(ctx: WorkerContext, job):
    """Transcribe one chunk and return its transcript on the absolute timeline."""
    data = job.data
    provider = ctx.providers.for_granularity(data.granularity)

    with scratch_dir(ctx.config, job.session_id, f"transcribe_{data.chunk_index}") as tmp:
        local_chunk = os.path.join(tmp, f"chunk_{data.chunk_index}.mp4")
        await fetch_input(ctx, data.chunk_url, local_chunk)
        audio_file = await ctx.toolkit.extract_audio(local_chunk, tmp)

        audio_ref = audio_file
        if not provider.capabilities.accepts_local_files:
            audio_ref = await ctx.store.put_file(
                audio_file, blob_path(job.session_id, "chunks", f"chunk_{data.chunk_index}_audio.mp3"), "audio/mpeg"
            )
            logger.debug(f"Published chunk audio for {provider.name}: {audio_ref}")

        logger.info(f"Transcribing chunk {data.chunk_index} of session {job.session_id} with {provider.name} "
                    f"({data.granularity})")
        result = await provider.transcribe(
            audio_ref, TranscriptionOptions(language=data.language, granularity=data.granularity)
        )

    transcript = shift_segments(segments_from_transcription(result, data.granularity), data.start_time)
    await ctx.store.put_bytes(
        json.dumps([segment.model_dump() for segment in transcript]).encode("utf-8"),
        blob_path(job.session_id, "transcriptions", f"chunk_{data.chunk_index}.json"),
        "application/json",
    )
    logger.info(f"Chunk {data.chunk_index} transcribed: {len(transcript)} segments, "
                f"language {result.language}, {result.processing_time_ms}ms")

    return completed(job, TranscribeChunkOutput(
        chunk_id=data.chunk_id,
        chunk_index=data.chunk_index,
        transcript=transcript,
        language=result.language,
        duration=result.duration,
        provider=result.provider,
    ))


@stage_processor
async def process_generate_preview(ctx: WorkerContext, job):
    """Burn the chunk's captions onto a downscaled copy and upload it with a thumbnail."""
    data = job.data
    style = get_style(data.style_id)
    name = f"chunk_{data.chunk_index}_{data.style_id}"

    with scratch_dir(ctx.config, job.session_id, f"preview_{data.chunk_index}") as tmp:
        local_chunk = os.path.join(tmp, f"chunk_{data.chunk_index}.mp4")
        await fetch_input(ctx, data.chunk_url, local_chunk)
        metadata = await ctx.toolkit.read_metadata(local_chunk)

        relative, offset = to_chunk_relative(data.transcript)
        logger.debug(f"Preview for chunk {data.chunk_index}: {len(relative)} segments re-based by {offset:.3f}s")

        subtitle_file = os.path.join(tmp, "captions.ass")
        with open(subtitle_file, "w", encoding="utf-8") as f:
            f.write(generate_ass(relative, style, metadata.width, metadata.height, data.caption_mode))

        preview_file = os.path.join(tmp, "preview.mp4")
        await ctx.toolkit.burn_subtitles(local_chunk, subtitle_file, preview_file, PREVIEW_PROFILE)
        preview_url = await ctx.store.put_file(
            preview_file, blob_path(job.session_id, "captioned_previews", f"{name}.mp4"), "video/mp4"
        )

        thumbnail_url = None
        thumbnail_file = os.path.join(tmp, "thumbnail.jpg")
        try:
            await ctx.toolkit.screenshot(preview_file, thumbnail_file, min(1.0, metadata.duration / 2))
            thumbnail_url = await ctx.store.put_file(
                thumbnail_file, blob_path(job.session_id, "thumbnails", f"{name}.jpg"), "image/jpeg"
            )
        except MediaToolError as e:
            # The thumbnail is optional, the preview itself is what gets reviewed
            logger.warning(f"Thumbnail generation failed for chunk {data.chunk_index}: {e}")

    return completed(job, GeneratePreviewOutput(
        chunk_id=data.chunk_id,
        chunk_index=data.chunk_index,
        preview_url=preview_url,
        thumbnail_url=thumbnail_url,
    ))


@stage_processor
async def process_render_final(ctx: WorkerContext, job):
    """Caption the full-resolution original with every chunk's transcript."""
    data = job.data
    style = get_style(data.style_id)
    ordered = sorted(data.chunks, key=lambda c: c.chunk_index)
    segments = merge_transcripts(chunk.transcript for chunk in ordered)
    fmt = data.output_format

    with scratch_dir(ctx.config, job.session_id, "render") as tmp:
        local_video = os.path.join(tmp, f"original.{_extension(data.original_video_url)}")
        await fetch_input(ctx, data.original_video_url, local_video)
        metadata = await ctx.toolkit.read_metadata(local_video)

        subtitle_file = os.path.join(tmp, "captions.ass")
        with open(subtitle_file, "w", encoding="utf-8") as f:
            f.write(generate_ass(segments, style, metadata.width, metadata.height, data.caption_mode))

        output_file = os.path.join(tmp, f"final_captioned.{fmt}")
        logger.info(f"Rendering final video for session {job.session_id}: {len(segments)} segments "
                    f"from {len(ordered)} chunks")
        await ctx.toolkit.burn_subtitles(local_video, subtitle_file, output_file, FINAL_PROFILE)
        file_size = os.path.getsize(output_file)
        final_url = await ctx.store.put_file(
            output_file, blob_path(job.session_id, "output", f"final_captioned.{fmt}"), OUTPUT_CONTENT_TYPES[fmt]
        )

    srt = SRTGenerator(style.max_words_per_line).generate_srt(segments, data.caption_mode)
    subtitles_url = await ctx.store.put_bytes(
        srt.encode("utf-8"), blob_path(job.session_id, "output", "captions.srt"), "application/x-subrip"
    )

    return completed(job, RenderFinalOutput(
        final_video_url=final_url,
        subtitles_url=subtitles_url,
        duration=metadata.duration,
        file_size=file_size,
    ))


STAGE_PROCESSORS: Dict[str, Callable] = {
    JobType.VIDEO_UPLOADED.value: process_video_uploaded,
    JobType.CHUNK_VIDEO.value: process_chunk_video,
    JobType.TRANSCRIBE_CHUNK.value: process_transcribe_chunk,
    JobType.GENERATE_PREVIEW.value: process_generate_preview,
    JobType.RENDER_FINAL.value: process_render_final,
}


def register_processors(worker, ctx: WorkerContext):
    """Bind every stage processor to the context and register it on the worker."""
    for kind, processor in STAGE_PROCESSORS.items():
        worker.register_handler(kind, functools.partial(processor, ctx))
