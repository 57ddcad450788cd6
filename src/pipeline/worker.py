"""
Worker process: subscribes to the jobs channel and runs the stage processors.

Run with:
python -m pipeline.worker
"""

import asyncio
import logging
import signal
import sys

from storage import build_object_store
from transcription import build_providers
from video import FFmpegToolkit

from .config import PipelineConfig
from .errors import QueueConnectionError
from .processors import WorkerContext, register_processors
from .queue import JobWorker

logger = logging.getLogger(__name__)


def build_context(config: PipelineConfig) -> WorkerContext:
    """Create the store, toolkit and providers shared by every job."""
    return WorkerContext(
        store=build_object_store(config),
        toolkit=FFmpegToolkit(
            ffmpeg_path=config.ffmpeg_path,
            ffprobe_path=config.ffprobe_path,
            audio_sample_rate=config.audio_sample_rate,
            preview_width=config.preview_width,
        ),
        providers=build_providers(config),
        config=config,
    )


async def serve(worker: JobWorker, stop_event: asyncio.Event):
    """
    Run the worker until stop_event is set or its job subscription is lost.

    In-flight jobs are drained either way.

    Raises:
        QueueConnectionError: The job subscription was lost
    """
    await worker.start()
    lost = asyncio.create_task(worker.join())
    stopping = asyncio.create_task(stop_event.wait())
    try:
        done, _ = await asyncio.wait({lost, stopping}, return_when=asyncio.FIRST_COMPLETED)
        if lost in done:
            lost.result()
        logger.info("Shutdown signal received")
    finally:
        lost.cancel()
        stopping.cancel()
        await worker.stop()


async def run_worker(config: PipelineConfig):
    ctx = build_context(config)
    logger.info(f"Transcription providers: primary={ctx.providers.primary.name}, "
                f"word-level={ctx.providers.word_level.name}")

    worker = JobWorker.from_config(config)
    register_processors(worker, ctx)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        await serve(worker, stop_event)
    finally:
        await ctx.store.close()


def main():
    config = PipelineConfig.from_env()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    try:
        asyncio.run(run_worker(config))
    except QueueConnectionError as e:
        logger.error(f"Worker exiting: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
