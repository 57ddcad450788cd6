"""
Redis pub/sub job queue.

The producer half (JobQueue) publishes job requests on the jobs channel and
listens for results; the consumer half (JobWorker) subscribes to the jobs
channel, runs a bounded pool of handlers and publishes their results.

Delivery is at-most-once: a message published while no worker is subscribed,
or consumed by a worker that dies mid-job, is lost and produces no result.
"""

import asyncio
import contextlib
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Union

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from .errors import JobValidationError, QueueConnectionError
from .jobs import JobType, dump_message, failed, job_type_of, parse_job, parse_result

logger = logging.getLogger(__name__)

BUS_ERRORS = (RedisConnectionError, RedisTimeoutError, OSError)

JobHandler = Callable[..., Awaitable]
ResultCallback = Callable[..., Awaitable[None]]


async def _close_quietly(resource, label: str):
    if resource is None:
        return
    try:
        await resource.aclose()
    except BUS_ERRORS as e:
        logger.warning(f"Error closing {label}: {e}")


class JobQueue:
    """Producer side: publish jobs, await or observe their results."""

    def __init__(self, redis_url: str, jobs_channel: str, results_channel: str, client=None):
        self.redis_url = redis_url
        self.jobs_channel = jobs_channel
        self.results_channel = results_channel
        self._client = client
        self._pubsub = None
        self._listener: Optional[asyncio.Task] = None
        self._waiters: Dict[str, asyncio.Future] = {}
        self._callbacks: List[ResultCallback] = []

    @classmethod
    def from_config(cls, config, client=None) -> "JobQueue":
        return cls(config.redis_url, config.jobs_channel, config.results_channel, client=client)

    async def connect(self):
        """Connect to the bus and start listening on the results channel."""
        try:
            if self._client is None:
                self._client = redis.from_url(self.redis_url, encoding="utf-8", decode_responses=True)
            await self._client.ping()
            self._pubsub = self._client.pubsub()
            await self._pubsub.subscribe(self.results_channel)
        except BUS_ERRORS as e:
            raise QueueConnectionError(f"Could not connect to message bus: {e}", {"url": self.redis_url}) from e
        self._listener = asyncio.create_task(self._listen_results())
        logger.info(f"Job queue connected, listening for results on {self.results_channel}")

    @property
    def connected(self) -> bool:
        """True while the bus client is up and results are still being received."""
        return self._client is not None and self._listener is not None and not self._listener.done()

    async def publish(self, job) -> str:
        """
        Publish a job request and return its id without waiting.

        Raises:
            JobValidationError: The job has no id
            QueueConnectionError: The bus is not connected, the result
                subscription was lost, or the publish failed
        """
        if not getattr(job, "job_id", None):
            raise JobValidationError("Cannot publish a job without a jobId")
        if self._client is None:
            raise QueueConnectionError("Job queue is not connected", {"jobId": job.job_id})
        if self._listener is not None and self._listener.done():
            raise QueueConnectionError(f"Not publishing job {job.job_id}: result subscription lost",
                                       {"jobId": job.job_id})
        try:
            await self._client.publish(self.jobs_channel, dump_message(job))
        except BUS_ERRORS as e:
            raise QueueConnectionError(f"Failed to publish job {job.job_id}: {e}", {"jobId": job.job_id}) from e
        logger.info(f"Published job {job.job_id} ({job.job_type}) for session {job.session_id} "
                    f"priority={job.priority.value} attempt={job.attempt}/{job.max_attempts}")
        return job.job_id

    async def wait_for_result(self, job_id: str, timeout: float):
        """
        Wait for the result of a published job.

        Timing out only abandons the wait; the worker keeps running the job.

        Raises:
            asyncio.TimeoutError: No result arrived within timeout seconds
        """
        future = self._waiters.get(job_id)
        if future is None:
            future = asyncio.get_running_loop().create_future()
            self._waiters[job_id] = future
        try:
            return await asyncio.wait_for(future, timeout)
        finally:
            self._waiters.pop(job_id, None)

    def on_result(self, callback: ResultCallback):
        """Register an async callback invoked for every result received."""
        self._callbacks.append(callback)

    async def dispatch_result(self, raw: Union[str, bytes]):
        """Resolve waiters and notify listeners for one raw result message."""
        try:
            result = parse_result(raw)
        except JobValidationError as e:
            logger.warning(f"Dropping malformed result message: {e}")
            return None

        logger.info(f"Result for job {result.job_id} ({result.job_type}): {result.status.value}")
        future = self._waiters.get(result.job_id)
        if future is not None and not future.done():
            future.set_result(result)

        for callback in self._callbacks:
            try:
                await callback(result)
            except Exception:
                logger.exception(f"Result listener failed for job {result.job_id}")
        return result

    def _fail_waiters(self, error: Exception):
        for future in self._waiters.values():
            if not future.done():
                future.set_exception(error)

    async def _listen_results(self):
        try:
            async for message in self._pubsub.listen():
                if message.get("type") != "message":
                    continue
                await self.dispatch_result(message["data"])
        except BUS_ERRORS as e:
            logger.error(f"Lost connection while listening for results: {e}")
            error = QueueConnectionError(f"Result subscription lost: {e}")
            self._fail_waiters(error)
            raise error from e
        logger.error(f"Result subscription on {self.results_channel} ended")
        error = QueueConnectionError(f"Result subscription on {self.results_channel} ended")
        self._fail_waiters(error)
        raise error

    async def close(self):
        if self._listener is not None:
            self._listener.cancel()
            with contextlib.suppress(asyncio.CancelledError, QueueConnectionError):
                await self._listener
            self._listener = None
        for future in self._waiters.values():
            future.cancel()
        self._waiters.clear()
        await _close_quietly(self._pubsub, "result subscription")
        await _close_quietly(self._client, "bus client")
        self._pubsub = None
        self._client = None
        logger.info("Job queue closed")


class JobWorker:
    """Consumer side: a fixed-size pool of tasks sharing one subscription."""

    def __init__(self, redis_url: str, jobs_channel: str, results_channel: str,
                 concurrency: int = 2, client=None):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.redis_url = redis_url
        self.jobs_channel = jobs_channel
        self.results_channel = results_channel
        self.concurrency = concurrency
        self._client = client
        self._pubsub = None
        self._handlers: Dict[str, JobHandler] = {}
        self._inbox: Optional[asyncio.Queue] = None
        self._reader: Optional[asyncio.Task] = None
        self._pool: List[asyncio.Task] = []
        self.running = False

    @classmethod
    def from_config(cls, config, client=None) -> "JobWorker":
        return cls(config.redis_url, config.jobs_channel, config.results_channel,
                   concurrency=config.worker_concurrency, client=client)

    def register_handler(self, kind: Union[str, JobType], handler: JobHandler):
        self._handlers[job_type_of(kind)] = handler
        logger.debug(f"Registered handler for {job_type_of(kind)}")

    @property
    def handlers(self) -> Dict[str, JobHandler]:
        return dict(self._handlers)

    async def start(self):
        """Subscribe to the jobs channel and start the worker pool."""
        if self.running:
            logger.warning("Worker already running")
            return
        try:
            if self._client is None:
                self._client = redis.from_url(self.redis_url, encoding="utf-8", decode_responses=True)
            await self._client.ping()
            self._pubsub = self._client.pubsub()
            await self._pubsub.subscribe(self.jobs_channel)
        except BUS_ERRORS as e:
            raise QueueConnectionError(f"Could not subscribe to {self.jobs_channel}: {e}",
                                       {"url": self.redis_url}) from e

        # One slot per pool task: the reader stops pulling while every worker is busy
        self._inbox = asyncio.Queue(maxsize=self.concurrency)
        self._reader = asyncio.create_task(self._read_jobs())
        self._pool = [asyncio.create_task(self._work(i)) for i in range(self.concurrency)]
        self.running = True
        logger.info(f"Worker started on {self.jobs_channel} with concurrency {self.concurrency}, "
                    f"handlers: {sorted(self._handlers)}")

    async def _read_jobs(self):
        try:
            async for message in self._pubsub.listen():
                if message.get("type") != "message":
                    continue
                await self._inbox.put(message["data"])
        except BUS_ERRORS as e:
            logger.error(f"Lost connection to job subscription: {e}")
            raise QueueConnectionError(f"Job subscription lost: {e}") from e
        logger.error(f"Job subscription on {self.jobs_channel} ended")
        raise QueueConnectionError(f"Job subscription on {self.jobs_channel} ended")

    async def join(self):
        """
        Wait for the job subscription to end.

        It only ends on its own when the bus drops it, so this never returns
        normally; stop() cancels the wait.

        Raises:
            QueueConnectionError: The subscription was lost or the worker was never started
        """
        if self._reader is None:
            raise QueueConnectionError("Worker is not started")
        await asyncio.shield(self._reader)

    async def _work(self, slot: int):
        while True:
            raw = await self._inbox.get()
            try:
                await self.handle_message(raw)
            except QueueConnectionError as e:
                logger.error(f"Worker {slot}: {e}")
            finally:
                self._inbox.task_done()

    async def handle_message(self, raw: Union[str, bytes]):
        """
        Deserialize one job message, run its handler and publish the result.

        Messages that fail validation or have no registered handler are
        dropped with a warning.

        Returns:
            The published result, or None when the message was dropped
        """
        try:
            job = parse_job(raw)
        except JobValidationError as e:
            logger.warning(f"Dropping invalid job message: {e}")
            return None

        handler = self._handlers.get(job.job_type)
        if handler is None:
            logger.warning(f"No handler registered for {job.job_type}, dropping job {job.job_id}")
            return None

        logger.info(f"Processing job {job.job_id} ({job.job_type}) for session {job.session_id} "
                    f"priority={job.priority.value} attempt={job.attempt}/{job.max_attempts}")
        try:
            result = await handler(job)
        except Exception as e:
            logger.exception(f"Handler for {job.job_type} raised on job {job.job_id}")
            result = failed(job, str(e) or type(e).__name__)

        try:
            await self._client.publish(self.results_channel, dump_message(result))
        except BUS_ERRORS as e:
            raise QueueConnectionError(f"Failed to publish result for job {job.job_id}: {e}",
                                       {"jobId": job.job_id}) from e
        logger.info(f"Job {job.job_id} ({job.job_type}) finished: {result.status.value}")
        return result

    async def stop(self, drain_timeout: Optional[float] = 30.0):
        """Stop reading new jobs, let in-flight jobs finish, then disconnect."""
        if not self.running:
            return
        self.running = False
        if self._reader is not None:
            self._reader.cancel()
            with contextlib.suppress(asyncio.CancelledError, QueueConnectionError):
                await self._reader
        if self._inbox is not None:
            try:
                await asyncio.wait_for(self._inbox.join(), drain_timeout)
            except asyncio.TimeoutError:
                logger.warning(f"In-flight jobs did not finish within {drain_timeout}s, cancelling")
        for task in self._pool:
            task.cancel()
        await asyncio.gather(*self._pool, return_exceptions=True)
        self._pool = []
        await _close_quietly(self._pubsub, "job subscription")
        await _close_quietly(self._client, "bus client")
        self._pubsub = None
        self._client = None
        logger.info("Worker stopped")
