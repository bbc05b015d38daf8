import asyncio
import logging
from typing import Any, Dict, List, Optional
from app.config import settings
from app.core.logging_utils import sanitize_log_message
from app.services.enrichment_service import EnrichmentError, EnrichmentJob, EnrichmentProcessor

logger = logging.getLogger(__name__)


class EnrichmentQueue:
    """
    Bounded in-process work queue for enrichment jobs.

    A fixed pool of worker tasks drains an asyncio.Queue. Retryable failures
    are re-submitted after an exponential backoff until max_attempts is
    reached; the last failure is recorded on the document through
    EnrichmentProcessor.mark_failed(). Jobs still queued, waiting for a retry
    or running when stop() gives up are marked failed as well.
    """

    def __init__(
        self,
        processor: EnrichmentProcessor,
        workers: Optional[int] = None,
        max_size: Optional[int] = None,
        max_attempts: Optional[int] = None,
        retry_backoff: Optional[float] = None,
    ):
        self.processor = processor
        self.worker_count = workers or settings.ENRICHMENT_WORKERS
        self.max_size = max_size or settings.ENRICHMENT_QUEUE_SIZE
        self.max_attempts = max_attempts or settings.ENRICHMENT_MAX_ATTEMPTS
        self.retry_backoff = settings.ENRICHMENT_RETRY_BACKOFF if retry_backoff is None else retry_backoff

        self._queue: Optional[asyncio.Queue] = None
        self._workers: List[asyncio.Task] = []
        self._retry_tasks: Dict[asyncio.Task, EnrichmentJob] = {}
        # worker index -> job it is running
        self._active: Dict[int, EnrichmentJob] = {}
        self._processed = 0
        self._failed = 0
        self._retried = 0

    @property
    def running(self) -> bool:
        return self._queue is not None

    async def start(self) -> None:
        if self.running:
            return
        self._queue = asyncio.Queue(maxsize=self.max_size)
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"enrichment-worker-{i}")
            for i in range(self.worker_count)
        ]
        logger.info(
            f"Enrichment queue started: workers={self.worker_count}, "
            f"max_size={self.max_size}, max_attempts={self.max_attempts}"
        )

    def submit(self, job: EnrichmentJob) -> bool:
        """Enqueue without waiting; False when the queue is stopped or full."""
        if self._queue is None:
            logger.warning(sanitize_log_message("Enrichment queue not running, job dropped", **job.describe()))
            return False
        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            logger.warning(sanitize_log_message("Enrichment queue full, job rejected", **job.describe()))
            return False
        return True

    async def _worker(self, index: int) -> None:
        while True:
            job = await self._queue.get()
            self._active[index] = job
            try:
                await self._run(job)
            finally:
                self._active.pop(index, None)
                self._queue.task_done()

    async def _run(self, job: EnrichmentJob) -> None:
        job.attempts += 1
        try:
            await self.processor.process(job)
        except EnrichmentError as e:
            if e.retryable and job.attempts < self.max_attempts:
                delay = self.retry_backoff * (2 ** (job.attempts - 1))
                logger.warning(
                    sanitize_log_message(
                        "Enrichment job failed, retrying",
                        Error=e.message,
                        RetryIn=f"{delay:g}s",
                        **job.describe()
                    )
                )
                self._schedule_retry(job, delay)
                return
            await self._fail(job, e)
        except Exception as e:
            logger.exception(sanitize_log_message("Unexpected enrichment error", Error=str(e), **job.describe()))
            await self._fail(job, e)
        else:
            self._processed += 1

    def _schedule_retry(self, job: EnrichmentJob, delay: float) -> None:
        self._retried += 1
        task = asyncio.create_task(self._resubmit_later(job, delay))
        self._retry_tasks[task] = job
        task.add_done_callback(self._forget_retry)

    def _forget_retry(self, task: asyncio.Task) -> None:
        self._retry_tasks.pop(task, None)

    async def _resubmit_later(self, job: EnrichmentJob, delay: float) -> None:
        await asyncio.sleep(delay)
        if not self.submit(job):
            await self._fail(job, EnrichmentError("Enrichment queue unavailable for retry"))

    async def _fail(self, job: EnrichmentJob, error: Exception) -> None:
        self._failed += 1
        logger.error(sanitize_log_message("Enrichment job failed", Error=str(error), **job.describe()))
        try:
            await self.processor.mark_failed(job)
        except Exception as e:
            logger.exception(sanitize_log_message("Could not record enrichment failure", Error=str(e), **job.describe()))

    def _take_unfinished(self) -> List[EnrichmentJob]:
        """Remove and return every job that has not finished: running, awaiting retry, queued."""
        jobs = list(self._active.values()) + list(self._retry_tasks.values())
        while True:
            try:
                jobs.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                break
            self._queue.task_done()
        return jobs

    async def drain(self) -> None:
        """Wait until every queued job, including pending retries, has finished."""
        while self._queue is not None:
            if self._retry_tasks:
                # asyncio.wait leaves the retry tasks running if drain() is cancelled
                await asyncio.wait(list(self._retry_tasks))
            await self._queue.join()
            if not self._retry_tasks:
                return

    async def stop(self, timeout: float = 10.0) -> None:
        """
        Let outstanding jobs finish within ``timeout`` seconds, then cancel the workers.

        Jobs left over after the timeout are marked failed so their documents
        do not stay pending.
        """
        if not self.running:
            return
        unfinished: List[EnrichmentJob] = []
        try:
            await asyncio.wait_for(self.drain(), timeout=timeout)
        except asyncio.TimeoutError:
            unfinished = self._take_unfinished()
            logger.warning(f"Enrichment queue stopping with {len(unfinished)} unfinished job(s)")

        tasks = self._workers + list(self._retry_tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        for job in unfinished:
            await self._fail(job, EnrichmentError("Shutdown before completion"))

        self._workers = []
        self._retry_tasks.clear()
        self._active.clear()
        self._queue = None
        logger.info("Enrichment queue stopped")

    def stats(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "workers": len(self._workers),
            "queued": self._queue.qsize() if self._queue is not None else 0,
            "inFlight": len(self._active),
            "retryPending": len(self._retry_tasks),
            "processed": self._processed,
            "failed": self._failed,
            "retried": self._retried,
        }
