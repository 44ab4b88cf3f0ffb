"""
Async queue for background ingestion and cascade deletes.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Union

if TYPE_CHECKING:
    from ..rag.indexer import DocumentIndexer

logger = logging.getLogger("rag.queue")


@dataclass
class IngestJob:
    """Split, embed and stream a document's text into a pending entry."""
    entry_id: str
    text: str
    chunker: Optional[str] = None


@dataclass
class PurgeJob:
    """Delete the chunks of a removed entry."""
    entry_id: str
    start_order: int = 0


Job = Union[IngestJob, PurgeJob]


class JobQueue:
    """FIFO queue of background jobs."""
    def __init__(self):
        self._queue: asyncio.Queue[Job] = asyncio.Queue()

    async def enqueue(self, job: Job) -> int:
        """Add a job to the queue. Returns current queue size."""
        await self._queue.put(job)
        qsize = self._queue.qsize()
        logger.info(f"{type(job).__name__} enqueued for entry {job.entry_id} (Queue size: {qsize})")
        return qsize

    async def get_next_job(self) -> Job:
        return await self._queue.get()

    def task_done(self):
        self._queue.task_done()

    def qsize(self) -> int:
        return self._queue.qsize()

    async def join(self):
        await self._queue.join()


# Global singleton
job_queue = JobQueue()


async def process_job(job: Job, indexer: "DocumentIndexer") -> None:
    """
    Execute a single job.
    """
    if isinstance(job, IngestJob):
        await indexer.stream_entry(job.entry_id, job.text, chunker=job.chunker)
    elif isinstance(job, PurgeJob):
        await indexer.engine.chunks.purge(job.entry_id, job.start_order)
    else:
        raise TypeError(f"Unknown job type: {type(job).__name__}")


async def process_jobs_worker_task(
    indexer: "DocumentIndexer",
    queue: Optional[JobQueue] = None,
):
    """
    Background worker that consumes jobs from the queue until cancelled.

    A failing job is logged and dropped; the loop moves on to the next one.
    """
    queue = queue or job_queue
    logger.info("Job worker started.")

    while True:
        try:
            job = await queue.get_next_job()
        except asyncio.CancelledError:
            logger.info("Job worker cancelled.")
            break

        try:
            logger.info(f"Processing {type(job).__name__} for entry {job.entry_id}")
            await process_job(job, indexer)
            logger.info(f"Finished {type(job).__name__} for entry {job.entry_id}")
        except asyncio.CancelledError:
            logger.info("Job worker cancelled.")
            break
        except Exception:
            # Don't break the loop on a single bad job
            logger.exception(f"Job {type(job).__name__} failed for entry {job.entry_id}")
        finally:
            queue.task_done()
