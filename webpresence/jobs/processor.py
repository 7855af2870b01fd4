"""One processing pass over the job queue.

A pass claims a bounded batch of pending jobs in priority order and runs
them concurrently.  Jobs of the same website run one at a time.  Every
job ends completed or failed; a failing job never stops the pass.
"""

import asyncio
import logging
from collections import defaultdict
from typing import Any, Optional

from webpresence.jobs.handlers import JobDispatcher
from webpresence.jobs.queue import JobQueue
from webpresence.models import AnalysisJob

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 5
DEFAULT_MAX_WORKERS = 5
DEFAULT_JOB_TIMEOUT = 300.0


async def process_job_queue(
    dispatcher: JobDispatcher,
    queue: Optional[JobQueue] = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
    max_workers: int = DEFAULT_MAX_WORKERS,
    job_timeout: float = DEFAULT_JOB_TIMEOUT,
) -> dict[str, int]:
    """Claim and run up to *batch_size* pending jobs.

    Args:
        dispatcher: Routes a job to its handler.
        queue: Job queue; defaults to the database-backed one.
        batch_size: Maximum jobs fetched by this pass.
        max_workers: Maximum handlers running at once.
        job_timeout: Seconds before a handler is abandoned and its job failed.

    Returns:
        ``{"completed": n, "failed": n, "total": n}`` over the jobs this
        pass claimed.  Jobs claimed by a concurrent pass are not counted.
    """
    queue = queue or dispatcher.context.queue
    claimed: list[AnalysisJob] = []
    for job in queue.fetch_pending(limit=batch_size):
        if queue.claim(job.id):
            claimed.append(job)

    if not claimed:
        logger.debug("No pending jobs")
        return {"completed": 0, "failed": 0, "total": 0}

    semaphore = asyncio.Semaphore(max(1, max_workers))
    website_locks: dict[int, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def run(job: AnalysisJob) -> bool:
        async with website_locks[job.website_id]:
            async with semaphore:
                return await _run_job(dispatcher, queue, job, job_timeout)

    outcomes = await asyncio.gather(*(run(job) for job in claimed))
    completed = sum(1 for ok in outcomes if ok)
    stats = {"completed": completed, "failed": len(outcomes) - completed, "total": len(outcomes)}
    logger.info("Job pass finished: %s", stats)
    return stats


async def _run_job(dispatcher: JobDispatcher, queue: JobQueue, job: AnalysisJob, timeout: float) -> bool:
    try:
        result: Any = await asyncio.wait_for(dispatcher.dispatch(job), timeout=timeout)
    except asyncio.TimeoutError:
        logger.error("Job %d (%s) timed out after %gs", job.id, job.type, timeout)
        queue.mark_failed(job.id, f"Job timeout after {timeout:g}s")
        return False
    except Exception as exc:
        logger.error("Job %d (%s) failed: %s", job.id, job.type, exc)
        queue.mark_failed(job.id, str(exc) or exc.__class__.__name__)
        return False

    queue.mark_completed(job.id, result if isinstance(result, dict) else {"result": result})
    logger.info("Job %d (%s) completed", job.id, job.type)
    return True
