"""In-process task queue using asyncio for single-node deployments.

Tasks are ordered by priority (lower first, FIFO within a priority) and
handed to a synchronous worker function in a thread executor. No external
broker (Redis, Celery) needed.
"""

import asyncio
import itertools
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional

from loguru import logger

from smart_resizer.exceptions import EnqueueError
from smart_resizer.jobs.dispatcher import JobDispatcher
from smart_resizer.jobs.models import ResizeTask


class InProcessQueue(JobDispatcher):
    """Local async priority queue drained by `workers` concurrent loops."""

    def __init__(self, worker_fn: Callable[[ResizeTask], None], workers: int = 1):
        """
        worker_fn: callable(task: ResizeTask) -> None
            Synchronous function that does the work (resizes all formats of a task).
            Called in a thread executor to avoid blocking the event loop.
        """
        self._queue: Optional[asyncio.PriorityQueue] = None
        self._worker_fn = worker_fn
        self._workers = max(1, workers)
        self._executor: Optional[ThreadPoolExecutor] = None
        self._tasks: List[asyncio.Task] = []
        self._seq = itertools.count()
        self._running = False

    async def enqueue(self, task: ResizeTask, priority: int) -> str:
        if not self._running or self._queue is None:
            raise EnqueueError("Task queue is not running")
        handle = str(uuid.uuid4())
        await self._queue.put((priority, next(self._seq), handle, task))
        logger.debug("Queued task {} for job {} (priority {})", handle, task.job_id, priority)
        return handle

    def depth(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    async def start(self) -> None:
        self._queue = asyncio.PriorityQueue()
        self._executor = ThreadPoolExecutor(
            max_workers=self._workers, thread_name_prefix="resize-worker"
        )
        self._running = True
        self._tasks = [
            asyncio.create_task(self._worker_loop(i)) for i in range(self._workers)
        ]

    async def stop(self) -> None:
        self._running = False
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None

    async def _worker_loop(self, index: int) -> None:
        """Process tasks one at a time from the queue."""
        while self._running:
            try:
                _, _, handle, task = await asyncio.wait_for(self._queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break

            try:
                loop = asyncio.get_running_loop()
                await loop.run_in_executor(self._executor, self._worker_fn, task)
            except asyncio.CancelledError:
                break
            except Exception:
                # The worker converts its own failures to job state; anything
                # reaching here is logged and the loop keeps going.
                logger.exception("Worker {} crashed on task {} (job {})", index, handle, task.job_id)
            finally:
                self._queue.task_done()
