"""
Background job queue.

Deferred generation work is persisted in the ``background_job`` table and
processed by pollers. A job moves pending -> processing -> completed/failed
exactly once; claiming is a single SQLite write transaction so no two
pollers, threads or processes, ever run the same job.
"""

import json
import logging
import threading
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .errors import PersistenceError
from ai_gen_guard.storage.db import DEFAULT_DB_PATH
from ai_gen_guard.storage.models import BackgroundJob, JobStatus
from ai_gen_guard.storage.repository import JobRepository

logger = logging.getLogger(__name__)

JobHandler = Callable[[BackgroundJob], Dict[str, Any]]

DEFAULT_MAX_CONCURRENT = 3
DEFAULT_POLL_INTERVAL = 5.0


class JobQueue:
    """Persistent priority queue with type-specific handlers.

    Handlers receive the claimed job and return a JSON-serialisable result.
    A handler that raises fails the job; failed jobs are not retried.
    """

    def __init__(
        self,
        db_path: str = DEFAULT_DB_PATH,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        clock: Callable[[], datetime] = datetime.now,
    ):
        if max_concurrent <= 0:
            raise ValueError("max_concurrent must be > 0")
        self.jobs = JobRepository(db_path)
        self.max_concurrent = max_concurrent
        self.clock = clock
        self._handlers: Dict[str, JobHandler] = {}

    def register_handler(self, job_type: str, handler: JobHandler) -> None:
        self._handlers[job_type] = handler

    def enqueue(
        self,
        job_type: str,
        payload: Dict[str, Any],
        account_id: Optional[str] = None,
        priority: int = 0,
    ) -> str:
        """Persist a pending job and return its id."""
        job = BackgroundJob(
            id=str(uuid.uuid4()),
            type=job_type,
            payload=payload,
            status=JobStatus.PENDING,
            priority=priority,
            account_id=account_id,
            submitted_at=self.clock(),
        )
        self.jobs.insert(job)
        logger.info("Queued %s job %s (priority %d)", job_type, job.id, priority)
        return job.id

    def get_status(self, job_id: str) -> Optional[BackgroundJob]:
        return self.jobs.get(job_id)

    def list_jobs(self, account_id: str, limit: int = 50) -> List[BackgroundJob]:
        return self.jobs.list_for_account(account_id, limit)

    def poll_and_process_one(self) -> Optional[BackgroundJob]:
        """Claim and run the next pending job.

        Returns:
            The job in its terminal state, or None if nothing was claimed
            (queue empty or concurrency ceiling reached)
        """
        job = self.jobs.claim_next(self.max_concurrent, self.clock())
        if job is None:
            return None

        logger.info("Processing %s job %s", job.type, job.id)
        handler = self._handlers.get(job.type)
        try:
            if handler is None:
                raise ValueError(f"No handler registered for job type: {job.type}")
            result = handler(job)
            # Results are stored as JSON
            json.dumps(result)
        except Exception as e:
            logger.warning("Job %s failed: %s", job.id, e)
            self.jobs.finish(job.id, JobStatus.FAILED, self.clock(), error=str(e))
        else:
            self.jobs.finish(job.id, JobStatus.COMPLETED, self.clock(), result=result)
            logger.info("Job %s completed", job.id)

        return self.jobs.get(job.id)


class JobPoller:
    """Runs ``poll_and_process_one`` on worker threads until stopped.

    Each worker keeps claiming while work is available and sleeps
    ``poll_interval`` seconds when the queue is empty or at its ceiling.
    """

    def __init__(
        self,
        queue: JobQueue,
        workers: Optional[int] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        self.queue = queue
        self.workers = workers or queue.max_concurrent
        self.poll_interval = poll_interval
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []

    @property
    def running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def _work(self) -> None:
        while not self._stop.is_set():
            try:
                job = self.queue.poll_and_process_one()
            except PersistenceError as e:
                logger.error("Job poll failed: %s", e)
                job = None
            except Exception:
                logger.exception("Job worker hit an unexpected error")
                job = None
            if job is None:
                self._stop.wait(self.poll_interval)

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._threads = [
            threading.Thread(target=self._work, name=f"job-poller-{i}", daemon=True)
            for i in range(self.workers)
        ]
        for thread in self._threads:
            thread.start()
        logger.info("Started %d job workers", self.workers)

    def stop(self, drain: bool = True, timeout: Optional[float] = None) -> None:
        """Stop claiming new jobs.

        Args:
            drain: Wait for in-flight jobs to finish before returning
            timeout: Per-thread wait limit when draining
        """
        self._stop.set()
        if drain:
            for thread in self._threads:
                thread.join(timeout)
        logger.info("Job workers stopped")

    def run_forever(self) -> None:
        """Block in the foreground until interrupted, then drain."""
        self.start()
        try:
            while self.running:
                self._stop.wait(self.poll_interval)
        except KeyboardInterrupt:
            logger.info("Interrupted, draining in-flight jobs")
        finally:
            self.stop(drain=True)
