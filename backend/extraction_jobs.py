"""
In-memory background jobs for long-running document extraction.

A job runs in a daemon thread and moves pending -> processing -> completed or
failed. Progress text produced by the worker is appended to the job's stream
content. A heartbeat line is written while the worker is quiet; it shows the
job is still registered but is not progress, so polling clients skip it when
deciding whether a job has stalled.
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional

from config import JOB_HEARTBEAT_SECONDS, JOB_MAX_AGE_SECONDS

logger = logging.getLogger(__name__)

HEARTBEAT_LINE = "\n[System: Still processing...]\n"


class JobStatus(Enum):
    """Lifecycle of an extraction job."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ExtractionJob:
    """State of one background extraction."""
    job_id: str
    status: str = JobStatus.PENDING.value
    result: Any = None
    error: Optional[str] = None
    start_time: float = 0.0
    last_update: float = 0.0
    stream_content: str = ""

    def to_dict(self, now: float) -> Dict[str, Any]:
        return {
            "jobId": self.job_id,
            "status": self.status,
            "result": self.result,
            "error": self.error,
            "elapsedTime": round(now - self.start_time, 1),
            "lastUpdate": self.last_update,
            "streamContent": self.stream_content,
        }


class JobStore:
    """
    Thread-safe registry of extraction jobs.

    Args:
        max_age: Seconds after which finished or abandoned jobs are purged
        heartbeat: Seconds of worker silence before a heartbeat line is written
        clock: Time source, replaceable in tests
    """

    def __init__(self, max_age: float = JOB_MAX_AGE_SECONDS,
                 heartbeat: float = JOB_HEARTBEAT_SECONDS,
                 clock: Callable[[], float] = time.time):
        self.max_age = max_age
        self.heartbeat = heartbeat
        self.clock = clock
        self._jobs: Dict[str, ExtractionJob] = {}
        self._threads: Dict[str, threading.Thread] = {}
        self._lock = threading.Lock()

    def start(self, work: Callable[..., Any], *args, **kwargs) -> str:
        """
        Run work(progress, *args, **kwargs) in a background thread.

        The worker receives a progress callback that appends text to the
        job's stream content. Its return value becomes the job result; an
        exception marks the job failed with the exception message.

        Returns:
            The new job id
        """
        self.cleanup()
        now = self.clock()
        job = ExtractionJob(job_id=str(uuid.uuid4()), start_time=now, last_update=now)
        with self._lock:
            self._jobs[job.job_id] = job

        thread = threading.Thread(
            target=self._run,
            args=(job.job_id, work, args, kwargs),
            name=f"extraction-{job.job_id[:8]}",
            daemon=True,
        )
        with self._lock:
            self._threads[job.job_id] = thread
        thread.start()
        logger.info(f"Started extraction job {job.job_id}")
        return job.job_id

    def _update(self, job_id: str, **changes):
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return
            for key, value in changes.items():
                setattr(job, key, value)
            job.last_update = self.clock()

    def append(self, job_id: str, text: str):
        """Append progress text to a job."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return
            job.stream_content += text
            job.last_update = self.clock()

    def _heartbeat_loop(self, job_id: str, stop: threading.Event):
        while not stop.wait(self.heartbeat):
            with self._lock:
                job = self._jobs.get(job_id)
                quiet = job is not None and self.clock() - job.last_update >= self.heartbeat
            if quiet:
                self.append(job_id, HEARTBEAT_LINE)

    def _run(self, job_id: str, work: Callable[..., Any], args: tuple, kwargs: dict):
        self._update(job_id, status=JobStatus.PROCESSING.value)
        stop = threading.Event()
        beat = threading.Thread(target=self._heartbeat_loop, args=(job_id, stop), daemon=True)
        beat.start()
        try:
            result = work(lambda text: self.append(job_id, text), *args, **kwargs)
            self._update(job_id, status=JobStatus.COMPLETED.value, result=result)
            logger.info(f"Extraction job {job_id} completed")
        except Exception as e:
            logger.error(f"Extraction job {job_id} failed: {e}", exc_info=True)
            self._update(job_id, status=JobStatus.FAILED.value, error=str(e))
        finally:
            stop.set()

    def get_status(self, job_id: str) -> Optional[Dict[str, Any]]:
        """Snapshot of a job, or None if unknown or purged."""
        with self._lock:
            job = self._jobs.get(job_id)
            return job.to_dict(self.clock()) if job else None

    def wait(self, job_id: str, timeout: float = None) -> bool:
        """Block until the job's worker thread exits. Returns False on timeout."""
        with self._lock:
            thread = self._threads.get(job_id)
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def cleanup(self) -> int:
        """Purge jobs older than max_age. Returns the number removed."""
        cutoff = self.clock() - self.max_age
        with self._lock:
            stale = [jid for jid, job in self._jobs.items() if job.start_time < cutoff]
            for jid in stale:
                del self._jobs[jid]
                self._threads.pop(jid, None)
        if stale:
            logger.info(f"Cleaned up {len(stale)} old extraction jobs")
        return len(stale)


jobs = JobStore()
