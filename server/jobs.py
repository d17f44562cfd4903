"""Background job tracking for on-demand indexing runs.

Jobs run in the API process and are tracked in memory; their results are
lost on restart, which is fine because indexing itself is idempotent.
"""

import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from services.models import utcnow

logger = logging.getLogger(__name__)

JobHandler = Callable[["JobRecord"], Awaitable[Dict[str, Any]]]


class JobStatus(str, Enum):
    """Job status enumeration."""
    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


@dataclass
class JobRecord:
    """Job record for tracking job state."""
    id: str
    type: str
    status: JobStatus
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    parameters: Dict[str, Any] = field(default_factory=dict)
    progress: Dict[str, int] = field(default_factory=dict)
    logs: List[str] = field(default_factory=list)
    error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None

    def add_log(self, message: str):
        """Add a log message with timestamp."""
        self.logs.append(f"[{utcnow().isoformat()}] {message}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data["status"] = self.status.value
        for name in ['created_at', 'started_at', 'completed_at']:
            if data[name]:
                data[name] = data[name].isoformat()
        return data


class JobManager:
    """Keeps job records in memory and runs their handlers."""

    def __init__(self, max_jobs: int = 100):
        self.max_jobs = max_jobs
        self._jobs: Dict[str, JobRecord] = {}
        self._handlers: Dict[str, JobHandler] = {}

    def create_job(self, job_type: str, parameters: Optional[Dict[str, Any]] = None,
                   handler: Optional[JobHandler] = None) -> JobRecord:
        """Record a queued job; ``run_job`` executes it."""
        job = JobRecord(
            id=uuid.uuid4().hex,
            type=job_type,
            status=JobStatus.QUEUED,
            created_at=utcnow(),
            parameters=dict(parameters or {}),
        )
        self._jobs[job.id] = job
        if handler is not None:
            self._handlers[job.id] = handler
        job.add_log(f"Job {job_type} queued")
        self._evict()
        return job

    def _evict(self):
        # Drop the oldest finished jobs beyond the cap
        finished = [j for j in self._jobs.values() if j.status in (JobStatus.DONE, JobStatus.FAILED)]
        overflow = len(self._jobs) - self.max_jobs
        for job in sorted(finished, key=lambda j: j.created_at)[:max(0, overflow)]:
            self._jobs.pop(job.id, None)

    async def run_job(self, job_id: str):
        job = self._jobs.get(job_id)
        handler = self._handlers.pop(job_id, None)
        if job is None or handler is None:
            logger.error(f"Job {job_id} cannot run: unknown job or no handler")
            return

        job.status = JobStatus.RUNNING
        job.started_at = utcnow()
        job.add_log("Job started")
        try:
            job.result = await handler(job)
            job.status = JobStatus.DONE
            job.add_log("Job completed")
        except Exception as e:
            logger.exception(f"Job {job_id} failed")
            job.status = JobStatus.FAILED
            job.error = str(e)
            job.add_log(f"Job failed: {e}")
        finally:
            job.completed_at = utcnow()

    def get_job(self, job_id: str) -> Optional[JobRecord]:
        return self._jobs.get(job_id)

    def list_jobs(self, status: Optional[JobStatus] = None, limit: int = 100) -> List[JobRecord]:
        jobs = [j for j in self._jobs.values() if status is None or j.status == status]
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return jobs[:limit]
