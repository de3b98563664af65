"""In-memory job registry for service mode."""

import threading
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime

from composer_automation.models import AutomationResult, AutomationStatus


def new_job_id() -> str:
    return f"job_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


@dataclass
class Job:
    id: str
    status: AutomationStatus = AutomationStatus.INITIALIZING
    progress: float = 0.0
    message: str = ""
    result: AutomationResult | None = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: float = 0.0

    def to_dict(self) -> dict:
        return {
            "jobId": self.id,
            "status": self.status.value,
            "progress": self.progress,
            "message": self.message,
            "createdAt": self.created_at.isoformat(),
            "result": self.result.to_dict() if self.result else None,
        }


class JobRegistry:
    """Thread-safe job records, discarded ``retention`` seconds after their last update.

    Expiry applies regardless of state, so a job stuck mid-run eventually
    disappears as well. Expired records are purged on every access.
    """

    def __init__(self, retention: float = 3600.0, clock=time.monotonic):
        self.retention = retention
        self._clock = clock
        self._lock = threading.Lock()
        self._jobs: dict[str, Job] = {}

    def create(self) -> Job:
        job = Job(id=new_job_id(), updated_at=self._clock())
        with self._lock:
            self._purge()
            self._jobs[job.id] = job
            return replace(job)

    def update(self, job_id: str, **fields) -> Job | None:
        """Apply ``fields`` to a job. Returns None if it no longer exists."""
        with self._lock:
            self._purge()
            job = self._jobs.get(job_id)
            if job is None:
                return None
            for name, value in fields.items():
                setattr(job, name, value)
            job.updated_at = self._clock()
            return replace(job)

    def get(self, job_id: str) -> Job | None:
        with self._lock:
            self._purge()
            job = self._jobs.get(job_id)
            return replace(job) if job else None

    def list(self) -> list[Job]:
        with self._lock:
            self._purge()
            return [replace(job) for job in self._jobs.values()]

    def _purge(self):
        cutoff = self._clock() - self.retention
        for job_id in [j.id for j in self._jobs.values() if j.updated_at < cutoff]:
            del self._jobs[job_id]
