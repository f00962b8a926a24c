"""
Registry of long-running generation jobs.

queued -> processing -> completed | failed. Terminal states are final,
percentage never goes down, and a failed job always says why.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Optional, Set

from models.study_models import GenerationJob, JobStatus
from utils.exceptions import JobStateError, NotFoundError

logger = logging.getLogger(__name__)

TERMINAL_STATES = {JobStatus.COMPLETED, JobStatus.FAILED}


class JobTracker:
    def __init__(self):
        self._jobs: Dict[str, GenerationJob] = {}
        self._cancel_requested: Set[str] = set()

    def create_job(self, session_id: Optional[str] = None, source_id: Optional[str] = None) -> GenerationJob:
        job = GenerationJob(session_id=session_id, source_id=source_id)
        self._jobs[job.id] = job
        logger.info(f"Job {job.id} queued")
        return job

    def get_job(self, job_id: str) -> GenerationJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError(
                "Generation job not found",
                error_code="JOB_NOT_FOUND",
                context={"job_id": job_id},
            )
        return job

    def _mutable(self, job_id: str) -> GenerationJob:
        job = self.get_job(job_id)
        if job.status in TERMINAL_STATES:
            raise JobStateError(
                f"Job {job_id} is already {job.status.value}",
                context={"job_id": job_id, "status": job.status.value},
            )
        return job

    @staticmethod
    def _touch(job: GenerationJob) -> None:
        job.updated_at = datetime.now(timezone.utc)

    def start(self, job_id: str, step: str = "starting", percentage: int = 0) -> GenerationJob:
        job = self._mutable(job_id)
        job.status = JobStatus.PROCESSING
        job.current_step = step
        job.percentage = max(job.percentage, min(percentage, 99))
        self._touch(job)
        return job

    def update_progress(self, job_id: str, percentage: int, step: Optional[str] = None) -> GenerationJob:
        """Advance a processing job. Lower percentages are ignored."""
        job = self._mutable(job_id)
        if job.status == JobStatus.QUEUED:
            job.status = JobStatus.PROCESSING
        # 100 is reserved for completion
        bounded = min(max(int(percentage), 0), 99)
        if bounded < job.percentage:
            logger.debug(f"Job {job_id}: ignoring progress regression {job.percentage}% -> {bounded}%")
        job.percentage = max(job.percentage, bounded)
        if step:
            job.current_step = step
        self._touch(job)
        return job

    def complete(self, job_id: str, note_id: Optional[str] = None) -> GenerationJob:
        job = self._mutable(job_id)
        job.status = JobStatus.COMPLETED
        job.percentage = 100
        job.current_step = "completed"
        job.note_id = note_id
        self._touch(job)
        self._cancel_requested.discard(job_id)
        logger.info(f"Job {job_id} completed (note_id={note_id})")
        return job

    def fail(self, job_id: str, error: str) -> GenerationJob:
        job = self._mutable(job_id)
        job.status = JobStatus.FAILED
        job.error = error.strip() if error and error.strip() else "Unknown error"
        job.current_step = "failed"
        self._touch(job)
        self._cancel_requested.discard(job_id)
        logger.error(f"Job {job_id} failed: {job.error}")
        return job

    def request_cancel(self, job_id: str) -> GenerationJob:
        """Ask the owning routine to stop at its next phase boundary."""
        job = self.get_job(job_id)
        if job.status not in TERMINAL_STATES:
            self._cancel_requested.add(job_id)
        return job

    def is_cancel_requested(self, job_id: str) -> bool:
        return job_id in self._cancel_requested
