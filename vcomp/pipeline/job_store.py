import uuid
import time
import threading
import logging
from collections import deque
from pathlib import Path
from typing import Callable, Deque, Dict, List, Optional
from vcomp.domain.errors import InvalidJobTransitionError, JobNotFoundError
from vcomp.domain.models import CompressionJob, CompressionPlan, CompressionRequest, JobStatus

ALLOWED_TRANSITIONS = {
    JobStatus.QUEUED: {JobStatus.PROCESSING, JobStatus.CANCELLED},
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED},
}


class JobStore:
    """In-memory job registry and FIFO run queue.

    Callers only ever see copies. All changes go through `update`, which
    applies the mutator to a copy and commits it when the status change is
    legal, so readers never observe a half-applied update.
    """

    def __init__(self):
        self._jobs: Dict[str, CompressionJob] = {}
        self._queue: Deque[str] = deque()
        self._lock = threading.RLock()
        self._queue_not_empty = threading.Condition(self._lock)
        self.logger = logging.getLogger(__name__)

    def create(
        self,
        request: CompressionRequest,
        *,
        original_filename: str,
        source_path: Path,
        plan: Optional[CompressionPlan] = None,
    ) -> CompressionJob:
        job_id = uuid.uuid4().hex
        if plan is not None:
            plan = plan.model_copy(update={"job_id": job_id})
            request = plan.request

        with self._lock:
            job = CompressionJob(
                job_id=job_id,
                original_filename=original_filename,
                source_path=Path(source_path),
                codec=request.codec,
                request=request,
                plan=plan,
                scale_percent=plan.scale_percent if plan else request.scale_percent,
                target_size_mb=request.target_size_mb,
                target_bitrate_kbps=plan.total_bitrate_kbps if plan else None,
                encoder_name=plan.encoder_name if plan else None,
                encoder_is_hardware=plan.encoder_is_hardware if plan else None,
                source_duration=(plan.effective_duration if plan else None) or request.source_duration,
                queue_position=self._queued_count() + 1,
                status=JobStatus.QUEUED,
            )
            self._jobs[job_id] = job
            return job.model_copy(deep=True)

    def enqueue(self, job_id: str):
        with self._queue_not_empty:
            if job_id not in self._jobs:
                raise JobNotFoundError(job_id)
            self._queue.append(job_id)
            self._queue_not_empty.notify()

    def dequeue(self, timeout: Optional[float] = None) -> Optional[str]:
        """Next still-queued job id, or None if nothing arrived within `timeout`.

        Ids of jobs cancelled or removed while waiting are skipped.
        """
        deadline = time.monotonic() + timeout if timeout is not None else None
        with self._queue_not_empty:
            while True:
                while self._queue:
                    job_id = self._queue.popleft()
                    job = self._jobs.get(job_id)
                    if job is not None and job.status == JobStatus.QUEUED:
                        return job_id

                if deadline is None:
                    self._queue_not_empty.wait()
                else:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        return None
                    self._queue_not_empty.wait(remaining)

    def wake_all(self):
        """Releases every thread blocked in `dequeue` so it can re-check its stop flag."""
        with self._queue_not_empty:
            self._queue_not_empty.notify_all()

    def update(self, job_id: str, mutator: Callable[[CompressionJob], None]) -> CompressionJob:
        with self._lock:
            current = self._jobs.get(job_id)
            if current is None:
                raise JobNotFoundError(job_id)

            candidate = current.model_copy(deep=True)
            mutator(candidate)
            candidate.job_id = current.job_id

            if candidate == current:
                return candidate

            self._check_transition(current, candidate)

            if current.status == JobStatus.PROCESSING and candidate.status == JobStatus.PROCESSING:
                candidate.progress = max(candidate.progress, current.progress)
            if candidate.status != JobStatus.QUEUED:
                candidate.queue_position = None

            self._jobs[job_id] = candidate
            if current.status == JobStatus.QUEUED and candidate.status != JobStatus.QUEUED:
                self._recompute_positions()
                candidate = self._jobs[job_id]
            return candidate.model_copy(deep=True)

    @staticmethod
    def _check_transition(current: CompressionJob, candidate: CompressionJob):
        if current.status.is_terminal:
            # terminal records are frozen, not only their status
            raise InvalidJobTransitionError(current.job_id, current.status, candidate.status)
        if candidate.status == current.status:
            return
        if candidate.status not in ALLOWED_TRANSITIONS.get(current.status, set()):
            raise InvalidJobTransitionError(current.job_id, current.status, candidate.status)

    def get(self, job_id: str) -> CompressionJob:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            return job.model_copy(deep=True)

    def get_all(self) -> List[CompressionJob]:
        with self._lock:
            return [job.model_copy(deep=True) for job in self._jobs.values()]

    def remove(self, job_id: str) -> CompressionJob:
        with self._lock:
            job = self._jobs.pop(job_id, None)
            if job is None:
                raise JobNotFoundError(job_id)
            if job.status == JobStatus.QUEUED:
                self._recompute_positions()
            self.logger.debug(f"JOB_REMOVED: {job_id}")
            return job

    def queue_length(self) -> int:
        with self._lock:
            return self._queued_count()

    def _queued_count(self) -> int:
        return sum(1 for job in self._jobs.values() if job.status == JobStatus.QUEUED)

    def _recompute_positions(self):
        # registry insertion order is submission order
        position = 1
        for job in self._jobs.values():
            if job.status == JobStatus.QUEUED:
                if job.queue_position != position:
                    job.queue_position = position
                position += 1
