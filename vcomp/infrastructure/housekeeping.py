import threading
import logging
from datetime import datetime, timedelta
from typing import Optional, TYPE_CHECKING
from vcomp.domain.models import CompressionJob, JobStatus

if TYPE_CHECKING:
    from vcomp.pipeline.orchestrator import CompressionOrchestrator

STALE_PROCESSING_AGE = timedelta(hours=4)
STALE_QUEUED_AGE = timedelta(hours=2)


class HousekeepingService:
    """Expires old jobs and their output files in a background thread."""

    def __init__(
        self,
        orchestrator: "CompressionOrchestrator",
        retention_minutes: int = 30,
        interval_minutes: int = 5,
    ):
        self.orchestrator = orchestrator
        self.retention = timedelta(minutes=retention_minutes)
        self.interval_seconds = interval_minutes * 60
        self.logger = logging.getLogger(__name__)
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def is_expired(self, job: CompressionJob, now: datetime) -> bool:
        if job.status.is_terminal:
            return now - (job.completed_at or job.created_at) > self.retention
        if job.status == JobStatus.PROCESSING:
            return now - (job.started_at or job.created_at) > STALE_PROCESSING_AGE
        return now - job.created_at > STALE_QUEUED_AGE

    def sweep(self, now: Optional[datetime] = None) -> int:
        """Deletes every expired job. Returns how many were removed."""
        now = now or datetime.now()
        removed = 0
        for job in self.orchestrator.get_all_jobs():
            if not self.is_expired(job, now):
                continue
            try:
                self.orchestrator.delete_job(job.job_id)
                removed += 1
                self.logger.info(f"HOUSEKEEPING: removed {job.status.value.lower()} job {job.job_id}")
            except KeyError:
                # already gone
                continue
        if removed:
            self.logger.info(f"HOUSEKEEPING: {removed} job(s) expired")
        return removed

    def _run(self):
        while not self._stop_event.wait(self.interval_seconds):
            try:
                self.sweep()
            except Exception as e:
                self.logger.error(f"HOUSEKEEPING: sweep failed: {e}")

    def start(self):
        if self._thread is not None:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="vcomp-housekeeping", daemon=True)
        self._thread.start()
        self.logger.info("Housekeeping started")

    def stop(self):
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=1.0)
            self._thread = None
        self.logger.info("Housekeeping stopped")
