from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import MagicMock
from vcomp.domain.errors import JobNotFoundError
from vcomp.domain.models import CompressionJob, JobStatus
from vcomp.infrastructure.housekeeping import HousekeepingService

NOW = datetime(2026, 3, 1, 12, 0, 0)


def job(job_id, status, created_ago, completed_ago=None, started_ago=None):
    return CompressionJob(
        job_id=job_id,
        original_filename=f"{job_id}.mp4",
        source_path=Path(f"{job_id}.mp4"),
        status=status,
        created_at=NOW - created_ago,
        completed_at=NOW - completed_ago if completed_ago is not None else None,
        started_at=NOW - started_ago if started_ago is not None else None,
    )


def test_sweep_removes_only_expired_jobs():
    jobs = [
        job("done-old", JobStatus.COMPLETED, timedelta(hours=2), completed_ago=timedelta(minutes=31)),
        job("done-new", JobStatus.COMPLETED, timedelta(hours=2), completed_ago=timedelta(minutes=5)),
        job("failed-old", JobStatus.FAILED, timedelta(hours=1), completed_ago=timedelta(minutes=45)),
        job("stuck", JobStatus.PROCESSING, timedelta(hours=5), started_ago=timedelta(hours=4, minutes=1)),
        job("running", JobStatus.PROCESSING, timedelta(hours=5), started_ago=timedelta(hours=1)),
        job("stale-queue", JobStatus.QUEUED, timedelta(hours=3)),
        job("waiting", JobStatus.QUEUED, timedelta(minutes=50)),
    ]
    orchestrator = MagicMock()
    orchestrator.get_all_jobs.return_value = jobs

    removed = HousekeepingService(orchestrator, retention_minutes=30).sweep(now=NOW)

    deleted = [call[0][0] for call in orchestrator.delete_job.call_args_list]
    assert deleted == ["done-old", "failed-old", "stuck", "stale-queue"]
    assert removed == 4


def test_already_removed_job_is_skipped():
    orchestrator = MagicMock()
    orchestrator.get_all_jobs.return_value = [
        job("gone", JobStatus.CANCELLED, timedelta(hours=1), completed_ago=timedelta(hours=1)),
    ]
    orchestrator.delete_job.side_effect = JobNotFoundError("gone")

    assert HousekeepingService(orchestrator).sweep(now=NOW) == 0


def test_start_and_stop():
    orchestrator = MagicMock()
    orchestrator.get_all_jobs.return_value = []
    service = HousekeepingService(orchestrator, interval_minutes=1)

    service.start()
    assert service._thread is not None and service._thread.is_alive()
    service.stop()
    assert service._thread is None
