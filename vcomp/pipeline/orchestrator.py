import json
import logging
import subprocess
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from vcomp.config.models import AppConfig
from vcomp.domain.errors import (
    EncoderEnvironmentError, ExecutionError, InvalidJobTransitionError, JobNotFoundError,
    JobNotReadyError, RequestValidationError,
)
from vcomp.domain.events import (
    JobCancelled, JobCompleted, JobFailed, JobProgressUpdated, JobQueued, JobRemoved, JobStarted,
)
from vcomp.domain.models import (
    CodecEncoderReport, CompressionJob, CompressionRequest, JobStatus, JobStatusReport, VideoMetadata,
)
from vcomp.infrastructure.encoder_probe import EncoderProbe
from vcomp.infrastructure.event_bus import EventBus
from vcomp.infrastructure.ffmpeg import EncoderRunner
from vcomp.infrastructure.ffprobe import FFprobeAdapter
from vcomp.pipeline.codecs import CODEC_PROFILES
from vcomp.pipeline.command import build_pass_commands, passlog_prefix
from vcomp.pipeline.job_store import JobStore
from vcomp.pipeline.planner import CompressionPlanner
from vcomp.pipeline.progress import ProgressParser
from vcomp.pipeline.selector import EncoderSelector


class CompressionOrchestrator:
    """Accepts compression requests and drives them through the worker pool.

    Submission is synchronous up to planning and returns a job id; encoding
    happens on `general.max_concurrent_jobs` worker threads. Nothing raised
    while a job runs escapes a worker: it ends up on the job as Failed.
    """

    def __init__(
        self,
        config: AppConfig,
        event_bus: EventBus,
        job_store: JobStore,
        planner: CompressionPlanner,
        runner: EncoderRunner,
        ffprobe_adapter: FFprobeAdapter,
        encoder_probe: EncoderProbe,
        selector: EncoderSelector,
    ):
        self.config = config
        self.event_bus = event_bus
        self.job_store = job_store
        self.planner = planner
        self.runner = runner
        self.ffprobe_adapter = ffprobe_adapter
        self.encoder_probe = encoder_probe
        self.selector = selector
        self.logger = logging.getLogger(__name__)

        self._cancel_events: Dict[str, threading.Event] = {}
        self._cancel_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._workers: List[threading.Thread] = []

    @classmethod
    def from_config(cls, config: AppConfig, event_bus: Optional[EventBus] = None) -> "CompressionOrchestrator":
        general = config.general
        probe = EncoderProbe(
            ffmpeg_path=general.ffmpeg_path,
            verify=config.encoders.verify,
            timeout=config.encoders.probe_timeout_seconds,
        )
        selector = EncoderSelector(probe)
        planner = CompressionPlanner(
            selector,
            config=config.planner,
            two_pass=general.two_pass,
            adaptive_filters=general.adaptive_filters,
        )
        runner = EncoderRunner(
            ffmpeg_path=general.ffmpeg_path,
            termination_grace=general.termination_grace_seconds,
            tail_lines=general.error_tail_lines,
        )
        return cls(
            config=config,
            event_bus=event_bus or EventBus(),
            job_store=JobStore(),
            planner=planner,
            runner=runner,
            ffprobe_adapter=FFprobeAdapter(ffprobe_path=general.ffprobe_path),
            encoder_probe=probe,
            selector=selector,
        )

    @property
    def output_dir(self) -> Path:
        return Path(self.config.general.output_dir)

    # Submission

    def submit(self, source_path: Path, request: CompressionRequest, original_filename: Optional[str] = None) -> str:
        """Validates, plans and queues a request. Raises RequestValidationError."""
        source_path = Path(source_path)
        if not source_path.is_file():
            raise RequestValidationError(f"Source file not found: {source_path}")
        size = source_path.stat().st_size
        if size == 0:
            raise RequestValidationError(f"Source file is empty: {source_path}")
        limit = self.config.general.max_upload_bytes
        if size > limit:
            raise RequestValidationError(f"Source file is {size} bytes, limit is {limit} bytes")

        metadata = self._probe_source(source_path)
        plan = self.planner.build_plan(request, metadata)

        job = self.job_store.create(
            plan.request,
            original_filename=original_filename or source_path.name,
            source_path=source_path,
            plan=plan,
        )
        with self._cancel_lock:
            self._cancel_events[job.job_id] = threading.Event()
        self.job_store.enqueue(job.job_id)

        self.logger.info(
            f"JOB_QUEUED: {job.job_id} file={job.original_filename} codec={job.codec} "
            f"encoder={job.encoder_name} position={job.queue_position}"
        )
        self.event_bus.publish(JobQueued(job=job))
        return job.job_id

    def _probe_source(self, source_path: Path) -> Optional[VideoMetadata]:
        try:
            return self.ffprobe_adapter.get_metadata(source_path)
        except (RuntimeError, ValueError, OSError, subprocess.TimeoutExpired, json.JSONDecodeError) as e:
            self.logger.warning(f"Could not probe {source_path.name}: {e}")
            return None

    def resubmit(self, job_id: str) -> str:
        """Queues a failed or cancelled job again as a new job."""
        job = self.job_store.get(job_id)
        if job.status not in (JobStatus.FAILED, JobStatus.CANCELLED):
            raise RequestValidationError(
                f"Only failed or cancelled jobs can be resubmitted; job {job_id} is {job.status.value}"
            )
        new_id = self.submit(job.source_path, job.request, original_filename=job.original_filename)
        self.logger.info(f"JOB_RESUBMITTED: {job_id} -> {new_id}")
        return new_id

    # Queries

    def get_job(self, job_id: str) -> CompressionJob:
        return self.job_store.get(job_id)

    def get_all_jobs(self) -> List[CompressionJob]:
        return self.job_store.get_all()

    def status(self, job_id: str) -> JobStatusReport:
        job = self.job_store.get(job_id)
        return JobStatusReport(
            job_id=job.job_id,
            status=job.status,
            message=self._status_message(job),
            progress=job.progress,
            eta_seconds=job.eta_seconds,
            queue_position=job.queue_position,
            error_message=job.error_message,
            output_filename=job.output_filename,
            output_size_bytes=job.output_size_bytes,
            encoder_name=job.encoder_name,
            encoder_is_hardware=job.encoder_is_hardware,
        )

    @staticmethod
    def _status_message(job: CompressionJob) -> str:
        if job.status == JobStatus.QUEUED:
            return f"Video is queued for compression (position {job.queue_position})."
        if job.status == JobStatus.PROCESSING:
            return f"Video compression is in progress ({job.progress:.0f}%)."
        if job.status == JobStatus.COMPLETED:
            return "Video compression completed successfully."
        if job.status == JobStatus.FAILED:
            return f"Video compression failed: {job.error_message or 'unknown error'}"
        return "Video compression was cancelled."

    def download(self, job_id: str) -> Tuple[Path, str, str]:
        """(path, filename, mime type) of a completed job's output."""
        job = self.job_store.get(job_id)
        if job.status != JobStatus.COMPLETED or job.output_path is None:
            raise JobNotReadyError(job_id, job.status)
        if not job.output_path.exists():
            raise ExecutionError(f"Output file for job {job_id} is missing: {job.output_path}")
        return job.output_path, job.output_filename, job.output_mime_type

    def list_encoders(self, verify: bool = False) -> List[CodecEncoderReport]:
        verify = verify or self.config.encoders.verify
        reports = []
        for key, profile in CODEC_PROFILES.items():
            capabilities = self.encoder_probe.list_encoders(profile.all_encoders, verify=verify)
            if verify:
                selected = next(
                    (c.name for c in capabilities if c.is_hardware and c.is_available),
                    profile.fallback_encoder,
                )
            else:
                selected = self.selector.get_best_encoder(key)
            reports.append(CodecEncoderReport(
                codec=key,
                selected_encoder=selected,
                hardware_detected=any(c.is_hardware and c.is_available for c in capabilities),
                encoders=capabilities,
            ))
        return reports

    # Cancellation and removal

    def cancel(self, job_id: str) -> bool:
        """Cancels a queued or running job. False if it had already finished."""
        job = self.job_store.get(job_id)
        if job.status.is_terminal:
            return False

        previous = []

        def mark_cancelled(j: CompressionJob):
            if not j.status.is_terminal:
                previous.append(j.status)
                j.status = JobStatus.CANCELLED
                j.eta_seconds = None
                j.completed_at = datetime.now()

        updated = self.job_store.update(job_id, mark_cancelled)
        if not previous:
            return False

        with self._cancel_lock:
            if previous[0] == JobStatus.QUEUED:
                # no worker will ever own this job
                event = self._cancel_events.pop(job_id, None)
            else:
                event = self._cancel_events.get(job_id)
        if event is not None:
            event.set()

        self.logger.info(f"JOB_CANCELLED: {job_id} at {updated.progress:.1f}%")
        self.event_bus.publish(JobCancelled(job=updated))
        return True

    def delete_job(self, job_id: str):
        """Removes a job and its output; a job still running is cancelled first."""
        job = self.job_store.get(job_id)
        if not job.status.is_terminal:
            self.cancel(job_id)

        self.job_store.remove(job_id)
        with self._cancel_lock:
            self._cancel_events.pop(job_id, None)

        for path in {job.output_path, self._output_path_for(job)}:
            if path is not None:
                self._discard(path)

        self.logger.info(f"JOB_REMOVED: {job_id}")
        self.event_bus.publish(JobRemoved(job_id=job_id))

    # Workers

    def start(self):
        if self._workers:
            return
        self._stop_event.clear()
        for index in range(self.config.general.max_concurrent_jobs):
            worker = threading.Thread(target=self._worker_loop, name=f"vcomp-worker-{index}", daemon=True)
            worker.start()
            self._workers.append(worker)
        self.logger.info(f"Started {len(self._workers)} worker(s)")

    def shutdown(self, wait: bool = True, cancel_running: bool = False):
        self._stop_event.set()
        if cancel_running:
            for job in self.job_store.get_all():
                if job.status == JobStatus.PROCESSING:
                    self.cancel(job.job_id)
        self.job_store.wake_all()
        if wait:
            for worker in self._workers:
                worker.join()
        self._workers = []
        self.logger.info("Workers stopped")

    def _worker_loop(self):
        while not self._stop_event.is_set():
            self.process_next(timeout=0.5)

    def process_next(self, timeout: Optional[float] = None) -> Optional[str]:
        """Dequeues and runs one job. Returns its id, or None if the queue stayed empty."""
        job_id = self.job_store.dequeue(timeout=timeout)
        if job_id is None:
            return None
        try:
            self._run_job(job_id)
        except Exception as e:
            # a dead worker stalls the queue
            self.logger.error(f"Worker error on job {job_id}: {e}", exc_info=True)
        return job_id

    # Job execution

    def _cancel_event_for(self, job_id: str) -> threading.Event:
        with self._cancel_lock:
            return self._cancel_events.setdefault(job_id, threading.Event())

    @staticmethod
    def _output_filename(job: CompressionJob) -> str:
        extension = job.plan.output_extension if job.plan else Path(job.original_filename).suffix
        return f"{Path(job.original_filename).stem}_compressed{extension}"

    def _output_path_for(self, job: CompressionJob) -> Path:
        return self.output_dir / f"{job.job_id}_{self._output_filename(job)}"

    def _run_job(self, job_id: str):
        def mark_processing(j: CompressionJob):
            j.status = JobStatus.PROCESSING
            j.progress = 0.0
            j.eta_seconds = None
            j.started_at = datetime.now()

        try:
            job = self.job_store.update(job_id, mark_processing)
        except (InvalidJobTransitionError, JobNotFoundError) as e:
            self.logger.debug(f"Skipping job {job_id}: {e}")
            return

        self.logger.info(f"JOB_START: {job_id} file={job.original_filename} encoder={job.encoder_name}")
        self.event_bus.publish(JobStarted(job=job))

        output_path = self._output_path_for(job)
        cancel_event = self._cancel_event_for(job_id)
        start_time = time.monotonic()
        try:
            if job.plan is None:
                raise ExecutionError("Job has no compression plan")
            self.output_dir.mkdir(parents=True, exist_ok=True)

            finished = self._encode(job, output_path, cancel_event)
            if not finished:
                self._discard(output_path)
                self.logger.info(f"JOB_CANCELLED: {job_id} encoder stopped, partial output removed")
                return

            size = self._verify_output(output_path)
            self._complete(job, output_path, size, time.monotonic() - start_time)
        except EncoderEnvironmentError as e:
            self._fail(job_id, f"Encoder could not be started: {e}", output_path)
        except ExecutionError as e:
            self._fail(job_id, str(e), output_path)
        except Exception as e:
            self.logger.error(f"Unexpected error in job {job_id}: {e}", exc_info=True)
            self._fail(job_id, f"Unexpected error: {e}", output_path)
        finally:
            self._cleanup_pass_logs(job_id)
            with self._cancel_lock:
                self._cancel_events.pop(job_id, None)

    def _encode(self, job: CompressionJob, output_path: Path, cancel_event: threading.Event) -> bool:
        """Runs every pass of the plan. False when cancelled."""
        plan = job.plan
        commands = build_pass_commands(plan, job.source_path, output_path, passlog_prefix(self.output_dir, job.job_id))
        total_passes = len(commands)
        parser = ProgressParser(1, total_passes)
        timeout = self.config.general.encode_timeout_seconds
        deadline = time.monotonic() + timeout

        for number, arguments in enumerate(commands, start=1):
            if cancel_event.is_set():
                return False
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ExecutionError(f"Encoding timed out after {timeout}s")

            parser.start_pass(number, total_passes)
            result = self.runner.run_pass(
                arguments,
                on_line=lambda line: self._on_encoder_line(job.job_id, parser, plan.effective_duration, line),
                cancel_event=cancel_event,
                timeout=remaining,
            )

            if result.cancelled or cancel_event.is_set():
                return False
            if result.timed_out:
                raise ExecutionError(f"Encoding timed out after {timeout}s")
            if result.exit_code != 0:
                tail = result.tail_text or "no diagnostic output"
                if total_passes > 1:
                    raise ExecutionError(f"Pass {number} of {total_passes} failed (exit code {result.exit_code}): {tail}")
                raise ExecutionError(f"Encoding failed (exit code {result.exit_code}): {tail}")
        return True

    def _on_encoder_line(self, job_id: str, parser: ProgressParser, duration: Optional[float], line: str):
        if not parser.feed(line):
            return
        snapshot = parser.snapshot(duration)

        def apply_progress(j: CompressionJob):
            # a cancelled job keeps its last observed progress
            if j.status == JobStatus.PROCESSING:
                j.progress = snapshot.percent
                j.eta_seconds = snapshot.eta_seconds

        updated = self.job_store.update(job_id, apply_progress)
        if updated.status == JobStatus.PROCESSING:
            self.event_bus.publish(JobProgressUpdated(
                job=updated, progress_percent=updated.progress, eta_seconds=updated.eta_seconds
            ))

    @staticmethod
    def _verify_output(output_path: Path) -> int:
        if not output_path.exists():
            raise ExecutionError("Encoder reported success but produced no output file")
        size = output_path.stat().st_size
        if size == 0:
            raise ExecutionError("Encoder produced an empty output file")
        return size

    def _complete(self, job: CompressionJob, output_path: Path, size: int, elapsed: float):
        def mark_completed(j: CompressionJob):
            if j.status == JobStatus.PROCESSING:
                j.status = JobStatus.COMPLETED
                j.progress = 100.0
                j.eta_seconds = 0
                j.output_path = output_path
                j.output_filename = self._output_filename(j)
                j.output_mime_type = j.plan.mime_type if j.plan else "application/octet-stream"
                j.output_size_bytes = size
                j.completed_at = datetime.now()

        updated = self.job_store.update(job.job_id, mark_completed)
        if updated.status != JobStatus.COMPLETED:
            # cancelled while verifying
            self._discard(output_path)
            return

        self.logger.info(
            f"JOB_COMPLETED: {job.job_id} output={updated.output_filename} "
            f"size={size / (1024 * 1024):.2f}MB elapsed={elapsed:.1f}s"
        )
        self.event_bus.publish(JobCompleted(job=updated))

    def _fail(self, job_id: str, message: str, output_path: Path):
        self._discard(output_path)

        def mark_failed(j: CompressionJob):
            if j.status == JobStatus.PROCESSING:
                j.status = JobStatus.FAILED
                j.error_message = message
                j.eta_seconds = None
                j.completed_at = datetime.now()

        try:
            updated = self.job_store.update(job_id, mark_failed)
        except JobNotFoundError:
            self.logger.warning(f"Job {job_id} removed before its failure was recorded: {message}")
            return

        if updated.status == JobStatus.FAILED:
            self.logger.error(f"JOB_FAILED: {job_id} {message}")
            self.event_bus.publish(JobFailed(job=updated, error_message=message))

    def _discard(self, path: Path):
        try:
            if path.exists():
                path.unlink()
        except OSError as e:
            self.logger.warning(f"Could not remove {path}: {e}")

    def _cleanup_pass_logs(self, job_id: str):
        if not self.output_dir.exists():
            return
        for log_file in self.output_dir.glob(f"{job_id}_ffmpeg2pass*"):
            self._discard(log_file)
