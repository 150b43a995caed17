class CompressionError(Exception):
    """Base class for all pipeline errors."""


class RequestValidationError(CompressionError):
    """Malformed request. Raised before a job is created."""


class PlanningError(CompressionError):
    """Source metadata unusable for the requested target."""


class ExecutionError(CompressionError):
    """Encoder run failed or produced no usable output."""


class EncoderEnvironmentError(CompressionError):
    """The encoder executable is missing or cannot be started."""


class JobNotFoundError(CompressionError, KeyError):
    def __init__(self, job_id: str):
        super().__init__(job_id)
        self.job_id = job_id

    def __str__(self) -> str:
        return f"Job not found: {self.job_id}"


class JobNotReadyError(CompressionError):
    def __init__(self, job_id: str, status):
        super().__init__(f"Job {job_id} is not completed (status: {status.value})")
        self.job_id = job_id
        self.status = status


class InvalidJobTransitionError(CompressionError):
    def __init__(self, job_id: str, current, requested):
        super().__init__(f"Job {job_id}: illegal transition {current.value} -> {requested.value}")
        self.job_id = job_id
        self.current = current
        self.requested = requested
