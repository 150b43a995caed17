from typing import Optional
from pydantic import BaseModel
from .models import CompressionJob

class Event(BaseModel):
    """Base class for all domain events."""
    pass

class JobEvent(Event):
    job: CompressionJob

class JobQueued(JobEvent):
    pass

class JobStarted(JobEvent):
    pass

class JobProgressUpdated(JobEvent):
    progress_percent: float
    eta_seconds: Optional[int] = None

class JobCompleted(JobEvent):
    pass

class JobFailed(JobEvent):
    error_message: str

class JobCancelled(JobEvent):
    pass

class JobRemoved(Event):
    job_id: str
