from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class JobStatus(str, Enum):
    QUEUED = "QUEUED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class EncodingMode(str, Enum):
    FAST = "FAST"
    QUALITY = "QUALITY"


class VideoSegment(BaseModel):
    start: float
    end: float

    @property
    def duration(self) -> float:
        return self.end - self.start


class CropRect(BaseModel):
    x: int
    y: int
    width: int
    height: int


class CompressionRequest(BaseModel):
    """What the user asked for. `mode` is derived from `quality_mode` during normalization."""
    codec: str = "h264"
    scale_percent: Optional[int] = None
    target_fps: Optional[int] = None
    target_size_mb: Optional[float] = None
    mute_audio: bool = False
    crop: Optional[CropRect] = None
    segments: Optional[List[VideoSegment]] = None
    quality_mode: bool = False
    mode: EncodingMode = EncodingMode.FAST
    source_duration: Optional[float] = None


class VideoMetadata(BaseModel):
    width: int
    height: int
    duration: Optional[float] = None
    fps: float = 0.0
    codec: str = "unknown"
    has_audio: bool = True


class CompressionPlan(BaseModel):
    model_config = ConfigDict(frozen=True)

    job_id: str = ""
    request: CompressionRequest
    encoder_name: str
    encoder_is_hardware: bool = False
    total_bitrate_kbps: Optional[float] = None
    video_bitrate_kbps: Optional[float] = None
    audio_bitrate_kbps: int = 0
    scale_percent: int = 100
    target_fps: Optional[int] = None
    two_pass: bool = False
    size_targeted: bool = False
    quality_value: Optional[int] = None
    effective_duration: Optional[float] = None
    bitrate_warning: bool = False
    crop: Optional[CropRect] = None
    video_filters: List[str] = Field(default_factory=list)
    audio_filters: List[str] = Field(default_factory=list)
    output_extension: str = ".mp4"
    mime_type: str = "video/mp4"


class CompressionJob(BaseModel):
    job_id: str
    original_filename: str
    source_path: Path
    codec: str = "h264"
    request: CompressionRequest = Field(default_factory=CompressionRequest)
    plan: Optional[CompressionPlan] = None
    scale_percent: Optional[int] = None
    target_size_mb: Optional[float] = None
    target_bitrate_kbps: Optional[float] = None
    encoder_name: Optional[str] = None
    encoder_is_hardware: Optional[bool] = None
    output_path: Optional[Path] = None
    output_filename: Optional[str] = None
    output_mime_type: Optional[str] = None
    output_size_bytes: Optional[int] = None
    progress: float = 0.0
    eta_seconds: Optional[int] = None
    queue_position: Optional[int] = None
    error_message: Optional[str] = None
    status: JobStatus = JobStatus.QUEUED
    source_duration: Optional[float] = None
    created_at: datetime = Field(default_factory=datetime.now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class JobStatusReport(BaseModel):
    """Read-only snapshot handed to pollers."""
    job_id: str
    status: JobStatus
    message: str
    progress: float
    eta_seconds: Optional[int] = None
    queue_position: Optional[int] = None
    error_message: Optional[str] = None
    output_filename: Optional[str] = None
    output_size_bytes: Optional[int] = None
    encoder_name: Optional[str] = None
    encoder_is_hardware: Optional[bool] = None


class EncoderCapability(BaseModel):
    name: str
    description: Optional[str] = None
    is_hardware: bool = False
    is_available: Optional[bool] = None


class CodecEncoderReport(BaseModel):
    codec: str
    selected_encoder: str
    hardware_detected: bool
    encoders: List[EncoderCapability] = Field(default_factory=list)
