from pathlib import Path
from typing import Optional
from pydantic import BaseModel, Field, field_validator

class GeneralConfig(BaseModel):
    max_concurrent_jobs: int = Field(default=1, ge=1, le=16)
    max_upload_bytes: int = Field(default=2 * 1024 * 1024 * 1024, gt=0)  # 2 GiB
    job_retention_minutes: int = Field(default=30, ge=1)
    cleanup_interval_minutes: int = Field(default=5, ge=1)
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    output_dir: Path = Field(default_factory=lambda: Path("vcomp_out"))
    log_dir: Optional[Path] = None
    encode_timeout_seconds: int = Field(default=21600, gt=0)  # 6 hours
    termination_grace_seconds: float = Field(default=5.0, gt=0)
    error_tail_lines: int = Field(default=20, ge=1)
    two_pass: bool = True
    adaptive_filters: bool = False
    debug: bool = False

    @field_validator('ffmpeg_path', 'ffprobe_path')
    @classmethod
    def validate_executable(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Executable path must not be empty")
        return v.strip()

class PlannerConfig(BaseModel):
    safety_factor: float = Field(default=0.97, gt=0.0, le=1.0)
    audio_bitrate_kbps: int = Field(default=128, ge=0)
    bpp_floor: float = Field(default=0.1, gt=0.0)
    assumed_fps: int = Field(default=30, ge=1, le=240)
    min_output_height: int = Field(default=480, ge=0)
    min_scale_percent: int = Field(default=25, ge=1, le=100)
    min_video_bitrate_kbps: int = Field(default=100, gt=0)

class EncoderConfig(BaseModel):
    verify: bool = False
    probe_timeout_seconds: float = Field(default=10.0, gt=0)

class AppConfig(BaseModel):
    general: GeneralConfig = Field(default_factory=GeneralConfig)
    planner: PlannerConfig = Field(default_factory=PlannerConfig)
    encoders: EncoderConfig = Field(default_factory=EncoderConfig)
