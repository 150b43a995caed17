import subprocess
import json
from pathlib import Path
from typing import Optional
from vcomp.domain.models import VideoMetadata

class FFprobeAdapter:
    """Wrapper around ffprobe to extract stream information."""

    def __init__(self, ffprobe_path: str = "ffprobe", timeout: float = 30.0):
        self.ffprobe_path = ffprobe_path
        self.timeout = timeout

    def get_metadata(self, file_path: Path) -> VideoMetadata:
        """Executes ffprobe and parses JSON output."""
        cmd = [
            self.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_streams",
            "-show_format",
            str(file_path)
        ]

        result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        if result.returncode != 0:
            raise RuntimeError(f"ffprobe failed for {file_path}: {result.stderr}")

        data = json.loads(result.stdout)
        streams = data.get("streams", [])

        # Find video stream
        video_stream = next((s for s in streams if s.get("codec_type") == "video"), None)
        if not video_stream:
            raise ValueError(f"No video stream found in {file_path}")
        has_audio = any(s.get("codec_type") == "audio" for s in streams)

        return VideoMetadata(
            width=int(video_stream.get("width", 0)),
            height=int(video_stream.get("height", 0)),
            codec=video_stream.get("codec_name", "unknown"),
            fps=self._parse_fps(video_stream.get("avg_frame_rate", "0/0")),
            duration=self._parse_duration(data.get("format", {}).get("duration"), video_stream.get("duration")),
            has_audio=has_audio,
        )

    @staticmethod
    def _parse_fps(fps_str: str) -> float:
        # avg_frame_rate is preferred; r_frame_rate is often the timebase
        try:
            if "/" in fps_str:
                num, den = map(float, fps_str.split("/"))
                candidate = num / den if den != 0 else 0.0
            else:
                candidate = float(fps_str)
        except ValueError:
            return 0.0
        return round(candidate, 3) if 0 < candidate <= 240 else 0.0

    @staticmethod
    def _parse_duration(*candidates: Optional[str]) -> Optional[float]:
        for raw in candidates:
            if raw in (None, "", "N/A"):
                continue
            try:
                value = float(raw)
            except (TypeError, ValueError):
                continue
            if value > 0:
                return value
        return None
