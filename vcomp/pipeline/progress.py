import re
from dataclasses import dataclass
from typing import Optional, Tuple

# "time=00:01:02.50" in the -stats line, "out_time=00:01:02.500000" from -progress
TIME_RE = re.compile(r"(?<![\w-])(?:out_)?time=(\d+):(\d{2}):(\d{2}(?:\.\d+)?)")
SPEED_RE = re.compile(r"speed=\s*(\d+(?:\.\d+)?|\.\d+)x")


@dataclass(frozen=True)
class ProgressSnapshot:
    percent: float
    eta_seconds: Optional[int] = None


class ProgressParser:
    """Accumulates encoder position and speed from ffmpeg stderr lines.

    Each pass of an N-pass encode owns an equal share of 0-100: pass 1 of 2
    reports within 0-50 and pass 2 within 50-100. Position never moves
    backwards within a pass.
    """

    def __init__(self, pass_number: int = 1, total_passes: int = 1):
        self.current_seconds = 0.0
        self.speed: Optional[float] = None
        self.pass_number = 1
        self.total_passes = 1
        self.start_pass(pass_number, total_passes)

    def start_pass(self, pass_number: int, total_passes: Optional[int] = None):
        if total_passes is not None:
            self.total_passes = max(1, total_passes)
        self.pass_number = max(1, min(pass_number, self.total_passes))
        self.current_seconds = 0.0
        self.speed = None

    @property
    def band(self) -> Tuple[float, float]:
        """(start, width) of the current pass in percent."""
        width = 100.0 / self.total_passes
        return (self.pass_number - 1) * width, width

    def feed(self, line: str) -> bool:
        """Returns True if the line moved the position or changed the speed."""
        if not line:
            return False
        changed = False

        match = TIME_RE.search(line)
        if match:
            hours, minutes, seconds = match.groups()
            value = int(hours) * 3600 + int(minutes) * 60 + float(seconds)
            if value > self.current_seconds:
                self.current_seconds = value
                changed = True

        match = SPEED_RE.search(line)
        if match:
            try:
                speed = float(match.group(1))
            except ValueError:
                speed = None
            if speed is not None and speed != self.speed:
                self.speed = speed
                changed = True

        return changed

    def snapshot(self, total_seconds: Optional[float]) -> ProgressSnapshot:
        band_start, band_width = self.band
        if not total_seconds or total_seconds <= 0:
            return ProgressSnapshot(percent=band_start, eta_seconds=None)

        fraction = min(1.0, self.current_seconds / total_seconds)
        percent = min(100.0, band_start + band_width * fraction)

        eta = None
        if self.speed:
            remaining = max(0.0, total_seconds - self.current_seconds)
            remaining += (self.total_passes - self.pass_number) * total_seconds
            eta = int(round(remaining / self.speed))
        return ProgressSnapshot(percent=round(percent, 2), eta_seconds=eta)
