import re
import subprocess
import threading
import logging
from typing import Dict, Iterable, List, Optional
from vcomp.domain.models import EncoderCapability
from vcomp.pipeline.codecs import is_hardware_encoder

# " V....D libx264    libx264 H.264 / AVC ..." -> flags, name, description
ENCODER_LINE_RE = re.compile(r"^\s*([VAS][F.][S.][X.][B.][D.])\s+(\S+)\s*(.*)$")

# stderr fragments meaning the driver/device is missing, not a bad argument
UNAVAILABLE_MARKERS = ("not available", "cannot load", "no nvenc", "no device", "failed to initialise")


class EncoderProbe:
    """Answers 'can this ffmpeg use encoder X' with a process-lifetime cache.

    Standard mode trusts `ffmpeg -encoders`; verify mode runs a tiny real
    encode, because builds advertise hardware encoders whose driver or
    device is absent. Nothing here raises: a missing ffmpeg means every
    encoder is unavailable.
    """

    def __init__(self, ffmpeg_path: str = "ffmpeg", verify: bool = False, timeout: float = 10.0):
        self.ffmpeg_path = ffmpeg_path
        self.verify = verify
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._availability: Dict[str, bool] = {}
        self._verified: Dict[str, bool] = {}
        self._advertised: Optional[Dict[str, str]] = None

    def clear_cache(self):
        with self._lock:
            self._availability.clear()
            self._verified.clear()
            self._advertised = None
        self.logger.info("ENCODER_PROBE: cache cleared")

    def advertised_encoders(self) -> Dict[str, str]:
        """Video encoders listed by `ffmpeg -encoders`, name -> description."""
        with self._lock:
            if self._advertised is not None:
                return dict(self._advertised)

        encoders: Dict[str, str] = {}
        try:
            result = subprocess.run(
                [self.ffmpeg_path, "-hide_banner", "-encoders"],
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
            if result.returncode == 0:
                encoders = self._parse_encoder_list(result.stdout)
            else:
                self.logger.warning(f"ENCODER_PROBE: '-encoders' exited with code {result.returncode}")
        except subprocess.TimeoutExpired:
            self.logger.warning(f"ENCODER_PROBE: '-encoders' timed out after {self.timeout}s")
        except OSError as e:
            self.logger.warning(f"ENCODER_PROBE: cannot start {self.ffmpeg_path}: {e}")

        with self._lock:
            self._advertised = encoders
        return dict(encoders)

    @staticmethod
    def _parse_encoder_list(output: str) -> Dict[str, str]:
        encoders: Dict[str, str] = {}
        in_table = False
        for line in output.splitlines():
            if not in_table:
                # legend ends with a " ------" separator
                if line.strip().startswith("---"):
                    in_table = True
                continue
            match = ENCODER_LINE_RE.match(line)
            if match and match.group(1).startswith("V"):
                encoders[match.group(2)] = match.group(3).strip()
        return encoders

    def _trial_encode(self, encoder_name: str) -> bool:
        attempts = [
            [
                "-hide_banner", "-loglevel", "error",
                "-f", "lavfi", "-i", "testsrc=duration=0.25:size=640x360:rate=15",
                "-pix_fmt", "nv12" if is_hardware_encoder(encoder_name) else "yuv420p",
                "-c:v", encoder_name, "-g", "60", "-b:v", "500k", "-bf", "0",
                "-f", "null", "-",
            ],
            [
                "-hide_banner", "-loglevel", "error",
                "-f", "lavfi", "-i", "color=black:s=64x64:d=0.12",
                "-c:v", encoder_name, "-f", "null", "-",
            ],
        ]
        for args in attempts:
            try:
                result = subprocess.run(
                    [self.ffmpeg_path] + args,
                    capture_output=True,
                    text=True,
                    timeout=self.timeout,
                )
            except subprocess.TimeoutExpired:
                self.logger.warning(f"ENCODER_PROBE: trial encode with {encoder_name} timed out")
                return False
            except OSError as e:
                self.logger.warning(f"ENCODER_PROBE: cannot start {self.ffmpeg_path}: {e}")
                return False

            if result.returncode == 0:
                return True
            stderr = (result.stderr or "").lower()
            if any(marker in stderr for marker in UNAVAILABLE_MARKERS):
                # no point retrying a different source
                break

        self.logger.debug(f"ENCODER_PROBE: trial encode with {encoder_name} failed")
        return False

    def verify_encoder(self, encoder_name: str) -> bool:
        """Trial-encode availability, memoized separately from the advertised check."""
        with self._lock:
            if encoder_name in self._verified:
                return self._verified[encoder_name]

        available = encoder_name in self.advertised_encoders() and self._trial_encode(encoder_name)

        with self._lock:
            self._verified[encoder_name] = available
        return available

    def is_encoder_available(self, encoder_name: str) -> bool:
        with self._lock:
            if encoder_name in self._availability:
                return self._availability[encoder_name]

        if self.verify:
            available = self.verify_encoder(encoder_name)
        else:
            available = encoder_name in self.advertised_encoders()

        # racing probes of the same name write the same answer
        with self._lock:
            self._availability[encoder_name] = available
        self.logger.debug(f"ENCODER_PROBE: {encoder_name} available={available}")
        return available

    def get_best_encoder(self, codec_key: str, preferred: Iterable[str], fallback: str) -> str:
        for encoder_name in preferred:
            if self.is_encoder_available(encoder_name):
                self.logger.info(f"ENCODER_SELECT: {codec_key} -> {encoder_name}")
                return encoder_name
        self.logger.info(f"ENCODER_SELECT: {codec_key} -> {fallback} (software fallback)")
        return fallback

    def list_encoders(self, names: Optional[Iterable[str]] = None, verify: bool = False) -> List[EncoderCapability]:
        """Capabilities for `names` (or every advertised video encoder).

        Software encoders are reported from the advertised list only; with
        `verify` hardware ones are trial-encoded.
        """
        advertised = self.advertised_encoders()
        wanted = list(names) if names is not None else sorted(advertised)

        capabilities = []
        for name in wanted:
            hardware = is_hardware_encoder(name)
            if hardware and verify:
                available = self.verify_encoder(name)
            elif hardware:
                available = self.is_encoder_available(name)
            else:
                available = name in advertised
            capabilities.append(EncoderCapability(
                name=name,
                description=advertised.get(name),
                is_hardware=hardware,
                is_available=available,
            ))
        return capabilities
