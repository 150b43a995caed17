import sys
import pytest
from pathlib import Path
from unittest.mock import MagicMock
from vcomp.config.models import AppConfig, GeneralConfig
from vcomp.domain.models import VideoMetadata
from vcomp.pipeline.planner import CompressionPlanner


@pytest.fixture
def app_config(tmp_path):
    """Config writing into a temp output dir, with a short grace period."""
    return AppConfig(general=GeneralConfig(
        output_dir=tmp_path / "out",
        termination_grace_seconds=2.0,
        encode_timeout_seconds=60,
    ))


@pytest.fixture
def source_file(tmp_path):
    path = tmp_path / "holiday.mov"
    path.write_bytes(b"\x00" * 4096)
    return path


@pytest.fixture
def metadata_1080p():
    return VideoMetadata(width=1920, height=1080, duration=60.0, fps=30.0, codec="h264", has_audio=True)


@pytest.fixture
def software_selector():
    """Selector stand-in that always lands on the software fallback."""
    selector = MagicMock()
    selector.get_best_encoder.side_effect = lambda codec: {
        "h264": "libx264",
        "h265": "libx265",
        "vp9": "libvpx-vp9",
        "av1": "libsvtav1",
    }[codec]
    return selector


@pytest.fixture
def planner(software_selector):
    return CompressionPlanner(software_selector)


@pytest.fixture
def python_encoder():
    """Path of an executable usable as a scripted stand-in for ffmpeg: `python -c SCRIPT`."""
    return sys.executable
