import pytest
import json
import subprocess
from pathlib import Path
from unittest.mock import patch
from vcomp.infrastructure.ffprobe import FFprobeAdapter

def test_ffprobe_parse_streams():
    mock_output = {
        "streams": [
            {
                "index": 0,
                "codec_name": "h264",
                "codec_type": "video",
                "width": 1920,
                "height": 1080,
                "r_frame_rate": "30/1",
                "avg_frame_rate": "30000/1001",
                "bit_rate": "5000000"
            },
            {
                "index": 1,
                "codec_name": "aac",
                "codec_type": "audio"
            }
        ],
        "format": {
            "duration": "10.0"
        }
    }

    with patch("subprocess.run") as mock_run:
        mock_run.return_value.stdout = json.dumps(mock_output)
        mock_run.return_value.returncode = 0

        adapter = FFprobeAdapter(ffprobe_path="/opt/ffprobe")
        metadata = adapter.get_metadata(Path("test.mp4"))

        assert metadata.width == 1920
        assert metadata.height == 1080
        assert metadata.codec == "h264"
        assert metadata.fps == 29.97
        assert metadata.duration == 10.0
        assert metadata.has_audio is True
        assert mock_run.call_args[0][0][0] == "/opt/ffprobe"

def test_ffprobe_stream_duration_fallback():
    mock_output = {
        "streams": [{"codec_type": "video", "width": 640, "height": 480, "duration": "4.5"}],
        "format": {"duration": "N/A"}
    }

    with patch("subprocess.run") as mock_run:
        mock_run.return_value.stdout = json.dumps(mock_output)
        mock_run.return_value.returncode = 0

        metadata = FFprobeAdapter().get_metadata(Path("test.webm"))

        assert metadata.duration == 4.5
        assert metadata.has_audio is False
        assert metadata.fps == 0.0

def test_ffprobe_no_video_stream():
    mock_output = {"streams": [{"codec_type": "audio"}], "format": {}}

    with patch("subprocess.run") as mock_run:
        mock_run.return_value.stdout = json.dumps(mock_output)
        mock_run.return_value.returncode = 0

        with pytest.raises(ValueError):
            FFprobeAdapter().get_metadata(Path("song.m4a"))

def test_ffprobe_error():
    with patch("subprocess.run") as mock_run:
        mock_run.return_value.returncode = 1
        mock_run.return_value.stderr = "error"

        adapter = FFprobeAdapter()
        with pytest.raises(RuntimeError):
            adapter.get_metadata(Path("test.mp4"))

def test_ffprobe_timeout_propagates():
    with patch("subprocess.run", side_effect=subprocess.TimeoutExpired(cmd="ffprobe", timeout=30)):
        with pytest.raises(subprocess.TimeoutExpired):
            FFprobeAdapter().get_metadata(Path("test.mp4"))

@pytest.mark.parametrize("raw,expected", [
    ("30/1", 30.0),
    ("0/0", 0.0),
    ("25", 25.0),
    ("90000/1", 0.0),
    ("garbage", 0.0),
])
def test_parse_fps(raw, expected):
    assert FFprobeAdapter._parse_fps(raw) == expected
