from pathlib import Path
from unittest.mock import MagicMock
from vcomp.domain.models import CompressionRequest, CropRect, VideoMetadata
from vcomp.pipeline.command import (
    build_first_pass, build_pass_commands, build_second_pass, build_single_pass, passlog_prefix,
)
from vcomp.pipeline.planner import CompressionPlanner

SOURCE = Path("/videos/in.mov")
OUTPUT = Path("/out/job_in_compressed.mp4")
PASSLOG = "/out/job_ffmpeg2pass"


def option(args, name):
    return args[args.index(name) + 1]


def test_single_pass_constant_quality(planner, metadata_1080p):
    plan = planner.build_plan(CompressionRequest(codec="h264"), metadata_1080p)
    args = build_single_pass(plan, SOURCE, OUTPUT)

    assert args[:6] == ["-hide_banner", "-nostdin", "-y", "-loglevel", "error", "-stats"]
    assert option(args, "-i") == str(SOURCE)
    assert option(args, "-crf") == "28"
    assert option(args, "-c:a") == "aac"
    assert option(args, "-movflags") == "+faststart"
    assert "-pass" not in args
    assert "-vf" not in args
    assert args[-1] == str(OUTPUT)


def test_two_pass_commands(planner, metadata_1080p):
    plan = planner.build_plan(CompressionRequest(codec="h264", target_size_mb=10, source_duration=60), metadata_1080p)
    commands = build_pass_commands(plan, SOURCE, OUTPUT, PASSLOG)

    assert len(commands) == 2
    first, second = commands

    assert option(first, "-pass") == "1"
    assert option(first, "-passlogfile") == PASSLOG
    assert first[-4:] == ["-an", "-f", "null", "-"]
    assert str(OUTPUT) not in first

    assert option(second, "-pass") == "2"
    assert option(second, "-b:v") == f"{round(plan.video_bitrate_kbps)}k"
    assert option(second, "-vf").startswith("scale=")
    assert second[-1] == str(OUTPUT)


def test_clamped_plan_bitrate_is_what_gets_encoded(planner):
    metadata = VideoMetadata(width=640, height=360, duration=60.0)
    plan = planner.build_plan(CompressionRequest(target_size_mb=1.0, source_duration=60), metadata)
    assert plan.bitrate_warning is True

    for args in build_pass_commands(plan, SOURCE, OUTPUT, PASSLOG):
        assert option(args, "-b:v") == f"{round(plan.video_bitrate_kbps)}k"

    single = CompressionPlanner(planner.selector, two_pass=False).build_plan(
        CompressionRequest(target_size_mb=1.0, source_duration=60), metadata
    )
    assert option(build_single_pass(single, SOURCE, OUTPUT), "-b:v") == f"{round(single.video_bitrate_kbps)}k"


def test_x265_pass_goes_through_params(planner, metadata_1080p):
    plan = planner.build_plan(CompressionRequest(codec="h265", target_size_mb=10, source_duration=60), metadata_1080p)

    first = build_first_pass(plan, SOURCE, PASSLOG)
    second = build_second_pass(plan, SOURCE, OUTPUT, PASSLOG)

    assert "-pass" not in first
    assert option(first, "-x265-params").endswith(f"pass=1:stats={PASSLOG}.log")
    assert option(second, "-x265-params").endswith(f"pass=2:stats={PASSLOG}.log")


def test_hardware_plan_is_single_command(metadata_1080p):
    selector = MagicMock()
    selector.get_best_encoder.return_value = "h264_nvenc"
    plan = CompressionPlanner(selector).build_plan(
        CompressionRequest(target_size_mb=10, source_duration=60), metadata_1080p
    )

    commands = build_pass_commands(plan, SOURCE, OUTPUT, PASSLOG)
    assert len(commands) == 1
    assert option(commands[0], "-c:v") == "h264_nvenc"
    assert "-passlogfile" not in commands[0]


def test_muted_segmented_crop(planner):
    metadata = VideoMetadata(width=1280, height=720, duration=30.0)
    request = CompressionRequest(
        codec="vp9",
        mute_audio=True,
        crop=CropRect(x=0, y=0, width=640, height=360),
        segments=[{"start": 2, "end": 4}],
    )
    plan = planner.build_plan(request, metadata)
    args = build_single_pass(plan, SOURCE, Path("/out/x.webm"))

    assert "-an" in args
    assert "-af" not in args
    assert "0:a:0?" not in args
    assert option(args, "-vf") == "select='between(t,2,4)',setpts=N/FRAME_RATE/TB,crop=640:360:0:0"
    assert option(args, "-c:v") == "libvpx-vp9"


def test_passlog_prefix(tmp_path):
    assert passlog_prefix(tmp_path, "abc") == str(tmp_path / "abc_ffmpeg2pass")
