from pathlib import Path
from typing import List, Optional
from vcomp.domain.models import CompressionPlan
from vcomp.pipeline.codecs import (
    build_audio_args, build_pass_args, build_video_args, get_profile, merge_x265_pass_params,
)

# -stats keeps the time=/speed= line even below the info log level
BASE_ARGS = ["-hide_banner", "-nostdin", "-y", "-loglevel", "error", "-stats"]


def passlog_prefix(output_dir: Path, job_id: str) -> str:
    return str(output_dir / f"{job_id}_ffmpeg2pass")


def _input_args(plan: CompressionPlan, source_path: Path, with_audio: bool) -> List[str]:
    args = BASE_ARGS + ["-i", str(source_path), "-map", "0:v:0"]
    if with_audio:
        args.extend(["-map", "0:a:0?"])
    if plan.video_filters:
        args.extend(["-vf", ",".join(plan.video_filters)])
    return args


def _video_args(plan: CompressionPlan, pass_number: Optional[int], passlog: Optional[str]) -> List[str]:
    profile = get_profile(plan.request.codec)
    args = build_video_args(
        profile,
        plan.encoder_name,
        plan.request.mode,
        video_bitrate_kbps=plan.video_bitrate_kbps if plan.size_targeted else None,
        quality=plan.quality_value,
    )
    if pass_number is not None and passlog:
        if plan.encoder_name == "libx265":
            args = merge_x265_pass_params(args, pass_number, passlog)
        else:
            args.extend(build_pass_args(plan.encoder_name, pass_number, passlog))
    return args


def build_output_args(plan: CompressionPlan, output_path: Path) -> List[str]:
    profile = get_profile(plan.request.codec)
    args: List[str] = []
    if plan.audio_bitrate_kbps > 0 and plan.audio_filters:
        args.extend(["-af", ",".join(plan.audio_filters)])
    args.extend(build_audio_args(profile, plan.audio_bitrate_kbps))
    args.extend(profile.container_args)
    args.append(str(output_path))
    return args


def build_single_pass(plan: CompressionPlan, source_path: Path, output_path: Path) -> List[str]:
    return (
        _input_args(plan, source_path, with_audio=plan.audio_bitrate_kbps > 0)
        + _video_args(plan, None, None)
        + build_output_args(plan, output_path)
    )


def build_first_pass(plan: CompressionPlan, source_path: Path, passlog: str) -> List[str]:
    """Analysis pass: stats go to `passlog`, the encoded stream is discarded."""
    return (
        _input_args(plan, source_path, with_audio=False)
        + _video_args(plan, 1, passlog)
        + ["-an", "-f", "null", "-"]
    )


def build_second_pass(plan: CompressionPlan, source_path: Path, output_path: Path, passlog: str) -> List[str]:
    return (
        _input_args(plan, source_path, with_audio=plan.audio_bitrate_kbps > 0)
        + _video_args(plan, 2, passlog)
        + build_output_args(plan, output_path)
    )


def build_pass_commands(plan: CompressionPlan, source_path: Path, output_path: Path, passlog: str) -> List[List[str]]:
    """Argument lists in execution order: one for single pass, two for two-pass."""
    if plan.two_pass:
        return [
            build_first_pass(plan, source_path, passlog),
            build_second_pass(plan, source_path, output_path, passlog),
        ]
    return [build_single_pass(plan, source_path, output_path)]
