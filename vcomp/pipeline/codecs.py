"""Per-codec encoding profiles.

Each supported codec key maps to one `CodecProfile` (container, audio codec,
encoder preference order) and every encoder has a tuning table per
`EncodingMode`. Argument construction is data driven: the same
`build_video_args(bitrate, mode)` contract works for every codec.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from vcomp.domain.models import EncodingMode

HARDWARE_MARKERS = ("nvenc", "qsv", "videotoolbox", "amf", "vaapi")

# Encoders for which ffmpeg's stats-file two-pass works.
TWO_PASS_ENCODERS = frozenset({"libx264", "libx265", "libvpx-vp9"})

# VBV shaping around the target bitrate.
MAXRATE_MULTIPLIER = 1.05
BUFFER_MULTIPLIER = 1.6


def is_hardware_encoder(encoder_name: Optional[str]) -> bool:
    """Name-based classification only; no I/O."""
    if not encoder_name or not encoder_name.strip():
        return False
    lowered = encoder_name.lower()
    return any(marker in lowered for marker in HARDWARE_MARKERS)


@dataclass(frozen=True)
class CodecProfile:
    key: str
    extension: str
    mime_type: str
    audio_codec: str
    preferred_encoders: Tuple[str, ...]
    fallback_encoder: str
    container_args: Tuple[str, ...] = ()
    audio_args: Tuple[str, ...] = ()
    # constant-quality value per mode for the software fallback
    quality: Dict[EncodingMode, int] = field(default_factory=dict)

    @property
    def all_encoders(self) -> Tuple[str, ...]:
        return self.preferred_encoders + (self.fallback_encoder,)


CODEC_PROFILES: Dict[str, CodecProfile] = {
    "h264": CodecProfile(
        key="h264",
        extension=".mp4",
        mime_type="video/mp4",
        audio_codec="aac",
        preferred_encoders=("h264_nvenc", "h264_qsv", "h264_videotoolbox", "h264_amf"),
        fallback_encoder="libx264",
        container_args=("-movflags", "+faststart"),
        quality={EncodingMode.FAST: 28, EncodingMode.QUALITY: 23},
    ),
    "h265": CodecProfile(
        key="h265",
        extension=".mp4",
        mime_type="video/mp4",
        audio_codec="aac",
        preferred_encoders=("hevc_nvenc", "hevc_qsv", "hevc_videotoolbox", "hevc_amf"),
        fallback_encoder="libx265",
        container_args=("-movflags", "+faststart"),
        quality={EncodingMode.FAST: 30, EncodingMode.QUALITY: 26},
    ),
    "vp9": CodecProfile(
        key="vp9",
        extension=".webm",
        mime_type="video/webm",
        audio_codec="libopus",
        preferred_encoders=("vp9_qsv",),
        fallback_encoder="libvpx-vp9",
        audio_args=("-ac", "2"),
        quality={EncodingMode.FAST: 36, EncodingMode.QUALITY: 31},
    ),
    "av1": CodecProfile(
        key="av1",
        extension=".mp4",
        mime_type="video/mp4",
        audio_codec="aac",
        preferred_encoders=("av1_nvenc", "av1_qsv", "av1_amf"),
        fallback_encoder="libsvtav1",
        container_args=("-movflags", "+faststart"),
        quality={EncodingMode.FAST: 38, EncodingMode.QUALITY: 32},
    ),
}

CODEC_ALIASES = {
    "avc": "h264",
    "x264": "h264",
    "hevc": "h265",
    "x265": "h265",
    "vp09": "vp9",
    "av01": "av1",
}


def resolve_codec_key(codec: Optional[str]) -> Optional[str]:
    if not codec:
        return None
    key = codec.strip().lower()
    key = CODEC_ALIASES.get(key, key)
    return key if key in CODEC_PROFILES else None


def get_profile(codec: str) -> CodecProfile:
    key = resolve_codec_key(codec)
    if key is None:
        raise KeyError(f"Unsupported codec: {codec}")
    return CODEC_PROFILES[key]


# (encoder, mode) -> tuning switches independent of the bitrate budget.
# "*" entries apply to encoders without a dedicated row.
ENCODER_TUNING: Dict[Tuple[str, EncodingMode], List[str]] = {
    ("libx264", EncodingMode.FAST): [
        "-preset", "fast", "-pix_fmt", "yuv420p", "-g", "60", "-bf", "2", "-refs", "2",
        "-x264-params", "aq-mode=2:aq-strength=0.8:rc_lookahead=30:psy=0:me=hex:subme=6",
    ],
    ("libx264", EncodingMode.QUALITY): [
        "-preset", "medium", "-pix_fmt", "yuv420p", "-g", "60", "-bf", "3", "-refs", "4",
        "-x264-params", "aq-mode=3:aq-strength=1.0:rc_lookahead=50:psy=1:psy-rd=1.0:me=umh:subme=8:mbtree=1",
    ],
    ("h264_nvenc", EncodingMode.FAST): [
        "-preset", "p4", "-spatial-aq", "1", "-temporal-aq", "1", "-rc-lookahead", "32", "-g", "60", "-bf", "3",
    ],
    ("h264_nvenc", EncodingMode.QUALITY): [
        "-preset", "p7", "-tune", "hq", "-spatial-aq", "1", "-temporal-aq", "1", "-rc-lookahead", "32",
        "-g", "60", "-bf", "4", "-b_ref_mode", "middle", "-multipass", "qres",
    ],
    ("h264_qsv", EncodingMode.FAST): [
        "-preset", "medium", "-look_ahead", "1", "-look_ahead_depth", "40", "-g", "60", "-bf", "3",
    ],
    ("h264_qsv", EncodingMode.QUALITY): [
        "-preset", "veryslow", "-look_ahead", "1", "-look_ahead_depth", "100",
        "-adaptive_i", "1", "-adaptive_b", "1", "-g", "60", "-bf", "4",
    ],
    ("h264_amf", EncodingMode.FAST): [
        "-quality", "speed", "-pix_fmt", "nv12", "-g", "60", "-bf", "1",
    ],
    ("h264_amf", EncodingMode.QUALITY): [
        "-quality", "quality", "-pix_fmt", "nv12", "-g", "60", "-bf", "3",
    ],
    ("h264_videotoolbox", EncodingMode.FAST): ["-pix_fmt", "yuv420p", "-g", "60", "-bf", "2"],
    ("h264_videotoolbox", EncodingMode.QUALITY): ["-pix_fmt", "yuv420p", "-g", "60", "-bf", "3", "-profile:v", "high"],
    ("libx265", EncodingMode.FAST): [
        "-preset", "fast", "-pix_fmt", "yuv420p", "-tag:v", "hvc1", "-g", "60",
        "-x265-params", "aq-mode=3:aq-strength=1.0:psy-rd=2.0:rc-lookahead=40",
    ],
    ("libx265", EncodingMode.QUALITY): [
        "-preset", "slow", "-pix_fmt", "yuv420p", "-tag:v", "hvc1", "-g", "60",
        "-x265-params", "aq-mode=3:aq-strength=1.4:psy-rd=2.5:psy-rdoq=1.5:rc-lookahead=80",
    ],
    ("hevc_nvenc", EncodingMode.FAST): [
        "-pix_fmt", "yuv420p", "-preset", "p6", "-spatial-aq", "1", "-temporal-aq", "1",
        "-rc-lookahead", "48", "-g", "60", "-bf", "4", "-tag:v", "hvc1",
    ],
    ("hevc_nvenc", EncodingMode.QUALITY): [
        "-pix_fmt", "yuv420p", "-preset", "p7", "-tune", "hq", "-spatial-aq", "1", "-temporal-aq", "1",
        "-rc-lookahead", "48", "-g", "60", "-bf", "4", "-tier", "high", "-tag:v", "hvc1",
    ],
    ("libvpx-vp9", EncodingMode.FAST): [
        "-deadline", "good", "-cpu-used", "4", "-row-mt", "1", "-tile-columns", "1", "-g", "120",
    ],
    ("libvpx-vp9", EncodingMode.QUALITY): [
        "-deadline", "good", "-cpu-used", "2", "-row-mt", "1", "-tile-columns", "1",
        "-auto-alt-ref", "1", "-lag-in-frames", "25", "-g", "240",
    ],
    ("libsvtav1", EncodingMode.FAST): ["-preset", "8", "-pix_fmt", "yuv420p", "-g", "240"],
    ("libsvtav1", EncodingMode.QUALITY): [
        "-preset", "6", "-pix_fmt", "yuv420p", "-g", "240", "-svtav1-params", "tune=0:enable-overlays=1",
    ],
    ("av1_nvenc", EncodingMode.FAST): ["-preset", "p5", "-g", "240"],
    ("av1_nvenc", EncodingMode.QUALITY): ["-preset", "p7", "-tune", "hq", "-g", "240"],
    ("*", EncodingMode.FAST): ["-pix_fmt", "yuv420p", "-g", "60"],
    ("*", EncodingMode.QUALITY): ["-pix_fmt", "yuv420p", "-g", "60"],
}


def get_tuning(encoder: str, mode: EncodingMode) -> List[str]:
    tuning = ENCODER_TUNING.get((encoder, mode))
    if tuning is None:
        tuning = ENCODER_TUNING[("*", mode)]
    return list(tuning)


def quality_value_for(profile: CodecProfile, encoder: str, mode: EncodingMode) -> int:
    """CRF/CQ value used when no bitrate budget is computed."""
    base = profile.quality[mode]
    if "videotoolbox" in encoder:
        # -q:v on VideoToolbox is 1-100, higher is better
        return 65 if mode == EncodingMode.FAST else 75
    return base


def _quality_args(encoder: str, quality: int) -> List[str]:
    if "nvenc" in encoder:
        return ["-rc", "vbr", "-cq", str(quality), "-b:v", "0"]
    if "qsv" in encoder:
        return ["-global_quality", str(quality)]
    if "amf" in encoder:
        return ["-rc", "cqp", "-qp_i", str(quality), "-qp_p", str(quality)]
    if "videotoolbox" in encoder:
        return ["-q:v", str(quality)]
    if encoder == "libvpx-vp9":
        return ["-crf", str(quality), "-b:v", "0"]
    return ["-crf", str(quality)]


def build_video_args(
    profile: CodecProfile,
    encoder: str,
    mode: EncodingMode,
    video_bitrate_kbps: Optional[float] = None,
    quality: Optional[int] = None,
) -> List[str]:
    """Video encoder switches for one encoder.

    With a bitrate the encoder is rate controlled to that target (plus VBV
    limits); otherwise it runs constant quality at `quality` (or the
    profile's default for `mode`).
    """
    args = ["-c:v", encoder]

    if video_bitrate_kbps is not None:
        target = int(round(video_bitrate_kbps))
        maxrate = int(round(target * MAXRATE_MULTIPLIER))
        buffer = int(round(target * BUFFER_MULTIPLIER))
        args.extend(["-b:v", f"{target}k"])
        if "nvenc" in encoder:
            args.extend(["-rc", "vbr"])
        args.extend(get_tuning(encoder, mode))
        args.extend(["-maxrate", f"{maxrate}k", "-bufsize", f"{buffer}k"])
    else:
        if quality is None:
            quality = quality_value_for(profile, encoder, mode)
        args.extend(_quality_args(encoder, quality))
        args.extend(get_tuning(encoder, mode))

    return args


def build_audio_args(profile: CodecProfile, audio_bitrate_kbps: int) -> List[str]:
    if audio_bitrate_kbps <= 0:
        return ["-an"]
    return ["-c:a", profile.audio_codec, "-b:a", f"{audio_bitrate_kbps}k", *profile.audio_args]


def build_pass_args(encoder: str, pass_number: int, passlog_prefix: str) -> List[str]:
    """Switches that select pass 1 or 2 of a stats-file two-pass encode."""
    if encoder not in TWO_PASS_ENCODERS:
        return []
    return ["-pass", str(pass_number), "-passlogfile", passlog_prefix]


def merge_x265_pass_params(args: List[str], pass_number: int, passlog_prefix: str) -> List[str]:
    """libx265 reads its pass settings from -x265-params, not -pass."""
    extra = f"pass={pass_number}:stats={passlog_prefix}.log"
    merged = list(args)
    if "-x265-params" in merged:
        idx = merged.index("-x265-params") + 1
        merged[idx] = f"{merged[idx]}:{extra}"
    else:
        merged.extend(["-x265-params", extra])
    return merged
