"""ffmpeg filter-chain fragments.

Order of the video chain: segment select, crop, denoise, scale, sharpen,
fps. Crop precedes scale so the scale percentage applies to the cropped
frame.
"""
from enum import Enum
from typing import List, Optional, Sequence
from vcomp.domain.models import CropRect, VideoSegment


class FilterIntensity(str, Enum):
    LIGHT = "light"
    MODERATE = "moderate"
    HEAVY = "heavy"


# luma spatial, chroma spatial, luma temporal, chroma temporal
DENOISE_STRENGTH = {
    FilterIntensity.HEAVY: (2.8, 2.3, 4.5, 4.5),
    FilterIntensity.MODERATE: (1.7, 1.2, 3.2, 3.2),
    FilterIntensity.LIGHT: (1.0, 0.8, 2.2, 2.2),
}

SHARPEN_STRENGTH = {
    FilterIntensity.HEAVY: 0.4,
    FilterIntensity.MODERATE: 0.32,
    FilterIntensity.LIGHT: 0.25,
}


def _fmt(value: float) -> str:
    return f"{value:g}"


def determine_intensity(target_size_mb: Optional[float], duration: Optional[float]) -> FilterIntensity:
    if not target_size_mb or not duration or duration <= 0:
        return FilterIntensity.LIGHT
    bitrate_kbps = (target_size_mb * 8 * 1024) / duration
    if bitrate_kbps < 900:
        return FilterIntensity.HEAVY
    if bitrate_kbps < 2000:
        return FilterIntensity.MODERATE
    return FilterIntensity.LIGHT


def segment_select_filters(segments: Optional[Sequence[VideoSegment]]) -> tuple:
    """(video_filters, audio_filters) keeping only the given time spans."""
    if not segments:
        return [], []
    expr = "+".join(f"between(t,{_fmt(s.start)},{_fmt(s.end)})" for s in segments)
    video = [f"select='{expr}'", "setpts=N/FRAME_RATE/TB"]
    audio = [f"aselect='{expr}'", "asetpts=N/SR/TB"]
    return video, audio


def crop_filter(crop: CropRect) -> str:
    return f"crop={crop.width}:{crop.height}:{crop.x}:{crop.y}"


def scale_filter(scale_percent: int) -> Optional[str]:
    if scale_percent >= 100:
        return None
    factor = _fmt(max(10, min(100, scale_percent)) / 100.0)
    # even dimensions keep yuv420p encoders happy
    return f"scale=trunc(iw*{factor}/2)*2:trunc(ih*{factor}/2)*2"


def denoise_filter(intensity: FilterIntensity) -> str:
    return "hqdn3d=" + ":".join(_fmt(v) for v in DENOISE_STRENGTH[intensity])


def sharpen_filter(intensity: FilterIntensity, scale_percent: int) -> str:
    if scale_percent < 100:
        base = 0.45 if intensity == FilterIntensity.HEAVY else 0.35
        strength = round(base + (1.0 - scale_percent / 100.0) * 1.5, 2)
    else:
        strength = SHARPEN_STRENGTH[intensity]
    return f"unsharp=3:3:{_fmt(strength)}"


def build_video_filters(
    scale_percent: int,
    target_fps: Optional[int] = None,
    crop: Optional[CropRect] = None,
    segments: Optional[Sequence[VideoSegment]] = None,
    adaptive: bool = False,
    target_size_mb: Optional[float] = None,
    duration: Optional[float] = None,
) -> List[str]:
    filters, _ = segment_select_filters(segments)
    if crop is not None:
        filters.append(crop_filter(crop))

    intensity = determine_intensity(target_size_mb, duration) if adaptive else None
    if intensity is not None:
        filters.append(denoise_filter(intensity))

    scale = scale_filter(scale_percent)
    if scale:
        filters.append(scale)

    if intensity is not None:
        filters.append(sharpen_filter(intensity, scale_percent))

    if target_fps:
        filters.append(f"fps={target_fps}")
    return filters


def build_audio_filters(segments: Optional[Sequence[VideoSegment]], mute: bool = False) -> List[str]:
    if mute:
        return []
    _, audio = segment_select_filters(segments)
    return audio
