import math
import logging
from typing import List, Optional, Tuple
from vcomp.config.models import PlannerConfig
from vcomp.domain.errors import RequestValidationError
from vcomp.domain.models import (
    CompressionPlan, CompressionRequest, CropRect, EncodingMode, VideoMetadata, VideoSegment,
)
from vcomp.pipeline import filters
from vcomp.pipeline.codecs import TWO_PASS_ENCODERS, get_profile, is_hardware_encoder, quality_value_for, resolve_codec_key
from vcomp.pipeline.selector import EncoderSelector

# Segment ends may overshoot the probed duration by container rounding.
SEGMENT_END_TOLERANCE = 0.05


class CompressionPlanner:
    """Turns a request plus source metadata into a `CompressionPlan`.

    When both a target size and the quality flag are set, the target size
    decides bitrate and scale; the flag only selects the encoder tuning.
    """

    def __init__(
        self,
        selector: EncoderSelector,
        config: Optional[PlannerConfig] = None,
        two_pass: bool = True,
        adaptive_filters: bool = False,
    ):
        self.selector = selector
        self.config = config or PlannerConfig()
        self.two_pass = two_pass
        self.adaptive_filters = adaptive_filters
        self.logger = logging.getLogger(__name__)

    def normalize_request(self, request: CompressionRequest, metadata: Optional[VideoMetadata] = None) -> CompressionRequest:
        """Validates and canonicalizes a request. Raises RequestValidationError."""
        codec = resolve_codec_key(request.codec)
        if codec is None:
            raise RequestValidationError(f"Unsupported codec: {request.codec}")

        if request.source_duration is not None and request.source_duration <= 0:
            raise RequestValidationError(f"Source duration must be positive, got {request.source_duration}")

        scale = request.scale_percent
        if scale is not None:
            scale = max(10, min(100, scale))

        fps = request.target_fps
        if fps is not None:
            fps = max(1, min(240, fps))

        size_mb = request.target_size_mb
        if size_mb is not None and size_mb <= 0:
            size_mb = None

        known_duration = request.source_duration or (metadata.duration if metadata else None)
        segments = self._validate_segments(request.segments, known_duration)
        crop = self._validate_crop(request.crop, metadata)

        return request.model_copy(update={
            "codec": codec,
            "scale_percent": scale,
            "target_fps": fps,
            "target_size_mb": size_mb,
            "segments": segments,
            "crop": crop,
            "mode": EncodingMode.QUALITY if request.quality_mode else EncodingMode.FAST,
        })

    @staticmethod
    def _validate_segments(segments: Optional[List[VideoSegment]], duration: Optional[float]) -> Optional[List[VideoSegment]]:
        if not segments:
            return None

        ordered = sorted(segments, key=lambda s: (s.start, s.end))
        previous: Optional[VideoSegment] = None
        for segment in ordered:
            if segment.start < 0:
                raise RequestValidationError(f"Segment start must not be negative: {segment.start}")
            if segment.end <= segment.start:
                raise RequestValidationError(f"Segment end must be after start: {segment.start}-{segment.end}")
            if duration is not None and segment.end > duration + SEGMENT_END_TOLERANCE:
                raise RequestValidationError(
                    f"Segment {segment.start}-{segment.end} extends past source duration {duration:.2f}s"
                )
            if previous is not None and segment.start < previous.end:
                raise RequestValidationError(
                    f"Segments overlap: {previous.start}-{previous.end} and {segment.start}-{segment.end}"
                )
            previous = segment
        return [s.model_copy() for s in ordered]

    @staticmethod
    def _validate_crop(crop: Optional[CropRect], metadata: Optional[VideoMetadata]) -> Optional[CropRect]:
        if crop is None:
            return None
        if crop.width <= 0 or crop.height <= 0:
            raise RequestValidationError(f"Crop must have a positive area, got {crop.width}x{crop.height}")
        if crop.x < 0 or crop.y < 0:
            raise RequestValidationError(f"Crop origin must not be negative, got ({crop.x}, {crop.y})")
        if metadata is None or metadata.width <= 0 or metadata.height <= 0:
            raise RequestValidationError("Crop requires known source dimensions")
        if crop.x + crop.width > metadata.width or crop.y + crop.height > metadata.height:
            raise RequestValidationError(
                f"Crop {crop.width}x{crop.height}+{crop.x}+{crop.y} exceeds source {metadata.width}x{metadata.height}"
            )
        return crop.model_copy()

    def calculate_bitrates(self, target_size_mb: float, duration: float, audio_kbps: int) -> Tuple[float, float]:
        """(total, video) kbps for a size budget over `duration` seconds."""
        total = target_size_mb * 1024 * 1024 * 8 * self.config.safety_factor / duration / 1000
        video = max(0.0, total - audio_kbps)
        return total, video

    def calculate_optimal_scale(self, width: int, height: int, video_kbps: float, fps: Optional[float] = None) -> int:
        """Largest scale percent that keeps bits-per-pixel near the quality floor."""
        fps = fps or self.config.assumed_fps
        if width <= 0 or height <= 0:
            return 100

        bpp = (video_kbps * 1000) / (width * height * fps)
        if bpp >= self.config.bpp_floor:
            return 100

        scale = int(round(math.sqrt(bpp / self.config.bpp_floor) * 100))
        scale = max(self.config.min_scale_percent, min(100, scale))

        # never force a floor the source can't supply
        min_height = self.config.min_output_height
        if min_height and height >= min_height:
            scale = max(scale, min(100, math.ceil(min_height * 100 / height)))
        return scale

    @staticmethod
    def effective_duration(request: CompressionRequest, metadata: Optional[VideoMetadata] = None) -> Optional[float]:
        if request.segments:
            return sum(s.duration for s in request.segments)
        if request.source_duration:
            return request.source_duration
        if metadata is not None and metadata.duration:
            return metadata.duration
        return None

    def build_plan(self, request: CompressionRequest, metadata: Optional[VideoMetadata] = None, job_id: str = "") -> CompressionPlan:
        normalized = self.normalize_request(request, metadata)
        profile = get_profile(normalized.codec)
        encoder = self.selector.get_best_encoder(normalized.codec)
        hardware = is_hardware_encoder(encoder)

        source_has_audio = metadata.has_audio if metadata is not None else True
        audio_kbps = 0 if normalized.mute_audio or not source_has_audio else self.config.audio_bitrate_kbps

        duration = self.effective_duration(normalized, metadata)
        if normalized.crop is not None:
            frame_w, frame_h = normalized.crop.width, normalized.crop.height
        elif metadata is not None:
            frame_w, frame_h = metadata.width, metadata.height
        else:
            frame_w, frame_h = 0, 0

        user_scale = normalized.scale_percent
        total_kbps: Optional[float] = None
        video_kbps: Optional[float] = None
        quality_value: Optional[int] = None
        warning = False
        size_targeted = normalized.target_size_mb is not None and duration is not None

        if normalized.target_size_mb is not None and duration is None:
            warning = True
            self.logger.warning(
                f"PLAN: duration unknown, ignoring {normalized.target_size_mb} MB target and using constant quality"
            )

        if size_targeted:
            total_kbps, video_kbps = self.calculate_bitrates(normalized.target_size_mb, duration, audio_kbps)
            if video_kbps < self.config.min_video_bitrate_kbps:
                self.logger.warning(
                    f"PLAN: {normalized.target_size_mb} MB over {duration:.1f}s leaves {video_kbps:.0f} kbps video, "
                    f"clamping to {self.config.min_video_bitrate_kbps} kbps"
                )
                video_kbps = float(self.config.min_video_bitrate_kbps)
                total_kbps = video_kbps + audio_kbps
                warning = True

            if user_scale == 100:
                scale = 100
            elif frame_w > 0 and frame_h > 0:
                optimal = self.calculate_optimal_scale(frame_w, frame_h, video_kbps, normalized.target_fps)
                scale = min(optimal, user_scale or 100)
            else:
                scale = user_scale or 100
            two_pass = self.two_pass and encoder in TWO_PASS_ENCODERS
        else:
            scale = user_scale or 100
            quality_value = quality_value_for(profile, encoder, normalized.mode)
            two_pass = False

        video_filters = filters.build_video_filters(
            scale,
            target_fps=normalized.target_fps,
            crop=normalized.crop,
            segments=normalized.segments,
            adaptive=self.adaptive_filters,
            target_size_mb=normalized.target_size_mb,
            duration=duration,
        )
        audio_filters = filters.build_audio_filters(normalized.segments, mute=audio_kbps == 0)

        plan = CompressionPlan(
            job_id=job_id,
            request=normalized,
            encoder_name=encoder,
            encoder_is_hardware=hardware,
            total_bitrate_kbps=total_kbps,
            video_bitrate_kbps=video_kbps,
            audio_bitrate_kbps=audio_kbps,
            scale_percent=scale,
            target_fps=normalized.target_fps,
            two_pass=two_pass,
            size_targeted=size_targeted,
            quality_value=quality_value,
            effective_duration=duration,
            bitrate_warning=warning,
            crop=normalized.crop,
            video_filters=video_filters,
            audio_filters=audio_filters,
            output_extension=profile.extension,
            mime_type=profile.mime_type,
        )
        self.logger.info(
            f"PLAN: codec={normalized.codec} encoder={encoder} total={total_kbps and round(total_kbps)}k "
            f"video={video_kbps and round(video_kbps)}k scale={scale}% two_pass={two_pass}"
        )
        return plan
