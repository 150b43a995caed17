import logging
from vcomp.infrastructure.encoder_probe import EncoderProbe
from vcomp.pipeline.codecs import get_profile, is_hardware_encoder, resolve_codec_key


class EncoderSelector:
    """Best encoder per codec family: hardware first, software fallback last.

    Holds no availability state of its own; every call asks the probe, which
    caches per encoder name until `EncoderProbe.clear_cache`.
    """

    def __init__(self, probe: EncoderProbe):
        self.probe = probe
        self.logger = logging.getLogger(__name__)

    is_hardware_encoder = staticmethod(is_hardware_encoder)

    def get_best_encoder(self, codec_key: str) -> str:
        """Raises KeyError for an unknown codec; validation normally catches that earlier."""
        key = resolve_codec_key(codec_key) or codec_key
        profile = get_profile(key)
        return self.probe.get_best_encoder(key, profile.preferred_encoders, profile.fallback_encoder)

    def clear_cache(self):
        self.probe.clear_cache()
