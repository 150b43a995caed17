import pytest
from unittest.mock import MagicMock, patch
from vcomp.infrastructure.encoder_probe import EncoderProbe
from vcomp.pipeline.codecs import CODEC_PROFILES
from vcomp.pipeline.selector import EncoderSelector


def probe_with(available):
    probe = EncoderProbe()
    probe.is_encoder_available = MagicMock(side_effect=lambda name: name in available)
    return probe


@pytest.mark.parametrize("codec", sorted(CODEC_PROFILES))
def test_fallback_when_no_hardware(codec):
    selector = EncoderSelector(probe_with(set()))
    assert selector.get_best_encoder(codec) == CODEC_PROFILES[codec].fallback_encoder


@pytest.mark.parametrize("codec", sorted(CODEC_PROFILES))
def test_hardware_when_any_preferred_available(codec):
    hardware = CODEC_PROFILES[codec].preferred_encoders[-1]
    selector = EncoderSelector(probe_with({hardware}))

    chosen = selector.get_best_encoder(codec)
    assert chosen == hardware
    assert selector.is_hardware_encoder(chosen)


def test_nvenc_preferred_over_qsv():
    selector = EncoderSelector(probe_with({"hevc_qsv", "hevc_nvenc"}))
    assert selector.get_best_encoder("hevc") == "hevc_nvenc"


def test_fallback_is_never_probed():
    probe = probe_with(set())
    EncoderSelector(probe).get_best_encoder("h264")

    probed = [call[0][0] for call in probe.is_encoder_available.call_args_list]
    assert probed == ["h264_nvenc", "h264_qsv", "h264_videotoolbox", "h264_amf"]
    assert "aac" not in probed


def encoder_listing(*names):
    result = MagicMock()
    result.returncode = 0
    result.stderr = ""
    result.stdout = "Encoders:\n V..... = Video\n ------\n" + "".join(
        f" V....D {name:<20} {name} encoder\n" for name in names
    )
    return result


def test_selection_follows_probe_after_cache_clear():
    listings = [encoder_listing("libx264", "h264_nvenc"), encoder_listing("libx264")]
    with patch("subprocess.run", side_effect=listings) as mock_run:
        probe = EncoderProbe()
        selector = EncoderSelector(probe)
        assert selector.get_best_encoder("h264") == "h264_nvenc"
        assert selector.get_best_encoder("h264") == "h264_nvenc"
        assert mock_run.call_count == 1

        probe.clear_cache()

        assert probe.is_encoder_available("h264_nvenc") is False
        assert selector.get_best_encoder("h264") == "libx264"
    assert mock_run.call_count == 2


def test_selector_clear_cache_clears_probe():
    probe = MagicMock()
    EncoderSelector(probe).clear_cache()
    probe.clear_cache.assert_called_once_with()


def test_unknown_codec_raises_key_error():
    with pytest.raises(KeyError):
        EncoderSelector(probe_with(set())).get_best_encoder("theora")
