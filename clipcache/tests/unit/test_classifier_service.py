"""Unit tests for ClassifierService."""

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from clipcache.errors import SourceNotFound
from clipcache.models.domain import ClassificationKind
from clipcache.services.classifier_service import (
    ClassifierService,
    parse_frame_rate,
    parse_probe_output,
)

VP9_ALPHA_PROBE = (
    "codec_name=vp9|pix_fmt=yuva420p|r_frame_rate=30/1|avg_frame_rate=30/1\n"
    "duration=4.000000\n"
)
H264_PROBE = (
    "codec_name=h264|pix_fmt=yuv420p|r_frame_rate=24000/1001|avg_frame_rate=24000/1001\n"
    "duration=10.5\n"
)


def probe_result(stdout: str, returncode: int = 0) -> MagicMock:
    return MagicMock(returncode=returncode, stdout=stdout, stderr="")


class TestParsing:
    """Test ffprobe output parsing helpers."""

    def test_parse_frame_rate_fraction(self):
        assert parse_frame_rate("30000/1001") == pytest.approx(29.97, abs=0.01)

    def test_parse_frame_rate_plain(self):
        assert parse_frame_rate("25") == 25.0

    def test_parse_frame_rate_unusable(self):
        assert parse_frame_rate("0/0") is None
        assert parse_frame_rate("") is None
        assert parse_frame_rate(None) is None
        assert parse_frame_rate("abc") is None

    def test_parse_probe_output_merges_sections(self):
        fields = parse_probe_output(VP9_ALPHA_PROBE)
        assert fields["codec_name"] == "vp9"
        assert fields["pix_fmt"] == "yuva420p"
        assert fields["duration"] == "4.000000"

    def test_parse_probe_output_skips_na(self):
        fields = parse_probe_output("codec_name=h264|pix_fmt=N/A\nduration=N/A\n")
        assert fields == {"codec_name": "h264"}


class TestClassifierService:
    """Test classification and alpha detection."""

    @pytest.fixture
    def classifier(self, config):
        return ClassifierService(config, probe_path="ffprobe")

    def test_native_extension_is_not_probed(self, classifier, make_source):
        """Native sources are classified from the extension alone."""
        source = make_source("clip.mp4")

        with patch("clipcache.services.classifier_service.subprocess.run") as mock_run:
            result = classifier.classify(source)

        assert result.kind == ClassificationKind.NATIVE_PLAYABLE
        assert result.has_alpha is False
        assert result.probed is False
        mock_run.assert_not_called()

    def test_unknown_extension_is_unsupported(self, classifier, make_source):
        source = make_source("notes.txt")

        with patch("clipcache.services.classifier_service.subprocess.run") as mock_run:
            result = classifier.classify(source)

        assert result.kind == ClassificationKind.UNSUPPORTED
        mock_run.assert_not_called()

    def test_alpha_pixel_format_needs_extraction(self, classifier, make_source):
        source = make_source("clip.webm")

        with patch(
            "clipcache.services.classifier_service.subprocess.run",
            return_value=probe_result(VP9_ALPHA_PROBE),
        ) as mock_run:
            result = classifier.classify(source)

        assert result.kind == ClassificationKind.NEEDS_ALPHA_EXTRACTION
        assert result.has_alpha is True
        assert result.probed is True
        assert result.codec_name == "vp9"
        assert result.pix_fmt == "yuva420p"
        assert result.source.frame_rate == 30.0
        assert result.source.duration == 4.0

        cmd = mock_run.call_args[0][0]
        assert cmd[0] == "ffprobe"
        assert "-select_streams" in cmd
        assert cmd[-1] == str(source)

    def test_opaque_stream_needs_transcode(self, classifier, make_source):
        source = make_source("clip.mkv")

        with patch(
            "clipcache.services.classifier_service.subprocess.run",
            return_value=probe_result(H264_PROBE),
        ):
            result = classifier.classify(source)

        assert result.kind == ClassificationKind.NEEDS_TRANSCODE
        assert result.has_alpha is False
        assert result.source.frame_rate == pytest.approx(23.976, abs=0.001)

    def test_probe_missing_falls_back_to_extension(self, config, make_source):
        """Without ffprobe, alpha-capable containers are assumed to carry alpha."""
        classifier = ClassifierService(config)
        mov = make_source("clip.mov")
        avi = make_source("clip.avi")

        with patch("clipcache.services.classifier_service.find_tool", return_value=None):
            mov_result = classifier.classify(mov)
            avi_result = classifier.classify(avi)

        assert mov_result.kind == ClassificationKind.NEEDS_ALPHA_EXTRACTION
        assert mov_result.probed is False
        assert avi_result.kind == ClassificationKind.NEEDS_TRANSCODE
        assert avi_result.probed is False

    def test_probe_failure_falls_back_to_extension(self, classifier, make_source):
        source = make_source("clip.webm")

        with patch(
            "clipcache.services.classifier_service.subprocess.run",
            return_value=probe_result("", returncode=1),
        ):
            result = classifier.classify(source)

        assert result.kind == ClassificationKind.NEEDS_ALPHA_EXTRACTION
        assert result.probed is False

    def test_probe_timeout_falls_back_to_extension(self, classifier, make_source):
        source = make_source("clip.avi")

        with patch(
            "clipcache.services.classifier_service.subprocess.run",
            side_effect=subprocess.TimeoutExpired(cmd="ffprobe", timeout=10),
        ):
            result = classifier.classify(source)

        assert result.kind == ClassificationKind.NEEDS_TRANSCODE
        assert result.probed is False

    def test_missing_source_raises(self, classifier, media_dir):
        with pytest.raises(SourceNotFound):
            classifier.classify(media_dir / "missing.webm")

    def test_directory_is_not_a_source(self, classifier, media_dir):
        with pytest.raises(SourceNotFound):
            classifier.describe(media_dir)

    def test_describe_records_mtime(self, classifier, make_source):
        path = make_source("Clip.WEBM")
        source = classifier.describe(path)

        assert source.extension == ".webm"
        assert source.modified_time == path.stat().st_mtime_ns
        assert source.codec_name is None

    def test_detect_alpha(self, classifier):
        assert classifier.detect_alpha("h264", "yuva444p") is True
        assert classifier.detect_alpha("rawvideo", "bgra") is True
        assert classifier.detect_alpha("qtrle", "rgb24") is True
        assert classifier.detect_alpha("h264", "yuv420p") is False
        assert classifier.detect_alpha(None, None) is False
