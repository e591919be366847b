"""Format classification: decide how a source becomes playable."""

import dataclasses
import subprocess
from pathlib import Path
from typing import Dict, Optional

from clipcache.errors import ProbeUnavailable, SourceNotFound
from clipcache.models.domain import Classification, ClassificationKind, MediaSource
from clipcache.services.config_service import ConfigService
from clipcache.utils.platform import find_tool


def parse_frame_rate(value: Optional[str]) -> Optional[float]:
    """Parse ffprobe rates like '30000/1001' or '25'. None when unusable."""
    if not value:
        return None
    try:
        if "/" in value:
            num, den = value.split("/", 1)
            if float(den) == 0:
                return None
            rate = float(num) / float(den)
        else:
            rate = float(value)
    except ValueError:
        return None
    return rate if rate > 0 else None


def parse_probe_output(stdout: str) -> Dict[str, str]:
    """Parse ``-of compact=p=0`` output into one dict.

    Each section is one line of ``key=value|key=value``; stream and
    format sections are merged, first value wins.
    """
    fields: Dict[str, str] = {}
    for line in stdout.splitlines():
        for item in line.strip().split("|"):
            if "=" not in item:
                continue
            key, value = item.split("=", 1)
            key, value = key.strip(), value.strip()
            if value and value != "N/A" and key not in fields:
                fields[key] = value
    return fields


class ClassifierService:
    """Inspects a source file and picks its handling strategy.

    Detection is two-tier: ffprobe first, then an extension heuristic
    when the probe is missing, fails or reports nothing.
    """

    def __init__(
        self,
        config: ConfigService,
        probe_path: Optional[str] = None,
        tools_dir: Optional[Path] = None,
    ):
        self.config = config
        self.probe_path = probe_path
        self.tools_dir = tools_dir

    def is_native(self, extension: str) -> bool:
        return extension.lower() in self.config.get_native_extensions()

    def is_transcodable(self, extension: str) -> bool:
        return extension.lower() in self.config.get_transcodable_extensions()

    def describe(self, path) -> MediaSource:
        """Stat a source without probing it.

        Raises:
            SourceNotFound: If the path does not exist or is not a file
        """
        source_path = Path(path).expanduser().resolve()
        if not source_path.is_file():
            raise SourceNotFound(f"Source not found: {source_path}", str(source_path))
        stat = source_path.stat()
        return MediaSource(
            path=source_path,
            extension=source_path.suffix.lower(),
            modified_time=stat.st_mtime_ns,
        )

    def classify(self, path) -> Classification:
        """Classify a source path.

        Raises:
            SourceNotFound: If the path does not exist
        """
        return self.classify_source(self.describe(path))

    def classify_source(self, source: MediaSource) -> Classification:
        """Classify an already described source."""
        if self.is_native(source.extension):
            return Classification(
                kind=ClassificationKind.NATIVE_PLAYABLE,
                has_alpha=False,
                source=source,
            )

        if not self.is_transcodable(source.extension):
            return Classification(
                kind=ClassificationKind.UNSUPPORTED,
                has_alpha=False,
                source=source,
            )

        try:
            fields = self.probe(source.path)
        except ProbeUnavailable as e:
            print(f"  → Probe unavailable ({e.message}), using extension heuristic")
            has_alpha = source.extension in self.config.get_alpha_extensions()
            return Classification(
                kind=self._kind_for(has_alpha),
                has_alpha=has_alpha,
                source=source,
            )

        codec_name = fields.get("codec_name")
        pix_fmt = fields.get("pix_fmt")
        duration = None
        try:
            duration = float(fields["duration"]) if "duration" in fields else None
        except ValueError:
            pass
        probed = dataclasses.replace(
            source,
            codec_name=codec_name,
            pix_fmt=pix_fmt,
            frame_rate=parse_frame_rate(fields.get("avg_frame_rate")) or parse_frame_rate(fields.get("r_frame_rate")),
            duration=duration,
        )
        has_alpha = self.detect_alpha(codec_name, pix_fmt)
        return Classification(
            kind=self._kind_for(has_alpha),
            has_alpha=has_alpha,
            source=probed,
            codec_name=codec_name,
            pix_fmt=pix_fmt,
            probed=True,
        )

    def detect_alpha(self, codec_name: Optional[str], pix_fmt: Optional[str]) -> bool:
        """Alpha if the pixel format has an alpha plane or the codec can carry one."""
        if pix_fmt:
            lowered = pix_fmt.lower()
            if any(marker in lowered for marker in self.config.get_alpha_pixel_format_markers()):
                return True
        if codec_name and codec_name.lower() in self.config.get_alpha_codecs():
            return True
        return False

    def probe(self, path: Path) -> Dict[str, str]:
        """Read codec, pixel format, frame rate and duration with ffprobe.

        Raises:
            ProbeUnavailable: If ffprobe is missing, fails or reports nothing
        """
        probe_path = self.probe_path
        if not probe_path:
            found = find_tool("ffprobe", self.tools_dir)
            if not found:
                raise ProbeUnavailable("ffprobe not found")
            probe_path = str(found)

        cmd = [
            probe_path, "-v", "error",
            "-select_streams", "v:0",
            "-show_entries", "stream=codec_name,pix_fmt,r_frame_rate,avg_frame_rate:format=duration",
            "-of", "compact=p=0",
            str(path),
        ]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.config.probe_timeout)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ProbeUnavailable(f"ffprobe failed to run: {e}", str(path)) from e

        if result.returncode != 0 or not result.stdout.strip():
            raise ProbeUnavailable(f"ffprobe returned {result.returncode} with no stream info", str(path))

        fields = parse_probe_output(result.stdout)
        if "codec_name" not in fields and "pix_fmt" not in fields:
            raise ProbeUnavailable("ffprobe reported no video stream", str(path))
        return fields

    @staticmethod
    def _kind_for(has_alpha: bool) -> ClassificationKind:
        if has_alpha:
            return ClassificationKind.NEEDS_ALPHA_EXTRACTION
        return ClassificationKind.NEEDS_TRANSCODE
