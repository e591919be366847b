"""Standard transcoding of sources the playback layer cannot open."""

from pathlib import Path
from typing import List, Optional

from clipcache.job_runner import JobHandle, JobRunner
from clipcache.models.domain import ConversionJob, JobKind, MediaSource
from clipcache.repositories.job_repository import JobRepository
from clipcache.services.config_service import ConfigService
from clipcache.utils.media import source_cache_name


class ConversionService(JobRunner):
    """Conversion job orchestrator: one ffmpeg transcode per source.

    Output is written to ``<cache_root>/converted/<stem>_<hash>.mp4``.
    A converted file is only trusted once ffmpeg has exited 0 *and* the
    file exists; anything else deletes it.
    """

    kind = JobKind.STANDARD_TRANSCODE
    description = "Transcode"

    def __init__(self, config: ConfigService, job_repo: JobRepository, **kwargs):
        kwargs.setdefault("timeout", config.transcode_timeout)
        kwargs.setdefault("expected_seconds", config.transcode_expected_seconds)
        kwargs.setdefault("poll_interval", config.poll_interval)
        super().__init__(job_repo, **kwargs)
        self.config = config
        self.settings = config.get_transcode_settings()
        self.converted_dir = config.cache_dir / "converted"

    def target_path_for(self, source: MediaSource) -> Path:
        container = self.settings.get("container", ".mp4")
        return self.converted_dir / f"{source_cache_name(source.path)}{container}"

    def reusable_output(self, source: MediaSource) -> Optional[Path]:
        """A previous conversion that is newer than the source, if allowed."""
        if not self.settings.get("reuseConvertedFiles", True):
            return None
        target = self.target_path_for(source)
        if self.active_handle(source.path) is not None:
            return None
        try:
            if target.stat().st_mtime_ns >= source.modified_time and target.stat().st_size > 0:
                return target
        except OSError:
            return None
        return None

    def build_command(self, tool: str, job: ConversionJob, source: MediaSource) -> List[str]:
        settings = self.settings
        max_bitrate = str(settings.get("maxBitrate", "12M"))
        cmd = [
            tool, "-y", "-hide_banner",
            "-i", str(source.path),
            "-c:v", str(settings.get("videoCodec", "libx264")),
            "-preset", str(settings.get("preset", "medium")),
            "-crf", str(settings.get("crf", 18)),
            "-maxrate", max_bitrate,
            "-bufsize", _double_bitrate(max_bitrate),
            "-pix_fmt", str(settings.get("pixelFormat", "yuv420p")),
            "-c:a", str(settings.get("audioCodec", "aac")),
            "-b:a", str(settings.get("audioBitrate", "192k")),
        ]
        if job.target_path.suffix.lower() in (".mp4", ".m4v", ".mov"):
            cmd.extend(["-movflags", "+faststart"])
        cmd.append(str(job.target_path))
        return cmd

    def prepare_target(self, job: ConversionJob) -> None:
        job.target_path.parent.mkdir(parents=True, exist_ok=True)
        if job.target_path.exists():
            job.target_path.unlink()

    def output_ready(self, job: ConversionJob) -> bool:
        return job.target_path.is_file() and job.target_path.stat().st_size > 0

    def discard_output(self, job: ConversionJob) -> None:
        if job.target_path.exists():
            job.target_path.unlink()

    def convert(self, source: MediaSource) -> JobHandle:
        """Start (or attach to) the transcode of ``source`` into the cache."""
        return self.start(source, self.target_path_for(source))


def _double_bitrate(bitrate: str) -> str:
    """'12M' -> '24M', '800k' -> '1600k'. Unparseable values pass through."""
    unit = bitrate[-1] if bitrate and bitrate[-1].isalpha() else ""
    number = bitrate[:-1] if unit else bitrate
    try:
        return f"{int(float(number) * 2)}{unit}"
    except ValueError:
        return bitrate
