"""Alpha-preserving extraction of a source into numbered RGBA PNG frames."""

from pathlib import Path
from typing import List, Optional

from clipcache.job_runner import JobHandle, JobRunner
from clipcache.models.domain import ConversionJob, JobKind, MediaSource
from clipcache.repositories.job_repository import JobRepository
from clipcache.repositories.sequence_cache import SequenceCacheStore
from clipcache.services.config_service import ConfigService
from clipcache.utils.media import FRAME_OUTPUT_PATTERN, has_frame_files


class ExtractionService(JobRunner):
    """Alpha frame extractor.

    ffmpeg's default decoders for VP8/VP9 drop the alpha plane, so those
    codecs get an explicit libvpx decoder ahead of ``-i``. The sidecar is
    written before the job resolves, so a SUCCEEDED handle always points
    at a valid cache entry.
    """

    kind = JobKind.ALPHA_EXTRACTION
    description = "Frame extraction"

    def __init__(
        self,
        config: ConfigService,
        job_repo: JobRepository,
        cache_store: SequenceCacheStore,
        **kwargs,
    ):
        kwargs.setdefault("timeout", config.extraction_timeout)
        kwargs.setdefault("expected_seconds", config.extraction_expected_seconds)
        kwargs.setdefault("poll_interval", config.poll_interval)
        super().__init__(job_repo, **kwargs)
        self.config = config
        self.cache_store = cache_store

    def decoder_for(self, codec_name: Optional[str]) -> Optional[str]:
        if not codec_name:
            return None
        return self.config.get_alpha_decoders().get(codec_name.lower())

    def frame_rate_for(self, source: MediaSource) -> float:
        """Source rate from the probe, or the configured default (30)."""
        if source.frame_rate and source.frame_rate > 0:
            return source.frame_rate
        return self.config.default_frame_rate

    def output_frame_rate(self, source: MediaSource) -> Optional[float]:
        return self.frame_rate_for(source)

    def build_command(self, tool: str, job: ConversionJob, source: MediaSource) -> List[str]:
        cmd = [tool, "-y", "-hide_banner"]
        decoder = self.decoder_for(source.codec_name)
        if decoder:
            cmd.extend(["-c:v", decoder])
        cmd.extend([
            "-i", str(source.path),
            "-vf", f"fps={_format_rate(self.frame_rate_for(source))}",
            "-pix_fmt", "rgba",
            "-an",
            "-start_number", "1",
            str(job.target_path / FRAME_OUTPUT_PATTERN),
        ])
        return cmd

    def prepare_target(self, job: ConversionJob) -> None:
        job.target_path.mkdir(parents=True, exist_ok=True)
        self.cache_store.invalidate(job.target_path)

    def output_ready(self, job: ConversionJob) -> bool:
        return has_frame_files(job.target_path)

    def on_success(self, handle: JobHandle) -> None:
        entry = self.cache_store.write(
            handle.source,
            handle.job.target_path,
            frame_rate=self.frame_rate_for(handle.source),
        )
        print(f"    Cached {entry.frame_count} frames at {entry.frame_rate:g} fps")

    def discard_output(self, job: ConversionJob) -> None:
        self.cache_store.invalidate(job.target_path)

    def extract(self, source: MediaSource, frame_directory: Optional[Path] = None) -> JobHandle:
        """Start (or attach to) extraction of ``source`` into its frame directory."""
        if frame_directory is None:
            frame_directory = self.cache_store.frame_directory_for(source.path)
        return self.start(source, Path(frame_directory))


def _format_rate(rate: float) -> str:
    """30.0 -> '30', 29.97002997 -> '29.97003'."""
    return f"{rate:.5f}".rstrip("0").rstrip(".")
