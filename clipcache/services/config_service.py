"""
Configuration service for media pipeline settings.

Provides a single source of truth for extension lists, alpha detection
rules, job limits and cache settings. The instance is constructed once at
startup and handed to every component that needs it.
"""

import json
import os
from pathlib import Path
from typing import Dict, List, Any, Optional

CACHE_DIR_ENV = "CLIPCACHE_CACHE_DIR"
DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "pipeline_config.json"


class ConfigService:
    """Service for loading and providing pipeline configuration."""

    def __init__(self, config_path: Optional[Path] = None, overrides: Optional[Dict[str, Any]] = None):
        """Initialize the configuration service.

        Args:
            config_path: Path to configuration JSON file.
                        Defaults to clipcache/config/pipeline_config.json
            overrides: Top-level keys replacing values from the file
                       (sections are merged one level deep)
        """
        if config_path is None:
            config_path = DEFAULT_CONFIG_PATH

        self.config_path = Path(config_path)
        self._overrides = overrides or {}
        self._config = None

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from JSON file.

        Raises:
            FileNotFoundError: If config file doesn't exist
            json.JSONDecodeError: If config file is invalid JSON
        """
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        with open(self.config_path, 'r', encoding='utf-8') as f:
            config = json.load(f)

        for key, value in self._overrides.items():
            if isinstance(value, dict) and isinstance(config.get(key), dict):
                config[key] = {**config[key], **value}
            else:
                config[key] = value
        return config

    @property
    def config(self) -> Dict[str, Any]:
        """Get the full configuration (cached)."""
        if self._config is None:
            self._config = self._load_config()
        return self._config

    def _section(self, name: str) -> Dict[str, Any]:
        return self.config.get(name, {})

    @property
    def cache_dir(self) -> Path:
        """Root of converted files, frame sequences and logs.

        Environment variable wins over the config file, then ~/.clipcache.
        """
        env_dir = os.environ.get(CACHE_DIR_ENV)
        if env_dir:
            return Path(env_dir)
        configured = self.config.get("cacheDir")
        if configured:
            return Path(configured).expanduser()
        return Path.home() / ".clipcache"

    def get_native_extensions(self) -> List[str]:
        """Extensions the playback layer opens directly (e.g. ['.mp4'])."""
        return [ext.lower() for ext in self.config.get("nativeExtensions", [])]

    def get_transcodable_extensions(self) -> List[str]:
        return [ext.lower() for ext in self.config.get("transcodableExtensions", [])]

    def get_alpha_extensions(self) -> List[str]:
        """Containers assumed to carry alpha when the probe cannot tell."""
        return [ext.lower() for ext in self.config.get("alphaExtensions", [])]

    def get_alpha_pixel_format_markers(self) -> List[str]:
        return self.config.get("alphaPixelFormatMarkers", [])

    def get_alpha_codecs(self) -> List[str]:
        return self.config.get("alphaCodecs", [])

    def get_alpha_decoders(self) -> Dict[str, str]:
        """Explicit ffmpeg decoder per codec that loses alpha by default."""
        return self.config.get("alphaDecoders", {})

    @property
    def probe_timeout(self) -> float:
        return float(self._section("probe").get("timeoutSeconds", 10))

    @property
    def poll_interval(self) -> float:
        return float(self._section("jobs").get("pollIntervalSeconds", 0.5))

    @property
    def transcode_timeout(self) -> float:
        return float(self._section("jobs").get("transcodeTimeoutSeconds", 120))

    @property
    def extraction_timeout(self) -> float:
        return float(self._section("jobs").get("extractionTimeoutSeconds", 180))

    @property
    def transcode_expected_seconds(self) -> float:
        return float(self._section("jobs").get("transcodeExpectedSeconds", 60))

    @property
    def extraction_expected_seconds(self) -> float:
        return float(self._section("jobs").get("extractionExpectedSeconds", 90))

    def get_transcode_settings(self) -> Dict[str, Any]:
        """ffmpeg codec/quality/bitrate settings for standard transcodes."""
        return self._section("transcode")

    @property
    def default_frame_rate(self) -> float:
        return float(self._section("extraction").get("defaultFrameRate", 30))

    @property
    def frame_cache_size(self) -> int:
        return int(self._section("playback").get("frameCacheSize", 30))

    @property
    def loop_playback(self) -> bool:
        return bool(self._section("playback").get("loop", True))

    @property
    def max_logs(self) -> int:
        return int(self._section("logs").get("maxLogs", 10))
